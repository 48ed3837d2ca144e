"""
Deterministic synthetic fingertip frames.

Used by the tests and by ``main.py --synthetic``.  A frame is a uniform
red-dominant field whose red level oscillates sinusoidally at the chosen
heart rate, plus a small fixed column gradient so the frame has the
spatial contrast of real skin.  Green pulses in phase with red; blue is
constant.
"""

from __future__ import annotations

from typing import Iterator, Tuple

import numpy as np


def synthetic_frame(
    t_s: float,
    width: int = 64,
    height: int = 64,
    bpm: float = 75.0,
    red_mean: float = 120.0,
    red_amplitude: float = 15.0,
    green_mean: float = 40.0,
    green_pulse: float = 0.24,
    blue: float = 30.0,
    gradient: float = 4.0,
) -> bytes:
    """
    Return one interleaved RGBA frame at time *t_s* seconds.

    Parameters
    ----------
    bpm:
        Pulse frequency of the red/green oscillation.
    red_mean, red_amplitude:
        DC level and peak deviation of the red channel.
    green_pulse:
        Relative pulse depth of the green channel (0.24 → ±24 %).
    gradient:
        Peak deviation of the fixed left-to-right red gradient.
    """
    phase = np.sin(2.0 * np.pi * (bpm / 60.0) * t_s)
    columns = np.rint(np.linspace(-gradient, gradient, width))

    frame = np.empty((height, width, 4), dtype=np.uint8)
    frame[:, :, 0] = np.clip(np.rint(red_mean + red_amplitude * phase + columns), 0, 255)
    frame[:, :, 1] = np.clip(np.rint(green_mean * (1.0 + green_pulse * phase)), 0, 255)
    frame[:, :, 2] = np.clip(np.rint(blue), 0, 255)
    frame[:, :, 3] = 255
    return frame.tobytes()


def flat_frame(value: int = 128, width: int = 64, height: int = 64) -> bytes:
    """Uniform gray frame (``value`` = 0 gives an all-black frame)."""
    frame = np.full((height, width, 4), value, dtype=np.uint8)
    frame[:, :, 3] = 255
    return frame.tobytes()


def synthetic_stream(
    duration_s: float,
    fps: float = 30.0,
    width: int = 64,
    height: int = 64,
    **kwargs,
) -> Iterator[Tuple[bytes, int, int, float]]:
    """Yield ``(pixel_buffer, width, height, timestamp_ms)`` tuples."""
    for i in range(int(round(duration_s * fps))):
        t_s = i / fps
        yield synthetic_frame(t_s, width, height, **kwargs), width, height, i * 1000.0 / fps
