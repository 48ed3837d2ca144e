"""
Frame sampler.

When a finger covers the lens with the torch on, the centre of the frame is
a nearly uniform, strongly red field: blood absorbs green and blue, so red
dominates every pixel.  The sampler reduces each RGBA frame to one red
intensity (the PPG sample) plus a few descriptors used downstream:

  - the red:green and red:blue ratios of the retained pixels,
  - a texture score from a 3×3 edge kernel (skin is smooth, paper and
    fabric are not),
  - advisory low-light / overexposure flags.

Degenerate frames (empty, flat, mostly non-red) are rejected by returning
an empty sample; they are never an error.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional, Tuple, Union

import cv2
import numpy as np

from ppg_vitals.config import ProcessorConfig
from ppg_vitals.models import CalibrationState, RawFrameSample, Roi

logger = logging.getLogger(__name__)

PixelBuffer = Union[bytes, bytearray, memoryview, np.ndarray]

# Laplacian-style edge kernel; responds to local intensity changes only.
EDGE_KERNEL = np.array(
    [[-1, -1, -1],
     [-1,  8, -1],
     [-1, -1, -1]],
    dtype=np.float32,
)


def centered_roi(width: int, height: int, fraction: float) -> Roi:
    """Square ROI of side ``fraction · min(width, height)`` centred in the frame."""
    side = int(min(width, height) * fraction)
    return Roi((width - side) // 2, (height - side) // 2, side, side)


def decode_rgba(pixel_buffer: PixelBuffer, width: int, height: int) -> Optional[np.ndarray]:
    """
    View an interleaved RGBA buffer as an ``(height, width, 4)`` uint8 array.

    Returns *None* when the dimensions are not positive or the buffer size
    does not match them.
    """
    if width <= 0 or height <= 0:
        return None
    if isinstance(pixel_buffer, np.ndarray):
        flat = np.ascontiguousarray(pixel_buffer, dtype=np.uint8).reshape(-1)
    else:
        flat = np.frombuffer(pixel_buffer, dtype=np.uint8)
    if flat.size != width * height * 4:
        return None
    return flat.reshape(height, width, 4)


class FrameSampler:
    """
    Reduce RGBA frames to :class:`RawFrameSample` values.

    Parameters
    ----------
    config:
        Pipeline configuration (ROI fraction, red-dominance ratio, rejection
        limits, gain levels and warning levels).
    """

    def __init__(self, config: Optional[ProcessorConfig] = None) -> None:
        self.config = config or ProcessorConfig()
        self._history: Deque[float] = deque(maxlen=self.config.gain_history)
        self._gain = 1.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def sample(
        self,
        pixel_buffer: PixelBuffer,
        width: int,
        height: int,
        calibration: Optional[CalibrationState] = None,
    ) -> RawFrameSample:
        """
        Sample one frame.

        Parameters
        ----------
        pixel_buffer:
            Interleaved 8-bit RGBA, row-major, ``width · height · 4`` bytes.
        width, height:
            Frame dimensions in pixels.
        calibration:
            Current calibration; its lower threshold tunes the adaptive gain.
        """
        cfg = self.config
        frame = decode_rgba(pixel_buffer, width, height)
        if frame is None:
            logger.warning("Malformed frame buffer for %dx%d", width, height)
            return RawFrameSample.empty("malformed")

        roi = centered_roi(width, height, cfg.roi_fraction)
        if roi.width < 3:
            return RawFrameSample.empty("roi_too_small", roi)

        patch = frame[roi.y:roi.y + roi.height, roi.x:roi.x + roi.width]
        red = patch[:, :, 0].astype(np.float32)
        green = patch[:, :, 1].astype(np.float32)
        blue = patch[:, :, 2].astype(np.float32)

        low_light, overexposed = self._exposure_flags(red, green, blue)

        mask = (red > 0) & (red >= cfg.red_dominance * green) & (red >= cfg.red_dominance * blue)
        count = int(np.count_nonzero(mask))
        rejection = self._rejection(red, mask, count, roi.area)
        if rejection is not None:
            return RawFrameSample.empty(rejection, roi, low_light, overexposed)

        kept_red = red[mask]
        mean_r = float(kept_red.mean())
        mean_g = float(green[mask].mean())
        mean_b = float(blue[mask].mean())

        gain = self._gain = self.gain_for(calibration)
        self._history.append(mean_r)

        return RawFrameSample(
            red_value=mean_r * gain,
            texture_score=self._texture(red, mask),
            red_to_green_ratio=mean_r / (mean_g + 1e-6),
            red_to_blue_ratio=mean_r / (mean_b + 1e-6),
            roi=roi,
            green_value=mean_g,
            blue_value=mean_b,
            pixel_count=count,
            gain=gain,
            low_light=low_light,
            overexposed=overexposed,
        )

    def gain_for(self, calibration: Optional[CalibrationState] = None) -> float:
        """
        Adaptive gain from the history of prior accepted samples.

        Weak-but-present signals are boosted; anything under the noise floor
        is left alone so sensor noise is never amplified.  The gain in use
        only changes once the mean leaves the dead band around every level
        boundary, so a mean sitting on a boundary cannot toggle it.
        """
        cfg = self.config
        if len(self._history) < cfg.gain_min_history:
            return self._gain
        avg = float(np.mean(self._history))
        weak = cfg.weak_signal_level
        if calibration is not None and calibration.is_calibrated:
            weak = min(weak, calibration.min_threshold)

        boundaries = (cfg.noise_floor, 0.6 * weak, weak)
        if avg < boundaries[0]:
            target = 1.0
        elif avg < boundaries[1]:
            target = cfg.very_weak_gain
        elif avg < boundaries[2]:
            target = cfg.weak_gain
        else:
            target = 1.0

        if target != self._gain and any(
            abs(avg - b) < cfg.gain_dead_band * b for b in boundaries
        ):
            return self._gain
        return target

    @property
    def gain(self) -> float:
        """Gain applied to the most recent accepted sample."""
        return self._gain

    def reset(self) -> None:
        self._history.clear()
        self._gain = 1.0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _exposure_flags(
        self, red: np.ndarray, green: np.ndarray, blue: np.ndarray
    ) -> Tuple[bool, bool]:
        cfg = self.config
        brightness = float((red.mean() + green.mean() + blue.mean()) / 3.0)
        saturated = float(np.mean(red >= cfg.overexposed_level))
        return brightness < cfg.low_light_level, saturated > cfg.overexposed_fraction

    def _rejection(self, red: np.ndarray, mask: np.ndarray, count: int, area: int) -> Optional[str]:
        cfg = self.config
        if count < cfg.min_retained_pixels:
            return "too_few_pixels"
        if count / area < cfg.min_coverage:
            return "low_coverage"
        kept = red[mask]
        if float(kept.max() - kept.min()) < cfg.min_contrast:
            return "low_contrast"
        return None

    def _texture(self, red: np.ndarray, mask: np.ndarray) -> float:
        edges = cv2.filter2D(red, cv2.CV_32F, EDGE_KERNEL, borderType=cv2.BORDER_REPLICATE)
        mean_edge = float(np.abs(edges[mask]).mean())
        return float(np.clip(mean_edge / self.config.texture_scale, 0.0, 1.0))
