"""
Beat and RR-interval extraction.

A sample is a peak when it is strictly greater than every sample within
±W on both sides and rises at least ``min_peak_amplitude`` above the lowest
of them; valleys are symmetric.  RR intervals are measured between frame
timestamps, not frame indices, so a variable camera frame rate does not
bias the heart rate.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, List, Optional, Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from ppg_vitals.config import ProcessorConfig

logger = logging.getLogger(__name__)


def find_extrema(values, half_window: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Return ``(peak_indices, valley_indices)`` of *values*.

    Only indices with a full ±*half_window* neighbourhood are considered.
    """
    x = np.asarray(values, dtype=np.float64)
    size = 2 * half_window + 1
    if x.size < size:
        empty = np.array([], dtype=int)
        return empty, empty

    windows = sliding_window_view(x, size)
    centre = windows[:, half_window]
    neighbours = np.delete(windows, half_window, axis=1)
    peaks = np.nonzero(centre > neighbours.max(axis=1))[0] + half_window
    valleys = np.nonzero(centre < neighbours.min(axis=1))[0] + half_window
    return peaks, valleys


class BeatDetector:
    """
    Streaming peak detector emitting RR intervals.

    Each call to :meth:`add` examines the sample W frames back, so a beat
    is reported with a latency of W frames.

    Parameters
    ----------
    config:
        Uses ``peak_half_window``, ``min_peak_amplitude``, ``refractory_ms``
        and the BPM band used to discard implausible intervals.
    """

    def __init__(self, config: Optional[ProcessorConfig] = None) -> None:
        self.config = config or ProcessorConfig()
        w = self.config.peak_half_window
        self._window: Deque[Tuple[float, float]] = deque(maxlen=2 * w + 1)
        self._last_peak_ms: Optional[float] = None
        self.peak_count = 0

    @property
    def last_peak_ms(self) -> Optional[float]:
        return self._last_peak_ms

    def add(self, value: float, timestamp_ms: float) -> Optional[int]:
        """
        Append one filtered sample.

        Returns the new RR interval in whole milliseconds when a beat is
        accepted and a previous beat exists, else *None*.
        """
        cfg = self.config
        self._window.append((float(timestamp_ms), float(value)))
        if len(self._window) < self._window.maxlen:
            return None

        w = cfg.peak_half_window
        values = [v for _, v in self._window]
        centre_ms, centre = self._window[w]
        others = values[:w] + values[w + 1:]
        if centre <= max(others) or centre - min(others) < cfg.min_peak_amplitude:
            return None

        if self._last_peak_ms is not None and centre_ms - self._last_peak_ms < cfg.refractory_ms:
            logger.debug("Peak at %.0f ms inside refractory period", centre_ms)
            return None

        previous = self._last_peak_ms
        self._last_peak_ms = centre_ms
        self.peak_count += 1
        if previous is None:
            return None

        rr = int(round(centre_ms - previous))
        if not 60_000.0 / cfg.max_bpm <= rr <= 60_000.0 / cfg.min_bpm:
            logger.debug("Discarding implausible RR interval %d ms", rr)
            return None
        return rr

    def reset(self) -> None:
        self._window.clear()
        self._last_peak_ms = None
        self.peak_count = 0


class HeartRateEstimator:
    """
    Smoothed heart rate from RR intervals.

    Instantaneous BPM values are kept in a short history; the trimmed mean
    (min and max dropped) is then exponentially smoothed.

    Parameters
    ----------
    config:
        Uses ``bpm_history``, ``bpm_smoothing``, ``min_bpm`` and ``max_bpm``.
    """

    def __init__(self, config: Optional[ProcessorConfig] = None) -> None:
        self.config = config or ProcessorConfig()
        self._history: Deque[float] = deque(maxlen=self.config.bpm_history)
        self._smoothed = 0.0

    @property
    def bpm(self) -> float:
        return self._smoothed

    @property
    def history(self) -> List[float]:
        return list(self._history)

    def add_rr(self, rr_ms: float) -> float:
        cfg = self.config
        if rr_ms <= 0:
            return self._smoothed
        bpm = 60_000.0 / rr_ms
        if not cfg.min_bpm <= bpm <= cfg.max_bpm:
            return self._smoothed

        self._history.append(bpm)
        values = sorted(self._history)
        if len(values) >= 3:
            values = values[1:-1]
        mean = float(np.mean(values))

        if self._smoothed == 0.0:
            self._smoothed = mean
        else:
            self._smoothed += cfg.bpm_smoothing * (mean - self._smoothed)
        return self._smoothed

    def reset(self) -> None:
        self._history.clear()
        self._smoothed = 0.0
