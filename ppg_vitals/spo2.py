"""
SpO2 estimate by the ratio-of-ratios method.

Algorithm
---------
1. Keep rolling buffers of the mean red and green intensity of the
   retained ROI pixels.
2. DC component = buffer mean; AC component = RMS of the Butterworth
   band-passed (0.75 – 4 Hz) detrended buffer.
3. ``R = (AC_red / DC_red) / (AC_green / DC_green)`` and
   ``SpO2 ≈ 110 − 25 · R``, clamped to 70 – 100 %.

Notes
-----
- Pulse oximeters use red (~660 nm) and infrared (~940 nm); a phone camera
  only has visible channels, so green stands in for infrared.
- The value is indicative, not clinical-grade.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional

import numpy as np
from scipy.signal import butter, sosfilt

from ppg_vitals.config import ProcessorConfig

logger = logging.getLogger(__name__)


class SpO2Estimator:
    """
    Rolling ratio-of-ratios SpO2 estimator.

    Parameters
    ----------
    config:
        Uses ``fps`` (nominal frame rate for the band-pass filter),
        ``spo2_window_seconds`` and ``spo2_min_seconds``.
    bpm_low, bpm_high:
        Pass band of the Butterworth filter in beats per minute.
    filter_order:
        Order of the Butterworth filter (default 4).
    """

    def __init__(
        self,
        config: Optional[ProcessorConfig] = None,
        bpm_low: float = 45.0,
        bpm_high: float = 240.0,
        filter_order: int = 4,
    ) -> None:
        self.config = config or ProcessorConfig()
        self.bpm_low = bpm_low
        self.bpm_high = bpm_high
        self.filter_order = filter_order

        maxlen = int(self.config.fps * self.config.spo2_window_seconds)
        self._red: Deque[float] = deque(maxlen=maxlen)
        self._green: Deque[float] = deque(maxlen=maxlen)
        self.min_samples = int(self.config.fps * self.config.spo2_min_seconds)
        self._sos = self._build_filter()
        self._last_spo2 = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def push(self, red: float, green: float) -> None:
        self._red.append(float(red))
        self._green.append(float(green))

    @property
    def buffer_fill_ratio(self) -> float:
        return len(self._red) / self._red.maxlen

    @property
    def last_spo2(self) -> float:
        return self._last_spo2

    def compute(self) -> float:
        """
        Return the SpO2 percentage, or 0.0 when there is not enough data
        or either channel carries no pulsatile component.
        """
        if len(self._red) < self.min_samples:
            return 0.0

        red = np.array(self._red, dtype=np.float64)
        green = np.array(self._green, dtype=np.float64)
        dc_red = float(red.mean())
        dc_green = float(green.mean())
        if dc_red <= 0.0 or dc_green <= 0.0:
            return 0.0

        ac_red = float(np.sqrt(np.mean(sosfilt(self._sos, red - dc_red) ** 2)))
        ac_green = float(np.sqrt(np.mean(sosfilt(self._sos, green - dc_green) ** 2)))
        if ac_green == 0.0 or ac_red == 0.0:
            return 0.0

        ratio = (ac_red / dc_red) / (ac_green / dc_green)
        self._last_spo2 = max(70.0, min(100.0, 110.0 - 25.0 * ratio))
        return self._last_spo2

    def reset(self) -> None:
        self._red.clear()
        self._green.clear()
        self._last_spo2 = 0.0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _build_filter(self) -> np.ndarray:
        """Butterworth band-pass in second-order sections."""
        nyq = self.config.fps / 2.0
        low = max(1e-4, min((self.bpm_low / 60.0) / nyq, 0.999))
        high = max(low + 1e-4, min((self.bpm_high / 60.0) / nyq, 0.999))
        return butter(self.filter_order, [low, high], btype="bandpass", output="sos")
