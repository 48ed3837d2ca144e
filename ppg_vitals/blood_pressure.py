"""
Blood-pressure estimate from the PPG waveform.

Pulse transit time is approximated by the spacing of successive waveform
peaks and combined with the mean peak-to-valley amplitude through a fixed
linear model.  The result is an *indication*, not a measurement: it has
not been calibrated against a cuff for the subject.

Model
-----
::

    ptt_factor = (600 − ptt_ms) · 0.08
    amp_factor = 0.3 · clip(5 · amplitude, 0, 100)
    systolic   = 120 + ptt_factor + amp_factor          ∈ [90, 180]
    diastolic  =  80 + 0.5 · ptt_factor + 0.2 · amp_factor ∈ [60, 110]

with the pulse pressure (systolic − diastolic) held in [20, 80] mmHg.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional, Tuple

import numpy as np

from ppg_vitals.beats import find_extrema
from ppg_vitals.config import ProcessorConfig
from ppg_vitals.models import (
    BP_NOT_READY,
    BP_UNTRUSTED,
    BloodPressureEstimate,
    BloodPressureStatus,
)

logger = logging.getLogger(__name__)

SYSTOLIC_RANGE = (90.0, 180.0)
DIASTOLIC_RANGE = (60.0, 110.0)
PULSE_PRESSURE_RANGE = (20.0, 80.0)
PTT_RANGE = (300.0, 1200.0)


def constrain(systolic: float, diastolic: float) -> Tuple[float, float]:
    """Clamp both values and hold the pulse pressure inside its band."""
    systolic = float(np.clip(systolic, *SYSTOLIC_RANGE))
    diastolic = float(np.clip(diastolic, *DIASTOLIC_RANGE))
    low, high = PULSE_PRESSURE_RANGE
    if systolic - diastolic < low:
        diastolic = systolic - low
    elif systolic - diastolic > high:
        diastolic = systolic - high
    return systolic, diastolic


def instantaneous_pressure(ptt_ms: float, amplitude: float) -> Tuple[float, float]:
    ptt = float(np.clip(ptt_ms, *PTT_RANGE))
    norm_amp = float(np.clip(amplitude * 5.0, 0.0, 100.0))
    ptt_factor = (600.0 - ptt) * 0.08
    amp_factor = 0.3 * norm_amp
    systolic = 120.0 + ptt_factor + amp_factor
    diastolic = 80.0 + 0.5 * ptt_factor + 0.2 * amp_factor
    return constrain(systolic, diastolic)


class BloodPressureEstimator:
    """
    Windowed PPG → smoothed systolic/diastolic estimate.

    Parameters
    ----------
    config:
        Uses ``bp_window`` (samples kept), ``bp_min_samples``,
        ``peak_half_window``, ``bp_buffer`` (instantaneous estimates kept)
        and ``bp_alpha`` (decay of the exponential weighting).
    """

    def __init__(self, config: Optional[ProcessorConfig] = None) -> None:
        self.config = config or ProcessorConfig()
        self._window: Deque[Tuple[float, float]] = deque(maxlen=self.config.bp_window)
        self._estimates: Deque[Tuple[float, float]] = deque(maxlen=self.config.bp_buffer)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_sample(self, value: float, timestamp_ms: float) -> None:
        self._window.append((float(timestamp_ms), float(value)))

    def estimate(self) -> BloodPressureEstimate:
        """
        Current smoothed estimate.

        Returns :data:`BP_NOT_READY` with fewer than ``bp_min_samples``
        samples and :data:`BP_UNTRUSTED` (120/80) with fewer than two
        peaks in the window.
        """
        if len(self._window) < self.config.bp_min_samples:
            return BP_NOT_READY

        ts = np.fromiter((t for t, _ in self._window), dtype=np.float64)
        values = np.fromiter((v for _, v in self._window), dtype=np.float64)
        peaks, valleys = find_extrema(values, self.config.peak_half_window)
        if peaks.size < 2:
            return BP_UNTRUSTED

        self._estimates.append(
            instantaneous_pressure(self._transit_time(ts[peaks]), self._amplitude(values, peaks, valleys))
        )
        systolic, diastolic = self._smoothed()
        systolic, diastolic = constrain(round(systolic), round(diastolic))
        return BloodPressureEstimate(int(systolic), int(diastolic), BloodPressureStatus.READY)

    def reset(self) -> None:
        self._window.clear()
        self._estimates.clear()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _transit_time(peak_times: np.ndarray) -> float:
        intervals = np.clip(np.diff(peak_times), *PTT_RANGE)
        weights = np.arange(1, intervals.size + 1, dtype=np.float64)
        return float(np.average(intervals, weights=weights))

    @staticmethod
    def _amplitude(values: np.ndarray, peaks: np.ndarray, valleys: np.ndarray) -> float:
        amplitudes = []
        for p in peaks:
            before = valleys[valleys < p]
            if before.size:
                amplitudes.append(values[p] - values[before[-1]])
        return float(np.mean(amplitudes)) if amplitudes else 0.0

    def _smoothed(self) -> Tuple[float, float]:
        est = np.asarray(self._estimates, dtype=np.float64)
        n = est.shape[0]
        weights = self.config.bp_alpha ** np.arange(n - 1, -1, -1, dtype=np.float64)
        sys_avg, dia_avg = (weights[:, None] * est).sum(axis=0) / weights.sum()
        return float(sys_avg), float(dia_avg)
