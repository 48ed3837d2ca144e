"""
Per-subject calibration of the red-channel detection band.

During a short warm-up window the handler collects raw red samples, trims
the extreme 10 % at each tail and derives a ``[min_threshold,
max_threshold]`` band from the remaining mean and standard deviation.
Once calibrated the state is frozen until :meth:`CalibrationHandler.reset`.

If the window expires before enough samples arrive the pipeline keeps
running on the static default band; that is degraded precision, not an
error.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np

from ppg_vitals.config import ProcessorConfig
from ppg_vitals.models import CalibrationState

logger = logging.getLogger(__name__)


def trimmed(values, fraction: float = 0.1) -> np.ndarray:
    """Sort *values* and drop ``fraction`` of them from each tail."""
    arr = np.sort(np.asarray(values, dtype=np.float64))
    k = int(len(arr) * fraction)
    return arr[k:len(arr) - k] if k else arr


class CalibrationHandler:
    """
    Collect the first K non-trivial samples and freeze a detection band.

    Parameters
    ----------
    config:
        Pipeline configuration; uses ``calibration_samples``,
        ``calibration_min_value``, ``calibration_window_ms``, the static
        ``min_red_threshold`` / ``max_red_threshold`` defaults and the
        ``calibration_floor`` / ``calibration_ceiling`` clamps.
    """

    def __init__(self, config: Optional[ProcessorConfig] = None) -> None:
        self.config = config or ProcessorConfig()
        self._samples: List[float] = []
        self._started_ms: Optional[float] = None
        self._expired = False
        self._state = self._default_state()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> CalibrationState:
        return self._state

    @property
    def is_calibrated(self) -> bool:
        return self._state.is_calibrated

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def progress(self) -> float:
        """Fraction (0 – 1) of the required samples collected so far."""
        if self._state.is_calibrated:
            return 1.0
        return len(self._samples) / self.config.calibration_samples

    def add_sample(self, value: float, timestamp_ms: float) -> bool:
        """
        Offer one raw red sample.

        Returns *True* exactly once: on the call that completes calibration.
        Every later call is a no-op until :meth:`reset`.
        """
        if self._state.is_calibrated or self._expired:
            return False

        if self._started_ms is None:
            self._started_ms = timestamp_ms
        elif timestamp_ms - self._started_ms > self.config.calibration_window_ms:
            self._expired = True
            logger.info(
                "Calibration window expired with %d/%d samples; using default thresholds",
                len(self._samples), self.config.calibration_samples,
            )
            return False

        if value < self.config.calibration_min_value:
            return False

        self._samples.append(float(value))
        if len(self._samples) < self.config.calibration_samples:
            return False

        self._state = self._compute_state()
        self._samples.clear()
        logger.info(
            "Calibration complete: mean=%.1f band=[%.1f, %.1f]",
            self._state.baseline_mean, self._state.min_threshold, self._state.max_threshold,
        )
        return True

    def reset(self) -> None:
        """Drop all collected samples and go back to the default band."""
        self._samples.clear()
        self._started_ms = None
        self._expired = False
        self._state = self._default_state()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _default_state(self) -> CalibrationState:
        return CalibrationState(
            min_threshold=self.config.min_red_threshold,
            max_threshold=self.config.max_red_threshold,
        )

    def _compute_state(self) -> CalibrationState:
        kept = trimmed(self._samples, 0.1)
        mean = float(kept.mean())
        variance = float(kept.var())
        std = variance ** 0.5
        return CalibrationState(
            baseline_mean=mean,
            baseline_variance=variance,
            min_threshold=max(self.config.calibration_floor, mean - 2.0 * std),
            max_threshold=min(self.config.calibration_ceiling, mean + 5.0 * std),
            is_calibrated=True,
        )
