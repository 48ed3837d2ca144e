"""
Biophysical plausibility checks.

Living tissue over a torch-lit lens has two signatures a static object
lacks: a small pulsatile variation of the red level (blood volume changes
with every beat) and red:green / red:blue ratios inside the bands set by
haemoglobin absorption.  Both are scored with linear falloff outside the
optimal range so marginal frames degrade gracefully.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Optional, Tuple

import numpy as np

from ppg_vitals.config import ProcessorConfig
from ppg_vitals.models import RawFrameSample

MIN_PULSATILITY_HISTORY = 10


def range_score(value: float, band: Tuple[float, float], falloff: float = 0.7) -> float:
    """
    1 inside *band*, falling linearly to 0 over ``falloff · band width``
    on either side.
    """
    low, high = band
    if low <= value <= high:
        return 1.0
    span = max(falloff * (high - low), 1e-9)
    distance = low - value if value < low else value - high
    return max(0.0, 1.0 - distance / span)


class BiophysicalValidator:
    """
    Pulsatility and channel-ratio scorer.

    Parameters
    ----------
    config:
        Uses ``pulsatility_history``, the pulsatility bounds and the
        red-value / ratio bands.
    """

    def __init__(self, config: Optional[ProcessorConfig] = None) -> None:
        self.config = config or ProcessorConfig()
        self._history: Deque[float] = deque(maxlen=self.config.pulsatility_history)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_value(self, filtered: float) -> None:
        self._history.append(float(filtered))

    def pulsatility(self) -> float:
        """Span of the recent filtered values normalised by their mean."""
        if len(self._history) < MIN_PULSATILITY_HISTORY:
            return 0.0
        values = np.fromiter(self._history, dtype=np.float64)
        mean = abs(float(values.mean()))
        if mean < 1e-9:
            return 0.0
        return float(values.max() - values.min()) / mean

    def perfusion_index(self) -> float:
        """Pulsatile over static component, in percent."""
        return 100.0 * self.pulsatility()

    def pulsatility_score(self) -> float:
        cfg = self.config
        p = self.pulsatility()
        low, high = cfg.pulsatility_optimal
        if p < cfg.pulsatility_min:
            return 0.0
        if p < low:
            return (p - cfg.pulsatility_min) / (low - cfg.pulsatility_min)
        if p <= high:
            return 1.0
        if p < cfg.pulsatility_max:
            return (cfg.pulsatility_max - p) / (cfg.pulsatility_max - high)
        return 0.0

    def channel_score(self, sample: RawFrameSample) -> float:
        """Weighted plausibility of the red level and the channel ratios."""
        if not sample.is_valid:
            return 0.0
        cfg = self.config
        return (
            0.3 * range_score(sample.red_value, cfg.red_value_range)
            + 0.4 * range_score(sample.red_to_green_ratio, cfg.red_to_green_range)
            + 0.3 * range_score(sample.red_to_blue_ratio, cfg.red_to_blue_range)
        )

    def reset(self) -> None:
        self._history.clear()
