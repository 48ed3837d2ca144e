"""
Short-term trend analysis of the filtered PPG waveform.

A rolling window of filtered values is scored three ways:

stability
    ``1 − 1.1 · std / |mean|``: a finger held still gives a small
    pulsatile ripple over a large DC level.
periodicity
    rate of direction changes of the waveform.  Too few changes means a
    flat signal; too many means noise.
physiological plausibility
    the direction changes converted to an equivalent heart rate at the
    nominal frame rate; 40 – 180 BPM scores 1, 30 – 200 BPM scores 0.5.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

import numpy as np

from ppg_vitals.config import ProcessorConfig
from ppg_vitals.models import TrendClass

PERIODICITY_BAND = (0.05, 0.4)   # direction changes per sample
FLAT_EPSILON = 1e-6


@dataclass(frozen=True)
class TrendAnalysis:
    stability:         float
    periodicity:       float
    physiological:     float
    composite:         float
    trend_class:       TrendClass
    direction_changes: int


def sign_pattern(values, epsilon: float = FLAT_EPSILON) -> str:
    """Encode successive differences as ``+``, ``-`` or ``=``."""
    diffs = np.diff(np.asarray(values, dtype=np.float64))
    return "".join("+" if d > epsilon else "-" if d < -epsilon else "=" for d in diffs)


def count_direction_changes(pattern: str) -> int:
    """Number of rising/falling reversals, ignoring flat steps."""
    changes = 0
    last = None
    for ch in pattern:
        if ch == "=":
            continue
        if last is not None and ch != last:
            changes += 1
        last = ch
    return changes


def periodicity_score(rate: float) -> float:
    low, high = PERIODICITY_BAND
    if rate < low:
        return rate / low
    if rate > high:
        return max(0.0, 1.0 - (rate - high) * 2.5)
    return 1.0


def physiological_score(bpm: float) -> float:
    if 40.0 <= bpm <= 180.0:
        return 1.0
    if 30.0 <= bpm <= 200.0:
        return 0.5
    return 0.0


def classify(composite: float, physiological: float, full: bool) -> TrendClass:
    if full and physiological < 0.3:
        return TrendClass.NON_PHYSIOLOGICAL
    if composite > 0.8:
        return TrendClass.HIGHLY_STABLE
    if composite > 0.65:
        return TrendClass.STABLE
    if composite > 0.45:
        return TrendClass.MODERATELY_STABLE
    if composite > 0.25:
        return TrendClass.UNSTABLE
    return TrendClass.HIGHLY_UNSTABLE


class TrendAnalyzer:
    """
    Rolling stability / periodicity / plausibility scorer.

    Parameters
    ----------
    config:
        Uses ``trend_window`` (history length) and ``fps`` (to convert
        direction changes into beats per minute).
    """

    def __init__(self, config: Optional[ProcessorConfig] = None) -> None:
        self.config = config or ProcessorConfig()
        self._values: Deque[float] = deque(maxlen=self.config.trend_window)
        self._last: Optional[TrendAnalysis] = None

    @property
    def is_full(self) -> bool:
        return len(self._values) == self._values.maxlen

    @property
    def last(self) -> Optional[TrendAnalysis]:
        return self._last

    def update(self, value: float) -> TrendAnalysis:
        self._values.append(float(value))
        values = np.fromiter(self._values, dtype=np.float64)

        mean = float(values.mean())
        std = float(values.std())
        stability = float(np.clip(1.0 - 1.1 * std / max(1.0, abs(mean)), 0.0, 1.0))

        pattern = sign_pattern(values)
        changes = count_direction_changes(pattern)
        periodicity = periodicity_score(changes / len(pattern)) if pattern else 0.0

        full = self.is_full
        if full:
            seconds = len(values) / self.config.fps
            physiological = physiological_score(changes / 2.0 / seconds * 60.0)
        else:
            physiological = 0.5

        composite = 0.4 * stability + 0.3 * periodicity + 0.3 * physiological
        self._last = TrendAnalysis(
            stability=stability,
            periodicity=periodicity,
            physiological=physiological,
            composite=composite,
            trend_class=classify(composite, physiological, full),
            direction_changes=changes,
        )
        return self._last

    def reset(self) -> None:
        self._values.clear()
        self._last = None
