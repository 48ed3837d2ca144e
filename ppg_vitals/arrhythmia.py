"""
Arrhythmia detection from the RR-interval series.

A single elevated HRV metric is common in healthy subjects (breathing alone
modulates RR by tens of milliseconds), so arrhythmia is only asserted when
four independent conditions co-occur:

  1. RMSSD above threshold,
  2. a premature beat (last RR more than 25 % away from the mean),
  3. SDNN or pNN50 elevated,
  4. Shannon or sample entropy elevated.

The reported status changes only after ``confirmation_cycles`` consecutive
analyses agree, the same debounce used for finger detection.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, List, Optional

import numpy as np

from ppg_vitals.config import ProcessorConfig
from ppg_vitals.hrv import HRVMetrics, compute_metrics
from ppg_vitals.models import (
    ArrhythmiaAnalysis,
    ArrhythmiaSeverity,
    ArrhythmiaState,
    ArrhythmiaStatus,
    ArrhythmiaType,
)

logger = logging.getLogger(__name__)

ABNORMAL_BEAT_PCT = 10.0


# ---------------------------------------------------------------------------
# Pure classification helpers
# ---------------------------------------------------------------------------

def is_premature(rr, fraction: float = 0.25) -> bool:
    x = np.asarray(rr, dtype=np.float64)
    if x.size == 0:
        return False
    mean = float(x.mean())
    return abs(float(x[-1]) - mean) > fraction * mean


def abnormal_beat_percentage(rr) -> float:
    """Percentage of intervals further than two standard deviations from the mean."""
    x = np.asarray(rr, dtype=np.float64)
    if x.size < 2:
        return 0.0
    sd = float(x.std())
    if sd == 0.0:
        return 0.0
    return 100.0 * float(np.count_nonzero(np.abs(x - x.mean()) > 2.0 * sd)) / x.size


def assess(metrics: HRVMetrics, premature: bool, config: ProcessorConfig) -> bool:
    """The conjunctive arrhythmia gate."""
    variability = metrics.sdnn > config.sdnn_threshold or metrics.pnn50 > config.pnn50_threshold
    complexity = (
        metrics.shannon > config.shannon_threshold
        or metrics.sample_entropy > config.sample_entropy_threshold
    )
    return metrics.rmssd > config.rmssd_threshold and premature and variability and complexity


def severity_for(
    metrics: HRVMetrics,
    premature: bool,
    abnormal_pct: float,
    config: ProcessorConfig,
) -> ArrhythmiaSeverity:
    triggers = [
        metrics.rmssd > config.rmssd_threshold,
        premature,
        metrics.sdnn > config.sdnn_threshold,
        metrics.pnn50 > config.pnn50_threshold,
        metrics.shannon > config.shannon_threshold,
        metrics.sample_entropy > config.sample_entropy_threshold,
        abnormal_pct > ABNORMAL_BEAT_PCT,
        metrics.rmssd > 2.0 * config.rmssd_threshold,
    ]
    points = sum(triggers)
    if points >= 6:
        return ArrhythmiaSeverity.SEVERE
    if points == 5:
        return ArrhythmiaSeverity.MODERATE
    return ArrhythmiaSeverity.MINOR


def classify_type(
    metrics: HRVMetrics,
    premature: bool,
    abnormal_pct: float,
    config: ProcessorConfig,
) -> ArrhythmiaType:
    """Decision list, evaluated in fixed priority order."""
    heart_rate = 60_000.0 / metrics.mean_rr if metrics.mean_rr > 0 else 0.0
    if 0.0 < heart_rate < 60.0:
        return ArrhythmiaType.BRADYCARDIA
    if heart_rate > 100.0:
        return ArrhythmiaType.TACHYCARDIA
    if metrics.rmssd > 100.0 and metrics.pnn50 > 0.3:
        return ArrhythmiaType.FIBRILLATION_PATTERN
    if metrics.sdnn > config.sdnn_threshold:
        return ArrhythmiaType.SINUS_ARRHYTHMIA
    if premature or abnormal_pct > ABNORMAL_BEAT_PCT:
        return ArrhythmiaType.ECTOPIC_PATTERN
    return ArrhythmiaType.NONE


def confidence_for(metrics: HRVMetrics, data_quality: float) -> float:
    confidence = (
        0.4 * float(np.clip(data_quality, 0.0, 1.0))
        + 0.3 / (1.0 + abs(metrics.lf_hf_ratio - 2.0))
        + 0.2 / (1.0 + metrics.sdnn / 100.0)
        + 0.1 / (1.0 + metrics.shannon)
    )
    return min(0.95, confidence)


def risk_score_for(metrics: HRVMetrics, abnormal_pct: float) -> float:
    """Weighted blend (0 – 1) of how far each metric sits into its abnormal range."""
    return float(
        0.30 * min(1.0, metrics.rmssd / 100.0)
        + 0.20 * min(1.0, metrics.sdnn / 200.0)
        + 0.20 * min(1.0, metrics.pnn50 / 0.5)
        + 0.15 * min(1.0, metrics.shannon / 4.0)
        + 0.15 * min(1.0, abnormal_pct / 20.0)
    )


def analyze(rr, config: ProcessorConfig, data_quality: float = 1.0) -> ArrhythmiaAnalysis:
    """Full analysis of one RR series."""
    x = np.asarray(rr, dtype=np.float64)
    metrics = compute_metrics(x, config.entropy_bin_ms)
    premature = is_premature(x, config.premature_fraction)
    abnormal = abnormal_beat_percentage(x)
    asserted = assess(metrics, premature, config)
    return ArrhythmiaAnalysis(
        has_arrhythmia=asserted,
        type=classify_type(metrics, premature, abnormal, config) if asserted else ArrhythmiaType.NONE,
        severity=severity_for(metrics, premature, abnormal, config) if asserted else ArrhythmiaSeverity.NONE,
        confidence=confidence_for(metrics, data_quality),
        risk_score=risk_score_for(metrics, abnormal),
        rmssd=metrics.rmssd,
        sdnn=metrics.sdnn,
        pnn50=metrics.pnn50,
        entropy=metrics.shannon,
        sample_entropy=metrics.sample_entropy,
        lf_hf_ratio=metrics.lf_hf_ratio,
        premature_beat=premature,
        abnormal_beat_pct=abnormal,
    )


# ---------------------------------------------------------------------------
# Stateful detector
# ---------------------------------------------------------------------------

class ArrhythmiaDetector:
    """
    RR ring buffer plus debounced arrhythmia status.

    Parameters
    ----------
    config:
        Uses ``rr_capacity``, ``rr_min_intervals``, the HRV thresholds and
        ``confirmation_cycles``.
    """

    def __init__(self, config: Optional[ProcessorConfig] = None) -> None:
        self.config = config or ProcessorConfig()
        self._rr: Deque[int] = deque(maxlen=self.config.rr_capacity)
        self._status = ArrhythmiaStatus()
        self._disagreements = 0
        self._last: Optional[ArrhythmiaAnalysis] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def rr_intervals(self) -> List[int]:
        return list(self._rr)

    @property
    def status(self) -> ArrhythmiaStatus:
        return self._status

    @property
    def last_analysis(self) -> Optional[ArrhythmiaAnalysis]:
        return self._last

    def add_rr(self, rr_ms: int, data_quality: float = 1.0) -> Optional[ArrhythmiaAnalysis]:
        """
        Append one RR interval; analyse once enough intervals are buffered.

        Returns the new analysis, or *None* while still learning.
        """
        self._rr.append(int(rr_ms))
        if len(self._rr) < self.config.rr_min_intervals:
            return None

        analysis = analyze(self._rr, self.config, data_quality)
        self._last = analysis
        self._debounce(analysis.has_arrhythmia)
        return analysis

    def reset(self) -> None:
        self._rr.clear()
        self._status = ArrhythmiaStatus()
        self._disagreements = 0
        self._last = None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _debounce(self, asserted: bool) -> None:
        status = self._status
        if status.state is ArrhythmiaState.LEARNING:
            status = ArrhythmiaStatus(ArrhythmiaState.NORMAL, status.confirmed_count)

        if asserted == status.has_arrhythmia:
            self._disagreements = 0
            self._status = status
            return

        self._disagreements += 1
        if self._disagreements < self.config.confirmation_cycles:
            self._status = status
            return

        self._disagreements = 0
        if asserted:
            self._status = ArrhythmiaStatus(ArrhythmiaState.ARRHYTHMIA, status.confirmed_count + 1)
            logger.info("Arrhythmia confirmed (episode %d)", self._status.confirmed_count)
        else:
            self._status = ArrhythmiaStatus(ArrhythmiaState.NORMAL, status.confirmed_count)
            logger.info("Arrhythmia cleared")
