"""
Finger-presence decision: detector fusion plus a hysteresis state machine.

Five detector scores in ``[0, 1]`` are fused into one composite per frame::

    red channel  – red level inside the (calibrated) detection band
    stability    – trend stability, penalised by motion artefacts
    pulsatility  – pulsatile span inside the physiological band
    biophysical  – red level and channel ratios plausible for tissue
    periodicity  – waveform direction-change rate in the pulse band

A frame *qualifies* when the composite clears an adaptive threshold and
stability, pulsatility and periodicity each clear their own floor, so one
strong detector cannot mask disagreement among the others.  The reported
state only changes after ``detection_on_frames`` consecutive qualifying
frames (NOT_DETECTED → DETECTED) or ``detection_off_frames`` consecutive
failing frames / a timeout (DETECTED → NOT_DETECTED).
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional

import numpy as np

from ppg_vitals.biophysical_validator import BiophysicalValidator
from ppg_vitals.calibration import trimmed
from ppg_vitals.config import ProcessorConfig
from ppg_vitals.models import (
    CalibrationState,
    DetectionResult,
    DetectorScores,
    RawFrameSample,
    TrendClass,
)
from ppg_vitals.trend_analyzer import TrendAnalyzer

logger = logging.getLogger(__name__)

TREND_MULTIPLIERS = {
    TrendClass.HIGHLY_STABLE:     1.3,
    TrendClass.STABLE:            1.2,
    TrendClass.MODERATELY_STABLE: 1.1,
    TrendClass.UNSTABLE:          0.85,
    TrendClass.HIGHLY_UNSTABLE:   0.7,
    TrendClass.NON_PHYSIOLOGICAL: 0.4,
}

MOTION_WINDOW = 5
MOTION_CHANGE = 0.55      # normalised swing over the motion window
MOTION_DECAY = 0.7
MOTION_PENALTY = 0.7

ZERO_SCORES = DetectorScores(0.0, 0.0, 0.0, 0.0, 0.0)


@dataclass
class DetectionState:
    is_finger_detected:         bool = False
    consecutive_detections:     int = 0
    consecutive_no_detections:  int = 0
    last_detection_timestamp:   Optional[float] = None
    quality_history:            Deque[float] = field(default_factory=deque)


def red_channel_score(value: float, calibration: CalibrationState) -> float:
    """Plateau of 1 inside the detection band, linear falloff outside."""
    low, high = calibration.min_threshold, calibration.max_threshold
    span = max(0.5 * low, 1.0)
    if value <= 0.0:
        return 0.0
    if value < low:
        return max(0.0, 1.0 - (low - value) / span)
    if value > high:
        return max(0.0, 1.0 - (value - high) / span)
    return 1.0


def threshold_from_cv(cv: float) -> float:
    """Stable environments get a stricter threshold, noisy ones a looser one."""
    if cv < 0.05:
        return 0.65
    if cv < 0.1:
        return 0.55
    return 0.45


class SignalAnalyzer:
    """
    Fuse detector scores and track finger presence with hysteresis.

    Parameters
    ----------
    config:
        Fusion weights, detector floors, hysteresis counts, timeout and
        the non-physiological rejection switch.
    """

    def __init__(self, config: Optional[ProcessorConfig] = None) -> None:
        self.config = config or ProcessorConfig()
        self.trend = TrendAnalyzer(self.config)
        self.validator = BiophysicalValidator(self.config)
        self.state = DetectionState(quality_history=deque(maxlen=self.config.quality_history))
        self._threshold = self.config.default_detection_threshold
        self._threshold_samples: List[float] = []
        self._threshold_calibrated = False
        self._raw: Deque[float] = deque(maxlen=MOTION_WINDOW)
        self._motion = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def is_finger_detected(self) -> bool:
        return self.state.is_finger_detected

    @property
    def motion_artifact(self) -> float:
        return self._motion

    def process(
        self,
        sample: RawFrameSample,
        filtered: Optional[float],
        calibration: CalibrationState,
        timestamp_ms: float,
    ) -> DetectionResult:
        """
        Score one frame and advance the hysteresis state machine.

        Parameters
        ----------
        sample:
            Output of the frame sampler.  Rejected samples always fail.
        filtered:
            Kalman + Savitzky–Golay output for this frame, or *None* when
            the sample was rejected.
        calibration:
            Current calibration band (defaults when not calibrated).
        timestamp_ms:
            Frame timestamp; drives the no-detection timeout.
        """
        cfg = self.config
        if not sample.is_valid or filtered is None:
            scores, composite, qualifies = ZERO_SCORES, 0.0, False
            trend_class = TrendClass.HIGHLY_UNSTABLE
        else:
            scores, composite, trend_class = self._score(sample, filtered, calibration)
            qualifies = (
                composite >= self._threshold
                and scores.stability >= cfg.min_stability
                and scores.pulsatility >= cfg.min_pulsatility
                and scores.periodicity >= cfg.min_periodicity
                and sample.texture_score <= cfg.max_texture
            )

        self.state.quality_history.append(composite)
        self.advance(qualifies, timestamp_ms)

        quality = 0
        if self.state.is_finger_detected:
            quality = int(round(float(np.mean(self.state.quality_history)) * 100.0))
        return DetectionResult(
            finger_detected=self.state.is_finger_detected,
            quality=max(0, min(100, quality)),
            composite=composite,
            threshold=self._threshold,
            qualifies=qualifies,
            scores=scores,
            trend=trend_class,
            motion_artifact=self._motion,
        )

    def reset(self) -> None:
        self.trend.reset()
        self.validator.reset()
        self.state = DetectionState(quality_history=deque(maxlen=self.config.quality_history))
        self._threshold = self.config.default_detection_threshold
        self._threshold_samples.clear()
        self._threshold_calibrated = False
        self._raw.clear()
        self._motion = 0.0

    def advance(self, qualifies: bool, timestamp_ms: float) -> bool:
        """
        Feed one qualify / fail decision to the hysteresis state machine.

        Returns the (possibly unchanged) finger-detected state.
        """
        cfg = self.config
        st = self.state
        if qualifies:
            st.consecutive_detections += 1
            st.consecutive_no_detections = 0
            st.last_detection_timestamp = timestamp_ms
            if not st.is_finger_detected and st.consecutive_detections >= cfg.detection_on_frames:
                st.is_finger_detected = True
                logger.info("Finger detected after %d qualifying frames", st.consecutive_detections)
            return st.is_finger_detected

        st.consecutive_detections = 0
        st.consecutive_no_detections += 1
        if not st.is_finger_detected:
            return False
        timed_out = (
            st.last_detection_timestamp is not None
            and timestamp_ms - st.last_detection_timestamp > cfg.detection_timeout_ms
        )
        if st.consecutive_no_detections >= cfg.detection_off_frames or timed_out:
            st.is_finger_detected = False
            st.quality_history.clear()
            logger.info(
                "Finger lost after %d failing frames%s",
                st.consecutive_no_detections, " (timeout)" if timed_out else "",
            )
        return st.is_finger_detected

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _score(self, sample: RawFrameSample, filtered: float, calibration: CalibrationState):
        cfg = self.config
        red = red_channel_score(sample.red_value, calibration)
        self._update_threshold(sample.red_value, red)
        self._update_motion(sample.red_value)

        trend = self.trend.update(filtered)
        self.validator.add_value(filtered)

        stability = trend.stability
        if self._motion > cfg.motion_artifact_threshold:
            stability *= MOTION_PENALTY

        scores = DetectorScores(
            red_channel=red,
            stability=stability,
            pulsatility=self.validator.pulsatility_score(),
            biophysical=self.validator.channel_score(sample),
            periodicity=trend.periodicity,
        )

        if cfg.reject_non_physiological and trend.trend_class is TrendClass.NON_PHYSIOLOGICAL:
            return scores, 0.0, trend.trend_class

        composite = scores.weighted(cfg.fusion_weights) * TREND_MULTIPLIERS[trend.trend_class]
        if self._motion > cfg.motion_artifact_threshold:
            composite *= MOTION_PENALTY
        return scores, min(1.0, composite), trend.trend_class

    def _update_threshold(self, red_value: float, red_score: float) -> None:
        if self._threshold_calibrated or red_score <= 0.1:
            return
        self._threshold_samples.append(red_value)
        if len(self._threshold_samples) < self.config.threshold_calibration_samples:
            return
        kept = trimmed(self._threshold_samples, 0.1)
        mean = float(kept.mean())
        cv = float(kept.std()) / mean if mean > 0 else 1.0
        self._threshold = threshold_from_cv(cv)
        self._threshold_calibrated = True
        logger.debug("Detection threshold set to %.2f (cv=%.3f)", self._threshold, cv)

    def _update_motion(self, red_value: float) -> None:
        self._raw.append(red_value)
        values = np.fromiter(self._raw, dtype=np.float64)
        change = float(values.max() - values.min()) / max(float(values.mean()), 1.0)
        indicator = 1.0 if change > MOTION_CHANGE else 0.0
        self._motion = MOTION_DECAY * self._motion + (1.0 - MOTION_DECAY) * indicator
