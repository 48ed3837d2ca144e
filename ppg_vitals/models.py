"""
Value objects passed between pipeline stages.

Every type here is an immutable dataclass: stages build a fresh value per
frame instead of mutating a shared one, so a snapshot handed to the caller
can never change underneath it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


# ---------------------------------------------------------------------------
# Frame sampling
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Roi:
    x:      int
    y:      int
    width:  int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height


EMPTY_ROI = Roi(0, 0, 0, 0)


@dataclass(frozen=True)
class RawFrameSample:
    """
    One frame reduced to a scalar photometric sample.

    ``red_value`` is 0 whenever the frame was rejected; ``rejection`` then
    names the rule that rejected it.
    """

    red_value:          float
    texture_score:      float
    red_to_green_ratio: float
    red_to_blue_ratio:  float
    roi:                Roi
    green_value:        float = 0.0
    blue_value:         float = 0.0
    pixel_count:        int = 0
    gain:               float = 1.0
    low_light:          bool = False
    overexposed:        bool = False
    rejection:          Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.rejection is None and self.red_value > 0.0

    @classmethod
    def empty(
        cls,
        reason: str,
        roi: Roi = EMPTY_ROI,
        low_light: bool = False,
        overexposed: bool = False,
    ) -> "RawFrameSample":
        return cls(
            red_value=0.0,
            texture_score=0.0,
            red_to_green_ratio=0.0,
            red_to_blue_ratio=0.0,
            roi=roi,
            low_light=low_light,
            overexposed=overexposed,
            rejection=reason,
        )


# ---------------------------------------------------------------------------
# Calibration and detection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CalibrationState:
    baseline_mean:     float = 0.0
    baseline_variance: float = 0.0
    min_threshold:     float = 40.0
    max_threshold:     float = 250.0
    is_calibrated:     bool = False


@dataclass(frozen=True)
class DetectorScores:
    red_channel: float
    stability:   float
    pulsatility: float
    biophysical: float
    periodicity: float

    def weighted(self, weights) -> float:
        """Weighted sum in field order (red, stability, pulsatility, biophysical, periodicity)."""
        w_red, w_stab, w_puls, w_bio, w_per = weights
        return (
            w_red * self.red_channel
            + w_stab * self.stability
            + w_puls * self.pulsatility
            + w_bio * self.biophysical
            + w_per * self.periodicity
        )


class TrendClass(Enum):
    HIGHLY_STABLE     = "highly_stable"
    STABLE            = "stable"
    MODERATELY_STABLE = "moderately_stable"
    UNSTABLE          = "unstable"
    HIGHLY_UNSTABLE   = "highly_unstable"
    NON_PHYSIOLOGICAL = "non_physiological"


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of one Signal Analyzer step."""

    finger_detected: bool
    quality:         int
    composite:       float
    threshold:       float
    qualifies:       bool
    scores:          DetectorScores
    trend:           TrendClass
    motion_artifact: float


# ---------------------------------------------------------------------------
# Arrhythmia
# ---------------------------------------------------------------------------

class ArrhythmiaType(Enum):
    NONE                 = "none"
    BRADYCARDIA          = "bradycardia"
    TACHYCARDIA          = "tachycardia"
    FIBRILLATION_PATTERN = "fibrillation_pattern"
    SINUS_ARRHYTHMIA     = "sinus_arrhythmia"
    ECTOPIC_PATTERN      = "ectopic_pattern"


class ArrhythmiaSeverity(Enum):
    NONE     = 0
    MINOR    = 1
    MODERATE = 2
    SEVERE   = 3


class ArrhythmiaState(Enum):
    LEARNING   = "learning"      # RR buffer not yet large enough
    NORMAL     = "normal"
    ARRHYTHMIA = "arrhythmia"


@dataclass(frozen=True)
class ArrhythmiaAnalysis:
    has_arrhythmia:    bool
    type:              ArrhythmiaType
    severity:          ArrhythmiaSeverity
    confidence:        float
    risk_score:        float
    rmssd:             float
    sdnn:              float
    pnn50:             float
    entropy:           float
    sample_entropy:    float = 0.0
    lf_hf_ratio:       float = 1.0
    premature_beat:    bool = False
    abnormal_beat_pct: float = 0.0


@dataclass(frozen=True)
class ArrhythmiaStatus:
    state:           ArrhythmiaState = ArrhythmiaState.LEARNING
    confirmed_count: int = 0

    @property
    def has_arrhythmia(self) -> bool:
        return self.state is ArrhythmiaState.ARRHYTHMIA


# ---------------------------------------------------------------------------
# Blood pressure
# ---------------------------------------------------------------------------

class BloodPressureStatus(Enum):
    NOT_READY = "not_ready"      # too few samples, values are 0/0
    UNTRUSTED = "untrusted"      # mid-range default, not a measurement
    READY     = "ready"


@dataclass(frozen=True)
class BloodPressureEstimate:
    systolic:  int
    diastolic: int
    status:    BloodPressureStatus = BloodPressureStatus.READY

    @property
    def is_estimate(self) -> bool:
        return self.status is BloodPressureStatus.READY


BP_NOT_READY = BloodPressureEstimate(0, 0, BloodPressureStatus.NOT_READY)
BP_UNTRUSTED = BloodPressureEstimate(120, 80, BloodPressureStatus.UNTRUSTED)


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VitalSignsSnapshot:
    """Externally visible result of one processed frame."""

    timestamp_ms:         float
    heart_rate:           int
    spo2:                 int
    blood_pressure:       BloodPressureEstimate
    arrhythmia_status:    ArrhythmiaStatus
    signal_quality:       int
    finger_detected:      bool
    roi:                  Roi
    perfusion_index:      float = 0.0
    calibration_progress: float = 0.0
    arrhythmia:           Optional[ArrhythmiaAnalysis] = None
