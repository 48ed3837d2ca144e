"""
Processing configuration.

Every tunable threshold of the pipeline lives in one frozen
:class:`ProcessorConfig`.  Processor variants (more sensitive, more
specific) are presets of the same configuration rather than subclasses::

    cfg = ProcessorConfig.preset("specific")
    cfg = dataclasses.replace(cfg, detection_on_frames=6)
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Dict, Tuple


@dataclass(frozen=True)
class ProcessorConfig:
    # -- timing ----------------------------------------------------------
    fps: float = 30.0                      # nominal rate, used by the trend analyzer

    # -- frame sampler ---------------------------------------------------
    roi_fraction: float = 0.5              # of the smaller frame dimension
    red_dominance: float = 1.3             # red / max(green, blue) to keep a pixel
    min_retained_pixels: int = 50
    min_coverage: float = 0.3              # retained / ROI area
    min_contrast: float = 2.0              # max - min red over retained pixels
    texture_scale: float = 64.0            # mean |edge| that maps to texture 1.0
    gain_history: int = 60                 # ~2 s, longer than one beat down to 40 BPM
    gain_min_history: int = 5
    gain_dead_band: float = 0.15           # relative band around each gain boundary
    noise_floor: float = 5.0
    weak_signal_level: float = 50.0
    weak_gain: float = 1.2
    very_weak_gain: float = 1.5
    low_light_level: float = 15.0
    overexposed_level: float = 250.0
    overexposed_fraction: float = 0.5

    # -- calibration -----------------------------------------------------
    calibration_samples: int = 20
    calibration_min_value: float = 10.0
    calibration_window_ms: float = 10_000.0
    min_red_threshold: float = 40.0
    max_red_threshold: float = 250.0
    calibration_floor: float = 30.0
    calibration_ceiling: float = 250.0

    # -- filters ---------------------------------------------------------
    kalman_q: float = 0.1
    kalman_r: float = 0.01
    sg_window: int = 9
    sg_polyorder: int = 2

    # -- trend / biophysical ---------------------------------------------
    trend_window: int = 30
    pulsatility_history: int = 30
    pulsatility_min: float = 0.005
    pulsatility_optimal: Tuple[float, float] = (0.02, 0.5)
    pulsatility_max: float = 1.0
    red_to_green_range: Tuple[float, float] = (1.3, 6.0)
    red_to_blue_range: Tuple[float, float] = (1.3, 7.0)
    red_value_range: Tuple[float, float] = (15.0, 250.0)

    # -- fusion & hysteresis ---------------------------------------------
    # order: red channel, stability, pulsatility, biophysical, periodicity
    fusion_weights: Tuple[float, float, float, float, float] = (0.30, 0.20, 0.25, 0.10, 0.15)
    min_stability: float = 0.3
    min_pulsatility: float = 0.2
    min_periodicity: float = 0.2
    max_texture: float = 0.6
    default_detection_threshold: float = 0.5
    threshold_calibration_samples: int = 20
    detection_on_frames: int = 5
    detection_off_frames: int = 8
    detection_timeout_ms: float = 3000.0
    quality_history: int = 10
    motion_artifact_threshold: float = 0.75
    reject_non_physiological: bool = False
    weak_signal_quality: int = 30

    # -- beats & heart rate ----------------------------------------------
    peak_half_window: int = 7
    min_peak_amplitude: float = 0.5
    refractory_ms: float = 250.0
    bpm_history: int = 12
    bpm_smoothing: float = 0.2
    min_bpm: float = 40.0
    max_bpm: float = 200.0

    # -- HRV & arrhythmia ------------------------------------------------
    rr_capacity: int = 100
    rr_min_intervals: int = 100
    rmssd_threshold: float = 45.0
    sdnn_threshold: float = 100.0
    pnn50_threshold: float = 0.1
    shannon_threshold: float = 1.8
    sample_entropy_threshold: float = 1.4
    premature_fraction: float = 0.25
    entropy_bin_ms: float = 20.0
    confirmation_cycles: int = 3

    # -- blood pressure --------------------------------------------------
    bp_min_samples: int = 30
    bp_window: int = 150
    bp_buffer: int = 10
    bp_alpha: float = 0.7

    # -- SpO2 ------------------------------------------------------------
    spo2_window_seconds: float = 10.0
    spo2_min_seconds: float = 2.0

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    @classmethod
    def preset(cls, name: str = "balanced") -> "ProcessorConfig":
        """Return a named preset (``balanced``, ``sensitive`` or ``specific``)."""
        try:
            overrides = _PRESETS[name]
        except KeyError:
            raise ValueError(
                f"Unknown preset {name!r}; choose one of {sorted(_PRESETS)}"
            ) from None
        return replace(cls(), **overrides)

    def validate(self) -> "ProcessorConfig":
        """Raise ``ValueError`` if the configuration is inconsistent."""
        if not 0.0 < self.roi_fraction <= 1.0:
            raise ValueError("roi_fraction must be in (0, 1]")
        if self.red_dominance < 1.0:
            raise ValueError("red_dominance must be >= 1.0")
        if self.sg_window % 2 == 0 or self.sg_window <= self.sg_polyorder:
            raise ValueError("sg_window must be odd and larger than sg_polyorder")
        if self.min_red_threshold >= self.max_red_threshold:
            raise ValueError("min_red_threshold must be below max_red_threshold")
        if abs(sum(self.fusion_weights) - 1.0) > 1e-6:
            raise ValueError("fusion_weights must sum to 1")
        if self.detection_on_frames < 1 or self.detection_off_frames < 1:
            raise ValueError("hysteresis frame counts must be positive")
        if not 0 < self.rr_min_intervals <= self.rr_capacity:
            raise ValueError("rr_min_intervals must be in (0, rr_capacity]")
        if not 0.0 <= self.gain_dead_band < 1.0:
            raise ValueError("gain_dead_band must be in [0, 1)")
        if not 0.0 < self.bp_alpha <= 1.0:
            raise ValueError("bp_alpha must be in (0, 1]")
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, (int, float)) and not isinstance(value, bool) and value < 0:
                raise ValueError(f"{f.name} must not be negative")
        return self


_PRESETS: Dict[str, dict] = {
    "balanced": {},
    "sensitive": {
        "red_dominance": 1.2,
        "min_coverage": 0.2,
        "detection_on_frames": 3,
        "detection_off_frames": 12,
        "min_pulsatility": 0.1,
    },
    "specific": {
        "red_dominance": 1.5,
        "min_coverage": 0.5,
        "detection_on_frames": 8,
        "detection_off_frames": 6,
        "reject_non_physiological": True,
    },
}
