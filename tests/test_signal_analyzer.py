"""
Unit tests for TrendAnalyzer, BiophysicalValidator and SignalAnalyzer.
"""

from __future__ import annotations

import numpy as np
import pytest

from ppg_vitals.biophysical_validator import BiophysicalValidator, range_score
from ppg_vitals.config import ProcessorConfig
from ppg_vitals.models import CalibrationState, RawFrameSample, Roi, TrendClass
from ppg_vitals.signal_analyzer import SignalAnalyzer, red_channel_score, threshold_from_cv
from ppg_vitals.trend_analyzer import (
    TrendAnalyzer,
    count_direction_changes,
    periodicity_score,
    physiological_score,
    sign_pattern,
)

FPS = 30.0


def pulse(n: int, bpm: float = 75.0, mean: float = 120.0, amplitude: float = 15.0) -> np.ndarray:
    t = np.arange(n) / FPS
    return mean + amplitude * np.sin(2 * np.pi * bpm / 60.0 * t)


def finger_sample(red: float = 120.0) -> RawFrameSample:
    return RawFrameSample(
        red_value=red,
        texture_score=0.01,
        red_to_green_ratio=3.0,
        red_to_blue_ratio=4.0,
        roi=Roi(16, 16, 32, 32),
        green_value=40.0,
        blue_value=30.0,
        pixel_count=1024,
    )


# ---------------------------------------------------------------------------
# TrendAnalyzer
# ---------------------------------------------------------------------------

class TestTrendAnalyzer:

    def test_sign_pattern(self):
        assert sign_pattern([1, 2, 2, 1]) == "+=-"

    def test_direction_changes_ignore_flat_steps(self):
        assert count_direction_changes("+=-") == 1
        assert count_direction_changes("+-+-") == 3
        assert count_direction_changes("====") == 0

    def test_periodicity_band(self):
        assert periodicity_score(0.0) == 0.0
        assert periodicity_score(0.025) == pytest.approx(0.5)
        assert periodicity_score(0.2) == 1.0
        assert periodicity_score(0.8) == 0.0

    def test_physiological_band(self):
        assert physiological_score(75.0) == 1.0
        assert physiological_score(35.0) == 0.5
        assert physiological_score(190.0) == 0.5
        assert physiological_score(250.0) == 0.0

    def test_pulse_classified_stable(self):
        ta = TrendAnalyzer()
        for v in pulse(30):
            result = ta.update(v)
        assert ta.is_full
        assert result.physiological == 1.0
        assert result.periodicity == 1.0
        assert result.stability > 0.85
        assert result.trend_class in (TrendClass.HIGHLY_STABLE, TrendClass.STABLE)

    def test_flat_signal_non_physiological(self):
        ta = TrendAnalyzer()
        for _ in range(30):
            result = ta.update(100.0)
        assert result.periodicity == 0.0
        assert result.trend_class is TrendClass.NON_PHYSIOLOGICAL

    def test_noise_non_physiological(self):
        rng = np.random.default_rng(1)
        ta = TrendAnalyzer()
        for v in 100.0 + rng.normal(0.0, 5.0, 30):
            result = ta.update(v)
        assert result.trend_class is TrendClass.NON_PHYSIOLOGICAL

    def test_not_full_never_non_physiological(self):
        ta = TrendAnalyzer()
        for _ in range(10):
            result = ta.update(100.0)
        assert result.trend_class is not TrendClass.NON_PHYSIOLOGICAL


# ---------------------------------------------------------------------------
# BiophysicalValidator
# ---------------------------------------------------------------------------

class TestBiophysicalValidator:

    def test_range_score_linear_falloff(self):
        assert range_score(3.0, (1.3, 6.0)) == 1.0
        assert range_score(1.0, (1.3, 6.0)) == pytest.approx(1.0 - 0.3 / (0.7 * 4.7))
        assert range_score(20.0, (1.3, 6.0)) == 0.0

    def test_pulsatility_needs_history(self):
        bv = BiophysicalValidator()
        for v in pulse(9):
            bv.add_value(v)
        assert bv.pulsatility() == 0.0

    def test_pulse_scores_full_pulsatility(self):
        bv = BiophysicalValidator()
        for v in pulse(30):
            bv.add_value(v)
        assert bv.pulsatility() == pytest.approx(30.0 / 120.0, rel=0.05)
        assert bv.pulsatility_score() == 1.0
        assert bv.perfusion_index() == pytest.approx(100.0 * bv.pulsatility())

    def test_static_surface_scores_zero(self):
        bv = BiophysicalValidator()
        for _ in range(30):
            bv.add_value(120.0)
        assert bv.pulsatility_score() == 0.0

    def test_excessive_variation_scores_zero(self):
        bv = BiophysicalValidator()
        for v in pulse(30, mean=50.0, amplitude=45.0):
            bv.add_value(v)
        assert bv.pulsatility_score() == 0.0

    def test_channel_score(self):
        bv = BiophysicalValidator()
        assert bv.channel_score(finger_sample()) == pytest.approx(1.0)
        assert bv.channel_score(RawFrameSample.empty("too_few_pixels")) == 0.0


# ---------------------------------------------------------------------------
# SignalAnalyzer
# ---------------------------------------------------------------------------

class TestScores:

    def test_red_channel_plateau_and_falloff(self):
        cal = CalibrationState(min_threshold=40.0, max_threshold=250.0)
        assert red_channel_score(120.0, cal) == 1.0
        assert red_channel_score(30.0, cal) == pytest.approx(0.5)
        assert red_channel_score(0.0, cal) == 0.0

    def test_threshold_from_cv(self):
        assert threshold_from_cv(0.01) == 0.65
        assert threshold_from_cv(0.07) == 0.55
        assert threshold_from_cv(0.3) == 0.45


class TestHysteresis:

    def _detected(self, sa: SignalAnalyzer) -> SignalAnalyzer:
        for i in range(sa.config.detection_on_frames):
            sa.advance(True, i * 33.0)
        assert sa.is_finger_detected
        return sa

    def test_needs_n_on_consecutive_frames(self):
        sa = SignalAnalyzer()
        n_on = sa.config.detection_on_frames
        results = [sa.advance(True, i * 33.0) for i in range(n_on)]
        assert results == [False] * (n_on - 1) + [True]

    def test_single_bad_frame_does_not_drop_detection(self):
        sa = self._detected(SignalAnalyzer())
        n_on = sa.config.detection_on_frames
        seq = [False] + [True] * n_on
        assert all(sa.advance(q, 500.0 + i * 33.0) for i, q in enumerate(seq))

    def test_single_good_frame_does_not_raise_detection(self):
        sa = SignalAnalyzer()
        n_on = sa.config.detection_on_frames
        seq = [True] * (n_on - 1) + [False] + [True] * (n_on - 1)
        assert not any(sa.advance(q, i * 33.0) for i, q in enumerate(seq))

    def test_exactly_n_off_frames_required(self):
        sa = self._detected(SignalAnalyzer())
        n_off = sa.config.detection_off_frames
        results = [sa.advance(False, 200.0 + i * 33.0) for i in range(n_off)]
        assert results == [True] * (n_off - 1) + [False]

    def test_timeout_drops_detection(self):
        sa = self._detected(SignalAnalyzer())
        last = sa.state.last_detection_timestamp
        assert sa.advance(False, last + sa.config.detection_timeout_ms + 1.0) is False

    def test_rejected_sample_never_qualifies(self):
        sa = SignalAnalyzer()
        result = sa.process(RawFrameSample.empty("malformed"), None, CalibrationState(), 0.0)
        assert not result.qualifies
        assert result.quality == 0
        assert result.composite == 0.0


class TestSignalAnalyzer:

    def test_pulse_detected_with_quality(self):
        sa = SignalAnalyzer()
        cal = CalibrationState()
        results = [
            sa.process(finger_sample(v), v, cal, i * 1000.0 / FPS)
            for i, v in enumerate(pulse(60))
        ]
        first = next(i for i, r in enumerate(results) if r.finger_detected)
        assert first < 30
        assert results[-1].finger_detected
        assert 50 <= results[-1].quality <= 100

    def test_quality_zero_while_not_detected(self):
        sa = SignalAnalyzer()
        cal = CalibrationState()
        for i in range(30):
            r = sa.process(finger_sample(120.0), 120.0, cal, i * 33.0)
            assert not r.finger_detected
            assert r.quality == 0

    def test_adaptive_threshold_calibrated_from_red_values(self):
        sa = SignalAnalyzer()
        cal = CalibrationState()
        for i, v in enumerate(pulse(30)):
            sa.process(finger_sample(v), v, cal, i * 33.0)
        assert sa.threshold == threshold_from_cv(0.08)

    def test_textured_object_never_qualifies(self):
        sa = SignalAnalyzer()
        cal = CalibrationState()
        for i, v in enumerate(pulse(60)):
            s = RawFrameSample(v, 0.9, 3.0, 4.0, Roi(0, 0, 32, 32), pixel_count=1024)
            r = sa.process(s, v, cal, i * 33.0)
            assert not r.qualifies

    def test_specific_preset_rejects_non_physiological_trend(self):
        cfg = ProcessorConfig.preset("specific")
        sa = SignalAnalyzer(cfg)
        cal = CalibrationState()
        rng = np.random.default_rng(2)
        values = 120.0 + rng.normal(0.0, 4.0, 60)
        results = [sa.process(finger_sample(v), v, cal, i * 33.0) for i, v in enumerate(values)]
        assert all(r.composite == 0.0 for r in results[30:] if r.trend is TrendClass.NON_PHYSIOLOGICAL)
        assert not results[-1].finger_detected

    def test_reset(self):
        sa = SignalAnalyzer()
        cal = CalibrationState()
        for i, v in enumerate(pulse(60)):
            sa.process(finger_sample(v), v, cal, i * 33.0)
        sa.reset()
        assert not sa.is_finger_detected
        assert sa.threshold == sa.config.default_detection_threshold
        assert sa.trend.last is None
