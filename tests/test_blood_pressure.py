"""
Unit tests for the blood-pressure estimator.
"""

from __future__ import annotations

import numpy as np
import pytest

from ppg_vitals.blood_pressure import (
    BloodPressureEstimator,
    constrain,
    instantaneous_pressure,
)
from ppg_vitals.models import BloodPressureStatus

FPS = 30.0


def check_invariants(systolic, diastolic):
    assert 90 <= systolic <= 180
    assert 60 <= diastolic <= 110
    assert diastolic <= systolic - 20
    assert systolic - diastolic <= 80


def feed(estimator, values, step_ms=1000.0 / FPS):
    for i, v in enumerate(values):
        estimator.add_sample(v, i * step_ms)


class TestConstraints:

    def test_constrain_holds_for_any_input(self):
        rng = np.random.default_rng(4)
        for sys_in, dia_in in rng.uniform(-50.0, 400.0, size=(2000, 2)):
            check_invariants(*constrain(sys_in, dia_in))

    def test_instantaneous_model_holds_for_any_input(self):
        for ptt in np.linspace(0.0, 2000.0, 41):
            for amp in np.linspace(-10.0, 200.0, 43):
                check_invariants(*instantaneous_pressure(ptt, amp))

    def test_reference_point(self):
        # ptt 600 ms and no amplitude leaves the baseline untouched
        assert instantaneous_pressure(600.0, 0.0) == pytest.approx((120.0, 80.0))

    def test_pulse_pressure_band(self):
        assert constrain(100.0, 95.0) == (100.0, 80.0)
        assert constrain(180.0, 60.0) == (180.0, 100.0)


class TestBloodPressureEstimator:

    def test_not_ready_with_few_samples(self):
        est = BloodPressureEstimator()
        feed(est, np.full(29, 100.0))
        result = est.estimate()
        assert result.status is BloodPressureStatus.NOT_READY
        assert (result.systolic, result.diastolic) == (0, 0)
        assert not result.is_estimate

    def test_untrusted_without_peaks(self):
        est = BloodPressureEstimator()
        feed(est, np.full(60, 100.0))
        result = est.estimate()
        assert result.status is BloodPressureStatus.UNTRUSTED
        assert (result.systolic, result.diastolic) == (120, 80)

    def test_pulse_waveform_estimate(self):
        est = BloodPressureEstimator()
        t = np.arange(150) / FPS
        feed(est, 120.0 + 15.0 * np.sin(2 * np.pi * 1.25 * t))
        result = est.estimate()
        assert result.status is BloodPressureStatus.READY
        # ptt 800 ms -> ptt_factor -16; amplitude 30 -> saturated 100 -> amp_factor 30
        # systolic 120 - 16 + 30 = 134, diastolic 80 - 0.5 * 16 + 0.2 * 30 = 78
        assert (result.systolic, result.diastolic) == (134, 78)

    def test_estimates_always_within_clamps(self):
        rng = np.random.default_rng(5)
        est = BloodPressureEstimator()
        for _ in range(20):
            feed(est, 100.0 + rng.normal(0.0, 20.0, 150))
            result = est.estimate()
            if result.is_estimate:
                check_invariants(result.systolic, result.diastolic)

    def test_exponential_smoothing_tracks_change(self):
        est = BloodPressureEstimator()
        t = np.arange(150) / FPS
        feed(est, 120.0 + 15.0 * np.sin(2 * np.pi * 1.25 * t))
        first = est.estimate()
        # slower pulse (longer transit time) lowers the instantaneous estimate
        feed(est, 120.0 + 15.0 * np.sin(2 * np.pi * 0.75 * t))
        second = est.estimate()
        instant_sys, _ = instantaneous_pressure(1333.3, 30.0)
        assert instant_sys < second.systolic < first.systolic

    def test_reset(self):
        est = BloodPressureEstimator()
        feed(est, np.full(60, 100.0))
        est.reset()
        assert est.estimate().status is BloodPressureStatus.NOT_READY
