"""
Unit tests for the Kalman and Savitzky–Golay filters.
Run with:  pytest tests/
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from ppg_vitals.errors import NonFiniteInputError, VitalsError
from ppg_vitals.filters import KalmanFilter, SavitzkyGolayFilter


# ---------------------------------------------------------------------------
# KalmanFilter tests
# ---------------------------------------------------------------------------

class TestKalmanFilter:

    def test_first_update_follows_gain_formula(self):
        kf = KalmanFilter(process_variance=0.1, measurement_variance=0.01)
        x = kf.update(100.0)
        k = 1.1 / (1.1 + 0.01)
        assert x == pytest.approx(k * 100.0)
        assert kf.p == pytest.approx(1.1 * (1.0 - k))

    def test_converges_to_constant_input(self):
        kf = KalmanFilter()
        for _ in range(50):
            x = kf.update(10.0)
        assert x == pytest.approx(10.0, abs=1e-6)

    def test_reset_restores_initial_state(self):
        kf = KalmanFilter()
        kf.update(42.0)
        kf.reset()
        assert kf.x == 0.0
        assert kf.p == 1.0

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_non_finite_input_rejected_without_state_change(self, bad):
        kf = KalmanFilter()
        kf.update(50.0)
        x, p = kf.x, kf.p
        with pytest.raises(NonFiniteInputError):
            kf.update(bad)
        assert kf.x == x
        assert kf.p == p

    def test_non_finite_error_is_value_error(self):
        kf = KalmanFilter()
        with pytest.raises(ValueError):
            kf.update(math.nan)
        with pytest.raises(VitalsError):
            kf.update(math.nan)


# ---------------------------------------------------------------------------
# SavitzkyGolayFilter tests
# ---------------------------------------------------------------------------

class TestSavitzkyGolayFilter:

    def test_coefficients_have_unit_gain(self):
        sg = SavitzkyGolayFilter(9, 2)
        coeffs = sg.coefficients
        assert len(coeffs) == 9
        assert coeffs.sum() == pytest.approx(1.0)

    def test_passes_raw_input_until_window_fills(self):
        sg = SavitzkyGolayFilter(9, 2)
        values = [3.0, 9.0, 1.0, 7.0, 2.0, 8.0, 4.0, 6.0]
        outputs = [sg.filter(v) for v in values]
        assert outputs == values
        assert not sg.is_warm

    def test_constant_signal_unchanged(self):
        sg = SavitzkyGolayFilter(9, 2)
        outputs = [sg.filter(5.0) for _ in range(20)]
        assert outputs[-1] == pytest.approx(5.0)

    def test_linear_ramp_returns_window_centre(self):
        sg = SavitzkyGolayFilter(9, 2)
        out = None
        for v in range(9):
            out = sg.filter(float(v))
        assert out == pytest.approx(4.0)

    def test_smooths_noise(self):
        rng = np.random.default_rng(0)
        noisy = 100.0 + rng.normal(0.0, 5.0, 300)
        sg = SavitzkyGolayFilter(9, 2)
        out = np.array([sg.filter(v) for v in noisy])[20:]
        assert out.std() < noisy[20:].std()

    def test_even_window_rejected(self):
        with pytest.raises(ValueError):
            SavitzkyGolayFilter(8, 2)

    def test_nan_rejected(self):
        sg = SavitzkyGolayFilter()
        with pytest.raises(NonFiniteInputError):
            sg.filter(math.nan)

    def test_reset_restarts_warm_up(self):
        sg = SavitzkyGolayFilter()
        for _ in range(12):
            sg.filter(1.0)
        sg.reset()
        assert sg.filter(7.0) == 7.0
