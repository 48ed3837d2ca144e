"""
Unit tests for CalibrationHandler.
"""

from __future__ import annotations

import numpy as np
import pytest

from ppg_vitals.calibration import CalibrationHandler, trimmed


def feed(handler, values, step_ms=33.0, start_ms=0.0):
    return [handler.add_sample(v, start_ms + i * step_ms) for i, v in enumerate(values)]


class TestTrimmed:

    def test_drops_ten_percent_each_tail(self):
        out = trimmed(range(20), 0.1)
        assert list(out) == list(range(2, 18))

    def test_short_input_kept(self):
        assert list(trimmed([3, 1, 2], 0.1)) == [1, 2, 3]


class TestCalibrationHandler:

    def test_completes_exactly_once(self):
        handler = CalibrationHandler()
        results = feed(handler, [100.0 + i for i in range(20)])
        assert results == [False] * 19 + [True]
        assert handler.is_calibrated
        assert handler.progress == 1.0

    def test_thresholds_from_trimmed_statistics(self):
        handler = CalibrationHandler()
        feed(handler, [100.0 + i for i in range(20)])
        kept = np.arange(102.0, 118.0)
        state = handler.state
        assert state.baseline_mean == pytest.approx(kept.mean())
        assert state.baseline_variance == pytest.approx(kept.var())
        assert state.min_threshold == pytest.approx(kept.mean() - 2 * kept.std())
        assert state.max_threshold == pytest.approx(kept.mean() + 5 * kept.std())

    def test_floor_applied(self):
        handler = CalibrationHandler()
        feed(handler, [20.0 + i for i in range(20)])
        assert handler.state.min_threshold == handler.config.calibration_floor

    def test_ceiling_applied(self):
        handler = CalibrationHandler()
        feed(handler, [200.0 + 2 * i for i in range(20)])
        assert handler.state.max_threshold == handler.config.calibration_ceiling

    def test_idempotent_once_calibrated(self):
        handler = CalibrationHandler()
        feed(handler, [100.0 + i for i in range(20)])
        before = handler.state
        results = feed(handler, [500.0, 12.0, 250.0] * 10, start_ms=1000.0)
        assert not any(results)
        assert handler.state == before

    def test_trivial_samples_ignored(self):
        handler = CalibrationHandler()
        feed(handler, [0.0, 5.0, 9.9] * 5)
        assert handler.progress == 0.0
        assert not handler.is_calibrated

    def test_window_expiry_keeps_default_thresholds(self):
        handler = CalibrationHandler()
        feed(handler, [100.0] * 5)
        assert not handler.add_sample(100.0, handler.config.calibration_window_ms + 1.0)
        assert handler.expired
        feed(handler, [100.0] * 30, start_ms=20_000.0)
        assert not handler.is_calibrated
        assert handler.state.min_threshold == handler.config.min_red_threshold
        assert handler.state.max_threshold == handler.config.max_red_threshold

    def test_reset_restores_defaults_and_allows_recalibration(self):
        handler = CalibrationHandler()
        feed(handler, [100.0 + i for i in range(20)])
        handler.reset()
        assert not handler.is_calibrated
        assert handler.state.min_threshold == handler.config.min_red_threshold
        assert feed(handler, [80.0 + i for i in range(20)])[-1] is True
