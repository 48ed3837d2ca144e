"""
Unit tests for ProcessorConfig and its presets.
"""

from __future__ import annotations

import dataclasses

import pytest

from ppg_vitals.config import ProcessorConfig


class TestProcessorConfig:

    def test_defaults_validate(self):
        assert ProcessorConfig().validate() == ProcessorConfig()

    @pytest.mark.parametrize("name", ["balanced", "sensitive", "specific"])
    def test_presets_validate(self, name):
        ProcessorConfig.preset(name).validate()

    def test_presets_differ_in_tradeoff(self):
        sensitive = ProcessorConfig.preset("sensitive")
        specific = ProcessorConfig.preset("specific")
        assert sensitive.red_dominance < specific.red_dominance
        assert sensitive.detection_on_frames < specific.detection_on_frames
        assert specific.reject_non_physiological
        assert not ProcessorConfig.preset("balanced").reject_non_physiological

    def test_unknown_preset(self):
        with pytest.raises(ValueError):
            ProcessorConfig.preset("paranoid")

    def test_frozen(self):
        cfg = ProcessorConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.fps = 60.0

    @pytest.mark.parametrize("overrides", [
        {"roi_fraction": 0.0},
        {"red_dominance": 0.9},
        {"sg_window": 8},
        {"min_red_threshold": 300.0},
        {"fusion_weights": (0.5, 0.5, 0.5, 0.0, 0.0)},
        {"detection_on_frames": 0},
        {"rr_min_intervals": 101},
        {"bp_alpha": 0.0},
        {"gain_dead_band": 1.0},
        {"refractory_ms": -1.0},
    ])
    def test_validate_rejects(self, overrides):
        with pytest.raises(ValueError):
            dataclasses.replace(ProcessorConfig(), **overrides).validate()
