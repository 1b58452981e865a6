import json
import logging

import pytest

from scanner_frontend.config import ConfigError, ScannerConfig, load_config


def test_defaults_match_documented_values():
    cfg = ScannerConfig()
    assert cfg.gicp_maximum_iterations == 50
    assert cfg.gicp_maximum_correspondence_distance == pytest.approx(0.05)
    assert cfg.gicp_transformation_epsilon == pytest.approx(1e-8)
    assert cfg.gicp_euclidean_fitness_epsilon == pytest.approx(1.0)
    assert cfg.fitness_keyframe_threshold == pytest.approx(1.5)
    assert cfg.fitness_loop_threshold == pytest.approx(4.5)
    assert cfg.distance_threshold == pytest.approx(1.0)
    assert cfg.rotation_threshold == pytest.approx(1.0)
    assert cfg.loop_closure_skip == 4
    assert (cfg.k_disp_disp, cfg.k_rot_disp, cfg.k_rot_rot) == (0.001, 0.001, 0.001)
    assert (cfg.sigma_xy, cfg.sigma_th) == (0.002, 0.001)
    cfg.validate()


def test_from_mapping_logs_loaded_and_defaults(caplog):
    with caplog.at_level(logging.INFO, logger="scanner.config"):
        cfg = ScannerConfig.from_mapping({"loop_closure_skip": "6", "sigma_xy": 0.01, "bogus": 1})
    assert cfg.loop_closure_skip == 6
    assert isinstance(cfg.loop_closure_skip, int)
    assert cfg.sigma_xy == pytest.approx(0.01)
    text = caplog.text
    assert "[LOADED] loop_closure_skip = 6" in text
    assert "[NOT LOADED][DEFAULT SET] fitness_loop_threshold = 4.5" in text
    assert "bogus" in text


def test_from_mapping_rejects_non_numeric():
    with pytest.raises(ConfigError):
        ScannerConfig.from_mapping({"distance_threshold": "far"})


@pytest.mark.parametrize("field,value", [
    ("fitness_keyframe_threshold", -0.1),
    ("rotation_threshold", -1.0),
    ("sigma_th", -0.001),
    ("gicp_maximum_iterations", 0),
    ("loop_closure_skip", -1),
    ("loop_maximum_correspondence_distance", 0.01),
])
def test_validate_rejects_invalid(field, value):
    cfg = ScannerConfig(**{field: value})
    with pytest.raises(ConfigError):
        cfg.validate()


def test_config_error_is_value_error():
    assert issubclass(ConfigError, ValueError)


@pytest.mark.parametrize("wrap", [
    lambda d: d,
    lambda d: {"scanner": d},
    lambda d: {"/**": {"ros__parameters": d}},
])
def test_load_config_layouts(tmp_path, wrap):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps(wrap({"fitness_keyframe_threshold": 2.5})))
    cfg = load_config(str(path), overrides={"loop_closure_skip": 2, "sigma_th": None})
    assert cfg.fitness_keyframe_threshold == pytest.approx(2.5)
    assert cfg.loop_closure_skip == 2
    assert cfg.sigma_th == pytest.approx(0.001)


def test_load_config_validates(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"distance_threshold": -2}))
    with pytest.raises(ConfigError):
        load_config(str(path))
