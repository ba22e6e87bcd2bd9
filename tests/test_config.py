from __future__ import annotations

import importlib
import json

import pytest

from action_tracker.recognition.config import (
    CANONICAL_JOINTS,
    EngineConfig,
    default_engine_config,
    load_config_from_file,
    validate_config_values,
)
from action_tracker.recognition.errors import ConfigurationError


def _reload_config_with_env(monkeypatch, **env_vars):
    import action_tracker.recognition.config as config

    for key, value in env_vars.items():
        monkeypatch.setenv(key, str(value))
    return importlib.reload(config)


def test_defaults():
    config = EngineConfig()
    assert config.joints == CANONICAL_JOINTS
    assert config.joint_count == 18
    assert config.frame_length == 54
    assert (config.window_capacity, config.eviction_stride) == (90, 10)
    assert config.validate() is config


def test_config_env_overrides(monkeypatch):
    config = _reload_config_with_env(
        monkeypatch,
        ACTION_TRACKER_WINDOW_CAPACITY="30",
        ACTION_TRACKER_EVICTION_STRIDE="5",
        ACTION_TRACKER_TARGET_THRESHOLD="0.7",
        ACTION_TRACKER_TARGET_LABEL="squat",
    )
    assert config.WINDOW_CAPACITY == 30
    assert config.EVICTION_STRIDE == 5
    assert config.TARGET_THRESHOLD == 0.7
    assert config.TARGET_LABEL == "squat"

    # Clean up by reloading with env cleared.
    for key in ("WINDOW_CAPACITY", "EVICTION_STRIDE", "TARGET_THRESHOLD", "TARGET_LABEL"):
        monkeypatch.delenv(f"ACTION_TRACKER_{key}", raising=False)
    importlib.reload(config)


def test_malformed_env_values_fall_back(monkeypatch):
    monkeypatch.setenv("ACTION_TRACKER_WINDOW_CAPACITY", "ninety")
    monkeypatch.setenv("ACTION_TRACKER_FALLBACK_THRESHOLD", "")
    config = default_engine_config()
    assert config.window_capacity == 90
    assert config.fallback_threshold == 0.6


@pytest.mark.parametrize(
    "changes",
    [
        {"window_capacity": 0},
        {"eviction_stride": 0},
        {"window_capacity": 5, "eviction_stride": 6},
        {"target_threshold": 1.2},
        {"visibility_threshold": -0.1},
        {"joints": ()},
        {"joints": ("nose", "nose")},
        {"target_label": ""},
        {"negative_label": "target"},
    ],
)
def test_validate_rejects_bad_settings(changes):
    with pytest.raises(ConfigurationError):
        EngineConfig(**changes).validate()
    with pytest.raises(ValueError):
        EngineConfig().with_overrides(**changes)


def test_load_toml_with_recognition_table(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text(
        "[recognition]\nwindow_capacity = 30\neviction_stride = 3\nfallback_threshold = 0.5\n"
        'joints = ["nose", "neck"]\n',
        encoding="utf-8",
    )
    config = load_config_from_file(path)
    assert config.window_capacity == 30
    assert config.eviction_stride == 3
    assert config.fallback_threshold == 0.5
    assert config.joints == ("nose", "neck")
    assert config.target_threshold == 0.8


def test_load_json_root_mapping_and_env_precedence(tmp_path, monkeypatch):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"window_capacity": 40, "target_label": "jump"}), encoding="utf-8")
    monkeypatch.setenv("ACTION_TRACKER_WINDOW_CAPACITY", "50")

    config = load_config_from_file(path)
    assert config.window_capacity == 50
    assert config.target_label == "jump"


def test_load_config_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config_from_file(tmp_path / "missing.toml")
    with pytest.raises(ValueError):
        load_config_from_file(tmp_path)
    bad_suffix = tmp_path / "settings.yaml"
    bad_suffix.write_text("window_capacity: 3", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config_from_file(bad_suffix)
    invalid = tmp_path / "invalid.json"
    invalid.write_text(json.dumps({"window_capacity": 4, "eviction_stride": 9}), encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config_from_file(invalid)


def test_validate_config_values_warns_on_large_stride():
    with pytest.warns(RuntimeWarning):
        validate_config_values(EngineConfig(window_capacity=10, eviction_stride=8))


def test_app_config_from_toml(tmp_path, monkeypatch):
    from action_tracker import config as app_config

    path = tmp_path / "action_tracker.toml"
    path.write_text(
        'model_path = "models/squat.npz"\ncamera_index = 2\nrotation_angle = 90\n\n'
        "[recognition]\nwindow_capacity = 60\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("ACTION_TRACKER_CONFIG", str(path))
    app_config.get_config.cache_clear()
    try:
        settings = app_config.get_config()
        assert settings.camera_index == 2
        assert settings.rotation_angle == 90.0
        assert settings.frame_rate == 30.0
        assert settings.model_path.name == "squat.npz"
        assert settings.engine.window_capacity == 60

        payload = app_config.as_dict()
        assert payload["source"] == str(path)
        assert payload["recognition"]["window_capacity"] == 60
        assert payload["recognition"]["joints"][1] == "neck"
    finally:
        app_config.get_config.cache_clear()


def test_app_config_defaults_without_file(tmp_path, monkeypatch):
    from action_tracker import config as app_config

    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("ACTION_TRACKER_CONFIG", raising=False)
    app_config.get_config.cache_clear()
    try:
        settings = app_config.get_config()
        assert settings.camera_index == 0
        assert settings.engine.window_capacity == 90
        assert app_config.as_dict()["source"] == "defaults"
    finally:
        app_config.get_config.cache_clear()
