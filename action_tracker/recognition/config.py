"""Configuration for the real-time action recognition engine.

Settings include:
- CANONICAL_JOINTS: joint order used by the keypoint encoder (3 values per joint).
- WINDOW_CAPACITY / EVICTION_STRIDE: classifier window length and batch eviction size.
- TARGET_LABEL / NEGATIVE_LABEL: classifier labels for the target pose and "no pose".
- TARGET_THRESHOLD / NEGATIVE_THRESHOLD / FALLBACK_THRESHOLD: decision tiers.
- VISIBILITY_THRESHOLD: confidence at which a joint counts as visible (area, overlay).

All values can be overridden via ACTION_TRACKER_* environment variables to ease
experimentation, or loaded from a TOML/JSON file with `load_config_from_file`.
"""

from __future__ import annotations

import json
import logging
import os
import warnings
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

from action_tracker.env import get_env
from action_tracker.recognition.errors import ConfigurationError

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    try:
        import tomli as tomllib  # type: ignore
    except ModuleNotFoundError:
        tomllib = None  # type: ignore[assignment]


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger("action_tracker.recognition")
    level_name = get_env("LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if level_name:
        level = getattr(logging, level_name.upper(), logging.INFO)
        logger.setLevel(level)
    return logger


RECOGNITION_LOGGER = _configure_logger()
logger = RECOGNITION_LOGGER

# Joint order expected by the pose classifier: a (3, 18) block per frame.
CANONICAL_JOINTS: Tuple[str, ...] = (
    "nose",
    "neck",
    "right_shoulder",
    "right_elbow",
    "right_wrist",
    "left_shoulder",
    "left_elbow",
    "left_wrist",
    "right_hip",
    "right_knee",
    "right_ankle",
    "left_hip",
    "left_knee",
    "left_ankle",
    "right_eye",
    "left_eye",
    "right_ear",
    "left_ear",
)


def _get_env_float(key: str, default: float) -> float:
    raw = get_env(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_env_int(key: str, default: int) -> int:
    raw = get_env(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_str(key: str, default: str) -> str:
    raw = get_env(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _load_toml_file(path: Path) -> Dict[str, Any]:
    if tomllib is None:
        raise ImportError("TOML configuration requires Python 3.11+ or the 'tomli' package.")
    with path.open("rb") as handle:
        return tomllib.load(handle)


@dataclass(frozen=True)
class EngineConfig:
    """Value object parameterising one recognition engine."""

    joints: Tuple[str, ...] = CANONICAL_JOINTS
    window_capacity: int = 90
    eviction_stride: int = 10
    target_label: str = "target"
    negative_label: str = "no_pose"
    target_threshold: float = 0.8
    negative_threshold: float = 0.8
    fallback_threshold: float = 0.6
    visibility_threshold: float = 0.2

    @property
    def joint_count(self) -> int:
        return len(self.joints)

    @property
    def frame_length(self) -> int:
        """Length of one encoded frame: x, y and confidence per joint."""
        return 3 * len(self.joints)

    def validate(self) -> "EngineConfig":
        if not self.joints:
            raise ConfigurationError("joints cannot be empty.")
        if len(set(self.joints)) != len(self.joints):
            raise ConfigurationError(f"joints must be unique; received {list(self.joints)!r}.")
        if self.window_capacity < 1:
            raise ConfigurationError(f"window_capacity must be >= 1; received {self.window_capacity}.")
        if not 1 <= self.eviction_stride <= self.window_capacity:
            raise ConfigurationError(
                f"eviction_stride must be within [1, window_capacity={self.window_capacity}]; "
                f"received {self.eviction_stride}."
            )
        for name in ("target_threshold", "negative_threshold", "fallback_threshold", "visibility_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1]; received {value}.")
        if not self.target_label or not self.negative_label:
            raise ConfigurationError("target_label and negative_label cannot be empty.")
        if self.target_label == self.negative_label:
            raise ConfigurationError("target_label and negative_label must differ.")
        return self

    def with_overrides(self, **changes: Any) -> "EngineConfig":
        return replace(self, **changes).validate()

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["joints"] = list(self.joints)
        return payload


def _coerce_joints(raw: Any, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if isinstance(raw, str):
        entries = [entry.strip() for entry in raw.split(",")]
    elif isinstance(raw, (list, tuple)):
        entries = [str(entry).strip() for entry in raw]
    else:
        return default
    cleaned = tuple(entry for entry in entries if entry)
    return cleaned or default


def _engine_from_mapping(body: Mapping[str, Any]) -> EngineConfig:
    base = EngineConfig()
    try:
        return EngineConfig(
            joints=_coerce_joints(body.get("joints"), base.joints),
            window_capacity=_get_env_int("WINDOW_CAPACITY", int(body.get("window_capacity", base.window_capacity))),
            eviction_stride=_get_env_int("EVICTION_STRIDE", int(body.get("eviction_stride", base.eviction_stride))),
            target_label=_get_env_str("TARGET_LABEL", str(body.get("target_label", base.target_label))),
            negative_label=_get_env_str("NEGATIVE_LABEL", str(body.get("negative_label", base.negative_label))),
            target_threshold=_get_env_float(
                "TARGET_THRESHOLD", float(body.get("target_threshold", base.target_threshold))
            ),
            negative_threshold=_get_env_float(
                "NEGATIVE_THRESHOLD", float(body.get("negative_threshold", base.negative_threshold))
            ),
            fallback_threshold=_get_env_float(
                "FALLBACK_THRESHOLD", float(body.get("fallback_threshold", base.fallback_threshold))
            ),
            visibility_threshold=_get_env_float(
                "VISIBILITY_THRESHOLD", float(body.get("visibility_threshold", base.visibility_threshold))
            ),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid recognition settings: {exc}") from exc


def default_engine_config() -> EngineConfig:
    """Built-in defaults with ACTION_TRACKER_* environment overrides applied."""
    return _engine_from_mapping({})


def load_config_from_file(config_path: str | Path) -> EngineConfig:
    """Load engine settings from TOML or JSON and apply env var overrides.

    Env vars take precedence over file values. Supports either a root-level
    mapping or a [recognition] table/object in the config file.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    if not path.is_file():
        raise ValueError(f"Expected a config file, but got a directory: {path}")

    suffix = path.suffix.lower()
    if suffix == ".toml":
        raw_config = _load_toml_file(path)
    elif suffix == ".json":
        with path.open("r", encoding="utf-8") as handle:
            raw_config = json.load(handle)
    else:
        raise ValueError(f"Unsupported config format for {path}; expected .toml or .json.")

    config_body = raw_config.get("recognition", raw_config) if isinstance(raw_config, dict) else raw_config
    if not isinstance(config_body, dict):
        raise ValueError("Invalid config structure; expected a dict or a [recognition] section.")
    return engine_config_from_mapping(config_body)


def engine_config_from_mapping(body: Mapping[str, Any]) -> EngineConfig:
    return _engine_from_mapping(body).validate()


DEFAULT_ENGINE_CONFIG = default_engine_config()

WINDOW_CAPACITY: int = DEFAULT_ENGINE_CONFIG.window_capacity
EVICTION_STRIDE: int = DEFAULT_ENGINE_CONFIG.eviction_stride
TARGET_LABEL: str = DEFAULT_ENGINE_CONFIG.target_label
NEGATIVE_LABEL: str = DEFAULT_ENGINE_CONFIG.negative_label
TARGET_THRESHOLD: float = DEFAULT_ENGINE_CONFIG.target_threshold
NEGATIVE_THRESHOLD: float = DEFAULT_ENGINE_CONFIG.negative_threshold
FALLBACK_THRESHOLD: float = DEFAULT_ENGINE_CONFIG.fallback_threshold
VISIBILITY_THRESHOLD: float = DEFAULT_ENGINE_CONFIG.visibility_threshold

__all__ = [
    "RECOGNITION_LOGGER",
    "CANONICAL_JOINTS",
    "EngineConfig",
    "DEFAULT_ENGINE_CONFIG",
    "WINDOW_CAPACITY",
    "EVICTION_STRIDE",
    "TARGET_LABEL",
    "NEGATIVE_LABEL",
    "TARGET_THRESHOLD",
    "NEGATIVE_THRESHOLD",
    "FALLBACK_THRESHOLD",
    "VISIBILITY_THRESHOLD",
    "default_engine_config",
    "engine_config_from_mapping",
    "load_config_from_file",
    "validate_config_values",
]


def _check_window(config: EngineConfig) -> None:
    if config.window_capacity < 1 or not 1 <= config.eviction_stride <= config.window_capacity:
        warnings.warn(
            f"Window capacity {config.window_capacity} / stride {config.eviction_stride} is invalid; "
            "the engine will refuse to start.",
            RuntimeWarning,
            stacklevel=2,
        )
        logger.warning(
            "Invalid window settings: capacity=%s stride=%s", config.window_capacity, config.eviction_stride
        )
    elif config.eviction_stride > config.window_capacity // 2:
        warnings.warn(
            f"EVICTION_STRIDE={config.eviction_stride} drops more than half of the window per step; "
            "predictions will refresh slowly.",
            RuntimeWarning,
            stacklevel=2,
        )
        logger.warning("EVICTION_STRIDE is large relative to the window: %s", config.eviction_stride)


def _check_thresholds(config: EngineConfig) -> None:
    for name in ("target_threshold", "negative_threshold", "fallback_threshold", "visibility_threshold"):
        value = getattr(config, name)
        if not 0.0 <= value <= 1.0:
            warnings.warn(
                f"{name}={value} is outside [0,1]; please correct the environment or config.",
                RuntimeWarning,
                stacklevel=2,
            )
            logger.warning("%s is outside [0,1]: %s", name, value)
    if config.fallback_threshold > config.target_threshold:
        warnings.warn(
            f"fallback_threshold={config.fallback_threshold} exceeds target_threshold={config.target_threshold}.",
            RuntimeWarning,
            stacklevel=2,
        )
        logger.warning(
            "fallback_threshold (%s) exceeds target_threshold (%s)",
            config.fallback_threshold,
            config.target_threshold,
        )


def validate_config_values(config: EngineConfig | None = None) -> None:
    """Validate current config values and emit warnings for suspicious settings."""
    current = config or DEFAULT_ENGINE_CONFIG
    _check_window(current)
    _check_thresholds(current)


# Run validation at import to surface misconfigurations early.
validate_config_values()
