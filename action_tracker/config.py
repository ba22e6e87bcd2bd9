from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from .env import get_env
from .recognition.config import EngineConfig, default_engine_config, engine_config_from_mapping

try:  # pragma: no cover - Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    try:
        import tomli as tomllib  # type: ignore
    except ModuleNotFoundError:
        tomllib = None  # type: ignore

DEFAULT_MODEL_PATH = Path("models/action_classifier.npz")


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=default_engine_config)
    model_path: Path = DEFAULT_MODEL_PATH
    camera_index: int = 0
    rotation_angle: float = 0.0
    frame_rate: float = 30.0


def _config_path() -> Path | None:
    """Resolve the TOML configuration file, if present."""
    env_override = get_env("CONFIG")
    if env_override:
        path = Path(env_override).expanduser()
        return path if path.exists() else None

    default_path = Path("config/action_tracker.toml")
    if default_path.exists():
        return default_path
    return None


def _load_toml(path: Path) -> Mapping[str, Any]:
    if tomllib is None:
        raise RuntimeError("TOML configuration requires Python 3.11+ or the 'tomli' package.")
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _coerce_number(raw: Any, default: float) -> float:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _build_config(raw: Mapping[str, Any]) -> AppConfig:
    defaults = AppConfig()
    section = raw.get("recognition")
    engine = engine_config_from_mapping(section if isinstance(section, Mapping) else {})

    model_raw = get_env("MODEL_PATH") or raw.get("model_path")
    model_path = Path(str(model_raw)).expanduser() if model_raw else DEFAULT_MODEL_PATH
    camera_index = int(_coerce_number(get_env("CAMERA_INDEX") or raw.get("camera_index"), defaults.camera_index))
    rotation_angle = _coerce_number(get_env("ROTATION_ANGLE") or raw.get("rotation_angle"), defaults.rotation_angle)
    frame_rate = _coerce_number(get_env("FRAME_RATE") or raw.get("frame_rate"), defaults.frame_rate)
    return AppConfig(
        engine=engine,
        model_path=model_path,
        camera_index=camera_index,
        rotation_angle=rotation_angle,
        frame_rate=frame_rate if frame_rate > 0 else defaults.frame_rate,
    )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load configuration once, falling back to built-in defaults."""
    path = _config_path()
    if not path:
        return _build_config({})
    data = _load_toml(path)
    return _build_config(data)


def as_dict() -> dict[str, Any]:
    """Return the effective configuration for debug/CLI display."""
    config = get_config()
    return {
        "recognition": config.engine.as_dict(),
        "model_path": str(config.model_path),
        "camera_index": config.camera_index,
        "rotation_angle": config.rotation_angle,
        "frame_rate": config.frame_rate,
        "source": str(_config_path() or "defaults"),
    }
