"""Real-time action recognition engine.

This module is intentionally **lazy-imported** so the pure engine (encoder,
selector, window, decision policy, processor) can be used without the heavy
capture dependencies required by pose estimation (e.g., `mediapipe`).
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "RECOGNITION_LOGGER",
    "CANONICAL_JOINTS",
    "EngineConfig",
    "DEFAULT_ENGINE_CONFIG",
    "load_config_from_file",
    "validate_config_values",
    "Joint",
    "Skeleton",
    "Orientation",
    "Frame",
    "Sentinel",
    "Scored",
    "STARTING",
    "NO_SUBJECT",
    "LOW_CONFIDENCE",
    "encode_skeleton",
    "select_candidate",
    "WindowBuffer",
    "DecisionPolicy",
    "decide",
    "SoftmaxClassifier",
    "load_classifier",
    "FrameProcessor",
    "PipelineSnapshot",
    "SessionState",
    "SessionStateMachine",
    "PoseDetector",
    "CameraFrameSource",
    "VideoFileFrameSource",
]

_MODULE_EXPORTS = {
    "RECOGNITION_LOGGER": "config",
    "CANONICAL_JOINTS": "config",
    "EngineConfig": "config",
    "DEFAULT_ENGINE_CONFIG": "config",
    "load_config_from_file": "config",
    "validate_config_values": "config",
    "Joint": "types",
    "Skeleton": "types",
    "Orientation": "types",
    "Frame": "types",
    "Sentinel": "types",
    "Scored": "types",
    "STARTING": "types",
    "NO_SUBJECT": "types",
    "LOW_CONFIDENCE": "types",
    "encode_skeleton": "encoding",
    "select_candidate": "selection",
    "WindowBuffer": "window",
    "DecisionPolicy": "decision",
    "decide": "decision",
    "SoftmaxClassifier": "classifier",
    "load_classifier": "classifier",
    "FrameProcessor": "processor",
    "PipelineSnapshot": "processor",
    "SessionState": "session",
    "SessionStateMachine": "session",
    "PoseDetector": "pose_estimation",
    "CameraFrameSource": "pose_estimation",
    "VideoFileFrameSource": "pose_estimation",
}


def __getattr__(name: str) -> Any:  # pragma: no cover - exercised indirectly
    module_name = _MODULE_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    from importlib import import_module

    module = import_module(f"{__name__}.{module_name}")
    return getattr(module, name)


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(set(list(globals()) + __all__))
