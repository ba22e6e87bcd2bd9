"""Error taxonomy for the recognition engine.

Only `ModelLoadFailure` and `AuthorizationDenied` are surfaced to callers of the
session state machine. `DetectionFailure` and `ClassificationFailure` describe
per-frame/per-window problems that the frame processor absorbs and logs.
"""

from __future__ import annotations

__all__ = [
    "RecognitionError",
    "ModelLoadFailure",
    "AuthorizationDenied",
    "DetectionFailure",
    "ClassificationFailure",
    "ConfigurationError",
    "SessionStateError",
]


class RecognitionError(RuntimeError):
    """Base class for engine failures."""


class ModelLoadFailure(RecognitionError):
    """Raised when the classifier model cannot be loaded; a session cannot start."""


class AuthorizationDenied(RecognitionError):
    """Raised when the frame source refuses to stream (device missing or not permitted)."""


class DetectionFailure(RecognitionError):
    """Raised by pose detectors for a single unusable frame."""


class ClassificationFailure(RecognitionError):
    """Raised by classifiers for a single unusable window."""


class ConfigurationError(ValueError):
    """Raised when engine settings cannot be used safely."""


class SessionStateError(RecognitionError):
    """Raised when a session transition is requested from the wrong state."""
