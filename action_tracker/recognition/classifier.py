"""Window classifiers and model loading.

A classifier receives the (W, 3, N) window tensor and returns a label ->
probability mapping. `predict` may be a plain or an ``async`` method; the frame
processor awaits it either way.

`SoftmaxClassifier` is a small numpy model stored as ``.npz`` with:
- ``labels``: (C,) label strings
- ``weights``: (C, W*3*N) float matrix
- ``bias``: (C,) float vector
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Mapping, Sequence

import numpy as np

from action_tracker.recognition.config import RECOGNITION_LOGGER as logger
from action_tracker.recognition.errors import ClassificationFailure, ModelLoadFailure


class Classifier(ABC):
    """Model adapter interface."""

    @property
    @abstractmethod
    def labels(self) -> Sequence[str]: ...

    @abstractmethod
    def predict(self, window: np.ndarray) -> Mapping[str, float]: ...


def _softmax(logits: np.ndarray) -> np.ndarray:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / np.sum(exp)


class SoftmaxClassifier(Classifier):
    """Linear layer + softmax over the flattened window."""

    def __init__(self, labels: Sequence[str], weights: np.ndarray, bias: np.ndarray | None = None) -> None:
        weights = np.asarray(weights, dtype=np.float32)
        if weights.ndim != 2:
            raise ValueError(f"weights must be 2-D (classes, features); received shape {weights.shape}.")
        if len(labels) != weights.shape[0]:
            raise ValueError(f"Expected {weights.shape[0]} labels for the weight matrix; received {len(labels)}.")
        if bias is None:
            bias = np.zeros(weights.shape[0], dtype=np.float32)
        bias = np.asarray(bias, dtype=np.float32).reshape(-1)
        if bias.shape[0] != weights.shape[0]:
            raise ValueError(f"bias must have {weights.shape[0]} entries; received {bias.shape[0]}.")
        self._labels = tuple(str(label) for label in labels)
        self.weights = weights
        self.bias = bias

    @property
    def labels(self) -> Sequence[str]:
        return self._labels

    @property
    def feature_count(self) -> int:
        return int(self.weights.shape[1])

    def predict(self, window: np.ndarray) -> Dict[str, float]:
        features = np.asarray(window, dtype=np.float32).reshape(-1)
        if features.shape[0] != self.feature_count:
            raise ClassificationFailure(
                f"Window has {features.shape[0]} values; classifier expects {self.feature_count}."
            )
        probs = _softmax(self.weights @ features + self.bias)
        return {label: float(prob) for label, prob in zip(self._labels, probs)}

    def save(self, path: str | Path) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("wb") as handle:
            np.savez(handle, labels=np.asarray(self._labels), weights=self.weights, bias=self.bias)
        return target

    @classmethod
    def from_file(cls, path: str | Path) -> "SoftmaxClassifier":
        model_path = Path(path).expanduser()
        if not model_path.exists():
            raise FileNotFoundError(f"Classifier model not found: {model_path}")
        with np.load(model_path, allow_pickle=False) as payload:
            missing = {"labels", "weights"} - set(payload.files)
            if missing:
                raise ValueError(f"Model {model_path} is missing arrays: {sorted(missing)}")
            labels = [str(label) for label in payload["labels"].tolist()]
            bias = payload["bias"] if "bias" in payload.files else None
            return cls(labels, payload["weights"], bias)


async def load_classifier(path: str | Path) -> SoftmaxClassifier:
    """Load a `.npz` classifier off the event loop; any failure becomes `ModelLoadFailure`."""
    loop = asyncio.get_running_loop()
    try:
        classifier = await loop.run_in_executor(None, SoftmaxClassifier.from_file, path)
    except Exception as exc:
        logger.error("Error loading classifier model %s: %s", path, exc)
        raise ModelLoadFailure(f"Could not load classifier model {path}: {exc}") from exc
    logger.info("Classifier loaded from %s (%s labels).", path, len(classifier.labels))
    return classifier


class ClassifierLoader:
    """Model loader bound to one path, usable as a session's `model_loader`."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def __call__(self) -> SoftmaxClassifier:
        return await load_classifier(self.path)


__all__ = ["Classifier", "SoftmaxClassifier", "ClassifierLoader", "load_classifier"]
