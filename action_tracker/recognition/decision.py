"""Decision policy: classifier probabilities -> tiered prediction.

Tiers are evaluated in order and the first match wins:

1. ``target``: target probability > target_threshold and > negative probability
   -> Scored(target, p).
2. ``no_subject``: negative probability > negative_threshold -> "No Person".
3. ``fallback``: the single most probable label (first one on ties) has
   probability > fallback_threshold -> Scored(label, p).
4. ``low_confidence``: anything else -> "Low Confidence".

Labels missing from the mapping count as probability 0. Values that are not
finite numbers are ignored.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from action_tracker.recognition.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from action_tracker.recognition.types import LOW_CONFIDENCE, NO_SUBJECT, Prediction, Scored


class DecisionTier(str, Enum):
    TARGET = "target"
    NO_SUBJECT = "no_subject"
    FALLBACK = "fallback"
    LOW_CONFIDENCE = "low_confidence"


@dataclass(frozen=True)
class Decision:
    tier: DecisionTier
    prediction: Prediction


def _coerce_probability(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(num):
        return None
    return num


def _clean(probabilities: Mapping[str, Any]) -> dict[str, float]:
    cleaned: dict[str, float] = {}
    for label, value in probabilities.items():
        prob = _coerce_probability(value)
        if prob is None:
            continue
        cleaned[str(label)] = prob
    return cleaned


def decide(probabilities: Mapping[str, Any], config: EngineConfig = DEFAULT_ENGINE_CONFIG) -> Decision:
    """Apply the four decision tiers to a label -> probability mapping."""
    probs = _clean(probabilities)
    target = probs.get(config.target_label, 0.0)
    negative = probs.get(config.negative_label, 0.0)

    if target > config.target_threshold and target > negative:
        return Decision(DecisionTier.TARGET, Scored(config.target_label, target))
    if negative > config.negative_threshold:
        return Decision(DecisionTier.NO_SUBJECT, NO_SUBJECT)

    best_label: Optional[str] = None
    best_prob = -math.inf
    for label, prob in probs.items():
        if prob > best_prob:
            best_label = label
            best_prob = prob
    if best_label is not None and best_prob > config.fallback_threshold:
        return Decision(DecisionTier.FALLBACK, Scored(best_label, best_prob))
    return Decision(DecisionTier.LOW_CONFIDENCE, LOW_CONFIDENCE)


class DecisionPolicy:
    """Callable wrapper binding `decide` to one engine configuration."""

    def __init__(self, config: EngineConfig = DEFAULT_ENGINE_CONFIG) -> None:
        self.config = config

    def __call__(self, probabilities: Mapping[str, Any]) -> Prediction:
        return decide(probabilities, self.config).prediction

    def evaluate(self, probabilities: Mapping[str, Any]) -> Decision:
        return decide(probabilities, self.config)


__all__ = ["DecisionTier", "Decision", "DecisionPolicy", "decide"]
