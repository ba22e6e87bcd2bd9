"""Core value types shared by the recognition engine.

- `Joint` / `Skeleton`: one detected person in one frame (normalized coordinates,
  bottom-left origin, confidence in [0, 1]). Skeletons are immutable.
- `Frame`: one item delivered by a frame source.
- `Sentinel` / `Scored`: the two prediction variants. Sentinels are app-defined
  placeholders without a confidence; scored predictions come from the classifier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional, Tuple, Union

import numpy as np

# Limb/torso pairs drawn by overlays.
SKELETON_CONNECTIONS: Tuple[Tuple[str, str], ...] = (
    ("left_shoulder", "left_elbow"),
    ("left_elbow", "left_wrist"),
    ("left_hip", "left_knee"),
    ("left_knee", "left_ankle"),
    ("right_shoulder", "right_elbow"),
    ("right_elbow", "right_wrist"),
    ("right_hip", "right_knee"),
    ("right_knee", "right_ankle"),
    ("left_shoulder", "neck"),
    ("right_shoulder", "neck"),
    ("left_shoulder", "left_hip"),
    ("right_shoulder", "right_hip"),
    ("left_hip", "right_hip"),
)


@dataclass(frozen=True)
class Joint:
    x: float
    y: float
    confidence: float

    @property
    def location(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class Skeleton:
    """Joints of a single detected person, keyed by joint name."""

    joints: Mapping[str, Joint] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Freeze the mapping so published snapshots cannot be mutated.
        object.__setattr__(self, "joints", MappingProxyType(dict(self.joints)))

    @classmethod
    def from_points(cls, points: Mapping[str, Tuple[float, float, float]]) -> "Skeleton":
        return cls({name: Joint(float(x), float(y), float(c)) for name, (x, y, c) in points.items()})

    def get(self, name: str) -> Optional[Joint]:
        return self.joints.get(name)

    def __len__(self) -> int:
        return len(self.joints)

    def __iter__(self) -> Iterator[str]:
        return iter(self.joints)

    def visible_joints(self, threshold: float = 0.0) -> dict[str, Joint]:
        return {name: joint for name, joint in self.joints.items() if joint.confidence >= threshold}

    def bounding_box(self, threshold: float = 0.0) -> Optional[Tuple[float, float, float, float]]:
        """(min_x, min_y, max_x, max_y) over visible joints, or None if nothing is visible."""
        visible = self.visible_joints(threshold)
        if not visible:
            return None
        xs = [joint.x for joint in visible.values()]
        ys = [joint.y for joint in visible.values()]
        return (min(xs), min(ys), max(xs), max(ys))

    def area(self, threshold: float = 0.0) -> float:
        box = self.bounding_box(threshold)
        if box is None:
            return 0.0
        min_x, min_y, max_x, max_y = box
        return float((max_x - min_x) * (max_y - min_y))

    def connections(self, threshold: float = 0.0) -> list[Tuple[Tuple[float, float], Tuple[float, float]]]:
        """Line segments between visible joint pairs, for overlay rendering."""
        visible = self.visible_joints(threshold)
        segments = []
        for first, second in SKELETON_CONNECTIONS:
            one = visible.get(first)
            two = visible.get(second)
            if one is None or two is None:
                continue
            segments.append((one.location, two.location))
        return segments


class Orientation(str, Enum):
    """Image orientation hint passed along with each frame."""

    UP = "up"
    RIGHT = "right"
    DOWN = "down"
    LEFT = "left"

    @classmethod
    def from_rotation_angle(cls, angle: float) -> "Orientation":
        """Map a capture rotation angle (degrees) to an orientation; unknown angles are upright."""
        return {
            0.0: cls.UP,
            90.0: cls.RIGHT,
            180.0: cls.DOWN,
            270.0: cls.LEFT,
        }.get(float(angle), cls.UP)


@dataclass(frozen=True)
class Frame:
    image: Any
    orientation: Orientation = Orientation.UP
    timestamp: float = 0.0


@dataclass(frozen=True)
class Sentinel:
    """App-defined prediction that never carries a confidence."""

    name: str

    @property
    def label(self) -> str:
        return self.name

    @property
    def confidence(self) -> None:
        return None

    @property
    def is_model_label(self) -> bool:
        return False

    @property
    def confidence_text(self) -> str:
        return self.name


@dataclass(frozen=True)
class Scored:
    """Model-derived prediction: a classifier label with its probability."""

    label: str
    confidence: float

    @property
    def is_model_label(self) -> bool:
        return True

    @property
    def confidence_text(self) -> str:
        percent = self.confidence * 100.0
        if percent >= 99.5:
            return f"{percent:.0f} %"
        return f"{percent:.1f} %"


Prediction = Union[Sentinel, Scored]

STARTING = Sentinel("Starting Up")
NO_SUBJECT = Sentinel("No Person")
LOW_CONFIDENCE = Sentinel("Low Confidence")


def empty_frame(joint_count: int) -> np.ndarray:
    """Zero-filled encoded frame for `joint_count` joints."""
    return np.zeros((3, joint_count), dtype=np.float32)


__all__ = [
    "Joint",
    "Skeleton",
    "Orientation",
    "Frame",
    "Sentinel",
    "Scored",
    "Prediction",
    "STARTING",
    "NO_SUBJECT",
    "LOW_CONFIDENCE",
    "SKELETON_CONNECTIONS",
    "empty_frame",
]
