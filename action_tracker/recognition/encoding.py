"""Keypoint encoder: one skeleton (or none) -> fixed-size (3, N) float32 block.

Row 0 holds x, row 1 holds y, row 2 holds confidence, with one column per
canonical joint. Joints absent from the skeleton stay at zero; present joints
keep the raw detector values.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from action_tracker.recognition.config import CANONICAL_JOINTS
from action_tracker.recognition.types import Skeleton, empty_frame


def encode_skeleton(skeleton: Optional[Skeleton], joints: Sequence[str] = CANONICAL_JOINTS) -> np.ndarray:
    """Encode `skeleton` in canonical joint order.

    Returns an array of shape (3, len(joints)) regardless of how many joints the
    skeleton contains; `None` encodes as all zeros.
    """
    encoded = empty_frame(len(joints))
    if skeleton is None:
        return encoded
    for column, name in enumerate(joints):
        joint = skeleton.get(name)
        if joint is None:
            continue
        encoded[0, column] = joint.x
        encoded[1, column] = joint.y
        encoded[2, column] = joint.confidence
    return encoded


def stack_window(frames: Sequence[np.ndarray]) -> np.ndarray:
    """Concatenate encoded frames in order into a (W, 3, N) classifier tensor."""
    if not frames:
        raise ValueError("Cannot build a window tensor from zero frames.")
    return np.stack(list(frames), axis=0).astype(np.float32, copy=False)


__all__ = ["encode_skeleton", "stack_window"]
