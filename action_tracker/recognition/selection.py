"""Candidate selector: pick the most prominent skeleton among a frame's detections."""

from __future__ import annotations

from typing import Optional, Sequence

from action_tracker.recognition.types import Skeleton


def select_candidate_index(skeletons: Sequence[Skeleton], *, visibility_threshold: float = 0.0) -> Optional[int]:
    """Index of the skeleton with the largest bounding-box area, or None when empty.

    Area is measured over joints whose confidence reaches `visibility_threshold`.
    Ties keep the earliest skeleton.
    """
    best_idx: Optional[int] = None
    best_area = -1.0
    for idx, skeleton in enumerate(skeletons):
        area = skeleton.area(visibility_threshold)
        if area > best_area:
            best_area = area
            best_idx = idx
    return best_idx


def select_candidate(skeletons: Sequence[Skeleton], *, visibility_threshold: float = 0.0) -> Optional[Skeleton]:
    """Return the selected skeleton, or None ("no subject") when `skeletons` is empty."""
    idx = select_candidate_index(skeletons, visibility_threshold=visibility_threshold)
    if idx is None:
        return None
    return skeletons[idx]


__all__ = ["select_candidate", "select_candidate_index"]
