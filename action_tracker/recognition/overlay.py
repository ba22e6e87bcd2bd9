"""Image helpers for the live preview and thumbnail export.

Skeleton coordinates are normalized with a bottom-left origin in the upright
image, so frames are rotated with `orient_image` and rows flipped before drawing.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple, Union

import cv2
import numpy as np

from action_tracker.recognition.config import RECOGNITION_LOGGER as logger, VISIBILITY_THRESHOLD
from action_tracker.recognition.types import Orientation, Prediction, Skeleton

Color = Tuple[int, int, int]

JOINT_COLOR: Color = (0, 255, 0)
BONE_COLOR: Color = (255, 255, 255)
TEXT_COLOR: Color = (0, 255, 0)
SENTINEL_COLOR: Color = (0, 165, 255)

_ROTATIONS = {
    Orientation.RIGHT: cv2.ROTATE_90_CLOCKWISE,
    Orientation.DOWN: cv2.ROTATE_180,
    Orientation.LEFT: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def orient_image(image: np.ndarray, orientation: Orientation) -> np.ndarray:
    """Rotate `image` so the subject is upright for the given orientation hint."""
    code = _ROTATIONS.get(Orientation(orientation))
    if code is None:
        return image
    return cv2.rotate(image, code)


def _to_pixel(point: Tuple[float, float], width: int, height: int) -> Tuple[int, int]:
    x, y = point
    return (int(round(x * (width - 1))), int(round((1.0 - y) * (height - 1))))


def draw_skeleton(
    image: np.ndarray,
    skeleton: Optional[Skeleton],
    *,
    threshold: float = VISIBILITY_THRESHOLD,
    joint_radius: int = 4,
) -> np.ndarray:
    """Return a copy of `image` with visible joints and their connections drawn."""
    canvas = image.copy()
    if skeleton is None:
        return canvas
    height, width = canvas.shape[:2]
    for start, end in skeleton.connections(threshold):
        cv2.line(canvas, _to_pixel(start, width, height), _to_pixel(end, width, height), BONE_COLOR, 2)
    for joint in skeleton.visible_joints(threshold).values():
        cv2.circle(canvas, _to_pixel(joint.location, width, height), joint_radius, JOINT_COLOR, -1)
    return canvas


def draw_prediction(image: np.ndarray, prediction: Prediction) -> np.ndarray:
    """Return a copy of `image` with the prediction label and confidence text."""
    canvas = image.copy()
    color = TEXT_COLOR if prediction.is_model_label else SENTINEL_COLOR
    text = prediction.label
    if prediction.is_model_label:
        text = f"{prediction.label}: {prediction.confidence_text}"
    cv2.putText(canvas, text, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2)
    return canvas


def render_preview(
    image: np.ndarray,
    skeleton: Optional[Skeleton],
    prediction: Prediction,
    orientation: Orientation = Orientation.UP,
) -> np.ndarray:
    """Upright copy of a raw frame with the selected skeleton and prediction drawn."""
    upright = orient_image(image, orientation)
    return draw_prediction(draw_skeleton(upright, skeleton), prediction)


def export_thumbnail(image: np.ndarray, path: Union[str, Path], *, max_side: int = 0) -> Path:
    """Write `image` to `path` (format from the suffix, PNG when missing), optionally downscaled."""
    if image is None or not isinstance(image, np.ndarray) or image.size == 0:
        raise ValueError("No captured frame to export.")
    target = Path(path)
    if not target.suffix:
        target = target.with_suffix(".png")
    target.parent.mkdir(parents=True, exist_ok=True)

    output = image
    height, width = image.shape[:2]
    if max_side and max(height, width) > max_side:
        scale = max_side / float(max(height, width))
        output = cv2.resize(image, (max(1, int(width * scale)), max(1, int(height * scale))), interpolation=cv2.INTER_AREA)

    if not cv2.imwrite(str(target), output):
        raise RuntimeError(f"OpenCV could not write thumbnail to {target}.")
    logger.info("Thumbnail written to %s", target)
    return target


__all__ = ["orient_image", "draw_skeleton", "draw_prediction", "render_preview", "export_thumbnail"]
