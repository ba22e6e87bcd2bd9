from __future__ import annotations

import asyncio

import numpy as np
import pytest

cv2 = pytest.importorskip("cv2")
pytest.importorskip("mediapipe")


def _landmarks(conf: float = 0.9) -> list[tuple[float, float, float]]:
    return [(0.01 * idx, 0.02 * idx, conf) for idx in range(33)]


def test_landmarks_map_to_canonical_joints_with_flipped_y():
    from action_tracker.recognition.pose_estimation.pose_detector import landmarks_to_skeleton

    skeleton = landmarks_to_skeleton(_landmarks())

    nose = skeleton.get("nose")
    assert nose.x == pytest.approx(0.0)
    assert nose.y == pytest.approx(1.0)
    wrist = skeleton.get("right_wrist")  # MediaPipe index 16
    assert wrist.x == pytest.approx(0.16)
    assert wrist.y == pytest.approx(1.0 - 0.32)
    assert len(skeleton) == 18


def test_neck_is_shoulder_midpoint_with_lower_confidence():
    from action_tracker.recognition.pose_estimation.pose_detector import landmarks_to_skeleton

    landmarks = _landmarks()
    landmarks[11] = (0.4, 0.3, 0.9)  # left shoulder
    landmarks[12] = (0.6, 0.5, 0.6)  # right shoulder

    neck = landmarks_to_skeleton(landmarks).get("neck")
    assert neck.x == pytest.approx(0.5)
    assert neck.y == pytest.approx(0.6)
    assert neck.confidence == pytest.approx(0.6)


def test_low_confidence_landmarks_are_dropped():
    from action_tracker.recognition.pose_estimation.pose_detector import landmarks_to_skeleton

    landmarks = _landmarks()
    landmarks[12] = (0.6, 0.5, 0.01)
    skeleton = landmarks_to_skeleton(landmarks, min_confidence=0.05)
    assert skeleton.get("right_shoulder") is None
    assert skeleton.get("neck") is None
    assert skeleton.get("left_shoulder") is not None


def test_orient_image_rotates_by_hint():
    from action_tracker.recognition.pose_estimation.pose_detector import orient_image
    from action_tracker.recognition.types import Orientation

    image = np.zeros((4, 8, 3), dtype=np.uint8)
    image[0, 0] = 255
    assert orient_image(image, Orientation.UP) is image
    assert orient_image(image, Orientation.RIGHT).shape == (8, 4, 3)
    assert orient_image(image, Orientation.LEFT).shape == (8, 4, 3)
    flipped = orient_image(image, Orientation.DOWN)
    assert flipped.shape == (4, 8, 3)
    assert flipped[-1, -1, 0] == 255


def test_detect_rejects_invalid_frames_before_inference():
    from action_tracker.recognition.errors import DetectionFailure
    from action_tracker.recognition.pose_estimation.pose_detector import PoseDetector

    # Skip model initialisation; validation happens before the model is touched.
    detector = PoseDetector.__new__(PoseDetector)
    with pytest.raises(DetectionFailure):
        detector.detect(None)
    with pytest.raises(DetectionFailure):
        detector.detect(np.zeros((4, 4), dtype=np.uint8))


def test_async_wrapper_runs_detector_in_executor():
    from action_tracker.recognition.pose_estimation.pose_detector import AsyncPoseDetector
    from action_tracker.recognition.types import Orientation, Skeleton

    class Blocking:
        def __init__(self):
            self.closed = False

        def detect(self, image, orientation):
            return [Skeleton.from_points({"nose": (0.5, 0.5, float(image.mean()))})]

        def close(self):
            self.closed = True

    inner = Blocking()
    wrapper = AsyncPoseDetector(inner)  # type: ignore[arg-type]
    result = asyncio.run(wrapper.detect(np.ones((2, 2, 3)), Orientation.UP))
    assert result[0].get("nose").confidence == pytest.approx(1.0)
    wrapper.close()
    assert inner.closed
