"""MediaPipe-backed pose detector returning canonical skeletons.

Two MediaPipe backends are supported:
- **Tasks** API: `mediapipe.tasks.python.vision.PoseLandmarker` (multi-person)
- **Solutions** API (legacy): `mediapipe.solutions.pose.Pose` (single person)

The 33 MediaPipe landmarks are mapped onto the engine's canonical joints. The
neck is synthesized as the shoulder midpoint and coordinates are reported with
a bottom-left origin (y flipped) in the orientation-corrected image.
"""

from __future__ import annotations

import asyncio
import shutil
import threading
import urllib.request
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import cv2
import mediapipe as mp
import numpy as np

from action_tracker.env import get_env
from action_tracker.recognition.config import RECOGNITION_LOGGER as logger
from action_tracker.recognition.errors import DetectionFailure
from action_tracker.recognition.overlay import orient_image
from action_tracker.recognition.types import Joint, Orientation, Skeleton

LandmarkTuple = Tuple[float, float, float]

# MediaPipe pose landmark index for each canonical joint (neck is derived).
MEDIAPIPE_JOINT_INDEX: Dict[str, int] = {
    "nose": 0,
    "left_eye": 2,
    "right_eye": 5,
    "left_ear": 7,
    "right_ear": 8,
    "left_shoulder": 11,
    "right_shoulder": 12,
    "left_elbow": 13,
    "right_elbow": 14,
    "left_wrist": 15,
    "right_wrist": 16,
    "left_hip": 23,
    "right_hip": 24,
    "left_knee": 25,
    "right_knee": 26,
    "left_ankle": 27,
    "right_ankle": 28,
}


def _env_float(name: str, default: float, *, low: float = 0.0, high: float = 1.0) -> float:
    raw = get_env(name)
    if not raw:
        return float(default)
    try:
        return float(np.clip(float(raw), low, high))
    except ValueError:
        return float(default)


def landmarks_to_skeleton(landmarks: Sequence[LandmarkTuple], *, min_confidence: float = 0.0) -> Skeleton:
    """Map 33 MediaPipe (x, y, confidence) landmarks to a canonical `Skeleton`.

    Input coordinates use a top-left origin; output y is flipped. Joints below
    `min_confidence` are left out.
    """
    joints: Dict[str, Joint] = {}
    for name, idx in MEDIAPIPE_JOINT_INDEX.items():
        if idx >= len(landmarks):
            continue
        x, y, conf = landmarks[idx]
        if conf < min_confidence:
            continue
        joints[name] = Joint(float(x), 1.0 - float(y), float(conf))

    left = joints.get("left_shoulder")
    right = joints.get("right_shoulder")
    if left is not None and right is not None:
        joints["neck"] = Joint(
            (left.x + right.x) / 2.0,
            (left.y + right.y) / 2.0,
            min(left.confidence, right.confidence),
        )
    return Skeleton(joints)


def _validate_frame(image: object) -> np.ndarray:
    if image is None:
        raise DetectionFailure("Invalid frame: received None. Possible camera or decode issue.")
    if not isinstance(image, np.ndarray):
        raise DetectionFailure("Invalid frame type; expected numpy.ndarray from decoded frames.")
    if image.ndim != 3 or image.shape[2] != 3 or image.size == 0:
        raise DetectionFailure("Invalid frame shape; expected a non-empty BGR image.")
    return image


class PoseDetector:
    """Synchronous MediaPipe wrapper. Access to the model is guarded by a lock."""

    def __init__(self, *, num_poses: int | None = None) -> None:
        self._backend = "unknown"
        self._landmarker = None
        self._pose = None
        self._lock = threading.Lock()
        self._frame_counter = 0
        self._last_timestamp_ms = -1
        self._closed = False
        self.min_joint_confidence = _env_float("POSE_MIN_JOINT_CONFIDENCE", 0.05)

        backend_pref = (get_env("POSE_BACKEND") or "").strip().lower()
        if backend_pref in {"solutions", "pose"}:
            if not self._has_solutions_backend():
                raise RuntimeError("Requested PoseDetector backend 'solutions' but mediapipe.solutions is unavailable.")
            self._init_solutions()
        elif backend_pref in {"tasks", "pose_landmarker", "landmarker"}:
            self._init_pose_landmarker(num_poses)
        elif self._has_tasks_backend():
            self._init_pose_landmarker(num_poses)
        elif self._has_solutions_backend():
            self._init_solutions()
        else:
            raise RuntimeError(
                "No MediaPipe pose backend available. Install `mediapipe` (Tasks preferred) and `opencv-python`."
            )

    @property
    def backend(self) -> str:
        return self._backend

    @staticmethod
    def _has_solutions_backend() -> bool:
        solutions = getattr(mp, "solutions", None)
        return bool(solutions and getattr(solutions, "pose", None))

    @staticmethod
    def _has_tasks_backend() -> bool:
        try:
            from mediapipe.tasks.python.vision import PoseLandmarker  # noqa: F401
        except ImportError:
            return False
        return True

    def _init_solutions(self) -> None:
        self._backend = "solutions"
        self._pose = mp.solutions.pose.Pose(
            static_image_mode=False,
            smooth_landmarks=True,
            model_complexity=1,
            min_detection_confidence=_env_float("POSE_MIN_DETECTION_CONFIDENCE", 0.5),
            min_tracking_confidence=_env_float("POSE_MIN_TRACKING_CONFIDENCE", 0.5),
        )
        logger.info("PoseDetector initialized with MediaPipe Solutions Pose (single person).")

    def _init_pose_landmarker(self, num_poses: int | None) -> None:
        from mediapipe.tasks.python.core.base_options import BaseOptions
        from mediapipe.tasks.python.vision import PoseLandmarker, PoseLandmarkerOptions, RunningMode

        if num_poses is None:
            num_poses = int(_env_float("POSE_NUM_POSES", 2, low=1, high=4))
        num_poses = int(np.clip(num_poses, 1, 4))
        options = PoseLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=str(self._ensure_pose_landmarker_model())),
            running_mode=RunningMode.VIDEO,
            num_poses=num_poses,
            min_pose_detection_confidence=_env_float("POSE_MIN_DETECTION_CONFIDENCE", 0.5),
            min_pose_presence_confidence=_env_float("POSE_MIN_PRESENCE_CONFIDENCE", 0.5),
            min_tracking_confidence=_env_float("POSE_MIN_TRACKING_CONFIDENCE", 0.5),
        )
        self._landmarker = PoseLandmarker.create_from_options(options)
        self._backend = "tasks"
        logger.info("PoseDetector initialized with MediaPipe Tasks PoseLandmarker (num_poses=%s).", num_poses)

    @staticmethod
    def _model_variant() -> str:
        variant = (get_env("POSE_LANDMARKER_MODEL_VARIANT") or "lite").strip().lower()
        if variant not in {"lite", "full", "heavy"}:
            logger.warning("Unknown pose landmarker variant '%s'; falling back to 'lite'.", variant)
            return "lite"
        return variant

    def _ensure_pose_landmarker_model(self) -> Path:
        variant = self._model_variant()
        env_path = get_env("POSE_LANDMARKER_MODEL_PATH")
        if env_path:
            model_path = Path(env_path).expanduser()
        else:
            model_path = Path(__file__).resolve().parents[3] / "data" / "models" / f"pose_landmarker_{variant}.task"
        if model_path.exists() and model_path.stat().st_size > 1024:
            return model_path

        url = get_env("POSE_LANDMARKER_MODEL_URL") or (
            "https://storage.googleapis.com/mediapipe-models/pose_landmarker/"
            f"pose_landmarker_{variant}/float16/1/pose_landmarker_{variant}.task"
        )
        model_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading pose landmarker model to %s", model_path)
        tmp_path = model_path.with_suffix(model_path.suffix + ".tmp")
        try:
            with urllib.request.urlopen(url) as response, tmp_path.open("wb") as handle:
                shutil.copyfileobj(response, handle)
            tmp_path.replace(model_path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise RuntimeError(
                "PoseLandmarker model download failed. "
                "Set ACTION_TRACKER_POSE_LANDMARKER_MODEL_PATH to a local .task file, "
                f"or ACTION_TRACKER_POSE_LANDMARKER_MODEL_URL to a reachable model URL. Error: {exc}"
            ) from exc
        return model_path

    def _next_timestamp_ms(self, frame_idx: int) -> int:
        # VIDEO running mode requires strictly increasing timestamps.
        ts_ms = max(frame_idx * 33, self._last_timestamp_ms + 1)
        self._last_timestamp_ms = ts_ms
        return ts_ms

    def detect(self, image: np.ndarray, orientation: Orientation = Orientation.UP) -> List[Skeleton]:
        """Detect every person in a BGR image; an empty list means nobody was found."""
        frame = orient_image(_validate_frame(image), orientation)
        try:
            rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        except cv2.error as exc:
            raise DetectionFailure(f"Failed to convert frame to RGB: {exc}") from exc

        with self._lock:
            if self._closed:
                raise DetectionFailure("PoseDetector is closed.")
            frame_idx = self._frame_counter
            self._frame_counter += 1
            logger.debug("Detecting poses on frame %s (shape=%s)", frame_idx, frame.shape)
            if self._backend == "solutions":
                results = self._pose.process(rgb_frame)  # type: ignore[union-attr]
                candidates = self._extract_solutions(results)
            else:
                mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)
                results = self._landmarker.detect_for_video(mp_image, self._next_timestamp_ms(frame_idx))  # type: ignore[union-attr]
                candidates = self._extract_tasks(results)

        return [landmarks_to_skeleton(pose, min_confidence=self.min_joint_confidence) for pose in candidates]

    @staticmethod
    def _landmark_to_tuple(landmark: object) -> LandmarkTuple:
        confidence = getattr(landmark, "visibility", None)
        if confidence is None:
            confidence = getattr(landmark, "presence", 1.0)
        return (float(landmark.x), float(landmark.y), float(np.clip(confidence, 0.0, 1.0)))

    def _extract_solutions(self, results: object) -> List[List[LandmarkTuple]]:
        pose_landmarks = getattr(results, "pose_landmarks", None)
        if pose_landmarks is None:
            return []
        return [[self._landmark_to_tuple(lm) for lm in pose_landmarks.landmark]]

    def _extract_tasks(self, results: object) -> List[List[LandmarkTuple]]:
        poses = getattr(results, "pose_landmarks", None)
        if not poses:
            return []
        return [[self._landmark_to_tuple(lm) for lm in pose] for pose in poses]

    def close(self) -> None:
        """Release MediaPipe model resources."""
        with self._lock:
            if self._closed:
                return
            if self._pose is not None:
                self._pose.close()
                self._pose = None
            if self._landmarker is not None:
                self._landmarker.close()
                self._landmarker = None
            self._closed = True
            logger.info("PoseDetector resources released.")

    def __enter__(self) -> "PoseDetector":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class AsyncPoseDetector:
    """Runs a blocking detector in the default executor so the event loop keeps receiving frames."""

    def __init__(self, detector: PoseDetector) -> None:
        self.detector = detector

    async def detect(self, image: np.ndarray, orientation: Orientation = Orientation.UP) -> List[Skeleton]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.detector.detect, image, orientation)

    def close(self) -> None:
        self.detector.close()


__all__ = [
    "PoseDetector",
    "AsyncPoseDetector",
    "MEDIAPIPE_JOINT_INDEX",
    "landmarks_to_skeleton",
    "orient_image",
]
