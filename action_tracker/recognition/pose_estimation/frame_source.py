"""OpenCV frame sources pushing `Frame`s to a callback from a background thread.

Both sources follow the same lifecycle used by the session state machine:
``await authorize()`` opens the device/file and proves a frame can be read,
``start(callback)`` begins delivery, ``stop()`` halts the producer and releases
the capture. The callback must not block; `FrameProcessor.offer` fits.
A source that loses its device sets `failed` and records the reason in
`failure`; it never raises from the producer thread.
"""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Generator, Optional, Union

import cv2
import numpy as np

from action_tracker.recognition.config import RECOGNITION_LOGGER as logger
from action_tracker.recognition.errors import AuthorizationDenied
from action_tracker.recognition.types import Frame, Orientation

FrameCallback = Callable[[Frame], None]


def validate_video_readable(video_path: Union[str, Path]) -> Dict[str, Union[int, float]]:
    """Check that a video can be opened and its first frame decoded; raise descriptive errors otherwise."""
    path = Path(video_path)
    if not path.exists():
        raise FileNotFoundError(f"Video not found: {path}")
    if not path.is_file():
        raise ValueError(f"Expected a video file, but got a directory: {path}")

    cap = cv2.VideoCapture(str(path))
    if not cap.isOpened():
        raise RuntimeError(f"Could not open video {path}. The file may be corrupted or use an unsupported codec.")
    try:
        ret, frame = cap.read()
        if not ret or frame is None or frame.size == 0:
            raise ValueError(
                f"Failed to read the first frame from {path}. The file may be corrupted or use an unsupported codec."
            )
        return {
            "width": int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            "height": int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            "fps": float(cap.get(cv2.CAP_PROP_FPS) or 0.0),
            "total_frames": int(cap.get(cv2.CAP_PROP_FRAME_COUNT)),
        }
    finally:
        cap.release()


def iter_video_frames(
    video_path: Union[str, Path],
    *,
    fps: float = 30.0,
    orientation: Orientation = Orientation.UP,
) -> Generator[Frame, None, None]:
    """Yield every frame of a video as a `Frame` (timestamp in seconds)."""
    path = Path(video_path)
    cap = cv2.VideoCapture(str(path))
    if not cap.isOpened():
        raise RuntimeError(f"Could not open video {path}. The file may be corrupted or use an unsupported codec.")

    meta_fps = cap.get(cv2.CAP_PROP_FPS)
    effective_fps = meta_fps if meta_fps and meta_fps > 0 else fps
    frame_idx = 0
    try:
        ret, image = cap.read()
        while ret:
            pos_msec = float(cap.get(cv2.CAP_PROP_POS_MSEC) or 0.0)
            if not np.isfinite(pos_msec) or pos_msec <= 0.0:
                pos_msec = (frame_idx / effective_fps) * 1000.0
            yield Frame(image, orientation, pos_msec / 1000.0)
            if frame_idx % 200 == 0:
                logger.debug("Read frame %s from %s", frame_idx, path.name)
            frame_idx += 1
            ret, image = cap.read()
        logger.info("Completed reading %s; total frames: %s", path, frame_idx)
    finally:
        cap.release()


class _ThreadedSource:
    """Shared start/stop handling for thread-driven sources."""

    def __init__(self, *, rotation_angle: float = 0.0) -> None:
        self.orientation = Orientation.from_rotation_angle(rotation_angle)
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._capture: Optional[cv2.VideoCapture] = None
        self.frames_delivered = 0
        self.failed = threading.Event()
        self.failure: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _open(self) -> cv2.VideoCapture:
        raise NotImplementedError

    def _describe(self) -> str:
        raise NotImplementedError

    async def authorize(self) -> None:
        """Open the capture off the event loop; raise `AuthorizationDenied` when it is unusable."""
        loop = asyncio.get_running_loop()
        try:
            capture = await loop.run_in_executor(None, self._open_checked)
        except AuthorizationDenied:
            raise
        except Exception as exc:
            raise AuthorizationDenied(f"Could not open {self._describe()}: {exc}") from exc
        self._release()
        self._capture = capture
        logger.info("Frame source authorized: %s", self._describe())

    def _open_checked(self) -> cv2.VideoCapture:
        capture = self._open()
        if not capture.isOpened():
            capture.release()
            raise AuthorizationDenied(f"Could not open {self._describe()}.")
        ok, image = capture.read()
        if not ok or image is None or image.size == 0:
            capture.release()
            raise AuthorizationDenied(f"{self._describe()} did not deliver a frame.")
        return capture

    def start(self, callback: FrameCallback) -> None:
        if self.running:
            raise RuntimeError(f"{self._describe()} is already streaming.")
        if self._capture is None:
            raise AuthorizationDenied(f"{self._describe()} must be authorized before starting.")
        self._stop_event.clear()
        self.failed.clear()
        self.failure = None
        self._thread = threading.Thread(
            target=self._run, args=(self._capture, callback), name=f"frames-{self._describe()}", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Signal the producer thread, wait for it and release the capture."""
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Frame source thread did not stop within %.1fs.", timeout)
        self._release()

    def _release(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    def _fail(self, reason: str) -> None:
        logger.error("%s: %s", self._describe(), reason)
        self.failure = reason
        self.failed.set()

    def _run(self, capture: cv2.VideoCapture, callback: FrameCallback) -> None:
        raise NotImplementedError


class CameraFrameSource(_ThreadedSource):
    """Live camera stream via `cv2.VideoCapture(index)`."""

    max_read_failures = 30

    def __init__(self, camera_index: int = 0, *, rotation_angle: float = 0.0, frame_rate: float = 30.0) -> None:
        super().__init__(rotation_angle=rotation_angle)
        self.camera_index = int(camera_index)
        self.frame_rate = float(frame_rate)

    def _describe(self) -> str:
        return f"camera {self.camera_index}"

    def _open(self) -> cv2.VideoCapture:
        capture = cv2.VideoCapture(self.camera_index)
        if self.frame_rate > 0:
            capture.set(cv2.CAP_PROP_FPS, self.frame_rate)
        return capture

    def _run(self, capture: cv2.VideoCapture, callback: FrameCallback) -> None:
        started = time.monotonic()
        failures = 0
        while not self._stop_event.is_set():
            ok, image = capture.read()
            if not ok or image is None:
                failures += 1
                if failures >= self.max_read_failures:
                    self._fail(f"stopped delivering frames after {failures} failed reads")
                    return
                time.sleep(0.01)
                continue
            failures = 0
            callback(Frame(image, self.orientation, time.monotonic() - started))
            self.frames_delivered += 1


class VideoFileFrameSource(_ThreadedSource):
    """Replays a video file, paced at the file's frame rate when `realtime` is set."""

    def __init__(
        self,
        video_path: Union[str, Path],
        *,
        rotation_angle: float = 0.0,
        realtime: bool = True,
        fallback_fps: float = 30.0,
    ) -> None:
        super().__init__(rotation_angle=rotation_angle)
        self.video_path = Path(video_path)
        self.realtime = realtime
        self.fallback_fps = float(fallback_fps)
        self.finished = threading.Event()

    def _describe(self) -> str:
        return f"video {self.video_path.name}"

    def _open(self) -> cv2.VideoCapture:
        validate_video_readable(self.video_path)
        return cv2.VideoCapture(str(self.video_path))

    def _run(self, capture: cv2.VideoCapture, callback: FrameCallback) -> None:
        # The capture already consumed its first frame during authorization.
        capture.set(cv2.CAP_PROP_POS_FRAMES, 0)
        meta_fps = capture.get(cv2.CAP_PROP_FPS)
        fps = meta_fps if meta_fps and meta_fps > 0 else self.fallback_fps
        interval = 1.0 / fps
        started = time.monotonic()
        frame_idx = 0
        while not self._stop_event.is_set():
            ok, image = capture.read()
            if not ok or image is None:
                break
            timestamp = frame_idx * interval
            if self.realtime:
                delay = started + timestamp - time.monotonic()
                if delay > 0 and self._stop_event.wait(delay):
                    break
            callback(Frame(image, self.orientation, timestamp))
            self.frames_delivered += 1
            frame_idx += 1
        self.finished.set()
        logger.info("%s delivered %s frames.", self._describe(), self.frames_delivered)


__all__ = [
    "CameraFrameSource",
    "VideoFileFrameSource",
    "iter_video_frames",
    "validate_video_readable",
]
