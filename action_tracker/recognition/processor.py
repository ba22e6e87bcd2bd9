"""Frame processor: per-frame orchestration of detection, windowing and classification.

Frames are handed from the producer to a single consumer task through a
one-slot queue. While a frame is in flight every new frame is dropped, never
queued, so latency stays bounded and the window only ever contains frames that
were fully processed, in arrival order.

The processor owns the window buffer and the current prediction/skeleton. Other
components read the immutable `PipelineSnapshot` published after each frame.
A generation counter is bumped by `stop()` and `reset()`; a routine that
finishes after either call discards its results instead of writing them back.
The in-flight token is only released by the routine that took it, so a frame
still awaiting the detector after `stop()` keeps blocking new frames.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from action_tracker.recognition.config import DEFAULT_ENGINE_CONFIG, EngineConfig, RECOGNITION_LOGGER as logger
from action_tracker.recognition.decision import DecisionPolicy
from action_tracker.recognition.encoding import encode_skeleton
from action_tracker.recognition.errors import ClassificationFailure
from action_tracker.recognition.selection import select_candidate
from action_tracker.recognition.types import NO_SUBJECT, STARTING, Frame, Prediction, Skeleton
from action_tracker.recognition.window import WindowBuffer

SnapshotListener = Callable[["PipelineSnapshot"], None]


@dataclass(frozen=True)
class PipelineSnapshot:
    """State published after each processed frame."""

    prediction: Prediction = STARTING
    skeleton: Optional[Skeleton] = None
    frame_index: int = -1
    timestamp: Optional[float] = None
    window_length: int = 0


@dataclass
class ProcessorStats:
    """Simple counters to help debug pipeline throughput."""

    accepted: int = 0
    dropped: int = 0
    processed: int = 0
    classifications: int = 0
    detector_failures: int = 0
    classifier_failures: int = 0


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class FrameProcessor:
    """Single-flight pipeline: detector -> selector -> encoder -> window -> classifier -> policy.

    `detector` must provide ``detect(image, orientation) -> list[Skeleton]`` and
    `classifier` ``predict(window) -> {label: probability}``; either may be a
    coroutine function.
    """

    def __init__(
        self,
        detector: Any,
        classifier: Any = None,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        *,
        on_update: SnapshotListener | None = None,
    ) -> None:
        self.config = config.validate()
        self.detector = detector
        self.classifier = classifier
        self.window = WindowBuffer(self.config.window_capacity, self.config.eviction_stride)
        self.policy = DecisionPolicy(self.config)
        self.stats = ProcessorStats()
        self.last_frame: Any = None
        self._snapshot = PipelineSnapshot()
        self._listeners: List[SnapshotListener] = [on_update] if on_update is not None else []
        self._inflight: object | None = None
        self._accepting = False
        self._stopped = False
        self._generation = 0
        self._frame_counter = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._slot: "asyncio.Queue[Tuple[int, object, Frame]] | None" = None
        self._consumer: "asyncio.Task[None] | None" = None

    # ------------------------------------------------------------------ state
    @property
    def snapshot(self) -> PipelineSnapshot:
        return self._snapshot

    @property
    def prediction(self) -> Prediction:
        return self._snapshot.prediction

    @property
    def skeleton(self) -> Optional[Skeleton]:
        return self._snapshot.skeleton

    @property
    def busy(self) -> bool:
        return self._inflight is not None

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    # -------------------------------------------------------------- lifecycle
    def start(self) -> None:
        """Start the consumer task on the running event loop."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        slot: "asyncio.Queue[Tuple[int, object, Frame]]" = asyncio.Queue(maxsize=1)
        self._slot = slot
        self._consumer = self._loop.create_task(self._consume(slot))
        self._accepting = True
        self._stopped = False
        logger.debug("Frame processor started (generation %s).", self._generation)

    async def stop(self) -> None:
        """Stop accepting frames and cancel the consumer.

        A direct `process_frame` routine still in flight keeps its token until it
        returns; its results are discarded.
        """
        self._accepting = False
        self._stopped = True
        self._generation += 1
        consumer = self._consumer
        slot = self._slot
        self._consumer = None
        self._slot = None
        if consumer is not None:
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
        if slot is not None:
            # Frames handed over but never picked up by the consumer.
            while not slot.empty():
                _, token, _ = slot.get_nowait()
                slot.task_done()
                self._release(token)
        logger.debug("Frame processor stopped (generation %s).", self._generation)

    def reset(self) -> None:
        """Clear the window and current prediction; results still in flight are discarded."""
        self._generation += 1
        self._stopped = False
        self.window.clear()
        self.last_frame = None
        self._publish(PipelineSnapshot())

    async def drain(self) -> None:
        """Wait until the frame currently handed to the consumer has been processed."""
        if self._slot is not None:
            await self._slot.join()

    # --------------------------------------------------------------- ingress
    def _acquire(self, frame: Frame) -> object | None:
        if self._inflight is not None:
            self.stats.dropped += 1
            return None
        token = object()
        self._inflight = token
        self.stats.accepted += 1
        self.last_frame = frame.image
        return token

    def _release(self, token: object) -> None:
        if self._inflight is token:
            self._inflight = None

    def submit(self, frame: Frame) -> bool:
        """Hand `frame` to the consumer; returns False when it was dropped.

        Must be called from the event loop thread. Use `offer` from other threads.
        """
        slot = self._slot
        if not self._accepting or slot is None:
            return False
        token = self._acquire(frame)
        if token is None:
            return False
        slot.put_nowait((self._generation, token, frame))
        return True

    def offer(self, frame: Frame) -> None:
        """Thread-safe, non-blocking hand-off for push-based frame sources."""
        loop = self._loop
        if loop is None or not self._accepting:
            return
        try:
            loop.call_soon_threadsafe(self.submit, frame)
        except RuntimeError:
            # Loop already closed: the session is shutting down.
            logger.debug("Dropping frame; event loop is closed.")

    async def process_frame(self, frame: Frame) -> bool:
        """Process one frame directly, honouring the single-flight guard.

        Returns False (and processes nothing) when another frame is in flight or
        the processor was stopped and not yet started or reset again.
        """
        if self._stopped:
            return False
        token = self._acquire(frame)
        if token is None:
            return False
        try:
            await self._process(frame, self._generation)
        finally:
            self._release(token)
        return True

    async def _consume(self, slot: "asyncio.Queue[Tuple[int, object, Frame]]") -> None:
        while True:
            generation, token, frame = await slot.get()
            try:
                await self._process(frame, generation)
            finally:
                self._release(token)
                slot.task_done()

    # -------------------------------------------------------------- pipeline
    def _stale(self, generation: int) -> bool:
        return generation != self._generation

    async def _process(self, frame: Frame, generation: int) -> None:
        frame_index = self._frame_counter
        self._frame_counter += 1

        skeletons = await self._detect(frame, frame_index)
        if self._stale(generation):
            return

        skeleton = select_candidate(skeletons, visibility_threshold=self.config.visibility_threshold)
        prediction = self._snapshot.prediction
        if skeleton is None:
            prediction = NO_SUBJECT

        encoded = encode_skeleton(skeleton, self.config.joints)
        if self.window.append(encoded):
            classified = await self._classify(self.window.tensor(), frame_index)
            if self._stale(generation):
                return
            if classified is not None:
                prediction = classified

        self.stats.processed += 1
        self._publish(
            PipelineSnapshot(
                prediction=prediction,
                skeleton=skeleton,
                frame_index=frame_index,
                timestamp=frame.timestamp,
                window_length=len(self.window),
            )
        )

    async def _detect(self, frame: Frame, frame_index: int) -> Sequence[Skeleton]:
        try:
            result = await _maybe_await(self.detector.detect(frame.image, frame.orientation))
        except Exception as exc:
            self.stats.detector_failures += 1
            logger.warning("Pose detection failed on frame %s: %s", frame_index, exc)
            return []
        return list(result or [])

    async def _classify(self, window: np.ndarray, frame_index: int) -> Optional[Prediction]:
        try:
            if self.classifier is None:
                raise ClassificationFailure("No classifier loaded.")
            probabilities = await _maybe_await(self.classifier.predict(window))
            if not isinstance(probabilities, Mapping):
                raise ClassificationFailure(
                    f"Classifier returned {type(probabilities).__name__}; expected a label -> probability mapping."
                )
        except Exception as exc:
            self.stats.classifier_failures += 1
            logger.warning("Classification failed at frame %s; keeping previous prediction: %s", frame_index, exc)
            return None
        self.stats.classifications += 1
        prediction = self.policy(probabilities)
        logger.debug("Frame %s classified as %s (%s).", frame_index, prediction.label, prediction.confidence_text)
        return prediction

    def _publish(self, snapshot: PipelineSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                logger.warning("Snapshot listener %r failed: %s", listener, exc)


__all__ = ["FrameProcessor", "PipelineSnapshot", "ProcessorStats"]
