"""Session state machine: start -> playing -> end -> start, with playing -> start on abort.

`start()` awaits the model loader and then the frame source's authorization;
the stream is only started once both succeeded. `end()` stops the stream,
waits for the processor to halt and freezes the final score and thumbnail.
`abort()` halts the stream the same way but discards the round.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol

from action_tracker.recognition.config import RECOGNITION_LOGGER as logger
from action_tracker.recognition.errors import AuthorizationDenied, ModelLoadFailure, SessionStateError
from action_tracker.recognition.processor import FrameProcessor


class SessionState(str, Enum):
    START = "start"
    PLAYING = "playing"
    END = "end"


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState = SessionState.START
    final_score: Optional[float] = None
    captured_frame: Any = None


class FrameSource(Protocol):
    async def authorize(self) -> None: ...

    def start(self, callback: Callable[[Any], None]) -> None: ...

    def stop(self) -> None: ...


ModelLoader = Callable[[], Awaitable[Any]]
SessionListener = Callable[[SessionSnapshot], None]


class SessionStateMachine:
    """Gates the frame stream through the round lifecycle."""

    def __init__(self, processor: FrameProcessor, frame_source: FrameSource, model_loader: ModelLoader) -> None:
        self.processor = processor
        self.frame_source = frame_source
        self.model_loader = model_loader
        self._snapshot = SessionSnapshot()
        self._listeners: List[SessionListener] = []

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def state(self) -> SessionState:
        return self._snapshot.state

    @property
    def final_score(self) -> Optional[float]:
        return self._snapshot.final_score

    @property
    def captured_frame(self) -> Any:
        return self._snapshot.captured_frame

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def _require(self, expected: SessionState, action: str) -> None:
        if self.state is not expected:
            raise SessionStateError(f"Cannot {action} from state '{self.state.value}'; expected '{expected.value}'.")

    def _set(self, snapshot: SessionSnapshot) -> None:
        previous = self._snapshot.state
        self._snapshot = snapshot
        if previous is not snapshot.state:
            logger.info("Session %s -> %s.", previous.value, snapshot.state.value)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                logger.warning("Session listener %r failed: %s", listener, exc)

    async def start(self) -> None:
        """start -> playing. Raises ModelLoadFailure/AuthorizationDenied and stays in start."""
        self._require(SessionState.START, "start")
        try:
            model = await self.model_loader()
        except ModelLoadFailure:
            raise
        except Exception as exc:
            logger.error("Model load failed: %s", exc)
            raise ModelLoadFailure(str(exc)) from exc

        try:
            await self.frame_source.authorize()
        except AuthorizationDenied as exc:
            logger.error("Frame stream authorization denied: %s", exc)
            raise
        except Exception as exc:
            logger.error("Frame stream authorization failed: %s", exc)
            raise AuthorizationDenied(str(exc)) from exc

        self.processor.classifier = model
        self.processor.start()
        try:
            self.frame_source.start(self.processor.offer)
        except Exception as exc:
            await self.processor.stop()
            logger.error("Frame stream failed to start: %s", exc)
            raise AuthorizationDenied(str(exc)) from exc
        self._set(SessionSnapshot(SessionState.PLAYING))

    async def _halt_stream(self) -> None:
        # Sources may join their producer thread; keep that off the event loop.
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.frame_source.stop)
        await self.processor.stop()

    async def end(self) -> SessionSnapshot:
        """playing -> end. Freezes the final score and the latest raw frame."""
        self._require(SessionState.PLAYING, "end")
        await self._halt_stream()
        confidence = self.processor.prediction.confidence
        score = float(confidence) if confidence is not None else 0.0
        self._set(SessionSnapshot(SessionState.END, score, self.processor.last_frame))
        logger.info("Final score: %.3f", score)
        return self._snapshot

    def reset(self) -> None:
        """end -> start. Clears score, thumbnail, window and prediction."""
        self._require(SessionState.END, "reset")
        self.processor.reset()
        self._set(SessionSnapshot(SessionState.START))

    async def abort(self) -> None:
        """playing -> start. Abandons the round without a score or thumbnail."""
        self._require(SessionState.PLAYING, "abort")
        await self._halt_stream()
        self.processor.reset()
        logger.info("Round aborted.")
        self._set(SessionSnapshot(SessionState.START))

    async def restart(self) -> None:
        """end -> playing via reset and start; a failed start leaves the session in start."""
        self.reset()
        await self.start()


__all__ = ["SessionState", "SessionSnapshot", "SessionStateMachine", "FrameSource"]
