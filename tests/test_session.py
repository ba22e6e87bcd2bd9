from __future__ import annotations

import asyncio
import threading

import numpy as np
import pytest

from action_tracker.recognition.config import EngineConfig
from action_tracker.recognition.errors import AuthorizationDenied, ModelLoadFailure, SessionStateError
from action_tracker.recognition.processor import FrameProcessor
from action_tracker.recognition.session import SessionState, SessionStateMachine
from action_tracker.recognition.types import STARTING, Frame, Skeleton

SMALL = EngineConfig(window_capacity=2, eviction_stride=1)


class FakeSource:
    def __init__(self, events: list[str], *, deny: bool = False) -> None:
        self.events = events
        self.deny = deny
        self.callback = None

    async def authorize(self) -> None:
        self.events.append("authorize")
        if self.deny:
            raise AuthorizationDenied("camera permission refused")

    def start(self, callback) -> None:
        self.events.append("start")
        self.callback = callback

    def stop(self) -> None:
        self.events.append("stop")


class FakeLoader:
    def __init__(self, events: list[str], result) -> None:
        self.events = events
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        self.events.append("load")
        await asyncio.sleep(0)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FixedClassifier:
    def __init__(self, probabilities) -> None:
        self.probabilities = probabilities

    def predict(self, window):
        return dict(self.probabilities)


class PersonDetector:
    def __init__(self, present: bool = True) -> None:
        self.present = present

    def detect(self, image, orientation):
        if not self.present:
            return []
        return [Skeleton.from_points({"nose": (0.5, 0.8, 0.9), "left_ankle": (0.4, 0.1, 0.9)})]


def _frame(idx: int) -> Frame:
    return Frame(np.full((2, 2, 3), idx, dtype=np.uint8), timestamp=float(idx))


def _session(*, classifier=None, deny=False, detector=None):
    events: list[str] = []
    processor = FrameProcessor(detector or PersonDetector(), None, SMALL)
    source = FakeSource(events, deny=deny)
    loader = FakeLoader(events, classifier if classifier is not None else FixedClassifier({"target": 0.92}))
    return SessionStateMachine(processor, source, loader), processor, source, loader, events


def test_full_round_captures_score_and_thumbnail():
    session, processor, source, _loader, events = _session()

    async def scenario():
        await session.start()
        assert session.state is SessionState.PLAYING
        assert processor.running
        for idx in range(3):
            await processor.process_frame(_frame(idx))
        return await session.end()

    snapshot = asyncio.run(scenario())
    assert events == ["load", "authorize", "start", "stop"]
    assert source.callback == processor.offer
    assert snapshot.state is SessionState.END
    assert snapshot.final_score == pytest.approx(0.92)
    assert int(snapshot.captured_frame[0, 0, 0]) == 2
    assert not processor.running


def test_sentinel_prediction_scores_zero():
    session, processor, _source, _loader, _events = _session(detector=PersonDetector(present=False))

    async def scenario():
        await session.start()
        await processor.process_frame(_frame(0))
        await session.end()

    asyncio.run(scenario())
    assert processor.prediction.confidence is None
    assert session.final_score == 0.0


def test_model_load_failure_keeps_start_and_skips_authorization():
    session, processor, _source, _loader, events = _session(classifier=ModelLoadFailure("missing model"))

    with pytest.raises(ModelLoadFailure):
        asyncio.run(session.start())
    assert session.state is SessionState.START
    assert events == ["load"]
    assert not processor.running


def test_unexpected_loader_error_is_reported_as_model_load_failure():
    session, *_ = _session(classifier=OSError("disk unplugged"))
    with pytest.raises(ModelLoadFailure, match="disk unplugged"):
        asyncio.run(session.start())
    assert session.state is SessionState.START


def test_authorization_denied_keeps_start():
    session, processor, _source, _loader, events = _session(deny=True)

    with pytest.raises(AuthorizationDenied):
        asyncio.run(session.start())
    assert session.state is SessionState.START
    assert events == ["load", "authorize"]
    assert not processor.running
    assert processor.classifier is None


def test_invalid_transitions_raise():
    session, *_ = _session()
    with pytest.raises(SessionStateError):
        asyncio.run(session.end())
    with pytest.raises(SessionStateError):
        session.reset()

    async def scenario():
        await session.start()
        with pytest.raises(SessionStateError):
            await session.start()
        with pytest.raises(SessionStateError):
            session.reset()
        await session.end()

    asyncio.run(scenario())
    assert session.state is SessionState.END


def test_reset_clears_round_state():
    session, processor, _source, _loader, _events = _session()

    async def scenario():
        await session.start()
        for idx in range(2):
            await processor.process_frame(_frame(idx))
        await session.end()

    asyncio.run(scenario())
    assert session.final_score == pytest.approx(0.92)

    session.reset()
    assert session.state is SessionState.START
    assert session.final_score is None
    assert session.captured_frame is None
    assert len(processor.window) == 0
    assert processor.prediction is STARTING


def test_restart_returns_to_playing_and_failed_restart_stays_in_start():
    session, processor, _source, loader, _events = _session()
    states: list[SessionState] = []
    session.add_listener(lambda snapshot: states.append(snapshot.state))

    async def round_trip():
        await session.start()
        await processor.process_frame(_frame(0))
        await session.end()
        await session.restart()
        assert session.state is SessionState.PLAYING
        await session.end()

    asyncio.run(round_trip())
    assert states == [
        SessionState.PLAYING,
        SessionState.END,
        SessionState.START,
        SessionState.PLAYING,
        SessionState.END,
    ]
    assert loader.calls == 2

    loader.result = ModelLoadFailure("model deleted")
    with pytest.raises(ModelLoadFailure):
        asyncio.run(session.restart())
    assert session.state is SessionState.START


def test_abort_abandons_playing_round():
    session, processor, _source, _loader, events = _session()

    async def scenario():
        await session.start()
        for idx in range(3):
            await processor.process_frame(_frame(idx))
        assert processor.prediction.confidence is not None
        await session.abort()

    asyncio.run(scenario())
    assert events == ["load", "authorize", "start", "stop"]
    assert session.state is SessionState.START
    assert session.final_score is None
    assert session.captured_frame is None
    assert processor.prediction is STARTING
    assert processor.last_frame is None
    assert len(processor.window) == 0
    assert not processor.running


def test_abort_requires_playing_and_allows_a_new_round():
    session, processor, _source, _loader, _events = _session()
    with pytest.raises(SessionStateError):
        asyncio.run(session.abort())

    async def scenario():
        await session.start()
        await session.abort()
        await session.start()
        assert await processor.process_frame(_frame(5))
        return await session.end()

    snapshot = asyncio.run(scenario())
    assert snapshot.state is SessionState.END
    assert int(snapshot.captured_frame[0, 0, 0]) == 5


def test_end_stops_source_off_the_event_loop_thread():
    session, _processor, source, _loader, _events = _session()
    stop_threads = []
    source.stop = lambda: stop_threads.append(threading.current_thread())

    async def scenario():
        await session.start()
        await session.end()

    asyncio.run(scenario())
    assert len(stop_threads) == 1
    assert stop_threads[0] is not threading.main_thread()
