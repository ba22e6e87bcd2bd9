from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, List, Optional

import typer
from rich.progress import Progress

from .config import as_dict as config_as_dict, get_config
from .recognition.classifier import ClassifierLoader, SoftmaxClassifier
from .recognition.config import EngineConfig, load_config_from_file
from .recognition.errors import AuthorizationDenied, ModelLoadFailure
from .recognition.processor import FrameProcessor, PipelineSnapshot
from .recognition.session import SessionState, SessionStateMachine
from .recognition.types import STARTING, Orientation

app = typer.Typer(help="Real-time single-subject action recognition from a camera or video.")

_POLL_INTERVAL = 1.0 / 30.0


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _engine_config(config_file: Optional[Path]) -> EngineConfig:
    engine = get_config().engine
    try:
        if config_file is not None:
            engine = load_config_from_file(config_file)
        engine.validate()
    except (OSError, ValueError) as exc:
        _fail(f"Invalid recognition configuration: {exc}")
    return engine


def _build_detector(*, realtime: bool) -> Any:
    """Create the MediaPipe detector; wrapped for executor use when running live."""
    from .recognition.pose_estimation.pose_detector import AsyncPoseDetector, PoseDetector

    detector = PoseDetector()
    return AsyncPoseDetector(detector) if realtime else detector


def _build_camera(camera_index: int, rotation_angle: float, frame_rate: float) -> Any:
    from .recognition.pose_estimation.frame_source import CameraFrameSource

    return CameraFrameSource(camera_index, rotation_angle=rotation_angle, frame_rate=frame_rate)


def _close(detector: Any) -> None:
    close = getattr(detector, "close", None)
    if callable(close):
        close()


def _describe(snapshot: PipelineSnapshot) -> str:
    prediction = snapshot.prediction
    if prediction.is_model_label:
        return f"{prediction.label} ({prediction.confidence_text})"
    return prediction.label


class _ChangePrinter:
    """Echo a line each time the published prediction changes."""

    def __init__(self) -> None:
        self.last: Any = STARTING
        self.lines: List[str] = []

    def __call__(self, snapshot: PipelineSnapshot) -> None:
        if snapshot.prediction == self.last or snapshot.prediction == STARTING:
            return
        self.last = snapshot.prediction
        stamp = f"{snapshot.timestamp:7.2f}s" if snapshot.timestamp is not None else "       "
        line = f"[{stamp}] frame {snapshot.frame_index}: {_describe(snapshot)}"
        self.lines.append(line)
        typer.echo(line)


class _PreviewWindow:
    """OpenCV window showing the latest frame with the published skeleton and prediction."""

    def __init__(self, orientation: Orientation, title: str = "action-tracker") -> None:
        import cv2

        self._cv2 = cv2
        self.orientation = orientation
        self.title = title

    def show(self, processor: FrameProcessor) -> bool:
        """Draw the current state; returns False once the user pressed `q`."""
        from .recognition.overlay import render_preview

        image = processor.last_frame
        if image is not None:
            snapshot = processor.snapshot
            canvas = render_preview(image, snapshot.skeleton, snapshot.prediction, self.orientation)
            self._cv2.imshow(self.title, canvas)
        return (self._cv2.waitKey(1) & 0xFF) != ord("q")

    def close(self) -> None:
        self._cv2.destroyWindow(self.title)


async def _live_session(
    session: SessionStateMachine, duration: float, preview: Optional[_PreviewWindow] = None
) -> Optional[str]:
    """Play one round; returns the frame source failure when the stream was lost."""
    await session.start()
    loop = asyncio.get_running_loop()
    deadline = loop.time() + duration if duration > 0 else None
    failed = getattr(session.frame_source, "failed", None)
    lost: Optional[str] = None
    try:
        while deadline is None or loop.time() < deadline:
            if failed is not None and failed.is_set():
                lost = getattr(session.frame_source, "failure", None) or "frame source failed"
                break
            if preview is not None and not preview.show(session.processor):
                break
            await asyncio.sleep(_POLL_INTERVAL)
    finally:
        if session.state is SessionState.PLAYING:
            await session.end()
    return lost


@app.command("run")
def run_session(
    model: Optional[Path] = typer.Option(None, "--model", "-m", help="Classifier model (.npz). Defaults to config."),
    camera: Optional[int] = typer.Option(None, "--camera", "-c", help="Camera index. Defaults to config."),
    duration: float = typer.Option(0.0, "--duration", "-d", help="Seconds to record; 0 runs until Ctrl-C."),
    rotation: Optional[float] = typer.Option(None, "--rotation", help="Capture rotation angle (0/90/180/270)."),
    thumbnail: Optional[Path] = typer.Option(None, "--thumbnail", "-t", help="Write the final frame to this image."),
    preview: bool = typer.Option(
        False, "--preview", "-p", help="Show the camera feed with skeleton and prediction; q ends the round."
    ),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Recognition settings (.toml/.json)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """
    Run one live recognition round from the camera and print the final score.

    Example:
        action-tracker run --model models/action_classifier.npz --duration 20 --thumbnail final.png
        action-tracker run --preview
    """
    _configure_logging(verbose)
    settings = get_config()
    engine = _engine_config(config_file)
    model_path = model or settings.model_path
    rotation_angle = settings.rotation_angle if rotation is None else rotation

    try:
        detector = _build_detector(realtime=True)
    except (RuntimeError, ImportError) as exc:
        _fail(f"Could not initialise the pose detector: {exc}")

    printer = _ChangePrinter()
    processor = FrameProcessor(detector, config=engine, on_update=printer)
    source = _build_camera(settings.camera_index if camera is None else camera, rotation_angle, settings.frame_rate)
    session = SessionStateMachine(processor, source, ClassifierLoader(model_path))
    window = _PreviewWindow(Orientation.from_rotation_angle(rotation_angle)) if preview else None

    lost: Optional[str] = None
    try:
        lost = asyncio.run(_live_session(session, duration, window))
    except ModelLoadFailure as exc:
        _fail(f"Could not load classifier: {exc}")
    except AuthorizationDenied as exc:
        _fail(f"Camera unavailable: {exc}")
    except KeyboardInterrupt:
        typer.echo("Interrupted; ending session.")
    finally:
        _close(detector)
        if window is not None:
            window.close()

    if lost is not None:
        typer.secho(f"Camera lost: {lost}; round ended early.", fg=typer.colors.YELLOW)
    if session.state is not SessionState.END:
        _fail("Session ended before a score was captured.")
    typer.echo(f"Final score: {session.final_score:.3f}")
    if thumbnail is not None:
        if session.captured_frame is None:
            typer.secho("No frame captured; thumbnail not written.", fg=typer.colors.YELLOW)
            return
        from .recognition.overlay import export_thumbnail

        written = export_thumbnail(session.captured_frame, thumbnail)
        typer.echo(f"Thumbnail written to {written}")


async def _classify_frames(processor: FrameProcessor, frames: Any, progress: Progress, task: Any) -> int:
    count = 0
    for frame in frames:
        await processor.process_frame(frame)
        count += 1
        progress.advance(task)
    return count


@app.command("classify")
def classify_video(
    video: Path = typer.Argument(..., help="Video file to classify frame by frame."),
    model: Optional[Path] = typer.Option(None, "--model", "-m", help="Classifier model (.npz). Defaults to config."),
    rotation: Optional[float] = typer.Option(None, "--rotation", help="Capture rotation angle (0/90/180/270)."),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Recognition settings (.toml/.json)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """
    Classify every frame of a video file in order and print prediction changes.

    Example:
        action-tracker classify throw.mp4 --model models/action_classifier.npz
    """
    _configure_logging(verbose)
    settings = get_config()
    engine = _engine_config(config_file)
    model_path = model or settings.model_path
    orientation = Orientation.from_rotation_angle(settings.rotation_angle if rotation is None else rotation)

    from .recognition.pose_estimation.frame_source import iter_video_frames, validate_video_readable

    try:
        info = validate_video_readable(video)
    except (OSError, RuntimeError, ValueError) as exc:
        _fail(f"Video unreadable: {exc}")
    try:
        classifier = SoftmaxClassifier.from_file(model_path)
    except (OSError, ValueError) as exc:
        _fail(f"Could not load classifier: {exc}")
    try:
        detector = _build_detector(realtime=False)
    except (RuntimeError, ImportError) as exc:
        _fail(f"Could not initialise the pose detector: {exc}")

    printer = _ChangePrinter()
    processor = FrameProcessor(detector, classifier, engine, on_update=printer)
    try:
        with Progress() as progress:
            task = progress.add_task(f"Classifying {video.name}", total=info.get("total_frames") or None)
            frames = iter_video_frames(video, orientation=orientation)
            count = asyncio.run(_classify_frames(processor, frames, progress, task))
    finally:
        _close(detector)

    typer.echo(f"Processed {count} frames; final prediction: {_describe(processor.snapshot)}")
    stats = processor.stats
    if stats.detector_failures or stats.classifier_failures:
        typer.secho(
            f"Recovered from {stats.detector_failures} detector and {stats.classifier_failures} classifier failures.",
            fg=typer.colors.YELLOW,
        )


@app.command("config")
def config_show(
    config_file: Optional[Path] = typer.Option(None, "--config", help="Show settings loaded from this file instead."),
) -> None:
    """
    Show the effective configuration as JSON.
    """
    payload = config_as_dict()
    if config_file is not None:
        try:
            payload["recognition"] = load_config_from_file(config_file).as_dict()
        except (OSError, ValueError) as exc:
            _fail(f"Invalid recognition configuration: {exc}")
        payload["source"] = str(config_file)
    typer.echo(json.dumps(payload, indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
