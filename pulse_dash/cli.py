from __future__ import annotations

import asyncio
import json
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import DETECTION_MODES, as_dict as config_as_dict, coerce_detection_mode, get_config
from .storage import calibration_file, clear_thresholds, load_thresholds, save_thresholds
from .tracking.calibration import CalibrationError, CalibrationThresholds
from .tracking.config import MODE_TUNING
from .tracking.gestures import GESTURE_IDLE
from .tracking.pipeline import TrackingPipeline, TrackingSnapshot

app = typer.Typer(help="Turn webcam pose tracking into jump, flap and pump game controls.")


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _echo_snapshot(snapshot: TrackingSnapshot, *, verbose: bool) -> None:
    events = []
    if snapshot.gesture != GESTURE_IDLE:
        events.append(snapshot.gesture)
    if snapshot.jump_active:
        events.append("hands-up")
    if snapshot.pump_active:
        events.append(f"pump x{snapshot.speed_multiplier:.2f}")
    if events:
        typer.echo(f"[{snapshot.timestamp:.0f} ms] " + ", ".join(events))
    elif verbose:
        state = "stale" if snapshot.is_pose_stale else ("pose" if snapshot.has_pose else "no pose")
        typer.echo(f"[{snapshot.timestamp:.0f} ms] {state}, wrist y={snapshot.wrist_y:.2f}, {snapshot.fps} fps")


def _build_pipeline(mode: str) -> TrackingPipeline:
    from .tracking.detection.mediapipe_detectors import MediaPipeHandDetector, MediaPipePoseDetector
    from .tracking.detection.scheduler import HybridDetectionScheduler

    config = get_config()
    scheduler = HybridDetectionScheduler(MediaPipeHandDetector(), MediaPipePoseDetector(), mode=mode)
    return TrackingPipeline(
        scheduler,
        mode=mode,
        thresholds=load_thresholds(),
        ema_alpha=config.ema_alpha,
        check_period_ms=config.staleness.check_period_ms,
        stale_after_ms=config.staleness.stale_after_ms,
        on_error=lambda message: typer.secho(f"Detection error: {message}", fg=typer.colors.YELLOW, err=True),
    )


@app.command()
def run(
    mode: Optional[str] = typer.Option(
        None,
        "--mode",
        "-m",
        help=f"Detection mode ({', '.join(DETECTION_MODES)}); defaults to the configured mode.",
    ),
    camera: Optional[int] = typer.Option(
        None,
        "--camera",
        "-c",
        help="OpenCV camera index (defaults to the configured camera).",
    ),
    max_frames: Optional[int] = typer.Option(
        None,
        "--max-frames",
        help="Stop after this many captured frames.",
    ),
    threaded: bool = typer.Option(
        True,
        "--threaded/--cooperative",
        help="Run detection on a worker thread (default) or cooperatively on an asyncio loop.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Print a line for every processed sample, not just gestures.",
    ),
) -> None:
    """
    Track the webcam and print gesture events as they fire.
    """
    import cv2

    from .tracking.detection.base import DetectorUnavailableError
    from .tracking.runtime import CooperativeRunner, DetectionWorker, monotonic_ms

    config = get_config()
    resolved_mode = coerce_detection_mode(mode or config.detection_mode)
    camera_index = config.camera_index if camera is None else camera

    pipeline = _build_pipeline(resolved_mode)
    try:
        pipeline.scheduler.initialize()
    except DetectorUnavailableError as exc:
        _fail(str(exc))

    capture = cv2.VideoCapture(camera_index)
    if not capture.isOpened():
        pipeline.close()
        _fail(f"Could not open camera {camera_index}.")

    frames_read = 0

    def _read_frame():
        nonlocal frames_read
        if max_frames is not None and frames_read >= max_frames:
            return None
        ok, frame = capture.read()
        if not ok or frame is None:
            return None
        frames_read += 1
        # Mirror so raising the right hand moves the right side on screen.
        return cv2.cvtColor(cv2.flip(frame, 1), cv2.COLOR_BGR2RGB)

    typer.echo(f"Tracking camera {camera_index} in {resolved_mode} mode ({'threaded' if threaded else 'cooperative'}).")
    try:
        if threaded:
            with DetectionWorker(pipeline) as worker:
                while True:
                    frame = _read_frame()
                    if frame is None:
                        break
                    now = monotonic_ms()
                    worker.submit(frame, now)
                    for snapshot in worker.poll(now):
                        _echo_snapshot(snapshot, verbose=verbose)
                    pipeline.check_staleness(now)
        else:
            runner = CooperativeRunner(
                pipeline,
                _read_frame,
                on_snapshot=lambda snapshot: _echo_snapshot(snapshot, verbose=verbose),
            )
            asyncio.run(runner.run())
    except KeyboardInterrupt:
        typer.echo("Interrupted.")
    finally:
        capture.release()
        pipeline.close()
    typer.echo(f"Processed {frames_read} frames.")


@app.command()
def calibrate(
    idle: Optional[float] = typer.Option(
        None,
        "--idle",
        help="Normalized wrist height at rest (0 = top of frame, 1 = bottom).",
    ),
    jump: Optional[float] = typer.Option(
        None,
        "--jump",
        help="Normalized wrist height that counts as a jump.",
    ),
    show: bool = typer.Option(
        False,
        "--show",
        help="Print the stored thresholds.",
    ),
    clear: bool = typer.Option(
        False,
        "--clear",
        help="Forget the stored thresholds and fall back to shoulder-relative lines.",
    ),
) -> None:
    """
    Store, show or clear the calibrated idle/jump wrist heights.
    """
    if clear:
        removed = clear_thresholds()
        typer.echo("Calibration cleared." if removed else "No calibration stored.")
        return

    if idle is not None or jump is not None:
        if idle is None or jump is None:
            _fail("Provide both --idle and --jump.")
        try:
            thresholds = CalibrationThresholds(idle_threshold=idle, jump_threshold=jump)
        except CalibrationError as exc:
            _fail(str(exc))
        if thresholds.jump_threshold >= thresholds.idle_threshold:
            typer.secho(
                "Jump line is not above the idle line; it will be clamped during tracking.",
                fg=typer.colors.YELLOW,
                err=True,
            )
        path = save_thresholds(thresholds)
        typer.echo(f"Saved calibration to {path}")
        return

    if not show:
        _fail("Nothing to do; pass --idle/--jump, --show or --clear.", code=2)

    thresholds = load_thresholds()
    if thresholds is None:
        typer.echo(f"No calibration stored at {calibration_file()}.")
        return
    typer.echo(json.dumps(thresholds.to_mapping(), indent=2, sort_keys=True))


@app.command()
def modes() -> None:
    """
    List detection modes with their cadence and gesture tuning.
    """
    table = Table(title="Detection modes")
    for column in ("mode", "skip", "refresh", "window ms", "flap px/s", "cycles", "pump"):
        table.add_column(column)
    default_mode = get_config().detection_mode
    for name in DETECTION_MODES:
        tuning = MODE_TUNING[name]
        label = f"{name} *" if name == default_mode else name
        table.add_row(
            label,
            str(tuning.frame_skip),
            str(tuning.pose_refresh),
            f"{tuning.jump_window_ms:.0f}",
            f"{tuning.flap_velocity_threshold:.0f}",
            str(tuning.flap_cycles),
            f"{tuning.pump_threshold:.2f}",
        )
    Console().print(table)


@app.command("config")
def config_show() -> None:
    """
    Show the effective configuration.
    """
    config = config_as_dict()
    typer.echo(f"Config source: {config.get('source')}")
    typer.echo(f"Detection mode: {config.get('detection_mode')}")
    typer.echo(f"Camera index: {config.get('camera_index')}")
    typer.echo(f"EMA alpha: {config.get('ema_alpha')}")
    staleness = config.get("staleness", {})
    typer.echo(
        "Staleness: "
        f"check every {staleness.get('check_period_ms')} ms, stale after {staleness.get('stale_after_ms')} ms"
    )
    typer.echo(f"Calibration file: {calibration_file()}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
