from __future__ import annotations

import asyncio
import threading
import time

from _fakes import FakeHandDetector, FakePoseDetector, blank_frame, pose_landmarks
from pulse_dash.tracking.detection.scheduler import HybridDetectionScheduler
from pulse_dash.tracking.pipeline import TrackingPipeline
from pulse_dash.tracking.runtime import CooperativeRunner, DetectionWorker, ErrorMessage, PoseMessage


def _pipeline(hands=None, **kwargs):
    scheduler = HybridDetectionScheduler(
        hands or FakeHandDetector(),
        FakePoseDetector(pose_landmarks({"left_wrist": (0.25, 0.5, 0.8)})),
        mode="accuracy",
    )
    return TrackingPipeline(scheduler, mode="accuracy", **kwargs)


def _poll_until(worker, now, *, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        snapshots = worker.poll(now)
        if snapshots or not worker.pipeline.controller.in_flight:
            return snapshots
        time.sleep(0.01)
    raise AssertionError("worker did not answer in time")


def test_worker_round_trip():
    pipeline = _pipeline()
    with DetectionWorker(pipeline) as worker:
        assert worker.running
        assert worker.submit(blank_frame(), 0)
        # Single call in flight until the result is polled.
        assert not worker.submit(blank_frame(), 50)
        snapshots = _poll_until(worker, 10)
    assert not worker.running
    assert len(snapshots) == 1
    assert snapshots[0].has_pose
    assert snapshots[0].timestamp == 0
    assert not pipeline.controller.in_flight


def test_worker_reports_errors_through_controller():
    errors = []
    pipeline = _pipeline(FakeHandDetector(error=RuntimeError("model crashed")), on_error=errors.append)
    with DetectionWorker(pipeline) as worker:
        assert worker.submit(blank_frame(), 0)
        assert _poll_until(worker, 10) == []
    assert errors == ["model crashed"]
    assert not pipeline.controller.in_flight


def test_results_from_before_disable_are_dropped():
    gate = threading.Event()
    pipeline = _pipeline(FakeHandDetector(gate=gate))
    worker = DetectionWorker(pipeline)
    worker.start()
    try:
        assert worker.submit(blank_frame(), 0)
        worker.disable()
        assert worker.generation == 1
        assert not pipeline.controller.in_flight
        gate.set()

        deadline = time.monotonic() + 5.0
        while worker._outbox.empty() and time.monotonic() < deadline:
            time.sleep(0.01)
        assert worker.poll(100) == []
        assert pipeline.last_snapshot is None
        # Disabled pipelines take no new work.
        assert not worker.submit(blank_frame(), 200)

        worker.enable()
        assert worker.submit(blank_frame(), 300)
        snapshots = _poll_until(worker, 310)
        assert len(snapshots) == 1
    finally:
        worker.stop()


def test_poll_ignores_stale_generation_messages():
    pipeline = _pipeline()
    worker = DetectionWorker(pipeline)
    worker.disable()
    worker.enable()
    worker._outbox.put(PoseMessage(generation=0, timestamp=0, frame_height=480, result=None))
    worker._outbox.put(ErrorMessage(generation=0, timestamp=0, message="old failure"))
    assert worker.poll(10) == []


def test_submit_requires_ready_detectors():
    scheduler = HybridDetectionScheduler(FakeHandDetector(ready=False), FakePoseDetector(ready=False))
    worker = DetectionWorker(TrackingPipeline(scheduler))
    assert not worker.submit(blank_frame(), 0)
    assert not worker.pipeline.controller.in_flight


def test_submit_before_start_is_refused():
    pipeline = _pipeline()
    worker = DetectionWorker(pipeline)
    assert not worker.submit(blank_frame(), 0)
    assert not pipeline.controller.in_flight


def test_stop_releases_slot_of_queued_frame(monkeypatch):
    pipeline = _pipeline()
    worker = DetectionWorker(pipeline, clock=lambda: 5.0)
    # Keep the thread idle so the submitted frame is still queued at stop.
    monkeypatch.setattr(worker, "_loop", lambda: worker._stop.wait())
    worker.start()
    assert worker.submit(blank_frame(), 0)
    worker.stop()
    assert not pipeline.controller.in_flight

    monkeypatch.undo()
    with worker:
        assert worker.submit(blank_frame(), 10_000)
        snapshots = _poll_until(worker, 10_010)
    assert len(snapshots) == 1
    assert snapshots[0].timestamp == 10_000


def _clock(step=100.0):
    ticks = iter(range(10_000))
    return lambda: next(ticks) * step


def test_cooperative_runner_processes_until_frames_run_out():
    frames = [blank_frame() for _ in range(3)]
    seen = []
    runner = CooperativeRunner(
        _pipeline(),
        lambda: frames.pop() if frames else None,
        tick_s=0.0,
        clock=_clock(),
        on_snapshot=seen.append,
    )
    ticks = asyncio.run(runner.run())
    assert ticks == 3
    assert len(seen) == 3
    assert [snapshot.timestamp for snapshot in seen] == [0.0, 100.0, 200.0]


def test_cooperative_runner_honours_max_ticks_and_stop():
    runner = CooperativeRunner(_pipeline(), blank_frame, tick_s=0.0, clock=_clock(), max_ticks=2)
    assert asyncio.run(runner.run()) == 2

    stopped = CooperativeRunner(_pipeline(), blank_frame, tick_s=0.0, clock=_clock())
    stopped.stop()
    assert asyncio.run(stopped.run()) == 0
