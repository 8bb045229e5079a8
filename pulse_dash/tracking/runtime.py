"""Two ways to drive a :class:`TrackingPipeline` from a display loop.

- :class:`DetectionWorker` runs detection on a daemon thread. Frames go in
  through a one-slot queue and results come back as typed messages that the
  display loop drains with :meth:`DetectionWorker.poll`.
- :class:`CooperativeRunner` runs detection on the asyncio loop itself,
  yielding between display ticks.

Both go through the pipeline's throughput controller, so at most one
detection call is in flight at a time.
"""

from __future__ import annotations

import asyncio
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from pulse_dash.tracking.config import TRACKING_LOGGER as logger
from pulse_dash.tracking.detection.scheduler import DetectResult
from pulse_dash.tracking.pipeline import TrackingPipeline, TrackingSnapshot


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class PoseMessage:
    generation: int
    timestamp: float
    frame_height: int
    result: Optional[DetectResult]


@dataclass(frozen=True)
class ErrorMessage:
    generation: int
    timestamp: float
    message: str


WorkerMessage = Union[PoseMessage, ErrorMessage]
_Job = Tuple[int, np.ndarray, float]


class DetectionWorker:
    """Background detection thread feeding a message queue.

    Every :meth:`disable` bumps a generation counter; messages produced for an
    older generation are dropped by :meth:`poll` so no result from before a
    teardown ever reaches the pipeline.
    """

    def __init__(self, pipeline: TrackingPipeline, *, clock: Callable[[], float] = monotonic_ms) -> None:
        self.pipeline = pipeline
        self._clock = clock
        self._inbox: "queue.Queue[Optional[_Job]]" = queue.Queue(maxsize=1)
        self._outbox: "queue.Queue[WorkerMessage]" = queue.Queue()
        self._generation = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        # A shutdown sentinel left from the last stop would end the new thread at once.
        self._drain_inbox()
        self._thread = threading.Thread(target=self._loop, name="pulse-dash-detection", daemon=True)
        self._thread.start()
        logger.debug("Detection worker started.")

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        if any(job is not None and job[0] == self._generation for job in self._drain_inbox()):
            # The dropped job held the in-flight slot.
            self.pipeline.controller.complete(self._clock())
        try:
            self._inbox.put_nowait(None)
        except queue.Full:
            pass
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Detection worker did not stop within %.1fs", timeout)
        self._thread = None

    def _drain_inbox(self) -> List[Optional[_Job]]:
        drained: List[Optional[_Job]] = []
        while True:
            try:
                drained.append(self._inbox.get_nowait())
            except queue.Empty:
                return drained

    def submit(self, frame: np.ndarray, now: float) -> bool:
        """Hand a frame to the running worker if no call is in flight; return whether it was taken."""
        pipeline = self.pipeline
        if not self.running or not pipeline.enabled or not pipeline.scheduler.ready:
            return False
        if not pipeline.controller.try_begin(now):
            return False
        try:
            self._inbox.put_nowait((self._generation, frame, now))
        except queue.Full:
            pipeline.controller.complete(now)
            return False
        return True

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                job = self._inbox.get(timeout=0.1)
            except queue.Empty:
                continue
            if job is None:
                break
            generation, frame, timestamp = job
            try:
                result = self.pipeline.scheduler.detect(frame, timestamp)
            except Exception as exc:
                self._outbox.put(
                    ErrorMessage(generation=generation, timestamp=timestamp, message=str(exc) or type(exc).__name__)
                )
                continue
            self._outbox.put(
                PoseMessage(generation=generation, timestamp=timestamp, frame_height=int(frame.shape[0]), result=result)
            )

    def poll(self, now: Optional[float] = None) -> List[TrackingSnapshot]:
        """Drain finished messages into the pipeline and return the new snapshots."""
        snapshots: List[TrackingSnapshot] = []
        while True:
            try:
                message = self._outbox.get_nowait()
            except queue.Empty:
                break
            if message.generation != self._generation:
                logger.debug("Dropping result from generation %s", message.generation)
                continue
            done = self._clock() if now is None else now
            if isinstance(message, ErrorMessage):
                self.pipeline.controller.complete(done, message.message)
                continue
            self.pipeline.controller.complete(done)
            if message.result is None:
                continue
            snapshot = self.pipeline.ingest(message.result, message.timestamp, message.frame_height)
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots

    def disable(self) -> None:
        """Tear down tracking state; anything still in flight is discarded."""
        self._generation += 1
        self._drain_inbox()
        self.pipeline.disable()

    def enable(self) -> None:
        self.pipeline.enable()

    def __enter__(self) -> "DetectionWorker":
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()


class CooperativeRunner:
    """Drive detection from an asyncio task, one attempt per display tick."""

    def __init__(
        self,
        pipeline: TrackingPipeline,
        read_frame: Callable[[], Optional[np.ndarray]],
        *,
        tick_s: float = 1.0 / 60.0,
        clock: Callable[[], float] = monotonic_ms,
        on_snapshot: Optional[Callable[[TrackingSnapshot], None]] = None,
        max_ticks: Optional[int] = None,
    ) -> None:
        self.pipeline = pipeline
        self.read_frame = read_frame
        self.tick_s = max(0.0, float(tick_s))
        self._clock = clock
        self.on_snapshot = on_snapshot
        self.max_ticks = max_ticks
        self._stopped = False

    def stop(self) -> None:
        self._stopped = True

    async def run(self) -> int:
        """Run until stopped, the frame source ends or ``max_ticks`` is hit; return ticks run."""
        ticks = 0
        while not self._stopped:
            frame = self.read_frame()
            if frame is None:
                logger.info("Frame source exhausted after %s ticks.", ticks)
                break
            now = self._clock()
            snapshot = await self.pipeline.process_frame_async(frame, now)
            self.pipeline.check_staleness(now)
            if snapshot is not None and self.on_snapshot is not None:
                self.on_snapshot(snapshot)
            ticks += 1
            if self.max_ticks is not None and ticks >= self.max_ticks:
                break
            await asyncio.sleep(self.tick_s)
        return ticks


__all__ = [
    "PoseMessage",
    "ErrorMessage",
    "WorkerMessage",
    "DetectionWorker",
    "CooperativeRunner",
    "monotonic_ms",
]
