"""Backpressure around the per-frame detector call.

The controller never lets two detection calls overlap, spaces calls by a
minimum interval and widens that interval when the achieved rate drops. Errors
raised by a call are reported once per distinct message and never stop the
loop.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, TypeVar

from pulse_dash.tracking.config import TRACKING_LOGGER as logger

T = TypeVar("T")

FAST_INTERVAL_MS = 16.0
SLOW_INTERVAL_MS = 22.0
FPS_WINDOW_MS = 1000.0
MIN_HEALTHY_FPS = 45


class ThroughputController:
    """Single-in-flight guard with adaptive call spacing.

    ``now`` values are milliseconds from the display clock that drives the
    loop. Use :meth:`run`/:meth:`run_async` for inline calls, or
    :meth:`try_begin`/:meth:`complete` when the result arrives later through a
    message queue.
    """

    def __init__(
        self,
        *,
        on_error: Optional[Callable[[str], None]] = None,
        fast_interval_ms: float = FAST_INTERVAL_MS,
        slow_interval_ms: float = SLOW_INTERVAL_MS,
        min_healthy_fps: int = MIN_HEALTHY_FPS,
    ) -> None:
        self.on_error = on_error
        self.fast_interval_ms = float(fast_interval_ms)
        self.slow_interval_ms = float(slow_interval_ms)
        self.min_healthy_fps = int(min_healthy_fps)
        self.reset()

    def reset(self) -> None:
        self.in_flight = False
        self.interval_ms = self.fast_interval_ms
        self.last_issue: Optional[float] = None
        self.fps = 0
        self._window_count = 0
        self._window_start: Optional[float] = None
        self._last_error: Optional[str] = None

    def ready(self, now: float) -> bool:
        if self.in_flight:
            return False
        if self.last_issue is None:
            return True
        return now - self.last_issue >= self.interval_ms

    def try_begin(self, now: float) -> bool:
        """Claim the in-flight slot if a call may be issued at ``now``."""
        if not self.ready(now):
            return False
        self.in_flight = True
        self.last_issue = now
        if self._window_start is None:
            self._window_start = now
        return True

    def complete(self, now: float, error: Optional[BaseException | str] = None) -> None:
        """Release the in-flight slot and account for one finished call."""
        self.in_flight = False
        if error is not None:
            self.report_error(error if isinstance(error, str) else (str(error) or type(error).__name__))
        self._window_count += 1
        if self._window_start is None:
            self._window_start = now
            return
        elapsed = now - self._window_start
        if elapsed > FPS_WINDOW_MS:
            self.fps = int(round(self._window_count * 1000.0 / elapsed))
            previous = self.interval_ms
            self.interval_ms = self.slow_interval_ms if self.fps < self.min_healthy_fps else self.fast_interval_ms
            if previous != self.interval_ms:
                logger.info("Detection rate %s fps; call interval now %.0f ms", self.fps, self.interval_ms)
            self._window_count = 0
            self._window_start = now

    def report_error(self, message: str) -> None:
        if message == self._last_error:
            return
        self._last_error = message
        logger.error("Pose detection failed: %s", message)
        if self.on_error is not None:
            self.on_error(message)

    def run(self, now: float, call: Callable[[], T], *, clock: Optional[Callable[[], float]] = None) -> Optional[T]:
        """Issue ``call`` if allowed; return its result, or ``None`` when skipped or failed."""
        if not self.try_begin(now):
            return None
        result: Optional[T] = None
        error: Optional[BaseException] = None
        try:
            result = call()
        except Exception as exc:
            error = exc
        finally:
            self.complete(clock() if clock else now, error)
        return result

    async def run_async(
        self,
        now: float,
        call: Callable[[], Awaitable[T]],
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> Optional[T]:
        """Awaitable variant of :meth:`run`; the slot stays claimed across the await."""
        if not self.try_begin(now):
            return None
        result: Optional[T] = None
        error: Optional[BaseException] = None
        try:
            result = await call()
        except Exception as exc:
            error = exc
        finally:
            self.complete(clock() if clock else now, error)
        return result


__all__ = ["ThroughputController", "FAST_INTERVAL_MS", "SLOW_INTERVAL_MS", "MIN_HEALTHY_FPS"]
