"""Periodic check that flags the pose as lost when samples stop arriving."""

from __future__ import annotations

from typing import Optional

from pulse_dash.tracking.config import TRACKING_LOGGER as logger

CHECK_PERIOD_MS = 500.0
STALE_AFTER_MS = 1000.0


class StalenessDetector:
    """Compare "now" against the last pose timestamp every ``check_period_ms``.

    The flag only changes on a check, mirroring a fixed-period timer driven by
    the caller's clock. Before any pose has been seen the flag stays as is.
    """

    def __init__(self, *, check_period_ms: float = CHECK_PERIOD_MS, stale_after_ms: float = STALE_AFTER_MS) -> None:
        self.check_period_ms = float(check_period_ms)
        self.stale_after_ms = float(stale_after_ms)
        self.last_pose_timestamp: Optional[float] = None
        self.is_stale = False
        self._last_check: Optional[float] = None

    def mark_pose(self, timestamp: float) -> None:
        self.last_pose_timestamp = float(timestamp)

    def check(self, now: float) -> bool:
        """Run the periodic check if it is due and return the current flag."""
        if self._last_check is not None and now - self._last_check < self.check_period_ms:
            return self.is_stale
        self._last_check = now
        if self.last_pose_timestamp is None:
            return self.is_stale
        stale = now - self.last_pose_timestamp > self.stale_after_ms
        if stale != self.is_stale:
            logger.info("Pose %s (%.0f ms since last sample)", "lost" if stale else "recovered", now - self.last_pose_timestamp)
        self.is_stale = stale
        return self.is_stale

    def reset(self) -> None:
        self.last_pose_timestamp = None
        self.is_stale = False
        self._last_check = None


__all__ = ["StalenessDetector", "CHECK_PERIOD_MS", "STALE_AFTER_MS"]
