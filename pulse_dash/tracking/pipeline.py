"""Per-subject tracking pipeline: detector output in, game signals out."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from pulse_dash.tracking.calibration import CalibrationThresholds
from pulse_dash.tracking.config import (
    EMA_ALPHA,
    KEYPOINT_PRESENT_SCORE,
    POSE_PRESENT_SCORE,
    TRACKING_LOGGER as logger,
    get_tuning,
)
from pulse_dash.tracking.detection.scheduler import DetectResult, HybridDetectionScheduler
from pulse_dash.tracking.filtering import FilteredPoint, WristFilter
from pulse_dash.tracking.gestures import (
    GESTURE_IDLE,
    GestureInput,
    HandsUpInput,
    HandsUpState,
    create_gesture_state,
    update_gesture,
    update_hands_up,
)
from pulse_dash.tracking.keypoints import (
    Keypoint,
    Skeleton,
    find_keypoint,
    get_shoulder_keypoint,
    get_wrist_keypoint,
    normalize_y,
    smooth_keypoints,
)
from pulse_dash.tracking.pump import PumpInput, create_pump_state, update_pump_state
from pulse_dash.tracking.staleness import CHECK_PERIOD_MS, STALE_AFTER_MS, StalenessDetector
from pulse_dash.tracking.throughput import ThroughputController


@dataclass(frozen=True)
class TrackingSnapshot:
    """Everything the game loop reads after one processed sample."""

    timestamp: float
    keypoints: Skeleton
    gesture: str
    jump_active: bool
    pump_active: bool
    speed_multiplier: float
    average_velocity: float
    has_pose: bool
    has_wrist: bool
    is_pose_stale: bool
    fps: int
    wrist: Optional[Keypoint] = None
    wrist_filtered: Optional[FilteredPoint] = None
    wrist_y: float = 0.0
    wrist_filtered_y: float = 0.0


def _visible(point: Optional[Keypoint]) -> bool:
    return point is not None and point.score > KEYPOINT_PRESENT_SCORE


class TrackingPipeline:
    """Owns the scheduler plus every piece of per-subject tracking state.

    Each ingested detection produces exactly one gesture transition and one
    pump transition. :meth:`disable` drops all of that state synchronously.
    """

    def __init__(
        self,
        scheduler: HybridDetectionScheduler,
        *,
        mode: str | None = None,
        thresholds: Optional[CalibrationThresholds] = None,
        ema_alpha: float = EMA_ALPHA,
        check_period_ms: float = CHECK_PERIOD_MS,
        stale_after_ms: float = STALE_AFTER_MS,
        on_error: Optional[Callable[[str], None]] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.scheduler = scheduler
        self.controller = ThroughputController(on_error=on_error)
        self.staleness = StalenessDetector(check_period_ms=check_period_ms, stale_after_ms=stale_after_ms)
        self.ema_alpha = float(ema_alpha)
        self.thresholds = thresholds
        self.enabled = True
        self._clock = clock
        self._wrist_filter = WristFilter()
        self.set_mode(mode)
        self._reset_state()

    def _reset_state(self) -> None:
        self._smoothed: Optional[Skeleton] = None
        self._wrist_filter.reset()
        self._gesture_state = create_gesture_state()
        self._hands_up_state = HandsUpState()
        self._pump_state = create_pump_state()
        self.last_snapshot: Optional[TrackingSnapshot] = None

    def set_mode(self, mode: str | None) -> None:
        """Apply a detection mode to the scheduler and the gesture tuning."""
        self.tuning = get_tuning(mode)
        self.mode = self.tuning.mode
        self.scheduler.update_mode(self.mode)

    def set_thresholds(self, thresholds: Optional[CalibrationThresholds]) -> None:
        self.thresholds = thresholds

    def enable(self) -> None:
        if not self.enabled:
            logger.info("Tracking enabled.")
        self.enabled = True

    def disable(self) -> None:
        """Stop tracking and tear down filters, caches and in-flight bookkeeping."""
        self.enabled = False
        self._reset_state()
        self.scheduler.reset()
        self.controller.reset()
        self.staleness.reset()
        logger.info("Tracking disabled; per-subject state cleared.")

    def close(self) -> None:
        self.disable()
        self.scheduler.close()

    def check_staleness(self, now: float) -> bool:
        return self.staleness.check(now)

    def _can_detect(self) -> bool:
        return self.enabled and self.scheduler.ready

    def process_frame(self, frame: np.ndarray, now: float) -> Optional[TrackingSnapshot]:
        """Run detection inline when the throughput controller allows it."""
        if not self._can_detect():
            return None
        result = self.controller.run(now, lambda: self.scheduler.detect(frame, now), clock=self._clock)
        if result is None:
            return None
        return self.ingest(result, now, frame_height=int(frame.shape[0]))

    async def process_frame_async(self, frame: np.ndarray, now: float) -> Optional[TrackingSnapshot]:
        """Cooperative variant of :meth:`process_frame` for an asyncio loop."""
        if not self._can_detect():
            return None

        async def _detect() -> Optional[DetectResult]:
            await asyncio.sleep(0)
            return self.scheduler.detect(frame, now)

        result = await self.controller.run_async(now, _detect, clock=self._clock)
        if result is None or not self.enabled:
            return None
        return self.ingest(result, now, frame_height=int(frame.shape[0]))

    def ingest(self, result: DetectResult, now: float, frame_height: float) -> Optional[TrackingSnapshot]:
        """Turn one detection result into signals; ``None`` while disabled."""
        if not self.enabled:
            return None

        keypoints = smooth_keypoints(self._smoothed, result.keypoints, self.ema_alpha)
        self._smoothed = keypoints
        self.staleness.mark_pose(now)
        is_stale = self.staleness.is_stale
        has_pose = result.max_score > POSE_PRESENT_SCORE and not is_stale
        height = float(frame_height) if frame_height and frame_height > 0 else 1.0

        wrist = get_wrist_keypoint(keypoints)
        shoulder = get_shoulder_keypoint(keypoints)
        has_wrist = _visible(wrist)
        wrist_filtered = self._wrist_filter.update(wrist) if has_wrist else None

        gesture_update = update_gesture(
            self._gesture_state,
            GestureInput(
                wrist_y=normalize_y(wrist.y, height) if wrist else 0.0,
                wrist_x=wrist.x if wrist else 0.0,
                shoulder_y=normalize_y(shoulder.y, height) if shoulder else 0.0,
                thresholds=self.thresholds,
                has_pose=has_pose,
                has_wrist=has_wrist,
                timestamp=now,
            ),
            self.tuning,
        )
        self._gesture_state = gesture_update.state

        left_wrist = find_keypoint(keypoints, "left_wrist")
        right_wrist = find_keypoint(keypoints, "right_wrist")
        pump_update = update_pump_state(
            self._pump_state,
            PumpInput(
                left_wrist_y=normalize_y(left_wrist.y, height) if left_wrist else 0.0,
                right_wrist_y=normalize_y(right_wrist.y, height) if right_wrist else 0.0,
                has_pose=has_pose,
                has_wrists=_visible(left_wrist) and _visible(right_wrist),
                timestamp=now,
            ),
            self.tuning,
        )
        self._pump_state = pump_update.state

        hands_up = update_hands_up(
            self._hands_up_state,
            HandsUpInput(
                left_wrist=left_wrist,
                right_wrist=right_wrist,
                left_shoulder=find_keypoint(keypoints, "left_shoulder"),
                right_shoulder=find_keypoint(keypoints, "right_shoulder"),
                frame_height=height,
                has_pose=has_pose,
                timestamp=now,
            ),
            self.tuning,
        )
        self._hands_up_state = hands_up.state

        if gesture_update.gesture != GESTURE_IDLE:
            logger.debug("Gesture %s at %.0f ms", gesture_update.gesture, now)

        snapshot = TrackingSnapshot(
            timestamp=now,
            keypoints=keypoints,
            gesture=gesture_update.gesture,
            jump_active=hands_up.jump_active,
            pump_active=pump_update.pump_active,
            speed_multiplier=pump_update.speed_multiplier,
            average_velocity=pump_update.average_velocity,
            has_pose=has_pose,
            has_wrist=has_wrist,
            is_pose_stale=is_stale,
            fps=self.controller.fps,
            wrist=wrist,
            wrist_filtered=wrist_filtered,
            wrist_y=normalize_y(wrist.y, height) if wrist else 0.0,
            wrist_filtered_y=normalize_y(wrist_filtered.y, height) if wrist_filtered else 0.0,
        )
        self.last_snapshot = snapshot
        return snapshot


__all__ = ["TrackingPipeline", "TrackingSnapshot"]
