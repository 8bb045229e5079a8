"""Jump/flap gesture classification as explicit state transitions.

Each update takes the previous :class:`GestureState` plus one pose sample and
returns a new state together with exactly one gesture (``idle``, ``jump`` or
``flap``). Callers own the state between calls and decide how to publish the
event.

Timestamps are milliseconds and must be non-decreasing across calls. Samples
that go back in time are not detected and give undefined velocities.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional

from pulse_dash.tracking.calibration import CalibrationThresholds, resolve_thresholds
from pulse_dash.tracking.config import KEYPOINT_PRESENT_SCORE, GestureTuning, get_tuning
from pulse_dash.tracking.keypoints import Keypoint, normalize_y

GESTURE_IDLE = "idle"
GESTURE_JUMP = "jump"
GESTURE_FLAP = "flap"

MODE_IDLE = "idle"
MODE_RAISING = "raising"
MODE_JUMP = "jump"
MODE_FLAPPING = "flapping"

# Lower bound on the sample interval used for velocities.
MIN_DT_MS = 1.0


@dataclass(frozen=True)
class GestureState:
    mode: str = MODE_IDLE
    last_timestamp: Optional[float] = None
    last_above_idle_time: Optional[float] = None
    last_wrist_x: Optional[float] = None
    last_velocity_sign: int = 0
    flap_cycles: int = 0
    last_flap_time: Optional[float] = None
    last_jump_time: Optional[float] = None


@dataclass(frozen=True)
class GestureInput:
    """One sample for the tracked wrist.

    ``wrist_y`` and ``shoulder_y`` are normalized to [0, 1] against the frame
    height; ``wrist_x`` stays in pixels so flap velocity is in pixels/second.
    """

    wrist_y: float
    wrist_x: float
    shoulder_y: float
    thresholds: Optional[CalibrationThresholds]
    has_pose: bool
    has_wrist: bool
    timestamp: float


@dataclass(frozen=True)
class GestureUpdate:
    state: GestureState
    gesture: str


def create_gesture_state(timestamp: Optional[float] = None) -> GestureState:
    return GestureState(last_timestamp=None if timestamp is None else float(timestamp))


def _finite(*values: float) -> bool:
    return all(isinstance(v, (int, float)) and math.isfinite(v) for v in values)


def _lost(state: GestureState, timestamp: Optional[float]) -> GestureUpdate:
    # Forget motion history so nothing is latched from stale samples; keep the
    # jump cooldown so a flicker in detection cannot re-trigger a jump.
    return GestureUpdate(
        state=GestureState(mode=MODE_IDLE, last_timestamp=timestamp, last_jump_time=state.last_jump_time),
        gesture=GESTURE_IDLE,
    )


def update_gesture(
    state: GestureState,
    sample: GestureInput,
    tuning: Optional[GestureTuning] = None,
) -> GestureUpdate:
    """Advance the gesture state machine by one sample."""
    tuning = tuning or get_tuning(None)
    ts = float(sample.timestamp) if _finite(sample.timestamp) else None
    if not sample.has_pose or not sample.has_wrist or ts is None:
        return _lost(state, ts)
    if not _finite(sample.wrist_x, sample.wrist_y):
        return _lost(state, ts)

    wrist_x = float(sample.wrist_x)
    wrist_y = float(sample.wrist_y)

    velocity = 0.0
    if state.last_wrist_x is not None and state.last_timestamp is not None:
        dt = max(ts - state.last_timestamp, MIN_DT_MS)
        velocity = (wrist_x - state.last_wrist_x) / dt * 1000.0

    flap_cycles = state.flap_cycles
    last_flap_time = state.last_flap_time
    sign = state.last_velocity_sign
    if last_flap_time is not None and ts - last_flap_time > tuning.flap_reset_ms:
        flap_cycles = 0
        last_flap_time = None
        sign = 0

    base = replace(state, last_timestamp=ts, last_wrist_x=wrist_x)
    shoulder_y = float(sample.shoulder_y) if _finite(sample.shoulder_y) else 0.0
    lines = resolve_thresholds(sample.thresholds, shoulder_y)
    if lines is None:
        return GestureUpdate(
            state=replace(
                base,
                mode=MODE_IDLE,
                flap_cycles=flap_cycles,
                last_flap_time=last_flap_time,
                last_velocity_sign=sign,
            ),
            gesture=GESTURE_IDLE,
        )

    last_above = state.last_above_idle_time
    if wrist_y >= lines.idle:
        last_above = ts
    within_window = last_above is not None and ts - last_above <= tuning.jump_window_ms

    if wrist_y <= lines.jump:
        if state.mode == MODE_JUMP:
            mode, gesture = MODE_JUMP, GESTURE_IDLE
        else:
            cooled = state.last_jump_time is None or ts - state.last_jump_time > tuning.jump_cooldown_ms
            if within_window and cooled:
                return GestureUpdate(
                    state=replace(
                        base,
                        mode=MODE_JUMP,
                        last_above_idle_time=last_above,
                        last_velocity_sign=0,
                        flap_cycles=0,
                        last_flap_time=None,
                        last_jump_time=ts,
                    ),
                    gesture=GESTURE_JUMP,
                )
            mode, gesture = MODE_IDLE, GESTURE_IDLE
    elif wrist_y < lines.idle:
        mode = MODE_RAISING if within_window else MODE_IDLE
        gesture = GESTURE_IDLE
    else:
        gesture = GESTURE_IDLE
        if abs(velocity) > tuning.flap_velocity_threshold:
            new_sign = 1 if velocity > 0 else -1
            if sign != 0 and new_sign != sign:
                flap_cycles += 1
                last_flap_time = ts
                if flap_cycles >= tuning.flap_cycles:
                    flap_cycles = tuning.flap_cycles
                    gesture = GESTURE_FLAP
            sign = new_sign
        mode = MODE_FLAPPING if flap_cycles > 0 else MODE_IDLE

    return GestureUpdate(
        state=replace(
            base,
            mode=mode,
            last_above_idle_time=last_above,
            last_velocity_sign=sign,
            flap_cycles=flap_cycles,
            last_flap_time=last_flap_time,
        ),
        gesture=gesture,
    )


@dataclass(frozen=True)
class HandsUpState:
    last_jump_time: Optional[float] = None


@dataclass(frozen=True)
class HandsUpInput:
    """Both wrists and shoulders in pixel coordinates for the hands-up latch."""

    left_wrist: Optional[Keypoint]
    right_wrist: Optional[Keypoint]
    left_shoulder: Optional[Keypoint]
    right_shoulder: Optional[Keypoint]
    frame_height: float
    has_pose: bool
    timestamp: float


@dataclass(frozen=True)
class HandsUpUpdate:
    state: HandsUpState
    jump_active: bool


def _seen(point: Optional[Keypoint]) -> bool:
    return point is not None and point.score > KEYPOINT_PRESENT_SCORE


def update_hands_up(
    state: HandsUpState,
    sample: HandsUpInput,
    tuning: Optional[GestureTuning] = None,
) -> HandsUpUpdate:
    """Latch a jump when both hands are raised above the shoulders.

    Without visible shoulders both wrists must be above
    ``jump_fallback_threshold`` instead. A latched jump blocks the next one for
    ``jump_cooldown_ms``.
    """
    tuning = tuning or get_tuning(None)
    if not sample.has_pose or not _finite(sample.timestamp):
        return HandsUpUpdate(state=state, jump_active=False)

    lw, rw = sample.left_wrist, sample.right_wrist
    ls, rs = sample.left_shoulder, sample.right_shoulder
    has_wrists = _seen(lw) and _seen(rw)
    has_shoulders = _seen(ls) and _seen(rs)
    height = sample.frame_height if _finite(sample.frame_height) and sample.frame_height > 0 else 1.0

    hands_up = False
    if has_wrists and has_shoulders:
        margin = height * tuning.jump_shoulder_margin
        hands_up = lw.y < ls.y - margin and rw.y < rs.y - margin  # type: ignore[union-attr]
    elif has_wrists:
        hands_up = (
            normalize_y(lw.y, height) < tuning.jump_fallback_threshold  # type: ignore[union-attr]
            and normalize_y(rw.y, height) < tuning.jump_fallback_threshold  # type: ignore[union-attr]
        )

    now = float(sample.timestamp)
    can_jump = state.last_jump_time is None or now - state.last_jump_time > tuning.jump_cooldown_ms
    if hands_up and can_jump:
        return HandsUpUpdate(state=HandsUpState(last_jump_time=now), jump_active=True)
    return HandsUpUpdate(state=state, jump_active=False)


__all__ = [
    "GESTURE_IDLE",
    "GESTURE_JUMP",
    "GESTURE_FLAP",
    "MODE_IDLE",
    "MODE_RAISING",
    "MODE_JUMP",
    "MODE_FLAPPING",
    "GestureState",
    "GestureInput",
    "GestureUpdate",
    "create_gesture_state",
    "update_gesture",
    "HandsUpState",
    "HandsUpInput",
    "HandsUpUpdate",
    "update_hands_up",
]
