"""Arm-pump cadence from the vertical speed of both wrists."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from pulse_dash.tracking.config import MAX_SPEED_MULTIPLIER, GestureTuning, get_tuning

MIN_DT_MS = 1.0


@dataclass(frozen=True)
class PumpState:
    last_timestamp: Optional[float] = None
    last_left_y: Optional[float] = None
    last_right_y: Optional[float] = None
    velocity_history: Tuple[float, ...] = ()


@dataclass(frozen=True)
class PumpInput:
    left_wrist_y: float
    right_wrist_y: float
    has_pose: bool
    has_wrists: bool
    timestamp: float


@dataclass(frozen=True)
class PumpUpdate:
    state: PumpState
    pump_active: bool
    speed_multiplier: float
    average_velocity: float


def create_pump_state(timestamp: Optional[float] = None) -> PumpState:
    return PumpState(last_timestamp=None if timestamp is None else float(timestamp))


def speed_multiplier_for(average_velocity: float, tuning: GestureTuning) -> float:
    """Linear ramp from 1.0 at ``pump_threshold`` to the 2.4 cap at ``threshold + range``."""
    if math.isnan(average_velocity) or tuning.pump_range <= 0:
        return 1.0
    ramp = float(np.clip((average_velocity - tuning.pump_threshold) / tuning.pump_range, 0.0, 1.0))
    return 1.0 + ramp * (MAX_SPEED_MULTIPLIER - 1.0)


def update_pump_state(
    state: PumpState,
    sample: PumpInput,
    tuning: Optional[GestureTuning] = None,
) -> PumpUpdate:
    """Advance the pump detector by one sample.

    Losing the pose or either wrist clears the history; the next sample after a
    reset only records positions, so velocities never span a tracking gap.
    """
    tuning = tuning or get_tuning(None)
    values = (sample.left_wrist_y, sample.right_wrist_y, sample.timestamp)
    finite = all(isinstance(v, (int, float)) and math.isfinite(v) for v in values)
    if not sample.has_pose or not sample.has_wrists or not finite:
        timestamp = float(sample.timestamp) if finite else state.last_timestamp
        return PumpUpdate(
            state=PumpState(last_timestamp=timestamp),
            pump_active=False,
            speed_multiplier=1.0,
            average_velocity=0.0,
        )

    ts = float(sample.timestamp)
    left_y = float(sample.left_wrist_y)
    right_y = float(sample.right_wrist_y)
    history = state.velocity_history
    cap = max(1, int(tuning.pump_history_size))

    if state.last_left_y is not None and state.last_right_y is not None and state.last_timestamp is not None:
        dt_s = max(ts - state.last_timestamp, MIN_DT_MS) / 1000.0
        left_v = abs(left_y - state.last_left_y) / dt_s
        right_v = abs(right_y - state.last_right_y) / dt_s
        history = (history + ((left_v + right_v) / 2.0,))[-cap:]
    else:
        history = history[-cap:]

    average = float(np.mean(history)) if history else 0.0
    return PumpUpdate(
        state=PumpState(
            last_timestamp=ts,
            last_left_y=left_y,
            last_right_y=right_y,
            velocity_history=history,
        ),
        pump_active=average > tuning.pump_threshold,
        speed_multiplier=speed_multiplier_for(average, tuning),
        average_velocity=average,
    )


__all__ = [
    "PumpState",
    "PumpInput",
    "PumpUpdate",
    "create_pump_state",
    "speed_multiplier_for",
    "update_pump_state",
]
