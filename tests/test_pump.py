from __future__ import annotations

import pytest

from pulse_dash.tracking.config import MAX_SPEED_MULTIPLIER, get_tuning
from pulse_dash.tracking.pump import PumpInput, create_pump_state, speed_multiplier_for, update_pump_state

BALANCED = get_tuning("balanced")


def _sample(left, right, t, *, has_pose=True, has_wrists=True):
    return PumpInput(left_wrist_y=left, right_wrist_y=right, has_pose=has_pose, has_wrists=has_wrists, timestamp=t)


def _pump(samples, state=None):
    state = state or create_pump_state()
    updates = []
    for sample in samples:
        update = update_pump_state(state, sample, BALANCED)
        state = update.state
        updates.append(update)
    return state, updates


def test_first_sample_only_records_positions():
    state, (update,) = _pump([_sample(0.5, 0.5, 0)])
    assert not update.pump_active
    assert update.average_velocity == 0.0
    assert update.speed_multiplier == 1.0
    assert state.last_left_y == 0.5
    assert state.velocity_history == ()


def test_alternating_arms_activate_pump():
    samples = [_sample(0.2 if idx % 2 else 0.55, 0.55 if idx % 2 else 0.2, idx * 100) for idx in range(8)]
    state, updates = _pump(samples)
    last = updates[-1]
    # 0.35 of the frame height every 100 ms on both wrists.
    assert last.average_velocity == pytest.approx(3.5)
    assert last.pump_active
    assert 1.0 < last.speed_multiplier <= MAX_SPEED_MULTIPLIER
    assert len(state.velocity_history) == BALANCED.pump_history_size


def test_still_arms_stay_inactive():
    samples = [_sample(0.5, 0.5, idx * 100) for idx in range(6)]
    _, updates = _pump(samples)
    assert not any(update.pump_active for update in updates)
    assert updates[-1].speed_multiplier == 1.0


@pytest.mark.parametrize("lost", [{"has_pose": False}, {"has_wrists": False}])
def test_losing_wrists_resets_history(lost):
    samples = [_sample(0.2 if idx % 2 else 0.55, 0.3, idx * 100) for idx in range(4)]
    state, _ = _pump(samples)
    assert state.velocity_history

    state, (reset,) = _pump([_sample(0.2, 0.3, 500, **lost)], state=state)
    assert not reset.pump_active
    assert reset.speed_multiplier == 1.0
    assert state.velocity_history == ()
    assert state.last_left_y is None

    # No velocity spans the gap.
    _, (after,) = _pump([_sample(0.9, 0.9, 600)], state=state)
    assert after.average_velocity == 0.0


def test_non_finite_input_resets():
    state, _ = _pump([_sample(0.2, 0.2, 0), _sample(0.5, 0.5, 100)])
    _, (update,) = _pump([_sample(float("nan"), 0.5, 200)], state=state)
    assert not update.pump_active
    assert update.state.velocity_history == ()


def test_speed_multiplier_ramp_is_bounded():
    threshold, span = BALANCED.pump_threshold, BALANCED.pump_range
    assert speed_multiplier_for(0.0, BALANCED) == 1.0
    assert speed_multiplier_for(threshold, BALANCED) == pytest.approx(1.0)
    assert speed_multiplier_for(threshold + span / 2, BALANCED) == pytest.approx(1.7)
    assert speed_multiplier_for(threshold + span, BALANCED) == pytest.approx(MAX_SPEED_MULTIPLIER)
    assert speed_multiplier_for(1e6, BALANCED) == pytest.approx(MAX_SPEED_MULTIPLIER)
    assert speed_multiplier_for(float("inf"), BALANCED) == pytest.approx(MAX_SPEED_MULTIPLIER)
    assert speed_multiplier_for(float("nan"), BALANCED) == 1.0


def test_extreme_cadence_saturates_multiplier():
    _, updates = _pump([_sample(1e308, 1e308, 0), _sample(-1e308, -1e308, 1), _sample(1e308, 1e308, 2)])
    last = updates[-1]
    assert last.pump_active
    assert last.speed_multiplier == pytest.approx(MAX_SPEED_MULTIPLIER)
