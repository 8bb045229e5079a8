from __future__ import annotations

import pytest

from pulse_dash.tracking.filtering import ScalarKalmanFilter, WristFilter
from pulse_dash.tracking.keypoints import Keypoint


def test_kalman_converges_to_constant_measurement():
    kalman = ScalarKalmanFilter(0.0, process_noise=2.0, measurement_noise=10.0, estimated_error=1.0)
    estimates = [kalman.update(50.0) for _ in range(100)]
    assert estimates[0] < estimates[10] < 50.0
    assert estimates[-1] == pytest.approx(50.0, abs=1e-6)


def test_kalman_rejects_invalid_noise():
    with pytest.raises(ValueError):
        ScalarKalmanFilter(0.0, process_noise=2.0, measurement_noise=0.0, estimated_error=1.0)
    with pytest.raises(ValueError):
        ScalarKalmanFilter(0.0, process_noise=-1.0, measurement_noise=10.0, estimated_error=1.0)


def test_kalman_damps_jitter():
    kalman = ScalarKalmanFilter(100.0, process_noise=2.0, measurement_noise=10.0, estimated_error=1.0)
    outputs = [kalman.update(value) for value in (110.0, 90.0, 110.0, 90.0)]
    assert all(92.0 < value < 108.0 for value in outputs)


def test_wrist_filter_seeds_lazily_and_resets():
    wrist = WristFilter()
    assert wrist.update(None) is None
    assert not wrist.active

    first = wrist.update(Keypoint("left_wrist", 100.0, 200.0, 0.9))
    assert wrist.active
    assert (first.x, first.y) == (pytest.approx(100.0), pytest.approx(200.0))

    moved = wrist.update(Keypoint("left_wrist", 200.0, 200.0, 0.9))
    assert 100.0 < moved.x < 200.0

    wrist.reset()
    assert not wrist.active
    reseeded = wrist.update(Keypoint("left_wrist", 10.0, 20.0, 0.9))
    assert reseeded.x == pytest.approx(10.0)
