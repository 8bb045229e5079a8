from __future__ import annotations

import numpy as np
import pytest

from _fakes import FakeHandDetector, FakePoseDetector, blank_frame, hand, pose_landmarks
from pulse_dash.tracking.detection.base import HandLandmarks, Landmark
from pulse_dash.tracking.detection.scheduler import (
    HybridDetectionScheduler,
    RoiCropper,
    merge_hands_into_skeleton,
    skeleton_from_pose_landmarks,
)
from pulse_dash.tracking.keypoints import find_keypoint


def _scheduler(mode="balanced", *, hands=(), landmarks=None, ready=True):
    hand_detector = FakeHandDetector(hands, ready=ready)
    pose_detector = FakePoseDetector(
        landmarks if landmarks is not None else pose_landmarks({"left_wrist": (0.25, 0.5, 0.8)}),
        ready=ready,
    )
    return HybridDetectionScheduler(hand_detector, pose_detector, mode=mode), hand_detector, pose_detector


def test_roi_is_top_sixty_percent_of_frame():
    scheduler, hands, poses = _scheduler("accuracy")
    scheduler.detect(blank_frame(480, 640))
    assert hands.calls == [(288, 640, 3)]
    assert poses.calls == [(288, 640, 3)]


def test_roi_cropper_reuses_buffer_until_size_changes():
    cropper = RoiCropper(0.6)
    frame = np.arange(10 * 4, dtype=np.uint8).reshape(10, 4)
    first = cropper.crop(frame)
    second = cropper.crop(frame)
    assert first is second
    assert first.shape == (6, 4)
    assert np.array_equal(first, frame[:6])
    assert cropper.crop(np.zeros((20, 4), dtype=np.uint8)) is not first
    with pytest.raises(ValueError):
        cropper.crop(np.zeros((0, 4), dtype=np.uint8))


def test_pose_landmarks_map_to_roi_pixels():
    landmarks = pose_landmarks({"left_wrist": (0.25, 0.5, 0.8)})
    landmarks[12] = Landmark(x=0.5, y=0.25, visibility=None, presence=0.4)
    skeleton = skeleton_from_pose_landmarks(landmarks, 640, 288)
    wrist = find_keypoint(skeleton, "left_wrist")
    assert (wrist.x, wrist.y, wrist.score) == (pytest.approx(160.0), pytest.approx(144.0), pytest.approx(0.8))
    assert find_keypoint(skeleton, "right_shoulder").score == pytest.approx(0.4)
    assert find_keypoint(skeleton, "nose").score == 0.0


def test_hands_overwrite_only_wrists():
    base = skeleton_from_pose_landmarks(pose_landmarks({"left_shoulder": (0.4, 0.6, 0.7)}), 100, 100)
    merged = merge_hands_into_skeleton(base, [hand("Right", 0.5, 0.5), hand("Left", 0.1, 0.2)], 100, 100)
    right = find_keypoint(merged, "right_wrist")
    left = find_keypoint(merged, "left_wrist")
    assert (right.x, right.y, right.score) == (pytest.approx(50.0), pytest.approx(50.0), pytest.approx(0.9))
    assert (left.x, left.y) == (pytest.approx(10.0), pytest.approx(20.0))
    assert find_keypoint(merged, "left_shoulder").score == pytest.approx(0.7)


def test_unknown_handedness_maps_to_left():
    merged = merge_hands_into_skeleton(None, [hand("", 0.5, 0.5)], 10, 10)
    assert find_keypoint(merged, "left_wrist").score == pytest.approx(0.9)
    assert find_keypoint(merged, "right_wrist").score == 0.0


def test_hand_without_landmarks_is_ignored():
    merged = merge_hands_into_skeleton(None, [HandLandmarks(handedness="Right", landmarks=())], 10, 10)
    assert all(point.score == 0.0 for point in merged)


def test_frame_skip_reuses_cached_result():
    scheduler, hands, poses = _scheduler("balanced")
    frame = blank_frame()
    results = [scheduler.detect(frame) for _ in range(6)]
    # frame_skip=2: frames 1, 3 and 5 run the detectors.
    assert len(hands.calls) == 3
    assert len(poses.calls) == 3
    assert results[1] is results[0]
    assert results[3] is results[2]
    assert results[0].max_score == pytest.approx(0.8)


def test_fast_path_until_scheduled_refresh():
    scheduler, hands, poses = _scheduler("accuracy", hands=[hand("Right", 0.5, 0.5)])
    frame = blank_frame()
    for _ in range(5):
        result = scheduler.detect(frame)
    assert len(hands.calls) == 5
    assert poses.calls == []
    wrist = find_keypoint(result.keypoints, "right_wrist")
    assert wrist.score == pytest.approx(0.9)
    assert (wrist.x, wrist.y) == (pytest.approx(320.0), pytest.approx(144.0))

    # Sixth frame lands on pose_refresh=6.
    refreshed = scheduler.detect(frame)
    assert len(poses.calls) == 1
    assert find_keypoint(refreshed.keypoints, "left_wrist").score == pytest.approx(0.8)
    assert scheduler.cache.last_full_body == refreshed.keypoints


def test_fast_path_builds_on_last_full_body():
    scheduler, hands, poses = _scheduler("accuracy")
    frame = blank_frame()
    scheduler.detect(frame)
    hands.hands = [hand("Right", 0.5, 0.5)]
    fused = scheduler.detect(frame)
    assert len(poses.calls) == 1
    assert find_keypoint(fused.keypoints, "left_wrist").score == pytest.approx(0.8)
    assert find_keypoint(fused.keypoints, "right_wrist").score == pytest.approx(0.9)


def test_mode_switch_keeps_counter_and_cache():
    scheduler, _, _ = _scheduler("balanced")
    frame = blank_frame()
    for _ in range(3):
        scheduler.detect(frame)
    cached = scheduler.cache.last_result
    assert scheduler.cache.frame_counter == 3

    scheduler.update_mode("accuracy")
    assert scheduler.cache.frame_counter == 3
    assert scheduler.cache.last_result is cached
    assert (scheduler.frame_skip, scheduler.pose_refresh) == (1, 6)


def test_unknown_mode_falls_back_to_balanced():
    scheduler, _, _ = _scheduler("turbo")
    assert (scheduler.frame_skip, scheduler.pose_refresh) == (2, 10)


def test_not_ready_returns_none_without_advancing():
    scheduler, hands, _ = _scheduler(ready=False)
    assert not scheduler.ready
    assert scheduler.detect(blank_frame()) is None
    assert scheduler.cache.frame_counter == 0
    assert hands.calls == []

    scheduler.initialize()
    assert scheduler.ready
    assert scheduler.detect(blank_frame()) is not None


def test_reset_and_close():
    scheduler, hands, poses = _scheduler("accuracy")
    scheduler.detect(blank_frame())
    scheduler.reset()
    assert scheduler.cache.frame_counter == 0
    assert scheduler.cache.last_result is None
    assert scheduler.cache.last_full_body is None

    scheduler.close()
    assert hands.closed and poses.closed
