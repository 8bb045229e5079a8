from __future__ import annotations

from pulse_dash.tracking.staleness import StalenessDetector


def test_no_pose_seen_keeps_flag_unchanged():
    detector = StalenessDetector()
    assert detector.check(0) is False
    assert detector.check(5000) is False


def test_flags_after_one_second_without_samples():
    detector = StalenessDetector(check_period_ms=500, stale_after_ms=1000)
    assert detector.check(0) is False
    detector.mark_pose(0)
    assert detector.check(600) is False
    assert detector.check(1100) is True
    assert detector.is_stale


def test_flag_only_changes_on_scheduled_checks():
    detector = StalenessDetector(check_period_ms=500, stale_after_ms=1000)
    detector.mark_pose(0)
    detector.check(0)
    assert detector.check(1100) is True
    detector.mark_pose(1200)
    # Not due yet: still reports the previous result.
    assert detector.check(1300) is True
    assert detector.check(1600) is False


def test_reset_forgets_history():
    detector = StalenessDetector()
    detector.mark_pose(0)
    detector.check(2000)
    assert detector.is_stale
    detector.reset()
    assert not detector.is_stale
    assert detector.last_pose_timestamp is None
