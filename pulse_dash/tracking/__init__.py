"""Pose tracking for game controls.

This module is **lazy-imported** so lightweight tooling (calibration storage,
the CLI's config commands) works without loading the MediaPipe backends.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "TRACKING_LOGGER",
    "GestureTuning",
    "MODE_TUNING",
    "get_tuning",
    "Keypoint",
    "smooth_keypoints",
    "ScalarKalmanFilter",
    "WristFilter",
    "CalibrationThresholds",
    "update_gesture",
    "update_pump_state",
    "StalenessDetector",
    "ThroughputController",
    "HybridDetectionScheduler",
    "TrackingPipeline",
    "TrackingSnapshot",
    "DetectionWorker",
    "CooperativeRunner",
]

_MODULE_EXPORTS = {
    "TRACKING_LOGGER": "config",
    "GestureTuning": "config",
    "MODE_TUNING": "config",
    "get_tuning": "config",
    "Keypoint": "keypoints",
    "smooth_keypoints": "keypoints",
    "ScalarKalmanFilter": "filtering",
    "WristFilter": "filtering",
    "CalibrationThresholds": "calibration",
    "update_gesture": "gestures",
    "update_pump_state": "pump",
    "StalenessDetector": "staleness",
    "ThroughputController": "throughput",
    "HybridDetectionScheduler": "detection.scheduler",
    "TrackingPipeline": "pipeline",
    "TrackingSnapshot": "pipeline",
    "DetectionWorker": "runtime",
    "CooperativeRunner": "runtime",
}


def __getattr__(name: str) -> Any:  # pragma: no cover - exercised indirectly
    module_name = _MODULE_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    from importlib import import_module

    module = import_module(f"{__name__}.{module_name}")
    return getattr(module, name)


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(set(list(globals()) + __all__))
