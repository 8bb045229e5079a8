"""Configuration for pose-driven game controls.

Settings include:
- KEYPOINT_NAMES: the COCO-17 vocabulary every skeleton carries.
- POSE_LANDMARK_INDICES: MediaPipe pose landmark index for each keypoint name.
- EMA_ALPHA: weight given to the previous skeleton during smoothing.
- POSE_PRESENT_SCORE / KEYPOINT_PRESENT_SCORE: minimum scores to treat the pose
  (max score) or a single keypoint as observed.
- ROI_HEIGHT_FRACTION: share of the frame height handed to the detectors.
- MODE_TUNING: per detection mode thresholds for scheduling and gestures.

Scalar values can be overridden via environment variables to ease tuning.
"""

from __future__ import annotations

import logging
import os
import warnings
from dataclasses import dataclass
from typing import Dict, Tuple

from pulse_dash.config import DEFAULT_DETECTION_MODE, DETECTION_MODES, coerce_detection_mode
from pulse_dash.env import get_env


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger("pulse_dash.tracking")
    level_name = get_env("LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if level_name:
        level = getattr(logging, level_name.upper(), logging.INFO)
        logger.setLevel(level)
    return logger


TRACKING_LOGGER = _configure_logger()
logger = TRACKING_LOGGER

KEYPOINT_NAMES: Tuple[str, ...] = (
    "nose",
    "left_eye",
    "right_eye",
    "left_ear",
    "right_ear",
    "left_shoulder",
    "right_shoulder",
    "left_elbow",
    "right_elbow",
    "left_wrist",
    "right_wrist",
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_ankle",
    "right_ankle",
)

# https://developers.google.com/mediapipe/solutions/vision/pose_landmarker
POSE_LANDMARK_INDICES: Dict[str, int] = {
    "nose": 0,
    "left_eye": 2,
    "right_eye": 5,
    "left_ear": 7,
    "right_ear": 8,
    "left_shoulder": 11,
    "right_shoulder": 12,
    "left_elbow": 13,
    "right_elbow": 14,
    "left_wrist": 15,
    "right_wrist": 16,
    "left_hip": 23,
    "right_hip": 24,
    "left_knee": 25,
    "right_knee": 26,
    "left_ankle": 27,
    "right_ankle": 28,
}

POSE_LANDMARK_COUNT = 33


def _get_env_float(key: str, default: float) -> float:
    raw = get_env(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


EMA_ALPHA: float = _get_env_float("EMA_ALPHA", 0.3)
POSE_PRESENT_SCORE: float = _get_env_float("POSE_PRESENT_SCORE", 0.1)
KEYPOINT_PRESENT_SCORE: float = _get_env_float("KEYPOINT_PRESENT_SCORE", 0.05)
HAND_WRIST_SCORE: float = _get_env_float("HAND_WRIST_SCORE", 0.9)
ROI_HEIGHT_FRACTION: float = _get_env_float("ROI_HEIGHT_FRACTION", 0.6)

# Calibrated jump threshold must sit at least this far above the idle line.
CALIBRATION_MIN_GAP: float = 0.05
# Fallback margins relative to the shoulder when no calibration exists.
FALLBACK_IDLE_MARGIN: float = 0.1
FALLBACK_JUMP_MARGIN: float = 0.05

MAX_SPEED_MULTIPLIER: float = 2.4


@dataclass(frozen=True)
class GestureTuning:
    """Thresholds for one detection mode.

    Timings are milliseconds. Horizontal flap velocity is in source pixels per
    second; pump velocities are normalized frame heights per second.
    """

    mode: str
    frame_skip: int
    pose_refresh: int
    jump_window_ms: float
    jump_cooldown_ms: float
    flap_velocity_threshold: float
    flap_cycles: int
    flap_reset_ms: float
    pump_history_size: int
    pump_threshold: float
    pump_range: float
    jump_shoulder_margin: float
    jump_fallback_threshold: float


MODE_TUNING: Dict[str, GestureTuning] = {
    "accuracy": GestureTuning(
        mode="accuracy",
        frame_skip=1,
        pose_refresh=6,
        jump_window_ms=280.0,
        jump_cooldown_ms=650.0,
        flap_velocity_threshold=220.0,
        flap_cycles=3,
        flap_reset_ms=1000.0,
        pump_history_size=8,
        pump_threshold=0.9,
        pump_range=2.5,
        jump_shoulder_margin=0.06,
        jump_fallback_threshold=0.30,
    ),
    "balanced": GestureTuning(
        mode="balanced",
        frame_skip=2,
        pose_refresh=10,
        jump_window_ms=320.0,
        jump_cooldown_ms=650.0,
        flap_velocity_threshold=200.0,
        flap_cycles=3,
        flap_reset_ms=1000.0,
        pump_history_size=6,
        pump_threshold=0.8,
        pump_range=2.2,
        jump_shoulder_margin=0.05,
        jump_fallback_threshold=0.32,
    ),
    "responsive": GestureTuning(
        mode="responsive",
        frame_skip=1,
        pose_refresh=12,
        jump_window_ms=380.0,
        jump_cooldown_ms=650.0,
        flap_velocity_threshold=180.0,
        flap_cycles=2,
        flap_reset_ms=1000.0,
        pump_history_size=4,
        pump_threshold=0.7,
        pump_range=2.0,
        jump_shoulder_margin=0.04,
        jump_fallback_threshold=0.35,
    ),
}


def get_tuning(mode: str | None) -> GestureTuning:
    """Return the tuning record for ``mode``; unknown names map to ``balanced``."""
    return MODE_TUNING[coerce_detection_mode(mode)]


__all__ = [
    "TRACKING_LOGGER",
    "KEYPOINT_NAMES",
    "POSE_LANDMARK_INDICES",
    "POSE_LANDMARK_COUNT",
    "EMA_ALPHA",
    "POSE_PRESENT_SCORE",
    "KEYPOINT_PRESENT_SCORE",
    "HAND_WRIST_SCORE",
    "ROI_HEIGHT_FRACTION",
    "CALIBRATION_MIN_GAP",
    "FALLBACK_IDLE_MARGIN",
    "FALLBACK_JUMP_MARGIN",
    "MAX_SPEED_MULTIPLIER",
    "GestureTuning",
    "MODE_TUNING",
    "DETECTION_MODES",
    "DEFAULT_DETECTION_MODE",
    "get_tuning",
    "validate_config_values",
]


def _check_scores() -> None:
    for name, value in (
        ("EMA_ALPHA", EMA_ALPHA),
        ("POSE_PRESENT_SCORE", POSE_PRESENT_SCORE),
        ("KEYPOINT_PRESENT_SCORE", KEYPOINT_PRESENT_SCORE),
        ("HAND_WRIST_SCORE", HAND_WRIST_SCORE),
    ):
        if not 0.0 <= value <= 1.0:
            warnings.warn(
                f"{name}={value} is outside [0,1]; please correct the environment.",
                RuntimeWarning,
                stacklevel=2,
            )
            logger.warning("%s is outside [0,1]: %s", name, value)


def _check_roi() -> None:
    if not 0.0 < ROI_HEIGHT_FRACTION <= 1.0:
        warnings.warn(
            f"ROI_HEIGHT_FRACTION={ROI_HEIGHT_FRACTION} must be in (0,1]; detectors will see an empty crop.",
            RuntimeWarning,
            stacklevel=2,
        )
        logger.warning("ROI_HEIGHT_FRACTION outside (0,1]: %s", ROI_HEIGHT_FRACTION)


def _check_tuning() -> None:
    for mode, tuning in MODE_TUNING.items():
        if tuning.frame_skip < 1 or tuning.pose_refresh < 1:
            warnings.warn(
                f"Mode '{mode}' needs frame_skip and pose_refresh >= 1.",
                RuntimeWarning,
                stacklevel=2,
            )
            logger.warning("Mode '%s' has invalid skip/refresh: %s/%s", mode, tuning.frame_skip, tuning.pose_refresh)
        if tuning.pump_range <= 0 or tuning.pump_history_size < 1:
            warnings.warn(
                f"Mode '{mode}' needs a positive pump_range and pump_history_size.",
                RuntimeWarning,
                stacklevel=2,
            )
            logger.warning("Mode '%s' has invalid pump settings", mode)


def validate_config_values() -> None:
    """Validate current config values and emit warnings for suspicious settings."""
    _check_scores()
    _check_roi()
    _check_tuning()


# Run validation at import to surface misconfigurations early.
validate_config_values()
