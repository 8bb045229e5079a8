"""Hybrid scheduling of the hand (fast) and full-body (slow) detectors.

Per incoming frame the scheduler decides whether to reuse the cached result,
run the cheap hand model and patch its wrists into the last full-body
skeleton, or run the full-body model. Both models only ever see the top part
of the frame where hands and torso are expected.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from pulse_dash.tracking.config import (
    HAND_WRIST_SCORE,
    POSE_LANDMARK_INDICES,
    ROI_HEIGHT_FRACTION,
    TRACKING_LOGGER as logger,
    get_tuning,
)
from pulse_dash.tracking.detection.base import BodyPoseDetector, HandDetector, HandLandmarks, Landmark
from pulse_dash.tracking.keypoints import Keypoint, Skeleton, build_skeleton, clamp_score, empty_skeleton, max_score


@dataclass(frozen=True)
class DetectResult:
    keypoints: Skeleton
    max_score: float


@dataclass
class DetectorCache:
    last_result: Optional[DetectResult] = None
    last_full_body: Optional[Skeleton] = None
    frame_counter: int = 0


class RoiCropper:
    """Copy the top ``fraction`` of each frame into a reusable buffer.

    The buffer is reallocated only when the source dimensions change.
    """

    def __init__(self, fraction: float = ROI_HEIGHT_FRACTION) -> None:
        self.fraction = float(fraction)
        self._buffer: Optional[np.ndarray] = None

    def crop(self, frame: np.ndarray) -> np.ndarray:
        if not isinstance(frame, np.ndarray) or frame.ndim < 2 or frame.size == 0:
            raise ValueError("Invalid frame; expected a non-empty image array.")
        height, width = int(frame.shape[0]), int(frame.shape[1])
        roi_height = min(height, max(1, int(math.floor(height * self.fraction))))
        shape = (roi_height, width) + tuple(frame.shape[2:])
        if self._buffer is None or self._buffer.shape != shape or self._buffer.dtype != frame.dtype:
            logger.debug("Allocating ROI buffer %s for frame %sx%s", shape, width, height)
            self._buffer = np.empty(shape, dtype=frame.dtype)
        np.copyto(self._buffer, frame[:roi_height])
        return self._buffer

    def reset(self) -> None:
        self._buffer = None


def skeleton_from_pose_landmarks(landmarks: Sequence[Landmark], width: int, height: int) -> Skeleton:
    """Map the 33-point body landmark list onto the keypoint vocabulary in pixels."""
    points = {}
    for name, index in POSE_LANDMARK_INDICES.items():
        if index >= len(landmarks):
            continue
        landmark = landmarks[index]
        if landmark is None:
            continue
        points[name] = (landmark.x * width, landmark.y * height, landmark.confidence)
    return build_skeleton(points)


def merge_hands_into_skeleton(
    base: Optional[Skeleton],
    hands: Sequence[HandLandmarks],
    width: int,
    height: int,
    *,
    wrist_score: float = HAND_WRIST_SCORE,
) -> Skeleton:
    """Overwrite the wrist entries of ``base`` with wrists from the hand model."""
    keypoints = list(base) if base else list(empty_skeleton())
    index_by_name = {point.name: idx for idx, point in enumerate(keypoints)}
    for hand in hands:
        wrist = hand.wrist
        if wrist is None:
            continue
        name = f"{hand.side}_wrist"
        idx = index_by_name.get(name)
        if idx is None:
            continue
        keypoints[idx] = Keypoint(name=name, x=wrist.x * width, y=wrist.y * height, score=clamp_score(wrist_score))
    return tuple(keypoints)


class HybridDetectionScheduler:
    """Owns both detectors plus the cache for one tracked subject."""

    def __init__(
        self,
        hand_detector: HandDetector,
        pose_detector: BodyPoseDetector,
        *,
        mode: str | None = None,
        roi_fraction: float = ROI_HEIGHT_FRACTION,
    ) -> None:
        self.hand_detector = hand_detector
        self.pose_detector = pose_detector
        self.cache = DetectorCache()
        self._cropper = RoiCropper(roi_fraction)
        self.frame_skip = 1
        self.pose_refresh = 1
        self.update_mode(mode)

    @property
    def ready(self) -> bool:
        return bool(self.hand_detector.ready and self.pose_detector.ready)

    def initialize(self) -> None:
        """Initialise both detectors; safe to call repeatedly."""
        for detector in (self.hand_detector, self.pose_detector):
            if not detector.ready:
                detector.initialize()

    def update_mode(self, mode: str | None) -> None:
        """Switch skip/refresh cadence without touching counters or cached results."""
        tuning = get_tuning(mode)
        self.frame_skip = max(1, int(tuning.frame_skip))
        self.pose_refresh = max(1, int(tuning.pose_refresh))
        logger.debug("Scheduler mode %s (skip=%s, refresh=%s)", tuning.mode, self.frame_skip, self.pose_refresh)

    def detect(self, frame: np.ndarray, timestamp_ms: Optional[float] = None) -> Optional[DetectResult]:
        """Run one scheduling step on an RGB frame.

        Returns ``None`` while the detectors are not initialised so the caller
        can retry on the next tick.
        """
        if not self.ready:
            logger.debug("Detectors not ready; skipping frame.")
            return None

        cache = self.cache
        counter = cache.frame_counter
        cache.frame_counter += 1
        if counter % self.frame_skip != 0 and cache.last_result is not None:
            return cache.last_result

        roi = self._cropper.crop(frame)
        roi_height, roi_width = int(roi.shape[0]), int(roi.shape[1])

        hands = self.hand_detector.detect(roi, timestamp_ms)
        refresh_pose = cache.frame_counter % self.pose_refresh == 0
        if hands and not refresh_pose:
            keypoints = merge_hands_into_skeleton(cache.last_full_body, hands, roi_width, roi_height)
        else:
            landmarks = self.pose_detector.detect(roi, timestamp_ms)
            keypoints = skeleton_from_pose_landmarks(landmarks or (), roi_width, roi_height)
            cache.last_full_body = keypoints

        result = DetectResult(keypoints=keypoints, max_score=max_score(keypoints))
        cache.last_result = result
        return result

    def reset(self) -> None:
        """Drop cached results and counters so the next frame starts clean."""
        self.cache = DetectorCache()
        self._cropper.reset()

    def close(self) -> None:
        for detector in (self.hand_detector, self.pose_detector):
            detector.close()


__all__ = [
    "DetectResult",
    "DetectorCache",
    "RoiCropper",
    "HybridDetectionScheduler",
    "skeleton_from_pose_landmarks",
    "merge_hands_into_skeleton",
]
