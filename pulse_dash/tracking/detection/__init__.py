"""Detection backends and the hybrid scheduler."""

from .base import BodyPoseDetector, DetectorUnavailableError, HandDetector, HandLandmarks, Landmark, LandmarkDetector
from .scheduler import DetectorCache, DetectResult, HybridDetectionScheduler, RoiCropper

__all__ = [
    "BodyPoseDetector",
    "DetectorUnavailableError",
    "HandDetector",
    "HandLandmarks",
    "Landmark",
    "LandmarkDetector",
    "DetectorCache",
    "DetectResult",
    "HybridDetectionScheduler",
    "RoiCropper",
]
