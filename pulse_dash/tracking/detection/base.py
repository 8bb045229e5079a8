from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Optional, Sequence, Tuple, TypeVar

import numpy as np

ResultT = TypeVar("ResultT")


class DetectorUnavailableError(RuntimeError):
    """Raised when a detection backend cannot be initialised."""


@dataclass(frozen=True)
class Landmark:
    """Normalized landmark as produced by the detection models (x, y in [0, 1])."""

    x: float
    y: float
    visibility: Optional[float] = None
    presence: Optional[float] = None

    @property
    def confidence(self) -> float:
        if self.visibility is not None:
            return float(self.visibility)
        if self.presence is not None:
            return float(self.presence)
        return 0.0


@dataclass(frozen=True)
class HandLandmarks:
    """One detected hand; landmark 0 is the wrist."""

    handedness: str
    landmarks: Tuple[Landmark, ...]

    @property
    def wrist(self) -> Optional[Landmark]:
        return self.landmarks[0] if self.landmarks else None

    @property
    def side(self) -> str:
        return "right" if self.handedness.strip().lower() == "right" else "left"


class LandmarkDetector(ABC, Generic[ResultT]):
    """Model adapter interface.

    Implementations take an RGB image (H, W, 3 uint8) and return their landmark
    records. ``detect`` must only be called once :attr:`ready` is true.
    """

    @property
    @abstractmethod
    def ready(self) -> bool: ...

    @abstractmethod
    def initialize(self) -> None: ...

    @abstractmethod
    def detect(self, image: np.ndarray, timestamp_ms: Optional[float] = None) -> ResultT: ...

    def close(self) -> None:
        """Release model resources."""


class HandDetector(LandmarkDetector[Sequence[HandLandmarks]]):
    """Fast path: zero or more hands with handedness labels."""


class BodyPoseDetector(LandmarkDetector[Sequence[Landmark]]):
    """Slow path: zero or one full-body landmark list (33 points when present)."""


__all__ = [
    "DetectorUnavailableError",
    "Landmark",
    "HandLandmarks",
    "LandmarkDetector",
    "HandDetector",
    "BodyPoseDetector",
]
