"""Recursive filters for the fine-grained wrist cursor.

The EMA in :mod:`pulse_dash.tracking.keypoints` removes coarse jitter from the
whole skeleton. The scalar Kalman filters here run on top of it for the single
point that drives position-sensitive controls.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from pulse_dash.tracking.config import TRACKING_LOGGER as logger
from pulse_dash.tracking.keypoints import Keypoint

WRIST_PROCESS_NOISE = 2.0
WRIST_MEASUREMENT_NOISE = 10.0
WRIST_ESTIMATED_ERROR = 1.0


class ScalarKalmanFilter:
    """One-dimensional Kalman filter with a random-walk process model."""

    def __init__(
        self,
        initial: float,
        *,
        process_noise: float,
        measurement_noise: float,
        estimated_error: float,
    ) -> None:
        if process_noise < 0 or measurement_noise <= 0 or estimated_error < 0:
            raise ValueError("Kalman noise terms must be non-negative (measurement noise > 0).")
        self.estimate = float(initial)
        self.error_covariance = float(estimated_error)
        self.process_noise = float(process_noise)
        self.measurement_noise = float(measurement_noise)

    def update(self, measurement: float) -> float:
        predicted_error = self.error_covariance + self.process_noise
        gain = predicted_error / (predicted_error + self.measurement_noise)
        self.estimate = self.estimate + gain * (float(measurement) - self.estimate)
        self.error_covariance = (1.0 - gain) * predicted_error
        return self.estimate


@dataclass(frozen=True)
class FilteredPoint:
    x: float
    y: float


class WristFilter:
    """Pair of lazily created scalar filters for the x and y axes.

    Filters are seeded with the first real measurement and destroyed by
    :meth:`reset`, so re-enabling tracking never replays an old estimate.
    """

    def __init__(
        self,
        *,
        process_noise: float = WRIST_PROCESS_NOISE,
        measurement_noise: float = WRIST_MEASUREMENT_NOISE,
        estimated_error: float = WRIST_ESTIMATED_ERROR,
    ) -> None:
        self._params = {
            "process_noise": float(process_noise),
            "measurement_noise": float(measurement_noise),
            "estimated_error": float(estimated_error),
        }
        self._axes: Optional[Tuple[ScalarKalmanFilter, ScalarKalmanFilter]] = None

    @property
    def active(self) -> bool:
        return self._axes is not None

    def update(self, point: Optional[Keypoint]) -> Optional[FilteredPoint]:
        if point is None or not (math.isfinite(point.x) and math.isfinite(point.y)):
            return None
        if self._axes is None:
            logger.debug("Seeding wrist filter at (%.1f, %.1f)", point.x, point.y)
            self._axes = (
                ScalarKalmanFilter(point.x, **self._params),
                ScalarKalmanFilter(point.y, **self._params),
            )
        fx, fy = self._axes
        return FilteredPoint(x=fx.update(point.x), y=fy.update(point.y))

    def reset(self) -> None:
        self._axes = None


__all__ = ["ScalarKalmanFilter", "FilteredPoint", "WristFilter"]
