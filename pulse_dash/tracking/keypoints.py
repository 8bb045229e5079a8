"""Named 2D keypoints and exponential smoothing of whole skeletons."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Optional, Sequence, Tuple

from pulse_dash.tracking.config import EMA_ALPHA, KEYPOINT_NAMES


@dataclass(frozen=True)
class Keypoint:
    """A single 2D keypoint in ROI pixel coordinates.

    ``score`` is the detector confidence in [0, 1]; 0 means "not observed".
    """

    name: str
    x: float
    y: float
    score: float


Skeleton = Tuple[Keypoint, ...]


def clamp_score(value: object) -> float:
    try:
        score = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(score):
        return 0.0
    return min(1.0, max(0.0, score))


def empty_skeleton(names: Sequence[str] = KEYPOINT_NAMES) -> Skeleton:
    return tuple(Keypoint(name=name, x=0.0, y=0.0, score=0.0) for name in names)


def build_skeleton(points: Dict[str, Tuple[float, float, float]], names: Sequence[str] = KEYPOINT_NAMES) -> Skeleton:
    """Build a complete skeleton from ``{name: (x, y, score)}``.

    Names missing from ``points`` are filled with zero-confidence entries so
    downstream code never has to handle an absent keypoint.
    """
    out = []
    for name in names:
        raw = points.get(name)
        if raw is None:
            out.append(Keypoint(name=name, x=0.0, y=0.0, score=0.0))
            continue
        x, y, score = raw
        out.append(Keypoint(name=name, x=float(x), y=float(y), score=clamp_score(score)))
    return tuple(out)


def smooth_keypoints(
    previous: Optional[Sequence[Keypoint]],
    current: Sequence[Keypoint],
    alpha: float = EMA_ALPHA,
) -> Skeleton:
    """Blend ``current`` toward ``previous`` with an exponential moving average.

    Positions become ``previous * alpha + current * (1 - alpha)`` for every
    keypoint that also exists in ``previous``. Scores are copied from
    ``current`` untouched so staleness logic sees the live detection certainty.
    """
    if not previous:
        return tuple(current)

    by_name = {point.name: point for point in previous}
    out = []
    for point in current:
        match = by_name.get(point.name)
        if match is None:
            out.append(point)
            continue
        out.append(
            replace(
                point,
                x=match.x * alpha + point.x * (1.0 - alpha),
                y=match.y * alpha + point.y * (1.0 - alpha),
            )
        )
    return tuple(out)


def find_keypoint(keypoints: Iterable[Keypoint], name: str) -> Optional[Keypoint]:
    for point in keypoints:
        if point.name == name:
            return point
    return None


def _best_of_pair(keypoints: Sequence[Keypoint], left_name: str, right_name: str) -> Optional[Keypoint]:
    left = find_keypoint(keypoints, left_name)
    right = find_keypoint(keypoints, right_name)
    if left is not None and right is not None:
        return left if left.score >= right.score else right
    return left if left is not None else right


def get_wrist_keypoint(keypoints: Sequence[Keypoint]) -> Optional[Keypoint]:
    """Return the more confident wrist (left wins ties)."""
    return _best_of_pair(keypoints, "left_wrist", "right_wrist")


def get_shoulder_keypoint(keypoints: Sequence[Keypoint]) -> Optional[Keypoint]:
    """Return the more confident shoulder (left wins ties)."""
    return _best_of_pair(keypoints, "left_shoulder", "right_shoulder")


def normalize_y(y: float, height: float) -> float:
    """Map a pixel row into [0, 1] against ``height`` (0 is the top)."""
    if not height or height <= 0 or not math.isfinite(height) or not math.isfinite(y):
        return 0.0
    return min(1.0, max(0.0, y / height))


def max_score(keypoints: Iterable[Keypoint]) -> float:
    return max((point.score for point in keypoints), default=0.0)


__all__ = [
    "Keypoint",
    "Skeleton",
    "clamp_score",
    "empty_skeleton",
    "build_skeleton",
    "smooth_keypoints",
    "find_keypoint",
    "get_wrist_keypoint",
    "get_shoulder_keypoint",
    "normalize_y",
    "max_score",
]
