"""Calibrated gesture thresholds and the fallback margins used without them."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from pulse_dash.tracking.config import CALIBRATION_MIN_GAP, FALLBACK_IDLE_MARGIN, FALLBACK_JUMP_MARGIN


class CalibrationError(ValueError):
    """Raised when calibration values cannot be normalised safely."""


@dataclass(frozen=True)
class CalibrationThresholds:
    """Normalized wrist heights captured during calibration (0 is the frame top)."""

    idle_threshold: float
    jump_threshold: float

    def __post_init__(self) -> None:
        for field_name in ("idle_threshold", "jump_threshold"):
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise CalibrationError(f"{field_name} must be a number, got {value!r}.")
            if not math.isfinite(value) or not 0.0 <= value <= 1.0:
                raise CalibrationError(f"{field_name} must be within [0, 1], got {value}.")
            object.__setattr__(self, field_name, float(value))

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "CalibrationThresholds":
        if not isinstance(payload, Mapping):
            raise CalibrationError("Calibration payload must be an object.")
        try:
            idle = payload["idleThreshold"] if "idleThreshold" in payload else payload["idle_threshold"]
            jump = payload["jumpThreshold"] if "jumpThreshold" in payload else payload["jump_threshold"]
        except KeyError as exc:
            raise CalibrationError(f"Calibration payload is missing {exc.args[0]!r}.") from exc
        return cls(idle_threshold=idle, jump_threshold=jump)

    def to_mapping(self) -> dict[str, float]:
        return {"idleThreshold": self.idle_threshold, "jumpThreshold": self.jump_threshold}


@dataclass(frozen=True)
class ResolvedThresholds:
    idle: float
    jump: float
    calibrated: bool


def resolve_thresholds(
    thresholds: Optional[CalibrationThresholds],
    shoulder_y: float,
) -> Optional[ResolvedThresholds]:
    """Return the idle/jump lines to classify against, or ``None`` when unknown.

    Calibrated values win when both are positive; the jump line is clamped to
    stay at least ``CALIBRATION_MIN_GAP`` above the idle line. Otherwise the
    lines are derived from the shoulder height.
    """
    if thresholds is not None:
        idle = thresholds.idle_threshold
        jump = min(thresholds.jump_threshold, idle - CALIBRATION_MIN_GAP)
        if idle > 0 and jump > 0:
            return ResolvedThresholds(idle=idle, jump=jump, calibrated=True)
    if math.isfinite(shoulder_y) and shoulder_y > 0:
        return ResolvedThresholds(
            idle=shoulder_y + FALLBACK_IDLE_MARGIN,
            jump=shoulder_y - FALLBACK_JUMP_MARGIN,
            calibrated=False,
        )
    return None


__all__ = ["CalibrationError", "CalibrationThresholds", "ResolvedThresholds", "resolve_thresholds"]
