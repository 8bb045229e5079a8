from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from .env import get_env

try:  # pragma: no cover - Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    try:
        import tomli as tomllib  # type: ignore
    except ModuleNotFoundError:
        tomllib = None  # type: ignore

DETECTION_MODES: tuple[str, ...] = ("accuracy", "balanced", "responsive")
DEFAULT_DETECTION_MODE = "balanced"


@dataclass(frozen=True)
class StalenessSettings:
    check_period_ms: float = 500.0
    stale_after_ms: float = 1000.0


@dataclass(frozen=True)
class AppConfig:
    detection_mode: str = DEFAULT_DETECTION_MODE
    camera_index: int = 0
    ema_alpha: float = 0.3
    staleness: StalenessSettings = StalenessSettings()


def _config_path() -> Path | None:
    """Resolve the TOML configuration file, if present."""
    env_override = get_env("CONFIG")
    if env_override:
        path = Path(env_override).expanduser()
        return path if path.exists() else None

    default_path = Path("config/pulse_dash.toml")
    if default_path.exists():
        return default_path
    return None


def _load_toml(path: Path) -> Mapping[str, Any]:
    if tomllib is None:
        raise RuntimeError("TOML configuration requires Python 3.11+ or the 'tomli' package.")
    with path.open("rb") as handle:
        return tomllib.load(handle)


def coerce_detection_mode(raw: Any) -> str:
    """Normalise a mode name, falling back to ``balanced`` for unknown values."""
    if not raw:
        return DEFAULT_DETECTION_MODE
    mode = str(raw).strip().lower()
    return mode if mode in DETECTION_MODES else DEFAULT_DETECTION_MODE


def _coerce_staleness(raw: Mapping[str, Any] | None) -> StalenessSettings:
    base = StalenessSettings()
    if not raw:
        return base
    try:
        period = float(raw.get("check_period_ms", base.check_period_ms))
        stale_after = float(raw.get("stale_after_ms", base.stale_after_ms))
    except (TypeError, ValueError):
        return base
    if period <= 0 or stale_after <= 0:
        return base
    return StalenessSettings(check_period_ms=period, stale_after_ms=stale_after)


def _coerce_alpha(raw: Any, default: float) -> float:
    try:
        alpha = float(raw)
    except (TypeError, ValueError):
        return default
    return alpha if 0.0 <= alpha < 1.0 else default


def _coerce_camera(raw: Any, default: int) -> int:
    try:
        return max(0, int(raw))
    except (TypeError, ValueError):
        return default


def _build_config(raw: Mapping[str, Any]) -> AppConfig:
    base = AppConfig()
    staleness_section = raw.get("staleness")
    return AppConfig(
        detection_mode=coerce_detection_mode(get_env("DETECTION_MODE") or raw.get("detection_mode")),
        camera_index=_coerce_camera(get_env("CAMERA_INDEX") or raw.get("camera_index"), base.camera_index),
        ema_alpha=_coerce_alpha(get_env("EMA_ALPHA") or raw.get("ema_alpha", base.ema_alpha), base.ema_alpha),
        staleness=_coerce_staleness(staleness_section if isinstance(staleness_section, Mapping) else None),
    )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load configuration once, falling back to built-in defaults."""
    path = _config_path()
    if not path:
        return _build_config({})
    data = _load_toml(path)
    return _build_config(data)


def as_dict() -> dict[str, Any]:
    """Return the effective configuration for debug/CLI display."""
    config = get_config()
    return {
        "detection_mode": config.detection_mode,
        "camera_index": config.camera_index,
        "ema_alpha": config.ema_alpha,
        "staleness": {
            "check_period_ms": config.staleness.check_period_ms,
            "stale_after_ms": config.staleness.stale_after_ms,
        },
        "source": str(_config_path() or "defaults"),
    }
