from __future__ import annotations

import json
import logging
from pathlib import Path
from tempfile import NamedTemporaryFile

from .env import get_env
from .tracking.calibration import CalibrationError, CalibrationThresholds

DEFAULT_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_CALIBRATION_FILENAME = "calibration.json"
LOGGER = logging.getLogger(__name__)


def _data_dir() -> Path:
    override = get_env("DATA_DIR")
    base = Path(override).expanduser() if override else DEFAULT_DATA_DIR
    base.mkdir(parents=True, exist_ok=True)
    return base


def calibration_file() -> Path:
    override = get_env("CALIBRATION_FILE")
    if override:
        target = Path(override).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        return target
    return _data_dir() / DEFAULT_CALIBRATION_FILENAME


def load_thresholds() -> CalibrationThresholds | None:
    """Read persisted thresholds; ``None`` when absent or unreadable."""
    path = calibration_file()
    if not path.exists():
        return None
    raw = path.read_text(encoding="utf-8").strip()
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        LOGGER.error("Could not parse %s: %s", path, exc)
        return None
    if not isinstance(payload, dict):
        LOGGER.error("%s must contain a JSON object", path)
        return None
    try:
        return CalibrationThresholds.from_mapping(payload)
    except CalibrationError as exc:
        LOGGER.error("Ignoring calibration in %s: %s", path, exc)
        return None


def save_thresholds(thresholds: CalibrationThresholds) -> Path:
    path = calibration_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(thresholds.to_mapping(), indent=2, sort_keys=True) + "\n"

    with NamedTemporaryFile("w", dir=path.parent, delete=False, encoding="utf-8") as tmp:
        tmp.write(payload)
        temp_path = Path(tmp.name)
    temp_path.replace(path)
    return path


def clear_thresholds() -> bool:
    """Remove persisted thresholds; return whether a file was deleted."""
    path = calibration_file()
    if not path.exists():
        return False
    path.unlink()
    return True


__all__ = ["calibration_file", "load_thresholds", "save_thresholds", "clear_thresholds"]
