"""MediaPipe Tasks backends for the hybrid scheduler.

- :class:`MediaPipeHandDetector` wraps ``HandLandmarker`` (fast path).
- :class:`MediaPipePoseDetector` wraps ``PoseLandmarker`` (slow path).

Both run in VIDEO mode, which expects strictly increasing timestamps per
landmarker, and download their ``.task`` model on first use unless a local
path is configured.
"""

from __future__ import annotations

import shutil
import threading
import urllib.request
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np

from pulse_dash.env import get_env
from pulse_dash.tracking.config import POSE_LANDMARK_COUNT, TRACKING_LOGGER as logger
from pulse_dash.tracking.detection.base import (
    BodyPoseDetector,
    DetectorUnavailableError,
    HandDetector,
    HandLandmarks,
    Landmark,
)

_MODEL_ROOT = Path(__file__).resolve().parents[3] / "data" / "models"
_HAND_MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/hand_landmarker/"
    "hand_landmarker/float16/1/hand_landmarker.task"
)


def _env_conf(name: str, default: float) -> float:
    raw = get_env(name)
    if not raw:
        return float(default)
    try:
        return float(np.clip(float(raw), 0.0, 1.0))
    except ValueError:
        return float(default)


def _normalize_model_variant(value: str | None) -> str:
    variant = (value or "").strip().lower()
    if not variant:
        # Latency-first default: gameplay needs cadence more than precision.
        return "lite"
    alias = {
        "light": "lite",
        "default": "full",
        "standard": "full",
    }.get(variant)
    variant = alias or variant
    if variant not in {"lite", "full", "heavy"}:
        logger.warning("Unknown pose landmarker variant '%s'; falling back to 'lite'.", variant)
        return "lite"
    return variant


def ensure_model(model_path: Path, url: str) -> Path:
    """Return ``model_path``, downloading ``url`` into it when missing."""
    model_path.parent.mkdir(parents=True, exist_ok=True)
    if model_path.exists() and model_path.stat().st_size > 1024:
        return model_path

    logger.info("Downloading landmarker model to %s", model_path)
    tmp_path = model_path.with_suffix(model_path.suffix + ".tmp")
    try:
        with urllib.request.urlopen(url) as response, tmp_path.open("wb") as handle:
            shutil.copyfileobj(response, handle)
        tmp_path.replace(model_path)
    except Exception as exc:
        tmp_path.unlink(missing_ok=True)
        raise DetectorUnavailableError(
            f"Landmarker model download failed from {url}. "
            "Point PULSE_DASH_HAND_MODEL_PATH / PULSE_DASH_POSE_MODEL_PATH at a local .task file. "
            f"Error: {exc}"
        ) from exc
    return model_path


def _landmark_from_task(raw: object) -> Landmark:
    return Landmark(
        x=float(getattr(raw, "x", 0.0) or 0.0),
        y=float(getattr(raw, "y", 0.0) or 0.0),
        visibility=getattr(raw, "visibility", None),
        presence=getattr(raw, "presence", None),
    )


class _TasksLandmarker:
    """Shared lifecycle for MediaPipe Tasks landmarkers.

    Thread-safety: calls into the model are guarded by a lock so a worker
    thread and the caller can share one instance.
    """

    name = "landmarker"

    def __init__(self) -> None:
        self._landmarker = None
        self._lock = threading.Lock()
        self._last_ts_ms = -1
        self._closed = False

    @property
    def ready(self) -> bool:
        return self._landmarker is not None

    def _create(self) -> object:  # pragma: no cover - overridden
        raise NotImplementedError

    def initialize(self) -> None:
        with self._lock:
            if self._landmarker is not None:
                return
            try:
                import mediapipe  # noqa: F401
            except ModuleNotFoundError as exc:
                raise DetectorUnavailableError("MediaPipe is not installed; install `mediapipe`.") from exc
            try:
                self._landmarker = self._create()
            except DetectorUnavailableError:
                raise
            except Exception as exc:
                raise DetectorUnavailableError(f"{self.name} initialisation failed: {exc}") from exc
            self._closed = False
            logger.info("%s initialized with MediaPipe Tasks.", self.name)

    def _run(self, image: np.ndarray, timestamp_ms: Optional[float]) -> object:
        import mediapipe as mp

        rgb = np.ascontiguousarray(image, dtype=np.uint8)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        with self._lock:
            if self._landmarker is None:
                raise DetectorUnavailableError(f"{self.name} is not initialised.")
            # VIDEO mode rejects non-increasing timestamps.
            ts = int(float(timestamp_ms)) if timestamp_ms is not None else self._last_ts_ms + 33
            ts = max(ts, self._last_ts_ms + 1)
            self._last_ts_ms = ts
            return self._landmarker.detect_for_video(mp_image, ts)

    def close(self) -> None:
        with self._lock:
            if self._closed or self._landmarker is None:
                self._closed = True
                return
            self._landmarker.close()
            self._landmarker = None
            self._last_ts_ms = -1
            self._closed = True
            logger.info("%s resources released.", self.name)

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            # Avoid raising during interpreter shutdown.
            pass


class MediaPipeHandDetector(_TasksLandmarker, HandDetector):
    """Up to two hands with handedness labels."""

    name = "HandLandmarker"

    def __init__(self, *, max_hands: int = 2) -> None:
        super().__init__()
        self.max_hands = int(np.clip(max_hands, 1, 4))

    def _model_path(self) -> Path:
        env_path = get_env("HAND_MODEL_PATH")
        if env_path:
            return Path(env_path).expanduser()
        return ensure_model(_MODEL_ROOT / "hand_landmarker.task", get_env("HAND_MODEL_URL") or _HAND_MODEL_URL)

    def _create(self) -> object:
        from mediapipe.tasks.python.core.base_options import BaseOptions
        from mediapipe.tasks.python.vision import HandLandmarker, HandLandmarkerOptions, RunningMode

        options = HandLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=str(self._model_path())),
            running_mode=RunningMode.VIDEO,
            num_hands=self.max_hands,
            min_hand_detection_confidence=_env_conf("HAND_MIN_DETECTION_CONFIDENCE", 0.5),
            min_hand_presence_confidence=_env_conf("HAND_MIN_PRESENCE_CONFIDENCE", 0.5),
            min_tracking_confidence=_env_conf("HAND_MIN_TRACKING_CONFIDENCE", 0.5),
        )
        return HandLandmarker.create_from_options(options)

    def detect(self, image: np.ndarray, timestamp_ms: Optional[float] = None) -> Sequence[HandLandmarks]:
        results = self._run(image, timestamp_ms)
        hands = list(getattr(results, "hand_landmarks", None) or [])
        handedness = list(getattr(results, "handedness", None) or [])
        out: List[HandLandmarks] = []
        for idx, hand in enumerate(hands):
            label = ""
            if idx < len(handedness) and handedness[idx]:
                label = str(getattr(handedness[idx][0], "category_name", "") or "")
            out.append(HandLandmarks(handedness=label, landmarks=tuple(_landmark_from_task(lm) for lm in hand)))
        return out


class MediaPipePoseDetector(_TasksLandmarker, BodyPoseDetector):
    """Single-person 33-point body landmarks with visibility/presence."""

    name = "PoseLandmarker"

    def _model_path(self) -> Path:
        env_path = get_env("POSE_MODEL_PATH")
        if env_path:
            return Path(env_path).expanduser()
        variant = _normalize_model_variant(get_env("POSE_MODEL_VARIANT"))
        url = get_env("POSE_MODEL_URL") or (
            "https://storage.googleapis.com/mediapipe-models/pose_landmarker/"
            f"pose_landmarker_{variant}/float16/1/pose_landmarker_{variant}.task"
        )
        return ensure_model(_MODEL_ROOT / f"pose_landmarker_{variant}.task", url)

    def _create(self) -> object:
        from mediapipe.tasks.python.core.base_options import BaseOptions
        from mediapipe.tasks.python.vision import PoseLandmarker, PoseLandmarkerOptions, RunningMode

        options = PoseLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=str(self._model_path())),
            running_mode=RunningMode.VIDEO,
            num_poses=1,
            min_pose_detection_confidence=_env_conf("POSE_MIN_DETECTION_CONFIDENCE", 0.5),
            min_pose_presence_confidence=_env_conf("POSE_MIN_PRESENCE_CONFIDENCE", 0.5),
            min_tracking_confidence=_env_conf("POSE_MIN_TRACKING_CONFIDENCE", 0.5),
            output_segmentation_masks=False,
        )
        return PoseLandmarker.create_from_options(options)

    def detect(self, image: np.ndarray, timestamp_ms: Optional[float] = None) -> Sequence[Landmark]:
        results = self._run(image, timestamp_ms)
        poses = getattr(results, "pose_landmarks", None)
        if not poses:
            return []
        out = [_landmark_from_task(lm) for lm in list(poses[0] or [])]
        return out[:POSE_LANDMARK_COUNT]


__all__ = ["MediaPipeHandDetector", "MediaPipePoseDetector", "ensure_model"]
