from __future__ import annotations

import importlib

import pytest

from pulse_dash import config as app_config


@pytest.fixture(autouse=True)
def _fresh_config():
    app_config.get_config.cache_clear()
    yield
    app_config.get_config.cache_clear()


def test_toml_file_is_loaded(monkeypatch, tmp_path):
    path = tmp_path / "pulse_dash.toml"
    path.write_text(
        'detection_mode = "responsive"\n'
        "camera_index = 2\n"
        "ema_alpha = 0.5\n"
        "[staleness]\n"
        "check_period_ms = 250\n"
        "stale_after_ms = 800\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("PULSE_DASH_CONFIG", str(path))
    monkeypatch.delenv("PULSE_DASH_DETECTION_MODE", raising=False)
    monkeypatch.delenv("PULSE_DASH_CAMERA_INDEX", raising=False)
    monkeypatch.delenv("PULSE_DASH_EMA_ALPHA", raising=False)

    config = app_config.get_config()
    assert config.detection_mode == "responsive"
    assert config.camera_index == 2
    assert config.ema_alpha == pytest.approx(0.5)
    assert config.staleness.check_period_ms == pytest.approx(250.0)
    assert config.staleness.stale_after_ms == pytest.approx(800.0)
    assert app_config.as_dict()["source"] == str(path)


def test_env_overrides_file(monkeypatch, tmp_path):
    path = tmp_path / "pulse_dash.toml"
    path.write_text('detection_mode = "accuracy"\n', encoding="utf-8")
    monkeypatch.setenv("PULSE_DASH_CONFIG", str(path))
    monkeypatch.setenv("PULSE_DASH_DETECTION_MODE", "responsive")
    monkeypatch.delenv("PULSE_DASH_CAMERA_INDEX", raising=False)
    monkeypatch.delenv("PULSE_DASH_EMA_ALPHA", raising=False)
    monkeypatch.setenv("CAMERA_RUNNER_CAMERA_INDEX", "3")
    config = app_config.get_config()
    assert config.detection_mode == "responsive"
    assert config.camera_index == 3


def test_env_ema_alpha_overrides_file(monkeypatch, tmp_path):
    path = tmp_path / "pulse_dash.toml"
    path.write_text("ema_alpha = 0.5\n", encoding="utf-8")
    monkeypatch.setenv("PULSE_DASH_CONFIG", str(path))
    monkeypatch.setenv("PULSE_DASH_EMA_ALPHA", "0.6")
    assert app_config.get_config().ema_alpha == pytest.approx(0.6)

    app_config.get_config.cache_clear()
    monkeypatch.setenv("PULSE_DASH_EMA_ALPHA", "1.5")
    assert app_config.get_config().ema_alpha == pytest.approx(0.5)


def test_invalid_values_fall_back_to_defaults(monkeypatch, tmp_path):
    path = tmp_path / "pulse_dash.toml"
    path.write_text(
        'detection_mode = "warp"\nema_alpha = 4\ncamera_index = "front"\n[staleness]\nstale_after_ms = -1\n',
        encoding="utf-8",
    )
    monkeypatch.setenv("PULSE_DASH_CONFIG", str(path))
    monkeypatch.delenv("PULSE_DASH_DETECTION_MODE", raising=False)
    monkeypatch.delenv("PULSE_DASH_CAMERA_INDEX", raising=False)
    monkeypatch.delenv("PULSE_DASH_EMA_ALPHA", raising=False)
    config = app_config.get_config()
    assert config == app_config.AppConfig()


def test_missing_config_file_uses_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("PULSE_DASH_CONFIG", str(tmp_path / "absent.toml"))
    monkeypatch.delenv("PULSE_DASH_DETECTION_MODE", raising=False)
    monkeypatch.delenv("PULSE_DASH_CAMERA_INDEX", raising=False)
    monkeypatch.delenv("PULSE_DASH_EMA_ALPHA", raising=False)
    assert app_config.get_config() == app_config.AppConfig()
    assert app_config.as_dict()["source"] == "defaults"


def test_tracking_constants_env_overrides(monkeypatch):
    import pulse_dash.tracking.config as tracking_config

    monkeypatch.setenv("PULSE_DASH_EMA_ALPHA", "0.5")
    monkeypatch.setenv("PULSE_DASH_HAND_WRIST_SCORE", "0.75")
    reloaded = importlib.reload(tracking_config)
    assert reloaded.EMA_ALPHA == 0.5
    assert reloaded.HAND_WRIST_SCORE == 0.75

    monkeypatch.setenv("PULSE_DASH_ROI_HEIGHT_FRACTION", "1.5")
    with pytest.warns(RuntimeWarning):
        importlib.reload(tracking_config)

    monkeypatch.delenv("PULSE_DASH_EMA_ALPHA", raising=False)
    monkeypatch.delenv("PULSE_DASH_HAND_WRIST_SCORE", raising=False)
    monkeypatch.delenv("PULSE_DASH_ROI_HEIGHT_FRACTION", raising=False)
    importlib.reload(tracking_config)


def test_unknown_mode_tuning_is_balanced():
    from pulse_dash.tracking.config import get_tuning

    assert get_tuning("nope").mode == "balanced"
    assert get_tuning(None).mode == "balanced"
    assert get_tuning(" Accuracy ").mode == "accuracy"
