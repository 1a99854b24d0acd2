import os
from pathlib import Path

import pytest

from toonvocab.config import DATABASE_URL, GROUPING_THRESHOLD, Settings, load_settings

ENV_KEYS = [
    "OCR_API_KEY", "GEMINI_API_KEY", "GEMINI_MODEL", "DATABASE_URL", "OCR_LANGUAGE", "OCR_ENGINE",
    "OCR_TILE_DELAY_SECONDS", "TILE_OVERLAP", "GROUPING_THRESHOLD", "ENABLE_UPSCALE",
    "PIPELINE_DEBUG_DIR", "LOG_LEVEL",
]


@pytest.fixture()
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return tmp_path / "missing.env"


def test_defaults(clean_env):
    settings = load_settings(clean_env)

    assert settings.ocr_api_key is None
    assert settings.database_url == DATABASE_URL
    assert settings.ocr_language == "kor"
    assert settings.ocr_engine == 2
    assert settings.grouping_threshold == GROUPING_THRESHOLD
    assert settings.enable_upscale is False
    assert settings.debug_dir is None


def test_environment_overrides(clean_env, monkeypatch):
    monkeypatch.setenv("OCR_API_KEY", " ocr-key ")
    monkeypatch.setenv("OCR_ENGINE", "1")
    monkeypatch.setenv("GROUPING_THRESHOLD", "60")
    monkeypatch.setenv("ENABLE_UPSCALE", "yes")
    monkeypatch.setenv("PIPELINE_DEBUG_DIR", "/tmp/trace")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("OCR_TILE_DELAY_SECONDS", "-3")

    settings = load_settings(clean_env)

    assert settings.ocr_api_key == "ocr-key"
    assert settings.ocr_engine == 1
    assert settings.grouping_threshold == 60.0
    assert settings.enable_upscale is True
    assert settings.debug_dir == Path("/tmp/trace")
    assert settings.log_level == "DEBUG"
    assert settings.ocr_tile_delay == 0.0


def test_env_file_is_read(clean_env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("GEMINI_API_KEY=from-file\n")

    try:
        assert load_settings(env_file).gemini_api_key == "from-file"
    finally:
        os.environ.pop("GEMINI_API_KEY", None)


@pytest.mark.parametrize("key, value", [("OCR_ENGINE", "two"), ("OCR_ENGINE", "3"), ("ENABLE_UPSCALE", "maybe"), ("TILE_OVERLAP", "1.5")])
def test_invalid_values_raise(clean_env, monkeypatch, key, value):
    monkeypatch.setenv(key, value)
    with pytest.raises(ValueError):
        load_settings(clean_env)


def test_settings_validation():
    with pytest.raises(ValueError):
        Settings(tile_size_threshold=0)
