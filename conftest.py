"""
Root test conftest — isolate MindScribe configuration from the developer's
or CI environment, so Settings() only sees what a test explicitly provides.
"""
import os

import pytest

_SECTION_PREFIXES = ("STT", "TTS", "CAPTURE", "PLAYBACK", "VISUALIZATION", "LOGGING")


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove MINDSCRIBE_CONFIG and nested section env vars (STT__MODEL, ...)
    for every test. Also disables .env file loading so local developer .env
    files don't leak into tests."""
    monkeypatch.delenv("MINDSCRIBE_CONFIG", raising=False)
    for var in list(os.environ):
        upper = var.upper()
        if any(upper == p or upper.startswith(p + "__") for p in _SECTION_PREFIXES):
            monkeypatch.delenv(var, raising=False)

    # Disable .env file loading by patching Settings.model_config
    import mindscribe.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
