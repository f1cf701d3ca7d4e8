"""
Unit test conftest — isolate REQUESTGATE_* environment variables and .env
loading so Settings() behaves as if only the test's own overrides exist.
"""
import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove REQUESTGATE_* env vars for every test, disable .env loading and
    drop any cached Settings singleton. Tests that need an override set it
    explicitly with monkeypatch.setenv()."""
    for var in list(os.environ):
        if var.upper().startswith("REQUESTGATE_"):
            monkeypatch.delenv(var, raising=False)

    import requestgate.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_prefix="REQUESTGATE_",
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    settings_module.reset_settings()
    yield
    settings_module.reset_settings()
