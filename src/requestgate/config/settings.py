"""
config/settings.py — requestgate Runtime Settings

Merges config.yaml (defaults/structure) with environment variables and .env.
Pydantic-powered: all fields are validated and typed.

  - SchedulerConfig holds the pacing / concurrency / retry knobs
  - LoggingConfig feeds observability.logger.setup_logging()
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a readable message listing every problem found
  - load_settings() respects REQUESTGATE_CONFIG as a fallback when no
    explicit config_path argument is given

Environment overrides use the REQUESTGATE_ prefix and "__" for nesting:
    REQUESTGATE_SCHEDULER__MAX_CONCURRENT=4
    REQUESTGATE_LOGGING__LEVEL=DEBUG
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class SchedulerConfig(BaseModel):
    """Pacing, concurrency and retry settings. Durations are in seconds."""
    min_delay: float = 2.0
    max_concurrent: int = 2
    max_retries: int = 5
    base_delay: float = 2.0
    max_delay: float = 30.0
    match_rate_limit_message: bool = False

    @field_validator("min_delay", "base_delay", "max_delay")
    @classmethod
    def _non_negative_delay(cls, v: float, info) -> float:
        if v < 0:
            raise ValueError(f"scheduler.{info.field_name} must be >= 0")
        return v

    @field_validator("max_concurrent")
    @classmethod
    def _positive_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("scheduler.max_concurrent must be >= 1")
        return v

    @field_validator("max_retries")
    @classmethod
    def _positive_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("scheduler.max_retries must be >= 1")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    requestgate runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml (passed in as init kwargs by load_settings)
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="REQUESTGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML arrives through init kwargs; let the environment win over it.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Field validators catch type/range errors at parse time; this method
        catches cross-field problems they can't see.
        """
        errors: list[str] = []
        s = self.scheduler

        if s.max_delay < s.base_delay:
            errors.append(
                f"scheduler.max_delay ({s.max_delay}) is smaller than "
                f"scheduler.base_delay ({s.base_delay}); backoff would never grow."
            )

        if s.base_delay == 0 and s.max_retries > 1:
            errors.append(
                "scheduler.base_delay is 0 with retries enabled; failed jobs "
                "would be retried back-to-back. Set base_delay > 0."
            )

        if self.logging.max_file_size_mb < 1:
            errors.append("logging.max_file_size_mb must be >= 1.")

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nrequestgate startup failed: {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your environment "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"scheduler", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument
      2. REQUESTGATE_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("REQUESTGATE_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)

    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default config
    path on first use. Application wiring only; schedulers take their
    configuration explicitly via Scheduler.from_settings().
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = Settings(**{
                k: v for k, v in _load_yaml(_resolve_config_path(None)).items()
                if k in _KNOWN_SECTIONS
            })
    return _singleton


def reset_settings() -> None:
    """Drop the cached singleton (tests)."""
    global _singleton
    with _singleton_lock:
        _singleton = None
