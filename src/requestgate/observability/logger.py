"""
observability/logger.py — requestgate Structured Logger

Sets up structlog with:
  - JSON output to rotating log files
  - Human-readable output to console (dev mode) or JSON (prod mode)
  - Job correlation fields (request_id, category) bound via contextvars

Usage:
    from requestgate.observability.logger import get_logger, setup_logging

    setup_logging(level="DEBUG", json_format=False)   # call once at startup
    log = get_logger(__name__)
    log.info("scheduler.job_start", attempt=1)
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog

# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: bool = True,
    console_output: bool = True,
    max_bytes: int = 100 * 1024 * 1024,   # 100 MB
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    Args:
        level:          Log level string: DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:        Directory for rotating log files.
        json_format:    If True, console also emits JSON (production mode).
                        If False, console uses coloured human-readable format (dev mode).
        console_output: Whether to emit logs to stdout at all.
        max_bytes:      Max size of each log file before rotation.
        backup_count:   Number of rotated log files to keep.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    handlers: list[logging.Handler] = []

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_dir / "requestgate.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(numeric_level)
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        handlers.append(console_handler)

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # File handler is always JSON; console follows json_format
    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )
    console_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    file_handler.setFormatter(file_formatter)
    for handler in handlers[1:]:
        handler.setFormatter(console_formatter)


def setup_logging_from_settings(settings) -> None:
    """Apply a Settings.logging section."""
    cfg = settings.logging
    setup_logging(
        level=cfg.level,
        log_dir=settings.log_dir,
        json_format=cfg.json_format,
        console_output=cfg.console_output,
        max_bytes=cfg.max_file_size_mb * 1024 * 1024,
        backup_count=cfg.backup_count,
    )


def get_logger(name: str = "requestgate", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a bound logger with optional initial context values.

    Example:
        log = get_logger(__name__, scheduler="estimates")
        log.info("scheduler.drain.start", pending=3)
        # → {"event": "scheduler.drain.start", "pending": 3,
        #    "scheduler": "estimates", "logger": "requestgate.scheduler", ...}
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


@contextmanager
def bind_job(request_id: str, category: Optional[str] = None) -> Iterator[None]:
    """
    Bind job correlation fields to every log line emitted inside the block.

    Each job attempt runs in its own asyncio Task with a copied context, so
    the binding never leaks into sibling jobs. Anything the job itself logs
    (through structlog) carries the same request_id.
    """
    fields: dict[str, Any] = {"request_id": request_id}
    if category is not None:
        fields["category"] = category
    with structlog.contextvars.bound_contextvars(**fields):
        yield
