"""
observability/ — structured logging for requestgate.

    from requestgate.observability import get_logger, setup_logging
"""

from requestgate.observability.logger import (
    bind_job,
    get_logger,
    setup_logging,
    setup_logging_from_settings,
)

__all__ = ["bind_job", "get_logger", "setup_logging", "setup_logging_from_settings"]
