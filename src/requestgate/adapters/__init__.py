"""adapters/ — transport adapters that raise typed, classifiable job errors."""

from requestgate.adapters.http import http_job, parse_retry_after, send

__all__ = ["http_job", "parse_retry_after", "send"]
