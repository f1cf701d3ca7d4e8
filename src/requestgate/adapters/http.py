"""
adapters/http.py — httpx transport adapter

Wraps a raw httpx call so its failures come out as typed JobErrors the
scheduler can classify without string matching:

    httpx.TimeoutException      -> JobAbortedError     (retryable)
    other httpx.TransportError  -> TransientJobError   (retryable)
    HTTP 429                    -> RateLimitedError    (retryable, retry_after)
    other HTTP 4xx / 5xx        -> PermanentJobError   (status_code set)

Usage::

    async with httpx.AsyncClient(base_url=API_URL, timeout=30.0) as client:
        job = http_job(client, "POST", "/chat/completions", json=payload)
        response = await scheduler.submit(job, category="accommodation")
        data = response.json()
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Optional

import httpx

from requestgate.exceptions import (
    JobAbortedError,
    PermanentJobError,
    RateLimitedError,
    TransientJobError,
)
from requestgate.observability.logger import get_logger

log = get_logger(__name__)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header (delta-seconds or HTTP-date) into seconds."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


async def send(client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
    """Perform one request, raising typed JobErrors for anything but 2xx/3xx."""
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise JobAbortedError(f"{method} {url} timed out: {e}") from e
    except httpx.TransportError as e:
        raise TransientJobError(f"{method} {url} failed: {type(e).__name__}: {e}") from e

    status = response.status_code
    if status == 429:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        log.warning("http.rate_limited", method=method, url=url, retry_after=retry_after)
        raise RateLimitedError(
            f"{method} {url} rate limited (429)",
            retry_after=retry_after,
        )
    if response.is_error:
        body = response.text[:200]
        log.warning("http.error_status", method=method, url=url, status=status)
        raise PermanentJobError(
            f"{method} {url} returned {status}: {body}",
            status_code=status,
        )
    return response


def http_job(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> Callable[[], Awaitable[httpx.Response]]:
    """Build a zero-argument job for Scheduler.submit(). Each call re-sends."""
    async def _job() -> httpx.Response:
        return await send(client, method, url, **kwargs)
    return _job
