"""
tests/unit/test_http_adapter.py — httpx adapter error mapping

Covers:
  - 2xx passes through, 429 → RateLimitedError (+ Retry-After parsing),
    other 4xx/5xx → PermanentJobError, timeouts → JobAbortedError,
    transport failures → TransientJobError
  - http_job() retried end-to-end by the Scheduler on 429
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from requestgate.adapters.http import http_job, parse_retry_after, send
from requestgate.exceptions import (
    JobAbortedError,
    PermanentJobError,
    RateLimitedError,
    TransientJobError,
)
from requestgate.scheduler import Scheduler

_URL = "https://pricing.example/estimate"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ─────────────────────────────────────────────────────────────────────────────
# parse_retry_after
# ─────────────────────────────────────────────────────────────────────────────

class TestParseRetryAfter:

    def test_none_and_empty(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None

    def test_delta_seconds(self):
        assert parse_retry_after("12") == 12.0
        assert parse_retry_after(" 1.5 ") == 1.5

    def test_negative_clamped(self):
        assert parse_retry_after("-3") == 0.0

    def test_http_date(self):
        when = datetime.now(timezone.utc) + timedelta(seconds=30)
        value = parse_retry_after(format_datetime(when, usegmt=True))
        assert value is not None
        assert 25 <= value <= 31

    def test_past_http_date_clamped(self):
        when = datetime.now(timezone.utc) - timedelta(minutes=5)
        assert parse_retry_after(format_datetime(when, usegmt=True)) == 0.0

    def test_garbage(self):
        assert parse_retry_after("soon") is None


# ─────────────────────────────────────────────────────────────────────────────
# send()
# ─────────────────────────────────────────────────────────────────────────────

class TestSend:

    @pytest.mark.asyncio
    async def test_success_returns_response(self):
        async with _client(lambda req: httpx.Response(200, json={"average": 120})) as client:
            response = await send(client, "POST", _URL, json={"category": "food"})
        assert response.json() == {"average": 120}

    @pytest.mark.asyncio
    async def test_429_maps_to_rate_limited(self):
        handler = lambda req: httpx.Response(429, headers={"Retry-After": "3"})
        async with _client(handler) as client:
            with pytest.raises(RateLimitedError) as exc_info:
                await send(client, "POST", _URL)
        assert exc_info.value.retry_after == 3.0
        assert exc_info.value.status_code == 429
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 404, 500, 503])
    async def test_other_errors_are_permanent(self, status):
        handler = lambda req: httpx.Response(status, text="nope")
        async with _client(handler) as client:
            with pytest.raises(PermanentJobError) as exc_info:
                await send(client, "GET", _URL)
        assert exc_info.value.status_code == status
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_timeout_maps_to_aborted(self):
        def handler(req):
            raise httpx.ReadTimeout("timed out", request=req)
        async with _client(handler) as client:
            with pytest.raises(JobAbortedError) as exc_info:
                await send(client, "GET", _URL)
        assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)

    @pytest.mark.asyncio
    async def test_connect_error_maps_to_transient(self):
        def handler(req):
            raise httpx.ConnectError("name resolution failed", request=req)
        async with _client(handler) as client:
            with pytest.raises(TransientJobError):
                await send(client, "GET", _URL)


# ─────────────────────────────────────────────────────────────────────────────
# http_job() through the Scheduler
# ─────────────────────────────────────────────────────────────────────────────

class TestHttpJobScheduled:

    @pytest.mark.asyncio
    async def test_rate_limited_request_retried_until_success(self):
        calls = {"n": 0}

        def handler(req):
            calls["n"] += 1
            if calls["n"] < 3:
                return httpx.Response(429, headers={"Retry-After": "0"})
            return httpx.Response(200, json={"min": 50, "max": 90})

        scheduler = Scheduler(min_delay=0.0, base_delay=0.01, max_delay=0.02)
        async with _client(handler) as client:
            response = await scheduler.submit(http_job(client, "POST", _URL), category="flight")

        assert response.json() == {"min": 50, "max": 90}
        assert calls["n"] == 3
        assert scheduler.stats.retries == 2

    @pytest.mark.asyncio
    async def test_bad_request_not_retried(self):
        calls = {"n": 0}

        def handler(req):
            calls["n"] += 1
            return httpx.Response(422, json={"error": "invalid country"})

        scheduler = Scheduler(min_delay=0.0, base_delay=0.01, max_delay=0.02)
        async with _client(handler) as client:
            with pytest.raises(PermanentJobError):
                await scheduler.submit(http_job(client, "POST", _URL))
        assert calls["n"] == 1
