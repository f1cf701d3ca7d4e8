"""
tests/unit/test_retry.py — RetryPolicy classification and backoff

Covers:
  - typed JobError flags (transient, aborted, rate limited, permanent)
  - stdlib / httpx transport and timeout errors
  - status-code 429 detection, legacy message matching (opt-in)
  - backoff growth, cap, Retry-After override
  - from_config()
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from requestgate.config.settings import SchedulerConfig
from requestgate.exceptions import (
    JobAbortedError,
    JobError,
    PermanentJobError,
    RateLimitedError,
    TransientJobError,
)
from requestgate.scheduler.retry import RetryPolicy


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://pricing.example/estimate")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"status {code}", request=request, response=response)


class TestClassification:

    @pytest.fixture
    def policy(self):
        return RetryPolicy()

    @pytest.mark.parametrize("error", [
        TransientJobError("connection reset"),
        JobAbortedError("aborted"),
        RateLimitedError("too many requests"),
        ConnectionRefusedError("refused"),
        TimeoutError(),
        asyncio.TimeoutError(),
        httpx.ConnectError("dns failure"),
        httpx.ReadTimeout("read timed out"),
    ])
    def test_retryable(self, policy, error):
        assert policy.is_retryable(error) is True

    @pytest.mark.parametrize("error", [
        PermanentJobError("bad request", status_code=400),
        ValueError("invalid estimate"),
        KeyError("min"),
        TypeError("NoneType is not subscriptable"),
        RuntimeError("HTTP 500"),
    ])
    def test_not_retryable(self, policy, error):
        assert policy.is_retryable(error) is False

    def test_http_status_429_is_retryable(self, policy):
        assert policy.is_retryable(_status_error(429)) is True

    def test_http_status_500_is_not_retryable(self, policy):
        assert policy.is_retryable(_status_error(500)) is False

    def test_status_code_attribute_429(self, policy):
        class ApiError(Exception):
            status_code = 429
        assert policy.is_retryable(ApiError("quota")) is True

    def test_job_error_with_status_429_is_retryable(self, policy):
        assert policy.is_retryable(JobError("too many requests", status_code=429)) is True
        assert policy.is_retryable(PermanentJobError("quota", status_code=429)) is True

    def test_explicit_flag_overrides_type(self, policy):
        assert policy.is_retryable(JobError("retry me", retryable=True)) is True
        assert policy.is_retryable(TransientJobError("do not", retryable=False)) is False

    def test_foreign_error_with_retryable_attribute(self, policy):
        class UpstreamError(Exception):
            retryable = True
        assert policy.is_retryable(UpstreamError()) is True

    def test_message_429_ignored_by_default(self, policy):
        assert policy.is_retryable(Exception("API error: 429 Too Many Requests")) is False

    def test_message_429_matched_when_enabled(self):
        policy = RetryPolicy(match_rate_limit_message=True)
        assert policy.is_retryable(Exception("API error: 429 Too Many Requests")) is True
        assert policy.is_retryable(Exception("API error: 400")) is False


class TestBackoff:

    def test_exponential_growth(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=30.0)
        assert [policy.backoff(n) for n in range(1, 5)] == [4.0, 8.0, 16.0, 30.0]

    def test_capped_at_max_delay(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=30.0)
        assert policy.backoff(10) == 30.0

    def test_retry_after_used_when_present(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=30.0)
        assert policy.backoff(1, RateLimitedError("slow", retry_after=7.5)) == 7.5

    def test_retry_after_capped(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=30.0)
        assert policy.backoff(1, RateLimitedError("slow", retry_after=120)) == 30.0

    def test_retry_after_zero_means_immediate(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=30.0)
        assert policy.backoff(1, RateLimitedError("slow", retry_after=0.0)) == 0.0

    def test_retry_after_missing_falls_back(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=30.0)
        assert policy.backoff(2, RateLimitedError("slow")) == 4.0


class TestPolicyConfig:

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 5
        assert policy.base_delay == 2.0
        assert policy.max_delay == 30.0
        assert policy.match_rate_limit_message is False

    def test_from_config(self):
        cfg = SchedulerConfig(max_retries=3, base_delay=0.5, max_delay=4.0)
        policy = RetryPolicy.from_config(cfg)
        assert policy.max_retries == 3
        assert policy.base_delay == 0.5
        assert policy.max_delay == 4.0

    def test_frozen(self):
        policy = RetryPolicy()
        with pytest.raises(Exception):
            policy.max_retries = 9  # type: ignore[misc]

    @pytest.mark.parametrize("kwargs", [
        {"max_retries": 0},
        {"base_delay": -1.0},
        {"base_delay": 10.0, "max_delay": 5.0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)
