"""
scheduler/retry.py — Retry classification + exponential backoff

Decides whether a failed job attempt is worth repeating and how long to wait
before the next attempt.

Retries on:
  - JobError subclasses flagged retryable (TransientJobError, JobAbortedError,
    RateLimitedError) or any error exposing `retryable = True`
  - transport failures that never reached the server (ConnectionError,
    httpx.TransportError)
  - aborts / timeouts (TimeoutError, httpx.TimeoutException)
  - anything carrying HTTP status 429

Does NOT retry (permanent, won't fix themselves):
  - PermanentJobError, validation errors, parse errors, bugs inside the job

Backoff formula: min(base_delay * 2^retry_count, max_delay), where
retry_count is the number of failures so far. If RateLimitedError carries
retry_after, that value is used instead (still capped at max_delay).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import httpx

from requestgate.exceptions import RateLimitedError

_RATE_LIMIT_STATUS = 429


@dataclass(frozen=True)
class RetryPolicy:
    """
    max_retries               Max execution attempts per job (first one included).
    base_delay                Backoff base in seconds.
    max_delay                 Backoff cap in seconds.
    match_rate_limit_message  Also treat errors whose message mentions "429"
                              as rate limits. Wording-dependent, off by default.
    """
    max_retries: int = 5
    base_delay: float = 2.0
    max_delay: float = 30.0
    match_rate_limit_message: bool = False

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")

    @classmethod
    def from_config(cls, cfg) -> "RetryPolicy":
        return cls(
            max_retries=cfg.max_retries,
            base_delay=cfg.base_delay,
            max_delay=cfg.max_delay,
            match_rate_limit_message=getattr(cfg, "match_rate_limit_message", False),
        )

    # ── Classification ────────────────────────────────────────────────────────

    def is_retryable(self, error: BaseException) -> bool:
        # 429 wins over any per-type flag.
        if _status_code(error) == _RATE_LIMIT_STATUS:
            return True

        flag = getattr(error, "retryable", None)
        if isinstance(flag, bool):
            return flag

        if isinstance(error, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
            return True
        if isinstance(error, (ConnectionError, httpx.TransportError)):
            return True

        if self.match_rate_limit_message and "429" in str(error):
            return True

        return False

    # ── Backoff ───────────────────────────────────────────────────────────────

    def backoff(self, retry_count: int, error: Optional[BaseException] = None) -> float:
        """Seconds to sleep before the next attempt, after `retry_count` failures."""
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            return min(max(error.retry_after, 0.0), self.max_delay)
        return min(self.base_delay * (2 ** retry_count), self.max_delay)


def _status_code(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    code = getattr(error, "status_code", None)
    return code if isinstance(code, int) else None
