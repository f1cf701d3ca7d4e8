"""
exceptions.py — requestgate Unified Error Hierarchy

All requestgate-specific exceptions live here. Jobs (or the adapters that
wrap their transport calls) raise typed JobError subclasses so the scheduler
can branch on an explicit retryability flag instead of inspecting messages.

Import from here, not from individual modules:
    from requestgate.exceptions import RateLimitedError, PermanentJobError

Hierarchy:
    RequestGateError
    ├── SchedulerError
    │   └── SchedulerClosedError
    └── JobError
        ├── TransientJobError    (retryable)
        ├── JobAbortedError      (retryable)
        ├── RateLimitedError     (retryable)
        └── PermanentJobError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class RequestGateError(Exception):
    """Base class for all requestgate exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Scheduler layer
# ─────────────────────────────────────────────────────────────────────────────

class SchedulerError(RequestGateError):
    """Base for errors raised by the scheduler itself."""


class SchedulerClosedError(SchedulerError):
    """The scheduler was closed before the job could run."""


# ─────────────────────────────────────────────────────────────────────────────
# Job layer
# ─────────────────────────────────────────────────────────────────────────────

class JobError(RequestGateError):
    """
    Failure raised from inside a job.

    `retryable` is a class-level default that subclasses override; a caller
    may still force it per instance via the constructor.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        if retryable is not None:
            self.retryable = retryable


class TransientJobError(JobError):
    """The request never got a response (connection reset, DNS failure)."""

    retryable = True


class JobAbortedError(JobError):
    """The job's operation was aborted or hit its own timeout."""

    retryable = True


class RateLimitedError(JobError):
    """Downstream service answered 429; retry with backoff."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class PermanentJobError(JobError):
    """Non-retryable failure such as a 4xx response or an unparseable body."""


__all__ = [
    "RequestGateError",
    "SchedulerError",
    "SchedulerClosedError",
    "JobError",
    "TransientJobError",
    "JobAbortedError",
    "RateLimitedError",
    "PermanentJobError",
]
