"""
requestgate: rate-limited, retrying asyncio scheduler for calls to external services.

    from requestgate import Scheduler

    scheduler = Scheduler(min_delay=2.0, max_concurrent=2)
    result = await scheduler.submit(fetch_estimate, category="flight")
"""

from requestgate.exceptions import (
    JobAbortedError,
    JobError,
    PermanentJobError,
    RateLimitedError,
    RequestGateError,
    SchedulerClosedError,
    SchedulerError,
    TransientJobError,
)
from requestgate.scheduler import Job, RetryPolicy, Scheduler, SchedulerStats

__version__ = "1.0.0"

__all__ = [
    "Job",
    "JobAbortedError",
    "JobError",
    "PermanentJobError",
    "RateLimitedError",
    "RequestGateError",
    "RetryPolicy",
    "Scheduler",
    "SchedulerClosedError",
    "SchedulerError",
    "SchedulerStats",
    "TransientJobError",
]
