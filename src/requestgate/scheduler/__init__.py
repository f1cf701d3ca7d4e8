"""
scheduler/ — Request scheduler

Paces, bounds and retries asynchronous jobs sent to a rate-limited service.

    from requestgate.scheduler import Scheduler, RetryPolicy
"""

from requestgate.scheduler.retry import RetryPolicy
from requestgate.scheduler.scheduler import Job, Scheduler, SchedulerStats

__all__ = ["Job", "RetryPolicy", "Scheduler", "SchedulerStats"]
