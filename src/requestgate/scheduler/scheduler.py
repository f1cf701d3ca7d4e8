"""
scheduler/scheduler.py — Scheduler (request gate)

Serializes and rate-limits calls to a rate-limited downstream service (the
LLM-backed cost estimation API, or anything else asynchronous). Every call
goes through submit() and comes back as an asyncio.Future.

Design
------
* Pure asyncio: one event loop, no threads. Bookkeeping (queue, active
  count, last start time) is only touched between awaits, so no locks.
* FIFO queue: jobs are dequeued in submission order for their first attempt.
* Bounded concurrency: at most max_concurrent attempts are in flight.
* Pacing: no two attempt starts (first attempts or retries) are closer than
  min_delay seconds, across the whole instance.
* Retries: retryable failures back off exponentially (see retry.py) and the
  job is re-executed in place. The concurrency slot is released during the
  backoff sleep; the retry competes for a slot again when it wakes.
* Exactly-once settlement: each job's future is resolved or rejected once,
  with the raw job error passed through unchanged.

Usage::

    scheduler = Scheduler(min_delay=2.0, max_concurrent=2)
    estimate = await scheduler.submit(lambda: fetch_estimate(trip), category="flight")
    ...
    await scheduler.aclose()
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from requestgate.exceptions import SchedulerClosedError
from requestgate.observability.logger import bind_job, get_logger
from requestgate.scheduler.retry import RetryPolicy

log = get_logger(__name__)

T = TypeVar("T")

JobFn = Callable[[], Awaitable[Any]]

_DEFAULT_CATEGORY = "default"


# ─────────────────────────────────────────────────────────────────────────────
# Job
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class Job:
    """
    One submitted unit of work.

    fn            Zero-argument callable returning an awaitable.
    future        Result channel handed back to the caller.
    category      Opaque label, only used for stats and log correlation.
    request_id    Generated at submission, bound to every log line of the job.
    """
    fn: JobFn
    future: asyncio.Future
    category: Optional[str] = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    submitted_at: float = field(default_factory=time.monotonic)
    attempts: int = 0

    @property
    def settled(self) -> bool:
        return self.future.done()


# ─────────────────────────────────────────────────────────────────────────────
# SchedulerStats
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class SchedulerStats:
    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0
    attempts: int = 0
    retries: int = 0
    last_error: Optional[str] = None
    last_request_id: Optional[str] = None
    by_category: dict[str, int] = field(default_factory=dict)


# ─────────────────────────────────────────────────────────────────────────────
# Scheduler
# ─────────────────────────────────────────────────────────────────────────────

class Scheduler:
    """
    Request gate with pacing, bounded concurrency and retry.

    Retry knobs come either from max_retries / base_delay / max_delay (unset
    ones fall back to RetryPolicy defaults) or from a ready-made retry_policy.
    Passing both is a ValueError.

    Lifecycle::

        scheduler = Scheduler(max_concurrent=2)
        fut = scheduler.submit(job)       # enqueue, returns asyncio.Future
        result = await fut
        await scheduler.aclose()          # wait for queued + running jobs

    Introspection::

        scheduler.active     # attempts currently in flight
        scheduler.pending    # jobs waiting for their first attempt
        scheduler.stats      # SchedulerStats counters
    """

    def __init__(
        self,
        min_delay: float = 2.0,
        max_concurrent: int = 2,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        name: str = "requestgate",
    ) -> None:
        if min_delay < 0:
            raise ValueError("min_delay must be >= 0")
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")

        self._min_delay = min_delay
        self._max_concurrent = max_concurrent
        if retry_policy is None:
            overrides = {
                k: v for k, v in (
                    ("max_retries", max_retries),
                    ("base_delay", base_delay),
                    ("max_delay", max_delay),
                ) if v is not None
            }
            retry_policy = RetryPolicy(**overrides)
        elif any(v is not None for v in (max_retries, base_delay, max_delay)):
            raise ValueError(
                "pass either retry_policy or max_retries/base_delay/max_delay, not both"
            )
        self._policy = retry_policy
        self._name = name

        self._queue: deque[Job] = deque()
        self._active = 0
        self._last_start: Optional[float] = None
        self._draining = False
        self._closed = False
        self._slot_freed = asyncio.Event()
        self._job_tasks: set[asyncio.Task] = set()
        self._drain_task: Optional[asyncio.Task] = None

        self.stats = SchedulerStats()

        log.info(
            "scheduler.init",
            scheduler=name,
            min_delay=min_delay,
            max_concurrent=max_concurrent,
            max_retries=self._policy.max_retries,
            base_delay=self._policy.base_delay,
            max_delay=self._policy.max_delay,
        )

    # ── Factory ───────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(cls, settings, name: str = "requestgate") -> "Scheduler":
        cfg = settings.scheduler
        return cls(
            min_delay=cfg.min_delay,
            max_concurrent=cfg.max_concurrent,
            retry_policy=RetryPolicy.from_config(cfg),
            name=name,
        )

    # ── Introspection ─────────────────────────────────────────────────────────

    @property
    def active(self) -> int:
        return self._active

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    # ── Public API ────────────────────────────────────────────────────────────

    def submit(self, fn: Callable[[], Awaitable[T]], category: Optional[str] = None) -> "asyncio.Future[T]":
        """
        Enqueue `fn` and return a future for its outcome. Must be called from
        inside a running event loop. Never raises for a closed scheduler; the
        returned future fails with SchedulerClosedError instead.
        """
        loop = asyncio.get_running_loop()
        job = Job(fn=fn, future=loop.create_future(), category=category)

        if self._closed:
            job.future.set_exception(SchedulerClosedError(
                f"Scheduler '{self._name}' is closed; job {job.request_id} was not queued."
            ))
            log.warning("scheduler.job_rejected.closed", request_id=job.request_id, category=category)
            return job.future

        self._queue.append(job)
        self.stats.submitted += 1
        self.stats.last_request_id = job.request_id
        label = category or _DEFAULT_CATEGORY
        self.stats.by_category[label] = self.stats.by_category.get(label, 0) + 1

        log.debug(
            "scheduler.job_submitted",
            request_id=job.request_id,
            category=category,
            pending=len(self._queue),
            active=self._active,
        )
        self._kick()
        return job.future

    async def schedule(self, fn: Callable[[], Awaitable[T]], category: Optional[str] = None) -> T:
        """Submit `fn` and wait for its result."""
        return await self.submit(fn, category)

    def close(self) -> None:
        """Stop accepting jobs. Queued and running jobs still complete."""
        if not self._closed:
            self._closed = True
            log.info("scheduler.closing", scheduler=self._name, pending=len(self._queue), active=self._active)

    async def aclose(self, cancel_pending: bool = False) -> None:
        """
        Close and wait until every accepted job has settled.

        cancel_pending=True rejects jobs still waiting for their first attempt
        with SchedulerClosedError instead of running them.
        """
        self.close()
        if cancel_pending:
            while self._queue:
                job = self._queue.popleft()
                if not job.settled:
                    job.future.set_exception(SchedulerClosedError(
                        f"Scheduler '{self._name}' closed before job {job.request_id} started."
                    ))
                    self.stats.failed += 1
            self._slot_freed.set()  # wake a drain loop waiting for admission

        if self._drain_task is not None:
            await asyncio.gather(self._drain_task, return_exceptions=True)
        if self._job_tasks:
            await asyncio.gather(*list(self._job_tasks), return_exceptions=True)
        log.info("scheduler.closed", scheduler=self._name, **self._stats_summary())

    async def __aenter__(self) -> "Scheduler":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ── Drain loop ────────────────────────────────────────────────────────────

    def _kick(self) -> None:
        """Start the drain loop unless one is already running."""
        if self._draining:
            return
        self._draining = True
        self._drain_task = asyncio.create_task(
            self._drain(),
            name=f"{self._name}:drain",
        )

    async def _drain(self) -> None:
        log.debug("scheduler.drain.start", pending=len(self._queue))
        try:
            while self._queue:
                self._drop_cancelled_head()
                if not self._queue:
                    break

                await self._wait_for_admission()

                # No await between here and _mark_start(): admission holds.
                self._drop_cancelled_head()
                if not self._queue:
                    break
                job = self._queue.popleft()
                self._mark_start(job)

                task = asyncio.create_task(
                    self._run_job(job),
                    name=f"{self._name}:job:{job.request_id}",
                )
                self._job_tasks.add(task)
                task.add_done_callback(self._job_tasks.discard)
        finally:
            self._draining = False
            log.debug("scheduler.drain.idle", active=self._active)

    def _drop_cancelled_head(self) -> None:
        while self._queue and self._queue[0].settled:
            job = self._queue.popleft()
            self.stats.cancelled += 1
            log.info("scheduler.job_skipped.cancelled", request_id=job.request_id, category=job.category)

    # ── Admission (slot + pacing) ─────────────────────────────────────────────

    async def _wait_for_admission(self) -> None:
        """
        Suspend until a concurrency slot is free and min_delay has elapsed
        since the last attempt start. Returns with both conditions true; the
        caller must mark the start before its next await.
        """
        while True:
            if self._active >= self._max_concurrent:
                self._slot_freed.clear()
                await self._slot_freed.wait()
                continue

            wait_s = self._pacing_remaining()
            if wait_s > 0:
                await asyncio.sleep(wait_s)
                continue
            return

    def _pacing_remaining(self) -> float:
        if self._last_start is None:
            return 0.0
        elapsed = time.monotonic() - self._last_start
        return self._min_delay - elapsed

    def _mark_start(self, job: Job) -> None:
        self._active += 1
        self._last_start = time.monotonic()
        job.attempts += 1
        self.stats.attempts += 1

    def _release_slot(self) -> None:
        self._active -= 1
        self._slot_freed.set()

    # ── Per-job retry loop ────────────────────────────────────────────────────

    async def _run_job(self, job: Job) -> None:
        """Execute one job until success, permanent failure or retry exhaustion."""
        retry_count = 0

        while True:
            log.debug(
                "scheduler.job_start",
                request_id=job.request_id,
                category=job.category,
                attempt=job.attempts,
                active=self._active,
            )
            try:
                with bind_job(job.request_id, job.category):
                    result = await job.fn()

            except Exception as e:
                self._release_slot()
                retry_count += 1

                if self._policy.is_retryable(e) and retry_count < self._policy.max_retries:
                    delay = self._policy.backoff(retry_count, e)
                    self.stats.retries += 1
                    log.warning(
                        "scheduler.job_retrying",
                        request_id=job.request_id,
                        category=job.category,
                        attempt=job.attempts,
                        max_retries=self._policy.max_retries,
                        delay_s=round(delay, 3),
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    try:
                        await asyncio.sleep(delay)
                        if self._abandon_if_settled(job):
                            return
                        await self._wait_for_admission()
                    except asyncio.CancelledError:
                        self._settle_cancelled(job)
                        raise
                    if self._abandon_if_settled(job):
                        return
                    self._mark_start(job)
                    continue

                self._settle_failure(job, e)
                return

            except BaseException:
                # CancelledError, KeyboardInterrupt, SystemExit.
                self._release_slot()
                self._settle_cancelled(job)
                raise

            else:
                self._release_slot()
                self._settle_success(job, result)
                return

    def _abandon_if_settled(self, job: Job) -> bool:
        """Stop retrying a job whose caller already cancelled its future."""
        if not job.settled:
            return False
        self.stats.cancelled += 1
        log.info("scheduler.job_abandoned", request_id=job.request_id, attempts=job.attempts)
        return True

    def _settle_success(self, job: Job, result: Any) -> None:
        if job.settled:
            self.stats.cancelled += 1
            log.info("scheduler.job_result_discarded", request_id=job.request_id)
            return
        job.future.set_result(result)
        self.stats.succeeded += 1
        log.info(
            "scheduler.job_complete",
            request_id=job.request_id,
            category=job.category,
            attempts=job.attempts,
            duration_s=round(time.monotonic() - job.submitted_at, 3),
        )

    def _settle_failure(self, job: Job, error: Exception) -> None:
        err = f"{type(error).__name__}: {error}"
        self.stats.last_error = err
        if job.settled:
            self.stats.cancelled += 1
            log.info("scheduler.job_result_discarded", request_id=job.request_id, error=err)
            return
        job.future.set_exception(error)
        self.stats.failed += 1
        log.error(
            "scheduler.job_failed",
            request_id=job.request_id,
            category=job.category,
            attempts=job.attempts,
            retryable=self._policy.is_retryable(error),
            error=err,
        )

    def _settle_cancelled(self, job: Job) -> None:
        if not job.settled:
            job.future.cancel()
        self.stats.cancelled += 1
        log.info("scheduler.job_cancelled", request_id=job.request_id, attempts=job.attempts)

    def _stats_summary(self) -> dict[str, int]:
        return {
            "submitted": self.stats.submitted,
            "succeeded": self.stats.succeeded,
            "failed": self.stats.failed,
            "cancelled": self.stats.cancelled,
            "attempts": self.stats.attempts,
        }

    def __repr__(self) -> str:
        return (
            f"<Scheduler {self._name!r} active={self._active}/{self._max_concurrent} "
            f"pending={len(self._queue)} min_delay={self._min_delay}>"
        )
