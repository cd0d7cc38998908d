"""Cron scheduling for queue maintenance ticks.

This module drives the periodic work of a queue:
- Process tick: calls process_next_batch() on the queue's crontab
- Cleanup tick: calls cleanup() on its own crontab (optional)

Each tick is wrapped in a PeriodicJob, which refuses to overlap with a tick
that is still running, reports slow ticks and never lets a handler error
stop the schedule. QueueScheduler registers the jobs with APScheduler.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

JobHook = Callable[["PeriodicJob"], Any]


@dataclass
class JobHooks:
    """Optional callbacks fired around each tick.

    Every hook is called with the PeriodicJob. Errors raised by a hook are
    logged and ignored.

    Attributes:
        on_tick_started: A tick began.
        on_tick_complete: A tick finished; see job.last_error and job.last_duration.
        on_time_warning: A tick is still running after time_warning_seconds.
        on_overlapping_call: A tick was refused because the previous one is running.
    """

    on_tick_started: JobHook | None = None
    on_tick_complete: JobHook | None = None
    on_time_warning: JobHook | None = None
    on_overlapping_call: JobHook | None = None


@dataclass
class PeriodicJob:
    """A named async handler run on a crontab.

    Attributes:
        name: Job identifier, e.g. "payloads-process".
        crontab: Five-field crontab expression.
        handler: Coroutine function run on each tick.
        time_warning_seconds: Report a tick still running after this long.
        hooks: Tick lifecycle callbacks.
        running: Whether a tick is in progress.
        last_error: Exception raised by the most recent tick, if any.
        last_duration: Duration of the most recent tick in seconds.
        last_result: Value returned by the most recent successful tick.
    """

    name: str
    crontab: str
    handler: Callable[[], Awaitable[Any]]
    time_warning_seconds: float | None = None
    hooks: JobHooks = field(default_factory=JobHooks)
    running: bool = field(default=False, init=False)
    last_error: Exception | None = field(default=None, init=False)
    last_duration: float | None = field(default=None, init=False)
    last_result: Any = field(default=None, init=False)

    async def run(self) -> bool:
        """Run one tick unless the previous tick is still in progress.

        Returns:
            True if the handler ran, False if the call overlapped.
        """
        if self.running:
            logger.warning("Overlapping tick refused: job=%s", self.name)
            self._fire(self.hooks.on_overlapping_call)
            return False

        self.running = True
        self.last_error = None
        self.last_result = None
        started = time.monotonic()
        warning_handle = self._schedule_time_warning()
        self._fire(self.hooks.on_tick_started)

        try:
            self.last_result = await self.handler()
        except Exception as e:
            self.last_error = e
            logger.exception("Tick failed: job=%s, error=%s", self.name, e)
        finally:
            if warning_handle is not None:
                warning_handle.cancel()
            self.last_duration = time.monotonic() - started
            self.running = False

        logger.debug(
            "Tick complete: job=%s, duration=%.3fs",
            self.name,
            self.last_duration,
        )
        self._fire(self.hooks.on_tick_complete)
        return True

    def _schedule_time_warning(self) -> asyncio.TimerHandle | None:
        if self.time_warning_seconds is None:
            return None
        loop = asyncio.get_running_loop()
        return loop.call_later(self.time_warning_seconds, self._time_warning)

    def _time_warning(self) -> None:
        logger.warning(
            "Tick still running: job=%s, threshold=%ss",
            self.name,
            self.time_warning_seconds,
        )
        self._fire(self.hooks.on_time_warning)

    def _fire(self, hook: JobHook | None) -> None:
        if hook is None:
            return
        try:
            hook(self)
        except Exception:
            logger.exception("Job hook raised: job=%s", self.name)


class QueueScheduler:
    """Runs PeriodicJobs on their crontabs with APScheduler.

    Example:
        scheduler = QueueScheduler(timezone="UTC")
        scheduler.add_job(PeriodicJob("payloads-process", "* * * * *", engine.process_next_batch))
        scheduler.start()
    """

    def __init__(self, timezone: str = "UTC", scheduler: AsyncIOScheduler | None = None) -> None:
        """Initialize the scheduler.

        Args:
            timezone: Timezone the crontab expressions are evaluated in.
            scheduler: APScheduler instance to use (created when omitted).
        """
        self.timezone = timezone
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone)
        self._jobs: dict[str, PeriodicJob] = {}

    def add_job(self, job: PeriodicJob) -> None:
        """Register a job. A job with the same name is replaced.

        Raises:
            ValueError: If the crontab expression is invalid.
        """
        trigger = CronTrigger.from_crontab(job.crontab, timezone=self.timezone)
        self._scheduler.add_job(
            job.run,
            trigger,
            id=job.name,
            name=job.name,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._jobs[job.name] = job
        logger.debug("Added schedule: job=%s, crontab=%s", job.name, job.crontab)

    def get_job(self, name: str) -> PeriodicJob | None:
        return self._jobs.get(name)

    @property
    def jobs(self) -> list[PeriodicJob]:
        return list(self._jobs.values())

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Start firing ticks. Must be called with an event loop running."""
        if self._scheduler.running:
            return
        self._scheduler.start()
        logger.info(
            "Scheduler started: jobs=%s, timezone=%s",
            ", ".join(sorted(self._jobs)),
            self.timezone,
        )

    def shutdown(self, wait: bool = False) -> None:
        """Stop firing ticks. A tick already in progress is not cancelled."""
        if not self._scheduler.running:
            return
        self._scheduler.shutdown(wait=wait)
        logger.info("Scheduler stopped")
