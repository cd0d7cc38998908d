"""Queue engine bundled with its cron jobs.

create_queue() is the usual entry point for applications: it builds a
QueueEngine and the periodic jobs that drive it, ready to be started inside
a running event loop.

Usage:
    queue = create_queue(
        MongoRecordStore.from_url(url, "docqueue", "payloads"),
        QueueOptions(collection_name="payloads", max_record_age_ms=86_400_000),
        on_process=push_upstream,
        process_cron="*/1 * * * *",
        cleanup_cron="0 3 * * *",
    )
    queue.start()
    await queue.enqueue({"order": 42})
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from docqueue.services.queue_engine import Clock, QueueEngine, RecordCallback, utcnow
from docqueue.worker.scheduler import JobHooks, PeriodicJob, QueueScheduler

if TYPE_CHECKING:
    from docqueue.core.config import QueueOptions
    from docqueue.services.records import QueueRecord
    from docqueue.stores.base import RecordStore

logger = logging.getLogger(__name__)


class ScheduledQueue:
    """A QueueEngine plus the scheduler running its process and cleanup jobs."""

    def __init__(
        self,
        engine: QueueEngine,
        scheduler: QueueScheduler,
        process_job: PeriodicJob,
        cleanup_job: PeriodicJob | None = None,
    ) -> None:
        self.engine = engine
        self.scheduler = scheduler
        self.process_job = process_job
        self.cleanup_job = cleanup_job

    async def enqueue(self, payload: Any) -> QueueRecord:
        return await self.engine.enqueue(payload)

    async def process_next_batch(self) -> bool:
        """Run the process job now, outside its schedule.

        Returns:
            False if a scheduled tick was already running and this call was refused.
        """
        return await self.process_job.run()

    async def cleanup(self) -> int | None:
        """Delete aged processed records.

        Goes through the cleanup job when one is scheduled, so a manual call
        cannot overlap a scheduled one.

        Returns:
            Number of records deleted, or None if the cleanup job was busy
            or its tick failed.
        """
        if self.cleanup_job is None:
            return await self.engine.cleanup()

        if not await self.cleanup_job.run() or self.cleanup_job.last_error is not None:
            return None
        return self.cleanup_job.last_result

    async def reset_records(self, record_ids: Iterable[Any]) -> int:
        return await self.engine.reset_records(record_ids)

    def start(self) -> None:
        """Start the cron jobs. Requires a running event loop."""
        self.scheduler.start()

    def shutdown(self, wait: bool = False) -> None:
        self.scheduler.shutdown(wait=wait)

    @property
    def running(self) -> bool:
        return self.scheduler.running


def create_queue(
    store: RecordStore,
    options: QueueOptions,
    on_process: RecordCallback,
    on_failure: RecordCallback | None = None,
    *,
    process_cron: str = "* * * * *",
    cleanup_cron: str | None = None,
    time_warning_seconds: float | None = None,
    timezone: str = "UTC",
    hooks: JobHooks | None = None,
    clock: Clock = utcnow,
) -> ScheduledQueue:
    """Build a queue engine and its scheduled jobs.

    Args:
        store: Record store for options.collection_name.
        options: Queue options.
        on_process: Record processing callback.
        on_failure: Terminal failure callback (optional).
        process_cron: Crontab for process_next_batch ticks.
        cleanup_cron: Crontab for cleanup ticks; no cleanup job when None.
        time_warning_seconds: Report ticks running longer than this.
        timezone: Timezone the crontabs are evaluated in.
        hooks: Tick lifecycle callbacks shared by both jobs.
        clock: Source of the current time.

    Returns:
        A ScheduledQueue, not yet started.

    Raises:
        ValueError: If a crontab expression is invalid.
    """
    engine = QueueEngine(store, options, on_process, on_failure, clock=clock)
    scheduler = QueueScheduler(timezone=timezone)
    hooks = hooks or JobHooks()

    process_job = PeriodicJob(
        name=f"{options.collection_name}-process",
        crontab=process_cron,
        handler=engine.process_next_batch,
        time_warning_seconds=time_warning_seconds,
        hooks=hooks,
    )
    scheduler.add_job(process_job)

    cleanup_job = None
    if cleanup_cron is not None:
        if options.max_record_age_ms is None:
            logger.warning(
                "Cleanup scheduled without max_record_age_ms, ticks will do nothing: "
                "collection=%s",
                options.collection_name,
            )
        cleanup_job = PeriodicJob(
            name=f"{options.collection_name}-cleanup",
            crontab=cleanup_cron,
            handler=engine.cleanup,
            time_warning_seconds=time_warning_seconds,
            hooks=hooks,
        )
        scheduler.add_job(cleanup_job)

    logger.info(
        "Queue created: collection=%s, process_cron=%s, cleanup_cron=%s",
        options.collection_name,
        process_cron,
        cleanup_cron,
    )
    return ScheduledQueue(engine, scheduler, process_job, cleanup_job)
