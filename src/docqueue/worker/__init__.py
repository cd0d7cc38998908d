"""docqueue worker service.

Cron-driven processing of a single queue:
- PeriodicJob: overlap-safe tick wrapper with lifecycle hooks
- QueueScheduler: APScheduler integration
- docqueue.worker.main: process entry point (docqueue-worker)

Usage:
    DOCQUEUE_QUEUE__COLLECTION_NAME=payloads \
    DOCQUEUE_ON_PROCESS=myapp.handlers:push_upstream \
    docqueue-worker
"""

from docqueue.worker.scheduler import JobHooks, PeriodicJob, QueueScheduler

__all__ = ["JobHooks", "PeriodicJob", "QueueScheduler"]
