"""docqueue - durable retrying work queue over a document store.

Producers enqueue payloads; a cron-driven consumer hands them, oldest first,
to an on_process callback, retrying failures with exponential backoff and
reporting records that fail for good through on_failure.
"""

from docqueue.core.config import QueueOptions
from docqueue.services.flow_control import fail, skip
from docqueue.services.queue_engine import BatchInProgressError, QueueEngine, QueueError
from docqueue.services.records import QueueRecord, RecordStatus
from docqueue.services.scheduled_queue import ScheduledQueue, create_queue
from docqueue.stores import MemoryRecordStore, MongoRecordStore, SqlRecordStore

__version__ = "0.1.0"
__all__ = [
    "BatchInProgressError",
    "MemoryRecordStore",
    "MongoRecordStore",
    "QueueEngine",
    "QueueError",
    "QueueOptions",
    "QueueRecord",
    "RecordStatus",
    "ScheduledQueue",
    "SqlRecordStore",
    "__version__",
    "create_queue",
    "fail",
    "skip",
]
