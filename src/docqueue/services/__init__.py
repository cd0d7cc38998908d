"""docqueue service layer.

- RecordStatus / QueueRecord: the record model shared by all stores
- skip / fail: flow-control signals for on_process callbacks
- QueueEngine: batch selection and the per-record state machine

ScheduledQueue and create_queue live in docqueue.services.scheduled_queue.
"""

from docqueue.services.flow_control import FailRecord, FlowControl, SkipRecord, fail, skip
from docqueue.services.queue_engine import (
    BatchInProgressError,
    QueueEngine,
    QueueError,
    compute_backoff_ms,
)
from docqueue.services.records import PENDING_STATUSES, QueueRecord, RecordStatus

__all__ = [
    "PENDING_STATUSES",
    "BatchInProgressError",
    "FailRecord",
    "FlowControl",
    "QueueEngine",
    "QueueError",
    "QueueRecord",
    "RecordStatus",
    "SkipRecord",
    "compute_backoff_ms",
    "fail",
    "skip",
]
