"""Queue record model shared by the engine and every store backend.

A record is stored as a flat document. Stores hand documents to
QueueRecord.from_document() and the engine never touches store-specific
types directly.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


class RecordStatus(str, enum.Enum):
    """Lifecycle states of a queue record.

    Values:
        RECEIVED: Enqueued (or reset) and waiting for processing
        PROCESSED: on_process succeeded
        FAILED: on_process raised; will be retried after backoff
        SKIPPED: on_process asked for a deferral without penalty
        NOTIFIED: Terminal failure reported through on_failure
        NOTIFY_FAILURE: Terminal failure, and on_failure itself raised
    """

    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOTIFIED = "notified"
    NOTIFY_FAILURE = "notifyFailure"


# Statuses that may still be handed to on_process
PENDING_STATUSES = (RecordStatus.RECEIVED, RecordStatus.FAILED, RecordStatus.SKIPPED)

# Document field names
ID = "_id"
RECEIVED_DATE = "received_date"
STATUS = "status"
AVAILABLE = "available"
DATA = "data"
RETRY_COUNT = "retry_count"
FAILURE_REASON = "failure_reason"
PROCESSED_DATE = "processed_date"
IMMEDIATE_FAILURE = "immediate_failure"
NOTIFY_FAILURE_REASON = "notify_failure_reason"
RESET_DATE = "reset_date"

RECORD_FIELDS = (
    RECEIVED_DATE,
    STATUS,
    AVAILABLE,
    DATA,
    RETRY_COUNT,
    FAILURE_REASON,
    PROCESSED_DATE,
    IMMEDIATE_FAILURE,
    NOTIFY_FAILURE_REASON,
    RESET_DATE,
)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes returned by some drivers."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


@dataclass
class QueueRecord:
    """One unit of enqueued work.

    Attributes:
        id: Store-assigned identifier (ObjectId, UUID or str depending on backend).
        received_date: Enqueue (or reset) time, used for FIFO ordering.
        status: Current lifecycle state.
        available: Record is not eligible for processing before this time.
        data: Opaque producer payload.
        retry_count: Number of ordinary failures so far, None if none.
        failure_reason: Last failure message or traceback.
        processed_date: Time of the last terminal or semi-terminal transition.
        immediate_failure: True when a Fail signal caused the failure.
        notify_failure_reason: Set when on_failure itself raised.
        reset_date: Set by reset_records().
    """

    id: Any
    received_date: datetime
    status: RecordStatus
    data: Any
    available: datetime | None = None
    retry_count: int | None = None
    failure_reason: str | None = None
    processed_date: datetime | None = None
    immediate_failure: bool | None = None
    notify_failure_reason: str | None = None
    reset_date: datetime | None = None

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> QueueRecord:
        """Build a record from a stored document. Missing fields become None."""
        return cls(
            id=document[ID],
            received_date=as_utc(document[RECEIVED_DATE]),
            status=RecordStatus(document[STATUS]),
            data=document.get(DATA),
            available=as_utc(document.get(AVAILABLE)),
            retry_count=document.get(RETRY_COUNT),
            failure_reason=document.get(FAILURE_REASON),
            processed_date=as_utc(document.get(PROCESSED_DATE)),
            immediate_failure=document.get(IMMEDIATE_FAILURE),
            notify_failure_reason=document.get(NOTIFY_FAILURE_REASON),
            reset_date=as_utc(document.get(RESET_DATE)),
        )

    def to_document(self) -> dict[str, Any]:
        """Serialize to a document, omitting unset optional fields."""
        document: dict[str, Any] = {
            ID: self.id,
            RECEIVED_DATE: self.received_date,
            STATUS: self.status.value,
            DATA: self.data,
        }
        for name in RECORD_FIELDS:
            if name in document:
                continue
            value = getattr(self, name)
            if value is not None:
                document[name] = value
        return document

    @property
    def is_pending(self) -> bool:
        """Whether the record may still be handed to on_process."""
        return self.status in PENDING_STATUSES
