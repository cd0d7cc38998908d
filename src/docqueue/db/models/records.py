"""Queue record table for the PostgreSQL record store.

All queues share one table; the collection column plays the role of a
MongoDB collection name. Columns mirror the document fields one to one,
with the document ``_id`` stored as record_id.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from docqueue.db.models.base import (
    Base,
    DocumentJSON,
    OptionalTimestampTZ,
    TimestampTZ,
    UUIDPrimaryKey,
)


class QueueRecordRow(Base):
    """One queued unit of work."""

    __tablename__ = "queue_records"

    record_id: Mapped[UUIDPrimaryKey]

    # Queue the record belongs to
    collection: Mapped[str] = mapped_column(String(100), nullable=False)

    received_date: Mapped[TimestampTZ]
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    available: Mapped[OptionalTimestampTZ]

    # Producer payload, never inspected
    data: Mapped[Any] = mapped_column(DocumentJSON, nullable=True)

    # Failure tracking
    retry_count: Mapped[int | None] = mapped_column(nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    immediate_failure: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    notify_failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    processed_date: Mapped[OptionalTimestampTZ]
    reset_date: Mapped[OptionalTimestampTZ]

    __table_args__ = (
        # Batch selection: pending records in arrival order
        Index(
            "ix_queue_records_pending",
            "collection",
            "status",
            "available",
            "received_date",
        ),
        # Cleanup of old processed records
        Index(
            "ix_queue_records_processed",
            "collection",
            "status",
            "processed_date",
        ),
    )
