"""Test doubles and data factories for docqueue.

This module provides a controllable clock, a recording callback and a
record builder, so tests do not duplicate these across files.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from docqueue.services.records import QueueRecord, RecordStatus

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, ms: float = 0, **kwargs: float) -> datetime:
        """Move forward by ms milliseconds plus any timedelta keyword arguments."""
        self.now = self.now + timedelta(milliseconds=ms, **kwargs)
        return self.now


class Recorder:
    """Callback double recording every record it is called with.

    Behaviour per call comes from `results`, keyed by the payload's "id":
    an exception instance is raised, anything else is returned.
    """

    def __init__(self, results: dict[Any, Any] | None = None) -> None:
        self.results = results if results is not None else {}
        self.calls: list[QueueRecord] = []

    async def __call__(self, record: QueueRecord) -> Any:
        self.calls.append(record)
        result = self.results.get(record.data.get("id"))
        if isinstance(result, BaseException):
            raise result
        return result

    @property
    def ids(self) -> list[Any]:
        return [record.data.get("id") for record in self.calls]


def create_record(
    record_id: Any = "r1",
    status: RecordStatus = RecordStatus.RECEIVED,
    received_date: datetime = T0,
    available: datetime | None = T0,
    **fields: Any,
) -> QueueRecord:
    """Create a QueueRecord without going through a store."""
    return QueueRecord(
        id=record_id,
        received_date=received_date,
        status=status,
        data=fields.pop("data", {"id": record_id}),
        available=available,
        **fields,
    )
