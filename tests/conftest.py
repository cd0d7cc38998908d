"""Pytest configuration and shared fixtures.

Queue behaviour is tested against the in-memory store with a controllable
clock, so retry windows and record ages can be crossed without sleeping.
The SQL store tests use SQLite via aiosqlite; MongoDB is mocked.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from docqueue.core.config import QueueOptions
from docqueue.services.queue_engine import QueueEngine
from docqueue.stores.memory import MemoryRecordStore
from tests.factories import FakeClock, Recorder


@pytest.fixture
def clock() -> FakeClock:
    """A clock frozen at 2024-01-01 12:00 UTC."""
    return FakeClock()


@pytest.fixture
def store() -> MemoryRecordStore:
    """An empty in-memory record store."""
    return MemoryRecordStore("test_queue")


@pytest.fixture
def make_engine(store: MemoryRecordStore, clock: FakeClock) -> Callable[..., QueueEngine]:
    """Factory building an engine on the shared store and clock.

    Keyword arguments other than on_process/on_failure become QueueOptions.
    """

    def factory(on_process=None, on_failure=None, **options: Any) -> QueueEngine:
        options.setdefault("collection_name", "test_queue")
        return QueueEngine(
            store,
            QueueOptions(**options),
            on_process=on_process or Recorder(),
            on_failure=on_failure,
            clock=clock,
        )

    return factory
