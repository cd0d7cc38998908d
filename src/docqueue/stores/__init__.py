"""docqueue record stores.

Persistence backends for queue records:
- RecordStore: abstract interface and MongoDB-style query helpers
- MongoRecordStore: one MongoDB collection per queue (motor)
- SqlRecordStore: shared queue_records table (SQLAlchemy async)
- MemoryRecordStore: in-process, for development and tests
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from docqueue.stores.base import RecordStore, UnsupportedQueryError
from docqueue.stores.memory import MemoryRecordStore
from docqueue.stores.mongodb import MongoRecordStore
from docqueue.stores.sql import SqlRecordStore

if TYPE_CHECKING:
    from docqueue.core.config import Settings

logger = logging.getLogger(__name__)


def create_store(settings: Settings) -> RecordStore:
    """Build the record store selected by settings.store_backend.

    Args:
        settings: Loaded application settings.

    Returns:
        A store bound to settings.queue.collection_name. MongoDB indexes are
        not created here; call MongoRecordStore.ensure_indexes() once connected.
    """
    from docqueue.core.config import StoreBackend

    collection_name = settings.queue.collection_name

    if settings.store_backend == StoreBackend.MONGODB:
        return MongoRecordStore.from_url(
            settings.mongodb.url,
            database=settings.mongodb.database,
            collection_name=collection_name,
            server_selection_timeout_ms=settings.mongodb.server_selection_timeout_ms,
        )

    if settings.store_backend == StoreBackend.POSTGRESQL:
        from docqueue.db import get_session_factory

        return SqlRecordStore(get_session_factory(settings.database), collection_name)

    logger.warning("Using in-memory record store, records will not survive a restart")
    return MemoryRecordStore(collection_name)


__all__ = [
    "MemoryRecordStore",
    "MongoRecordStore",
    "RecordStore",
    "SqlRecordStore",
    "UnsupportedQueryError",
    "create_store",
]
