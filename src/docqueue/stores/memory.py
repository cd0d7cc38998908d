"""In-process record store.

Keeps documents in a dict guarded by an asyncio lock. Nothing survives a
restart, so this backend is meant for development and tests.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from typing import Any

from docqueue.stores.base import (
    Document,
    Filter,
    RecordStore,
    SortSpec,
    Update,
    apply_update,
    matches,
    sort_documents,
)

logger = logging.getLogger(__name__)


class MemoryRecordStore(RecordStore):
    """Dictionary-backed RecordStore with string UUID identifiers."""

    def __init__(self, collection_name: str = "default") -> None:
        self.collection_name = collection_name
        self._documents: dict[str, Document] = {}
        self._lock = asyncio.Lock()

    async def insert_one(self, document: Document) -> Document:
        stored = copy.deepcopy(document)
        stored["_id"] = uuid.uuid4().hex
        async with self._lock:
            self._documents[stored["_id"]] = stored
        return copy.deepcopy(stored)

    async def find(
        self,
        query: Filter,
        sort: SortSpec = (),
        limit: int = 0,
    ) -> list[Document]:
        async with self._lock:
            found = [doc for doc in self._documents.values() if matches(doc, query)]
        found = sort_documents(found, sort)
        if limit:
            found = found[:limit]
        return [copy.deepcopy(doc) for doc in found]

    async def update_one(self, query: Filter, update: Update) -> int:
        async with self._lock:
            for document in self._documents.values():
                if matches(document, query):
                    apply_update(document, update)
                    return 1
        return 0

    async def update_many(self, query: Filter, update: Update) -> int:
        async with self._lock:
            matched = [doc for doc in self._documents.values() if matches(doc, query)]
            for document in matched:
                apply_update(document, update)
        return len(matched)

    async def delete_many(self, query: Filter) -> int:
        async with self._lock:
            doomed = [key for key, doc in self._documents.items() if matches(doc, query)]
            for key in doomed:
                del self._documents[key]
        if doomed:
            logger.debug(
                "Deleted %d documents from memory collection=%s",
                len(doomed),
                self.collection_name,
            )
        return len(doomed)

    def coerce_id(self, value: Any) -> str | None:
        if value is None:
            return None
        return str(value)

    def __len__(self) -> int:
        return len(self._documents)
