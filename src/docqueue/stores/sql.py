"""PostgreSQL record store using SQLAlchemy's async ORM.

Filter and update documents are translated into SQL expressions against
the queue_records table. Every statement runs in its own transaction, and
single-record updates are a single UPDATE statement, so they are atomic.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, false, func, or_, select, true, update

from docqueue.db.models.records import QueueRecordRow
from docqueue.services.records import ID, RECORD_FIELDS, as_utc
from docqueue.stores.base import (
    DESCENDING,
    SUPPORTED_UPDATE_OPERATORS,
    Document,
    Filter,
    RecordStore,
    SortSpec,
    UnsupportedQueryError,
    Update,
)

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

# Document field -> mapped column
COLUMNS = {name: getattr(QueueRecordRow, name) for name in RECORD_FIELDS}
COLUMNS[ID] = QueueRecordRow.record_id

DATETIME_FIELDS = frozenset(
    {"received_date", "available", "processed_date", "reset_date"}
)


def _column(field: str):
    try:
        return COLUMNS[field]
    except KeyError:
        raise UnsupportedQueryError(f"Unknown record field: {field}") from None


def compile_filter(query: Filter) -> ColumnElement[bool]:
    """Translate a filter document into a SQL boolean expression."""
    clauses = []
    for key, condition in query.items():
        if key == "$or":
            clauses.append(or_(*(compile_filter(sub) for sub in condition)))
            continue
        if key.startswith("$"):
            raise UnsupportedQueryError(f"Unsupported filter operator: {key}")

        column = _column(key)
        if not isinstance(condition, dict):
            clauses.append(column == condition)
            continue

        for operator, operand in condition.items():
            if operator == "$in":
                values = list(operand)
                clauses.append(column.in_(values) if values else false())
            elif operator == "$lte":
                clauses.append(column <= operand)
            else:
                raise UnsupportedQueryError(f"Unsupported field operator: {operator}")

    if not clauses:
        return true()
    return and_(*clauses)


def compile_update(update_doc: Update) -> dict[str, Any]:
    """Translate an update document into UPDATE ... SET values."""
    for operator in update_doc:
        if operator not in SUPPORTED_UPDATE_OPERATORS:
            raise UnsupportedQueryError(f"Unsupported update operator: {operator}")

    values: dict[str, Any] = {}
    for field, value in update_doc.get("$set", {}).items():
        values[_column(field).key] = value
    for field in update_doc.get("$unset", {}):
        values[_column(field).key] = None
    for field, amount in update_doc.get("$inc", {}).items():
        column = _column(field)
        values[column.key] = func.coalesce(column, 0) + amount
    return values


def row_to_document(row: QueueRecordRow) -> Document:
    """Convert a row to a document, omitting NULL columns like a MongoDB $unset."""
    document: Document = {ID: row.record_id}
    for name in RECORD_FIELDS:
        value = getattr(row, name)
        if value is None and name != "data":
            continue
        if name in DATETIME_FIELDS:
            value = as_utc(value)
        document[name] = value
    return document


class SqlRecordStore(RecordStore):
    """RecordStore backed by the shared queue_records table.

    Attributes:
        collection_name: Value of the collection column owned by this store.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        collection_name: str,
    ) -> None:
        """Initialize the store.

        Args:
            session_factory: Factory producing async sessions.
            collection_name: Queue whose rows this store reads and writes.
        """
        self._session_factory = session_factory
        self.collection_name = collection_name

    def _scope(self, query: Filter) -> ColumnElement[bool]:
        return and_(
            QueueRecordRow.collection == self.collection_name,
            compile_filter(query),
        )

    async def insert_one(self, document: Document) -> Document:
        fields = {name: document.get(name) for name in RECORD_FIELDS}
        record_id = uuid.uuid4()
        row = QueueRecordRow(
            record_id=record_id,
            collection=self.collection_name,
            **fields,
        )
        async with self._session_factory.begin() as session:
            session.add(row)

        stored = {key: value for key, value in document.items() if value is not None}
        stored[ID] = record_id
        return stored

    async def find(
        self,
        query: Filter,
        sort: SortSpec = (),
        limit: int = 0,
    ) -> list[Document]:
        stmt = select(QueueRecordRow).where(self._scope(query))
        for field, direction in sort:
            column = _column(field)
            stmt = stmt.order_by(column.desc() if direction == DESCENDING else column.asc())
        if limit:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [row_to_document(row) for row in result.scalars().all()]

    async def update_one(self, query: Filter, update_doc: Update) -> int:
        first_match = (
            select(QueueRecordRow.record_id)
            .where(self._scope(query))
            .limit(1)
            .scalar_subquery()
        )
        stmt = (
            update(QueueRecordRow)
            .where(QueueRecordRow.record_id == first_match)
            .values(**compile_update(update_doc))
            .execution_options(synchronize_session=False)
        )
        return await self._execute(stmt)

    async def update_many(self, query: Filter, update_doc: Update) -> int:
        stmt = (
            update(QueueRecordRow)
            .where(self._scope(query))
            .values(**compile_update(update_doc))
            .execution_options(synchronize_session=False)
        )
        return await self._execute(stmt)

    async def delete_many(self, query: Filter) -> int:
        stmt = (
            delete(QueueRecordRow)
            .where(self._scope(query))
            .execution_options(synchronize_session=False)
        )
        count = await self._execute(stmt)
        if count:
            logger.debug(
                "Deleted %d rows: collection=%s", count, self.collection_name
            )
        return count

    async def _execute(self, stmt) -> int:
        async with self._session_factory.begin() as session:
            result = await session.execute(stmt)
            return result.rowcount

    def coerce_id(self, value: Any) -> uuid.UUID | None:
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except (ValueError, TypeError, AttributeError):
            return None
