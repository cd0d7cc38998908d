"""Tests for the SQLAlchemy record store.

Runs against an in-memory SQLite database through aiosqlite; the schema is
created from the ORM metadata. PostgreSQL-specific column types fall back to
their generic variants.
"""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from docqueue.core.config import QueueOptions
from docqueue.db import to_async_url
from docqueue.db.models import Base
from docqueue.services.queue_engine import QueueEngine
from docqueue.stores.base import ASCENDING, UnsupportedQueryError
from docqueue.stores.sql import SqlRecordStore, compile_update
from tests.factories import T0, Recorder


@pytest.fixture
async def session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    """Store for the "orders" collection."""
    return SqlRecordStore(session_factory, "orders")


def make_document(**fields):
    document = {"received_date": T0, "status": "received", "available": T0, "data": {"n": 1}}
    document.update(fields)
    return document


class TestToAsyncUrl:
    """Tests for to_async_url."""

    def test_plain_postgresql_url(self):
        assert to_async_url("postgresql://u:p@db/q") == "postgresql+psycopg://u:p@db/q"

    def test_postgres_alias(self):
        assert to_async_url("postgres://u:p@db/q") == "postgresql+psycopg://u:p@db/q"

    def test_explicit_driver_kept(self):
        assert to_async_url("postgresql+psycopg://db/q") == "postgresql+psycopg://db/q"


class TestCompileUpdate:
    """Tests for update translation."""

    def test_unset_becomes_null(self):
        assert compile_update({"$unset": {"failure_reason": ""}}) == {"failure_reason": None}

    def test_unknown_field(self):
        with pytest.raises(UnsupportedQueryError):
            compile_update({"$set": {"priority": 1}})

    def test_unknown_operator(self):
        with pytest.raises(UnsupportedQueryError):
            compile_update({"$push": {"data": 1}})


class TestSqlRecordStore:
    """Tests for SqlRecordStore operations."""

    @pytest.mark.asyncio
    async def test_insert_and_find(self, sql_store):
        """Inserted documents come back with a UUID id and UTC datetimes."""
        stored = await sql_store.insert_one(make_document())

        assert isinstance(stored["_id"], uuid.UUID)
        (found,) = await sql_store.find({"_id": stored["_id"]})
        assert found["status"] == "received"
        assert found["received_date"] == T0
        assert found["received_date"].tzinfo is not None
        assert found["data"] == {"n": 1}
        assert "retry_count" not in found

    @pytest.mark.asyncio
    async def test_collections_are_isolated(self, session_factory, sql_store):
        """Rows of another collection are invisible."""
        other = SqlRecordStore(session_factory, "invoices")
        await other.insert_one(make_document())

        assert await sql_store.find({}) == []
        assert await sql_store.delete_many({}) == 0
        assert len(await other.find({})) == 1

    @pytest.mark.asyncio
    async def test_filter_operators(self, sql_store):
        """$in, $lte and $or translate to SQL."""
        await sql_store.insert_one(make_document(status="failed", available=T0 + timedelta(hours=1)))
        await sql_store.insert_one(make_document(status="received"))
        await sql_store.insert_one(make_document(status="processed"))

        eligible = {"status": {"$in": ["received", "failed"]}, "available": {"$lte": T0}}
        assert [d["status"] for d in await sql_store.find(eligible)] == ["received"]

        strict = {"$or": [{"status": "failed"}, eligible]}
        assert sorted(d["status"] for d in await sql_store.find(strict)) == ["failed", "received"]

        assert await sql_store.find({"status": {"$in": []}}) == []

    @pytest.mark.asyncio
    async def test_sort_and_limit(self, sql_store):
        for minutes in (3, 1, 2):
            await sql_store.insert_one(make_document(received_date=T0 + timedelta(minutes=minutes)))

        found = await sql_store.find({}, sort=[("received_date", ASCENDING)], limit=2)

        assert [d["received_date"] for d in found] == [
            T0 + timedelta(minutes=1),
            T0 + timedelta(minutes=2),
        ]

    @pytest.mark.asyncio
    async def test_update_one(self, sql_store):
        """$set, $unset and $inc apply to a single row."""
        stored = await sql_store.insert_one(make_document(failure_reason="old"))
        await sql_store.insert_one(make_document())

        count = await sql_store.update_one(
            {"_id": stored["_id"]},
            {
                "$set": {"status": "failed"},
                "$unset": {"failure_reason": ""},
                "$inc": {"retry_count": 1},
            },
        )

        assert count == 1
        (found,) = await sql_store.find({"_id": stored["_id"]})
        assert found["status"] == "failed"
        assert found["retry_count"] == 1
        assert "failure_reason" not in found
        assert len(await sql_store.find({"status": "received"})) == 1

    @pytest.mark.asyncio
    async def test_update_one_matches_single_row(self, sql_store):
        """Only the first of several matches is updated."""
        await sql_store.insert_one(make_document())
        await sql_store.insert_one(make_document())

        assert await sql_store.update_one({"status": "received"}, {"$set": {"status": "skipped"}}) == 1
        assert len(await sql_store.find({"status": "skipped"})) == 1

    @pytest.mark.asyncio
    async def test_update_many_and_delete_many(self, sql_store):
        for _ in range(3):
            await sql_store.insert_one(make_document(status="processed", processed_date=T0))

        assert await sql_store.update_many({"status": "processed"}, {"$set": {"status": "received"}}) == 3
        assert await sql_store.delete_many({"status": "received"}) == 3
        assert await sql_store.find({}) == []

    def test_coerce_id(self, sql_store):
        record_id = uuid.uuid4()
        assert sql_store.coerce_id(record_id) is record_id
        assert sql_store.coerce_id(str(record_id)) == record_id
        assert sql_store.coerce_id("not-a-uuid") is None


class TestEngineOnSql:
    """The queue engine end to end on the SQL store."""

    @pytest.mark.asyncio
    async def test_retry_notify_and_reset(self, sql_store, clock):
        """A record fails, is retried, notified, then reset and processed."""
        on_process = Recorder({"a": RuntimeError("boom")})
        notified = Recorder()
        engine = QueueEngine(
            sql_store,
            QueueOptions(collection_name="orders", retry_limit=1, backoff_ms=100),
            on_process=on_process,
            on_failure=notified,
            clock=clock,
        )
        record = await engine.enqueue({"id": "a"})

        await engine.process_next_batch()
        (document,) = await sql_store.find({"_id": record.id})
        assert document["status"] == "failed"
        assert document["retry_count"] == 1
        assert document["available"] == clock.now

        await engine.process_next_batch()
        assert notified.ids == ["a"]
        (document,) = await sql_store.find({"_id": record.id})
        assert document["status"] == "notified"

        on_process.results.clear()
        assert await engine.reset_records([str(record.id), "bogus"]) == 1
        await engine.process_next_batch()

        (document,) = await sql_store.find({"_id": record.id})
        assert document["status"] == "processed"
        assert "retry_count" not in document
        assert on_process.ids == ["a", "a"]

    @pytest.mark.asyncio
    async def test_cleanup(self, sql_store, clock):
        """Processed rows past max_record_age_ms are deleted."""
        engine = QueueEngine(
            sql_store,
            QueueOptions(collection_name="orders", max_record_age_ms=1000),
            on_process=Recorder(),
            clock=clock,
        )
        await engine.enqueue({"id": "a"})
        await engine.process_next_batch()
        clock.advance(1000)
        await engine.enqueue({"id": "b"})

        assert await engine.cleanup() == 1
        assert [d["data"] for d in await sql_store.find({})] == [{"id": "b"}]
