"""Document-store backed retry queue engine.

Producers enqueue opaque payloads. A periodic tick calls process_next_batch(),
which pulls a bounded batch of eligible records and runs on_process on each
of them, strictly in sequence, moving every record through its status state
machine:

    received -> processed
             -> skipped -> (retried later, no retry cost)
             -> failed  -> (retried after backoff) -> notified | notifyFailure
             -> notified | notifyFailure          (Fail signal)

Key features:
- Strict mode (continue_processing_on_error=False): nothing is processed ahead
  of a failed record, and a batch stops at the first ordinary failure
- Exponential backoff: delay = retry_count ** backoff_coefficient * backoff_ms
- Skip / Fail signals returned or raised from on_process
- on_failure errors recorded as notifyFailure and never propagated
- Cleanup of aged processed records and bulk reset by id

Only one process_next_batch (and one cleanup) may run at a time per engine.
This is not a distributed lock: running several workers against the same
collection is not supported.

Usage:
    from docqueue import QueueEngine, QueueOptions, MemoryRecordStore

    engine = QueueEngine(
        MemoryRecordStore(),
        QueueOptions(collection_name="payloads", retry_limit=3, backoff_ms=500),
        on_process=push_upstream,
        on_failure=alert_operator,
    )
    await engine.enqueue({"order": 42})
    await engine.process_next_batch()
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
from collections.abc import AsyncIterator, Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from docqueue.services.flow_control import (
    Errored,
    Failed,
    Outcome,
    Skipped,
    Success,
    classify,
    describe_error,
    run_callback,
)
from docqueue.services.records import (
    AVAILABLE,
    DATA,
    FAILURE_REASON,
    ID,
    IMMEDIATE_FAILURE,
    NOTIFY_FAILURE_REASON,
    PENDING_STATUSES,
    PROCESSED_DATE,
    RECEIVED_DATE,
    RESET_DATE,
    RETRY_COUNT,
    STATUS,
    QueueRecord,
    RecordStatus,
)
from docqueue.stores.base import ASCENDING, Filter, RecordStore, Update, coerce_ids

if TYPE_CHECKING:
    from docqueue.core.config import QueueOptions

logger = logging.getLogger(__name__)

RecordCallback = Callable[[QueueRecord], Any]
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)


class QueueError(Exception):
    """Base exception for queue engine operations."""

    pass


class BatchInProgressError(QueueError):
    """Raised when an entry point is called while a previous call is still running."""

    pass


def compute_backoff_ms(
    retry_count: int,
    retry_limit: int,
    backoff_ms: float,
    backoff_coefficient: float,
) -> float:
    """Delay before a failed record becomes eligible again.

    Args:
        retry_count: The record's retry count including the failure just seen.
        retry_limit: Configured retry limit (negative for unlimited).
        backoff_ms: Base delay in milliseconds.
        backoff_coefficient: Exponent applied to the retry count.

    Returns:
        Delay in milliseconds. 0 when the record just reached its retry limit,
        so the notify path runs on the next tick.
    """
    if retry_count == retry_limit:
        return 0
    return retry_count**backoff_coefficient * backoff_ms


def prioritize_records(records: list[QueueRecord], now: datetime) -> list[QueueRecord]:
    """Apply strict-mode ordering to a batch fetched with failed records included.

    If the oldest failed record is still backing off, nothing may run ahead of
    it and the batch is empty. Otherwise only records that are due are kept.
    """
    first_failed = next(
        (record for record in records if record.status == RecordStatus.FAILED),
        None,
    )
    if first_failed is not None and _is_after(first_failed.available, now):
        return []
    return [record for record in records if not _is_after(record.available, now)]


def _is_after(moment: datetime | None, now: datetime) -> bool:
    return moment is not None and moment > now


async def _noop_on_failure(record: QueueRecord) -> None:
    return None


class QueueEngine:
    """Retry queue over a RecordStore.

    Attributes:
        store: Persistence for this queue's records.
        options: Validated queue options.
    """

    def __init__(
        self,
        store: RecordStore,
        options: QueueOptions,
        on_process: RecordCallback,
        on_failure: RecordCallback | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Record store bound to options.collection_name.
            options: Queue options.
            on_process: Called with each record; sync or async.
            on_failure: Called once a record fails terminally; sync or async.
            clock: Source of the current time (UTC).
        """
        self.store = store
        self.options = options
        self._on_process = on_process
        self._on_failure = on_failure or _noop_on_failure
        self._clock = clock
        self._in_flight: set[str] = set()

    @property
    def collection_name(self) -> str:
        return self.options.collection_name

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def enqueue(self, payload: Any) -> QueueRecord:
        """Add a payload to the queue.

        The record is available immediately. Store errors propagate unchanged.

        Args:
            payload: Any value the store can persist.

        Returns:
            The stored record, including its assigned id.
        """
        now = self._now()
        stored = await self.store.insert_one(
            {
                RECEIVED_DATE: now,
                STATUS: RecordStatus.RECEIVED.value,
                AVAILABLE: now,
                DATA: payload,
            }
        )
        record = QueueRecord.from_document(stored)
        logger.debug(
            "Record enqueued: collection=%s, record_id=%s",
            self.collection_name,
            record.id,
        )
        return record

    async def process_next_batch(self) -> None:
        """Process the next batch of eligible records, one at a time.

        Individual record failures never make this raise; only store errors
        (and errors persisting a notify transition) propagate.

        Raises:
            BatchInProgressError: If a previous call has not finished.
        """
        async with self._single_flight("process_next_batch"):
            batch = await self.get_next_batch()
            if not batch:
                logger.debug("No records to process: collection=%s", self.collection_name)
                return

            logger.info(
                "Processing batch: collection=%s, size=%d",
                self.collection_name,
                len(batch),
            )

            handled = 0
            for record in batch:
                outcome = await self._process_record(record)
                handled += 1
                if isinstance(outcome, Errored) and not self.options.continue_processing_on_error:
                    logger.info(
                        "Halting batch after failed record: collection=%s, record_id=%s, "
                        "remaining=%d",
                        self.collection_name,
                        record.id,
                        len(batch) - handled,
                    )
                    break

    async def get_next_batch(self) -> list[QueueRecord]:
        """Select up to batch_size records for this tick, oldest first."""
        now = self._now()
        eligible: Filter = {
            STATUS: {"$in": [status.value for status in PENDING_STATUSES]},
            AVAILABLE: {"$lte": now},
        }

        if self.options.continue_processing_on_error:
            query = eligible
        else:
            # Failed records come back regardless of availability so a record
            # still backing off can hold back everything behind it.
            query = {"$or": [{STATUS: RecordStatus.FAILED.value}, eligible]}

        documents = await self.store.find(
            query,
            sort=[(RECEIVED_DATE, ASCENDING)],
            limit=self.options.batch_size,
        )
        records = [QueueRecord.from_document(document) for document in documents]

        if self.options.continue_processing_on_error:
            return records
        return prioritize_records(records, now)

    async def cleanup(self) -> int:
        """Delete processed records older than max_record_age_ms.

        Returns:
            Number of records deleted.

        Raises:
            BatchInProgressError: If a previous cleanup has not finished.
        """
        async with self._single_flight("cleanup"):
            if self.options.max_record_age_ms is None:
                logger.warning(
                    "Cleanup skipped, max_record_age_ms is not set: collection=%s",
                    self.collection_name,
                )
                return 0

            cutoff = self._now() - timedelta(milliseconds=self.options.max_record_age_ms)
            deleted = await self.store.delete_many(
                {
                    STATUS: RecordStatus.PROCESSED.value,
                    PROCESSED_DATE: {"$lte": cutoff},
                }
            )
            logger.info(
                "Cleanup complete: collection=%s, deleted=%d, cutoff=%s",
                self.collection_name,
                deleted,
                cutoff.isoformat(),
            )
            return deleted

    async def reset_records(self, record_ids: Iterable[Any]) -> int:
        """Send records back to received so they are processed again.

        Ids may be native store ids or their string form. Unknown and
        malformed ids are ignored.

        Args:
            record_ids: Identifiers of the records to reset.

        Returns:
            Number of records matched.
        """
        ids = coerce_ids(self.store, record_ids)
        if not ids:
            return 0

        now = self._now()
        count = await self.store.update_many(
            {ID: {"$in": ids}},
            {
                "$set": {
                    STATUS: RecordStatus.RECEIVED.value,
                    RECEIVED_DATE: now,
                    AVAILABLE: now,
                    RESET_DATE: now,
                },
                "$unset": {
                    PROCESSED_DATE: "",
                    FAILURE_REASON: "",
                    RETRY_COUNT: "",
                    IMMEDIATE_FAILURE: "",
                    NOTIFY_FAILURE_REASON: "",
                },
            },
        )
        logger.info(
            "Records reset: collection=%s, requested=%d, matched=%d",
            self.collection_name,
            len(ids),
            count,
        )
        return count

    # -------------------------------------------------------------------------
    # Per-record state machine
    # -------------------------------------------------------------------------

    async def _process_record(self, record: QueueRecord) -> Outcome | None:
        """Run one record through the state machine.

        Returns:
            The on_process outcome, or None when the record went straight to
            the notify path because its retries were exhausted.
        """
        if self._retries_exhausted(record):
            logger.info(
                "Retry limit reached: collection=%s, record_id=%s, retry_count=%s",
                self.collection_name,
                record.id,
                record.retry_count,
            )
            await self._notify(record)
            return None

        outcome = await classify(self._on_process, record)

        match outcome:
            case Success():
                await self._mark_processed(record)
            case Skipped(delay_ms=delay_ms):
                await self._mark_skipped(record, delay_ms)
            case Failed(reason=reason):
                await self._fail_immediately(record, reason)
            case Errored():
                await self._mark_failed(record, outcome)

        return outcome

    def _retries_exhausted(self, record: QueueRecord) -> bool:
        if self.options.retries_forever:
            return False
        retry_count = record.retry_count or 0
        return retry_count > 0 and retry_count >= self.options.retry_limit

    async def _mark_processed(self, record: QueueRecord) -> None:
        await self._update(
            record,
            {
                "$set": {
                    STATUS: RecordStatus.PROCESSED.value,
                    PROCESSED_DATE: self._now(),
                },
                "$unset": {
                    FAILURE_REASON: "",
                    RETRY_COUNT: "",
                    AVAILABLE: "",
                },
            },
        )

    async def _mark_skipped(self, record: QueueRecord, delay_ms: int) -> None:
        now = self._now()
        await self._update(
            record,
            {
                "$set": {
                    STATUS: RecordStatus.SKIPPED.value,
                    PROCESSED_DATE: now,
                    AVAILABLE: now + timedelta(milliseconds=delay_ms),
                },
            },
        )
        logger.debug(
            "Record skipped: collection=%s, record_id=%s, delay_ms=%d",
            self.collection_name,
            record.id,
            delay_ms,
        )

    async def _mark_failed(self, record: QueueRecord, outcome: Errored) -> None:
        retry_count = (record.retry_count or 0) + 1
        delay_ms = compute_backoff_ms(
            retry_count,
            retry_limit=self.options.retry_limit,
            backoff_ms=self.options.backoff_ms,
            backoff_coefficient=self.options.backoff_coefficient,
        )
        now = self._now()

        await self._update(
            record,
            {
                "$set": {
                    STATUS: RecordStatus.FAILED.value,
                    PROCESSED_DATE: now,
                    FAILURE_REASON: outcome.reason,
                    AVAILABLE: now + timedelta(milliseconds=delay_ms),
                },
                "$inc": {RETRY_COUNT: 1},
            },
        )
        logger.warning(
            "Record failed: collection=%s, record_id=%s, retry_count=%d, "
            "backoff_ms=%d, error=%s",
            self.collection_name,
            record.id,
            retry_count,
            delay_ms,
            outcome.cause,
        )

    async def _fail_immediately(self, record: QueueRecord, reason: str | None) -> None:
        await self._update(
            record,
            {"$set": {IMMEDIATE_FAILURE: True, FAILURE_REASON: reason}},
        )
        logger.warning(
            "Record failed immediately: collection=%s, record_id=%s, reason=%s",
            self.collection_name,
            record.id,
            reason,
        )
        failed = dataclasses.replace(record, immediate_failure=True, failure_reason=reason)
        await self._notify(failed)

    async def _notify(self, record: QueueRecord) -> None:
        """Report a terminal failure through on_failure.

        An error raised by on_failure is recorded on the record and never
        propagated, so the rest of the batch still runs.
        """
        try:
            await run_callback(self._on_failure, record)
        except Exception as e:
            logger.warning(
                "on_failure raised: collection=%s, record_id=%s, error=%s",
                self.collection_name,
                record.id,
                e,
            )
            await self._update(
                record,
                {
                    "$set": {
                        STATUS: RecordStatus.NOTIFY_FAILURE.value,
                        PROCESSED_DATE: self._now(),
                        NOTIFY_FAILURE_REASON: describe_error(e),
                    },
                },
            )
            return

        await self._update(
            record,
            {
                "$set": {
                    STATUS: RecordStatus.NOTIFIED.value,
                    PROCESSED_DATE: self._now(),
                },
            },
        )
        logger.info(
            "Record notified: collection=%s, record_id=%s",
            self.collection_name,
            record.id,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _update(self, record: QueueRecord, update: Update) -> None:
        await self.store.update_one({ID: record.id}, update)

    def _now(self) -> datetime:
        return self._clock()

    @contextlib.asynccontextmanager
    async def _single_flight(self, operation: str) -> AsyncIterator[None]:
        if operation in self._in_flight:
            msg = f"{operation} is already running for collection {self.collection_name}"
            raise BatchInProgressError(msg)
        self._in_flight.add(operation)
        try:
            yield
        finally:
            self._in_flight.discard(operation)
