"""docqueue worker service entry point.

This module provides the QueueWorker that:
- Loads settings and imports the configured callbacks
- Builds the record store and the scheduled queue
- Runs process (and cleanup) ticks on their crontabs
- Handles graceful shutdown via SIGTERM/SIGINT
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import signal
import sys
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, NoReturn

from docqueue.core.settings import get_settings
from docqueue.db import close_engine
from docqueue.services.queue_engine import QueueError
from docqueue.services.scheduled_queue import ScheduledQueue, create_queue
from docqueue.stores import MongoRecordStore, create_store

if TYPE_CHECKING:
    from docqueue.core.config import Settings
    from docqueue.stores.base import RecordStore

logger = logging.getLogger(__name__)


class HandlerImportError(QueueError):
    """Raised when a configured callback path cannot be imported."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Cannot load callback {path!r}: {reason}")


def load_callback(path: str) -> Callable[..., Any]:
    """Import a callable from a 'package.module:attribute' path.

    Args:
        path: Import path; the attribute part may be dotted.

    Returns:
        The callable.

    Raises:
        HandlerImportError: If the module or attribute is missing or not callable.
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise HandlerImportError(path, "expected 'module:attribute'")

    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise HandlerImportError(path, str(e)) from e

    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise HandlerImportError(path, f"no attribute {part!r}") from e

    if not callable(target):
        raise HandlerImportError(path, "not callable")
    return target


class QueueWorker:
    """Runs one scheduled queue until shutdown is requested.

    Example:
        worker = QueueWorker(get_settings())
        await worker.start()  # returns after stop()
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize the worker.

        Args:
            settings: Validated settings, including the callback import paths.
        """
        self.settings = settings
        self._shutdown_event = asyncio.Event()
        self._store: RecordStore | None = None
        self._queue: ScheduledQueue | None = None
        self._started_at: datetime | None = None

    @property
    def queue(self) -> ScheduledQueue | None:
        return self._queue

    async def start(self) -> None:
        """Start the scheduled queue and block until stop() is called.

        Raises:
            HandlerImportError: If a configured callback cannot be imported.
        """
        self._started_at = datetime.now(UTC)
        on_process = load_callback(self.settings.on_process or "")
        on_failure = load_callback(self.settings.on_failure) if self.settings.on_failure else None

        self._store = create_store(self.settings)
        try:
            if isinstance(self._store, MongoRecordStore):
                await self._store.ensure_indexes()

            scheduler = self.settings.scheduler
            self._queue = create_queue(
                self._store,
                self.settings.queue,
                on_process,
                on_failure,
                process_cron=scheduler.process_cron,
                cleanup_cron=scheduler.cleanup_cron,
                time_warning_seconds=scheduler.time_warning_seconds,
                timezone=scheduler.timezone,
            )
            self._queue.start()
            logger.info(
                "Worker started: collection=%s, store_backend=%s",
                self.settings.queue.collection_name,
                self.settings.store_backend.value,
            )

            await self._shutdown_event.wait()

        finally:
            if self._queue is not None:
                self._queue.shutdown(wait=False)
            await self._store.close()
            await close_engine()
            logger.info(
                "Worker stopped: collection=%s, uptime=%s",
                self.settings.queue.collection_name,
                self._get_uptime(),
            )

    async def stop(self) -> None:
        """Request graceful shutdown of the worker."""
        logger.info(
            "Worker shutdown requested: collection=%s",
            self.settings.queue.collection_name,
        )
        self._shutdown_event.set()

    def _get_uptime(self) -> str:
        """Calculate worker uptime as a human-readable string."""
        if self._started_at is None:
            return "0s"
        delta = datetime.now(UTC) - self._started_at
        hours, remainder = divmod(int(delta.total_seconds()), 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours > 0:
            return f"{hours}h {minutes}m {seconds}s"
        elif minutes > 0:
            return f"{minutes}m {seconds}s"
        else:
            return f"{seconds}s"


# Global shutdown event for signal handlers
_shutdown_event: asyncio.Event | None = None


def _handle_shutdown(signum: int, _frame: object) -> None:
    """Handle shutdown signals gracefully."""
    logger.info("Shutdown signal received (signal=%d)", signum)
    if _shutdown_event is not None:
        _shutdown_event.get_loop().call_soon_threadsafe(_shutdown_event.set)


async def _async_main(settings: Settings, shutdown_event: asyncio.Event) -> None:
    """Async entry point for the worker.

    Args:
        settings: Loaded settings.
        shutdown_event: Event to signal shutdown request.
    """
    worker = QueueWorker(settings)
    worker_task = asyncio.create_task(worker.start())
    shutdown_task = asyncio.create_task(shutdown_event.wait())

    done, _ = await asyncio.wait(
        {worker_task, shutdown_task},
        return_when=asyncio.FIRST_COMPLETED,
    )

    if worker_task in done:
        # Startup failed before any shutdown was requested
        shutdown_task.cancel()
        worker_task.result()
        return

    await worker.stop()
    await worker_task


def run() -> NoReturn:
    """Run the worker process.

    This is the main entry point for the worker. It:
    - Loads configuration from environment variables
    - Sets up logging
    - Registers signal handlers for graceful shutdown
    - Runs the scheduled queue until signalled
    """
    global _shutdown_event

    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    logger.info("docqueue worker starting...")

    async def _run_with_event() -> None:
        """Create event loop context and run main."""
        global _shutdown_event
        _shutdown_event = asyncio.Event()
        await _async_main(settings, _shutdown_event)

    try:
        asyncio.run(_run_with_event())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
    except HandlerImportError as e:
        logger.critical("%s", e)
        sys.exit(1)
    except Exception as e:
        logger.exception("Worker failed: %s", e)
        sys.exit(1)

    logger.info("docqueue worker shutdown complete")
    sys.exit(0)


if __name__ == "__main__":
    run()
