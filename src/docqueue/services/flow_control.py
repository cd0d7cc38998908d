"""Flow-control signals for on_process callbacks and outcome classification.

A processing callback can do more than succeed or raise:

- skip(delay_ms): defer the record without counting a retry.
- fail(reason): give up on the record immediately and notify.

Both signals are exceptions so they can be raised from deep inside a
callback, but they may equally be returned. Either way the engine recognises
them by class, never by message text.

Usage:
    from docqueue import fail, skip

    async def on_process(record):
        if not record.data.get("ready"):
            raise skip(30_000)
        if record.data.get("invalid"):
            return fail("payload rejected by upstream")
        await push_upstream(record.data)
"""

from __future__ import annotations

import inspect
import traceback
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any


class FlowControl(Exception):  # noqa: N818 - signals, not errors
    """Base class for values that steer a record's state transition."""


class SkipRecord(FlowControl):
    """Defer a record for delay_ms milliseconds without counting a retry."""

    def __init__(self, delay_ms: int = 0) -> None:
        self.delay_ms = max(int(delay_ms or 0), 0)
        super().__init__(f"skip record for {self.delay_ms}ms")


class FailRecord(FlowControl):
    """Fail a record permanently, bypassing retries."""

    def __init__(self, reason: Any = None) -> None:
        self.reason = reason
        super().__init__(f"fail record: {reason}")


def skip(delay_ms: int = 0) -> SkipRecord:
    """Create a skip signal.

    Args:
        delay_ms: Milliseconds before the record becomes eligible again.

    Returns:
        A SkipRecord to return or raise from on_process.
    """
    return SkipRecord(delay_ms)


def fail(reason: Any = None) -> FailRecord:
    """Create a fail signal.

    Args:
        reason: Message or exception describing why the record is rejected.

    Returns:
        A FailRecord to return or raise from on_process.
    """
    return FailRecord(reason)


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True)
class Success:
    """on_process completed normally."""


@dataclass(frozen=True)
class Skipped:
    """on_process asked for a deferral."""

    delay_ms: int


@dataclass(frozen=True)
class Failed:
    """on_process asked for an immediate permanent failure."""

    reason: str | None


@dataclass(frozen=True)
class Errored:
    """on_process raised an ordinary, retryable error."""

    cause: BaseException

    @property
    def reason(self) -> str:
        return describe_error(self.cause)


Outcome = Success | Skipped | Failed | Errored


def describe_error(error: Any) -> str | None:
    """Render an error (or any reason value) for storage.

    Exceptions are stored with their traceback, other values as str().
    """
    if error is None:
        return None
    if isinstance(error, BaseException):
        return "".join(traceback.format_exception(error)).rstrip()
    return str(error)


def outcome_from_signal(value: Any) -> Outcome:
    """Classify a returned value or raised exception."""
    if isinstance(value, SkipRecord):
        return Skipped(delay_ms=value.delay_ms)
    if isinstance(value, FailRecord):
        return Failed(reason=describe_error(value.reason))
    if isinstance(value, BaseException):
        return Errored(cause=value)
    return Success()


async def run_callback(callback: Callable[..., Any], *args: Any) -> Any:
    """Invoke a sync or async callback and await its result if needed."""
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def classify(callback: Callable[..., Any | Awaitable[Any]], *args: Any) -> Outcome:
    """Run on_process and turn whatever happens into an Outcome.

    Only Exception subclasses are captured; cancellation and other
    BaseExceptions propagate.
    """
    try:
        result = await run_callback(callback, *args)
    except Exception as e:
        return outcome_from_signal(e)
    return outcome_from_signal(result)
