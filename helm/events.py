"""Typed progress events emitted by the agentic loop.

Observers receive frozen event dataclasses through a single async
on_event() hook. Observer errors are isolated: one broken observer never
crashes the loop or blocks other observers.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class IterationStarted:
    conversation_id: str
    iteration: int
    max_iterations: int
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class ToolStarted:
    conversation_id: str
    iteration: int
    tool_use_id: str
    tool_name: str
    tool_input: dict[str, Any]
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class ToolFinished:
    conversation_id: str
    iteration: int
    tool_use_id: str
    tool_name: str
    is_error: bool
    duration_ms: int
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class LoopFinished:
    conversation_id: str
    iterations: int
    tool_call_count: int
    stop_reason: str
    timestamp: datetime = field(default_factory=_now)


ProgressEvent = IterationStarted | ToolStarted | ToolFinished | LoopFinished


class ProgressObserver(Protocol):
    async def on_event(self, event: ProgressEvent) -> None: ...


class NullObserver:
    """Discards every event."""

    async def on_event(self, event: ProgressEvent) -> None:
        return None


class LoggingObserver:
    """Logs progress at DEBUG (iterations, tools) and INFO (loop end)."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    async def on_event(self, event: ProgressEvent) -> None:
        if isinstance(event, IterationStarted):
            self._log.debug(
                "[%s] iteration %d/%d",
                event.conversation_id,
                event.iteration,
                event.max_iterations,
            )
        elif isinstance(event, ToolStarted):
            self._log.debug("[%s] executing %s", event.conversation_id, event.tool_name)
        elif isinstance(event, ToolFinished):
            self._log.debug(
                "[%s] %s finished in %dms%s",
                event.conversation_id,
                event.tool_name,
                event.duration_ms,
                " (error)" if event.is_error else "",
            )
        elif isinstance(event, LoopFinished):
            self._log.info(
                "[%s] loop finished: %s after %d iterations, %d tool calls",
                event.conversation_id,
                event.stop_reason,
                event.iterations,
                event.tool_call_count,
            )


class CompositeObserver:
    """Delivers each event to every observer in order, isolating failures."""

    def __init__(self, observers: list[ProgressObserver]) -> None:
        self._observers = list(observers)

    def add(self, observer: ProgressObserver) -> None:
        self._observers.append(observer)

    async def on_event(self, event: ProgressEvent) -> None:
        for observer in self._observers:
            await safe_notify(observer, event)


async def safe_notify(observer: ProgressObserver, event: ProgressEvent) -> None:
    """Deliver one event. Never propagates (except CancelledError)."""
    try:
        await observer.on_event(event)
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception(
            "Observer %s failed for event %s",
            type(observer).__qualname__,
            type(event).__name__,
        )
