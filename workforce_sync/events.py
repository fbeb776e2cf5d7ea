"""
Write events and the trigger dispatcher.

The store publishes one ``WriteEvent`` per committed operation. The dispatcher
turns that into message passing: events go onto an asyncio queue and are
delivered to the handler registered for the event's collection. Handlers may
write again; those writes come back as new events on the same queue, so
``drain()`` keeps going until nothing is left.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from .logging_config import get_logger, log_error

if TYPE_CHECKING:
    from .store import DocumentStore

logger = get_logger(__name__)


class WriteKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class WriteEvent:
    """One committed document write, with the state before and after it."""
    collection: str
    doc_id: str
    kind: WriteKind
    before: Optional[dict[str, Any]]
    after: Optional[dict[str, Any]]

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.doc_id}"

    @property
    def deleted(self) -> bool:
        return self.kind is WriteKind.DELETE


Handler = Callable[[WriteEvent], Awaitable[Any]]


class TriggerOverflow(RuntimeError):
    """More events than ``max_events`` in one drain: writes keep retriggering."""


class TriggerDispatcher:
    """Delivers store write events to per-collection handlers."""

    def __init__(self, store: "DocumentStore", max_events: int = 10_000):
        self.max_events = max_events
        self._queue: asyncio.Queue[WriteEvent] = asyncio.Queue()
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._unsubscribe = store.subscribe(self._enqueue)

    def register(self, collection: str, handler: Handler) -> None:
        self._handlers[collection].append(handler)

    def close(self) -> None:
        self._unsubscribe()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _enqueue(self, event: WriteEvent) -> None:
        if event.collection in self._handlers:
            self._queue.put_nowait(event)

    async def drain(self) -> int:
        """
        Handle queued events until the queue is empty.

        A failing handler does not stop the drain; the first failure is
        re-raised once every queued event has been offered to its handlers.

        Returns:
            Number of events handled
        """
        handled = 0
        first_error: Optional[Exception] = None

        while not self._queue.empty():
            if handled >= self.max_events:
                raise TriggerOverflow(
                    f"Handled {handled} events without reaching a fixed point"
                )
            event = self._queue.get_nowait()
            handled += 1
            for handler in self._handlers.get(event.collection, []):
                try:
                    await handler(event)
                except Exception as e:
                    log_error(logger, e, {"collection": event.collection, "doc_id": event.doc_id})
                    if first_error is None:
                        first_error = e

        if handled:
            logger.debug("trigger_queue_drained", events=handled)
        if first_error is not None:
            raise first_error
        return handled
