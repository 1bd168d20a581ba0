"""
Fire-and-forget delivery of consultation progress events.

Handlers may be plain callables or coroutine functions. A handler that
raises is logged and skipped; async handlers are scheduled, never awaited
by the orchestrator.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

from app.config import settings
from app.db import keys
from app.db.base import StorageAdapter
from app.models.events import ConsultationEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[ConsultationEvent], Union[None, Awaitable[Any]]]


class ConsultationEmitter:
    def __init__(self):
        self._handlers: List[EventHandler] = []
        self._pending: Set[asyncio.Task] = set()

    def on(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def emit(self, event: ConsultationEvent) -> None:
        for handler in self._handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._task_done)
            except Exception as e:
                logger.error(f"Event handler failed on {event.type}: {e}")

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async event handler failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for scheduled async handlers (tests and graceful shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class StoreEventSink:
    """
    Appends every event to the consultation's short-lived event list.

    Appends are serialized so the stored list keeps emission order even
    when the adapter completes writes out of order.
    """

    def __init__(self, store: StorageAdapter, consultation_id: str, ttl: Optional[int] = None):
        self.store = store
        self.key = keys.consultation_events(consultation_id)
        self.ttl = ttl or settings.event_ttl_seconds
        self._lock = asyncio.Lock()

    async def __call__(self, event: ConsultationEvent) -> None:
        payload = event.model_dump(mode="json")
        async with self._lock:
            await self.store.append(self.key, payload, ttl=self.ttl)
