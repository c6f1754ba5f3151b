"""
Record event hub.

Persistence layers subscribe here to hear about record changes and
tombstones. Emission never depends on a handler succeeding: handler errors are
logged and swallowed, coroutine handlers are scheduled on the running loop.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import structlog

from recall.identity.types import Record

logger = structlog.get_logger(__name__)

ChangedHandler = Callable[[Record], Any]
TombstonedHandler = Callable[[str], Any]


class RecordEvents:
    """Synchronous fan-out of record_changed / record_tombstoned events."""

    def __init__(self):
        self._changed_handlers: list[ChangedHandler] = []
        self._tombstoned_handlers: list[TombstonedHandler] = []
        self._pending: set[asyncio.Task] = set()
        self.changed_count = 0
        self.tombstoned_count = 0

    def on_record_changed(self, handler: ChangedHandler) -> Callable[[], None]:
        """Register a change handler. Returns an unsubscribe callable."""
        self._changed_handlers.append(handler)
        return lambda: self._remove(self._changed_handlers, handler)

    def on_record_tombstoned(self, handler: TombstonedHandler) -> Callable[[], None]:
        """Register a tombstone handler. Returns an unsubscribe callable."""
        self._tombstoned_handlers.append(handler)
        return lambda: self._remove(self._tombstoned_handlers, handler)

    def emit_changed(self, record: Record) -> None:
        self.changed_count += 1
        for handler in list(self._changed_handlers):
            self._call_safe(handler, record.copy(), "record_changed")

    def emit_tombstoned(self, record_id: str) -> None:
        self.tombstoned_count += 1
        for handler in list(self._tombstoned_handlers):
            self._call_safe(handler, record_id, "record_tombstoned")

    async def drain(self) -> None:
        """Wait for coroutine handlers scheduled so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _call_safe(self, handler: Callable[[Any], Any], payload: Any, event: str) -> None:
        try:
            result = handler(payload)
        except Exception as e:
            logger.error("Record event handler failed", record_event=event, error=str(e))
            return

        if asyncio.iscoroutine(result):
            loop = self._running_loop()
            if loop is None:
                result.close()
                logger.warning("Dropped async record handler outside event loop", record_event=event)
                return
            task = loop.create_task(self._await_safe(result, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _await_safe(self, coro: Any, event: str) -> None:
        try:
            await coro
        except Exception as e:
            logger.error("Async record event handler failed", record_event=event, error=str(e))

    @staticmethod
    def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    @staticmethod
    def _remove(handlers: list, handler: Callable) -> None:
        if handler in handlers:
            handlers.remove(handler)
