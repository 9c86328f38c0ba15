"""
Engine lifecycle events.

Handlers receive a payload dict. Emission is fire-and-forget: a failing
handler is logged and never affects the engine or the other handlers.
Coroutine handlers are scheduled on the running event loop.
"""

import asyncio
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List, Set

from crawler_engine.core.logging import get_logger


class EngineEvent(Enum):
    SOURCE_ADDED = "source:added"
    SOURCE_UPDATED = "source:updated"
    SOURCE_REMOVED = "source:removed"
    CRAWL_START = "crawl:start"
    CRAWL_PROGRESS = "crawl:progress"
    CRAWL_COMPLETE = "crawl:complete"
    CRAWL_ERROR = "crawl:error"


EventHandler = Callable[[Dict[str, Any]], Any]


class EventBus:
    """Minimal publish/subscribe keyed by EngineEvent"""

    def __init__(self):
        self._handlers: Dict[EngineEvent, List[EventHandler]] = defaultdict(list)
        self._pending: Set[asyncio.Task] = set()
        self.logger = get_logger(__name__)

    def on(self, event: EngineEvent, handler: EventHandler) -> Callable[[], None]:
        """
        Subscribe a handler.

        Returns:
            A function that unsubscribes the handler
        """
        self._handlers[EngineEvent(event)].append(handler)
        return lambda: self.off(event, handler)

    def off(self, event: EngineEvent, handler: EventHandler) -> None:
        handlers = self._handlers.get(EngineEvent(event), [])
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event: EngineEvent) -> int:
        return len(self._handlers.get(EngineEvent(event), []))

    def emit(self, event: EngineEvent, payload: Dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload)
            except Exception as e:
                self.logger.error(f"Handler for {event.value} failed: {e}", exc_info=True)
                continue

            if asyncio.iscoroutine(result):
                self._schedule(event, result)

    def _schedule(self, event: EngineEvent, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            self.logger.warning(f"No running event loop for async handler of {event.value}")
            return

        self._pending.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._pending.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                self.logger.error(
                    f"Async handler for {event.value} failed: {finished.exception()}",
                    exc_info=finished.exception(),
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
