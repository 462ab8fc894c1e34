"""
In-process event bus.

Handlers run concurrently per event via ``asyncio.gather(...,
return_exceptions=True)``, so one failing handler never blocks the others.
Each handler is retried with linear backoff; a handler that still fails is
logged and the event is dropped for that handler.
"""
import asyncio
from collections import deque
from typing import Deque, List, Optional

from sports_ingest.core.logging import get_logger
from sports_ingest.events.bus import EventBus, EventBusConfig, EventHandler
from sports_ingest.events.domain_event import DomainEvent

logger = get_logger(__name__)

MAX_HISTORY = 1000


class InMemoryEventBus(EventBus):
    """Event bus for a single process (development, tests, single-node deployments)."""

    def __init__(self, config: Optional[EventBusConfig] = None, event_store=None):
        super().__init__(config, event_store)
        self._history: Deque[DomainEvent] = deque(maxlen=MAX_HISTORY)

    async def publish(self, event: DomainEvent) -> None:
        await self._store(event)
        self._history.append(event)

        handlers = self.handlers_for(event.event_key)
        if not handlers:
            logger.debug(f"No handlers for event: {event.event_key}")
            self._count(event, "unhandled")
            return

        results = await asyncio.gather(
            *(self._execute(handler, event) for handler in handlers),
            return_exceptions=True,
        )
        failed = 0
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                failed += 1
                logger.error(f"Handler {handler.handler_name} failed for {event.event_key}: {result}")
        self._count(event, "failed" if failed else "delivered")

    async def _execute(self, handler: EventHandler, event: DomainEvent) -> None:
        attempts = self.config.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                await handler.handle(event)
                return
            except Exception as e:
                logger.warning(
                    f"Handler {handler.handler_name} failed (attempt {attempt}/{attempts}): {e}"
                )
                if attempt == attempts:
                    raise
                await asyncio.sleep(self.config.retry_delay * attempt)

    def get_history(self) -> List[DomainEvent]:
        """Recently published events, oldest first."""
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    async def is_healthy(self) -> bool:
        return True

    async def shutdown(self) -> None:
        self._handlers.clear()
        self._handlers_by_name.clear()
        self._history.clear()
        logger.info("In-memory event bus shutdown")
