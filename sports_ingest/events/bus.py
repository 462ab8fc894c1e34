"""
Event bus contract shared by the in-memory and Redis Streams buses.

Handlers subscribe to a routing key (or ``*`` for everything). Publishing
appends the event to the event store first when one is configured.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional

from sports_ingest.core import metrics
from sports_ingest.core.logging import get_logger
from sports_ingest.events.domain_event import DomainEvent

if TYPE_CHECKING:
    from sports_ingest.events.store import EventStore

logger = get_logger(__name__)

WILDCARD = "*"

HandleFn = Callable[[DomainEvent], Awaitable[None]]


@dataclass
class EventHandler:
    """A named async callback for one routing key."""
    handler_name: str
    event_type: str
    handle: HandleFn


def create_event_handler(handler_name: str, event_type: str, handle: HandleFn) -> EventHandler:
    return EventHandler(handler_name=handler_name, event_type=event_type, handle=handle)


@dataclass
class EventBusConfig:
    """Retry and storage policy for a bus (delays in seconds)."""
    retry_on_failure: bool = True
    max_retries: int = 3
    retry_delay: float = 1.0
    enable_event_store: bool = False

    @property
    def max_attempts(self) -> int:
        return max(1, self.max_retries) if self.retry_on_failure else 1


class EventBus(ABC):
    """
    Publish/subscribe contract.

    Example:
        bus.subscribe("sports.event.live", create_event_handler("ws", "sports.event.live", relay))
        await bus.publish(event)
    """

    def __init__(self, config: Optional[EventBusConfig] = None, event_store: Optional["EventStore"] = None):
        self.config = config or EventBusConfig()
        self.event_store = event_store
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._handlers_by_name: Dict[str, EventHandler] = {}

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None:
        """Publish one event."""

    async def publish_all(self, events: List[DomainEvent]) -> None:
        """Publish events sequentially, preserving order."""
        for event in events:
            await self.publish(event)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)
        self._handlers_by_name[handler.handler_name] = handler
        logger.info(f"Handler {handler.handler_name} subscribed to: {event_type}")

    def unsubscribe(self, handler_name: str) -> None:
        if self._handlers_by_name.pop(handler_name, None) is None:
            return
        for event_type in list(self._handlers):
            remaining = [h for h in self._handlers[event_type] if h.handler_name != handler_name]
            if remaining:
                self._handlers[event_type] = remaining
            else:
                del self._handlers[event_type]
        logger.info(f"Handler {handler_name} unsubscribed")

    def get_handlers(self) -> List[EventHandler]:
        return list(self._handlers_by_name.values())

    def handlers_for(self, event_key: str) -> List[EventHandler]:
        return [*self._handlers.get(event_key, []), *self._handlers.get(WILDCARD, [])]

    @abstractmethod
    async def is_healthy(self) -> bool:
        """Whether the bus can currently publish."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Release resources and drop all handlers."""

    async def _store(self, event: DomainEvent) -> None:
        if self.config.enable_event_store and self.event_store is not None:
            await self.event_store.append([event])

    @staticmethod
    def _count(event: DomainEvent, outcome: str) -> None:
        metrics.domain_events_published_total.labels(event_key=event.event_key, outcome=outcome).inc()
