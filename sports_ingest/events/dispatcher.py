"""
Pending-event buffer keyed by aggregate.

Events are registered while a write is in flight and dispatched to the bus
only after the write commits. Per aggregate, dispatch preserves registration
order; there is no ordering across aggregates.
"""
from collections import OrderedDict
from typing import Dict, List

from sports_ingest.core.logging import get_logger
from sports_ingest.events.bus import EventBus
from sports_ingest.events.domain_event import DomainEvent

logger = get_logger(__name__)


class EventDispatcher:
    """
    Collects events per aggregate and publishes them on demand.

    Example:
        dispatcher.register_events(event_id, [created_event])
        store.commit()
        await dispatcher.dispatch_all()
    """

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self._pending: "OrderedDict[str, List[DomainEvent]]" = OrderedDict()

    def register_events(self, aggregate_id: str, events: List[DomainEvent]) -> None:
        if events:
            self._pending.setdefault(aggregate_id, []).extend(events)

    async def dispatch_events(self, aggregate_id: str) -> int:
        """Publish and clear one aggregate's events. Returns how many were published."""
        events = self._pending.pop(aggregate_id, [])
        if events:
            await self.event_bus.publish_all(events)
        return len(events)

    async def dispatch_all(self) -> int:
        """Publish every pending event, aggregate by aggregate."""
        total = 0
        while self._pending:
            aggregate_id = next(iter(self._pending))
            total += await self.dispatch_events(aggregate_id)
        if total:
            logger.debug(f"Dispatched {total} domain events")
        return total

    def clear_events(self, aggregate_id: str) -> None:
        self._pending.pop(aggregate_id, None)

    def clear_all_events(self) -> None:
        self._pending.clear()

    def get_pending_events(self, aggregate_id: str) -> List[DomainEvent]:
        return list(self._pending.get(aggregate_id, []))

    def get_pending_count(self) -> int:
        return sum(len(events) for events in self._pending.values())

    def pending_by_aggregate(self) -> Dict[str, int]:
        return {aggregate_id: len(events) for aggregate_id, events in self._pending.items()}
