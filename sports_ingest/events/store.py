"""
Append-only domain event log.

Every published event can be appended with a monotonically increasing
sequence number and later queried by aggregate, type or time range (audit
trail and replay). Two implementations share the ``EventStore`` contract: an
in-memory list for tests and single-process runs, and ``SqlEventStore`` on the
``domain_events`` table.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Literal, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sports_ingest.core.errors import PersistenceError
from sports_ingest.core.logging import get_logger
from sports_ingest.events.domain_event import DomainEvent
from sports_ingest.models.tables import DomainEventRecord

logger = get_logger(__name__)

_EVENTS_TABLE = DomainEventRecord.__table__


@dataclass
class StoredEvent:
    """A domain event together with its position in the log."""
    sequence_number: int
    event: DomainEvent
    stored_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class EventQuery:
    """Filters for ``EventStore.get_events``. Every filter is optional."""
    aggregate_id: Optional[str] = None
    aggregate_type: Optional[str] = None
    event_type: Optional[str] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    from_sequence: Optional[int] = None
    limit: Optional[int] = None
    order: Literal["asc", "desc"] = "asc"

    def matches(self, stored: StoredEvent) -> bool:
        event = stored.event
        if self.aggregate_id and event.aggregate_id != self.aggregate_id:
            return False
        if self.aggregate_type and event.aggregate_type != self.aggregate_type:
            return False
        if self.event_type and event.event_type != self.event_type:
            return False
        if self.from_date and event.occurred_on < self.from_date:
            return False
        if self.to_date and event.occurred_on > self.to_date:
            return False
        if self.from_sequence is not None and stored.sequence_number < self.from_sequence:
            return False
        return True


class EventStore(ABC):
    """Append-only event log contract."""

    async def append(self, events: List[DomainEvent]) -> List[StoredEvent]:
        """Append events in order; returns them with their sequence numbers."""
        return await self.append_all(events)

    @abstractmethod
    async def append_all(self, events: List[DomainEvent]) -> List[StoredEvent]:
        """Append events atomically."""

    @abstractmethod
    async def get_events(self, query: Optional[EventQuery] = None) -> List[StoredEvent]:
        """Events matching ``query`` (all events when None)."""

    async def get_events_for_aggregate(self, aggregate_id: str) -> List[StoredEvent]:
        return await self.get_events(EventQuery(aggregate_id=aggregate_id))

    @abstractmethod
    async def get_last_sequence_number(self) -> int:
        """Highest sequence number written so far (0 when empty)."""

    @abstractmethod
    async def count_events(self, query: Optional[EventQuery] = None) -> int:
        """Number of events matching ``query``."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop every stored event (tests and local resets only)."""


class InMemoryEventStore(EventStore):
    """Event store kept in a list, lost on restart."""

    def __init__(self):
        self._events: List[StoredEvent] = []
        self._sequence = 0

    async def append_all(self, events: List[DomainEvent]) -> List[StoredEvent]:
        stored = []
        for event in events:
            self._sequence += 1
            stored.append(StoredEvent(sequence_number=self._sequence, event=event))
        self._events.extend(stored)
        return stored

    async def get_events(self, query: Optional[EventQuery] = None) -> List[StoredEvent]:
        query = query or EventQuery()
        results = [s for s in self._events if query.matches(s)]
        if query.order == "desc":
            results.reverse()
        if query.limit is not None:
            results = results[:query.limit]
        return results

    async def get_last_sequence_number(self) -> int:
        return self._sequence

    async def count_events(self, query: Optional[EventQuery] = None) -> int:
        if query is None:
            return len(self._events)
        return len([s for s in self._events if query.matches(s)])

    async def clear(self) -> None:
        self._events.clear()
        self._sequence = 0


class SqlEventStore(EventStore):
    """
    Event store on the ``domain_events`` table.

    Each call opens its own session from ``session_factory`` so appends are
    committed independently of the ingestion transaction that produced them.

    Args:
        session_factory: Zero-argument callable returning a SQLAlchemy Session
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    async def append_all(self, events: List[DomainEvent]) -> List[StoredEvent]:
        if not events:
            return []
        db = self.session_factory()
        try:
            stored = []
            for event in events:
                now = datetime.utcnow()
                result = db.execute(
                    _EVENTS_TABLE.insert().values({
                        "event_id": event.event_id,
                        "event_type": event.event_type,
                        "aggregate_id": event.aggregate_id,
                        "aggregate_type": event.aggregate_type,
                        "occurred_on": event.occurred_on,
                        "payload": event.payload,
                        "metadata": event.metadata,
                        "stored_at": now,
                    })
                )
                stored.append(StoredEvent(
                    sequence_number=result.inserted_primary_key[0],
                    event=event,
                    stored_at=now,
                ))
            db.commit()
            return stored
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("domain_events", str(e)) from e
        finally:
            db.close()

    async def get_events(self, query: Optional[EventQuery] = None) -> List[StoredEvent]:
        query = query or EventQuery()
        stmt = self._filtered(select(DomainEventRecord), query)
        order_column = DomainEventRecord.sequence_number
        stmt = stmt.order_by(order_column.desc() if query.order == "desc" else order_column)
        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        db = self.session_factory()
        try:
            return [self._to_stored(row) for row in db.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            raise PersistenceError("domain_events", str(e)) from e
        finally:
            db.close()

    async def get_last_sequence_number(self) -> int:
        db = self.session_factory()
        try:
            return db.execute(select(func.max(DomainEventRecord.sequence_number))).scalar() or 0
        finally:
            db.close()

    async def count_events(self, query: Optional[EventQuery] = None) -> int:
        stmt = self._filtered(select(func.count()).select_from(DomainEventRecord), query or EventQuery())
        db = self.session_factory()
        try:
            return db.execute(stmt).scalar() or 0
        finally:
            db.close()

    async def clear(self) -> None:
        db = self.session_factory()
        try:
            db.execute(delete(DomainEventRecord))
            db.commit()
            logger.warning("Domain event log cleared")
        finally:
            db.close()

    @staticmethod
    def _filtered(stmt, query: EventQuery):
        if query.aggregate_id:
            stmt = stmt.where(DomainEventRecord.aggregate_id == query.aggregate_id)
        if query.aggregate_type:
            stmt = stmt.where(DomainEventRecord.aggregate_type == query.aggregate_type)
        if query.event_type:
            stmt = stmt.where(DomainEventRecord.event_type == query.event_type)
        if query.from_date:
            stmt = stmt.where(DomainEventRecord.occurred_on >= query.from_date)
        if query.to_date:
            stmt = stmt.where(DomainEventRecord.occurred_on <= query.to_date)
        if query.from_sequence is not None:
            stmt = stmt.where(DomainEventRecord.sequence_number >= query.from_sequence)
        return stmt

    @staticmethod
    def _to_stored(row: DomainEventRecord) -> StoredEvent:
        event = DomainEvent(
            event_type=row.event_type,
            aggregate_id=row.aggregate_id,
            aggregate_type=row.aggregate_type,
            payload=row.payload or {},
            event_id=row.event_id,
            occurred_on=row.occurred_on,
            metadata=dict(row.metadata_ or {}),
        )
        return StoredEvent(sequence_number=row.sequence_number, event=event, stored_at=row.stored_at)
