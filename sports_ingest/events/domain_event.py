"""
Domain event envelope.

Every change notification published on the event bus is a ``DomainEvent``.
The routing key (``event_key``) is ``<aggregate_type>.<event_type>``, e.g.
``sports.event`` + ``live`` -> ``sports.event.live``.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

from sports_ingest.core.logging import get_correlation_id


@dataclass
class DomainEvent:
    """
    Something meaningful that happened to an aggregate.

    Attributes:
        event_type: What happened ("created", "live", ...)
        aggregate_id: Internal ID of the changed aggregate
        aggregate_type: Aggregate kind ("sports.event", "sports.market", ...)
        payload: Event-specific data (JSON-serializable)
        event_id: Unique event ID (uuid4)
        occurred_on: UTC timestamp
        metadata: timestamp, correlation_id, causation_id, user_id
    """
    event_type: str
    aggregate_id: str
    aggregate_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_on: datetime = field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.metadata.setdefault("timestamp", self.occurred_on.isoformat())
        correlation_id = get_correlation_id()
        if correlation_id and "correlation_id" not in self.metadata:
            self.metadata["correlation_id"] = correlation_id

    @property
    def event_key(self) -> str:
        return f"{self.aggregate_type}.{self.event_type}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "aggregate_id": self.aggregate_id,
            "aggregate_type": self.aggregate_type,
            "occurred_on": self.occurred_on.isoformat(),
            "metadata": self.metadata,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DomainEvent":
        """Rebuild an event from ``to_dict()`` output (e.g. off the wire)."""
        return cls(
            event_type=data["event_type"],
            aggregate_id=data["aggregate_id"],
            aggregate_type=data["aggregate_type"],
            payload=data.get("payload") or {},
            event_id=data.get("event_id") or str(uuid.uuid4()),
            occurred_on=datetime.fromisoformat(data["occurred_on"]) if data.get("occurred_on") else datetime.utcnow(),
            metadata=dict(data.get("metadata") or {}),
        )
