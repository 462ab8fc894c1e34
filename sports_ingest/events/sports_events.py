"""
Sports routing keys, message payloads and domain event factories.

Routing keys are ``<aggregate_type>.<event_type>``:

- sports.event.created / updated / live / finished
- sports.market.created / updated / resolved
- sports.odds.updated
- sports.sync.completed

Factories take persisted rows (dicts keyed by column name, as returned by the
relational store) so published payloads always describe what was written.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sports_ingest.events.domain_event import DomainEvent
from sports_ingest.models.canonical import EventStatus, IN_PLAY_STATUSES

EVENT_AGGREGATE = "sports.event"
MARKET_AGGREGATE = "sports.market"
ODDS_AGGREGATE = "sports.odds"
SYNC_AGGREGATE = "sports.sync"


class SportsRoutingKey:
    EVENT_CREATED = "sports.event.created"
    EVENT_UPDATED = "sports.event.updated"
    EVENT_LIVE = "sports.event.live"
    EVENT_FINISHED = "sports.event.finished"
    MARKET_CREATED = "sports.market.created"
    MARKET_UPDATED = "sports.market.updated"
    MARKET_RESOLVED = "sports.market.resolved"
    ODDS_UPDATED = "sports.odds.updated"
    SYNC_COMPLETED = "sports.sync.completed"

    EVENT_KEYS = (EVENT_CREATED, EVENT_UPDATED, EVENT_LIVE, EVENT_FINISHED)
    MARKET_KEYS = (MARKET_CREATED, MARKET_UPDATED, MARKET_RESOLVED, ODDS_UPDATED)


def _iso(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass
class SportsEventMessage:
    event_id: str
    external_id: str
    sport: str
    status: str
    start_time: Optional[str]
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    updated_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SportsEventMessage":
        metadata = row.get("metadata") or {}
        return cls(
            event_id=row["id"],
            external_id=row["external_id"],
            sport=row["sport"],
            status=row["status"],
            start_time=_iso(row.get("start_time")),
            home_score=row.get("home_score"),
            away_score=row.get("away_score"),
            home_team=metadata.get("home_team_name"),
            away_team=metadata.get("away_team_name"),
        )


@dataclass
class SportsMarketMessage:
    market_id: str
    event_id: str
    title: str
    question: str
    outcomes: List[str]
    outcome_prices: List[float]
    yes_price: float
    no_price: float
    volume: float = 0.0
    resolved: bool = False
    outcome: Optional[bool] = None
    updated_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SportsMarketMessage":
        prices = list(row.get("outcome_prices") or [])
        return cls(
            market_id=row["id"],
            event_id=row["event_id"],
            title=row["title"],
            question=row["question"],
            outcomes=list(row.get("outcomes") or []),
            outcome_prices=prices,
            yes_price=prices[0] if prices else 0.5,
            no_price=prices[1] if len(prices) > 1 else 0.5,
            volume=row.get("volume") or 0.0,
            resolved=bool(row.get("resolved")),
        )


@dataclass
class SportsSyncMessage:
    sync_type: str
    records_fetched: int
    records_created: int
    records_updated: int
    duration_ms: int
    sport: Optional[str] = None
    success: bool = True
    completed_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())


def event_routing_key(status: "str | EventStatus") -> str:
    """Routing key for an updated event: live, finished or plain updated."""
    status = EventStatus(status)
    if status in IN_PLAY_STATUSES:
        return SportsRoutingKey.EVENT_LIVE
    if status == EventStatus.FINISHED:
        return SportsRoutingKey.EVENT_FINISHED
    return SportsRoutingKey.EVENT_UPDATED


def _event_type(routing_key: str) -> str:
    return routing_key.rsplit(".", 1)[1]


def event_created(row: Dict[str, Any]) -> DomainEvent:
    return DomainEvent(
        event_type=_event_type(SportsRoutingKey.EVENT_CREATED),
        aggregate_id=row["id"],
        aggregate_type=EVENT_AGGREGATE,
        payload=asdict(SportsEventMessage.from_row(row)),
    )


def event_changed(row: Dict[str, Any]) -> DomainEvent:
    """``sports.event.updated|live|finished`` depending on the row's status."""
    return DomainEvent(
        event_type=_event_type(event_routing_key(row["status"])),
        aggregate_id=row["id"],
        aggregate_type=EVENT_AGGREGATE,
        payload=asdict(SportsEventMessage.from_row(row)),
    )


def market_created(row: Dict[str, Any]) -> DomainEvent:
    return DomainEvent(
        event_type=_event_type(SportsRoutingKey.MARKET_CREATED),
        aggregate_id=row["id"],
        aggregate_type=MARKET_AGGREGATE,
        payload=asdict(SportsMarketMessage.from_row(row)),
    )


def odds_updated(row: Dict[str, Any]) -> DomainEvent:
    return DomainEvent(
        event_type=_event_type(SportsRoutingKey.ODDS_UPDATED),
        aggregate_id=row["id"],
        aggregate_type=ODDS_AGGREGATE,
        payload=asdict(SportsMarketMessage.from_row(row)),
    )


def sync_completed(message: SportsSyncMessage, cycle_id: str) -> DomainEvent:
    return DomainEvent(
        event_type=_event_type(SportsRoutingKey.SYNC_COMPLETED),
        aggregate_id=cycle_id,
        aggregate_type=SYNC_AGGREGATE,
        payload=asdict(message),
    )
