"""Shared pytest fixtures for sports-ingest tests."""
from datetime import datetime, timedelta
from typing import Callable, Generator
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sports_ingest.core.database import build_engine, enable_sqlite_savepoints
from sports_ingest.events.bus import EventBusConfig
from sports_ingest.events.dispatcher import EventDispatcher
from sports_ingest.events.in_memory_bus import InMemoryEventBus
from sports_ingest.models.canonical import (
    CanonicalEvent,
    CanonicalLeague,
    CanonicalTeam,
    DataSource,
    EventStatus,
    SportKind,
)
from sports_ingest.models.tables import Base
from sports_ingest.services.core.circuit_breaker import create_breaker
from sports_ingest.services.core.rate_governor import RateGovernor
from sports_ingest.services.sync.store import RelationalStore


# Database
# ─────────────────────────────────────────────────────────────

@pytest.fixture(scope="function")
def session_factory() -> Generator[Callable[[], Session], None, None]:
    """
    Session factory on a fresh in-memory database.

    StaticPool keeps one connection, so every session sees the same data.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)

    yield sessionmaker(bind=engine, autoflush=False)

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def file_session_factory(tmp_path) -> Generator[Callable[[], Session], None, None]:
    """
    Session factory on a file database, for code that opens several sessions
    (the orchestrator runs every sport in its own session).
    """
    engine = build_engine(f"sqlite:///{tmp_path / 'ingest.db'}")
    Base.metadata.create_all(bind=engine)

    yield sessionmaker(bind=engine, autoflush=False)

    engine.dispose()


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create fresh test database session with isolated in-memory database."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db_session) -> RelationalStore:
    return RelationalStore(db_session)


# Events
# ─────────────────────────────────────────────────────────────

@pytest.fixture
def event_bus() -> InMemoryEventBus:
    """In-memory bus without retries or an event store."""
    return InMemoryEventBus(EventBusConfig(retry_on_failure=False, retry_delay=0))


@pytest.fixture
def dispatcher(event_bus) -> EventDispatcher:
    return EventDispatcher(event_bus)


# Canonical record builders
# ─────────────────────────────────────────────────────────────

@pytest.fixture
def make_league() -> Callable[..., CanonicalLeague]:
    def _make(external_id="39", source=DataSource.APIFOOTBALL.value, sport=SportKind.FOOTBALL,
              name="Premier League", **kwargs) -> CanonicalLeague:
        kwargs.setdefault("country", "England")
        return CanonicalLeague(external_id=external_id, source=source, sport=sport, name=name, **kwargs)
    return _make


@pytest.fixture
def make_team() -> Callable[..., CanonicalTeam]:
    def _make(external_id="42", source=DataSource.APIFOOTBALL.value, sport=SportKind.FOOTBALL,
              name="Arsenal", **kwargs) -> CanonicalTeam:
        return CanonicalTeam(external_id=external_id, source=source, sport=sport, name=name, **kwargs)
    return _make


@pytest.fixture
def make_event() -> Callable[..., CanonicalEvent]:
    """Scheduled football fixture starting tomorrow, Arsenal vs Chelsea by default."""
    def _make(external_id="1001", source=DataSource.APIFOOTBALL.value, sport=SportKind.FOOTBALL,
              start_time=None, status=EventStatus.SCHEDULED, home="Arsenal", away="Chelsea",
              **kwargs) -> CanonicalEvent:
        metadata = kwargs.pop("metadata", {})
        if home:
            metadata.setdefault("home_team_name", home)
        if away:
            metadata.setdefault("away_team_name", away)
        kwargs.setdefault("name", f"{home} vs {away}" if home and away else None)
        start = start_time or (datetime.utcnow() + timedelta(days=1)).replace(microsecond=0)
        return CanonicalEvent(
            external_id=external_id,
            source=source,
            sport=sport,
            start_time=start,
            status=status,
            metadata=metadata,
            **kwargs,
        )
    return _make


# Provider client doubles
# ─────────────────────────────────────────────────────────────

@pytest.fixture
def fake_apisports() -> Mock:
    """API-Sports client double: real governor and breaker, canned endpoints."""
    client = Mock()
    client.provider = "apisports"
    client.governor = RateGovernor("apisports", daily_limit=100)
    client.breaker = create_breaker("apisports")
    client.get_leagues = AsyncMock(return_value=[])
    client.get_games = AsyncMock(return_value=[])
    client.get_live_games = AsyncMock(return_value=[])
    client.close = AsyncMock()
    return client


@pytest.fixture
def fake_thesportsdb() -> Mock:
    """Free-tier TheSportsDB client double."""
    client = Mock()
    client.provider = "thesportsdb"
    client.is_premium = False
    client.governor = RateGovernor("thesportsdb", daily_limit=1000)
    client.breaker = create_breaker("thesportsdb")
    client.get_leagues_by_sport = AsyncMock(return_value=[])
    client.get_teams_by_league = AsyncMock(return_value=[])
    client.get_events_by_date = AsyncMock(return_value=[])
    client.get_upcoming_events_by_league = AsyncMock(return_value=[])
    client.get_live_scores = AsyncMock(return_value=[])
    client.close = AsyncMock()
    return client
