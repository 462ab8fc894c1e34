"""
SQLAlchemy tables for canonical sports data, sync logs and the event log.

All entity tables are keyed by a uuid4 string ``id`` and carry a unique
``(source, external_id)`` constraint, the only externally visible identity.
League/team references on teams and events are nullable: an event may be
stored before its league or teams are synced and is repaired on a later pass.
"""
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, DateTime, Boolean, Text, Float,
    ForeignKey, Index, UniqueConstraint, JSON,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


# =============================================================================
# CANONICAL ENTITIES
# =============================================================================

class SportsLeague(Base):
    """Competition synced from one provider."""
    __tablename__ = "sports_leagues"

    id = Column(String(36), primary_key=True)
    external_id = Column(String(100), nullable=False)
    source = Column(String(30), nullable=False)
    sport = Column(String(20), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    name_alternate = Column(String(255), nullable=True)
    country = Column(String(100), nullable=True)
    country_code = Column(String(10), nullable=True)
    logo_url = Column(String(500), nullable=True)
    banner_url = Column(String(500), nullable=True)
    season_current = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)  # soft-deactivation only
    is_featured = Column(Boolean, nullable=False, default=False)
    display_order = Column(Integer, nullable=False, default=0)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_sports_leagues_source_external_id"),
        Index("ix_sports_leagues_name", "name"),
    )


class SportsTeam(Base):
    """Team (or fighter) synced from one provider."""
    __tablename__ = "sports_teams"

    id = Column(String(36), primary_key=True)
    external_id = Column(String(100), nullable=False)
    source = Column(String(30), nullable=False)
    sport = Column(String(20), nullable=False, index=True)
    league_id = Column(String(36), ForeignKey("sports_leagues.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    name_short = Column(String(50), nullable=True)
    country = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    stadium = Column(String(255), nullable=True)
    logo_url = Column(String(500), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_sports_teams_source_external_id"),
    )


class SportsEvent(Base):
    """
    A contest. ``status`` holds the canonical EventStatus value.

    FINISHED and CANCELLED rows are terminal and are no longer mutated by the
    pipeline (markets may still reference them).
    """
    __tablename__ = "sports_events"

    id = Column(String(36), primary_key=True)
    external_id = Column(String(100), nullable=False)
    source = Column(String(30), nullable=False)
    sport = Column(String(20), nullable=False, index=True)
    league_id = Column(String(36), ForeignKey("sports_leagues.id"), nullable=True, index=True)
    home_team_id = Column(String(36), ForeignKey("sports_teams.id"), nullable=True)
    away_team_id = Column(String(36), ForeignKey("sports_teams.id"), nullable=True)
    season = Column(String(20), nullable=True)
    round = Column(String(100), nullable=True)
    name = Column(String(255), nullable=True)
    venue = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    start_time = Column(DateTime, nullable=False, index=True)
    timezone = Column(String(50), nullable=False, default="UTC")
    status = Column(String(20), nullable=False, default="scheduled", index=True)
    status_detail = Column(String(100), nullable=True)
    elapsed_time = Column(Integer, nullable=True)

    home_score = Column(Integer, nullable=True)
    away_score = Column(Integer, nullable=True)
    home_score_halftime = Column(Integer, nullable=True)
    away_score_halftime = Column(Integer, nullable=True)
    home_score_extra = Column(Integer, nullable=True)
    away_score_extra = Column(Integer, nullable=True)
    home_score_penalty = Column(Integer, nullable=True)
    away_score_penalty = Column(Integer, nullable=True)

    referee = Column(String(255), nullable=True)
    attendance = Column(Integer, nullable=True)
    thumbnail_url = Column(String(500), nullable=True)
    stats = Column(JSON, nullable=False, default=dict)
    has_market = Column(Boolean, nullable=False, default=False)
    is_featured = Column(Boolean, nullable=False, default=False)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_sports_events_source_external_id"),
        Index("ix_sports_events_status_start", "status", "start_time"),
    )


class SportsMarket(Base):
    """Betting market attached to an event."""
    __tablename__ = "sports_markets"

    id = Column(String(36), primary_key=True)
    event_id = Column(String(36), ForeignKey("sports_events.id"), nullable=False, index=True)
    market_type = Column(String(30), nullable=False, default="match_winner")
    title = Column(String(255), nullable=False)
    question = Column(Text, nullable=False)
    outcomes = Column(JSON, nullable=False, default=list)
    outcome_prices = Column(JSON, nullable=False, default=list)
    volume = Column(Float, nullable=False, default=0.0)
    resolved = Column(Boolean, nullable=False, default=False)
    is_simulated = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# =============================================================================
# OPERATIONAL TABLES
# =============================================================================

class SportsSyncLog(Base):
    """One row per (source, sport, sync_type) run of the ETL orchestrator."""
    __tablename__ = "sports_sync_logs"

    id = Column(String(36), primary_key=True)
    source = Column(String(30), nullable=False, index=True)
    sport = Column(String(20), nullable=True)
    sync_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)  # running, completed, failed
    records_fetched = Column(Integer, nullable=False, default=0)
    records_created = Column(Integer, nullable=False, default=0)
    records_updated = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_sports_sync_logs_started_at", "started_at"),
    )


class DomainEventRecord(Base):
    """Append-only domain event log (audit trail / replay)."""
    __tablename__ = "domain_events"

    sequence_number = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(36), nullable=False, unique=True)
    event_type = Column(String(100), nullable=False, index=True)
    aggregate_id = Column(String(100), nullable=False, index=True)
    aggregate_type = Column(String(100), nullable=False, index=True)
    occurred_on = Column(DateTime, nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    stored_at = Column(DateTime, nullable=False, default=datetime.utcnow)


TABLES = {
    "sports_leagues": SportsLeague,
    "sports_teams": SportsTeam,
    "sports_events": SportsEvent,
    "sports_markets": SportsMarket,
    "sports_sync_logs": SportsSyncLog,
}
