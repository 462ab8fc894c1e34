"""
Canonical entity model shared by every ingestion stage.

Provider payloads are mapped into these dataclasses by the transformers;
dedup, upsert and the event layer only ever see this shape. Identity is
``(source, external_id)`` for every entity type; internal storage IDs are
assigned by the store at first insert.
"""
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SportKind(str, Enum):
    """Sports the ingestion core knows how to fetch and transform."""
    FOOTBALL = "football"
    BASEBALL = "baseball"
    BASKETBALL = "basketball"
    AFL = "afl"
    FORMULA1 = "formula1"
    HANDBALL = "handball"
    HOCKEY = "hockey"
    MMA = "mma"
    NBA = "nba"
    NFL = "nfl"
    RUGBY = "rugby"
    VOLLEYBALL = "volleyball"

    @classmethod
    def parse(cls, value: "str | SportKind") -> "SportKind":
        """Parse a sport name, raising ValueError for unknown sports."""
        if isinstance(value, SportKind):
            return value
        return cls(str(value).strip().lower())


class EventStatus(str, Enum):
    """
    Canonical event lifecycle.

    SCHEDULED -> LIVE -> HALFTIME -> FINISHED, with POSTPONED and CANCELLED
    reachable from SCHEDULED or LIVE.
    """
    SCHEDULED = "scheduled"
    LIVE = "live"
    HALFTIME = "halftime"
    FINISHED = "finished"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({EventStatus.FINISHED, EventStatus.CANCELLED})
IN_PLAY_STATUSES = frozenset({EventStatus.LIVE, EventStatus.HALFTIME})


class DataSource(str, Enum):
    """Record provenance. One API-Sports source per sport endpoint."""
    APIFOOTBALL = "apifootball"
    APIBASEBALL = "apibaseball"
    APIBASKETBALL = "apibasketball"
    APIAFL = "apiafl"
    APIFORMULA1 = "apiformula1"
    APIHANDBALL = "apihandball"
    APIHOCKEY = "apihockey"
    APIMMA = "apimma"
    APINBA = "apinba"
    APINFL = "apinfl"
    APIRUGBY = "apirugby"
    APIVOLLEYBALL = "apivolleyball"
    THESPORTSDB = "thesportsdb"
    MANUAL = "manual"
    ETL_ORCHESTRATOR = "etl_orchestrator"


APISPORTS_SOURCES: Dict[SportKind, DataSource] = {
    SportKind.FOOTBALL: DataSource.APIFOOTBALL,
    SportKind.BASEBALL: DataSource.APIBASEBALL,
    SportKind.BASKETBALL: DataSource.APIBASKETBALL,
    SportKind.AFL: DataSource.APIAFL,
    SportKind.FORMULA1: DataSource.APIFORMULA1,
    SportKind.HANDBALL: DataSource.APIHANDBALL,
    SportKind.HOCKEY: DataSource.APIHOCKEY,
    SportKind.MMA: DataSource.APIMMA,
    SportKind.NBA: DataSource.APINBA,
    SportKind.NFL: DataSource.APINFL,
    SportKind.RUGBY: DataSource.APIRUGBY,
    SportKind.VOLLEYBALL: DataSource.APIVOLLEYBALL,
}

# Higher wins when two sources describe the same logical entity
SOURCE_PRIORITY: Dict[DataSource, int] = {
    **{source: 100 for source in APISPORTS_SOURCES.values()},
    DataSource.THESPORTSDB: 50,
    DataSource.MANUAL: 25,
    DataSource.ETL_ORCHESTRATOR: 0,
}


def source_priority(source: "str | DataSource") -> int:
    """Priority of a source; unknown sources rank lowest."""
    try:
        return SOURCE_PRIORITY[DataSource(source)]
    except ValueError:
        return 0


class _Mergeable:
    """Field-level helpers shared by the canonical dataclasses."""

    # Provider-scoped ids are meaningless in another source's namespace
    _UNMERGED = frozenset({
        "external_id", "source", "league_external_id",
        "home_team_external_id", "away_team_external_id",
    })

    def identity(self) -> str:
        return f"{self.source}:{self.external_id}"

    def fill_missing_from(self, other):
        """
        Return a copy with every empty field filled from ``other``.

        Metadata dicts are merged with this record's keys taking precedence.
        Identity and reference fields are never copied.
        """
        updates: Dict[str, Any] = {}
        for f in fields(self):
            if f.name in self._UNMERGED:
                continue
            mine = getattr(self, f.name)
            theirs = getattr(other, f.name, None)
            if f.name == "metadata":
                updates[f.name] = {**(theirs or {}), **(mine or {})}
            elif mine in (None, "", [], {}) and theirs not in (None, "", [], {}):
                updates[f.name] = theirs
        return replace(self, **updates)


@dataclass
class CanonicalLeague(_Mergeable):
    """A competition (league, tournament, series)."""
    external_id: str
    source: str
    sport: SportKind
    name: str
    name_alternate: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    logo_url: Optional[str] = None
    banner_url: Optional[str] = None
    season_current: Optional[str] = None
    is_active: bool = True
    is_featured: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CanonicalTeam(_Mergeable):
    """A team, or a fighter for combat sports."""
    external_id: str
    source: str
    sport: SportKind
    name: str
    league_external_id: Optional[str] = None
    name_short: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    stadium: Optional[str] = None
    logo_url: Optional[str] = None
    is_active: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CanonicalEvent(_Mergeable):
    """
    A scheduled, live or finished contest.

    League and team references are provider external IDs; the upsert engine
    resolves them to internal IDs and leaves them null when the referenced
    row has not been synced yet.
    """
    external_id: str
    source: str
    sport: SportKind
    start_time: datetime
    status: EventStatus = EventStatus.SCHEDULED
    league_external_id: Optional[str] = None
    home_team_external_id: Optional[str] = None
    away_team_external_id: Optional[str] = None
    season: Optional[str] = None
    round: Optional[str] = None
    name: Optional[str] = None
    venue: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    timezone: str = "UTC"
    status_detail: Optional[str] = None
    elapsed_time: Optional[int] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    home_score_halftime: Optional[int] = None
    away_score_halftime: Optional[int] = None
    home_score_extra: Optional[int] = None
    away_score_extra: Optional[int] = None
    home_score_penalty: Optional[int] = None
    away_score_penalty: Optional[int] = None
    referee: Optional[str] = None
    attendance: Optional[int] = None
    thumbnail_url: Optional[str] = None
    stats: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def home_team_name(self) -> Optional[str]:
        return self.metadata.get("home_team_name")

    @property
    def away_team_name(self) -> Optional[str]:
        return self.metadata.get("away_team_name")


@dataclass
class CanonicalMarket:
    """A betting market derived from an event."""
    event_id: str
    title: str
    question: str
    outcomes: List[str]
    outcome_prices: List[float]
    market_type: str = "match_winner"
    is_simulated: bool = False
    resolved: bool = False
