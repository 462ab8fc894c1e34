"""
TheSportsDB payloads -> canonical records.

TheSportsDB is flat (``idEvent``, ``strHomeTeam``, ``intHomeScore``...) and
stringly typed: numbers arrive as strings, dates and times as separate
fields. Its ``strSport`` decides the SportKind.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sports_ingest.core.errors import TransformError
from sports_ingest.core.logging import get_logger
from sports_ingest.models.canonical import (
    CanonicalEvent,
    CanonicalLeague,
    CanonicalTeam,
    DataSource,
    EventStatus,
    SportKind,
)
from sports_ingest.services.clients.thesportsdb import detect_sport
from sports_ingest.services.transformers.api_sports import as_id, as_int, as_str
from sports_ingest.services.transformers.status import map_status

logger = get_logger(__name__)

PROVIDER = "thesportsdb"
SOURCE = DataSource.THESPORTSDB.value

Raw = Dict[str, Any]


def parse_event_datetime(date_str: Optional[str], time_str: Optional[str]) -> Optional[datetime]:
    """
    Combine ``dateEvent`` and ``strTime`` into a naive UTC datetime.

    A missing or unparsable time means midnight; a missing or unparsable
    date means None.

    Example:
        >>> parse_event_datetime("2025-03-01", "19:45:00")
        datetime.datetime(2025, 3, 1, 19, 45)
    """
    if not date_str:
        return None
    token = (time_str or "").split(" ")[0]
    clock = token[:5] if ":" in token else "00:00"
    try:
        return datetime.strptime(f"{date_str} {clock}", "%Y-%m-%d %H:%M")
    except ValueError:
        try:
            return datetime.strptime(date_str, "%Y-%m-%d")
        except ValueError:
            return None


def parse_event_status(status: Optional[str], postponed: Optional[str] = None) -> EventStatus:
    """``strPostponed == "yes"`` wins; otherwise the shared status table."""
    if (postponed or "").lower() == "yes":
        return EventStatus.POSTPONED
    return map_status(status)


def transform_league(data: Raw, sport: Optional[SportKind] = None) -> CanonicalLeague:
    external_id = as_id(data.get("idLeague"))
    name = as_str(data.get("strLeague"))
    if external_id is None or name is None:
        raise TransformError(PROVIDER, (sport or SportKind.FOOTBALL).value, external_id, "league has no id or name")

    metadata = {
        "trophy_url": data.get("strTrophy"),
        "description": data.get("strDescriptionEN"),
        "first_event_date": data.get("dateFirstEvent"),
        "website": data.get("strWebsite"),
        "current_season": data.get("strCurrentSeason"),
    }
    return CanonicalLeague(
        external_id=external_id,
        source=SOURCE,
        sport=sport or detect_sport(data.get("strSport")),
        name=name,
        name_alternate=as_str(data.get("strLeagueAlternate")),
        country=as_str(data.get("strCountry")),
        logo_url=as_str(data.get("strBadge")),
        banner_url=as_str(data.get("strBanner")),
        season_current=as_str(data.get("strCurrentSeason")),
        metadata={k: v for k, v in metadata.items() if v},
    )


def transform_team(data: Raw) -> CanonicalTeam:
    external_id = as_id(data.get("idTeam"))
    name = as_str(data.get("strTeam"))
    sport = detect_sport(data.get("strSport"))
    if external_id is None or name is None:
        raise TransformError(PROVIDER, sport.value, external_id, "team has no id or name")

    metadata = {
        "stadium_capacity": as_int(data.get("intStadiumCapacity")),
        "primary_color": data.get("strColour1"),
        "secondary_color": data.get("strColour2"),
        "founded_year": as_int(data.get("intFormedYear")),
        "name_alternate": data.get("strTeamAlternate"),
    }
    return CanonicalTeam(
        external_id=external_id,
        source=SOURCE,
        sport=sport,
        name=name,
        league_external_id=as_id(data.get("idLeague")),
        name_short=as_str(data.get("strTeamShort")),
        country=as_str(data.get("strCountry")),
        stadium=as_str(data.get("strStadium")),
        logo_url=as_str(data.get("strBadge") or data.get("strTeamBadge")),
        metadata={k: v for k, v in metadata.items() if v},
    )


def _names(data: Raw) -> Dict[str, Any]:
    metadata = {
        "home_team_name": data.get("strHomeTeam"),
        "home_team_logo": data.get("strHomeTeamBadge"),
        "away_team_name": data.get("strAwayTeam"),
        "away_team_logo": data.get("strAwayTeamBadge"),
        "league_name": data.get("strLeague"),
    }
    return {k: v for k, v in metadata.items() if v}


def transform_event(data: Raw) -> CanonicalEvent:
    external_id = as_id(data.get("idEvent"))
    sport = detect_sport(data.get("strSport"))
    start = parse_event_datetime(data.get("dateEvent"), data.get("strTime"))
    if external_id is None:
        raise TransformError(PROVIDER, sport.value, None, "event has no id")
    if start is None:
        raise TransformError(PROVIDER, sport.value, external_id, "event has no usable date")

    return CanonicalEvent(
        external_id=external_id,
        source=SOURCE,
        sport=sport,
        start_time=start,
        status=parse_event_status(data.get("strStatus"), data.get("strPostponed")),
        league_external_id=as_id(data.get("idLeague")),
        home_team_external_id=as_id(data.get("idHomeTeam")),
        away_team_external_id=as_id(data.get("idAwayTeam")),
        season=as_str(data.get("strSeason")),
        round=as_str(data.get("intRound")),
        name=as_str(data.get("strEvent")),
        venue=as_str(data.get("strVenue")),
        city=as_str(data.get("strCity")),
        country=as_str(data.get("strCountry")),
        status_detail=as_str(data.get("strStatus")),
        home_score=as_int(data.get("intHomeScore")),
        away_score=as_int(data.get("intAwayScore")),
        attendance=as_int(data.get("intSpectators")),
        thumbnail_url=as_str(data.get("strThumb")),
        metadata=_names(data),
    )


def transform_live_score(data: Raw, now: Optional[datetime] = None) -> CanonicalEvent:
    """
    v2 livescore record.

    The record is in play by definition. When it carries no kickoff date the
    start time is set to ``now`` and flagged with ``start_time_estimated`` so
    the upsert keeps an already stored start time.
    """
    external_id = as_id(data.get("idEvent"))
    sport = detect_sport(data.get("strSport"))
    if external_id is None:
        raise TransformError(PROVIDER, sport.value, None, "live score has no event id")

    metadata = _names(data)
    start = parse_event_datetime(data.get("dateEvent"), data.get("strEventTime"))
    if start is None:
        start = now or datetime.utcnow()
        metadata["start_time_estimated"] = True

    status = map_status(data.get("strStatus"))
    if status == EventStatus.SCHEDULED:
        status = EventStatus.LIVE

    return CanonicalEvent(
        external_id=external_id,
        source=SOURCE,
        sport=sport,
        start_time=start,
        status=status,
        league_external_id=as_id(data.get("idLeague")),
        home_team_external_id=as_id(data.get("idHomeTeam")),
        away_team_external_id=as_id(data.get("idAwayTeam")),
        name=as_str(data.get("strEvent")),
        status_detail=as_str(data.get("strStatus")),
        elapsed_time=as_int(data.get("strProgress")),
        home_score=as_int(data.get("intHomeScore")),
        away_score=as_int(data.get("intAwayScore")),
        stats={"progress": data["strProgress"]} if data.get("strProgress") else {},
        metadata=metadata,
    )


def _transform_all(records: Iterable[Raw], fn, kind: str) -> Tuple[List[Any], int]:
    results, errors = [], 0
    for data in records or []:
        try:
            results.append(fn(data))
        except TransformError as e:
            errors += 1
            logger.warning(f"Skipping {kind}: {e}")
        except (TypeError, ValueError, AttributeError) as e:
            errors += 1
            record_id = data.get("idEvent") or data.get("idTeam") or data.get("idLeague") if isinstance(data, dict) else None
            logger.warning(f"Skipping {kind}: {TransformError(PROVIDER, '?', record_id, str(e))}")
    return results, errors


def transform_events(records: Iterable[Raw]) -> Tuple[List[CanonicalEvent], int]:
    return _transform_all(records, transform_event, "event")


def transform_live_scores(records: Iterable[Raw], premium: bool = True) -> Tuple[List[CanonicalEvent], int]:
    """Premium livescore records, or free-tier ``latestsoccer`` records in the event shape."""
    return _transform_all(records, transform_live_score if premium else transform_event, "live score")


def transform_leagues(records: Iterable[Raw], sport: Optional[SportKind] = None) -> Tuple[List[CanonicalLeague], int]:
    return _transform_all(records, lambda d: transform_league(d, sport), "league")


def transform_teams(records: Iterable[Raw]) -> Tuple[List[CanonicalTeam], int]:
    return _transform_all(records, transform_team, "team")
