"""
API-Sports payloads -> canonical records.

Every sport shares the API-Sports envelope but not the record shape: football
nests ``fixture``/``goals``/``score``, NBA says ``visitors`` instead of
``away``, MMA has fighters instead of teams, F1 races have no teams at all,
AFL scores goals and behinds, volleyball scores sets. Each shape gets one pure
function, selected by ``SportKind`` from ``EVENT_TRANSFORMERS``; sports
without a dedicated entry use ``transform_generic_game``.

Functions never raise for missing optional fields. A record without an id or
start time is malformed and raises ``TransformError``; ``transform_events``
skips such records and keeps the batch.

Example:
    events, errors = transform_events(raw_games, SportKind.NBA)
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sports_ingest.core.errors import TransformError
from sports_ingest.core.logging import get_logger
from sports_ingest.models.canonical import (
    APISPORTS_SOURCES,
    CanonicalEvent,
    CanonicalLeague,
    CanonicalTeam,
    EventStatus,
    SportKind,
)
from sports_ingest.services.transformers.status import map_nba_status, map_status

logger = get_logger(__name__)

PROVIDER = "apisports"

Raw = Dict[str, Any]


# ============================================================================
# FIELD HELPERS
# ============================================================================

def dig(data: Any, *path: str) -> Any:
    """Nested lookup that returns None as soon as a level is missing or not a dict."""
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def first(*values: Any) -> Any:
    """First value that is not None or empty string."""
    for value in values:
        if value is not None and value != "":
            return value
    return None


def as_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def as_int(value: Any) -> Optional[int]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def as_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def parse_datetime(value: Any = None, timestamp: Any = None) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (or a unix timestamp) into a naive UTC datetime.

    Returns None when neither is usable.
    """
    parsed = None
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
    if parsed is None and timestamp not in (None, ""):
        try:
            parsed = datetime.fromtimestamp(float(timestamp), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            parsed = None
    if parsed is None:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _country(data: Raw) -> Optional[str]:
    country = data.get("country")
    return as_str(country.get("name")) if isinstance(country, dict) else as_str(country)


def _require(record_id: Optional[str], start: Optional[datetime], sport: SportKind) -> None:
    if record_id is None:
        raise TransformError(PROVIDER, sport.value, None, "record has no id")
    if start is None:
        raise TransformError(PROVIDER, sport.value, record_id, "record has no usable start time")


def _team_metadata(home: Optional[Raw], away: Optional[Raw], league: Optional[Raw]) -> Dict[str, Any]:
    metadata = {
        "home_team_name": dig(home, "name"),
        "home_team_logo": dig(home, "logo"),
        "away_team_name": dig(away, "name"),
        "away_team_logo": dig(away, "logo"),
        "league_name": dig(league, "name"),
        "league_logo": dig(league, "logo"),
    }
    return {k: v for k, v in metadata.items() if v is not None}


def _matchup(home: Optional[str], away: Optional[str], sep: str = "vs") -> Optional[str]:
    if not home and not away:
        return None
    return f"{home or 'Home'} {sep} {away or 'Away'}"


# ============================================================================
# EVENT TRANSFORMERS
# ============================================================================

def transform_football_fixture(data: Raw, sport: SportKind = SportKind.FOOTBALL) -> CanonicalEvent:
    """API-Football ``/fixtures`` record."""
    fixture = data.get("fixture") or {}
    league = data.get("league") or {}
    home = dig(data, "teams", "home") or {}
    away = dig(data, "teams", "away") or {}

    external_id = as_id(first(fixture.get("id"), data.get("id")))
    start = parse_datetime(first(fixture.get("date"), data.get("date")), fixture.get("timestamp"))
    _require(external_id, start, sport)

    return CanonicalEvent(
        external_id=external_id,
        source=APISPORTS_SOURCES[sport].value,
        sport=sport,
        start_time=start,
        status=map_status(first(dig(fixture, "status", "short"), data.get("status"))),
        league_external_id=as_id(league.get("id")),
        home_team_external_id=as_id(home.get("id")),
        away_team_external_id=as_id(away.get("id")),
        season=as_str(league.get("season")),
        round=as_str(league.get("round")),
        name=_matchup(home.get("name"), away.get("name")),
        venue=as_str(dig(fixture, "venue", "name")),
        city=as_str(dig(fixture, "venue", "city")),
        country=as_str(league.get("country")),
        timezone=fixture.get("timezone") or "UTC",
        status_detail=as_str(dig(fixture, "status", "long")),
        elapsed_time=as_int(dig(fixture, "status", "elapsed")),
        home_score=as_int(dig(data, "goals", "home")),
        away_score=as_int(dig(data, "goals", "away")),
        home_score_halftime=as_int(dig(data, "score", "halftime", "home")),
        away_score_halftime=as_int(dig(data, "score", "halftime", "away")),
        home_score_extra=as_int(dig(data, "score", "extratime", "home")),
        away_score_extra=as_int(dig(data, "score", "extratime", "away")),
        home_score_penalty=as_int(dig(data, "score", "penalty", "home")),
        away_score_penalty=as_int(dig(data, "score", "penalty", "away")),
        referee=as_str(fixture.get("referee")),
        metadata=_team_metadata(home, away, league),
    )


def transform_nba_game(data: Raw, sport: SportKind = SportKind.NBA) -> CanonicalEvent:
    """API-NBA v2 ``/games`` record (``visitors`` instead of ``away``, numeric status)."""
    home = dig(data, "teams", "home") or {}
    away = dig(data, "teams", "visitors") or {}
    arena = data.get("arena") or {}

    external_id = as_id(data.get("id"))
    start = parse_datetime(dig(data, "date", "start"))
    _require(external_id, start, sport)

    league = data.get("league")
    stats = {k: v for k, v in (("periods", data.get("periods")), ("scores", data.get("scores"))) if v}
    return CanonicalEvent(
        external_id=external_id,
        source=APISPORTS_SOURCES[sport].value,
        sport=sport,
        start_time=start,
        status=map_nba_status(dig(data, "status", "short"), dig(data, "status", "long")),
        # API-NBA leagues are slugs ("standard", "africa", ...)
        league_external_id=as_id(league) if isinstance(league, str) else None,
        home_team_external_id=as_id(home.get("id")),
        away_team_external_id=as_id(away.get("id")),
        season=as_str(data.get("season")),
        name=_matchup(away.get("name"), home.get("name"), "@"),
        venue=as_str(arena.get("name")),
        city=as_str(arena.get("city")),
        country=as_str(arena.get("country")),
        status_detail=as_str(dig(data, "status", "long")),
        elapsed_time=as_int(dig(data, "status", "clock")),
        home_score=as_int(dig(data, "scores", "home", "points")),
        away_score=as_int(dig(data, "scores", "visitors", "points")),
        stats=stats,
        metadata=_team_metadata(home, away, None),
    )


def transform_f1_race(data: Raw, sport: SportKind = SportKind.FORMULA1) -> CanonicalEvent:
    """API-Formula-1 ``/races`` record. Races have no home/away teams."""
    competition = data.get("competition") or {}
    circuit = data.get("circuit") or {}

    external_id = as_id(data.get("id"))
    start = parse_datetime(data.get("date"))
    _require(external_id, start, sport)

    metadata = {
        "competition_name": competition.get("name"),
        "circuit": circuit or None,
        "laps": data.get("laps"),
        "distance": data.get("distance"),
        "race_type": data.get("type"),
    }
    return CanonicalEvent(
        external_id=external_id,
        source=APISPORTS_SOURCES[sport].value,
        sport=sport,
        start_time=start,
        status=map_status(data.get("status")),
        league_external_id=as_id(competition.get("id")),
        season=as_str(data.get("season")),
        round=as_str(data.get("round")),
        name=as_str(first(competition.get("name"), data.get("name"))),
        venue=as_str(circuit.get("name")),
        city=as_str(first(dig(competition, "location", "city"), circuit.get("city"))),
        country=as_str(first(dig(competition, "location", "country"), dig(competition, "country", "name"))),
        timezone=data.get("timezone") or "UTC",
        thumbnail_url=as_str(circuit.get("image")),
        metadata={k: v for k, v in metadata.items() if v is not None},
    )


def transform_afl_game(data: Raw, sport: SportKind = SportKind.AFL) -> CanonicalEvent:
    """API-AFL ``/games`` record. Scores are points plus goals/behinds detail."""
    league = data.get("league") or {}
    home = dig(data, "teams", "home") or {}
    away = dig(data, "teams", "away") or {}
    venue = data.get("venue")

    external_id = as_id(first(dig(data, "game", "id"), data.get("id")))
    start = parse_datetime(first(dig(data, "game", "date"), data.get("date")), data.get("timestamp"))
    _require(external_id, start, sport)

    metadata = _team_metadata(home, away, league)
    for side in ("home", "away"):
        for part in ("goals", "behinds"):
            value = as_int(dig(data, "scores", side, part))
            if value is not None:
                metadata[f"{side}_{part}"] = value

    quarters = first(data.get("periods"), data.get("quarters"))
    return CanonicalEvent(
        external_id=external_id,
        source=APISPORTS_SOURCES[sport].value,
        sport=sport,
        start_time=start,
        status=map_status(first(dig(data, "status", "short"), data.get("status"))),
        league_external_id=as_id(league.get("id")),
        home_team_external_id=as_id(home.get("id")),
        away_team_external_id=as_id(away.get("id")),
        season=as_str(first(data.get("season"), league.get("season"))),
        round=as_str(first(data.get("week"), data.get("round"))),
        name=_matchup(home.get("name"), away.get("name")),
        venue=as_str(venue.get("name")) if isinstance(venue, dict) else as_str(venue),
        city=as_str(dig(venue, "city")),
        country=_country(data),
        timezone=data.get("timezone") or "UTC",
        status_detail=as_str(dig(data, "status", "long")),
        elapsed_time=as_int(first(dig(data, "status", "timer"), dig(data, "time", "elapsed"))),
        home_score=as_int(first(dig(data, "scores", "home", "score"), dig(data, "scores", "home", "total"))),
        away_score=as_int(first(dig(data, "scores", "away", "score"), dig(data, "scores", "away", "total"))),
        attendance=as_int(data.get("attendance")),
        stats={"quarters": quarters} if quarters else {},
        metadata=metadata,
    )


def _fighter_name(fighter: Optional[Raw]) -> Optional[str]:
    if not fighter:
        return None
    if fighter.get("name"):
        return fighter["name"]
    full = f"{fighter.get('firstname') or ''} {fighter.get('lastname') or ''}".strip()
    return full or None


def _fighter_card(fighter: Optional[Raw], name: Optional[str]) -> Dict[str, Any]:
    fighter = fighter or {}
    card = {
        "id": fighter.get("id"),
        "name": name,
        "nickname": fighter.get("nickname"),
        "country": fighter.get("country"),
        "record": fighter.get("record"),
        "image": fighter.get("image") or fighter.get("logo"),
        "winner": fighter.get("winner"),
    }
    return {k: v for k, v in card.items() if v is not None}


def transform_mma_fight(data: Raw, sport: SportKind = SportKind.MMA) -> CanonicalEvent:
    """
    API-MMA ``/fights`` record.

    ``fighters`` is either a list or a ``{first, second}`` pair; the first
    fighter is stored as home and the second as away.
    """
    fighters = data.get("fighters")
    if isinstance(fighters, list):
        fighter1 = fighters[0] if len(fighters) > 0 else None
        fighter2 = fighters[1] if len(fighters) > 1 else None
    elif isinstance(fighters, dict):
        fighter1, fighter2 = fighters.get("first"), fighters.get("second")
    else:
        fighter1 = fighter2 = None
    fighter1 = fighter1 or dig(data, "teams", "home")
    fighter2 = fighter2 or dig(data, "teams", "away")

    external_id = as_id(data.get("id"))
    start = parse_datetime(data.get("date"), data.get("timestamp"))
    _require(external_id, start, sport)

    name1, name2 = _fighter_name(fighter1), _fighter_name(fighter2)
    league = data.get("league") or {}
    result = data.get("result") or {}
    venue = data.get("venue")
    weight_class = first(dig(data, "weight", "name"), data.get("weight_class"), data.get("category"))

    if dig(data, "status", "long") == "Finished":
        status = EventStatus.FINISHED
    else:
        status = map_status(first(dig(data, "status", "short"), data.get("status")))

    metadata = {
        "home_team_name": name1,
        "home_team_logo": dig(fighter1, "image") or dig(fighter1, "logo"),
        "away_team_name": name2,
        "away_team_logo": dig(fighter2, "image") or dig(fighter2, "logo"),
        "fighter1": _fighter_card(fighter1, name1),
        "fighter2": _fighter_card(fighter2, name2),
        "league_name": first(league.get("name"), data.get("slug"), data.get("category")),
        "category": data.get("category"),
        "weight_class": weight_class,
        "is_main_event": bool(data.get("main_event") or data.get("is_main")),
        "is_title_fight": bool(data.get("title_fight")),
        "winner": result.get("winner"),
        "method": result.get("method"),
    }
    stats = {"rounds": data.get("rounds"), "weight_class": weight_class, "result": result or None}
    return CanonicalEvent(
        external_id=external_id,
        source=APISPORTS_SOURCES[sport].value,
        sport=sport,
        start_time=start,
        status=status,
        league_external_id=as_id(league.get("id")),
        home_team_external_id=as_id(dig(fighter1, "id")),
        away_team_external_id=as_id(dig(fighter2, "id")),
        season=as_str(data.get("season")),
        name=_matchup(name1, name2),
        venue=as_str(first(dig(venue, "name"), dig(data, "location", "venue"), venue if isinstance(venue, str) else None)),
        city=as_str(first(dig(data, "location", "city"), dig(venue, "city"))),
        country=as_str(first(dig(data, "location", "country"), data.get("country") if isinstance(data.get("country"), str) else None)),
        timezone=data.get("timezone") or "UTC",
        status_detail=as_str(first(dig(data, "status", "long"), result.get("method"))),
        elapsed_time=as_int(first(dig(data, "status", "elapsed"), result.get("time_seconds"))),
        referee=as_str(dig(data, "referee", "name")),
        thumbnail_url=as_str(first(dig(fighter1, "image"), dig(fighter2, "image"))),
        stats={k: v for k, v in stats.items() if v is not None},
        metadata={k: v for k, v in metadata.items() if v not in (None, {})},
    )


_SET_ORDINALS = ("first", "second", "third", "fourth", "fifth")


def transform_volleyball_game(data: Raw, sport: SportKind = SportKind.VOLLEYBALL) -> CanonicalEvent:
    """API-Volleyball ``/games`` record. The score is sets won; set points go to metadata."""
    league = data.get("league") or {}
    home = dig(data, "teams", "home") or {}
    away = dig(data, "teams", "away") or {}
    venue = data.get("venue")

    external_id = as_id(data.get("id"))
    start = parse_datetime(data.get("date"), data.get("timestamp"))
    _require(external_id, start, sport)

    metadata = _team_metadata(home, away, league)
    periods = data.get("periods") or {}
    for n, ordinal in enumerate(_SET_ORDINALS, start=1):
        key = f"set{n}"
        home_points = first(dig(data, "scores", "home", key), dig(periods, ordinal, "home"))
        away_points = first(dig(data, "scores", "away", key), dig(periods, ordinal, "away"))
        if home_points is not None or away_points is not None:
            metadata[key] = {"home": as_int(home_points), "away": as_int(away_points)}

    sets = first(data.get("periods"), data.get("sets"))
    current_set = dig(data, "status", "set_in_progress")
    return CanonicalEvent(
        external_id=external_id,
        source=APISPORTS_SOURCES[sport].value,
        sport=sport,
        start_time=start,
        status=map_status(first(dig(data, "status", "short"), data.get("status"))),
        league_external_id=as_id(league.get("id")),
        home_team_external_id=as_id(home.get("id")),
        away_team_external_id=as_id(away.get("id")),
        season=as_str(first(data.get("season"), league.get("season"))),
        round=as_str(first(data.get("week"), data.get("round"))),
        name=_matchup(home.get("name"), away.get("name")),
        venue=as_str(venue.get("name")) if isinstance(venue, dict) else as_str(venue),
        city=as_str(dig(venue, "city")),
        country=_country(data),
        timezone=data.get("timezone") or "UTC",
        status_detail=as_str(dig(data, "status", "long")),
        elapsed_time=as_int(current_set),
        home_score=as_int(dig(data, "scores", "home") if not isinstance(dig(data, "scores", "home"), dict)
                          else dig(data, "scores", "home", "total")),
        away_score=as_int(dig(data, "scores", "away") if not isinstance(dig(data, "scores", "away"), dict)
                          else dig(data, "scores", "away", "total")),
        stats={k: v for k, v in (("sets", sets), ("current_set", current_set)) if v is not None},
        metadata=metadata,
    )


def transform_generic_game(data: Raw, sport: SportKind) -> CanonicalEvent:
    """
    Shared ``/games`` shape (basketball, hockey, handball, rugby, baseball, NFL).

    Totals come from ``scores.<side>.total`` (or a bare number); the
    per-period breakdown is kept in metadata.
    """
    league = data.get("league") or {}
    home = dig(data, "teams", "home") or {}
    away = dig(data, "teams", "away") or {}
    game = data.get("game") if isinstance(data.get("game"), dict) else {}
    arena = data.get("arena") or {}
    venue = first(game.get("venue"), data.get("venue"))

    external_id = as_id(first(game.get("id"), data.get("id")))
    date_value = first(dig(game, "date", "date"), data.get("date"))
    if isinstance(date_value, dict):
        date_value = date_value.get("date")
    start = parse_datetime(date_value, first(dig(game, "date", "timestamp"), data.get("timestamp")))
    _require(external_id, start, sport)

    def total(side: str) -> Optional[int]:
        score = dig(data, "scores", side)
        if isinstance(score, dict):
            return as_int(score.get("total"))
        return as_int(score)

    metadata = _team_metadata(home, away, league)
    home_scores = dig(data, "scores", "home")
    if isinstance(home_scores, dict):
        periods = {
            side: {k: v for k, v in (dig(data, "scores", side) or {}).items() if k != "total" and v is not None}
            for side in ("home", "away")
        }
        if periods["home"] or periods["away"]:
            metadata["periods"] = periods
    status = first(dig(data, "status", "short"), dig(game, "status", "short"), data.get("status") if isinstance(data.get("status"), str) else None)

    return CanonicalEvent(
        external_id=external_id,
        source=APISPORTS_SOURCES[sport].value,
        sport=sport,
        start_time=start,
        status=map_status(status),
        league_external_id=as_id(league.get("id")),
        home_team_external_id=as_id(home.get("id")),
        away_team_external_id=as_id(away.get("id")),
        season=as_str(first(data.get("season"), league.get("season"))),
        round=as_str(first(data.get("week"), game.get("week"), data.get("round"))),
        name=_matchup(home.get("name"), away.get("name")),
        venue=as_str(first(arena.get("name"), dig(venue, "name"), venue if isinstance(venue, str) else None)),
        city=as_str(first(arena.get("city"), dig(venue, "city"), data.get("city"))),
        country=_country(data) or _country(league),
        timezone=data.get("timezone") or "UTC",
        status_detail=as_str(first(dig(data, "status", "long"), dig(game, "status", "long"))),
        elapsed_time=as_int(first(dig(data, "status", "timer"), data.get("timer"))),
        home_score=total("home"),
        away_score=total("away"),
        metadata=metadata,
    )


EventTransformer = Callable[[Raw, SportKind], CanonicalEvent]

EVENT_TRANSFORMERS: Dict[SportKind, EventTransformer] = {
    SportKind.FOOTBALL: transform_football_fixture,
    SportKind.NBA: transform_nba_game,
    SportKind.FORMULA1: transform_f1_race,
    SportKind.AFL: transform_afl_game,
    SportKind.MMA: transform_mma_fight,
    SportKind.VOLLEYBALL: transform_volleyball_game,
}


def transform_game(data: Raw, sport: SportKind) -> CanonicalEvent:
    """Dispatch one raw game to its sport's transformer (generic fallback)."""
    return EVENT_TRANSFORMERS.get(sport, transform_generic_game)(data, sport)


# ============================================================================
# LEAGUES AND TEAMS
# ============================================================================

def transform_league(data: Any, sport: SportKind) -> CanonicalLeague:
    """
    League record for any sport.

    Handles the football ``{league, country, seasons}`` envelope, NBA's bare
    league slugs and the generic ``{id, name, logo, country}`` shape.
    """
    source = APISPORTS_SOURCES[sport].value

    if isinstance(data, str):
        return CanonicalLeague(
            external_id=data,
            source=source,
            sport=sport,
            name=f"NBA {data.capitalize()}",
            country="USA",
            country_code="US",
            is_featured=data == "standard",
            metadata={"type": "League"},
        )

    if not isinstance(data, dict):
        raise TransformError(PROVIDER, sport.value, None, f"unexpected league payload {type(data).__name__}")

    league = data.get("league") if isinstance(data.get("league"), dict) else data
    external_id = as_id(league.get("id"))
    name = as_str(league.get("name"))
    if external_id is None or name is None:
        raise TransformError(PROVIDER, sport.value, external_id, "league has no id or name")

    country = data.get("country")
    seasons = data.get("seasons") or []
    current = next((s for s in seasons if isinstance(s, dict) and s.get("current")), None)
    metadata = {
        "type": league.get("type"),
        "country_flag": dig(country, "flag"),
        "seasons": [s.get("season") if isinstance(s, dict) else s for s in seasons] or None,
    }
    return CanonicalLeague(
        external_id=external_id,
        source=source,
        sport=sport,
        name=name,
        name_alternate=as_str(league.get("name_alternate")),
        country=as_str(country.get("name")) if isinstance(country, dict) else as_str(country),
        country_code=as_str(dig(country, "code")),
        logo_url=as_str(league.get("logo")),
        season_current=as_str(dig(current, "season")),
        metadata={k: v for k, v in metadata.items() if v is not None},
    )


def transform_team(data: Raw, sport: SportKind, league_external_id: Optional[str] = None) -> CanonicalTeam:
    """
    Team record (or fighter for MMA).

    Football nests ``{team, venue}``; MMA fighters carry weight class and
    record; everything else is the generic ``{id, name, logo, country}`` shape.
    """
    source = APISPORTS_SOURCES[sport].value
    if not isinstance(data, dict):
        raise TransformError(PROVIDER, sport.value, None, f"unexpected team payload {type(data).__name__}")

    if sport == SportKind.MMA:
        external_id = as_id(data.get("id"))
        name = _fighter_name(data)
        if external_id is None or name is None:
            raise TransformError(PROVIDER, sport.value, external_id, "fighter has no id or name")
        metadata = {"weight_class": dig(data, "category") or data.get("weight_class"), "record": data.get("record")}
        return CanonicalTeam(
            external_id=external_id,
            source=source,
            sport=sport,
            name=name,
            league_external_id=league_external_id,
            name_short=as_str(data.get("nickname")),
            country=_country(data),
            logo_url=as_str(first(data.get("photo"), data.get("image"))),
            metadata={k: v for k, v in metadata.items() if v is not None},
        )

    team = data.get("team") if isinstance(data.get("team"), dict) else data
    venue = data.get("venue") if isinstance(data.get("venue"), dict) else {}
    arena = data.get("arena") if isinstance(data.get("arena"), dict) else {}
    external_id = as_id(team.get("id"))
    name = as_str(team.get("name"))
    if external_id is None or name is None:
        raise TransformError(PROVIDER, sport.value, external_id, "team has no id or name")

    metadata = {
        "national": team.get("national"),
        "founded": team.get("founded"),
        "venue_capacity": first(venue.get("capacity"), arena.get("capacity")),
    }
    return CanonicalTeam(
        external_id=external_id,
        source=source,
        sport=sport,
        name=name,
        league_external_id=league_external_id,
        name_short=as_str(first(team.get("code"), team.get("nickname"))),
        country=_country(team),
        city=as_str(first(venue.get("city"), arena.get("city"), team.get("city"))),
        stadium=as_str(first(venue.get("name"), arena.get("name"))),
        logo_url=as_str(team.get("logo")),
        metadata={k: v for k, v in metadata.items() if v is not None},
    )


def embedded_teams(event: CanonicalEvent) -> List[CanonicalTeam]:
    """
    Team stubs for the teams an event references.

    Game payloads embed id, name and logo for both sides; upserting these
    before the event lets its team references resolve in the same cycle.
    """
    teams = []
    for side in ("home", "away"):
        external_id = getattr(event, f"{side}_team_external_id")
        name = event.metadata.get(f"{side}_team_name")
        if external_id and name:
            teams.append(CanonicalTeam(
                external_id=external_id,
                source=event.source,
                sport=event.sport,
                name=name,
                league_external_id=event.league_external_id,
                logo_url=event.metadata.get(f"{side}_team_logo"),
            ))
    return teams


# ============================================================================
# BATCH HELPERS
# ============================================================================

def _record_id(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        return as_id(first(dig(data, "fixture", "id"), dig(data, "game", "id"), dig(data, "league", "id"),
                           dig(data, "team", "id"), data.get("id")))
    return as_id(data)


def _transform_all(records: Iterable[Any], sport: SportKind, fn: Callable[[Any], Any], kind: str) -> Tuple[List[Any], int]:
    results, errors = [], 0
    for data in records or []:
        try:
            results.append(fn(data))
        except TransformError as e:
            errors += 1
            logger.warning(f"Skipping {kind}: {e}")
        except (TypeError, ValueError, AttributeError, KeyError) as e:
            errors += 1
            logger.warning(
                f"Skipping {kind}: {TransformError(PROVIDER, sport.value, _record_id(data), str(e))}"
            )
    return results, errors


def transform_events(records: Iterable[Raw], sport: SportKind) -> Tuple[List[CanonicalEvent], int]:
    """
    Transform a batch of raw games, skipping malformed records.

    Returns:
        (events, number of skipped records)
    """
    return _transform_all(records, sport, lambda d: transform_game(d, sport), "game")


def transform_leagues(records: Iterable[Any], sport: SportKind) -> Tuple[List[CanonicalLeague], int]:
    return _transform_all(records, sport, lambda d: transform_league(d, sport), "league")


def transform_teams(records: Iterable[Raw], sport: SportKind,
                    league_external_id: Optional[str] = None) -> Tuple[List[CanonicalTeam], int]:
    return _transform_all(records, sport, lambda d: transform_team(d, sport, league_external_id), "team")
