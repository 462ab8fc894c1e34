"""
Provider status vocabulary -> canonical EventStatus.

Lookups are case-insensitive. Unknown or missing codes map to SCHEDULED so a
new provider code degrades gracefully instead of breaking ingestion.
"""
from typing import Any, Dict, Optional

from sports_ingest.models.canonical import EventStatus

_STATUS_CODES = {
    EventStatus.SCHEDULED: (
        "ns", "tbd", "scheduled", "not started", "time to be defined",
    ),
    EventStatus.LIVE: (
        "1h", "2h", "et", "bt", "p", "live", "in progress", "inplay",
        "q1", "q2", "q3", "q4", "ot", "ongoing",
    ),
    EventStatus.HALFTIME: (
        "ht", "halftime", "half time", "break",
    ),
    EventStatus.FINISHED: (
        "ft", "aet", "pen", "finished", "ended", "final", "complete", "completed",
        "match finished", "after over time", "after penalties",
    ),
    EventStatus.POSTPONED: (
        "pst", "post", "pp", "postponed", "susp", "suspended", "int", "interrupted", "delayed",
    ),
    EventStatus.CANCELLED: (
        "canc", "cancelled", "canceled", "abd", "abandoned", "awd", "wo", "walkover",
    ),
}

STATUS_TABLE: Dict[str, EventStatus] = {
    code: status for status, codes in _STATUS_CODES.items() for code in codes
}

# API-NBA v2 numeric status.short
NBA_STATUS_CODES: Dict[int, EventStatus] = {
    1: EventStatus.SCHEDULED,
    2: EventStatus.LIVE,
    3: EventStatus.FINISHED,
}


def map_status(code: Optional[Any]) -> EventStatus:
    """
    Map a provider status code to EventStatus.

    Example:
        >>> map_status("FT")
        <EventStatus.FINISHED: 'finished'>
        >>> map_status("WHATEVER")
        <EventStatus.SCHEDULED: 'scheduled'>
    """
    if code is None:
        return EventStatus.SCHEDULED
    return STATUS_TABLE.get(str(code).strip().lower(), EventStatus.SCHEDULED)


def map_nba_status(code: Optional[Any], long_name: Optional[str] = None) -> EventStatus:
    """Map API-NBA numeric codes, falling back to the text table for the long name."""
    try:
        return NBA_STATUS_CODES[int(code)]
    except (TypeError, ValueError, KeyError):
        return map_status(long_name)
