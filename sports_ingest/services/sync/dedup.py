"""
Deduplication and merge of canonical records across sources.

Records describing the same real-world entity are grouped by a match key and
collapsed to one survivor:

- League key: ``sport:country:name`` (by name) or ``source:external_id``
- Team key: ``sport:name`` (by name) or ``source:external_id``
- Event key: ``sport:YYYY-MM-DD:home:away`` using the team names, or the team
  ids when names are absent; ``source:external_id`` when neither is known

Records are visited highest source priority first. The first record per key
survives; a later one replaces it only when its priority is strictly higher.
Every collapsed duplicate fills the survivor's empty fields and is listed in
``metadata["merged_from"]``.

An optional fuzzy stage (rapidfuzz WRatio) additionally merges events on the
same sport and date whose home and away names both score above the threshold.
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from sports_ingest.core.logging import get_logger
from sports_ingest.models.canonical import (
    CanonicalEvent,
    CanonicalLeague,
    CanonicalTeam,
    source_priority,
)
from sports_ingest.services.sync.utils.name_normalizer import (
    DEFAULT_FUZZY_THRESHOLD,
    name_similarity,
    normalize_key,
)

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class DedupResult(Generic[T]):
    """
    Outcome of one dedup pass.

    Attributes:
        records: Survivors, in first-seen key order
        duplicates_found: Input records collapsed into another record
        merged_records: Survivors that absorbed at least one duplicate
    """
    records: List[T] = field(default_factory=list)
    duplicates_found: int = 0
    merged_records: int = 0


def league_key(league: CanonicalLeague, by_name: bool = True) -> str:
    if by_name:
        return f"{league.sport.value}:{normalize_key(league.country or '')}:{normalize_key(league.name)}"
    return league.identity()


def team_key(team: CanonicalTeam, by_name: bool = True) -> str:
    if by_name:
        return f"{team.sport.value}:{normalize_key(team.name)}"
    return team.identity()


def event_key(event: CanonicalEvent, by_name: bool = True) -> str:
    if by_name:
        home = normalize_key(event.home_team_name or event.home_team_external_id or "")
        away = normalize_key(event.away_team_name or event.away_team_external_id or "")
        if home or away:
            return f"{event.sport.value}:{event.start_time.date().isoformat()}:{home}:{away}"
    return event.identity()


def merge_records(primary: T, secondary: T) -> T:
    """
    ``primary`` with its empty fields filled from ``secondary``.

    Metadata is merged with the primary's keys winning, and
    ``merged_from`` accumulates the identities of every merged record.
    """
    merged = primary.fill_missing_from(secondary)
    sources = list(primary.metadata.get("merged_from", []))
    for identity in [secondary.identity(), *secondary.metadata.get("merged_from", [])]:
        if identity not in sources and identity != primary.identity():
            sources.append(identity)
    merged.metadata["merged_from"] = sources
    return merged


class Deduplicator:
    """
    Collapses duplicate canonical records within one ingestion cycle.

    Args:
        by_name: Match on normalized names instead of source identity
        fuzzy: Enable the fuzzy event-matching stage
        fuzzy_threshold: Minimum WRatio score for both team names

    Example:
        result = Deduplicator(by_name=True).deduplicate_events(events)
        engine.upsert_events(result.records)
    """

    def __init__(self, by_name: bool = True, fuzzy: bool = False,
                 fuzzy_threshold: int = DEFAULT_FUZZY_THRESHOLD):
        self.by_name = by_name
        self.fuzzy = fuzzy
        self.fuzzy_threshold = fuzzy_threshold

    def deduplicate_leagues(self, leagues: List[CanonicalLeague]) -> DedupResult[CanonicalLeague]:
        return self._collapse(leagues, lambda lg: league_key(lg, self.by_name))

    def deduplicate_teams(self, teams: List[CanonicalTeam], by_name: Optional[bool] = None) -> DedupResult[CanonicalTeam]:
        use_name = self.by_name if by_name is None else by_name
        return self._collapse(teams, lambda t: team_key(t, use_name))

    def deduplicate_events(self, events: List[CanonicalEvent]) -> DedupResult[CanonicalEvent]:
        result = self._collapse(events, lambda e: event_key(e, self.by_name))
        if self.fuzzy and len(result.records) > 1:
            self._fuzzy_merge(result)
        return result

    # ========================================================================
    # Internals
    # ========================================================================

    def _collapse(self, records: List[T], key_fn: Callable[[T], str]) -> DedupResult[T]:
        # sorted() is stable, so equal priorities keep arrival order
        ordered = sorted(records, key=lambda r: source_priority(r.source), reverse=True)
        survivors: Dict[str, T] = {}
        merged_keys = set()
        duplicates = 0

        for record in ordered:
            key = key_fn(record)
            existing = survivors.get(key)
            if existing is None:
                survivors[key] = record
                continue

            duplicates += 1
            merged_keys.add(key)
            if source_priority(record.source) > source_priority(existing.source):
                survivors[key] = merge_records(record, existing)
            else:
                survivors[key] = merge_records(existing, record)

        if duplicates:
            logger.debug(f"Dedup collapsed {duplicates} of {len(records)} records")
        return DedupResult(
            records=list(survivors.values()),
            duplicates_found=duplicates,
            merged_records=len(merged_keys),
        )

    def _fuzzy_merge(self, result: DedupResult[CanonicalEvent]) -> None:
        buckets: Dict[str, List[int]] = {}
        for index, event in enumerate(result.records):
            if event.home_team_name and event.away_team_name:
                bucket = f"{event.sport.value}:{event.start_time.date().isoformat()}"
                buckets.setdefault(bucket, []).append(index)

        absorbed = set()
        merged_into = set()
        records = result.records
        for indexes in buckets.values():
            for i, left in enumerate(indexes):
                if left in absorbed:
                    continue
                for right in indexes[i + 1:]:
                    if right in absorbed or not self._same_fixture(records[left], records[right]):
                        continue
                    # records are already priority ordered, so left wins ties
                    if source_priority(records[right].source) > source_priority(records[left].source):
                        records[left] = merge_records(records[right], records[left])
                    else:
                        records[left] = merge_records(records[left], records[right])
                    absorbed.add(right)
                    merged_into.add(left)

        if absorbed:
            logger.info(f"Fuzzy dedup merged {len(absorbed)} events")
            result.records = [r for i, r in enumerate(records) if i not in absorbed]
            result.duplicates_found += len(absorbed)
            result.merged_records += len(merged_into)

    def _same_fixture(self, a: CanonicalEvent, b: CanonicalEvent) -> bool:
        return (
            name_similarity(a.home_team_name, b.home_team_name) >= self.fuzzy_threshold
            and name_similarity(a.away_team_name, b.away_team_name) >= self.fuzzy_threshold
        )
