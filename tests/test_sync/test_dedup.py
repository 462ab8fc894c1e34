"""Unit tests for cross-source deduplication.

Test Strategy:
1. Test events from two providers describing one fixture collapse to one
2. Test the higher priority source survives regardless of arrival order
3. Test the survivor's empty fields are filled and merged_from is tracked
4. Test identity mode (by_name=False) only collapses exact duplicates
5. Test the optional fuzzy stage for spelling variations
6. Test league and team keys
"""
from datetime import datetime

import pytest

from sports_ingest.services.sync.dedup import Deduplicator, event_key, merge_records

KICKOFF = datetime(2025, 3, 1, 15, 0)


@pytest.fixture
def dedup():
    return Deduplicator(by_name=True)


class TestEventDedup:
    """Match-key dedup of events."""

    def test_same_fixture_from_two_sources(self, dedup, make_event):
        """API-Sports and TheSportsDB copies of one fixture should collapse."""
        primary = make_event(external_id="1035037", start_time=KICKOFF)
        secondary = make_event(external_id="2052711", source="thesportsdb", start_time=KICKOFF,
                               venue="Emirates Stadium")

        result = dedup.deduplicate_events([secondary, primary])

        assert len(result.records) == 1
        assert result.duplicates_found == 1
        assert result.merged_records == 1
        survivor = result.records[0]
        assert survivor.source == "apifootball"
        assert survivor.external_id == "1035037"

    def test_survivor_absorbs_missing_fields(self, dedup, make_event):
        """Empty survivor fields should be filled; populated ones are kept."""
        primary = make_event(start_time=KICKOFF, referee="M. Oliver")
        secondary = make_event(external_id="77", source="thesportsdb", start_time=KICKOFF,
                               venue="Emirates Stadium", referee="Someone Else")

        survivor = dedup.deduplicate_events([primary, secondary]).records[0]

        assert survivor.venue == "Emirates Stadium"
        assert survivor.referee == "M. Oliver"
        assert survivor.metadata["merged_from"] == ["thesportsdb:77"]

    def test_reference_ids_never_copied(self, dedup, make_event):
        """Provider-scoped ids stay in their own namespace."""
        primary = make_event(start_time=KICKOFF)
        secondary = make_event(external_id="77", source="thesportsdb", start_time=KICKOFF,
                               league_external_id="4328", home_team_external_id="133604")

        survivor = dedup.deduplicate_events([primary, secondary]).records[0]

        assert survivor.league_external_id is None
        assert survivor.home_team_external_id is None

    def test_different_days_stay_separate(self, dedup, make_event):
        first = make_event(start_time=KICKOFF)
        second = make_event(external_id="1002", start_time=datetime(2025, 3, 8, 15, 0))

        result = dedup.deduplicate_events([first, second])

        assert len(result.records) == 2
        assert result.duplicates_found == 0

    def test_events_without_teams_use_identity(self, dedup, make_event):
        """Races without team names or ids fall back to source:external_id."""
        race = make_event(external_id="1650", home=None, away=None, start_time=KICKOFF)

        assert event_key(race) == "apifootball:1650"

    def test_identity_mode(self, make_event):
        """by_name=False only collapses the same source and external id."""
        dedup = Deduplicator(by_name=False)
        a = make_event(start_time=KICKOFF)
        b = make_event(start_time=KICKOFF, venue="Emirates Stadium")
        c = make_event(external_id="77", source="thesportsdb", start_time=KICKOFF)

        result = dedup.deduplicate_events([a, b, c])

        assert len(result.records) == 2
        assert result.records[0].venue == "Emirates Stadium"


class TestFuzzyStage:
    """rapidfuzz matching of spelling variations."""

    def test_fuzzy_disabled_by_default(self, dedup, make_event):
        a = make_event(start_time=KICKOFF, home="Manchester United")
        b = make_event(external_id="77", source="thesportsdb", start_time=KICKOFF, home="Manchester Utd")

        assert len(dedup.deduplicate_events([a, b]).records) == 2

    def test_fuzzy_merges_close_names(self, make_event):
        """Both team names above threshold on the same day should merge."""
        dedup = Deduplicator(by_name=True, fuzzy=True, fuzzy_threshold=85)
        a = make_event(start_time=KICKOFF, home="Manchester United")
        b = make_event(external_id="77", source="thesportsdb", start_time=KICKOFF,
                       home="Manchester Utd", venue="Old Trafford")

        result = dedup.deduplicate_events([b, a])

        assert len(result.records) == 1
        assert result.records[0].source == "apifootball"
        assert result.records[0].venue == "Old Trafford"
        assert result.duplicates_found == 1

    def test_fuzzy_requires_both_sides(self, make_event):
        dedup = Deduplicator(by_name=True, fuzzy=True, fuzzy_threshold=85)
        a = make_event(start_time=KICKOFF, home="Manchester United", away="Chelsea")
        b = make_event(external_id="77", source="thesportsdb", start_time=KICKOFF,
                       home="Manchester Utd", away="Liverpool")

        assert len(dedup.deduplicate_events([a, b]).records) == 2


class TestLeagueAndTeamDedup:
    """League and team keys."""

    def test_league_by_sport_country_name(self, dedup, make_league):
        a = make_league()
        b = make_league(external_id="4328", source="thesportsdb", logo_url="pl.png")
        c = make_league(external_id="140", name="La Liga", country="Spain")

        result = dedup.deduplicate_leagues([b, a, c])

        assert [lg.identity() for lg in result.records] == ["apifootball:39", "apifootball:140"]
        assert result.records[0].logo_url == "pl.png"

    def test_teams_by_identity_override(self, dedup, make_team):
        """Embedded team stubs are collapsed by identity even in name mode."""
        stub = make_team()
        full = make_team(stadium="Emirates Stadium")
        other = make_team(external_id="133604", source="thesportsdb")

        result = dedup.deduplicate_teams([stub, full, other], by_name=False)

        assert len(result.records) == 2
        assert result.records[0].stadium == "Emirates Stadium"

    def test_teams_by_name_across_sources(self, dedup, make_team):
        a = make_team()
        b = make_team(external_id="133604", source="thesportsdb")

        assert len(dedup.deduplicate_teams([a, b]).records) == 1


class TestMergeRecords:
    """merged_from bookkeeping."""

    def test_merged_from_accumulates(self, make_event):
        a = make_event(start_time=KICKOFF)
        b = make_event(external_id="77", source="thesportsdb", start_time=KICKOFF,
                       metadata={"merged_from": ["manual:5"]})

        merged = merge_records(a, b)

        assert merged.metadata["merged_from"] == ["thesportsdb:77", "manual:5"]
        assert "merged_from" not in a.metadata
