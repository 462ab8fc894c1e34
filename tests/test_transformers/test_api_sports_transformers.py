"""Unit tests for API-Sports payload transformers.

Test Strategy:
1. Test each sport-specific record shape (football, NBA, F1, AFL, MMA,
   volleyball) and the generic /games shape
2. Test batch behaviour: malformed records are skipped, the batch survives
3. Test league and team shapes (football envelope, NBA slugs, fighters)
4. Test the embedded team stubs used to resolve event references

Each test follows the pattern:
- Given: A raw provider record
- When: The transformer runs
- Then: The canonical record carries the mapped fields
"""
from datetime import datetime

from sports_ingest.models.canonical import EventStatus, SportKind
from sports_ingest.services.transformers import api_sports as t


FOOTBALL_FIXTURE = {
    "fixture": {
        "id": 1035037,
        "referee": "M. Oliver",
        "timezone": "UTC",
        "date": "2025-03-01T15:00:00+00:00",
        "timestamp": 1740841200,
        "venue": {"id": 494, "name": "Emirates Stadium", "city": "London"},
        "status": {"long": "Halftime", "short": "HT", "elapsed": 45},
    },
    "league": {"id": 39, "name": "Premier League", "country": "England", "season": 2024, "round": "Regular Season - 27"},
    "teams": {
        "home": {"id": 42, "name": "Arsenal", "logo": "https://media.api-sports.io/football/teams/42.png"},
        "away": {"id": 49, "name": "Chelsea", "logo": "https://media.api-sports.io/football/teams/49.png"},
    },
    "goals": {"home": 1, "away": 0},
    "score": {"halftime": {"home": 1, "away": 0}, "extratime": {"home": None, "away": None},
              "penalty": {"home": None, "away": None}},
}

NBA_GAME = {
    "id": 14082,
    "league": "standard",
    "season": 2024,
    "date": {"start": "2025-03-02T00:30:00.000Z"},
    "status": {"clock": None, "short": 3, "long": "Finished"},
    "arena": {"name": "Crypto.com Arena", "city": "Los Angeles"},
    "teams": {
        "visitors": {"id": 2, "name": "Boston Celtics", "logo": "bos.png"},
        "home": {"id": 17, "name": "Los Angeles Lakers", "logo": "lal.png"},
    },
    "scores": {"visitors": {"points": 110}, "home": {"points": 115}},
}


class TestFootballFixture:
    """API-Football /fixtures records."""

    def test_maps_core_fields(self):
        """Should map ids, teams, scores, venue and halftime status."""
        event = t.transform_football_fixture(FOOTBALL_FIXTURE)

        assert event.external_id == "1035037"
        assert event.source == "apifootball"
        assert event.sport == SportKind.FOOTBALL
        assert event.start_time == datetime(2025, 3, 1, 15, 0)
        assert event.status == EventStatus.HALFTIME
        assert event.league_external_id == "39"
        assert event.home_team_external_id == "42"
        assert event.away_team_external_id == "49"
        assert event.home_score == 1
        assert event.away_score == 0
        assert event.home_score_halftime == 1
        assert event.elapsed_time == 45
        assert event.venue == "Emirates Stadium"
        assert event.referee == "M. Oliver"
        assert event.name == "Arsenal vs Chelsea"

    def test_team_names_in_metadata(self):
        """Team and league names should land in snake_case metadata keys."""
        event = t.transform_football_fixture(FOOTBALL_FIXTURE)

        assert event.metadata["home_team_name"] == "Arsenal"
        assert event.metadata["away_team_name"] == "Chelsea"
        assert event.metadata["league_name"] == "Premier League"

    def test_timezone_offset_normalized_to_utc(self):
        """Offsets should be converted to naive UTC."""
        raw = {**FOOTBALL_FIXTURE, "fixture": {**FOOTBALL_FIXTURE["fixture"], "date": "2025-03-01T16:00:00+01:00"}}

        assert t.transform_football_fixture(raw).start_time == datetime(2025, 3, 1, 15, 0)


class TestOtherSports:
    """Sport-specific record shapes."""

    def test_nba_visitors_are_away(self):
        """API-NBA says 'visitors'; the matchup name is 'Away @ Home'."""
        event = t.transform_nba_game(NBA_GAME)

        assert event.source == "apinba"
        assert event.status == EventStatus.FINISHED
        assert event.home_team_external_id == "17"
        assert event.away_team_external_id == "2"
        assert event.home_score == 115
        assert event.away_score == 110
        assert event.name == "Boston Celtics @ Los Angeles Lakers"
        assert event.league_external_id == "standard"
        assert event.start_time == datetime(2025, 3, 2, 0, 30)
        assert event.country is None

    def test_f1_race_has_no_teams(self):
        """Races have a competition and circuit, no home or away."""
        raw = {
            "id": 1650,
            "competition": {"id": 23, "name": "Bahrain Grand Prix", "location": {"country": "Bahrain", "city": "Sakhir"}},
            "circuit": {"id": 1, "name": "Bahrain International Circuit", "image": "circuit.png"},
            "season": 2025,
            "type": "Race",
            "laps": {"total": 57},
            "date": "2025-03-02T15:00:00+00:00",
            "status": "Scheduled",
        }

        event = t.transform_f1_race(raw)

        assert event.source == "apiformula1"
        assert event.home_team_external_id is None
        assert event.name == "Bahrain Grand Prix"
        assert event.venue == "Bahrain International Circuit"
        assert event.country == "Bahrain"
        assert event.metadata["race_type"] == "Race"

    def test_afl_goals_and_behinds(self):
        """AFL totals come from score; goals/behinds go to metadata."""
        raw = {
            "game": {"id": 555},
            "date": "2025-03-15T08:40:00+00:00",
            "league": {"id": 1, "season": 2025},
            "teams": {"home": {"id": 1, "name": "Adelaide Crows"}, "away": {"id": 2, "name": "Brisbane Lions"}},
            "scores": {"home": {"score": 87, "goals": 13, "behinds": 9}, "away": {"score": 70, "goals": 10, "behinds": 10}},
            "status": {"short": "FT", "long": "Finished"},
        }

        event = t.transform_afl_game(raw)

        assert event.external_id == "555"
        assert event.status == EventStatus.FINISHED
        assert event.home_score == 87
        assert event.metadata["home_goals"] == 13
        assert event.metadata["away_behinds"] == 10
        assert event.country is None  # not in the payload
        assert event.timezone == "UTC"

    def test_mma_fighters_as_home_and_away(self):
        """The first fighter is stored as home, the second as away."""
        raw = {
            "id": 901,
            "date": "2025-03-08T03:00:00+00:00",
            "category": "Lightweight",
            "status": {"long": "Finished", "short": "FT"},
            "fighters": {
                "first": {"id": 11, "name": "Fighter One", "image": "one.png"},
                "second": {"id": 12, "name": "Fighter Two", "image": "two.png"},
            },
            "result": {"winner": 11, "method": "KO/TKO"},
        }

        event = t.transform_mma_fight(raw)

        assert event.status == EventStatus.FINISHED
        assert event.home_team_external_id == "11"
        assert event.away_team_external_id == "12"
        assert event.name == "Fighter One vs Fighter Two"
        assert event.metadata["weight_class"] == "Lightweight"
        assert event.metadata["method"] == "KO/TKO"

    def test_volleyball_sets(self):
        """Volleyball scores are sets won, with set points in metadata."""
        raw = {
            "id": 77,
            "date": "2025-03-05T18:00:00+00:00",
            "league": {"id": 97, "name": "SuperLega"},
            "teams": {"home": {"id": 1, "name": "Perugia"}, "away": {"id": 2, "name": "Trento"}},
            "scores": {"home": 3, "away": 1},
            "periods": {"first": {"home": 25, "away": 20}, "second": {"home": 22, "away": 25}},
            "status": {"short": "FT"},
        }

        event = t.transform_volleyball_game(raw)

        assert event.home_score == 3
        assert event.away_score == 1
        assert event.metadata["set1"] == {"home": 25, "away": 20}
        assert event.metadata["set2"] == {"home": 22, "away": 25}

    def test_generic_games_shape(self):
        """Hockey uses the shared /games shape with per-period scores."""
        raw = {
            "id": 3001,
            "date": "2025-03-03T00:00:00+00:00",
            "league": {"id": 57, "name": "NHL", "season": 2024},
            "country": {"name": "USA"},
            "teams": {"home": {"id": 5, "name": "Boston Bruins"}, "away": {"id": 6, "name": "Toronto Maple Leafs"}},
            "scores": {"home": {"total": 4, "first": 1}, "away": {"total": 2, "first": 0}},
            "status": {"short": "P2", "long": "Second Period"},
        }

        event = t.transform_game(raw, SportKind.HOCKEY)

        assert event.source == "apihockey"
        assert event.home_score == 4
        assert event.away_score == 2
        assert event.country == "USA"
        assert event.metadata["periods"]["home"] == {"first": 1}


class TestBatchTransform:
    """Malformed records are skipped and counted."""

    def test_skips_records_without_id_or_start(self):
        """A record without id or start time should be skipped, not fatal."""
        no_id = {**FOOTBALL_FIXTURE, "fixture": {**FOOTBALL_FIXTURE["fixture"], "id": None}}
        no_start = {**FOOTBALL_FIXTURE, "fixture": {"id": 5, "status": {"short": "NS"}}}

        events, skipped = t.transform_events([FOOTBALL_FIXTURE, no_id, no_start, "garbage"], SportKind.FOOTBALL)

        assert [e.external_id for e in events] == ["1035037"]
        assert skipped == 3

    def test_empty_input(self):
        assert t.transform_events(None, SportKind.NBA) == ([], 0)


class TestLeaguesAndTeams:
    """League and team record shapes."""

    def test_football_league_envelope(self):
        """The {league, country, seasons} envelope should pick the current season."""
        raw = {
            "league": {"id": 39, "name": "Premier League", "type": "League", "logo": "pl.png"},
            "country": {"name": "England", "code": "GB", "flag": "gb.svg"},
            "seasons": [{"season": 2023, "current": False}, {"season": 2024, "current": True}],
        }

        league = t.transform_league(raw, SportKind.FOOTBALL)

        assert league.external_id == "39"
        assert league.country == "England"
        assert league.country_code == "GB"
        assert league.season_current == "2024"
        assert league.metadata["seasons"] == [2023, 2024]

    def test_nba_league_slug(self):
        """API-NBA lists leagues as bare slugs."""
        leagues, skipped = t.transform_leagues(["standard", "africa"], SportKind.NBA)

        assert skipped == 0
        assert leagues[0].name == "NBA Standard"
        assert leagues[0].is_featured is True
        assert leagues[1].is_featured is False

    def test_mma_fighter_as_team(self):
        """Fighters are teams with a weight class."""
        team = t.transform_team({"id": 11, "firstname": "Jon", "lastname": "Jones", "category": "Heavyweight"},
                                SportKind.MMA)

        assert team.name == "Jon Jones"
        assert team.source == "apimma"
        assert team.metadata["weight_class"] == "Heavyweight"

    def test_football_team_with_venue(self):
        raw = {"team": {"id": 42, "name": "Arsenal", "code": "ARS", "country": "England", "founded": 1886},
               "venue": {"name": "Emirates Stadium", "city": "London", "capacity": 60704}}

        team = t.transform_team(raw, SportKind.FOOTBALL, league_external_id="39")

        assert team.name_short == "ARS"
        assert team.stadium == "Emirates Stadium"
        assert team.league_external_id == "39"
        assert team.metadata["venue_capacity"] == 60704


class TestEmbeddedTeams:
    """Team stubs derived from game payloads."""

    def test_stubs_for_both_sides(self):
        """Both sides with id and name should yield team stubs in the event's source."""
        event = t.transform_football_fixture(FOOTBALL_FIXTURE)

        teams = t.embedded_teams(event)

        assert [(team.external_id, team.name) for team in teams] == [("42", "Arsenal"), ("49", "Chelsea")]
        assert all(team.source == "apifootball" for team in teams)
        assert teams[0].league_external_id == "39"

    def test_no_stubs_without_teams(self):
        """Races reference no teams."""
        raw = {"id": 1, "date": "2025-03-02T15:00:00+00:00", "competition": {"id": 1, "name": "GP"}}

        assert t.embedded_teams(t.transform_f1_race(raw)) == []
