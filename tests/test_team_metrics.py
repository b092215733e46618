"""Tests for per-squad planner metric calculations."""

import pytest

from fplanner.services.fpl_client import Pick
from fplanner.services.team_metrics import (
    DEFAULT_FIXTURE_DIFFICULTY,
    EXPECTED_POINTS_HORIZON,
    METRIC_KEYS,
    calculate_fixture_difficulty,
    calculate_minutes_percentage,
    calculate_ppm,
    calculate_team_metrics,
)
from tests.conftest import make_player


def _pick(element: int, position: int = 1) -> Pick:
    return Pick(
        element=element, position=position, multiplier=1, is_captain=False, is_vice_captain=False
    )


class TestCalculatePpm:
    def test_points_per_million(self):
        # 40 points at 5.0m
        assert calculate_ppm({"total_points": 40, "now_cost": 50}) == pytest.approx(8.0)

    def test_zero_cost_returns_zero(self):
        assert calculate_ppm({"total_points": 40, "now_cost": 0}) == 0.0
        assert calculate_ppm({"total_points": 40}) == 0.0


class TestMinutesPercentage:
    def test_share_of_available_minutes(self):
        # 540 of 7 * 90 = 630 minutes
        assert calculate_minutes_percentage({"minutes": 540}, 7) == pytest.approx(540 / 630 * 100)

    def test_missing_minutes(self):
        assert calculate_minutes_percentage({}, 7) == 0.0


class TestFixtureDifficulty:
    def test_uses_side_specific_difficulty(self, fixtures_data):
        # Team 1 is always home (difficulty 2), team 2 always away (difficulty 4)
        assert calculate_fixture_difficulty(1, fixtures_data, start_gameweek=8) == 2.0
        assert calculate_fixture_difficulty(2, fixtures_data, start_gameweek=8) == 4.0

    def test_limits_to_next_fixtures(self):
        fixtures = [
            {"event": gw, "team_h": 1, "team_a": 2, "team_h_difficulty": gw, "team_a_difficulty": 3}
            for gw in range(1, 11)
        ]
        # GW3-7 -> mean of 3..7
        assert calculate_fixture_difficulty(1, fixtures, start_gameweek=3, count=5) == 5.0

    def test_defaults_without_fixtures(self, fixtures_data):
        assert calculate_fixture_difficulty(3, fixtures_data, 8) == DEFAULT_FIXTURE_DIFFICULTY
        assert calculate_fixture_difficulty(None, fixtures_data, 8) == DEFAULT_FIXTURE_DIFFICULTY
        assert calculate_fixture_difficulty(1, [], 8) == DEFAULT_FIXTURE_DIFFICULTY


class TestCalculateTeamMetrics:
    def test_metrics_for_squad(self, fixtures_data):
        players = {
            1: make_player(1, team=1, form="6.0", ep_next="4.0"),
            2: make_player(2, team=2, form="2.0", ep_next="2.0"),
        }

        result = calculate_team_metrics([_pick(1), _pick(2)], 7, players, fixtures_data)

        assert set(result) == set(METRIC_KEYS)
        assert result["form"] == pytest.approx(4.0)
        assert result["fdr"] == pytest.approx(3.0)  # mean of 2 (home) and 4 (away)
        assert result["expected_points"] == pytest.approx(6.0 * EXPECTED_POINTS_HORIZON)
        assert result["ownership"] == pytest.approx(10.0)
        assert result["ppm"] == pytest.approx(8.0)
        assert result["xgi"] == pytest.approx(0.30)

    def test_unknown_players_ignored(self, fixtures_data):
        players = {1: make_player(1, team=1)}

        result = calculate_team_metrics([_pick(1), _pick(999)], 7, players, fixtures_data)

        assert result["ownership"] == pytest.approx(10.0)

    def test_no_known_players_returns_none(self, fixtures_data):
        assert calculate_team_metrics([_pick(999)], 7, {}, fixtures_data) is None

    def test_string_fields_tolerated(self, fixtures_data):
        players = {1: make_player(1, team=1, form=None, selected_by_percent="", ep_next="bad")}

        result = calculate_team_metrics([_pick(1)], 7, players, fixtures_data)

        assert result["form"] == 0.0
        assert result["ownership"] == 0.0
        assert result["expected_points"] == 0.0
