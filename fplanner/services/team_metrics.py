"""Pure calculation functions for per-squad planner metrics.

These mirror the metrics the planner dashboard shows for a user's own squad, so
that cohort averages can be compared against them directly. Functions are
stateless: player and fixture reference data is passed in.
"""

from collections.abc import Iterable, Sequence
from typing import Any, TypedDict

from fplanner.services.fpl_client import Pick

# =============================================================================
# Constants
# =============================================================================

DEFAULT_FIXTURE_DIFFICULTY = 3.0
FDR_FIXTURE_COUNT = 5

# Planner convention: a single-gameweek projection scaled up to "next five
# gameweeks". This is an approximation, not a real five-gameweek forecast.
EXPECTED_POINTS_HORIZON = 5

METRIC_KEYS: tuple[str, ...] = (
    "ppm",
    "fdr",
    "form",
    "expected_points",
    "ownership",
    "min_percent",
    "xgi",
)


class EntryMetrics(TypedDict):
    """Derived metrics for one sampled squad."""

    ppm: float
    fdr: float
    form: float
    expected_points: float
    ownership: float
    min_percent: float
    xgi: float


# =============================================================================
# Helpers
# =============================================================================


def _to_float(value: Any, default: float = 0.0) -> float:
    """Convert FPL string/number fields ("5.4", 12, None) to float."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# =============================================================================
# Per-player calculations
# =============================================================================


def calculate_ppm(player: dict[str, Any]) -> float:
    """Points per million: total_points / (now_cost / 10), 0 when cost unknown."""
    cost = _to_float(player.get("now_cost"))
    if not cost:
        return 0.0
    return _to_float(player.get("total_points")) / (cost / 10)


def calculate_minutes_percentage(player: dict[str, Any], gameweek: int) -> float:
    """Share of available minutes played up to and including the gameweek."""
    if not gameweek:
        return 0.0
    return _to_float(player.get("minutes")) / (gameweek * 90) * 100


def calculate_fixture_difficulty(
    team_id: int | None,
    fixtures: Iterable[dict[str, Any]],
    start_gameweek: int,
    count: int = FDR_FIXTURE_COUNT,
) -> float:
    """Mean difficulty of a team's next ``count`` fixtures from start_gameweek.

    Returns DEFAULT_FIXTURE_DIFFICULTY when the team or fixtures are unknown.
    """
    if not team_id:
        return DEFAULT_FIXTURE_DIFFICULTY

    upcoming = sorted(
        (
            f
            for f in fixtures
            if (f.get("team_h") == team_id or f.get("team_a") == team_id)
            and f.get("event") is not None
            and f["event"] >= start_gameweek
        ),
        key=lambda f: f["event"],
    )[:count]

    if not upcoming:
        return DEFAULT_FIXTURE_DIFFICULTY

    difficulties = []
    for fixture in upcoming:
        side = "team_h_difficulty" if fixture.get("team_h") == team_id else "team_a_difficulty"
        difficulties.append(_to_float(fixture.get(side), DEFAULT_FIXTURE_DIFFICULTY))
    return _mean(difficulties)


# =============================================================================
# Per-squad metrics
# =============================================================================


def calculate_team_metrics(
    picks: Sequence[Pick],
    gameweek: int,
    players_by_id: dict[int, dict[str, Any]],
    fixtures: Sequence[dict[str, Any]],
) -> EntryMetrics | None:
    """Calculate planner metrics for one squad.

    Args:
        picks: The entry's picks for the gameweek
        gameweek: Target gameweek (fixtures are read from gameweek + 1 onwards)
        players_by_id: Bootstrap elements keyed by player id
        fixtures: Season fixtures list

    Returns:
        EntryMetrics, or None when none of the picked players are known
    """
    players = [players_by_id[p.element] for p in picks if p.element in players_by_id]
    if not players:
        return None

    fdr_by_team: dict[int, float] = {}
    fdrs = []
    for player in players:
        team_id = player.get("team")
        if team_id not in fdr_by_team:
            fdr_by_team[team_id] = calculate_fixture_difficulty(
                team_id, fixtures, start_gameweek=gameweek + 1
            )
        fdrs.append(fdr_by_team[team_id])

    expected_points = sum(
        _to_float(p.get("ep_next")) * EXPECTED_POINTS_HORIZON for p in players
    )

    return EntryMetrics(
        ppm=_mean([calculate_ppm(p) for p in players]),
        fdr=_mean(fdrs),
        form=_mean([_to_float(p.get("form")) for p in players]),
        expected_points=expected_points,
        ownership=_mean([_to_float(p.get("selected_by_percent")) for p in players]),
        min_percent=_mean([calculate_minutes_percentage(p, gameweek) for p in players]),
        xgi=_mean([_to_float(p.get("expected_goal_involvements_per_90")) for p in players]),
    )
