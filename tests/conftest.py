"""Shared pytest fixtures for backend tests."""

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from fplanner.main import app
from fplanner.services.archive import GameweekArchive
from fplanner.services.blob_storage import MemoryBlobStore
from fplanner.services.cohort_sampler import Band
from fplanner.services.cohorts import CohortCacheStore, CohortConfig, CohortService
from fplanner.services.fpl_client import (
    EntryPicks,
    Pick,
    StandingEntry,
    StandingsPage,
    UpstreamUnavailableError,
)
from fplanner.services.gameweeks import GameweekOracle
from fplanner.services.reference_data import ReferenceDataCache
from fplanner.services.retry import RetryPolicy

FPL_BASE = "https://fantasy.premierleague.com/api"

# GW1 deadline; each later gameweek is one week on
SEASON_START = datetime(2025, 8, 15, 17, 30, tzinfo=UTC)

# Fixed "now": GW1-7 finished, GW8 live (deadline Oct 3), GW9 upcoming (Oct 10)
NOW = datetime(2025, 10, 5, 12, 0, tzinfo=UTC)

NO_WAIT_RETRY = RetryPolicy(max_attempts=3, min_wait=0, max_wait=0)

# 2500 ranks / 50 per page = 50 pages; 2 samples -> pages 1, 25, 50 (150 entries)
TEST_BAND = Band(key="top10k", label="Top 10k", max_rank=2_500)


def iso_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def make_events(finished_through: int = 7, total: int = 10) -> list[dict[str, Any]]:
    """Bootstrap events with GW1..finished_through finished and checked."""
    events = []
    for gw in range(1, total + 1):
        deadline = SEASON_START + timedelta(weeks=gw - 1)
        finished = gw <= finished_through
        events.append(
            {
                "id": gw,
                "finished": finished,
                "is_current": gw == finished_through + 1,
                "is_next": gw == finished_through + 2,
                "deadline_time": iso_timestamp(deadline),
                "data_checked_time": (
                    iso_timestamp(deadline + timedelta(days=4)) if finished else None
                ),
            }
        )
    return events


def make_player(player_id: int, team: int, **overrides: Any) -> dict[str, Any]:
    player = {
        "id": player_id,
        "web_name": f"Player {player_id}",
        "team": team,
        "element_type": 3,
        "now_cost": 50,
        "total_points": 40,
        "form": "4.0",
        "ep_next": "5.0",
        "selected_by_percent": "10.0",
        "minutes": 540,
        "expected_goal_involvements_per_90": "0.30",
    }
    player.update(overrides)
    return player


def make_picks(entry_id: int, gameweek: int, captain: int = 1) -> EntryPicks:
    """A full 15-man squad of players 1-15 in slots 1-15."""
    return EntryPicks(
        entry_id=entry_id,
        gameweek=gameweek,
        picks=[
            Pick(
                element=i,
                position=i,
                multiplier=(2 if i == captain else 1) if i < 12 else 0,
                is_captain=i == captain,
                is_vice_captain=i == captain + 1,
            )
            for i in range(1, 16)
        ],
    )


class FakeFplClient:
    """In-memory stand-in for FplApiClient that records calls."""

    def __init__(self, entries_per_page: int = 50, failing_entries: set[int] | None = None):
        self.entries_per_page = entries_per_page
        self.failing_entries = failing_entries or set()
        self.standings_calls: list[int] = []
        self.picks_calls: list[int] = []

    @staticmethod
    def entry_id_for_rank(rank: int) -> int:
        return 1_000_000 + rank

    async def get_standings_page(self, league_id: int, page: int) -> StandingsPage:
        self.standings_calls.append(page)
        start = (page - 1) * self.entries_per_page + 1
        entries = [
            StandingEntry(entry_id=self.entry_id_for_rank(rank), rank=rank)
            for rank in range(start, start + self.entries_per_page)
        ]
        return StandingsPage(league_id=league_id, page=page, entries=entries, has_next=True)

    async def get_entry_picks(self, entry_id: int, gameweek: int) -> EntryPicks:
        self.picks_calls.append(entry_id)
        if entry_id in self.failing_entries:
            raise UpstreamUnavailableError(f"entry {entry_id}")
        return make_picks(entry_id, gameweek)


class FakeClock:
    """Settable epoch-seconds clock."""

    def __init__(self, now: float = NOW.timestamp()):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
async def async_client():
    """Async HTTP client for testing the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def bootstrap_data() -> dict[str, Any]:
    """Bootstrap-static payload with 15 players across 3 teams."""
    return {
        "elements": [make_player(i, team=(i % 3) + 1) for i in range(1, 16)],
        "teams": [
            {"id": 1, "name": "Arsenal"},
            {"id": 2, "name": "Chelsea"},
            {"id": 3, "name": "Spurs"},
        ],
        "events": make_events(),
    }


@pytest.fixture
def fixtures_data() -> list[dict[str, Any]]:
    return [
        {
            "id": 100 + gw,
            "event": gw,
            "team_h": 1,
            "team_a": 2,
            "team_h_difficulty": 2,
            "team_a_difficulty": 4,
        }
        for gw in range(1, 11)
    ]


@pytest.fixture
def reference(bootstrap_data, fixtures_data) -> ReferenceDataCache:
    async def fetch_bootstrap():
        return bootstrap_data

    async def fetch_fixtures():
        return fixtures_data

    return ReferenceDataCache(fetch_bootstrap, fetch_fixtures)


@pytest.fixture
def oracle(reference: ReferenceDataCache) -> GameweekOracle:
    return GameweekOracle(lambda: reference.events, clock=lambda: NOW)


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def fake_client() -> FakeFplClient:
    return FakeFplClient()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cohort_service(fake_client, reference, oracle, blob_store, clock) -> CohortService:
    """CohortService sampling a single band from pages 1, 25 and 50."""
    config = CohortConfig(sample_pages_per_band=2, bands=(TEST_BAND,))
    return CohortService(
        fake_client,
        reference,
        oracle,
        GameweekArchive(blob_store),
        CohortCacheStore(),
        config=config,
        clock=clock,
    )
