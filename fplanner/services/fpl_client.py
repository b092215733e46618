"""FPL API client with rate limiting for cohort sampling."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from tenacity import RetryError

from fplanner.services.retry import DEFAULT_RETRY_POLICY, RetryPolicy, retry_async

logger = logging.getLogger(__name__)

FPL_BASE_URL = "https://fantasy.premierleague.com/api"

# HTTP status codes that should trigger a retry
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class UpstreamUnavailableError(Exception):
    """Raised when an FPL endpoint keeps failing after all retries."""

    def __init__(self, resource: str, cause: BaseException | None = None):
        self.resource = resource
        self.cause = cause
        detail = f": {type(cause).__name__}: {cause}" if cause is not None else ""
        super().__init__(f"{resource} unavailable after retries{detail}")


def _safe_int(val: Any, default: int = 0) -> int:
    """Safely convert API value to int, handling None and empty strings."""
    if val is None or val == "":
        return default
    try:
        return int(val)
    except (ValueError, TypeError):
        return default


def _expect_dict(data: Any, resource: str) -> dict[str, Any]:
    """Reject payloads that are not JSON objects."""
    if not isinstance(data, dict):
        raise ValueError(f"Malformed {resource} payload: {type(data).__name__}")
    return data


def _is_retryable_error(exception: BaseException) -> bool:
    """Check if an error should trigger a retry."""
    if isinstance(exception, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code in RETRYABLE_STATUS_CODES
    return False


@dataclass(slots=True)
class StandingEntry:
    """One row of the overall league standings."""

    entry_id: int
    rank: int


@dataclass(slots=True)
class StandingsPage:
    """A single page of classic league standings."""

    league_id: int
    page: int
    entries: list[StandingEntry]
    has_next: bool


@dataclass(slots=True)
class Pick:
    """One squad slot for an entry in a gameweek."""

    element: int
    position: int  # 1-15, 12+ is the bench
    multiplier: int  # 0 when benched (including by automatic substitution)
    is_captain: bool
    is_vice_captain: bool


@dataclass(slots=True)
class EntryPicks:
    """An entry's picks for a gameweek."""

    entry_id: int
    gameweek: int
    picks: list[Pick] = field(default_factory=list)
    automatic_subs: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class PlayerHistory:
    """Player's gameweek history entry from element-summary endpoint."""

    fixture_id: int
    gameweek: int
    total_points: int
    minutes: int
    value: int  # Price * 10
    selected: int


class FplApiClient:
    """
    FPL API client with rate limiting.

    The FPL API doesn't officially document rate limits, but empirically:
    - short bursts of ~10 requests/second are tolerated
    - 429/503s happen if you go too fast
    - Picks endpoints for thousands of entries are the heaviest workload
    """

    def __init__(
        self,
        base_url: str = FPL_BASE_URL,
        requests_per_second: float = 10.0,
        max_concurrent: int = 10,
        timeout: float = 10.0,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    ):
        """
        Initialize the client.

        Args:
            base_url: FPL API root, without trailing slash
            requests_per_second: Target rate (10.0 = one request every 100ms)
            max_concurrent: Maximum concurrent requests
            timeout: Per-request timeout in seconds
            retry_policy: Backoff rules for transient failures
        """
        self.base_url = base_url.rstrip("/")
        self.delay = 1.0 / requests_per_second
        self.timeout = timeout
        self.retry_policy = retry_policy
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client (lazy initialization, coroutine-safe)."""
        if self._client is None:
            async with self._lock:
                if self._client is None:  # Double-check after acquiring lock
                    self._client = httpx.AsyncClient(
                        timeout=self.timeout,
                        headers={"User-Agent": "FPLanner/1.0"},
                    )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources (coroutine-safe)."""
        async with self._lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    async def __aenter__(self) -> "FplApiClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context manager and close client."""
        await self.close()

    async def _rate_limit(self) -> None:
        """Apply rate limiting between requests."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self.delay:
                await asyncio.sleep(self.delay - elapsed)
            self._last_request_time = time.monotonic()

    async def _request(self, url: str) -> Any:
        """Make a single rate-limited GET request."""
        async with self.semaphore:
            await self._rate_limit()

            client = await self._get_client()
            response = await client.get(url)
            response.raise_for_status()
            return response.json()

    async def _get(self, url: str, resource: str) -> Any:
        """GET with retries; exhausted retries become UpstreamUnavailableError.

        Non-retryable statuses (4xx other than 429) propagate as
        httpx.HTTPStatusError on the first attempt.
        """
        try:
            return await retry_async(
                self.retry_policy,
                lambda: self._request(url),
                _is_retryable_error,
                log=logger,
            )
        except RetryError as e:
            cause = e.last_attempt.exception()
            raise UpstreamUnavailableError(resource, cause) from cause

    async def get_bootstrap_static(self) -> dict[str, Any]:
        """Fetch raw bootstrap-static data (elements, teams, events)."""
        return await self._get(f"{self.base_url}/bootstrap-static/", "bootstrap-static")

    async def get_fixtures(self) -> list[dict[str, Any]]:
        """Fetch all fixtures for the current season."""
        return await self._get(f"{self.base_url}/fixtures/", "fixtures")

    async def get_standings_page(self, league_id: int, page: int) -> StandingsPage:
        """
        Fetch one page of classic league standings.

        Args:
            league_id: FPL classic league ID (314 is the overall league)
            page: 1-based standings page (50 entries per page)

        Returns:
            StandingsPage with entry ids and ranks
        """
        data = await self._get(
            f"{self.base_url}/leagues-classic/{league_id}/standings/?page_standings={page}",
            f"standings page {page}",
        )

        data = _expect_dict(data, f"standings page {page}")
        standings = _expect_dict(data.get("standings") or {}, f"standings page {page}")
        entries: list[StandingEntry] = []
        for row in standings.get("results") or []:
            if not isinstance(row, dict):
                logger.warning(f"Skipping invalid standings row in league {league_id}: {row}")
                continue
            entry_id = _safe_int(row.get("entry"))
            # Filter out invalid entries (entry_id=0 means parsing failed)
            if entry_id <= 0:
                logger.warning(f"Skipping invalid standings row in league {league_id}: {row}")
                continue
            entries.append(StandingEntry(entry_id=entry_id, rank=_safe_int(row.get("rank"))))

        return StandingsPage(
            league_id=league_id,
            page=page,
            entries=entries,
            has_next=bool(standings.get("has_next", False)),
        )

    async def get_entry_picks(self, entry_id: int, gameweek: int) -> EntryPicks:
        """
        Fetch an entry's picks for a gameweek.

        Args:
            entry_id: FPL entry (team) ID
            gameweek: Gameweek number (1-38)

        Returns:
            EntryPicks with squad slots and automatic substitutions
        """
        data = await self._get(
            f"{self.base_url}/entry/{entry_id}/event/{gameweek}/picks/",
            f"entry {entry_id}",
        )
        data = _expect_dict(data, f"entry {entry_id} picks")
        raw_picks = data.get("picks") or []
        if not isinstance(raw_picks, list) or not all(isinstance(p, dict) for p in raw_picks):
            raise ValueError(f"Malformed entry {entry_id} picks: non-object slot")

        picks = [
            Pick(
                element=_safe_int(p.get("element")),
                position=_safe_int(p.get("position")),
                multiplier=_safe_int(p.get("multiplier")),
                is_captain=bool(p.get("is_captain", False)),
                is_vice_captain=bool(p.get("is_vice_captain", False)),
            )
            for p in raw_picks
        ]

        return EntryPicks(
            entry_id=entry_id,
            gameweek=gameweek,
            picks=picks,
            automatic_subs=data.get("automatic_subs") or [],
        )

    async def get_player_history(self, player_id: int) -> list[PlayerHistory]:
        """
        Fetch a player's gameweek history (element-summary endpoint).
        This is the heavy endpoint - one request per player.
        """
        data = await self._get(
            f"{self.base_url}/element-summary/{player_id}/", f"player {player_id}"
        )
        data = _expect_dict(data, f"player {player_id}")

        return [
            PlayerHistory(
                fixture_id=_safe_int(h.get("fixture")),
                gameweek=_safe_int(h.get("round")),
                total_points=_safe_int(h.get("total_points")),
                minutes=_safe_int(h.get("minutes")),
                value=_safe_int(h.get("value")),
                selected=_safe_int(h.get("selected")),
            )
            for h in data.get("history") or []
            if isinstance(h, dict) and h.get("round")
        ]
