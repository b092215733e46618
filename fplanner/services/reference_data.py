"""Shared cache for FPL reference data (bootstrap-static and fixtures).

Cohort metrics need the full player list, team list, gameweek calendar and the
season's fixtures. This cache:
1. Keeps a single parsed copy of the ~1.8MB bootstrap response
2. Limits FPL API calls (reference data rarely changes within a gameweek)
3. Handles concurrent refreshes without thundering herd via asyncio.Lock
4. Keeps serving the last good payload when a refresh fails

Freshness is tracked with TTLCache entries; the last good payload is kept
separately so synchronous readers (the gameweek oracle, metric calculations)
always see the latest snapshot even after its TTL has lapsed.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from cachetools import TTLCache

logger = logging.getLogger(__name__)

BOOTSTRAP_KEY = "bootstrap"
FIXTURES_KEY = "fixtures"


class ReferenceDataCache:
    """Bootstrap and fixtures snapshot shared by the cohort services."""

    def __init__(
        self,
        fetch_bootstrap: Callable[[], Awaitable[dict[str, Any]]],
        fetch_fixtures: Callable[[], Awaitable[list[dict[str, Any]]]],
        bootstrap_ttl: int = 300,
        fixtures_ttl: int = 600,
        timer: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            fetch_bootstrap: Async callable returning bootstrap-static JSON
                (FplApiClient.get_bootstrap_static)
            fetch_fixtures: Async callable returning the fixtures list
                (FplApiClient.get_fixtures)
            bootstrap_ttl: Seconds before bootstrap is refetched
            fixtures_ttl: Seconds before fixtures are refetched
            timer: Clock used for TTL expiry
        """
        self._fetch_bootstrap = fetch_bootstrap
        self._fetch_fixtures = fetch_fixtures
        self.bootstrap_ttl = bootstrap_ttl
        self.fixtures_ttl = fixtures_ttl
        self._fresh_bootstrap: TTLCache[str, bool] = TTLCache(
            maxsize=1, ttl=bootstrap_ttl, timer=timer
        )
        self._fresh_fixtures: TTLCache[str, bool] = TTLCache(
            maxsize=1, ttl=fixtures_ttl, timer=timer
        )
        self._bootstrap: dict[str, Any] | None = None
        self._fixtures: list[dict[str, Any]] | None = None
        self._players_by_id: dict[int, dict[str, Any]] = {}
        self._bootstrap_lock = asyncio.Lock()
        self._fixtures_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def get_bootstrap(self) -> dict[str, Any]:
        """Get bootstrap data, refreshing it if the TTL has lapsed.

        Raises:
            Exception from the fetcher, only when no previous payload exists
        """
        if BOOTSTRAP_KEY in self._fresh_bootstrap and self._bootstrap is not None:
            logger.debug("Bootstrap cache hit")
            return self._bootstrap

        async with self._bootstrap_lock:
            # Double-check after acquiring lock (another request may have populated)
            if BOOTSTRAP_KEY in self._fresh_bootstrap and self._bootstrap is not None:
                logger.debug("Bootstrap cache hit (after lock)")
                return self._bootstrap

            logger.info("Fetching bootstrap-static from FPL API (cache miss)")
            start = time.monotonic()
            try:
                data = await self._fetch_bootstrap()
            except Exception as e:
                if self._bootstrap is not None:
                    logger.warning(
                        f"Failed to refresh bootstrap-static: {type(e).__name__}: {e}. "
                        "Using stale bootstrap cache as fallback."
                    )
                    return self._bootstrap
                logger.error(f"Failed to fetch bootstrap-static: {type(e).__name__}: {e}")
                raise

            elapsed = time.monotonic() - start

            # Validate response before caching
            if not data.get("elements"):
                logger.error(
                    "Bootstrap response missing 'elements' key. "
                    f"Response keys: {list(data.keys())}. "
                    "API may be under maintenance or rate-limiting."
                )
                return self._bootstrap if self._bootstrap is not None else data

            self._bootstrap = data
            self._players_by_id = {
                p["id"]: p for p in data.get("elements", []) if p.get("id") is not None
            }
            self._fresh_bootstrap[BOOTSTRAP_KEY] = True
            logger.info(
                f"Cached bootstrap-static: {len(self._players_by_id)} players, "
                f"fetched in {elapsed:.2f}s"
            )
            return data

    async def get_fixtures(self) -> list[dict[str, Any]]:
        """Get fixtures, refreshing them if the TTL has lapsed."""
        if FIXTURES_KEY in self._fresh_fixtures and self._fixtures is not None:
            return self._fixtures

        async with self._fixtures_lock:
            if FIXTURES_KEY in self._fresh_fixtures and self._fixtures is not None:
                return self._fixtures

            logger.info("Fetching fixtures from FPL API (cache miss)")
            try:
                data = await self._fetch_fixtures()
            except Exception as e:
                if self._fixtures is not None:
                    logger.warning(
                        f"Failed to refresh fixtures: {type(e).__name__}: {e}. "
                        "Using stale fixtures cache as fallback."
                    )
                    return self._fixtures
                logger.error(f"Failed to fetch fixtures: {type(e).__name__}: {e}")
                raise

            self._fixtures = list(data or [])
            self._fresh_fixtures[FIXTURES_KEY] = True
            logger.info(f"Cached fixtures: {len(self._fixtures)} fixtures")
            return self._fixtures

    async def ensure_loaded(self) -> None:
        """Make sure bootstrap and fixtures are present and within their TTL."""
        await self.get_bootstrap()
        await self.get_fixtures()

    # ------------------------------------------------------------------
    # Synchronous readers (latest known snapshot)
    # ------------------------------------------------------------------

    @property
    def events(self) -> list[dict[str, Any]] | None:
        """Gameweek calendar, or None when bootstrap was never loaded."""
        if self._bootstrap is None:
            return None
        return self._bootstrap.get("events", [])

    @property
    def players_by_id(self) -> dict[int, dict[str, Any]]:
        return self._players_by_id

    @property
    def fixtures(self) -> list[dict[str, Any]]:
        return self._fixtures or []

    def snapshot(self, gameweek: int, timestamp: int) -> dict[str, Any] | None:
        """Reference data to archive beside a completed gameweek.

        Returns None when bootstrap has never been loaded.
        """
        if self._bootstrap is None:
            return None
        return {
            "gameweek": gameweek,
            "timestamp": timestamp,
            "elements": self._bootstrap.get("elements", []),
            "teams": self._bootstrap.get("teams", []),
            "events": self._bootstrap.get("events", []),
            "fixtures": self.fixtures,
        }

    def clear(self) -> None:
        """Drop all cached data. Used by tests to ensure isolation."""
        self._fresh_bootstrap.clear()
        self._fresh_fixtures.clear()
        self._bootstrap = None
        self._fixtures = None
        self._players_by_id = {}
