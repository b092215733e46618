"""Cohort metrics: sampling pipeline, tiered cache and gameweek archive.

Lookup order for ``get_cohort_metrics``:
    1. In-memory store, if the snapshot is still fresh
    2. Cold storage archive (finished gameweeks only)
    3. Full recompute: sample bands -> fetch picks -> aggregate

Freshness depends on the gameweek lifecycle:
    - COMPLETED + final snapshot: never expires (only force recomputes)
    - COMPLETED + snapshot taken before the gameweek finished: ttl_finished
    - LIVE / UPCOMING / UNKNOWN: ttl_default

Only final snapshots are archived. A snapshot is final when it was computed
while the gameweek was COMPLETED and at least one entry was sampled.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from fplanner.config import Settings
from fplanner.services.archive import (
    ARTIFACT_BOOTSTRAP,
    ARTIFACT_COHORTS,
    ARTIFACT_PICKS,
    GameweekArchive,
)
from fplanner.services.cohort_aggregation import (
    BandSummary,
    PicksAggregate,
    aggregate_picks,
    build_band_summary,
)
from fplanner.services.cohort_sampler import (
    COHORT_BANDS,
    ENTRIES_PER_PAGE,
    MAX_ENTRIES_PER_BAND,
    OVERALL_LEAGUE_ID,
    SAMPLE_PAGES_PER_BAND,
    Band,
    collect_entry_ids,
)
from fplanner.services.fetch_pool import DEFAULT_CONCURRENCY, fetch_entry_metrics
from fplanner.services.fpl_client import EntryPicks, FplApiClient, UpstreamUnavailableError
from fplanner.services.gameweeks import GameweekOracle, GameweekStatus, validate_gameweek
from fplanner.services.reference_data import ReferenceDataCache
from fplanner.services.team_metrics import EntryMetrics, calculate_team_metrics

logger = logging.getLogger(__name__)

COHORT_TTL_DEFAULT = 6 * 60 * 60  # seconds, live/uncertain gameweeks
COHORT_TTL_FINISHED = 3 * 60 * 60  # seconds, finished but snapshot not final

# Reference data failures that leave the pipeline without player data
REFERENCE_ERRORS = (UpstreamUnavailableError, httpx.HTTPError, ValueError)


@dataclass(frozen=True, slots=True)
class CohortConfig:
    """Tunables for sampling and caching cohort metrics."""

    league_id: int = OVERALL_LEAGUE_ID
    entries_per_page: int = ENTRIES_PER_PAGE
    sample_pages_per_band: int = SAMPLE_PAGES_PER_BAND
    max_entries_per_band: int = MAX_ENTRIES_PER_BAND
    max_concurrent_fetches: int = DEFAULT_CONCURRENCY
    ttl_default: int = COHORT_TTL_DEFAULT
    ttl_finished: int = COHORT_TTL_FINISHED
    bands: tuple[Band, ...] = COHORT_BANDS

    @classmethod
    def from_settings(cls, settings: Settings) -> "CohortConfig":
        return cls(
            league_id=settings.overall_league_id,
            entries_per_page=settings.entries_per_page,
            sample_pages_per_band=settings.sample_pages_per_band,
            max_entries_per_band=settings.max_entries_per_band,
            max_concurrent_fetches=settings.max_concurrent_fetches,
            ttl_default=settings.cohort_ttl_default,
            ttl_finished=settings.cohort_ttl_finished,
        )


@dataclass(slots=True)
class CohortSnapshot:
    """Cohort metrics for every band in one gameweek."""

    gameweek: int
    timestamp: int  # epoch milliseconds
    buckets: dict[str, BandSummary] = field(default_factory=dict)
    final: bool = False

    @property
    def total_sample_size(self) -> int:
        return sum(b.sample_size for b in self.buckets.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "gameweek": self.gameweek,
            "timestamp": self.timestamp,
            "final": self.final,
            "buckets": {key: b.to_dict() for key, b in self.buckets.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CohortSnapshot":
        return cls(
            gameweek=data["gameweek"],
            timestamp=data["timestamp"],
            buckets={
                key: BandSummary.from_dict(b) for key, b in data.get("buckets", {}).items()
            },
            # Only final snapshots are ever archived
            final=data.get("final", True),
        )


@dataclass(slots=True)
class PicksSnapshot:
    """Ownership aggregates for every band in one gameweek."""

    gameweek: int
    timestamp: int
    buckets: dict[str, PicksAggregate] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "gameweek": self.gameweek,
            "timestamp": self.timestamp,
            "buckets": {key: b.to_dict() for key, b in self.buckets.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PicksSnapshot":
        return cls(
            gameweek=data["gameweek"],
            timestamp=data["timestamp"],
            buckets={
                key: PicksAggregate.from_dict(b) for key, b in data.get("buckets", {}).items()
            },
        )


@dataclass(slots=True)
class CohortComputation:
    """Output of one full pipeline run."""

    cohorts: CohortSnapshot
    picks: PicksSnapshot


class CohortCacheStore:
    """In-memory gameweek -> snapshot map.

    Every mutation is a single dict assignment or pop, so concurrent readers on
    the event loop see either the old or the new snapshot.
    """

    def __init__(self) -> None:
        self._cohorts: dict[int, CohortSnapshot] = {}
        self._picks: dict[int, PicksSnapshot] = {}

    def get(self, gameweek: int) -> CohortSnapshot | None:
        return self._cohorts.get(gameweek)

    def get_picks(self, gameweek: int) -> PicksSnapshot | None:
        return self._picks.get(gameweek)

    def set(self, cohorts: CohortSnapshot, picks: PicksSnapshot | None = None) -> None:
        if picks is not None:
            self._picks[picks.gameweek] = picks
        self._cohorts[cohorts.gameweek] = cohorts

    def set_picks(self, picks: PicksSnapshot) -> None:
        self._picks[picks.gameweek] = picks

    def delete(self, gameweek: int) -> None:
        self._cohorts.pop(gameweek, None)
        self._picks.pop(gameweek, None)


class CohortService:
    """Cohort metrics with in-memory caching and cold storage archival."""

    def __init__(
        self,
        client: FplApiClient,
        reference: ReferenceDataCache,
        oracle: GameweekOracle,
        archive: GameweekArchive,
        store: CohortCacheStore,
        config: CohortConfig = CohortConfig(),
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.reference = reference
        self.oracle = oracle
        self.archive = archive
        self.store = store
        self.config = config
        self._clock = clock
        # gameweek -> (task, forced)
        self._inflight: dict[int, tuple[asyncio.Task[CohortSnapshot], bool]] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ------------------------------------------------------------------
    # Freshness
    # ------------------------------------------------------------------

    def ttl_for(self, status: GameweekStatus) -> int:
        """TTL in seconds for a non-final snapshot of a gameweek in this state."""
        if status is GameweekStatus.COMPLETED:
            return self.config.ttl_finished
        return self.config.ttl_default

    def is_fresh(self, snapshot: CohortSnapshot | None, status: GameweekStatus) -> bool:
        if snapshot is None:
            return False

        # Finished gameweeks are immutable once a final snapshot exists
        if status is GameweekStatus.COMPLETED and snapshot.final:
            return True

        age_ms = self._now_ms() - snapshot.timestamp
        return age_ms < self.ttl_for(status) * 1000

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_cohort_metrics(
        self, gameweek: int | None = None, force: bool = False
    ) -> CohortSnapshot:
        """Cohort metrics for a gameweek (defaults to the latest finished one).

        Concurrent calls for the same gameweek share a single computation. A
        forced call never joins an unforced one; it recomputes once that
        finishes.

        Raises:
            InvalidGameweekError: gameweek is not an integer in 1..38
        """
        if gameweek is not None:
            validate_gameweek(gameweek)

        await self._refresh_reference()
        target = gameweek if gameweek is not None else self.oracle.latest_finished()

        cached = self.store.get(target)
        if not force and self.is_fresh(cached, self.oracle.status(target)):
            logger.debug(f"GW{target} cohorts served from memory")
            return cached

        running = self._inflight.get(target)
        if running is not None and (running[1] or not force):
            logger.info(f"GW{target} cohorts already computing, awaiting in-flight result")
            return await asyncio.shield(running[0])

        if running is None:
            task = asyncio.create_task(self._materialize(target, force))
        else:
            logger.info(f"GW{target} forced recompute queued behind in-flight request")
            task = asyncio.create_task(self._force_after(running[0], target))
        self._inflight[target] = (task, force)
        task.add_done_callback(self._clear_inflight)

        return await asyncio.shield(task)

    async def compute_cohort_metrics(self, gameweek: int) -> CohortComputation:
        """Run the full sampling pipeline for a gameweek, bypassing all caches.

        Raises:
            InvalidGameweekError: gameweek is not an integer in 1..38
            UpstreamUnavailableError / httpx.HTTPError: reference data could
                not be loaded at all
        """
        validate_gameweek(gameweek)
        await self.reference.ensure_loaded()

        players_by_id = self.reference.players_by_id
        fixtures = self.reference.fixtures
        completed = self.oracle.is_completed(gameweek)

        def calculate(entry: EntryPicks) -> EntryMetrics | None:
            return calculate_team_metrics(entry.picks, gameweek, players_by_id, fixtures)

        logger.info(f"Computing GW{gameweek} cohorts for {len(self.config.bands)} bands")
        start = time.monotonic()
        summaries: dict[str, BandSummary] = {}
        aggregates: dict[str, PicksAggregate] = {}

        for band in self.config.bands:
            entry_ids = await collect_entry_ids(
                self.client,
                band,
                league_id=self.config.league_id,
                entries_per_page=self.config.entries_per_page,
                samples_per_band=self.config.sample_pages_per_band,
                max_entries=self.config.max_entries_per_band,
            )
            result = await fetch_entry_metrics(
                self.client,
                entry_ids,
                gameweek,
                calculate,
                concurrency=self.config.max_concurrent_fetches,
            )
            summaries[band.key] = build_band_summary(band, result.metrics, len(entry_ids))
            aggregates[band.key] = aggregate_picks(result.raw_picks)

        timestamp = self._now_ms()
        cohorts = CohortSnapshot(gameweek=gameweek, timestamp=timestamp, buckets=summaries)
        cohorts.final = completed and cohorts.total_sample_size > 0

        logger.info(
            f"GW{gameweek} cohorts computed in {time.monotonic() - start:.1f}s: "
            + ", ".join(f"{k}={s.sample_size}/{s.attempted}" for k, s in summaries.items())
        )
        return CohortComputation(
            cohorts=cohorts,
            picks=PicksSnapshot(gameweek=gameweek, timestamp=timestamp, buckets=aggregates),
        )

    async def get_picks_snapshot(self, gameweek: int) -> PicksSnapshot | None:
        """Ownership aggregates for a gameweek from memory or the archive."""
        validate_gameweek(gameweek)

        picks = self.store.get_picks(gameweek)
        if picks is not None:
            return picks

        archived = await self.archive.load_gameweek(gameweek, ARTIFACT_PICKS)
        if archived is None:
            return None
        try:
            picks = PicksSnapshot.from_dict(archived)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"GW{gameweek} archived picks are malformed: {e}")
            return None
        self.store.set_picks(picks)
        return picks

    def invalidate(self, gameweek: int) -> None:
        """Drop a gameweek from memory; the archive is left untouched."""
        validate_gameweek(gameweek)
        self.store.delete(gameweek)
        logger.info(f"GW{gameweek} cohorts invalidated")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _clear_inflight(self, task: asyncio.Task[CohortSnapshot]) -> None:
        for gameweek, (running, _) in list(self._inflight.items()):
            if running is task:
                del self._inflight[gameweek]

    async def _force_after(
        self, previous: asyncio.Task[CohortSnapshot], gameweek: int
    ) -> CohortSnapshot:
        # Outcome of the earlier request is irrelevant; only its completion
        await asyncio.wait({previous})
        return await self._materialize(gameweek, force=True)

    async def _refresh_reference(self) -> None:
        """Best-effort refresh so lifecycle status reflects the latest calendar."""
        try:
            await self.reference.ensure_loaded()
        except REFERENCE_ERRORS as e:
            logger.warning(f"Reference data refresh failed, using last snapshot: {e}")

    async def _materialize(self, gameweek: int, force: bool) -> CohortSnapshot:
        completed = self.oracle.is_completed(gameweek)

        if completed and not force:
            restored = await self._restore_from_archive(gameweek)
            if restored is not None:
                return restored

        try:
            computation = await self.compute_cohort_metrics(gameweek)
        except REFERENCE_ERRORS as e:
            stale = self.store.get(gameweek)
            if stale is not None:
                logger.error(f"GW{gameweek} cohort compute failed, serving stale snapshot: {e}")
                return stale
            logger.error(f"GW{gameweek} cohort compute failed, returning empty snapshot: {e}")
            return self._empty_snapshot(gameweek)

        self.store.set(computation.cohorts, computation.picks)

        if computation.cohorts.final:
            await self._archive(gameweek, computation)
        elif completed:
            logger.warning(f"GW{gameweek} sampled no entries, snapshot not archived")

        return computation.cohorts

    async def _restore_from_archive(self, gameweek: int) -> CohortSnapshot | None:
        cohorts_data, picks_data = await asyncio.gather(
            self.archive.load_gameweek(gameweek, ARTIFACT_COHORTS),
            self.archive.load_gameweek(gameweek, ARTIFACT_PICKS),
        )
        if cohorts_data is None:
            return None

        try:
            cohorts = CohortSnapshot.from_dict(cohorts_data)
            picks = PicksSnapshot.from_dict(picks_data) if picks_data else None
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"GW{gameweek} archive is malformed, recomputing: {e}")
            return None

        self.store.set(cohorts, picks)
        logger.info(f"GW{gameweek} cohorts restored from archive")
        return cohorts

    async def _archive(self, gameweek: int, computation: CohortComputation) -> None:
        if not self.archive.enabled:
            return

        logger.info(f"Archiving GW{gameweek} complete dataset")
        await self.archive.archive_gameweek(
            gameweek, ARTIFACT_COHORTS, computation.cohorts.to_dict()
        )
        await self.archive.archive_gameweek(gameweek, ARTIFACT_PICKS, computation.picks.to_dict())

        reference = self.reference.snapshot(gameweek, computation.cohorts.timestamp)
        if reference is not None:
            await self.archive.archive_gameweek(gameweek, ARTIFACT_BOOTSTRAP, reference)

    def _empty_snapshot(self, gameweek: int) -> CohortSnapshot:
        summaries = {band.key: build_band_summary(band, [], 0) for band in self.config.bands}
        return CohortSnapshot(gameweek=gameweek, timestamp=self._now_ms(), buckets=summaries)
