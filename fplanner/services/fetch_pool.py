"""Bounded-concurrency fetching of entry picks.

A fixed number of worker coroutines pull entry ids from a shared queue, so at
most ``concurrency`` picks requests are in flight at once. Individual failures
(429s and 504s are common at this volume) drop that entry and never abort the
batch.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import httpx

from fplanner.services.fpl_client import EntryPicks, FplApiClient, UpstreamUnavailableError
from fplanner.services.team_metrics import EntryMetrics

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5

# Errors that drop a single entry rather than the batch
ENTRY_FETCH_ERRORS = (
    UpstreamUnavailableError,
    httpx.HTTPError,
    ValueError,
    KeyError,
    TypeError,
)

MetricsCalculator = Callable[[EntryPicks], EntryMetrics | None]


@dataclass(slots=True)
class FetchResult:
    """Successful entries of a batch. Order is not guaranteed."""

    metrics: list[EntryMetrics] = field(default_factory=list)
    raw_picks: list[EntryPicks] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


async def fetch_entry_metrics(
    client: FplApiClient,
    entry_ids: Sequence[int],
    gameweek: int,
    calculate: MetricsCalculator,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> FetchResult:
    """Fetch picks for every entry and derive their metrics.

    Args:
        client: FPL API client
        entry_ids: Entries to fetch
        gameweek: Gameweek whose picks are fetched
        calculate: Turns an entry's picks into metrics (None skips the entry)
        concurrency: Maximum picks requests in flight

    Returns:
        FetchResult with one metrics/raw_picks item per successful entry
    """
    queue: asyncio.Queue[int] = asyncio.Queue()
    for entry_id in entry_ids:
        queue.put_nowait(entry_id)

    result = FetchResult()

    async def worker() -> None:
        while True:
            try:
                entry_id = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            try:
                entry_picks = await client.get_entry_picks(entry_id, gameweek)
            except ENTRY_FETCH_ERRORS as e:
                logger.warning(f"Failed to fetch picks for entry {entry_id}, GW{gameweek}: {e}")
                result.failed.append(entry_id)
                continue

            metrics = calculate(entry_picks)
            if metrics is None:
                logger.debug(f"Entry {entry_id} has no known players for GW{gameweek}, skipping")
                continue

            result.metrics.append(metrics)
            result.raw_picks.append(entry_picks)

    worker_count = min(max(1, concurrency), len(entry_ids))
    if worker_count:
        await asyncio.gather(*(worker() for _ in range(worker_count)))

    logger.info(
        f"GW{gameweek}: fetched {len(result.metrics)}/{len(entry_ids)} entries "
        f"({len(result.failed)} failed)"
    )
    return result
