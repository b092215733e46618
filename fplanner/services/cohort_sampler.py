"""Sampling of entry ids from ranked bands of the overall league.

The top-100k band alone spans 2,000 standings pages, so instead of walking every
page the sampler visits a deterministic, evenly spaced subset of them.

Standings are live while a gameweek is in progress: two runs for the same band
can visit the same pages and still see different entries if ranks move
between requests. Cohort distributions for unfinished gameweeks are therefore
not reproducible across recomputes.
"""

import logging
import math
from dataclasses import dataclass

import httpx

from fplanner.services.fpl_client import FplApiClient, UpstreamUnavailableError

logger = logging.getLogger(__name__)

OVERALL_LEAGUE_ID = 314
ENTRIES_PER_PAGE = 50
SAMPLE_PAGES_PER_BAND = 8
MAX_ENTRIES_PER_BAND = 500


@dataclass(frozen=True, slots=True)
class Band:
    """A ranked slice of the overall league."""

    key: str
    label: str
    max_rank: int


COHORT_BANDS: tuple[Band, ...] = (
    Band(key="top10k", label="Top 10k", max_rank=10_000),
    Band(key="top50k", label="Top 50k", max_rank=50_000),
    Band(key="top100k", label="Top 100k", max_rank=100_000),
)


def get_sample_pages(
    band: Band,
    entries_per_page: int = ENTRIES_PER_PAGE,
    samples_per_band: int = SAMPLE_PAGES_PER_BAND,
) -> list[int]:
    """Evenly spaced standings pages covering a band.

    Always includes page 1 and the band's last page. For top10k at 50 entries
    per page this is [1, 25, 50, ..., 175, 200].
    """
    total_pages = max(1, math.ceil(band.max_rank / entries_per_page))
    step = max(1, total_pages // max(1, samples_per_band))

    pages = {1, total_pages}
    pages.update(range(step, total_pages + 1, step))
    return sorted(pages)


async def collect_entry_ids(
    client: FplApiClient,
    band: Band,
    league_id: int = OVERALL_LEAGUE_ID,
    entries_per_page: int = ENTRIES_PER_PAGE,
    samples_per_band: int = SAMPLE_PAGES_PER_BAND,
    max_entries: int = MAX_ENTRIES_PER_BAND,
) -> list[int]:
    """Collect up to max_entries distinct entry ids ranked within the band.

    Pages are visited in ascending order; a page that fails to load is logged
    and skipped.
    """
    entry_ids: dict[int, None] = {}  # insertion-ordered set

    for page in get_sample_pages(band, entries_per_page, samples_per_band):
        try:
            standings = await client.get_standings_page(league_id, page)
        except (UpstreamUnavailableError, httpx.HTTPError, ValueError, TypeError) as e:
            logger.warning(f"Failed to fetch page {page} for band {band.key}: {e}")
            continue

        for entry in standings.entries:
            if 0 < entry.rank <= band.max_rank:
                entry_ids[entry.entry_id] = None
                if len(entry_ids) >= max_entries:
                    break

        if len(entry_ids) >= max_entries:
            break

    logger.info(f"Band {band.key}: sampled {len(entry_ids)} entries")
    return list(entry_ids)[:max_entries]
