#!/usr/bin/env python
"""
Backfill archived cohort metrics for finished gameweeks.

Computes cohort metrics for every finished gameweek in the range and writes
them to cold storage. Gameweeks already in the archive are skipped unless
--force is given. Optionally rebuilds the per-player ownership history
afterwards.

Usage:
    python -m scripts.backfill_cohorts
    python -m scripts.backfill_cohorts --from-gw 1 --to-gw 10
    python -m scripts.backfill_cohorts --gameweek 7 --force
    python -m scripts.backfill_cohorts --aggregate-players
    python -m scripts.backfill_cohorts --dry-run

The script is idempotent - archive keys are deterministic, so re-running a
gameweek replaces its objects.
"""

import argparse
import asyncio
import logging
import os
import sys
import time

from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fplanner.config import Settings, get_settings
from fplanner.services.archive import ARTIFACT_COHORTS, GameweekArchive
from fplanner.services.blob_storage import BlobStore, create_blob_store
from fplanner.services.cohorts import CohortCacheStore, CohortConfig, CohortService
from fplanner.services.fpl_client import FplApiClient
from fplanner.services.gameweeks import GameweekOracle, InvalidGameweekError, validate_gameweek
from fplanner.services.player_history import PlayerHistoryAggregator
from fplanner.services.reference_data import ReferenceDataCache

# Load environment
load_dotenv(".env.local")
load_dotenv(".env")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def select_gameweeks(
    service: CohortService,
    from_gw: int,
    to_gw: int | None,
    force: bool,
) -> list[int]:
    """Finished gameweeks in range that still need archiving."""
    last = service.oracle.latest_finished()
    to_gw = min(to_gw, last) if to_gw is not None else last

    selected = []
    for gw in range(from_gw, to_gw + 1):
        if not service.oracle.is_completed(gw):
            logger.info(f"GW{gw} not finished, skipping")
            continue
        if not force and await service.archive.has_gameweek(gw, ARTIFACT_COHORTS):
            logger.info(f"GW{gw} already archived, skipping")
            continue
        selected.append(gw)
    return selected


async def backfill_cohorts(
    service: CohortService,
    from_gw: int = 1,
    to_gw: int | None = None,
    force: bool = False,
    dry_run: bool = False,
) -> list[int]:
    """Compute and archive cohorts for finished gameweeks.

    Args:
        service: Cohort service wired to the configured archive
        from_gw: First gameweek to consider
        to_gw: Last gameweek to consider (latest finished if not provided)
        force: Recompute gameweeks that are already archived
        dry_run: If True, show what would be done without computing

    Returns:
        Gameweeks that failed to produce a final snapshot
    """
    mode = "DRY RUN" if dry_run else "LIVE"
    logger.info(f"Starting cohort backfill ({mode})")

    if not service.archive.enabled:
        logger.warning("Cold storage is disabled; results will not be persisted")

    await service.reference.ensure_loaded()
    gameweeks = await select_gameweeks(service, from_gw, to_gw, force)

    if not gameweeks:
        logger.info("Nothing to backfill")
        return []

    if dry_run:
        logger.info(f"[DRY RUN] Would compute gameweeks: {gameweeks}")
        return []

    failed_gameweeks: list[int] = []
    start_time = time.monotonic()

    for gw in gameweeks:
        gw_start = time.monotonic()
        snapshot = await service.get_cohort_metrics(gw, force=True)
        if not snapshot.final:
            logger.error(f"GW{gw} produced no final snapshot")
            failed_gameweeks.append(gw)
            # Continue with other gameweeks, don't abort entirely
            continue
        logger.info(
            f"GW{gw} archived ({snapshot.total_sample_size} entries) "
            f"in {time.monotonic() - gw_start:.1f}s"
        )

    elapsed = time.monotonic() - start_time
    if failed_gameweeks:
        logger.error(f"FAILED for {len(failed_gameweeks)} gameweeks: {failed_gameweeks}")

    logger.info(
        f"Backfill complete: {len(gameweeks)} gameweeks in {elapsed:.1f}s"
        + (f" ({len(failed_gameweeks)} failed)" if failed_gameweeks else "")
    )
    return failed_gameweeks


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments; --gameweek N is shorthand for --from-gw N --to-gw N."""
    parser = argparse.ArgumentParser(description="Backfill archived cohort metrics")
    parser.add_argument("--from-gw", type=int, default=1, help="First gameweek (default: 1)")
    parser.add_argument(
        "--to-gw",
        type=int,
        default=None,
        help="Last gameweek (latest finished if not provided)",
    )
    parser.add_argument(
        "--gameweek",
        type=int,
        default=None,
        help="Single gameweek to backfill",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Recompute gameweeks that are already archived",
    )
    parser.add_argument(
        "--aggregate-players",
        action="store_true",
        help="Rebuild per-player ownership history after the backfill",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args(argv)

    if args.gameweek is not None:
        args.from_gw = args.to_gw = args.gameweek
    try:
        validate_gameweek(args.from_gw)
        if args.to_gw is not None:
            validate_gameweek(args.to_gw)
    except InvalidGameweekError as e:
        parser.error(str(e))
    return args


def build_service(settings: Settings, client: FplApiClient, store: BlobStore) -> CohortService:
    """Wire a CohortService the same way the API does at startup."""
    reference = ReferenceDataCache(
        client.get_bootstrap_static,
        client.get_fixtures,
        bootstrap_ttl=settings.cache_ttl_bootstrap,
        fixtures_ttl=settings.cache_ttl_fixtures,
    )
    return CohortService(
        client,
        reference,
        GameweekOracle(lambda: reference.events),
        GameweekArchive(store),
        CohortCacheStore(),
        config=CohortConfig.from_settings(settings),
    )


async def main() -> None:
    """Main entry point with argument parsing."""
    args = parse_args()

    settings = get_settings()
    store = await create_blob_store(settings)
    client = FplApiClient(
        base_url=settings.fpl_api_base_url,
        requests_per_second=settings.requests_per_second,
        max_concurrent=settings.max_concurrent_requests,
        timeout=settings.request_timeout,
    )

    try:
        service = build_service(settings, client, store)

        failed = await backfill_cohorts(
            service,
            from_gw=args.from_gw,
            to_gw=args.to_gw,
            force=args.force,
            dry_run=args.dry_run,
        )

        if args.aggregate_players and not args.dry_run:
            aggregator = PlayerHistoryAggregator(client, service.archive, service.oracle)
            result = await aggregator.aggregate(from_gw=1, to_gw=args.to_gw)
            logger.info(
                f"Player history: {result.aggregated} saved, {result.skipped} skipped "
                f"of {result.total_players}"
            )
    except Exception as e:
        logger.error(f"Backfill failed: {e}", exc_info=True)
        raise
    finally:
        await client.close()
        await store.close()

    # Exit with error code if any gameweek failed
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
