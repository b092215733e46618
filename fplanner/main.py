"""Main FastAPI application entry point."""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fplanner.api.cohorts import router as cohorts_router
from fplanner.config import get_settings
from fplanner.services.archive import GameweekArchive
from fplanner.services.blob_storage import create_blob_store
from fplanner.services.cohort_scheduler import CohortScheduler, SchedulerConfig
from fplanner.services.cohorts import CohortCacheStore, CohortConfig, CohortService
from fplanner.services.fpl_client import FplApiClient
from fplanner.services.gameweeks import GameweekOracle
from fplanner.services.player_history import PlayerHistoryAggregator
from fplanner.services.reference_data import ReferenceDataCache

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="FPLanner Backend",
    description="Cohort metrics for top-ranked FPL managers, sampled and archived per gameweek",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(cohorts_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.on_event("startup")
async def startup_event() -> None:
    """Wire up the cohort pipeline and start the background scheduler."""
    logger.info("Starting FPLanner Backend")
    logger.info(f"CORS origins: {settings.cors_origins_list}")
    logger.info(f"FPL API base: {settings.fpl_api_base_url}")

    client = FplApiClient(
        base_url=settings.fpl_api_base_url,
        requests_per_second=settings.requests_per_second,
        max_concurrent=settings.max_concurrent_requests,
        timeout=settings.request_timeout,
    )
    reference = ReferenceDataCache(
        client.get_bootstrap_static,
        client.get_fixtures,
        bootstrap_ttl=settings.cache_ttl_bootstrap,
        fixtures_ttl=settings.cache_ttl_fixtures,
    )
    oracle = GameweekOracle(lambda: reference.events)
    store = await create_blob_store(settings)
    archive = GameweekArchive(store)
    logger.info(f"Cold storage backend: {settings.storage_backend}")

    service = CohortService(
        client,
        reference,
        oracle,
        archive,
        CohortCacheStore(),
        config=CohortConfig.from_settings(settings),
    )
    scheduler = CohortScheduler(service, reference, SchedulerConfig.from_settings(settings))

    app.state.fpl_client = client
    app.state.blob_store = store
    app.state.cohort_service = service
    app.state.player_history = PlayerHistoryAggregator(client, archive, oracle)
    app.state.cohort_scheduler = scheduler

    if settings.cohort_scheduler_enabled:
        scheduler.start()
    else:
        logger.info("Cohort scheduler disabled")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Cleanup on shutdown."""
    logger.info("Shutting down FPLanner Backend")

    scheduler = getattr(app.state, "cohort_scheduler", None)
    if scheduler is not None:
        await scheduler.stop()

    client = getattr(app.state, "fpl_client", None)
    if client is not None:
        await client.close()

    store = getattr(app.state, "blob_store", None)
    if store is not None:
        await store.close()
