"""Shared FastAPI dependencies for API routes."""

from fastapi import HTTPException, Request

from fplanner.services.cohorts import CohortService
from fplanner.services.player_history import PlayerHistoryAggregator


def get_cohort_service(request: Request) -> CohortService:
    """FastAPI dependency returning the app's CohortService.

    Raises HTTPException 503 if the service was not initialized at startup.

    Usage:
        @router.get("/endpoint")
        async def endpoint(service: CohortService = Depends(get_cohort_service)):
            ...
    """
    service = getattr(request.app.state, "cohort_service", None)
    if service is None:
        raise HTTPException(
            status_code=503,
            detail="Cohort service not available. The backend is still starting up.",
        )
    return service


def get_player_history_aggregator(request: Request) -> PlayerHistoryAggregator:
    """FastAPI dependency returning the app's PlayerHistoryAggregator."""
    aggregator = getattr(request.app.state, "player_history", None)
    if aggregator is None:
        raise HTTPException(
            status_code=503,
            detail="Player history not available. The backend is still starting up.",
        )
    return aggregator
