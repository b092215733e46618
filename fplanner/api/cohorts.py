"""Cohort API routes - planner cohort metrics, picks and player ownership history."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from fplanner.dependencies import get_cohort_service, get_player_history_aggregator
from fplanner.schemas.cohorts import (
    CohortSnapshotResponse,
    PicksSnapshotResponse,
    PlayerHistoryResponse,
)
from fplanner.services.cohorts import CohortService
from fplanner.services.gameweeks import InvalidGameweekError
from fplanner.services.player_history import PlayerHistoryAggregator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/cohorts", tags=["cohorts"])


# =============================================================================
# Route Parameters
# =============================================================================

GameweekPath = Annotated[int, Path(ge=1, le=38, description="Gameweek (1-38)")]
PlayerIdPath = Annotated[int, Path(ge=1, description="FPL player (element) ID")]


# =============================================================================
# Routes
# =============================================================================


@router.get("", response_model=CohortSnapshotResponse)
async def get_cohorts(
    gameweek: int | None = Query(
        default=None, ge=1, le=38, description="Gameweek (defaults to latest finished)"
    ),
    force: bool = Query(default=False, description="Recompute even if cached"),
    service: CohortService = Depends(get_cohort_service),
) -> CohortSnapshotResponse:
    """
    Get cohort aggregates (top 10k / 50k / 100k) for a gameweek.

    Finished gameweeks are served from memory or the archive; only a full miss
    samples the FPL API, which can take a few minutes.
    """
    try:
        snapshot = await service.get_cohort_metrics(gameweek, force=force)
    except InvalidGameweekError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        logger.exception(f"Failed to load cohorts: {e}")
        raise HTTPException(
            status_code=500,
            detail="Internal server error while loading cohort metrics",
        ) from e

    return CohortSnapshotResponse.model_validate(snapshot, from_attributes=True)


@router.get("/{gameweek}/picks", response_model=PicksSnapshotResponse)
async def get_cohort_picks(
    gameweek: GameweekPath,
    service: CohortService = Depends(get_cohort_service),
) -> PicksSnapshotResponse:
    """Get ownership, captaincy and formation counts per band for a gameweek."""
    picks = await service.get_picks_snapshot(gameweek)
    if picks is None:
        raise HTTPException(
            status_code=404,
            detail=f"No cohort picks available for GW{gameweek}",
        )
    return PicksSnapshotResponse.model_validate(picks, from_attributes=True)


@router.get("/players/{player_id}/history", response_model=PlayerHistoryResponse)
async def get_player_ownership_history(
    player_id: PlayerIdPath,
    aggregator: PlayerHistoryAggregator = Depends(get_player_history_aggregator),
) -> dict:
    """Get a player's aggregated cohort ownership across archived gameweeks."""
    data = await aggregator.load(player_id)
    if data is None:
        raise HTTPException(
            status_code=404,
            detail=f"No aggregated history for player {player_id}",
        )
    return data
