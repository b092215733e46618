"""Cohort API response schemas.

These Pydantic models are used for API serialization. They can be populated
directly from the service dataclasses using model_validate(obj, from_attributes=True).
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BandSummaryResponse(BaseModel):
    """Aggregated planner metrics for one ranked band."""

    model_config = ConfigDict(from_attributes=True)

    key: str
    label: str
    max_rank: int
    sample_size: int = Field(ge=0)
    attempted: int = Field(ge=0)
    averages: dict[str, float | None]  # None when no entry had a value
    distributions: dict[str, list[float]]


class CohortSnapshotResponse(BaseModel):
    """Cohort metrics for every band in one gameweek."""

    model_config = ConfigDict(from_attributes=True)

    gameweek: int = Field(ge=1, le=38)
    timestamp: int  # epoch milliseconds
    final: bool
    buckets: dict[str, BandSummaryResponse]


class PlayerPickStatsResponse(BaseModel):
    """Ownership counts for one player within a band."""

    model_config = ConfigDict(from_attributes=True)

    element: int
    ownership: int
    captain_count: int
    vice_captain_count: int
    bench_count: int
    multiplier_sum: int


class PicksAggregateResponse(BaseModel):
    """Ownership and formation counts for one band."""

    model_config = ConfigDict(from_attributes=True)

    players: list[PlayerPickStatsResponse]
    formations: dict[str, int]
    sample_size: int = Field(ge=0)


class PicksSnapshotResponse(BaseModel):
    """Ownership aggregates for every band in one gameweek."""

    model_config = ConfigDict(from_attributes=True)

    gameweek: int = Field(ge=1, le=38)
    timestamp: int
    buckets: dict[str, PicksAggregateResponse]


class PlayerHistoryResponse(BaseModel):
    """Aggregated per-gameweek ownership history for one player.

    Note: each gameweek record uses dynamic band keys (e.g. "top10k") next to
    gameweek, price, gw_points, total_points, form and overall_ownership.
    """

    player_id: int
    last_updated: str
    gameweeks: list[dict[str, Any]]
