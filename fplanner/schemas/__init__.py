"""API response schemas."""

from fplanner.schemas.cohorts import (
    BandSummaryResponse,
    CohortSnapshotResponse,
    PicksSnapshotResponse,
    PlayerHistoryResponse,
)

__all__ = [
    "BandSummaryResponse",
    "CohortSnapshotResponse",
    "PicksSnapshotResponse",
    "PlayerHistoryResponse",
]
