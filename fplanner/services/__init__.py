"""Service layer for cohort sampling, caching and archival."""

from fplanner.services.cohort_scheduler import CohortScheduler
from fplanner.services.cohorts import CohortCacheStore, CohortService
from fplanner.services.fpl_client import FplApiClient

__all__ = ["CohortCacheStore", "CohortScheduler", "CohortService", "FplApiClient"]
