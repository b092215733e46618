"""Background scheduler that materialises cohorts once per finished gameweek.

Every poll interval the scheduler checks the latest finished gameweek. When a
new one appears it waits out the settle window (FPL keeps correcting bonus
points and stats for a while after ``data_checked_time``), then forces a full
recompute through CohortService, which caches and archives the result. Failed
runs are retried after a fixed delay, indefinitely.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass

from fplanner.config import Settings
from fplanner.services.cohorts import CohortService
from fplanner.services.reference_data import ReferenceDataCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    """Scheduler timings, in seconds."""

    poll_interval: float = 15 * 60
    settle_window: float = 2 * 60 * 60
    retry_delay: float = 30 * 60

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulerConfig":
        return cls(
            poll_interval=settings.cohort_scheduler_poll,
            settle_window=settings.cohort_post_gw_delay,
            retry_delay=settings.cohort_scheduler_retry,
        )


class CohortScheduler:
    """Start/stop lifecycle around a polling task and a one-shot compute timer."""

    def __init__(
        self,
        service: CohortService,
        reference: ReferenceDataCache,
        config: SchedulerConfig = SchedulerConfig(),
    ):
        self.service = service
        self.reference = reference
        self.oracle = service.oracle
        self.config = config
        self.last_processed_gameweek: int | None = None
        self.pending_gameweek: int | None = None
        self._monitor_task: asyncio.Task[None] | None = None
        self._timer_task: asyncio.Task[None] | None = None
        self._computing = False

    @property
    def running(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    def start(self) -> None:
        """Begin polling. Must be called from a running event loop."""
        if self.running:
            return
        logger.info(
            f"Cohort scheduler starting (poll every {self.config.poll_interval / 60:.0f} min)"
        )
        self._monitor_task = asyncio.create_task(self._monitor())

    async def stop(self) -> None:
        """Cancel the polling task and any pending compute timer."""
        tasks = [t for t in (self._monitor_task, self._timer_task) if t is not None]
        self._monitor_task = None
        self._timer_task = None
        self.pending_gameweek = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if tasks:
            logger.info("Cohort scheduler stopped")

    async def _monitor(self) -> None:
        while True:
            await self.evaluate()
            await asyncio.sleep(self.config.poll_interval)

    async def evaluate(self) -> None:
        """One scheduler tick. Never raises."""
        try:
            try:
                await self.reference.ensure_loaded()
            except Exception as e:
                logger.warning(f"Cohort scheduler could not refresh reference data: {e}")

            if self.reference.events is None:
                return
            self.oracle.log_status()

            latest = self.oracle.latest_finished()
            if not self.oracle.is_completed(latest):
                return

            if self.last_processed_gameweek is not None and latest <= self.last_processed_gameweek:
                return

            cached = self.service.store.get(latest)
            if cached is not None and cached.final:
                self.last_processed_gameweek = latest
                return

            if self.pending_gameweek == latest or self._computing:
                return

            self.schedule(latest, self.compute_delay(latest))
        except Exception as e:
            logger.warning(f"Cohort scheduler check failed: {type(e).__name__}: {e}")

    def compute_delay(self, gameweek: int) -> float:
        """Seconds to wait before computing a gameweek.

        The settle window is measured from FPL's data_checked_time; without it
        the full window applies.
        """
        if not self.oracle.is_completed(gameweek):
            return self.config.settle_window

        elapsed = self.oracle.time_since_data_checked(gameweek)
        if elapsed is None:
            return self.config.settle_window

        return max(0.0, self.config.settle_window - elapsed.total_seconds())

    def schedule(self, gameweek: int, delay: float) -> None:
        """Replace any pending timer with one that computes gameweek after delay."""
        timer = self._timer_task
        # A retry is scheduled from inside the running timer; don't cancel it
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

        self.pending_gameweek = gameweek
        logger.info(
            f"Cohort scheduler: scheduling GW{gameweek} aggregation in {round(delay / 60)} minutes"
        )
        self._timer_task = asyncio.create_task(self._run_after(gameweek, delay))

    async def _run_after(self, gameweek: int, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))
        await self.run_aggregation(gameweek)

    async def run_aggregation(self, gameweek: int) -> bool:
        """Compute and store a gameweek; reschedules itself on failure."""
        if self._computing:
            return False

        self.pending_gameweek = None
        self._computing = True
        try:
            logger.info(f"Cohort scheduler: computing GW{gameweek}")
            snapshot = await self.service.get_cohort_metrics(gameweek, force=True)
            if not snapshot.final:
                raise RuntimeError(
                    f"GW{gameweek} snapshot is not final "
                    f"(sampled {snapshot.total_sample_size} entries)"
                )
        except Exception as e:
            logger.error(f"Cohort scheduler failed for GW{gameweek}: {type(e).__name__}: {e}")
            self.schedule(gameweek, self.config.retry_delay)
            return False
        finally:
            # Also reached when stop() cancels the timer mid-compute
            self._computing = False

        self.last_processed_gameweek = gameweek
        logger.info(f"Cohort scheduler: GW{gameweek} snapshot stored")
        return True
