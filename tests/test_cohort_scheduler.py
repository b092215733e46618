"""Tests for the background cohort scheduler."""

import asyncio
import logging
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from fplanner.services.cohort_scheduler import CohortScheduler, SchedulerConfig
from fplanner.services.cohorts import CohortSnapshot
from tests.conftest import NOW, iso_timestamp

SETTLE = 2 * 60 * 60


@pytest.fixture
def scheduler(cohort_service, reference) -> CohortScheduler:
    return CohortScheduler(
        cohort_service,
        reference,
        SchedulerConfig(poll_interval=3600, settle_window=SETTLE, retry_delay=0),
    )


async def _drain_timer(scheduler: CohortScheduler) -> None:
    """Await timers until no new one is scheduled."""
    while scheduler._timer_task is not None and not scheduler._timer_task.done():
        await scheduler._timer_task


class TestComputeDelay:
    async def test_long_settled_gameweek_runs_immediately(self, scheduler, reference):
        await reference.ensure_loaded()

        assert scheduler.compute_delay(7) == 0.0

    async def test_recently_checked_waits_out_remainder(self, scheduler, reference, bootstrap_data):
        checked = NOW - timedelta(minutes=30)
        bootstrap_data["events"][6]["data_checked_time"] = iso_timestamp(checked)
        await reference.ensure_loaded()

        assert scheduler.compute_delay(7) == pytest.approx(SETTLE - 30 * 60)

    async def test_unknown_check_time_uses_full_window(self, scheduler, reference, bootstrap_data):
        bootstrap_data["events"][6]["data_checked_time"] = None
        await reference.ensure_loaded()

        assert scheduler.compute_delay(7) == SETTLE

    async def test_unfinished_gameweek_uses_full_window(self, scheduler, reference):
        await reference.ensure_loaded()

        assert scheduler.compute_delay(8) == SETTLE


class TestEvaluate:
    async def test_schedules_and_processes_latest_finished(self, scheduler, fake_client):
        await scheduler.evaluate()
        assert scheduler.pending_gameweek == 7

        await _drain_timer(scheduler)

        assert scheduler.last_processed_gameweek == 7
        assert scheduler.pending_gameweek is None
        assert scheduler.service.store.get(7).final is True
        assert fake_client.standings_calls == [1, 25, 50]

    async def test_duplicate_ticks_schedule_once(self, scheduler, reference, bootstrap_data):
        checked = NOW - timedelta(minutes=30)
        bootstrap_data["events"][6]["data_checked_time"] = iso_timestamp(checked)

        await scheduler.evaluate()
        first_timer = scheduler._timer_task
        await scheduler.evaluate()

        assert scheduler._timer_task is first_timer
        assert scheduler.pending_gameweek == 7
        await scheduler.stop()

    async def test_cached_final_snapshot_marks_processed(self, scheduler, fake_client):
        await scheduler.service.get_cohort_metrics(7)
        calls = len(fake_client.standings_calls)

        await scheduler.evaluate()

        assert scheduler.last_processed_gameweek == 7
        assert scheduler._timer_task is None
        assert len(fake_client.standings_calls) == calls

    async def test_already_processed_is_skipped(self, scheduler):
        scheduler.last_processed_gameweek = 7

        await scheduler.evaluate()

        assert scheduler._timer_task is None

    async def test_logs_gameweek_status_each_tick(self, scheduler, caplog):
        scheduler.last_processed_gameweek = 7

        with caplog.at_level(logging.INFO, logger="fplanner.services.gameweeks"):
            await scheduler.evaluate()

        assert "Gameweek status: current GW8" in caplog.text
        assert "latest finished GW7" in caplog.text

    async def test_reference_failure_does_not_raise(self, scheduler):
        scheduler.reference.ensure_loaded = AsyncMock(side_effect=RuntimeError("down"))

        await scheduler.evaluate()

        assert scheduler._timer_task is None


class TestRunAggregation:
    async def test_non_final_result_is_retried(self, scheduler):
        empty = CohortSnapshot(gameweek=7, timestamp=1, final=False)
        final = CohortSnapshot(gameweek=7, timestamp=2, final=True)
        scheduler.service.get_cohort_metrics = AsyncMock(side_effect=[empty, final])

        assert await scheduler.run_aggregation(7) is False
        assert scheduler.pending_gameweek == 7

        await _drain_timer(scheduler)

        assert scheduler.last_processed_gameweek == 7
        assert scheduler.service.get_cohort_metrics.await_count == 2
        scheduler.service.get_cohort_metrics.assert_awaited_with(7, force=True)

    async def test_exception_is_retried_from_timer(self, scheduler):
        final = CohortSnapshot(gameweek=7, timestamp=2, final=True)
        scheduler.service.get_cohort_metrics = AsyncMock(
            side_effect=[RuntimeError("boom"), RuntimeError("boom"), final]
        )

        scheduler.schedule(7, 0)
        await _drain_timer(scheduler)

        assert scheduler.last_processed_gameweek == 7
        assert scheduler.service.get_cohort_metrics.await_count == 3

    async def test_concurrent_run_is_refused(self, scheduler):
        scheduler._computing = True

        assert await scheduler.run_aggregation(7) is False


class TestLifecycle:
    async def test_start_and_stop(self, scheduler):
        scheduler.start()
        assert scheduler.running

        await asyncio.sleep(0)
        await scheduler.stop()

        assert not scheduler.running
        assert scheduler._timer_task is None

    async def test_stop_mid_compute_allows_later_runs(self, scheduler):
        started = asyncio.Event()

        async def blocked_compute(gameweek, force=False):
            started.set()
            await asyncio.Event().wait()

        scheduler.service.get_cohort_metrics = blocked_compute
        scheduler.schedule(7, 0)
        await started.wait()

        await scheduler.stop()

        assert scheduler._computing is False

        final = CohortSnapshot(gameweek=7, timestamp=2, final=True)
        scheduler.service.get_cohort_metrics = AsyncMock(return_value=final)
        await scheduler.evaluate()
        assert scheduler.pending_gameweek == 7

        await _drain_timer(scheduler)

        assert scheduler.last_processed_gameweek == 7
        scheduler.service.get_cohort_metrics.assert_awaited_once_with(7, force=True)

    async def test_stop_without_start(self, scheduler):
        await scheduler.stop()

        assert not scheduler.running

    def test_config_from_settings(self):
        from fplanner.config import Settings

        config = SchedulerConfig.from_settings(
            Settings(cohort_scheduler_poll=60, cohort_post_gw_delay=120, cohort_scheduler_retry=30)
        )

        assert config == SchedulerConfig(poll_interval=60, settle_window=120, retry_delay=30)
