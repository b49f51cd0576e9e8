"""
Tests for the interval scheduler.
"""
import asyncio

import pytest

from compliance_orchestrator.utils.scheduler import IntervalScheduler


class TestIntervalScheduler:
    """Test scheduling, overlap handling and shutdown."""

    def test_rejects_non_positive_interval(self):
        async def job():
            return None

        with pytest.raises(ValueError):
            IntervalScheduler("bad", 0, job)

    @pytest.mark.asyncio
    async def test_run_now_returns_job_result(self):
        async def job():
            return {"scanned": 3}

        scheduler = IntervalScheduler("delinquency_scan", 60, job)
        assert await scheduler.run_now() == {"scanned": 3}

        status = scheduler.get_status()
        assert status["execution_count"] == 1
        assert status["last_error"] is None
        assert status["last_result"] == {"scanned": 3}
        assert status["started"] is False

    @pytest.mark.asyncio
    async def test_job_failure_is_recorded_not_raised(self):
        async def job():
            raise RuntimeError("repository offline")

        scheduler = IntervalScheduler("liveness_check", 60, job)
        await scheduler.run_now()

        assert scheduler.failure_count == 1
        assert scheduler.last_error == "repository offline"

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self):
        """A tick that fires during a run is dropped, never queued."""
        release = asyncio.Event()
        calls = []

        async def job():
            calls.append(1)
            await release.wait()
            return len(calls)

        scheduler = IntervalScheduler("delinquency_scan", 60, job)
        scheduler._tick()
        await asyncio.sleep(0)
        assert scheduler.is_running

        scheduler._tick()
        assert scheduler.skipped_ticks == 1

        release.set()
        assert await scheduler.run_now() == 1
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_run_now_joins_in_flight_run(self):
        release = asyncio.Event()
        calls = []

        async def job():
            calls.append(1)
            await release.wait()
            return "done"

        scheduler = IntervalScheduler("recovery_escalation", 60, job)
        scheduler._tick()
        await asyncio.sleep(0)

        joiner = asyncio.create_task(scheduler.run_now())
        await asyncio.sleep(0)
        release.set()

        assert await joiner == "done"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_run(self):
        finished = []

        async def job():
            await asyncio.sleep(0.05)
            finished.append(1)

        scheduler = IntervalScheduler("delinquency_scan", 3600, job, run_immediately=True)
        await scheduler.start()
        await asyncio.sleep(0.01)
        assert scheduler.is_started
        assert scheduler.is_running

        await scheduler.stop()

        assert finished == [1]
        assert scheduler.is_started is False
        assert scheduler.execution_count == 1

    @pytest.mark.asyncio
    async def test_interval_ticks_repeat(self):
        calls = []

        async def job():
            calls.append(1)

        scheduler = IntervalScheduler("liveness_check", 0.01, job)
        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert len(calls) >= 2
