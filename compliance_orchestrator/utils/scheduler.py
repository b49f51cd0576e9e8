"""
Fixed-interval background job runner.

Each job runs in its own task so the timer keeps ticking while a slow run
is in progress. A tick that fires while the previous run is still going
is skipped, never queued.
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from compliance_orchestrator.core.logging import correlation_context
from compliance_orchestrator.models.case import utc_now

logger = structlog.get_logger(__name__)

Job = Callable[[], Awaitable[Any]]


class IntervalScheduler:
    """Runs ``job`` every ``interval_seconds`` until stopped."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        job: Job,
        run_immediately: bool = False,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.name = name
        self.interval_seconds = interval_seconds
        self.job = job
        self.run_immediately = run_immediately

        self._loop_task: Optional[asyncio.Task] = None
        self._run_task: Optional[asyncio.Task] = None

        self.execution_count = 0
        self.failure_count = 0
        self.skipped_ticks = 0
        self.last_execution_time: Optional[datetime] = None
        self.last_execution_duration: Optional[float] = None
        self.last_error: Optional[str] = None
        self.last_result: Any = None

    @property
    def is_started(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def is_running(self) -> bool:
        """True while a job run is in flight."""
        return self._run_task is not None and not self._run_task.done()

    async def start(self) -> None:
        if self.is_started:
            logger.warning("Scheduler already running", scheduler=self.name)
            return

        self._loop_task = asyncio.create_task(self._loop(), name=f"scheduler:{self.name}")
        logger.info(
            "Scheduler started",
            scheduler=self.name,
            interval_seconds=self.interval_seconds,
            run_immediately=self.run_immediately,
        )

    async def stop(self) -> None:
        """Cancel the timer and wait for an in-flight run to finish."""
        if self._loop_task and not self._loop_task.done():
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass

        if self.is_running:
            logger.info("Waiting for in-flight run", scheduler=self.name)
            await asyncio.gather(self._run_task, return_exceptions=True)

        logger.info("Scheduler stopped", scheduler=self.name)

    async def _loop(self) -> None:
        if self.run_immediately:
            self._tick()

        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                self._tick()
            except asyncio.CancelledError:
                break

    def _tick(self) -> None:
        if self.is_running:
            self.skipped_ticks += 1
            logger.warning(
                "Previous run still in progress, tick skipped",
                scheduler=self.name,
                skipped_ticks=self.skipped_ticks,
            )
            return
        self._run_task = asyncio.create_task(self._execute())

    async def run_now(self) -> Any:
        """
        Run the job immediately and return its result.

        If a run is already in flight, wait for it and return its result
        instead of starting a second one.
        """
        if self.is_running:
            await asyncio.gather(self._run_task, return_exceptions=True)
            return self.last_result

        self._run_task = asyncio.create_task(self._execute())
        await self._run_task
        return self.last_result

    async def _execute(self) -> None:
        start = time.time()
        self.last_execution_time = utc_now()

        with correlation_context(job_name=self.name):
            try:
                self.last_result = await self.job()
                self.last_error = None
            except Exception as e:
                self.failure_count += 1
                self.last_error = str(e)
                logger.error("Scheduled job failed", scheduler=self.name, error=str(e), exc_info=True)
            finally:
                self.execution_count += 1
                self.last_execution_duration = round(time.time() - start, 3)

        logger.info(
            "Scheduled job finished",
            scheduler=self.name,
            duration_seconds=self.last_execution_duration,
            execution_count=self.execution_count,
        )

    def get_status(self) -> Dict[str, Any]:
        result = self.last_result
        if hasattr(result, "to_dict"):
            result = result.to_dict()
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "started": self.is_started,
            "is_running": self.is_running,
            "execution_count": self.execution_count,
            "failure_count": self.failure_count,
            "skipped_ticks": self.skipped_ticks,
            "last_execution_time": (
                self.last_execution_time.isoformat() if self.last_execution_time else None
            ),
            "last_execution_duration": self.last_execution_duration,
            "last_error": self.last_error,
            "last_result": result,
        }
