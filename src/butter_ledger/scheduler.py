"""Daily trigger loop for batch jobs such as the recurring invoice run."""

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

import structlog

from butter_ledger.config import get_settings

logger = structlog.get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DailyJob:
    """A job run once per calendar day."""

    name: str
    handler: Callable[[date], Any]
    priority: int = 0  # Lower = runs first
    enabled: bool = True


class DailyScheduler:
    """Runs registered jobs once per day at the configured UTC hour.

    The scheduler:
    1. Polls the clock and fires once the run hour has been reached
    2. Never runs the same day twice, even if restarted within the loop
    3. Isolates job failures so one job cannot stop the others
    4. Supports pause/resume/stop and manual ``run_once`` triggers
    """

    def __init__(
        self,
        run_hour: int | None = None,
        poll_interval: float = 60.0,
        clock: Callable[[], datetime] = _utc_now,
    ):
        settings = get_settings()
        self._run_hour = settings.scheduler_run_hour if run_hour is None else run_hour
        self._poll_interval = poll_interval
        self._clock = clock

        self._jobs: list[DailyJob] = []
        self._last_run_date: date | None = None
        self._is_running = False
        self._is_paused = False

        self._logger = logger.bind(component="daily_scheduler")

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def is_paused(self) -> bool:
        return self._is_paused

    @property
    def last_run_date(self) -> date | None:
        return self._last_run_date

    def register(self, job: DailyJob) -> None:
        """Add a job to the daily schedule."""
        self._jobs.append(job)
        self._jobs.sort(key=lambda j: j.priority)
        self._logger.debug("job_registered", job=job.name)

    def remove(self, job_name: str) -> bool:
        """Remove a job by name.

        Returns:
            True if the job was found and removed.
        """
        original_len = len(self._jobs)
        self._jobs = [j for j in self._jobs if j.name != job_name]
        return len(self._jobs) < original_len

    def pause(self) -> None:
        self._is_paused = True
        self._logger.info("scheduler_paused")

    def resume(self) -> None:
        self._is_paused = False
        self._logger.info("scheduler_resumed")

    def stop(self) -> None:
        self._is_running = False
        self._is_paused = False
        self._logger.info("scheduler_stopped")

    def is_due(self, now: datetime) -> bool:
        """Whether the daily run should fire at ``now``."""
        if self._is_paused:
            return False
        if now.hour < self._run_hour:
            return False
        return self._last_run_date != now.date()

    async def run_once(self, run_date: date) -> dict[str, Any]:
        """Run every enabled job for ``run_date``.

        Returns:
            Mapping of job name to its result, or to the error message.
        """
        results: dict[str, Any] = {}
        self._logger.info("daily_run_starting", run_date=run_date.isoformat())

        for job in [j for j in self._jobs if j.enabled]:
            try:
                result = job.handler(run_date)
                if inspect.isawaitable(result):
                    result = await result
                results[job.name] = result
            except Exception as e:
                self._logger.error("job_error", job=job.name, error=str(e))
                results[job.name] = {"error": str(e)}

        self._last_run_date = run_date
        self._logger.info("daily_run_completed", run_date=run_date.isoformat(), jobs=len(results))
        return results

    async def run_continuous(self, max_runs: int | None = None) -> None:
        """Poll the clock and run jobs once per day until stopped.

        Args:
            max_runs: Optional number of daily runs after which to return.
        """
        self._is_running = True
        runs = 0
        self._logger.info("continuous_run_starting", run_hour=self._run_hour)

        while self._is_running:
            if max_runs is not None and runs >= max_runs:
                break
            now = self._clock()
            if self.is_due(now):
                await self.run_once(now.date())
                runs += 1
                continue
            await asyncio.sleep(self._poll_interval)

        self._is_running = False
        self._logger.info("continuous_run_ended", runs=runs)

    def get_status(self) -> dict[str, Any]:
        """Get current scheduler status."""
        return {
            "is_running": self._is_running,
            "is_paused": self._is_paused,
            "run_hour": self._run_hour,
            "last_run_date": self._last_run_date.isoformat() if self._last_run_date else None,
            "jobs": [j.name for j in self._jobs],
        }
