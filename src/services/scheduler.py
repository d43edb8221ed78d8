import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from services.database import utcnow

logger = logging.getLogger(__name__)


def next_run_time(hour: int = 8, now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    run = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if run <= now:
        run += timedelta(days=1)
    return run


def next_hourly(now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


def next_weekly(weekday: int, hour: int, now: Optional[datetime] = None) -> datetime:
    """Next occurrence of `weekday` (Monday=0) at `hour`:00."""
    now = now or utcnow()
    run = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    run += timedelta(days=(weekday - run.weekday()) % 7)
    if run <= now:
        run += timedelta(days=7)
    return run


def next_interval(minutes: int, now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    return now + timedelta(minutes=minutes)


@dataclass
class Job:
    name: str
    next_run: Callable[[datetime], datetime]
    action: Callable[[], Awaitable[object]]


class Scheduler:
    """
    Runs each job in its own task: compute the next run, sleep until then,
    run, repeat. A failing run is logged and the job keeps its schedule.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self.jobs: List[Job] = []
        self._tasks: List[asyncio.Task] = []

    def add_job(
        self,
        name: str,
        next_run: Callable[[datetime], datetime],
        action: Callable[[], Awaitable[object]],
    ) -> None:
        self.jobs.append(Job(name, next_run, action))

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def run_job(self, job: Job) -> None:
        try:
            await job.action()
        except Exception as e:
            logger.exception(f"Scheduled job {job.name} failed: {e}")

    async def _loop(self, job: Job) -> None:
        while True:
            now = self.clock()
            run_at = job.next_run(now)
            logger.info(f"Next {job.name} run at {run_at.isoformat()}")
            await asyncio.sleep(max(0.0, (run_at - now).total_seconds()))
            await self.run_job(job)

    def start(self) -> None:
        if self._tasks:
            return
        for job in self.jobs:
            self._tasks.append(asyncio.create_task(self._loop(job), name=f"job:{job.name}"))
        logger.info(f"Scheduler started with {len(self.jobs)} jobs")

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler stopped")
