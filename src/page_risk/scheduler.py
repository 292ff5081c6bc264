"""
Scheduler for the engine's background jobs.

Jobs are independent and interval based: periodic rescan, ledger trim,
catalog refresh and scan cache cleanup. Each due job is started as its own
task so jobs overlap each other and foreground scoring, but a job whose
previous run is still active is skipped rather than started twice.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .audit_logger import AuditLogger
from .enums import LogLevel


@dataclass
class ScheduledJob:
    """A named periodic job."""

    name: str
    interval_seconds: float
    callback: Callable[[], Awaitable[object]]
    enabled: bool = True
    running: bool = False
    last_started: Optional[float] = None
    runs: int = 0
    skipped: int = 0
    failures: int = 0

    def is_due(self, now: float) -> bool:
        if not self.enabled:
            return False
        return self.last_started is None or now - self.last_started >= self.interval_seconds


class Scheduler:
    """Interval scheduler with a per-job re-entrancy guard."""

    COMPONENT = "Scheduler"

    def __init__(
        self,
        logger: Optional[AuditLogger] = None,
        tick_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._logger = logger
        self._tick_seconds = tick_seconds
        self._clock = clock
        self._jobs: dict[str, ScheduledJob] = {}
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    def schedule(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], Awaitable[object]],
    ) -> ScheduledJob:
        """
        Register a job.

        Raises:
            ValueError: If the name is taken or the interval is not positive
        """
        if name in self._jobs:
            raise ValueError(f"Job '{name}' already exists")
        if interval_seconds <= 0:
            raise ValueError(f"Interval must be positive, got {interval_seconds}")
        job = ScheduledJob(name=name, interval_seconds=interval_seconds, callback=callback)
        self._jobs[name] = job
        return job

    def unschedule(self, name: str) -> bool:
        return self._jobs.pop(name, None) is not None

    def get_job(self, name: str) -> Optional[ScheduledJob]:
        return self._jobs.get(name)

    def list_jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def enable_job(self, name: str) -> bool:
        if name in self._jobs:
            self._jobs[name].enabled = True
            return True
        return False

    def disable_job(self, name: str) -> bool:
        if name in self._jobs:
            self._jobs[name].enabled = False
            return True
        return False

    async def run_job(self, name: str) -> bool:
        """
        Run a job now and wait for it.

        Returns:
            False if the job is unknown or its previous run is still active
        """
        job = self._jobs.get(name)
        if job is None:
            return False
        if job.running:
            job.skipped += 1
            self._log(LogLevel.DEBUG, "Job still running, skipped", {"job": name})
            return False
        await self._execute(job)
        return True

    def start_due_jobs(self) -> list[str]:
        """Start every due, idle job as a task; returns the names started."""
        now = self._clock()
        started = []
        for job in self._jobs.values():
            if not job.is_due(now):
                continue
            if job.running:
                job.skipped += 1
                self._log(LogLevel.DEBUG, "Job still running, skipped", {"job": job.name})
                continue
            # Mark before the task starts so the next tick sees it as running
            job.running = True
            task = asyncio.create_task(self._execute(job, claimed=True))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(job.name)
        return started

    async def _execute(self, job: ScheduledJob, claimed: bool = False) -> None:
        if not claimed:
            job.running = True
        job.last_started = self._clock()
        try:
            await job.callback()
            job.runs += 1
        except Exception as e:
            job.failures += 1
            if self._logger:
                self._logger.log_error(self.COMPONENT, f"Job '{job.name}' failed", error=e)
        finally:
            job.running = False

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run the scheduling loop until ``stop()`` or ``stop_event`` is set."""
        self._running = True
        self._log(LogLevel.INFO, "Scheduler started", {"jobs": sorted(self._jobs)})
        try:
            while self._running:
                self.start_due_jobs()
                if stop_event is not None:
                    try:
                        await asyncio.wait_for(stop_event.wait(), timeout=self._tick_seconds)
                        break
                    except asyncio.TimeoutError:
                        continue
                else:
                    await asyncio.sleep(self._tick_seconds)
        finally:
            self._running = False
            await self.wait_idle()
            self._log(LogLevel.INFO, "Scheduler stopped")

    async def wait_idle(self) -> None:
        """Wait for every started job task to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def stop(self) -> None:
        self._running = False

    def is_running(self) -> bool:
        return self._running

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
