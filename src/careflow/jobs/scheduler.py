"""
Careflow Job Scheduler

Cron-based periodic runner for the reconciliation jobs. Each due job runs
as its own asyncio task; a job still running when it falls due again is
not started twice.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine
import asyncio
import uuid

from croniter import croniter
import structlog

logger = structlog.get_logger(__name__)

JobCallable = Callable[[], Coroutine[Any, Any, Any]]


class ScheduleStatus(str, Enum):
    """Status of a scheduled job."""
    ACTIVE = "active"
    PAUSED = "paused"


@dataclass
class ScheduledJob:
    """A job registered for periodic execution."""
    id: str
    name: str
    cron: str
    job: JobCallable
    status: ScheduleStatus = ScheduleStatus.ACTIVE
    next_run: datetime | None = None
    last_run: datetime | None = None
    last_result: str | None = None  # success, failed, timeout, cancelled
    last_error: str | None = None
    run_count: int = 0
    failure_count: int = 0
    timeout_seconds: float | None = None


def next_run_after(cron: str, after: datetime | None = None) -> datetime:
    """Next fire time of a cron expression strictly after ``after``."""
    base = after or datetime.now(timezone.utc)
    return croniter(cron, base).get_next(datetime)


class JobScheduler:
    """
    Runs registered jobs on their cron schedules.

    Features:
    - Cron schedules (croniter)
    - Pause/resume
    - Optional per-job timeout
    - Run metadata per job
    """

    def __init__(self, check_interval_seconds: float = 60):
        self.check_interval = check_interval_seconds

        self._jobs: dict[str, ScheduledJob] = {}
        self._running = False
        self._task: asyncio.Task | None = None
        self._executions: dict[str, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return self._running

    def schedule(
        self,
        name: str,
        cron: str,
        job: JobCallable,
        timeout_seconds: float | None = None,
    ) -> ScheduledJob:
        """
        Register a job.

        Raises:
            ValueError: if the cron expression is invalid
        """
        if not croniter.is_valid(cron):
            raise ValueError(f"Invalid cron expression: {cron}")

        scheduled = ScheduledJob(
            id=str(uuid.uuid4()),
            name=name,
            cron=cron,
            job=job,
            next_run=next_run_after(cron),
            timeout_seconds=timeout_seconds,
        )
        self._jobs[scheduled.id] = scheduled

        logger.info("Job scheduled", job=name, cron=cron, next_run=scheduled.next_run.isoformat())
        return scheduled

    def unschedule(self, job_id: str) -> bool:
        scheduled = self._jobs.pop(job_id, None)
        if scheduled is None:
            return False

        execution = self._executions.pop(job_id, None)
        if execution is not None:
            execution.cancel()
        logger.info("Job unscheduled", job=scheduled.name)
        return True

    def pause(self, job_id: str) -> bool:
        scheduled = self._jobs.get(job_id)
        if scheduled is None:
            return False
        scheduled.status = ScheduleStatus.PAUSED
        logger.info("Job paused", job=scheduled.name)
        return True

    def resume(self, job_id: str) -> bool:
        scheduled = self._jobs.get(job_id)
        if scheduled is None:
            return False
        scheduled.status = ScheduleStatus.ACTIVE
        scheduled.next_run = next_run_after(scheduled.cron)
        logger.info("Job resumed", job=scheduled.name)
        return True

    def get_job(self, job_id: str) -> ScheduledJob | None:
        return self._jobs.get(job_id)

    def find(self, name: str) -> ScheduledJob | None:
        for scheduled in self._jobs.values():
            if scheduled.name == name:
                return scheduled
        return None

    def list_jobs(self, status: ScheduleStatus | None = None) -> list[ScheduledJob]:
        jobs = list(self._jobs.values())
        if status:
            jobs = [j for j in jobs if j.status == status]
        return jobs

    # =========================================================================
    # Execution
    # =========================================================================

    async def start(self):
        """Start the scheduler loop."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Job scheduler started", jobs=len(self._jobs))

    async def stop(self):
        """Stop the loop and cancel running executions."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        for execution in self._executions.values():
            execution.cancel()
        if self._executions:
            await asyncio.gather(*self._executions.values(), return_exceptions=True)
        self._executions.clear()

        logger.info("Job scheduler stopped")

    async def _loop(self):
        while self._running:
            try:
                self.run_due()
                await asyncio.sleep(self.check_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Scheduler loop error", error=str(e))
                await asyncio.sleep(5)

    def run_due(self, now: datetime | None = None) -> list[asyncio.Task]:
        """Start every active job whose next run has passed."""
        now = now or datetime.now(timezone.utc)
        started = []

        for job_id, scheduled in self._jobs.items():
            if scheduled.status != ScheduleStatus.ACTIVE:
                continue
            if scheduled.next_run is None or scheduled.next_run > now:
                continue

            execution = self._executions.get(job_id)
            if execution is not None and not execution.done():
                continue

            execution = asyncio.create_task(self.execute(scheduled))
            self._executions[job_id] = execution
            started.append(execution)

        return started

    async def run_now(self, name: str) -> ScheduledJob:
        """Run a job immediately, outside its schedule."""
        scheduled = self.find(name)
        if scheduled is None:
            raise KeyError(name)
        await self.execute(scheduled)
        return scheduled

    async def execute(self, scheduled: ScheduledJob):
        """Run one job and record the outcome."""
        logger.info("Executing scheduled job", job=scheduled.name)

        scheduled.last_run = datetime.now(timezone.utc)
        scheduled.run_count += 1
        scheduled.last_error = None

        try:
            result = await asyncio.wait_for(scheduled.job(), timeout=scheduled.timeout_seconds)
            scheduled.last_result = "success"
            logger.info("Scheduled job completed", job=scheduled.name, result=str(result))

        except asyncio.TimeoutError:
            scheduled.last_result = "timeout"
            scheduled.failure_count += 1
            logger.error("Scheduled job timed out", job=scheduled.name, timeout=scheduled.timeout_seconds)

        except asyncio.CancelledError:
            scheduled.last_result = "cancelled"
            logger.warning("Scheduled job cancelled", job=scheduled.name)
            raise

        except Exception as e:
            scheduled.last_result = "failed"
            scheduled.last_error = str(e)
            scheduled.failure_count += 1
            logger.error("Scheduled job failed", job=scheduled.name, error=str(e))

        finally:
            scheduled.next_run = next_run_after(scheduled.cron)
