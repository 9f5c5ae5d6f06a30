"""
Careflow Jobs

Reconciliation sweeps, clinical digests and the cron job scheduler.
"""

from careflow.jobs.careplans import BatchResult, CarePlanReconciler
from careflow.jobs.digest import (
    DigestEntry,
    DigestMode,
    DigestSweepConfig,
    DigestSweeper,
    anniversary_sweep,
    edd_sweep,
    next_anniversary,
)
from careflow.jobs.scheduler import JobScheduler, ScheduledJob, ScheduleStatus, next_run_after
from careflow.jobs.tasks import TaskReconciler

__all__ = [
    "BatchResult",
    "CarePlanReconciler",
    "DigestEntry",
    "DigestMode",
    "DigestSweepConfig",
    "DigestSweeper",
    "anniversary_sweep",
    "edd_sweep",
    "next_anniversary",
    "JobScheduler",
    "ScheduledJob",
    "ScheduleStatus",
    "next_run_after",
    "TaskReconciler",
]
