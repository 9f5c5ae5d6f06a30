"""
Task Reconciliation Jobs

Periodic sweeps over open tasks:
- Expire tasks whose restriction window has closed
- Fail tasks whose execution period has elapsed
- Promote upcoming tasks to ready once due
"""

from datetime import datetime

import structlog

from careflow.engine.lifecycle import TaskLifecycle
from careflow.models.base import Reference, as_utc, utc_now
from careflow.models.task import OPEN_TASK_STATUSES, UPCOMING_TASK_STATUSES, Task, TaskStatus
from careflow.store.base import FilterOp, Found, ResourceStore, SearchQuery

logger = structlog.get_logger(__name__)


class TaskReconciler:
    """Runs the task sweeps against the resource store."""

    def __init__(
        self,
        store: ResourceStore,
        lifecycle: TaskLifecycle,
        expired_reason: str = "Task expired",
        failed_reason: str = "Execution period elapsed",
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.expired_reason = expired_reason
        self.failed_reason = failed_reason

    async def expire_overdue_tasks(self, now: datetime | None = None) -> list[Task]:
        """
        Cancel open tasks whose restriction period ended at or before ``now``.

        Returns:
            Tasks that were cancelled
        """
        now = as_utc(now) or utc_now()
        query = (
            SearchQuery()
            .where("status", FilterOp.IN, list(OPEN_TASK_STATUSES))
            .where("restriction.period.end", FilterOp.LE, now)
        )
        candidates = await self.store.search("Task", query)

        expired = []
        for task in candidates:
            if not task.has_past_restriction_end(now):
                continue
            expired.append(
                await self.lifecycle.transition(task, TaskStatus.CANCELLED, self.expired_reason, now)
            )

        logger.info("Expired overdue tasks", candidates=len(candidates), expired=len(expired))
        return expired

    async def fail_elapsed_tasks(self, now: datetime | None = None) -> list[Task]:
        """
        Close open tasks whose execution period ended at or before ``now``.

        A task whose restriction window has also closed is cancelled as
        expired rather than failed.
        """
        now = as_utc(now) or utc_now()
        query = (
            SearchQuery()
            .where("status", FilterOp.IN, list(OPEN_TASK_STATUSES))
            .where("execution_period.end", FilterOp.LE, now)
        )
        candidates = await self.store.search("Task", query)

        closed = []
        for task in candidates:
            status = self.lifecycle.resolve_expiry(task, now)
            if status is None:
                continue
            reason = self.expired_reason if status == TaskStatus.CANCELLED else self.failed_reason
            closed.append(await self.lifecycle.transition(task, status, reason, now))

        logger.info("Closed elapsed tasks", candidates=len(candidates), closed=len(closed))
        return closed

    async def promote_upcoming_tasks_to_due(
        self,
        subject: str | Reference | None = None,
        candidate_tasks: list[Task] | None = None,
        now: datetime | None = None,
    ) -> list[Task]:
        """
        Move due upcoming tasks to ready.

        Args:
            subject: Limit the sweep to one subject reference
            candidate_tasks: Limit the sweep to these tasks (re-read from the store)
            now: Evaluation time

        Returns:
            Tasks promoted to ready
        """
        now = as_utc(now) or utc_now()

        if candidate_tasks is not None:
            tasks = []
            for candidate in candidate_tasks:
                result = await self.store.lookup("Task", candidate.logical_id)
                if isinstance(result, Found):
                    tasks.append(result.resource)
        else:
            query = (
                SearchQuery()
                .where("status", FilterOp.IN, list(UPCOMING_TASK_STATUSES))
                .where("execution_period.start", FilterOp.LE, now)
            )
            if subject is not None:
                reference = subject.reference if isinstance(subject, Reference) else subject
                query = query.where("for", FilterOp.EQ, reference)
            tasks = await self.store.search("Task", query)

        promoted = await self.lifecycle.promote_to_due(tasks, now)
        logger.info("Promoted upcoming tasks", candidates=len(tasks), promoted=len(promoted))
        return promoted
