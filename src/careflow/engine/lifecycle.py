"""
Task Lifecycle

State machine for tasks and the cascades a transition sets off.

Features:
- Idempotent status transitions recording last-modified and reason
- Mirrored care plan activity status
- requested -> ready gating on due date and partOf prerequisite
- Expiry resolution (restriction window before execution window)
- Dependent due-date recomputation from administration records
- Care plan completion once every task activity is terminal
"""

from datetime import datetime, timedelta

import structlog

from careflow.engine.closure import ResourceClosureCascade
from careflow.models.base import Period, as_utc, start_of_day, utc_now
from careflow.models.careplan import CarePlan, CarePlanStatus, activity_status_for
from careflow.models.clinical import ADMINISTRATION_RECORD_TYPES
from careflow.models.task import (
    TERMINAL_TASK_STATUSES,
    UPCOMING_TASK_STATUSES,
    Task,
    TaskStatus,
)
from careflow.store.base import FilterOp, Found, NotFound, ResourceStore, SearchQuery

logger = structlog.get_logger(__name__)

# Transitions that may shift the due date of dependent tasks
_DEPENDENCY_TRIGGERS = (TaskStatus.COMPLETED, TaskStatus.CANCELLED)


class TaskLifecycle:
    """
    Applies task transitions and their side effects.

    Every transition re-checks the current status first, so re-applying a
    transition that already happened is a no-op.
    """

    def __init__(
        self,
        store: ResourceStore,
        closure: ResourceClosureCascade | None = None,
        max_depth: int = 20,
    ):
        self.store = store
        self.closure = closure
        self.max_depth = max_depth

    # ==================== TRANSITIONS ====================

    async def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Task:
        """
        Move a task to ``status``.

        Raises:
            ResourceNotFoundError: if the task does not exist
        """
        task = await self.store.get("Task", task_id)
        return await self.transition(task, TaskStatus(status), reason, now)

    async def transition(
        self,
        task: Task,
        status: TaskStatus,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Task:
        if task.status == status:
            logger.debug("Task already in target status", task_id=task.logical_id, status=status.value)
            return task

        now = as_utc(now) or utc_now()
        previous = task.status
        task.status = status
        task.last_modified = now
        if reason is not None:
            task.status_reason = reason

        await self.store.update(task)
        logger.info(
            "Task status updated",
            task_id=task.logical_id,
            previous=previous.value,
            status=status.value,
            reason=reason,
        )

        care_plan = await self._mirror_activity_status(task)

        if status.is_terminal:
            if status in _DEPENDENCY_TRIGGERS:
                await self.recompute_dependents(task)
            if care_plan is not None:
                await self._complete_if_last_task(task, care_plan)
            if self.closure is not None:
                await self.closure.close(task)

        return task

    async def _mirror_activity_status(self, task: Task) -> CarePlan | None:
        care_plan_id = task.care_plan_id()
        if care_plan_id is None:
            return None

        result = await self.store.lookup("CarePlan", care_plan_id)
        if isinstance(result, NotFound):
            logger.warning("Care plan of task not found", task_id=task.logical_id, care_plan_id=care_plan_id)
            return None

        care_plan = result.resource
        activity = care_plan.activity_for(task.reference_value())
        if activity is not None and activity.detail is not None:
            mirrored = activity_status_for(task.status)
            if activity.detail.status != mirrored:
                activity.detail.status = mirrored
                await self.store.update(care_plan)
        return care_plan

    # ==================== DUE / EXPIRY ====================

    async def can_become_ready(self, task: Task, now: datetime | None = None) -> bool:
        """
        Guard for requested -> ready.

        The task must be upcoming, due today or earlier, and its partOf
        prerequisite (if any) must be terminal. A missing prerequisite does
        not block.
        """
        if task.status not in UPCOMING_TASK_STATUSES:
            return False

        start = task.execution_start
        if start is None or start_of_day(start) > start_of_day(now or utc_now()):
            return False

        prerequisite_id = task.prerequisite_id()
        if prerequisite_id is None:
            return True

        result = await self.store.lookup("Task", prerequisite_id)
        if isinstance(result, NotFound):
            logger.warning(
                "Prerequisite task not found",
                task_id=task.logical_id,
                prerequisite_id=prerequisite_id,
            )
            return True
        return result.resource.status in TERMINAL_TASK_STATUSES

    async def promote_to_due(self, tasks: list[Task], now: datetime | None = None) -> list[Task]:
        """Transition every eligible task to ready."""
        now = as_utc(now) or utc_now()
        promoted = []
        for task in tasks:
            if await self.can_become_ready(task, now):
                promoted.append(await self.transition(task, TaskStatus.READY, now=now))
        return promoted

    @staticmethod
    def resolve_expiry(task: Task, now: datetime) -> TaskStatus | None:
        """Terminal status an open task has lapsed into; expiry wins over failure."""
        if task.status.is_terminal:
            return None
        now = as_utc(now)
        if task.has_past_restriction_end(now):
            return TaskStatus.CANCELLED
        if task.has_past_execution_end(now):
            return TaskStatus.FAILED
        return None

    # ==================== DEPENDENCIES ====================

    async def administration_date(self, task: Task) -> datetime | None:
        """Recorded date of the administration record referenced from the task output."""
        for output in task.output:
            ref = output.value_reference
            if ref is None or ref.resource_type not in ADMINISTRATION_RECORD_TYPES:
                continue

            result = await self.store.lookup(ref.resource_type, ref.id_part)
            if isinstance(result, NotFound):
                logger.warning("Administration record not found", task_id=task.logical_id, reference=ref.reference)
                continue

            recorded_at = getattr(result.resource, "recorded_at", None)
            if recorded_at is not None:
                return recorded_at
        return None

    async def dependents_of(self, task: Task) -> list[Task]:
        query = SearchQuery().where("part_of", FilterOp.EQ, task.reference_value())
        return [t for t in await self.store.search("Task", query) if not t.status.is_terminal]

    async def recompute_dependents(self, task: Task) -> list[Task]:
        """
        Shift dependent tasks' execution start after an administration.

        The first hop is anchored at the administration date of ``task``;
        further hops along the partOf chain are anchored at the shifted
        start of their prerequisite. Traversal is bounded by ``max_depth``
        and never revisits a task.
        """
        anchor = await self.administration_date(task)
        if anchor is None:
            logger.debug("No administration date, dependents unchanged", task_id=task.logical_id)
            return []

        updated: list[Task] = []
        visited = {task.logical_id}
        frontier = [(task, anchor)]
        depth = 0

        while frontier and depth < self.max_depth:
            next_frontier = []
            for parent, parent_anchor in frontier:
                for dependent in await self.dependents_of(parent):
                    if dependent.logical_id in visited:
                        logger.warning("Cycle in partOf chain", task_id=dependent.logical_id)
                        continue
                    visited.add(dependent.logical_id)

                    gap = dependent.minimum_gap_days()
                    if gap is None:
                        continue

                    earliest = parent_anchor + timedelta(days=gap)
                    current = dependent.execution_start
                    if current is None or earliest > current:
                        self._shift_start(dependent, earliest)
                        await self.store.update(dependent)
                        updated.append(dependent)
                        logger.info(
                            "Dependent task rescheduled",
                            task_id=dependent.logical_id,
                            prerequisite_id=parent.logical_id,
                            start=earliest.isoformat(),
                        )
                    next_frontier.append((dependent, dependent.execution_start))
            frontier = next_frontier
            depth += 1

        if frontier and depth >= self.max_depth:
            logger.warning("Dependency traversal depth limit reached", task_id=task.logical_id, max_depth=self.max_depth)
        return updated

    @staticmethod
    def _shift_start(task: Task, start: datetime) -> None:
        if task.execution_period is None:
            task.execution_period = Period(start=start)
            return
        end = task.execution_period.end
        if end is not None and end < start:
            end = start + (end - task.execution_period.start) if task.execution_period.start else start
        task.execution_period = Period(start=start, end=end)

    # ==================== CARE PLAN COMPLETION ====================

    async def _complete_if_last_task(self, task: Task, care_plan: CarePlan) -> bool:
        activity = care_plan.activity_for(task.reference_value())
        if activity is None or not activity.is_task_activity():
            return False
        return await self.try_complete_care_plan(care_plan)

    async def try_complete_care_plan(self, care_plan: CarePlan) -> bool:
        """
        Complete a care plan whose task activities are all terminal.

        Missing tasks are logged and do not block completion. Returns True
        when the care plan was completed by this call.
        """
        if care_plan.is_terminal:
            return False

        statuses = []
        for task_id in care_plan.task_ids():
            result = await self.store.lookup("Task", task_id)
            if isinstance(result, Found):
                statuses.append(result.resource.status)
            else:
                logger.warning("Care plan task not found", care_plan_id=care_plan.logical_id, task_id=task_id)

        if not statuses or not all(s in TERMINAL_TASK_STATUSES for s in statuses):
            return False

        care_plan.status = CarePlanStatus.COMPLETED
        await self.store.update(care_plan)
        logger.info("Care plan completed", care_plan_id=care_plan.logical_id, tasks=len(statuses))

        if self.closure is not None:
            await self.closure.close(care_plan)
        return True
