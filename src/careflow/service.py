"""
Careflow Service

Wires the engine and jobs from injected collaborators and exposes the
operations offered to callers (UI actions, API routes, periodic jobs).
"""

from datetime import datetime

import structlog

from careflow.collaborators import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    TransformEngine,
    WorkflowApplier,
)
from careflow.config import Settings, get_settings
from careflow.engine import PlanApplier, RecurrencePeriodComputer, ResourceClosureCascade, TaskLifecycle
from careflow.expressions import ExpressionEvaluator
from careflow.jobs import (
    BatchResult,
    CarePlanReconciler,
    DigestSweepConfig,
    DigestSweeper,
    JobScheduler,
    TaskReconciler,
    anniversary_sweep,
    edd_sweep,
)
from careflow.models.base import BaseResource, Reference
from careflow.models.careplan import CarePlan
from careflow.models.definitions import PlanDefinition
from careflow.models.task import Task, TaskStatus
from careflow.models.workflow import EventWorkflow
from careflow.store.base import CheckpointStore, ResourceStore

logger = structlog.get_logger(__name__)


class CareflowService:
    """
    Care plan engine facade.

    Usage:
        service = CareflowService(store, evaluator, checkpoints, transform_engine=engine)
        care_plan = await service.apply_plan("anc-visits", patient)
        await service.expire_overdue_tasks()
    """

    def __init__(
        self,
        store: ResourceStore,
        evaluator: ExpressionEvaluator,
        checkpoints: CheckpointStore,
        transform_engine: TransformEngine | None = None,
        workflow_applier: WorkflowApplier | None = None,
        dispatcher: NotificationDispatcher | None = None,
        workflows: list[EventWorkflow] | None = None,
        digests: list[DigestSweepConfig] | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        app = self.settings.app

        self.store = store
        self.evaluator = evaluator
        self.checkpoints = checkpoints
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()

        self.closure = ResourceClosureCascade(
            store,
            evaluator,
            workflows=workflows,
            max_depth=app.dependency_max_depth,
        )
        self.lifecycle = TaskLifecycle(store, self.closure, max_depth=app.dependency_max_depth)
        self.planner = PlanApplier(
            store,
            evaluator,
            transform_engine,
            self.lifecycle,
            workflow_applier=workflow_applier,
            recurrence=RecurrencePeriodComputer(evaluator),
        )
        self.tasks = TaskReconciler(
            store,
            self.lifecycle,
            expired_reason=app.expired_task_reason,
            failed_reason=app.failed_task_reason,
        )
        self.care_plans = CarePlanReconciler(
            store,
            self.lifecycle,
            checkpoints,
            batch_size=app.care_plan_batch_size,
            key_prefix=app.checkpoint_key_prefix,
        )
        self.digest = DigestSweeper(store, self.dispatcher)

        digest_settings = self.settings.digest
        self.digests = digests if digests is not None else [
            edd_sweep(digest_settings.edd_code, digest_settings.window_days),
            anniversary_sweep(digest_settings.anniversary_code, digest_settings.window_days),
        ]

    async def _plan_definition(self, plan_definition: PlanDefinition | str) -> PlanDefinition:
        if isinstance(plan_definition, PlanDefinition):
            return plan_definition
        return await self.store.get("PlanDefinition", plan_definition)

    # =========================================================================
    # Care plans
    # =========================================================================

    async def apply_plan(
        self,
        plan_definition: PlanDefinition | str,
        subject: BaseResource,
        input_data: list[BaseResource] | None = None,
        now: datetime | None = None,
    ) -> CarePlan | None:
        """Apply a plan definition (or its id) to a subject."""
        definition = await self._plan_definition(plan_definition)
        return await self.planner.apply_plan(definition, subject, input_data, now)

    async def apply_plan_with_workflow(
        self,
        plan_definition: PlanDefinition | str,
        subject: BaseResource,
        input_data: list[BaseResource] | None = None,
        now: datetime | None = None,
    ) -> CarePlan | None:
        definition = await self._plan_definition(plan_definition)
        return await self.planner.apply_plan_with_workflow(definition, subject, input_data, now)

    async def complete_stale_care_plans(self, batch_size: int | None = None) -> BatchResult:
        return await self.care_plans.complete_stale_care_plans(batch_size)

    # =========================================================================
    # Tasks
    # =========================================================================

    async def update_task_status(
        self,
        task_id: str,
        status: TaskStatus | str,
        reason: str | None = None,
    ) -> Task:
        return await self.lifecycle.update_task_status(task_id, TaskStatus(status), reason)

    async def expire_overdue_tasks(self, now: datetime | None = None) -> list[Task]:
        return await self.tasks.expire_overdue_tasks(now)

    async def fail_elapsed_tasks(self, now: datetime | None = None) -> list[Task]:
        return await self.tasks.fail_elapsed_tasks(now)

    async def promote_upcoming_tasks_to_due(
        self,
        subject: str | Reference | None = None,
        candidate_tasks: list[Task] | None = None,
        now: datetime | None = None,
    ) -> list[Task]:
        return await self.tasks.promote_upcoming_tasks_to_due(subject, candidate_tasks, now)

    # =========================================================================
    # Closure
    # =========================================================================

    def register_workflow(self, workflow: EventWorkflow) -> None:
        """Add an event workflow to the closure cascade."""
        self.closure.register(workflow)
        logger.info("Event workflow registered", workflow_id=workflow.id, trigger=workflow.trigger_resource_type)

    async def close_related(
        self,
        resource: BaseResource,
        workflow: EventWorkflow | None = None,
    ) -> list[BaseResource]:
        return await self.closure.close(resource, workflow)

    async def close_completed_service_requests(self) -> int:
        return await self.closure.close_completed_service_requests()

    async def run_closure_sweep(self) -> int:
        return await self.closure.run_closure_sweep()

    # =========================================================================
    # Digests / scheduling
    # =========================================================================

    async def run_digest_sweeps(self, now: datetime | None = None) -> dict[str, int]:
        return await self.digest.run_all(self.digests, now)

    def build_scheduler(self, check_interval_seconds: float = 60) -> JobScheduler:
        """Scheduler with every reconciliation job registered on its configured cron."""
        schedule = self.settings.schedule
        scheduler = JobScheduler(check_interval_seconds=check_interval_seconds)

        scheduler.schedule("expire-overdue-tasks", schedule.expire_tasks_cron, self.expire_overdue_tasks)
        scheduler.schedule("fail-elapsed-tasks", schedule.fail_tasks_cron, self.fail_elapsed_tasks)
        scheduler.schedule("promote-tasks-to-due", schedule.promote_tasks_cron, self.promote_upcoming_tasks_to_due)
        scheduler.schedule("complete-care-plans", schedule.complete_care_plans_cron, self.complete_stale_care_plans)
        scheduler.schedule("closure-sweep", schedule.closure_sweep_cron, self.run_closure_sweep)
        scheduler.schedule("completed-service-requests", schedule.closure_sweep_cron, self.close_completed_service_requests)
        scheduler.schedule("clinical-digests", schedule.digest_cron, self.run_digest_sweeps)

        logger.info("Scheduler built", jobs=len(scheduler.list_jobs()))
        return scheduler
