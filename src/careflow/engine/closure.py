"""
Resource Closure Cascade

Event-workflow driven propagation: when a trigger resource reaches a
configured status, the configured dependent resources are closed.

Features:
- Trigger status and trigger expressions (all / any match mode)
- Targets scoped by id, by plan definition, or by back-reference
- Recursive related resources, bounded by depth with visited tracking
- Completed service-request sweep and a sweep over every workflow
"""

from typing import Any

import structlog

from careflow.expressions import ExpressionContext, ExpressionEvaluator
from careflow.models.base import BaseResource, extract_id, utc_now
from careflow.models.careplan import CarePlanStatus
from careflow.models.task import TaskStatus
from careflow.models.workflow import (
    CLOSED_STATUSES,
    CLOSURE_STATUS,
    EventType,
    EventWorkflow,
    MatchMode,
    ResourceConfig,
    ResourceKind,
)
from careflow.store.base import FilterOp, Found, ResourceStore, SearchQuery

logger = structlog.get_logger(__name__)

# Typed status values per closable kind; other kinds store plain strings
_STATUS_TYPES = {
    ResourceKind.TASK: TaskStatus,
    ResourceKind.CARE_PLAN: CarePlanStatus,
}


def status_value(resource: BaseResource) -> str | None:
    """Plain string status of any resource."""
    status = getattr(resource, "status", None)
    if status is None:
        return None
    return getattr(status, "value", status)


def _canonicals(resource: BaseResource) -> list[str]:
    value = getattr(resource, "instantiates_canonical", None)
    if not value:
        return []
    values = value if isinstance(value, list) else [value]
    return [extract_id(v) for v in values]


class ResourceClosureCascade:
    """Closes dependent resources according to configured event workflows."""

    def __init__(
        self,
        store: ResourceStore,
        evaluator: ExpressionEvaluator,
        workflows: list[EventWorkflow] | None = None,
        max_depth: int = 20,
        closure_reason: str = "Closed by event workflow",
    ):
        self.store = store
        self.evaluator = evaluator
        self.workflows = list(workflows or [])
        self.max_depth = max_depth
        self.closure_reason = closure_reason

    def register(self, workflow: EventWorkflow) -> None:
        self.workflows.append(workflow)

    # ==================== TRIGGERING ====================

    def is_triggered(self, trigger: BaseResource, workflow: EventWorkflow) -> bool:
        """Check the workflow's trigger status and expressions against a resource."""
        if not workflow.applies_to(trigger.resource_type):
            return False
        if workflow.trigger_status and status_value(trigger) != workflow.trigger_status:
            return False
        if not workflow.trigger_expressions:
            return True

        context = ExpressionContext(focus=trigger, subject=trigger)
        results = (
            self.evaluator.evaluate_boolean(context, expression)
            for expression in workflow.trigger_expressions
        )
        if workflow.match_mode == MatchMode.ANY:
            return any(results)
        return all(results)

    async def close(
        self,
        trigger: BaseResource,
        workflow: EventWorkflow | None = None,
    ) -> list[BaseResource]:
        """
        Close the resources depending on ``trigger``.

        Args:
            trigger: Resource whose status change fires the cascade
            workflow: Run only this workflow instead of every registered one

        Returns:
            Resources whose status was changed
        """
        workflows = [workflow] if workflow else [
            w for w in self.workflows if w.event_type == EventType.RESOURCE_CLOSURE
        ]

        closed: list[BaseResource] = []
        visited = {trigger.reference_value()}
        for candidate in workflows:
            if not self.is_triggered(trigger, candidate):
                continue

            logger.info(
                "Event workflow triggered",
                workflow_id=candidate.id,
                trigger=trigger.reference_value(),
            )
            for config in candidate.event_resources:
                closed.extend(await self._close_targets(trigger, config, 0, visited))

        return closed

    # ==================== TARGETS ====================

    async def _targets(self, parent: BaseResource, config: ResourceConfig) -> list[BaseResource]:
        if config.id:
            result = await self.store.lookup(config.resource_type, extract_id(config.id))
            if isinstance(result, Found):
                return [result.resource]
            logger.warning(
                "Configured closure target not found",
                resource_type=config.resource_type,
                resource_id=config.id,
            )
            return []

        query = SearchQuery().where(config.reference_path, FilterOp.EQ, parent.reference_value())
        resources = await self.store.search(config.resource_type, query)

        if config.plan_definitions:
            wanted = {extract_id(p) for p in config.plan_definitions}
            resources = [r for r in resources if wanted.intersection(_canonicals(r))]
        return resources

    async def _close_targets(
        self,
        parent: BaseResource,
        config: ResourceConfig,
        depth: int,
        visited: set[str],
    ) -> list[BaseResource]:
        kind = config.kind.require_supported(config.resource_type)

        if depth > self.max_depth:
            logger.warning(
                "Closure cascade depth limit reached",
                parent=parent.reference_value(),
                max_depth=self.max_depth,
            )
            return []

        closed: list[BaseResource] = []
        for resource in await self._targets(parent, config):
            reference = resource.reference_value()
            if reference in visited:
                continue
            visited.add(reference)

            if status_value(resource) not in CLOSED_STATUSES[kind]:
                self._apply_closure(resource, kind, config.closure_status)
                await self.store.update(resource)
                closed.append(resource)
                logger.info(
                    "Resource closed",
                    reference=reference,
                    status=status_value(resource),
                    parent=parent.reference_value(),
                )

            for related in config.related_resources:
                closed.extend(await self._close_targets(resource, related, depth + 1, visited))

        return closed

    def _apply_closure(self, resource: BaseResource, kind: ResourceKind, status: str | None) -> None:
        value: Any = status or CLOSURE_STATUS[kind]
        status_type = _STATUS_TYPES.get(kind)
        if status_type is not None:
            value = status_type(value)
        resource.status = value

        if kind == ResourceKind.TASK:
            resource.status_reason = self.closure_reason
            resource.last_modified = utc_now()

    # ==================== SWEEPS ====================

    async def close_completed_service_requests(self) -> int:
        """Run the cascade for every completed service request."""
        query = SearchQuery().where("status", FilterOp.EQ, "completed")
        requests = await self.store.search("ServiceRequest", query)

        closed = 0
        for request in requests:
            closed += len(await self.close(request))

        logger.info("Completed service request sweep", requests=len(requests), closed=closed)
        return closed

    async def run_closure_sweep(self) -> int:
        """Evaluate every configured workflow against all candidate trigger resources."""
        closed = 0
        for workflow in self.workflows:
            if workflow.event_type != EventType.RESOURCE_CLOSURE:
                continue
            if not workflow.trigger_resource_type:
                logger.warning("Workflow without trigger resource type skipped", workflow_id=workflow.id)
                continue

            query = SearchQuery()
            if workflow.trigger_status:
                query = query.where("status", FilterOp.EQ, workflow.trigger_status)

            for trigger in await self.store.search(workflow.trigger_resource_type, query):
                closed += len(await self.close(trigger, workflow))

        logger.info("Closure sweep finished", workflows=len(self.workflows), closed=closed)
        return closed
