"""
Plan Applier

Applies a plan definition to a subject, producing or updating the single
open care plan for that (plan definition, subject) pair.

Features:
- Applicability conditions (fail fast on unsupported kind or language)
- Transformation scripts invoked once per recurrence period
- Dynamic values written onto the care plan
- Alternate path through an external workflow engine
- Detaching contained resources on save
"""

from datetime import datetime
from typing import Any, Union, get_args, get_origin
import types

import structlog
from pydantic import BaseModel, TypeAdapter

from careflow.collaborators import TransformEngine, TransformParameters, WorkflowApplier
from careflow.engine.lifecycle import TaskLifecycle
from careflow.engine.recurrence import RecurrencePeriodComputer
from careflow.errors import (
    ConfigurationError,
    UnsupportedConditionError,
    UnsupportedDynamicValueError,
    UnsupportedResourceKindError,
)
from careflow.expressions import ExpressionContext, ExpressionEvaluator
from careflow.models import parse_resource
from careflow.models.base import BaseResource, Period, as_utc, extract_id, utc_now
from careflow.models.careplan import (
    OPEN_CARE_PLAN_STATUSES,
    CarePlan,
    CarePlanStatus,
    activity_status_for,
)
from careflow.models.definitions import (
    ActivityDefinitionKind,
    ConditionKind,
    DynamicValue,
    ExpressionLanguage,
    PlanAction,
    PlanDefinition,
)
from careflow.models.task import Task, TaskStatus
from careflow.store.base import FilterOp, NotFound, ResourceStore, SearchQuery

logger = structlog.get_logger(__name__)

CARE_PLAN_COMPLETED_REASON = "CarePlan completed"

# Tasks cancelled when their care plan is saved as completed
_CANCELLABLE_ON_COMPLETION = (TaskStatus.REQUESTED, TaskStatus.READY, TaskStatus.IN_PROGRESS)

# Proposed resources that carry no activity of their own
_IGNORED_PROPOSAL_TYPES = ("RequestGroup",)


def canonical_reference(value: str) -> str:
    """Normalise a plan definition canonical to ``PlanDefinition/<id>``."""
    return f"PlanDefinition/{extract_id(value)}"


def _model_class(annotation: Any) -> type[BaseModel] | None:
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    if get_origin(annotation) in (Union, types.UnionType):
        for arg in get_args(annotation):
            model = _model_class(arg)
            if model is not None:
                return model
    return None


def set_field_by_path(target: BaseModel, path: str, value: Any) -> None:
    """
    Assign ``value`` at a dotted field path, creating intermediate models.

    A leading segment naming the target's resource type is ignored, so
    ``CarePlan.period.end`` and ``period.end`` are equivalent.
    """
    segments = path.split(".")
    if segments and segments[0] == getattr(target, "resource_type", None):
        segments = segments[1:]
    if not segments:
        raise ConfigurationError(f"Invalid dynamic value path: {path}")

    node: BaseModel = target
    for segment in segments[:-1]:
        child = getattr(node, segment, None)
        if child is None:
            field_info = type(node).model_fields.get(segment)
            model = _model_class(field_info.annotation) if field_info else None
            if model is None:
                raise ConfigurationError(f"Cannot resolve dynamic value path: {path}")
            child = model()
            setattr(node, segment, child)
        node = child

    leaf = type(node).model_fields.get(segments[-1])
    if leaf is not None:
        value = TypeAdapter(leaf.annotation).validate_python(value)
    if isinstance(value, datetime):
        value = as_utc(value)
    setattr(node, segments[-1], value)


class PlanApplier:
    """
    Generates and updates care plans from plan definitions.

    Usage:
        applier = PlanApplier(store, evaluator, transform_engine, lifecycle)
        care_plan = await applier.apply_plan(plan_definition, patient, input_data)
    """

    def __init__(
        self,
        store: ResourceStore,
        evaluator: ExpressionEvaluator,
        transform_engine: TransformEngine | None,
        lifecycle: TaskLifecycle,
        workflow_applier: WorkflowApplier | None = None,
        recurrence: RecurrencePeriodComputer | None = None,
    ):
        self.store = store
        self.evaluator = evaluator
        self.transform_engine = transform_engine
        self.lifecycle = lifecycle
        self.workflow_applier = workflow_applier
        self.recurrence = recurrence or RecurrencePeriodComputer(evaluator)

    # ==================== CARE PLAN OF RECORD ====================

    async def find_care_plan(self, plan_definition: PlanDefinition, subject: BaseResource) -> CarePlan | None:
        """The open care plan for (plan definition, subject), if any."""
        canonical = canonical_reference(plan_definition.logical_id)
        query = (
            SearchQuery()
            .where("instantiates_canonical", FilterOp.IN, [canonical, plan_definition.logical_id])
            .where("subject", FilterOp.EQ, subject.reference_value())
            .where("status", FilterOp.IN, list(OPEN_CARE_PLAN_STATUSES))
            .page(0, 1)
        )
        found = await self.store.search("CarePlan", query)
        return found[0] if found else None

    async def care_plan_of_record(
        self,
        plan_definition: PlanDefinition,
        subject: BaseResource,
        now: datetime | None = None,
    ) -> CarePlan:
        existing = await self.find_care_plan(plan_definition, subject)
        if existing is not None:
            logger.debug("Updating existing care plan", care_plan_id=existing.logical_id)
            return existing

        care_plan = CarePlan(
            title=plan_definition.title,
            description=plan_definition.description,
            status=CarePlanStatus.ACTIVE,
            instantiates_canonical=[canonical_reference(plan_definition.logical_id)],
            subject=subject.as_reference(),
            period=Period(start=now or utc_now()),
        )
        care_plan.generate_id()
        return care_plan

    # ==================== CONDITIONS / DYNAMIC VALUES ====================

    def _context(
        self,
        plan_definition: PlanDefinition,
        subject: BaseResource,
        input_data: list[BaseResource],
    ) -> ExpressionContext:
        return ExpressionContext(
            focus=input_data,
            subject=subject,
            input_data=input_data,
            plan_definition=plan_definition,
        )

    def is_applicable(self, action: PlanAction, context: ExpressionContext) -> bool:
        """
        Evaluate every applicability condition of an action.

        Raises:
            UnsupportedConditionError: for a non-applicability kind or a
                non-FHIRPath expression
        """
        for condition in action.condition:
            if condition.kind != ConditionKind.APPLICABILITY:
                raise UnsupportedConditionError(
                    f"Condition kind {condition.kind.value} not supported"
                )
            if condition.expression.language != ExpressionLanguage.FHIRPATH.value:
                raise UnsupportedConditionError(
                    f"Expression language {condition.expression.language} not supported"
                )

        return all(
            self.evaluator.evaluate_boolean(context, condition.expression.expression)
            for condition in action.condition
        )

    def resolve_dynamic_values(
        self,
        bindings: list[DynamicValue],
        context: ExpressionContext,
        care_plan: CarePlan,
    ) -> None:
        """Write the first value of each binding onto the care plan; empty results are skipped."""
        for binding in bindings:
            values = self.evaluator.evaluate(context, binding.expression.expression)
            if not values:
                logger.debug("Dynamic value evaluated empty", path=binding.path)
                continue
            set_field_by_path(care_plan, binding.path, values[0])

    # ==================== APPLY (TRANSFORM PATH) ====================

    async def apply_plan(
        self,
        plan_definition: PlanDefinition,
        subject: BaseResource,
        input_data: list[BaseResource] | None = None,
        now: datetime | None = None,
    ) -> CarePlan | None:
        """
        Apply a plan definition to a subject.

        Returns:
            The care plan of record, or None when it holds no activity
        """
        now = as_utc(now) or utc_now()
        input_data = list(input_data or [])
        care_plan = await self.care_plan_of_record(plan_definition, subject, now)
        context = self._context(plan_definition, subject, input_data)

        modified = False
        for action in plan_definition.action:
            if not self.is_applicable(action, context):
                logger.debug("Action not applicable", action_id=action.id, plan_definition=plan_definition.logical_id)
                continue

            await self._apply_action(action, plan_definition, subject, input_data, care_plan, context, now)
            modified = True

        if modified:
            created = await self.save_care_plan(care_plan)
            await self.lifecycle.promote_to_due(created, now)
        return await self._result(care_plan)

    async def _apply_action(
        self,
        action: PlanAction,
        plan_definition: PlanDefinition,
        subject: BaseResource,
        input_data: list[BaseResource],
        care_plan: CarePlan,
        context: ExpressionContext,
        now: datetime,
    ) -> None:
        definition = plan_definition.activity_definition(action.definition_canonical)
        bindings = [*(definition.dynamic_value if definition else []), *action.dynamic_value]

        if definition is None and (action.transform or bindings):
            raise ConfigurationError(
                f"ActivityDefinition {action.definition_canonical} not found "
                f"in PlanDefinition {plan_definition.logical_id}"
            )

        if action.transform:
            if self.transform_engine is None:
                raise ConfigurationError("No transform engine configured")

            for period in self.recurrence.compute(definition, care_plan.period, now):
                parameters = TransformParameters(
                    subject=subject,
                    definition=definition,
                    input_data=input_data,
                    period=period,
                )
                await self.transform_engine.transform(action.transform, parameters, care_plan)

        if bindings:
            if definition.kind != ActivityDefinitionKind.CAREPLAN:
                raise UnsupportedDynamicValueError(
                    f"Dynamic values on {definition.kind.value} activities not supported"
                )
            self.resolve_dynamic_values(bindings, context, care_plan)

    # ==================== APPLY (WORKFLOW PATH) ====================

    async def apply_plan_with_workflow(
        self,
        plan_definition: PlanDefinition,
        subject: BaseResource,
        input_data: list[BaseResource] | None = None,
        now: datetime | None = None,
    ) -> CarePlan | None:
        """
        Apply through the external workflow engine and accept its proposal.

        Proposed tasks are persisted and linked to the care plan of record;
        action dynamic values are then resolved against the care plan.
        """
        if self.workflow_applier is None:
            raise ConfigurationError("No workflow applier configured")

        now = as_utc(now) or utc_now()
        input_data = list(input_data or [])
        care_plan = await self.care_plan_of_record(plan_definition, subject, now)

        proposal = await self.workflow_applier.apply(plan_definition, subject, input_data)
        created = await self.accept_proposal(proposal, care_plan)

        context = self._context(plan_definition, subject, input_data)
        for action in plan_definition.action:
            if action.dynamic_value:
                self.resolve_dynamic_values(action.dynamic_value, context, care_plan)

        care_plan.instantiates_canonical = [canonical_reference(c) for c in care_plan.instantiates_canonical]
        if care_plan.has_activity():
            await self.store.save(care_plan)
        await self.lifecycle.promote_to_due(created, now)
        return await self._result(care_plan)

    async def accept_proposal(self, proposal: CarePlan, care_plan: CarePlan) -> list[Task]:
        created: list[Task] = []
        for resource in proposal.contained:
            if resource.resource_type in _IGNORED_PROPOSAL_TYPES:
                continue
            if resource.resource_type != "Task":
                raise UnsupportedResourceKindError(
                    f"Proposed {resource.resource_type} resources are not supported"
                )

            task = resource if isinstance(resource, Task) else parse_resource(resource.to_document())
            if not task.based_on:
                task.based_on = [care_plan.as_reference()]
            await self.store.save(task)
            care_plan.add_task_activity(task.as_reference(), activity_status_for(task.status), task.description)
            created.append(task)

        logger.info("Workflow proposal accepted", care_plan_id=care_plan.logical_id, tasks=len(created))
        return created

    # ==================== SAVE ====================

    async def save_care_plan(self, care_plan: CarePlan) -> list[Task]:
        """
        Persist a care plan and detach its contained resources.

        The care plan itself is only stored when it has activities. Saving a
        completed care plan cancels its still-open tasks.

        Returns:
            Tasks among the detached resources
        """
        care_plan.instantiates_canonical = [canonical_reference(c) for c in care_plan.instantiates_canonical]
        dependents = list(care_plan.contained)
        care_plan.contained = []

        if care_plan.has_activity():
            await self.store.save(care_plan)

        tasks: list[Task] = []
        for dependent in dependents:
            resource = dependent if type(dependent) is not BaseResource else parse_resource(dependent.to_document())
            await self.store.save(resource)
            if isinstance(resource, Task):
                tasks.append(resource)

        logger.info(
            "Care plan saved",
            care_plan_id=care_plan.logical_id,
            activities=len(care_plan.activity),
            detached=len(dependents),
        )

        if care_plan.status == CarePlanStatus.COMPLETED:
            await self._cancel_open_tasks(care_plan)
        return tasks

    async def _cancel_open_tasks(self, care_plan: CarePlan) -> None:
        for task_id in care_plan.task_ids():
            result = await self.store.lookup("Task", task_id)
            if isinstance(result, NotFound):
                logger.warning("Care plan task not found", care_plan_id=care_plan.logical_id, task_id=task_id)
                continue
            if result.resource.status in _CANCELLABLE_ON_COMPLETION:
                await self.lifecycle.transition(result.resource, TaskStatus.CANCELLED, CARE_PLAN_COMPLETED_REASON)

    async def _result(self, care_plan: CarePlan) -> CarePlan | None:
        if not care_plan.has_activity():
            return None
        return await self.store.get("CarePlan", care_plan.logical_id)
