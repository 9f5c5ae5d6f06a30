from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from careflow.collaborators import (
    LoggingNotificationDispatcher,
    TransformEngine,
    TransformParameters,
    WorkflowApplier,
)
from careflow.config import Settings
from careflow.expressions import SimpleExpressionEvaluator
from careflow.models import (
    ActivityDefinition,
    CarePlan,
    Patient,
    Period,
    PlanAction,
    PlanDefinition,
    Reference,
    Task,
    TaskRestriction,
    TaskStatus,
    Timing,
    TimingRepeat,
    activity_status_for,
)
from careflow.service import CareflowService
from careflow.store import InMemoryCheckpointStore, InMemoryResourceStore

NOW = datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc)


class FakeTransformEngine(TransformEngine):
    """Materialises one requested task per period into the care plan."""

    def __init__(self):
        self.calls: list[tuple[str, TransformParameters]] = []

    async def transform(self, script_ref, parameters, target):
        self.calls.append((script_ref, parameters))
        task = Task(
            id=str(uuid4()),
            status=TaskStatus.REQUESTED,
            description=parameters.definition.title,
            for_=parameters.subject.as_reference(),
            based_on=[target.as_reference()],
            execution_period=parameters.period,
        )
        target.contained.append(task)
        target.add_task_activity(task.as_reference(), activity_status_for(task.status), task.description)


class FakeWorkflowApplier(WorkflowApplier):
    """Returns a fixed proposal."""

    def __init__(self, contained=None):
        self.contained = list(contained or [])
        self.calls = 0

    async def apply(self, plan_definition, subject, input_data):
        self.calls += 1
        return CarePlan(status="draft", contained=list(self.contained))


@pytest.fixture
def store():
    return InMemoryResourceStore()


@pytest.fixture
def checkpoints():
    return InMemoryCheckpointStore()


@pytest.fixture
def evaluator():
    return SimpleExpressionEvaluator()


@pytest.fixture
def transform_engine():
    return FakeTransformEngine()


@pytest.fixture
def dispatcher():
    return LoggingNotificationDispatcher()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def service(store, evaluator, checkpoints, transform_engine, dispatcher, settings):
    return CareflowService(
        store,
        evaluator,
        checkpoints,
        transform_engine=transform_engine,
        dispatcher=dispatcher,
        settings=settings,
    )


@pytest.fixture
def patient():
    return Patient(id="patient-1", name="Jane Doe")


@pytest.fixture
def make_task():
    """Factory for tasks with relative execution/restriction windows."""

    def _make(
        task_id=None,
        status=TaskStatus.REQUESTED,
        start=NOW - timedelta(days=1),
        end=NOW + timedelta(days=7),
        restriction_end=None,
        care_plan=None,
        part_of=None,
        subject="Patient/patient-1",
        **kwargs,
    ):
        task = Task(
            id=task_id or str(uuid4()),
            status=status,
            execution_period=Period(start=start, end=end),
            for_=Reference(reference=subject),
            **kwargs,
        )
        if restriction_end is not None:
            task.restriction = TaskRestriction(period=Period(end=restriction_end))
        if care_plan is not None:
            task.based_on = [care_plan.as_reference()]
        if part_of is not None:
            task.part_of = [part_of.as_reference()]
        return task

    return _make


@pytest.fixture
def make_care_plan():
    """Factory for a care plan linking the given tasks as task activities."""

    def _make(tasks=(), care_plan_id=None, status="active", **kwargs):
        care_plan = CarePlan(
            id=care_plan_id or str(uuid4()),
            status=status,
            subject=Reference(reference="Patient/patient-1"),
            period=Period(start=NOW - timedelta(days=30)),
            **kwargs,
        )
        for task in tasks:
            care_plan.add_task_activity(task.as_reference(), activity_status_for(task.status))
            task.based_on = [care_plan.as_reference()]
        return care_plan

    return _make


@pytest.fixture
def visit_plan():
    """Plan definition scheduling three monthly visits."""
    return PlanDefinition(
        id="anc-visits",
        title="ANC visits",
        description="Antenatal care contacts",
        contained=[
            ActivityDefinition(
                id="monthly-visit",
                title="Monthly visit",
                timing=Timing(repeat=TimingRepeat(count=3, period=1, period_unit="mo", duration=2, duration_unit="wk")),
            ),
        ],
        action=[
            PlanAction(id="visits", definition_canonical="#monthly-visit", transform="StructureMap/anc-visit"),
        ],
    )


@pytest.fixture
def fake_workflow_applier():
    return FakeWorkflowApplier
