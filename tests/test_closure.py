import pytest

from careflow.engine import ResourceClosureCascade
from careflow.errors import UnsupportedResourceKindError
from careflow.models import (
    CarePlan,
    CarePlanStatus,
    MatchMode,
    QuestionnaireResponse,
    Reference,
    ResourceConfig,
    ServiceRequest,
    TaskStatus,
)
from careflow.models.workflow import EventWorkflow


def care_plan_workflow(*resources, **kwargs):
    return EventWorkflow(
        id="close-on-care-plan-completion",
        trigger_resource_type="CarePlan",
        trigger_status="completed",
        event_resources=list(resources),
        **kwargs,
    )


@pytest.fixture
def completed_plan():
    return CarePlan(id="cp1", status=CarePlanStatus.COMPLETED)


async def persist(store, *resources):
    for resource in resources:
        await store.create(resource)


@pytest.mark.asyncio
async def test_completed_care_plan_closes_dependents(store, evaluator, completed_plan, make_task):
    referral = ServiceRequest(id="sr1", based_on=[completed_plan.as_reference()])
    done = ServiceRequest(id="sr2", status="completed", based_on=[completed_plan.as_reference()])
    unrelated = ServiceRequest(id="sr3", based_on=[Reference(reference="CarePlan/other")])
    open_task = make_task("t1", care_plan=completed_plan)
    await persist(store, completed_plan, referral, done, unrelated, open_task)
    cascade = ResourceClosureCascade(
        store,
        evaluator,
        [care_plan_workflow(ResourceConfig(resource_type="ServiceRequest"), ResourceConfig(resource_type="Task"))],
    )

    closed = await cascade.close(completed_plan)

    assert sorted(r.reference_value() for r in closed) == ["ServiceRequest/sr1", "Task/t1"]
    assert (await store.get("ServiceRequest", "sr1")).status == "revoked"
    assert (await store.get("ServiceRequest", "sr2")).status == "completed"
    assert (await store.get("ServiceRequest", "sr3")).status == "active"
    task = await store.get("Task", "t1")
    assert task.status == TaskStatus.CANCELLED
    assert task.status_reason == "Closed by event workflow"


@pytest.mark.asyncio
async def test_trigger_status_must_match(store, evaluator):
    active = CarePlan(id="cp1", status=CarePlanStatus.ACTIVE)
    referral = ServiceRequest(id="sr1", based_on=[active.as_reference()])
    await persist(store, active, referral)
    cascade = ResourceClosureCascade(
        store, evaluator, [care_plan_workflow(ResourceConfig(resource_type="ServiceRequest"))]
    )

    assert await cascade.close(active) == []
    assert (await store.get("ServiceRequest", "sr1")).status == "active"


@pytest.mark.parametrize("match_mode, expected", [(MatchMode.ALL, False), (MatchMode.ANY, True)])
def test_trigger_expression_match_mode(store, evaluator, completed_plan, match_mode, expected):
    workflow = care_plan_workflow(trigger_expressions=["true", "false"], match_mode=match_mode)
    cascade = ResourceClosureCascade(store, evaluator)

    assert cascade.is_triggered(completed_plan, workflow) is expected


def test_workflow_applies_to_trigger_type(store, evaluator, completed_plan):
    cascade = ResourceClosureCascade(store, evaluator)
    workflow = care_plan_workflow()
    workflow.trigger_resource_type = "ServiceRequest"

    assert cascade.is_triggered(completed_plan, workflow) is False


@pytest.mark.asyncio
async def test_targets_filtered_by_plan_definition(store, evaluator, completed_plan):
    labs = ServiceRequest(
        id="sr1", based_on=[completed_plan.as_reference()], instantiates_canonical=["PlanDefinition/labs"]
    )
    imaging = ServiceRequest(
        id="sr2", based_on=[completed_plan.as_reference()], instantiates_canonical=["PlanDefinition/imaging"]
    )
    await persist(store, completed_plan, labs, imaging)
    config = ResourceConfig(resource_type="ServiceRequest", plan_definitions=["labs"])
    cascade = ResourceClosureCascade(store, evaluator, [care_plan_workflow(config)])

    closed = await cascade.close(completed_plan)

    assert [r.id for r in closed] == ["sr1"]
    assert (await store.get("ServiceRequest", "sr2")).status == "active"


@pytest.mark.asyncio
async def test_target_by_id(store, evaluator, completed_plan):
    await persist(store, completed_plan, ServiceRequest(id="sr9"))
    cascade = ResourceClosureCascade(
        store,
        evaluator,
        [care_plan_workflow(
            ResourceConfig(resource_type="ServiceRequest", id="ServiceRequest/sr9", closure_status="completed"),
            ResourceConfig(resource_type="ServiceRequest", id="missing"),
        )],
    )

    closed = await cascade.close(completed_plan)

    assert [r.id for r in closed] == ["sr9"]
    assert (await store.get("ServiceRequest", "sr9")).status == "completed"


@pytest.mark.asyncio
async def test_related_resources_are_closed_recursively(store, evaluator, completed_plan):
    referral = ServiceRequest(id="sr1", based_on=[completed_plan.as_reference()])
    response = QuestionnaireResponse(id="qr1", based_on=[referral.as_reference()])
    await persist(store, completed_plan, referral, response)
    config = ResourceConfig(
        resource_type="ServiceRequest",
        related_resources=[ResourceConfig(resource_type="QuestionnaireResponse")],
    )
    cascade = ResourceClosureCascade(store, evaluator, [care_plan_workflow(config)])

    closed = await cascade.close(completed_plan)

    assert [r.reference_value() for r in closed] == ["ServiceRequest/sr1", "QuestionnaireResponse/qr1"]
    assert (await store.get("QuestionnaireResponse", "qr1")).status == "stopped"


@pytest.mark.asyncio
async def test_related_resources_stop_at_depth_limit(store, evaluator, completed_plan):
    referral = ServiceRequest(id="sr1", based_on=[completed_plan.as_reference()])
    response = QuestionnaireResponse(id="qr1", based_on=[referral.as_reference()])
    await persist(store, completed_plan, referral, response)
    config = ResourceConfig(
        resource_type="ServiceRequest",
        related_resources=[ResourceConfig(resource_type="QuestionnaireResponse")],
    )
    cascade = ResourceClosureCascade(store, evaluator, [care_plan_workflow(config)], max_depth=0)

    closed = await cascade.close(completed_plan)

    assert [r.id for r in closed] == ["sr1"]
    assert (await store.get("QuestionnaireResponse", "qr1")).status == "in-progress"


@pytest.mark.asyncio
async def test_unsupported_target_kind_raises(store, evaluator, completed_plan):
    cascade = ResourceClosureCascade(
        store, evaluator, [care_plan_workflow(ResourceConfig(resource_type="Appointment"))]
    )

    with pytest.raises(UnsupportedResourceKindError):
        await cascade.close(completed_plan)


@pytest.mark.asyncio
async def test_close_completed_service_requests(store, evaluator, make_task):
    completed = ServiceRequest(id="sr1", status="completed")
    active = ServiceRequest(id="sr2")
    follow_up = make_task("t1")
    follow_up.based_on = [completed.as_reference()]
    pending = make_task("t2")
    pending.based_on = [active.as_reference()]
    await persist(store, completed, active, follow_up, pending)
    workflow = EventWorkflow(
        id="close-on-service-request-completion",
        trigger_resource_type="ServiceRequest",
        trigger_status="completed",
        event_resources=[ResourceConfig(resource_type="Task")],
    )
    cascade = ResourceClosureCascade(store, evaluator, [workflow])

    assert await cascade.close_completed_service_requests() == 1
    assert (await store.get("Task", "t1")).status == TaskStatus.CANCELLED
    assert (await store.get("Task", "t2")).status == TaskStatus.REQUESTED


@pytest.mark.asyncio
async def test_closure_sweep(store, evaluator, completed_plan):
    active = CarePlan(id="cp2", status=CarePlanStatus.ACTIVE)
    await persist(
        store,
        completed_plan,
        active,
        ServiceRequest(id="sr1", based_on=[completed_plan.as_reference()]),
        ServiceRequest(id="sr2", based_on=[active.as_reference()]),
    )
    untyped = EventWorkflow(id="untyped", event_resources=[ResourceConfig(resource_type="ServiceRequest")])
    cascade = ResourceClosureCascade(
        store,
        evaluator,
        [care_plan_workflow(ResourceConfig(resource_type="ServiceRequest")), untyped],
    )

    assert await cascade.run_closure_sweep() == 1
    assert (await store.get("ServiceRequest", "sr1")).status == "revoked"
    assert (await store.get("ServiceRequest", "sr2")).status == "active"
    assert await cascade.run_closure_sweep() == 0


@pytest.mark.asyncio
async def test_workflow_registered_on_service_drives_task_completion(service, store, make_task, make_care_plan):
    task = make_task("t1", status=TaskStatus.IN_PROGRESS)
    care_plan = make_care_plan([task], care_plan_id="cp1")
    referral = ServiceRequest(id="sr1", based_on=[care_plan.as_reference()])
    await persist(store, care_plan, task, referral)

    service.register_workflow(care_plan_workflow(ResourceConfig(resource_type="ServiceRequest")))
    await service.update_task_status("t1", TaskStatus.COMPLETED)

    assert (await store.get("CarePlan", "cp1")).status == CarePlanStatus.COMPLETED
    assert (await store.get("ServiceRequest", "sr1")).status == "revoked"
