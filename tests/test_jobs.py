from datetime import datetime, timedelta, timezone

import pytest

from careflow.engine import TaskLifecycle
from careflow.errors import PersistenceError
from careflow.jobs import CarePlanReconciler, TaskReconciler
from careflow.models import CarePlanStatus, TaskStatus
from careflow.store import InMemoryResourceStore

NOW = datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc)


class FailingCarePlanStore(InMemoryResourceStore):
    """Store whose care plan writes fail."""

    async def update(self, resource):
        if resource.resource_type == "CarePlan":
            raise PersistenceError("write failed")
        await super().update(resource)


@pytest.fixture
def lifecycle(store):
    return TaskLifecycle(store)


@pytest.fixture
def reconciler(store, lifecycle):
    return TaskReconciler(store, lifecycle, expired_reason="Task expired", failed_reason="Execution period elapsed")


@pytest.mark.asyncio
async def test_expire_overdue_tasks(store, reconciler, make_task):
    for i in range(4):
        await store.create(make_task(f"t{i}", restriction_end=NOW + timedelta(days=i % 2)))
    await store.create(make_task("done", status=TaskStatus.COMPLETED, restriction_end=NOW - timedelta(days=1)))

    expired = await reconciler.expire_overdue_tasks(NOW)

    assert sorted(t.id for t in expired) == ["t0", "t2"]
    for task_id in ("t0", "t2"):
        task = await store.get("Task", task_id)
        assert task.status == TaskStatus.CANCELLED
        assert task.status_reason == "Task expired"
    assert (await store.get("Task", "t1")).status == TaskStatus.REQUESTED
    assert (await store.get("Task", "done")).status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_expiry_wins_over_failure(store, reconciler, make_task):
    await store.create(make_task(
        "t1",
        status=TaskStatus.IN_PROGRESS,
        end=NOW - timedelta(days=3),
        restriction_end=NOW - timedelta(days=1),
    ))

    await reconciler.expire_overdue_tasks(NOW)

    task = await store.get("Task", "t1")
    assert task.status == TaskStatus.CANCELLED
    assert task.status_reason is not None


@pytest.mark.asyncio
async def test_expiry_completes_care_plan(store, reconciler, make_task, make_care_plan):
    done = make_task("t1", status=TaskStatus.COMPLETED)
    overdue = make_task("t2", restriction_end=NOW - timedelta(hours=1))
    care_plan = make_care_plan([done, overdue], care_plan_id="cp1")
    for resource in (care_plan, done, overdue):
        await store.create(resource)

    await reconciler.expire_overdue_tasks(NOW)

    assert (await store.get("CarePlan", "cp1")).status == CarePlanStatus.COMPLETED


@pytest.mark.asyncio
async def test_fail_elapsed_tasks(store, reconciler, make_task):
    await store.create(make_task("elapsed", status=TaskStatus.READY, end=NOW - timedelta(days=1)))
    await store.create(make_task(
        "expired", end=NOW - timedelta(days=1), restriction_end=NOW - timedelta(hours=2),
    ))
    await store.create(make_task("open", end=NOW + timedelta(days=1)))

    closed = await reconciler.fail_elapsed_tasks(NOW)

    assert sorted(t.id for t in closed) == ["elapsed", "expired"]
    elapsed = await store.get("Task", "elapsed")
    assert elapsed.status == TaskStatus.FAILED
    assert elapsed.status_reason == "Execution period elapsed"
    assert (await store.get("Task", "expired")).status == TaskStatus.CANCELLED
    assert (await store.get("Task", "open")).status == TaskStatus.REQUESTED


@pytest.mark.asyncio
async def test_promote_upcoming_tasks_for_subject(store, reconciler, make_task):
    await store.create(make_task("mine", start=NOW - timedelta(days=1)))
    await store.create(make_task("accepted", status=TaskStatus.ACCEPTED, start=NOW - timedelta(days=1)))
    await store.create(make_task("theirs", start=NOW - timedelta(days=1), subject="Patient/patient-2"))
    await store.create(make_task("future", start=NOW + timedelta(days=2)))

    promoted = await reconciler.promote_upcoming_tasks_to_due(subject="Patient/patient-1", now=NOW)

    assert sorted(t.id for t in promoted) == ["accepted", "mine"]
    assert (await store.get("Task", "theirs")).status == TaskStatus.REQUESTED
    assert (await store.get("Task", "future")).status == TaskStatus.REQUESTED


@pytest.mark.asyncio
async def test_promote_candidate_tasks_only(store, reconciler, make_task):
    candidate = make_task("candidate")
    other = make_task("other")
    await store.create(candidate)
    await store.create(other)

    promoted = await reconciler.promote_upcoming_tasks_to_due(candidate_tasks=[candidate], now=NOW)

    assert [t.id for t in promoted] == ["candidate"]
    assert (await store.get("Task", "other")).status == TaskStatus.REQUESTED


@pytest.mark.asyncio
async def test_promotion_is_gated_by_prerequisite(store, reconciler, lifecycle, make_task):
    prerequisite = make_task("first", status=TaskStatus.IN_PROGRESS, start=NOW + timedelta(days=30))
    dependent = make_task("second", start=NOW - timedelta(days=10), part_of=prerequisite)
    await store.create(prerequisite)
    await store.create(dependent)

    assert await reconciler.promote_upcoming_tasks_to_due(now=NOW) == []

    await lifecycle.update_task_status("first", TaskStatus.COMPLETED)
    promoted = await reconciler.promote_upcoming_tasks_to_due(now=NOW)

    assert [t.id for t in promoted] == ["second"]


async def seed_stale_care_plans(store, make_task, make_care_plan, count):
    for i in range(count):
        task = make_task(f"t{i}", status=TaskStatus.COMPLETED if i % 2 else TaskStatus.CANCELLED)
        care_plan = make_care_plan([task], care_plan_id=f"cp{i}")
        await store.create(care_plan)
        await store.create(task)


@pytest.mark.asyncio
async def test_checkpointed_care_plan_completion(store, lifecycle, checkpoints, make_task, make_care_plan):
    await seed_stale_care_plans(store, make_task, make_care_plan, 250)
    reconciler = CarePlanReconciler(store, lifecycle, checkpoints, batch_size=50, key_prefix="test")

    results = [await reconciler.complete_stale_care_plans() for _ in range(5)]

    assert [r.offset for r in results] == [50, 100, 150, 200, 250]
    assert all(r.examined == 50 and r.completed == 50 for r in results)
    assert await checkpoints.read("test:complete-care-plans:offset") == "250"
    care_plans = [await store.get("CarePlan", f"cp{i}") for i in range(250)]
    assert all(cp.status == CarePlanStatus.COMPLETED for cp in care_plans)

    wrapped = await reconciler.complete_stale_care_plans()
    assert wrapped.examined == 0
    assert await checkpoints.read("test:complete-care-plans:offset") == "0"


@pytest.mark.asyncio
async def test_open_care_plans_are_examined_but_not_completed(store, lifecycle, checkpoints, make_task, make_care_plan):
    done = make_task("t1", status=TaskStatus.COMPLETED)
    running = make_task("t2", status=TaskStatus.IN_PROGRESS)
    await store.create(make_care_plan([done, running], care_plan_id="cp1"))
    await store.create(make_care_plan([], care_plan_id="cp-empty"))
    await store.create(done)
    await store.create(running)
    reconciler = CarePlanReconciler(store, lifecycle, checkpoints, batch_size=10)

    result = await reconciler.complete_stale_care_plans()

    assert result.examined == 2
    assert result.completed == 0
    assert (await store.get("CarePlan", "cp1")).status == CarePlanStatus.ACTIVE


@pytest.mark.asyncio
async def test_failed_batch_leaves_checkpoint_unadvanced(checkpoints, make_task, make_care_plan):
    store = FailingCarePlanStore()
    await seed_stale_care_plans(store, make_task, make_care_plan, 3)
    await checkpoints.write("careflow:complete-care-plans:offset", "0")
    reconciler = CarePlanReconciler(store, TaskLifecycle(store), checkpoints, batch_size=2)

    with pytest.raises(PersistenceError):
        await reconciler.complete_stale_care_plans()

    assert await checkpoints.read("careflow:complete-care-plans:offset") == "0"


@pytest.mark.asyncio
async def test_sweeps_accept_naive_now(store, reconciler, make_task):
    naive_now = NOW.replace(tzinfo=None)
    await store.create(make_task("expired", restriction_end=NOW - timedelta(hours=1)))
    await store.create(make_task("elapsed", end=NOW - timedelta(hours=1)))
    await store.create(make_task("due", start=NOW - timedelta(hours=1)))

    expired = await reconciler.expire_overdue_tasks(naive_now)
    failed = await reconciler.fail_elapsed_tasks(naive_now)
    promoted = await reconciler.promote_upcoming_tasks_to_due(now=naive_now)

    assert [t.id for t in expired] == ["expired"]
    assert [t.id for t in failed] == ["elapsed"]
    assert [t.id for t in promoted] == ["due"]
