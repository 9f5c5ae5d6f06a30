from datetime import datetime, timedelta, timezone

import pytest

from careflow.errors import PersistenceError, ResourceNotFoundError
from careflow.models import Task, TaskStatus
from careflow.store import FilterOp, Found, NotFound, SearchQuery

NOW = datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_create_assigns_id_and_lookup_returns_found(store):
    task = Task(status=TaskStatus.READY)

    task_id = await store.create(task)

    assert task.id == task_id
    result = await store.lookup("Task", task_id)
    assert isinstance(result, Found)
    assert result.resource.status == TaskStatus.READY
    assert result.resource.last_updated is not None


@pytest.mark.asyncio
async def test_missing_resource_is_not_found(store):
    result = await store.lookup("Task", "missing")

    assert result == NotFound(resource_type="Task", resource_id="missing")
    with pytest.raises(ResourceNotFoundError):
        await store.get("Task", "missing")
    with pytest.raises(ResourceNotFoundError):
        await store.update(Task(id="missing"))


@pytest.mark.asyncio
async def test_duplicate_create_fails(store):
    await store.create(Task(id="t1"))

    with pytest.raises(PersistenceError):
        await store.create(Task(id="t1"))


@pytest.mark.asyncio
async def test_stored_copies_are_isolated(store):
    task = Task(id="t1")
    await store.create(task)

    task.status = TaskStatus.CANCELLED
    fetched = await store.get("Task", "t1")

    assert fetched.status == TaskStatus.REQUESTED
    fetched.status = TaskStatus.COMPLETED
    assert (await store.get("Task", "t1")).status == TaskStatus.REQUESTED


@pytest.mark.asyncio
async def test_search_filters(store, make_task):
    due = make_task("due", start=NOW - timedelta(days=2))
    later = make_task("later", start=NOW + timedelta(days=2))
    done = make_task("done", status=TaskStatus.COMPLETED, start=NOW - timedelta(days=5), part_of=due)
    for task in (due, later, done):
        await store.create(task)

    open_due = await store.search(
        "Task",
        SearchQuery()
        .where("status", FilterOp.IN, [TaskStatus.REQUESTED, TaskStatus.READY])
        .where("execution_period.start", FilterOp.LE, NOW),
    )
    dependents = await store.search("Task", SearchQuery().where("part_of", FilterOp.EQ, "Task/due"))
    for_subject = await store.search("Task", SearchQuery().where("for", FilterOp.EQ, "Patient/patient-1"))

    assert [t.id for t in open_due] == ["due"]
    assert [t.id for t in dependents] == ["done"]
    assert len(for_subject) == 3


@pytest.mark.asyncio
async def test_search_pages_in_insertion_order(store):
    for i in range(7):
        await store.create(Task(id=f"t{i}"))

    first = await store.search("Task", SearchQuery().page(0, 3))
    last = await store.search("Task", SearchQuery().page(6, 3))
    beyond = await store.search("Task", SearchQuery().page(9, 3))

    assert [t.id for t in first] == ["t0", "t1", "t2"]
    assert [t.id for t in last] == ["t6"]
    assert beyond == []


@pytest.mark.asyncio
async def test_save_creates_then_updates(store):
    task = Task(id="t1")
    await store.save(task)
    task.status = TaskStatus.READY
    await store.save(task)

    assert store.count("Task") == 1
    assert (await store.get("Task", "t1")).status == TaskStatus.READY


@pytest.mark.asyncio
async def test_checkpoint_store(checkpoints):
    assert await checkpoints.read("job", "0") == "0"

    await checkpoints.write("job", "50")

    assert await checkpoints.read("job") == "50"
