from datetime import datetime, timedelta, timezone
import asyncio

import pytest
from fastapi.testclient import TestClient

from careflow.api import create_app


def seed(store, *resources):
    async def _create():
        for resource in resources:
            await store.create(resource)

    asyncio.run(_create())


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy", "service": "careflow"}


def test_apply_plan(client, store, visit_plan, patient):
    seed(store, visit_plan, patient)

    resp = client.post("/careflow/plans/anc-visits/apply", json={"subject_id": "patient-1"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["applied"] is True
    assert data["care_plan"]["status"] == "active"
    assert data["care_plan"]["instantiates_canonical"] == ["PlanDefinition/anc-visits"]
    assert len(data["care_plan"]["activity"]) == 3
    assert store.count("Task") == 3


def test_apply_unknown_plan_or_subject(client, store, visit_plan, patient):
    seed(store, visit_plan)

    missing_plan = client.post("/careflow/plans/missing/apply", json={"subject_id": "patient-1"})
    missing_subject = client.post("/careflow/plans/anc-visits/apply", json={"subject_id": "patient-1"})

    assert missing_plan.status_code == 404
    assert missing_subject.status_code == 404


def test_update_task_status(client, store, make_task):
    seed(store, make_task("t1", status="in-progress"))

    resp = client.put("/careflow/tasks/t1/status", json={"status": "completed", "reason": "Seen at clinic"})

    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert resp.json()["status_reason"] == "Seen at clinic"
    assert resp.json()["for"] == {"reference": "Patient/patient-1"}


def test_update_task_status_errors(client, store, make_task):
    seed(store, make_task("t1"))

    assert client.put("/careflow/tasks/missing/status", json={"status": "completed"}).status_code == 404
    assert client.put("/careflow/tasks/t1/status", json={"status": "finished"}).status_code == 422


def test_job_endpoints(client, store, make_task):
    now = datetime.now(timezone.utc)
    seed(
        store,
        make_task("elapsed", start=now - timedelta(days=10), end=now - timedelta(days=1)),
        make_task("due", start=now - timedelta(days=1), end=now + timedelta(days=5)),
    )

    failed = client.post("/careflow/jobs/fail-elapsed-tasks")
    promoted = client.post("/careflow/jobs/promote-tasks", params={"subject": "Patient/patient-1"})
    care_plans = client.post("/careflow/jobs/complete-care-plans", params={"batch_size": 10})

    assert failed.json() == {"job": "fail-elapsed-tasks", "count": 1, "resource_ids": ["elapsed"], "details": {}}
    assert promoted.json()["resource_ids"] == ["due"]
    assert care_plans.json()["details"] == {"examined": 0, "offset": 0}


def test_sweep_endpoints(client):
    for path in ("closure-sweep", "completed-service-requests", "expire-overdue-tasks"):
        resp = client.post(f"/careflow/jobs/{path}")
        assert resp.status_code == 200
        assert resp.json()["count"] == 0

    digests = client.post("/careflow/jobs/digests")
    assert digests.json()["details"] == {"edd": 0, "anniversary": 0}
