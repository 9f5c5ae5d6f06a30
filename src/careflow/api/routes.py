"""
Careflow Routes

Endpoints for applying plan definitions, updating task status and
triggering the reconciliation jobs on demand.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from careflow.errors import ConfigurationError, ResourceNotFoundError
from careflow.models import parse_resource
from careflow.models.task import TaskStatus
from careflow.service import CareflowService

router = APIRouter(prefix="/careflow", tags=["Careflow"])


def get_service(request: Request) -> CareflowService:
    """Service instance attached to the application."""
    return request.app.state.service


# =============================================================================
# Request/Response Models
# =============================================================================

class ApplyPlanRequest(BaseModel):
    """Request to apply a plan definition to a subject."""
    subject_id: str = Field(..., description="Logical id of the subject")
    subject_type: str = Field(default="Patient")
    input_data: list[dict[str, Any]] = Field(default_factory=list, description="Resource documents")
    use_workflow: bool = Field(default=False, description="Apply through the workflow engine")


class ApplyPlanResponse(BaseModel):
    applied: bool
    care_plan: dict[str, Any] | None = None


class TaskStatusRequest(BaseModel):
    status: TaskStatus
    reason: str | None = None


class JobResponse(BaseModel):
    """Outcome of an on-demand job run."""
    job: str
    count: int
    resource_ids: list[str] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Plans and tasks
# =============================================================================

@router.post("/plans/{plan_definition_id}/apply", response_model=ApplyPlanResponse)
async def apply_plan(
    plan_definition_id: str,
    body: ApplyPlanRequest,
    service: CareflowService = Depends(get_service),
):
    """Apply a plan definition, creating or updating the subject's care plan."""
    try:
        subject = await service.store.get(body.subject_type, body.subject_id)
        input_data = [parse_resource(document) for document in body.input_data]
        apply = service.apply_plan_with_workflow if body.use_workflow else service.apply_plan
        care_plan = await apply(plan_definition_id, subject, input_data)
    except ResourceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    if care_plan is None:
        return ApplyPlanResponse(applied=False)
    return ApplyPlanResponse(applied=True, care_plan=care_plan.to_document())


@router.put("/tasks/{task_id}/status")
async def update_task_status(
    task_id: str,
    body: TaskStatusRequest,
    service: CareflowService = Depends(get_service),
):
    """Transition a task, running the completion and dependency cascades."""
    try:
        task = await service.update_task_status(task_id, body.status, body.reason)
    except ResourceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return task.to_document()


# =============================================================================
# Jobs
# =============================================================================

@router.post("/jobs/expire-overdue-tasks", response_model=JobResponse)
async def expire_overdue_tasks(service: CareflowService = Depends(get_service)):
    tasks = await service.expire_overdue_tasks()
    return JobResponse(job="expire-overdue-tasks", count=len(tasks), resource_ids=[t.logical_id for t in tasks])


@router.post("/jobs/fail-elapsed-tasks", response_model=JobResponse)
async def fail_elapsed_tasks(service: CareflowService = Depends(get_service)):
    tasks = await service.fail_elapsed_tasks()
    return JobResponse(job="fail-elapsed-tasks", count=len(tasks), resource_ids=[t.logical_id for t in tasks])


@router.post("/jobs/promote-tasks", response_model=JobResponse)
async def promote_tasks(
    subject: str | None = None,
    service: CareflowService = Depends(get_service),
):
    """Promote due upcoming tasks, optionally for one subject reference."""
    tasks = await service.promote_upcoming_tasks_to_due(subject=subject)
    return JobResponse(job="promote-tasks", count=len(tasks), resource_ids=[t.logical_id for t in tasks])


@router.post("/jobs/complete-care-plans", response_model=JobResponse)
async def complete_care_plans(
    batch_size: int | None = None,
    service: CareflowService = Depends(get_service),
):
    result = await service.complete_stale_care_plans(batch_size)
    return JobResponse(
        job="complete-care-plans",
        count=result.completed,
        details={"examined": result.examined, "offset": result.offset},
    )


@router.post("/jobs/closure-sweep", response_model=JobResponse)
async def closure_sweep(service: CareflowService = Depends(get_service)):
    closed = await service.run_closure_sweep()
    return JobResponse(job="closure-sweep", count=closed)


@router.post("/jobs/completed-service-requests", response_model=JobResponse)
async def completed_service_requests(service: CareflowService = Depends(get_service)):
    closed = await service.close_completed_service_requests()
    return JobResponse(job="completed-service-requests", count=closed)


@router.post("/jobs/digests", response_model=JobResponse)
async def digests(service: CareflowService = Depends(get_service)):
    counts = await service.run_digest_sweeps()
    return JobResponse(job="digests", count=sum(counts.values()), details=counts)
