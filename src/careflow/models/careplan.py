"""
Care Plan Domain Model

The per-subject record aggregating the activities generated from one or
more plan definition applications.

FHIR: CarePlan
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, SerializeAsAny

from careflow.models.base import BaseResource, Period, Reference
from careflow.models.task import TaskStatus


class CarePlanStatus(str, Enum):
    """Care plan status."""
    DRAFT = "draft"
    ACTIVE = "active"
    ON_HOLD = "on-hold"
    REVOKED = "revoked"
    COMPLETED = "completed"
    ENTERED_IN_ERROR = "entered-in-error"
    UNKNOWN = "unknown"


TERMINAL_CARE_PLAN_STATUSES = frozenset({
    CarePlanStatus.REVOKED,
    CarePlanStatus.COMPLETED,
    CarePlanStatus.ENTERED_IN_ERROR,
})

OPEN_CARE_PLAN_STATUSES = (
    CarePlanStatus.DRAFT,
    CarePlanStatus.ACTIVE,
    CarePlanStatus.ON_HOLD,
    CarePlanStatus.UNKNOWN,
)


class CarePlanActivityStatus(str, Enum):
    """Mirrored status of a care plan activity."""
    NOT_STARTED = "not-started"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    STOPPED = "stopped"
    UNKNOWN = "unknown"
    ENTERED_IN_ERROR = "entered-in-error"


class CarePlanActivityKind(str, Enum):
    TASK = "Task"
    SERVICE_REQUEST = "ServiceRequest"
    MEDICATION_REQUEST = "MedicationRequest"
    APPOINTMENT = "Appointment"


_ACTIVITY_STATUS_BY_TASK_STATUS = {
    TaskStatus.ACCEPTED: CarePlanActivityStatus.SCHEDULED,
    TaskStatus.DRAFT: CarePlanActivityStatus.NOT_STARTED,
    TaskStatus.REQUESTED: CarePlanActivityStatus.NOT_STARTED,
    TaskStatus.RECEIVED: CarePlanActivityStatus.NOT_STARTED,
    TaskStatus.READY: CarePlanActivityStatus.NOT_STARTED,
    TaskStatus.REJECTED: CarePlanActivityStatus.STOPPED,
    TaskStatus.FAILED: CarePlanActivityStatus.STOPPED,
    TaskStatus.CANCELLED: CarePlanActivityStatus.CANCELLED,
    TaskStatus.IN_PROGRESS: CarePlanActivityStatus.IN_PROGRESS,
    TaskStatus.ON_HOLD: CarePlanActivityStatus.ON_HOLD,
    TaskStatus.COMPLETED: CarePlanActivityStatus.COMPLETED,
    TaskStatus.ENTERED_IN_ERROR: CarePlanActivityStatus.ENTERED_IN_ERROR,
}


def activity_status_for(status: TaskStatus) -> CarePlanActivityStatus:
    """Map a task status onto the care plan activity status vocabulary."""
    return _ACTIVITY_STATUS_BY_TASK_STATUS.get(status, CarePlanActivityStatus.UNKNOWN)


class CarePlanActivityDetail(BaseModel):
    kind: CarePlanActivityKind | None = None
    code: str | None = None
    status: CarePlanActivityStatus = CarePlanActivityStatus.NOT_STARTED
    description: str | None = None


class CarePlanActivity(BaseModel):
    """A care plan activity pointing at its outcome resources."""
    outcome_reference: list[Reference] = Field(default_factory=list)
    detail: CarePlanActivityDetail | None = None

    def is_task_activity(self) -> bool:
        return self.detail is None or self.detail.kind in (None, CarePlanActivityKind.TASK)

    def task_references(self) -> list[Reference]:
        return [ref for ref in self.outcome_reference if ref.points_to("Task")]


class CarePlan(BaseResource):
    """
    Care plan / treatment plan.

    FHIR: CarePlan
    """

    resource_type: Literal["CarePlan"] = "CarePlan"

    status: CarePlanStatus = CarePlanStatus.ACTIVE
    intent: str = "plan"

    title: str | None = None
    description: str | None = None

    instantiates_canonical: list[str] = Field(default_factory=list)
    subject: Reference | None = None
    period: Period = Field(default_factory=Period)
    author: Reference | None = None

    activity: list[CarePlanActivity] = Field(default_factory=list)

    # Resources materialised by a transform; detached and stored on save
    contained: list[SerializeAsAny[BaseResource]] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CARE_PLAN_STATUSES

    def has_activity(self) -> bool:
        return len(self.activity) > 0

    def task_ids(self) -> list[str]:
        """Logical ids of every task referenced by task activities."""
        ids: list[str] = []
        for activity in self.activity:
            if not activity.is_task_activity():
                continue
            ids.extend(ref.id_part for ref in activity.task_references() if ref.id_part)
        return ids

    def activity_for(self, task_reference: str) -> CarePlanActivity | None:
        for activity in self.activity:
            if any(ref.reference == task_reference for ref in activity.outcome_reference):
                return activity
        return None

    def add_task_activity(self, task_reference: Reference, status: CarePlanActivityStatus,
                          description: str | None = None) -> CarePlanActivity:
        activity = CarePlanActivity(
            outcome_reference=[task_reference],
            detail=CarePlanActivityDetail(
                kind=CarePlanActivityKind.TASK,
                status=status,
                description=description,
            ),
        )
        self.activity.append(activity)
        return activity
