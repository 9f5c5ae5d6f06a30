"""
Task Domain Model

A Task is a schedulable unit of clinical or operational work.

- ``execution_period`` is when the task is due
- ``restriction.period`` is the hard expiry window
- ``part_of`` points at a prerequisite task
- ``based_on`` points at the originating care plan

FHIR: Task
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from careflow.models.base import BaseResource, Period, Reference, as_utc


class TaskStatus(str, Enum):
    """Task lifecycle states."""
    DRAFT = "draft"
    REQUESTED = "requested"
    RECEIVED = "received"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    READY = "ready"
    CANCELLED = "cancelled"
    IN_PROGRESS = "in-progress"
    ON_HOLD = "on-hold"
    FAILED = "failed"
    COMPLETED = "completed"
    ENTERED_IN_ERROR = "entered-in-error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TASK_STATUSES


TERMINAL_TASK_STATUSES = frozenset({
    TaskStatus.COMPLETED,
    TaskStatus.CANCELLED,
    TaskStatus.FAILED,
    TaskStatus.ENTERED_IN_ERROR,
})

# Statuses that can still be promoted to ready
UPCOMING_TASK_STATUSES = (
    TaskStatus.REQUESTED,
    TaskStatus.ACCEPTED,
    TaskStatus.RECEIVED,
)

# Statuses scanned by the expiry sweeps
OPEN_TASK_STATUSES = (
    TaskStatus.REQUESTED,
    TaskStatus.READY,
    TaskStatus.ACCEPTED,
    TaskStatus.RECEIVED,
    TaskStatus.IN_PROGRESS,
)

MINIMUM_GAP_INPUT = "minimum-gap-days"


class TaskInput(BaseModel):
    """Task input parameter."""
    type: str | None = Field(default=None, description="Input type code")
    value: Any = None


class TaskOutput(BaseModel):
    """Record produced when the task was carried out."""
    type: str | None = None
    value_reference: Reference | None = None


class TaskRestriction(BaseModel):
    """Constraints on fulfilment; ``period.end`` is the hard expiry."""
    repetitions: int | None = None
    period: Period | None = None


class Task(BaseResource):
    """
    Clinical/administrative task.

    FHIR: Task
    """

    resource_type: Literal["Task"] = "Task"

    status: TaskStatus = TaskStatus.REQUESTED
    status_reason: str | None = None
    intent: str = "plan"
    priority: str = "routine"

    code: str | None = Field(default=None, description="Task type code")
    description: str | None = None
    group_identifier: str | None = Field(
        default=None, description="Clusters co-scheduled tasks, e.g. '6 weeks'"
    )

    # Relationships
    for_: Reference | None = Field(default=None, alias="for")
    owner: Reference | None = None
    part_of: list[Reference] = Field(default_factory=list)
    based_on: list[Reference] = Field(default_factory=list)
    instantiates_canonical: str | None = None

    # Timing
    authored_on: datetime | None = None
    last_modified: datetime | None = None
    execution_period: Period | None = None
    restriction: TaskRestriction | None = None

    input: list[TaskInput] = Field(default_factory=list)
    output: list[TaskOutput] = Field(default_factory=list)

    @field_validator("authored_on", "last_modified")
    @classmethod
    def _normalise(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def execution_start(self) -> datetime | None:
        return self.execution_period.start if self.execution_period else None

    @property
    def execution_end(self) -> datetime | None:
        return self.execution_period.end if self.execution_period else None

    @property
    def restriction_end(self) -> datetime | None:
        if self.restriction and self.restriction.period:
            return self.restriction.period.end
        return None

    def has_past_restriction_end(self, now: datetime) -> bool:
        """True when the hard expiry window has closed."""
        end = self.restriction_end
        return end is not None and end <= now

    def has_past_execution_end(self, now: datetime) -> bool:
        end = self.execution_end
        return end is not None and end <= now

    def prerequisite_id(self) -> str | None:
        """Logical id of the ``part_of`` prerequisite task, if any."""
        for ref in self.part_of:
            if ref.reference and ref.points_to("Task"):
                return ref.id_part
        return None

    def care_plan_id(self) -> str | None:
        """Logical id of the originating care plan, if any."""
        for ref in self.based_on:
            if ref.reference and ref.points_to("CarePlan"):
                return ref.id_part
        return None

    def minimum_gap_days(self) -> int | None:
        """Numeric minimum-gap constraint carried in ``input``."""
        for item in self.input:
            if item.type != MINIMUM_GAP_INPUT or isinstance(item.value, bool):
                continue
            if item.value is not None:
                return int(item.value)
        return None
