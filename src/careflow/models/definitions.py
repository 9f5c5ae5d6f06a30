"""
Protocol Definition Models

Read-only inputs describing a care protocol:
- PlanDefinition (ordered actions with applicability conditions)
- ActivityDefinition (what an action materialises and on which schedule)
- Timing / Dosage (recurrence descriptions)

FHIR: PlanDefinition, ActivityDefinition, Timing, Dosage
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from careflow.models.base import BaseResource


class ConditionKind(str, Enum):
    APPLICABILITY = "applicability"
    START = "start"
    STOP = "stop"


class ExpressionLanguage(str, Enum):
    FHIRPATH = "text/fhirpath"
    CQL = "text/cql"


class Expression(BaseModel):
    """An expression in a named language."""
    language: str = ExpressionLanguage.FHIRPATH.value
    expression: str


class ActionCondition(BaseModel):
    kind: ConditionKind = ConditionKind.APPLICABILITY
    expression: Expression


class DynamicValue(BaseModel):
    """Binding of an evaluated expression onto a target field path."""
    path: str
    expression: Expression


class TimingRepeat(BaseModel):
    """
    Recurrence description.

    ``count`` drives batch generation. ``frequency``, ``count_max`` and an
    hour-based ``duration_unit`` mark a legacy protocol.
    """
    count: int | None = None
    count_max: int | None = None
    frequency: int | None = None
    period: float | None = None
    period_unit: str | None = None
    duration: float | None = None
    duration_unit: str | None = None


class Timing(BaseModel):
    repeat: TimingRepeat | None = None


class Dosage(BaseModel):
    sequence: int | None = None
    text: str | None = None
    timing: Timing | None = None


class ActivityDefinitionKind(str, Enum):
    TASK = "Task"
    CAREPLAN = "CarePlan"
    MEDICATION_REQUEST = "MedicationRequest"
    SERVICE_REQUEST = "ServiceRequest"


class ActivityDefinition(BaseResource):
    """
    Template used to materialise an activity from an action.

    FHIR: ActivityDefinition
    """

    resource_type: Literal["ActivityDefinition"] = "ActivityDefinition"

    kind: ActivityDefinitionKind = ActivityDefinitionKind.TASK
    title: str | None = None
    description: str | None = None
    timing: Timing | None = None
    dosage: list[Dosage] = Field(default_factory=list)
    dynamic_value: list[DynamicValue] = Field(default_factory=list)


class PlanAction(BaseModel):
    """A single protocol action."""
    id: str | None = None
    title: str | None = None
    condition: list[ActionCondition] = Field(default_factory=list)
    definition_canonical: str | None = Field(
        default=None, description="Id of a contained ActivityDefinition"
    )
    transform: str | None = Field(default=None, description="Transformation script reference")
    dynamic_value: list[DynamicValue] = Field(default_factory=list)


class PlanDefinition(BaseResource):
    """
    Declarative, versioned care protocol.

    FHIR: PlanDefinition
    """

    resource_type: Literal["PlanDefinition"] = "PlanDefinition"

    version: str | None = None
    title: str | None = None
    description: str | None = None
    action: list[PlanAction] = Field(default_factory=list)
    contained: list[ActivityDefinition] = Field(default_factory=list)

    def activity_definition(self, canonical: str | None) -> ActivityDefinition | None:
        """Resolve an action's definition canonical against contained definitions."""
        if not canonical:
            return None
        wanted = canonical.lstrip("#").split("/_history")[0].rsplit("/", 1)[-1]
        for definition in self.contained:
            if definition.logical_id == wanted:
                return definition
        return None
