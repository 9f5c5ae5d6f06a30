"""
Careflow Domain Models

Pydantic models for the care plan / task graph and the protocol
definitions that generate it.
"""

from careflow.models.base import (
    BaseResource,
    Period,
    Reference,
    as_utc,
    extract_id,
    start_of_day,
    utc_now,
)
from careflow.models.task import (
    MINIMUM_GAP_INPUT,
    OPEN_TASK_STATUSES,
    TERMINAL_TASK_STATUSES,
    UPCOMING_TASK_STATUSES,
    Task,
    TaskInput,
    TaskOutput,
    TaskRestriction,
    TaskStatus,
)
from careflow.models.careplan import (
    OPEN_CARE_PLAN_STATUSES,
    TERMINAL_CARE_PLAN_STATUSES,
    CarePlan,
    CarePlanActivity,
    CarePlanActivityDetail,
    CarePlanActivityKind,
    CarePlanActivityStatus,
    CarePlanStatus,
    activity_status_for,
)
from careflow.models.definitions import (
    ActionCondition,
    ActivityDefinition,
    ActivityDefinitionKind,
    ConditionKind,
    Dosage,
    DynamicValue,
    Expression,
    ExpressionLanguage,
    PlanAction,
    PlanDefinition,
    Timing,
    TimingRepeat,
)
from careflow.models.clinical import (
    ADMINISTRATION_RECORD_TYPES,
    Encounter,
    Immunization,
    MedicationAdministration,
    Observation,
    Patient,
    QuestionnaireResponse,
    ServiceRequest,
)
from careflow.models.workflow import (
    CLOSED_STATUSES,
    CLOSURE_STATUS,
    EventType,
    EventWorkflow,
    MatchMode,
    ResourceConfig,
    ResourceKind,
)

# Resource type name -> model class
RESOURCE_TYPES: dict[str, type[BaseResource]] = {
    model.model_fields["resource_type"].default: model
    for model in (
        Task,
        CarePlan,
        PlanDefinition,
        ActivityDefinition,
        Patient,
        ServiceRequest,
        QuestionnaireResponse,
        Immunization,
        Encounter,
        MedicationAdministration,
        Observation,
    )
}


def parse_resource(document: dict) -> BaseResource:
    """Build the typed model for a resource document."""
    model = RESOURCE_TYPES.get(document.get("resource_type", ""), BaseResource)
    return model.model_validate(document)


__all__ = [
    "BaseResource",
    "Period",
    "Reference",
    "as_utc",
    "extract_id",
    "start_of_day",
    "utc_now",
    "MINIMUM_GAP_INPUT",
    "OPEN_TASK_STATUSES",
    "TERMINAL_TASK_STATUSES",
    "UPCOMING_TASK_STATUSES",
    "Task",
    "TaskInput",
    "TaskOutput",
    "TaskRestriction",
    "TaskStatus",
    "OPEN_CARE_PLAN_STATUSES",
    "TERMINAL_CARE_PLAN_STATUSES",
    "CarePlan",
    "CarePlanActivity",
    "CarePlanActivityDetail",
    "CarePlanActivityKind",
    "CarePlanActivityStatus",
    "CarePlanStatus",
    "activity_status_for",
    "ActionCondition",
    "ActivityDefinition",
    "ActivityDefinitionKind",
    "ConditionKind",
    "Dosage",
    "DynamicValue",
    "Expression",
    "ExpressionLanguage",
    "PlanAction",
    "PlanDefinition",
    "Timing",
    "TimingRepeat",
    "ADMINISTRATION_RECORD_TYPES",
    "Encounter",
    "Immunization",
    "MedicationAdministration",
    "Observation",
    "Patient",
    "QuestionnaireResponse",
    "ServiceRequest",
    "CLOSED_STATUSES",
    "CLOSURE_STATUS",
    "EventType",
    "EventWorkflow",
    "MatchMode",
    "ResourceConfig",
    "ResourceKind",
    "RESOURCE_TYPES",
    "parse_resource",
]
