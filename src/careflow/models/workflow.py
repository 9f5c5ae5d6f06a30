"""
Event Workflow Configuration

Declarative trigger rules that cascade a status change from a trigger
resource to a set of dependent resources.
"""

from enum import Enum

from pydantic import BaseModel, Field

from careflow.errors import UnsupportedResourceKindError


class EventType(str, Enum):
    RESOURCE_CLOSURE = "resource-closure"


class MatchMode(str, Enum):
    ALL = "all"
    ANY = "any"


class ResourceKind(str, Enum):
    """Resource kinds the closure cascade knows how to close."""
    TASK = "Task"
    CARE_PLAN = "CarePlan"
    SERVICE_REQUEST = "ServiceRequest"
    QUESTIONNAIRE_RESPONSE = "QuestionnaireResponse"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_type(cls, resource_type: str) -> "ResourceKind":
        try:
            kind = cls(resource_type)
        except ValueError:
            return cls.UNSUPPORTED
        return kind

    def require_supported(self, resource_type: str) -> "ResourceKind":
        if self is ResourceKind.UNSUPPORTED:
            raise UnsupportedResourceKindError(
                f"Closing {resource_type} resources is not supported"
            )
        return self


# Status a resource is moved to when closed, and statuses already considered closed
CLOSURE_STATUS = {
    ResourceKind.TASK: "cancelled",
    ResourceKind.CARE_PLAN: "revoked",
    ResourceKind.SERVICE_REQUEST: "revoked",
    ResourceKind.QUESTIONNAIRE_RESPONSE: "stopped",
}

CLOSED_STATUSES = {
    ResourceKind.TASK: {"completed", "cancelled", "failed", "entered-in-error"},
    ResourceKind.CARE_PLAN: {"completed", "revoked", "entered-in-error"},
    ResourceKind.SERVICE_REQUEST: {"completed", "revoked", "entered-in-error"},
    ResourceKind.QUESTIONNAIRE_RESPONSE: {"completed", "amended", "stopped", "entered-in-error"},
}


class ResourceConfig(BaseModel):
    """
    A target of the closure cascade.

    Resources are matched by ``id`` when given; otherwise by the
    ``reference_path`` field pointing back at the parent resource, narrowed
    to ``plan_definitions`` when that list is non-empty.
    ``related_resources`` are resolved against each closed resource.
    """
    resource_type: str
    id: str | None = None
    plan_definitions: list[str] = Field(default_factory=list)
    reference_path: str = "based_on"
    closure_status: str | None = None
    related_resources: list["ResourceConfig"] = Field(default_factory=list)

    @property
    def kind(self) -> ResourceKind:
        return ResourceKind.from_type(self.resource_type)


class EventWorkflow(BaseModel):
    """A configured resource-closure rule."""
    id: str | None = None
    title: str | None = None
    event_type: EventType = EventType.RESOURCE_CLOSURE
    trigger_resource_type: str | None = Field(
        default=None, description="Resource type this rule fires for; any when unset"
    )
    trigger_status: str | None = Field(
        default=None, description="Status the trigger resource must have reached"
    )
    trigger_expressions: list[str] = Field(default_factory=list)
    match_mode: MatchMode = MatchMode.ALL
    event_resources: list[ResourceConfig] = Field(default_factory=list)

    def applies_to(self, resource_type: str) -> bool:
        return self.trigger_resource_type in (None, resource_type)


ResourceConfig.model_rebuild()
