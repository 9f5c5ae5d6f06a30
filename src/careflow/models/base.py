"""
Base Models for Careflow Resources

Provides the shared building blocks for every domain resource:
- Typed references between resources
- Periods with timezone-normalised boundaries
- Resource identity and reference helpers
"""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware values."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def start_of_day(value: datetime) -> datetime:
    """Midnight (UTC) of the day containing ``value``."""
    return as_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)


def extract_id(reference: str) -> str:
    """
    Extract the logical id from a reference string.

    ``"Task/123"`` -> ``"123"``, ``"Task/123/_history/2"`` -> ``"123"``,
    a bare ``"123"`` is returned unchanged.
    """
    value = reference.split("/_history")[0]
    return value.rsplit("/", 1)[-1]


class Reference(BaseModel):
    """A typed pointer to another resource (``"<Type>/<id>"``)."""

    model_config = ConfigDict(populate_by_name=True)

    reference: str | None = None
    display: str | None = None

    @property
    def resource_type(self) -> str | None:
        if not self.reference or "/" not in self.reference:
            return None
        return self.reference.split("/_history")[0].rsplit("/", 1)[0].split("/")[-1]

    @property
    def id_part(self) -> str | None:
        if not self.reference:
            return None
        return extract_id(self.reference)

    def points_to(self, resource_type: str) -> bool:
        return self.resource_type == resource_type


class Period(BaseModel):
    """A time range with optional start and end."""

    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end")
    @classmethod
    def _normalise(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class BaseResource(BaseModel):
    """
    Base class for all domain resources.

    Every concrete resource declares a ``resource_type`` literal which is
    used both for reference values and for store lookups.

    Attributes:
        id: Logical id (assigned by the store on create if missing)
        resource_type: Resource type name (e.g. ``"Task"``)
        last_updated: Store-maintained modification timestamp
    """

    model_config = ConfigDict(
        populate_by_name=True,
        validate_assignment=False,
        extra="allow",
    )

    resource_type: str
    id: str | None = Field(default=None, description="Logical id")
    last_updated: datetime | None = None

    def generate_id(self) -> str:
        """Generate a new logical id."""
        self.id = str(uuid4())
        return self.id

    @property
    def logical_id(self) -> str | None:
        if self.id is None:
            return None
        return extract_id(self.id)

    def reference_value(self) -> str:
        """Reference string for this resource, e.g. ``"Task/123"``."""
        return f"{self.resource_type}/{self.logical_id}"

    def as_reference(self, display: str | None = None) -> Reference:
        return Reference(reference=self.reference_value(), display=display)

    def to_document(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible dict."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
