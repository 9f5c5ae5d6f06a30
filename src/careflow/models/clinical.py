"""
Clinical Domain Models

Resources the engine reads or closes but does not generate:
- Patient (care plan subject)
- ServiceRequest, QuestionnaireResponse (closure targets)
- Immunization, Encounter, MedicationAdministration (administration records)
- Observation (digest sweeps)
"""

from datetime import date, datetime
from typing import Literal

from pydantic import Field, field_validator

from careflow.models.base import BaseResource, Period, Reference, as_utc


class Patient(BaseResource):
    """FHIR: Patient"""

    resource_type: Literal["Patient"] = "Patient"

    name: str | None = None
    birth_date: date | None = None
    active: bool = True


class ServiceRequest(BaseResource):
    """
    Service request (order, referral).

    FHIR: ServiceRequest
    """

    resource_type: Literal["ServiceRequest"] = "ServiceRequest"

    status: Literal[
        "draft", "active", "on-hold", "revoked",
        "completed", "entered-in-error", "unknown"
    ] = "active"
    code: str | None = None
    subject: Reference | None = None
    based_on: list[Reference] = Field(default_factory=list)
    instantiates_canonical: list[str] = Field(default_factory=list)


class QuestionnaireResponse(BaseResource):
    """FHIR: QuestionnaireResponse"""

    resource_type: Literal["QuestionnaireResponse"] = "QuestionnaireResponse"

    status: Literal[
        "in-progress", "completed", "amended", "entered-in-error", "stopped"
    ] = "in-progress"
    questionnaire: str | None = None
    subject: Reference | None = None
    based_on: list[Reference] = Field(default_factory=list)


class Immunization(BaseResource):
    """FHIR: Immunization"""

    resource_type: Literal["Immunization"] = "Immunization"

    status: str = "completed"
    vaccine_code: str | None = None
    patient: Reference | None = None
    occurrence_datetime: datetime | None = None

    @field_validator("occurrence_datetime")
    @classmethod
    def _normalise(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def recorded_at(self) -> datetime | None:
        return self.occurrence_datetime


class Encounter(BaseResource):
    """FHIR: Encounter"""

    resource_type: Literal["Encounter"] = "Encounter"

    status: str = "finished"
    subject: Reference | None = None
    period: Period | None = None

    @property
    def recorded_at(self) -> datetime | None:
        return self.period.start if self.period else None


class MedicationAdministration(BaseResource):
    """FHIR: MedicationAdministration"""

    resource_type: Literal["MedicationAdministration"] = "MedicationAdministration"

    status: str = "completed"
    subject: Reference | None = None
    effective_datetime: datetime | None = None

    @field_validator("effective_datetime")
    @classmethod
    def _normalise(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def recorded_at(self) -> datetime | None:
        return self.effective_datetime


# Output record types that carry an administration date
ADMINISTRATION_RECORD_TYPES = ("Immunization", "Encounter", "MedicationAdministration")


class Observation(BaseResource):
    """FHIR: Observation"""

    resource_type: Literal["Observation"] = "Observation"

    status: str = "final"
    code: str | None = None
    subject: Reference | None = None
    effective_datetime: datetime | None = None
    value_datetime: datetime | None = None
    value_string: str | None = None

    @field_validator("effective_datetime", "value_datetime")
    @classmethod
    def _normalise(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)
