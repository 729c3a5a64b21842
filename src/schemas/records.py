"""
Pydantic schemas for health-record payloads.

These describe the user-editable fields of each record kind. They validate
user edits before approval and shape extracted data before it is stored as
a candidate. Unknown keys are ignored; dates must be ISO ``YYYY-MM-DD``.
"""

from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.db.enums import RecordKind


class RecordData(BaseModel):
    """Base for per-kind record payloads."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class VaccinationData(RecordData):
    name: str = Field(min_length=1, max_length=255, description="Vaccine name")
    administered_date: date | None = None
    expiration_date: date | None = None
    administered_by: str | None = Field(default=None, max_length=255)
    lot_number: str | None = Field(default=None, max_length=100)


class MedicationData(RecordData):
    name: str = Field(min_length=1, max_length=255, description="Medication name")
    dosage: str | None = Field(default=None, max_length=255)
    frequency: str | None = Field(default=None, max_length=255)
    start_date: date | None = None
    end_date: date | None = None
    prescribing_vet: str | None = Field(default=None, max_length=255)
    notes: str | None = None
    is_active: bool = True


class ConditionData(RecordData):
    name: str = Field(min_length=1, max_length=255, description="Condition name")
    diagnosed_date: date | None = None
    severity: str | None = Field(default=None, max_length=50)
    notes: str | None = None


class AllergyData(RecordData):
    allergen: str = Field(min_length=1, max_length=255)
    reaction: str | None = None
    severity: str | None = Field(default=None, max_length=50)


class VetData(RecordData):
    clinic_name: str = Field(min_length=1, max_length=255)
    vet_name: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    email: str | None = Field(default=None, max_length=255)
    address: str | None = None
    is_primary: bool = False


class EmergencyContactData(RecordData):
    name: str = Field(min_length=1, max_length=255)
    relationship: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=50)
    email: str | None = Field(default=None, max_length=255)
    is_primary: bool = False


RECORD_DATA_SCHEMAS: dict[RecordKind, type[RecordData]] = {
    RecordKind.VACCINATION: VaccinationData,
    RecordKind.MEDICATION: MedicationData,
    RecordKind.CONDITION: ConditionData,
    RecordKind.ALLERGY: AllergyData,
    RecordKind.VET: VetData,
    RecordKind.EMERGENCY_CONTACT: EmergencyContactData,
}


def validate_record_data(kind: RecordKind, data: dict[str, Any]) -> dict[str, Any]:
    """
    Validate a payload for ``kind`` and return it JSON-safe.

    Raises:
        pydantic.ValidationError: on missing required fields or bad dates
    """
    model = RECORD_DATA_SCHEMAS[kind].model_validate(data)
    return model.model_dump(mode="json")
