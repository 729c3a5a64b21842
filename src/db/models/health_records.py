"""
Permanent pet health records.

One table per record kind. Rows are written by the merge engine when a user
approves extracted candidates (and by the wider product's manual CRUD, which
is outside this service). Every write is mirrored by an audit entry whose
``entity_type`` is the table name.

All record classes share ``HealthRecordMixin`` and expose:
- ``record_kind``: the RecordKind they store
- ``data_fields``: the user-editable fields, in display order
- ``required_fields``: fields that must be non-empty to commit
"""

import uuid
from datetime import date
from typing import ClassVar

from sqlalchemy import Boolean, Date, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from src.db.base import UUIDTimestampBase
from src.db.enums import RecordKind


class HealthRecordMixin:
    """Columns shared by every health-record table."""

    record_kind: ClassVar[RecordKind]
    data_fields: ClassVar[tuple[str, ...]]
    required_fields: ClassVar[tuple[str, ...]]
    date_fields: ClassVar[tuple[str, ...]] = ()

    pet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Pet the record belongs to",
    )

    @declared_attr
    def source_upload_id(cls) -> Mapped[uuid.UUID | None]:
        return mapped_column(
            Uuid(as_uuid=True),
            ForeignKey("document_uploads.id", ondelete="SET NULL"),
            nullable=True,
            comment="Upload the record was imported from, if any",
        )

    def data_values(self) -> dict[str, object]:
        """User-editable field values, JSON-safe (dates as ISO strings)."""
        values = {}
        for name in self.data_fields:
            value = getattr(self, name)
            if isinstance(value, date):
                value = value.isoformat()
            values[name] = value
        return values


class PetVaccination(HealthRecordMixin, UUIDTimestampBase):
    """A vaccine administration."""

    record_kind = RecordKind.VACCINATION
    data_fields = ("name", "administered_date", "expiration_date", "administered_by", "lot_number")
    required_fields = ("name",)
    date_fields = ("administered_date", "expiration_date")

    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Vaccine name")
    administered_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    administered_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)


class PetMedication(HealthRecordMixin, UUIDTimestampBase):
    """A prescribed or over-the-counter medication."""

    record_kind = RecordKind.MEDICATION
    data_fields = (
        "name", "dosage", "frequency", "start_date", "end_date",
        "prescribing_vet", "notes", "is_active",
    )
    required_fields = ("name",)
    date_fields = ("start_date", "end_date")

    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Medication name")
    dosage: Mapped[str | None] = mapped_column(String(255), nullable=True)
    frequency: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    prescribing_vet: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class PetCondition(HealthRecordMixin, UUIDTimestampBase):
    """A diagnosed medical condition."""

    record_kind = RecordKind.CONDITION
    data_fields = ("name", "diagnosed_date", "severity", "notes")
    required_fields = ("name",)
    date_fields = ("diagnosed_date",)

    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Condition name")
    diagnosed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    severity: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class PetAllergy(HealthRecordMixin, UUIDTimestampBase):
    """A known allergy."""

    record_kind = RecordKind.ALLERGY
    data_fields = ("allergen", "reaction", "severity")
    required_fields = ("allergen",)

    allergen: Mapped[str] = mapped_column(String(255), nullable=False, comment="Allergen")
    reaction: Mapped[str | None] = mapped_column(Text, nullable=True)
    severity: Mapped[str | None] = mapped_column(String(50), nullable=True)


class PetVet(HealthRecordMixin, UUIDTimestampBase):
    """A veterinary clinic or practitioner."""

    record_kind = RecordKind.VET
    data_fields = ("clinic_name", "vet_name", "phone", "email", "address", "is_primary")
    required_fields = ("clinic_name",)

    clinic_name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Clinic name")
    vet_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PetEmergencyContact(HealthRecordMixin, UUIDTimestampBase):
    """A person to call in an emergency."""

    record_kind = RecordKind.EMERGENCY_CONTACT
    data_fields = ("name", "relationship", "phone", "email", "is_primary")
    required_fields = ("name",)

    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Contact name")
    relationship: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


HEALTH_RECORD_MODELS: dict[RecordKind, type[HealthRecordMixin]] = {
    model.record_kind: model
    for model in (
        PetVaccination,
        PetMedication,
        PetCondition,
        PetAllergy,
        PetVet,
        PetEmergencyContact,
    )
}


def model_for(kind: RecordKind) -> type[HealthRecordMixin]:
    """Health-record model class for a record kind."""
    return HEALTH_RECORD_MODELS[kind]
