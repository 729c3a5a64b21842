"""
ExtractedRecord model: one candidate health record awaiting review.

Candidates are written by the extractor for a single upload and are replaced
wholesale each time extraction is re-run. On approval the merge engine turns
approved candidates into permanent health records and stamps
``committed_record_id``; rejected candidates are marked ``rejected``.
"""

import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, CheckConstraint, Float, ForeignKey, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.base import JSONType, UUIDTimestampBase, enum_column
from src.db.enums import CandidateStatus, RecordKind

if TYPE_CHECKING:
    from src.db.models.document_upload import DocumentUpload


class ExtractedRecord(UUIDTimestampBase):
    """
    A candidate health record extracted from a document.

    Attributes:
        id: UUID7 primary key
        upload_id: Source upload (cascade delete)
        pet_id: Denormalized from the upload for per-pet queries
        record_kind: medication, condition, allergy, vaccination, vet, emergency_contact
        data: Field values in the shape of the target health record
        confidence: Extractor confidence, 0.0-1.0
        needs_review: True when confidence is low or fields are ambiguous
        field_flags: Names of fields that are missing or could not be normalized
        user_edited: True once the user has changed ``data``
        status: pending, approved, rejected
        committed_record_id: Health record created or matched on approval
    """

    upload_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("document_uploads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Upload this candidate was extracted from",
    )

    pet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        comment="Pet the candidate would be merged into",
    )

    record_kind: Mapped[RecordKind] = mapped_column(
        enum_column(RecordKind, length=30),
        nullable=False,
        comment="Target health record kind",
    )

    data: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Field values shaped like the target health record",
    )

    confidence: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment="Extractor confidence, 0.0-1.0",
    )

    needs_review: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Low confidence or ambiguous fields",
    )

    field_flags: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Fields that are missing or could not be normalized",
    )

    user_edited: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Data was changed by the user before approval",
    )

    status: Mapped[CandidateStatus] = mapped_column(
        enum_column(CandidateStatus, length=20),
        nullable=False,
        default=CandidateStatus.PENDING,
        comment="pending, approved, rejected",
    )

    committed_record_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Health record created (or matched) on approval",
    )

    # === Relationships ===
    upload: Mapped["DocumentUpload"] = relationship(
        "DocumentUpload",
        back_populates="extracted_records",
    )

    __table_args__ = (
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="confidence_range"),
        Index("ix_extracted_records_upload_id_record_kind", "upload_id", "record_kind"),
    )

    def __repr__(self) -> str:
        return f"<ExtractedRecord(kind={self.record_kind.value}, status={self.status.value})>"

    @property
    def display_name(self) -> str:
        """Best human label for the candidate, used in conflict messages."""
        for key in ("name", "allergen", "clinic_name", "vet_name"):
            value = self.data.get(key)
            if value:
                return str(value)
        return self.record_kind.value
