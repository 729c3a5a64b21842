"""
DocumentUpload model: the registry row for one uploaded file.

An upload is created when a user submits a photo or PDF for a pet, and then
moves through classification, extraction and review. The row is the single
source of truth for processing state; the raw bytes live in the blob store
under ``storage_key``.

Key features:
- Status column governed by ``UploadStatus`` transitions
- Classification annotations (type, confidence, explanation, summary)
- Sanitised, user-facing error message present only in ``failed``
- Review stamp that turns a completed upload into read-only history
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.base import JSONType, UUIDTimestampBase, enum_column
from src.db.enums import ConfidenceBand, DocumentType, MediaType, UploadStatus

if TYPE_CHECKING:
    from src.db.models.extracted_record import ExtractedRecord


class DocumentUpload(UUIDTimestampBase):
    """
    A document uploaded for a pet and its processing state.

    Attributes:
        id: UUID7 primary key
        pet_id: Owning pet (opaque id from the pet service)
        uploaded_by: User who uploaded the file
        original_filename: Name as supplied by the client
        mime_type: Declared and signature-verified MIME type
        media_type: pdf or image
        file_size_bytes: Size of the stored blob
        storage_key: Blob store key
        status: Current UploadStatus
        detected_document_type: Classifier's guess, kept across later failures
        classification_confidence: 0-100 score
        classification_explanation: Model rationale, required when confidence < 50
        classification_summary: Item counts seen during classification
        classification_alternatives: Other plausible document types
        detected_pet_name: Pet name as printed on the document
        confirmed_document_type: Type the user confirmed when requesting processing
        error_message: User-facing failure reason, set only when failed
        task_id: Background task currently working on this upload
        processing_started_at / processing_completed_at: Last run window
        reviewed_at / reviewed_by: Set once when the user approves

    Relationships:
        extracted_records: Candidate health records from the last extraction
    """

    # === Ownership ===
    pet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Pet the document belongs to",
    )

    uploaded_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="User who uploaded the document",
    )

    # === File ===
    original_filename: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Client-supplied filename",
    )

    mime_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="MIME type, verified against the file signature",
    )

    media_type: Mapped[MediaType] = mapped_column(
        enum_column(MediaType, length=10),
        nullable=False,
        comment="pdf or image",
    )

    file_size_bytes: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Size of the stored file in bytes",
    )

    storage_key: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
        unique=True,
        comment="Blob store key for the raw file",
    )

    # === Processing State ===
    status: Mapped[UploadStatus] = mapped_column(
        enum_column(UploadStatus, length=20),
        nullable=False,
        default=UploadStatus.PENDING,
        index=True,
        comment="pending, classifying, classified, processing, completed, failed",
    )

    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="User-facing failure reason (only when failed)",
    )

    task_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Background task id for the in-flight run",
    )

    # === Classification ===
    detected_document_type: Mapped[DocumentType | None] = mapped_column(
        enum_column(DocumentType),
        nullable=True,
        comment="Classifier's document type guess",
    )

    classification_confidence: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Classifier confidence, 0-100",
    )

    classification_explanation: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Classifier rationale",
    )

    classification_summary: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Item counts {medications_count, conditions_count, vaccinations_count, allergies_count}",
    )

    classification_alternatives: Mapped[list[str] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Other document types the classifier considered",
    )

    detected_pet_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Pet name read from the document, if any",
    )

    confirmed_document_type: Mapped[DocumentType | None] = mapped_column(
        enum_column(DocumentType),
        nullable=True,
        comment="Document type confirmed by the user before extraction",
    )

    # === Extraction ===
    extraction_model: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Model that produced the current candidates",
    )

    tokens_used: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Total tokens consumed by the last extraction",
    )

    # === Timestamps ===
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the last classify/process run started",
    )

    processing_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the last classify/process run finished",
    )

    reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the extraction was approved; upload is read-only afterwards",
    )

    reviewed_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="User who approved the extraction",
    )

    # === Relationships ===
    extracted_records: Mapped[list["ExtractedRecord"]] = relationship(
        "ExtractedRecord",
        back_populates="upload",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ExtractedRecord.id",
    )

    __table_args__ = (
        CheckConstraint(
            "classification_confidence IS NULL OR "
            "(classification_confidence >= 0 AND classification_confidence <= 100)",
            name="confidence_range",
        ),
        CheckConstraint(
            "(status = 'failed') = (error_message IS NOT NULL)",
            name="error_iff_failed",
        ),
        CheckConstraint("file_size_bytes > 0", name="file_size_positive"),
        Index("ix_document_uploads_pet_id_created_at", "pet_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<DocumentUpload(id={self.id}, pet={self.pet_id}, status={self.status.value})>"

    @property
    def confidence_band(self) -> ConfidenceBand | None:
        if self.classification_confidence is None:
            return None
        return ConfidenceBand.for_score(self.classification_confidence)

    @property
    def is_reviewed(self) -> bool:
        return self.reviewed_at is not None

    @property
    def effective_document_type(self) -> DocumentType | None:
        """Confirmed type if the user gave one, otherwise the detected type."""
        return self.confirmed_document_type or self.detected_document_type
