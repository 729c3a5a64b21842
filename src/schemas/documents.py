"""Pydantic schemas for the document upload and classification endpoints."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.db.enums import ConfidenceBand, DocumentType, MediaType, UploadStatus
from src.schemas.extraction import ExtractedRecordSet

# =============================================================================
# Classification
# =============================================================================


class ClassificationSummary(BaseModel):
    """Shallow counts of items spotted during classification."""

    medications_count: int = Field(default=0, ge=0)
    conditions_count: int = Field(default=0, ge=0)
    vaccinations_count: int = Field(default=0, ge=0)
    allergies_count: int = Field(default=0, ge=0)


class ClassificationResponse(BaseModel):
    """Classifier output as shown to the user."""

    document_type: DocumentType
    document_type_label: str = Field(description="Human-readable document type")
    confidence: int = Field(ge=0, le=100, description="Confidence score 0-100")
    confidence_band: ConfidenceBand
    explanation: str | None = Field(
        default=None, description="Model rationale; always present when confidence is low"
    )
    summary: ClassificationSummary
    alternative_types: list[DocumentType] = Field(
        default_factory=list, description="Other document types the model considered"
    )
    pet_name: str | None = Field(default=None, description="Pet name as printed on the document")
    warning: str | None = Field(
        default=None,
        description="Set for low-confidence results the user should double-check",
    )


# =============================================================================
# Request Schemas
# =============================================================================


class ProcessRequest(BaseModel):
    """Body of POST .../process."""

    document_type: DocumentType | None = Field(
        default=None,
        description="User-confirmed document type; overrides the detected type",
    )


# =============================================================================
# Response Schemas
# =============================================================================


class DocumentSummary(BaseModel):
    """Summarized upload for list views."""

    id: UUID
    pet_id: UUID
    original_filename: str
    media_type: MediaType
    status: UploadStatus
    detected_document_type: DocumentType | None = None
    classification_confidence: int | None = None
    error_message: str | None = None
    created_at: datetime
    processing_completed_at: datetime | None = None
    reviewed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class DocumentResponse(DocumentSummary):
    """Full upload view, including classification when available."""

    uploaded_by: UUID | None = None
    mime_type: str
    file_size_bytes: int
    confirmed_document_type: DocumentType | None = None
    classification: ClassificationResponse | None = None
    processing_started_at: datetime | None = None
    updated_at: datetime


class ClassifyResponse(BaseModel):
    """Result of a classify request."""

    document: DocumentResponse
    classification: ClassificationResponse | None = Field(
        default=None, description="Present when the request waited for completion"
    )
    message: str


class ProcessResponse(BaseModel):
    """Result of a process request."""

    document: DocumentResponse
    extraction: ExtractedRecordSet | None = Field(
        default=None, description="Present when the request waited for completion"
    )
    message: str
