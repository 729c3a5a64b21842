"""Pydantic schemas for extracted candidate records."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.db.enums import CandidateStatus, DocumentType, RecordKind


class ExtractedRecordResponse(BaseModel):
    """One candidate health record."""

    id: UUID
    record_kind: RecordKind
    data: dict[str, Any] = Field(description="Fields shaped like the target health record")
    confidence: float = Field(ge=0.0, le=1.0)
    needs_review: bool
    field_flags: list[str] = Field(default_factory=list)
    user_edited: bool = False
    status: CandidateStatus
    committed_record_id: UUID | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ExtractedRecordSet(BaseModel):
    """All candidates for one upload, partitioned by record kind."""

    source_upload_id: UUID
    document_type: DocumentType | None = None
    medications: list[ExtractedRecordResponse] = Field(default_factory=list)
    conditions: list[ExtractedRecordResponse] = Field(default_factory=list)
    allergies: list[ExtractedRecordResponse] = Field(default_factory=list)
    vaccinations: list[ExtractedRecordResponse] = Field(default_factory=list)
    vets: list[ExtractedRecordResponse] = Field(default_factory=list)
    emergency_contacts: list[ExtractedRecordResponse] = Field(default_factory=list)
    total: int = 0
    needs_review_count: int = 0
    summary: str = Field(description='e.g. "Found: 1 medication, 2 vaccinations"')
    extraction_model: str | None = None
    tokens_used: int | None = None


class CandidateUpdate(BaseModel):
    """Body of PATCH .../candidates/{candidate_id}."""

    data: dict[str, Any] = Field(description="Replacement field values")
