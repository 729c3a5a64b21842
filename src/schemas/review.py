"""Pydantic schemas for the approve (review and merge) endpoint."""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from src.db.enums import ConflictResolution, RecordKind, ReviewDecision

# =============================================================================
# Request Schemas
# =============================================================================


class CandidateDecision(BaseModel):
    """User decision for one candidate."""

    candidate_id: UUID
    decision: ReviewDecision
    data: dict[str, Any] | None = Field(
        default=None, description="Edited field values (approve_with_edits only)"
    )
    on_conflict: ConflictResolution | None = Field(
        default=None,
        description="How to treat a duplicate of an existing record; unset means report the conflict",
    )

    @model_validator(mode="after")
    def _edits_need_data(self) -> "CandidateDecision":
        if self.decision == ReviewDecision.APPROVE_WITH_EDITS and not self.data:
            raise ValueError("approve_with_edits requires data")
        return self


class ApproveRequest(BaseModel):
    """Body of POST .../approve. Candidates without a decision are rejected."""

    decisions: list[CandidateDecision] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_candidates(self) -> "ApproveRequest":
        ids = [d.candidate_id for d in self.decisions]
        if len(ids) != len(set(ids)):
            raise ValueError("Each candidate may appear only once")
        return self


# =============================================================================
# Response Schemas
# =============================================================================


class ConflictInfo(BaseModel):
    """An approved candidate that duplicates an existing health record."""

    candidate_id: UUID
    record_kind: RecordKind
    existing_record_id: UUID
    existing_values: dict[str, Any]
    candidate_values: dict[str, Any]
    matched_on: list[str] = Field(description="Fields that made the records match")
    message: str


class CommittedRecord(BaseModel):
    """A health record written or matched by the merge."""

    candidate_id: UUID
    record_kind: RecordKind
    record_id: UUID
    entity_type: str = Field(description="Health-record table name")
    action: str = Field(description="created, updated or linked")


class ApproveResponse(BaseModel):
    """Outcome of an approve request."""

    status: str = Field(description="merged or conflict")
    committed: list[CommittedRecord] = Field(default_factory=list)
    rejected_candidate_ids: list[UUID] = Field(default_factory=list)
    conflicts: list[ConflictInfo] = Field(default_factory=list)
    message: str
