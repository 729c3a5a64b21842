"""Pydantic schemas for API request/response models."""

from src.schemas.audit import AuditLogResponse
from src.schemas.common import (
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    PaginatedResponse,
)
from src.schemas.documents import (
    ClassificationResponse,
    ClassificationSummary,
    ClassifyResponse,
    DocumentResponse,
    DocumentSummary,
    ProcessRequest,
    ProcessResponse,
)
from src.schemas.extraction import (
    CandidateUpdate,
    ExtractedRecordResponse,
    ExtractedRecordSet,
)
from src.schemas.records import RECORD_DATA_SCHEMAS, validate_record_data
from src.schemas.review import (
    ApproveRequest,
    ApproveResponse,
    CandidateDecision,
    CommittedRecord,
    ConflictInfo,
)

__all__ = [
    # Common
    "ErrorDetail",
    "ErrorResponse",
    "HealthResponse",
    "PaginatedResponse",
    # Documents
    "ClassificationResponse",
    "ClassificationSummary",
    "ClassifyResponse",
    "DocumentResponse",
    "DocumentSummary",
    "ProcessRequest",
    "ProcessResponse",
    # Extraction
    "CandidateUpdate",
    "ExtractedRecordResponse",
    "ExtractedRecordSet",
    # Records
    "RECORD_DATA_SCHEMAS",
    "validate_record_data",
    # Review
    "ApproveRequest",
    "ApproveResponse",
    "CandidateDecision",
    "CommittedRecord",
    "ConflictInfo",
    # Audit
    "AuditLogResponse",
]
