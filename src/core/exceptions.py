"""
Domain exceptions for the document import pipeline.

Every error carries an HTTP status and a stable machine-readable code so the
API layer can render it as an ``ErrorResponse`` without knowing the type.
Errors are local to a single upload: nothing here represents a process-wide
failure.
"""

from typing import Any
from uuid import UUID


class DocumentImportError(Exception):
    """Base exception for the document import pipeline."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


# =============================================================================
# Client errors
# =============================================================================


class UploadValidationError(DocumentImportError):
    """Bad file type, size, signature, missing fields or invalid edits."""

    status_code = 400
    error_code = "validation_error"


class FileTooLargeError(UploadValidationError):
    """Upload exceeds the per-media-type size limit."""

    status_code = 413
    error_code = "file_too_large"


class NotFoundError(DocumentImportError):
    """Upload or candidate does not exist (or belongs to another pet)."""

    status_code = 404
    error_code = "not_found"

    @classmethod
    def upload(cls, upload_id: UUID) -> "NotFoundError":
        return cls(f"Document {upload_id} not found")

    @classmethod
    def candidate(cls, candidate_id: UUID) -> "NotFoundError":
        return cls(f"Extracted record {candidate_id} not found")


class InvalidStateError(DocumentImportError):
    """Operation not permitted in the upload's current status. Nothing changed."""

    status_code = 409
    error_code = "invalid_state"


class AlreadyInProgressError(InvalidStateError):
    """A classify/process run already holds the lease for this upload."""

    error_code = "already_in_progress"


# =============================================================================
# Pipeline errors
# =============================================================================


class UpstreamProcessingError(DocumentImportError):
    """
    Classifier or extractor failure.

    ``message`` is user-facing and is stored on the upload as-is, so it must
    never contain stack traces, storage keys or provider error bodies.
    """

    status_code = 502
    error_code = "upstream_processing_error"


class MergeConflictError(DocumentImportError):
    """Approved candidates duplicate existing health records."""

    status_code = 409
    error_code = "merge_conflict"

    def __init__(self, conflicts: list[dict[str, Any]]):
        super().__init__(
            f"{len(conflicts)} record(s) conflict with existing health records",
            details={"conflicts": conflicts},
        )
        self.conflicts = conflicts


class PersistenceError(DocumentImportError):
    """Database failure while committing a merge. The batch was rolled back."""

    status_code = 500
    error_code = "persistence_error"
