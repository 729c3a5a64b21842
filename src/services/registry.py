"""
Upload registry: the authoritative record of every uploaded document.

Owns:
- Upload validation (declared MIME type, file signature, size limits)
- The status state machine; every transition is a conditional UPDATE keyed
  on the expected source statuses, so a transition either happens exactly
  once or not at all
- Candidate storage for extraction results
- Deletion of the upload, its blob and its candidates

The classify/process lease is the ``classifying``/``processing`` status
itself: the conditional UPDATE that enters it succeeds for exactly one
caller, and every later write of a run is guarded on that status, so a run
whose upload was deleted or moved on has its result discarded.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from uuid import UUID

import pydantic
from sqlalchemy import ColumnElement, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import (
    AlreadyInProgressError,
    FileTooLargeError,
    InvalidStateError,
    NotFoundError,
    UploadValidationError,
)
from src.core.logging import get_logger
from src.db.base import utc_now
from src.db.enums import CandidateStatus, DocumentType, MediaType, UploadStatus
from src.db.models import DocumentUpload, ExtractedRecord
from src.db.session import transaction
from src.schemas.records import validate_record_data
from src.services.classification import Classification
from src.services.extraction import ExtractionResult
from src.services.storage import BlobStore, build_storage_key

logger = get_logger(__name__)

MSG_STALE_RUN = "Document analysis did not finish. Please try again."


# =============================================================================
# Validation
# =============================================================================

ALLOWED_MIME_TYPES: dict[str, MediaType] = {
    "application/pdf": MediaType.PDF,
    "image/jpeg": MediaType.IMAGE,
    "image/png": MediaType.IMAGE,
    "image/webp": MediaType.IMAGE,
    "image/gif": MediaType.IMAGE,
}

_MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "application/x-pdf": "application/pdf",
}


def sniff_mime_type(content: bytes) -> str | None:
    """Identify an accepted file type from its leading bytes."""
    if content.startswith(b"%PDF-"):
        return "application/pdf"
    if content.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if content.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if content[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    return None


def normalize_mime_type(mime_type: str | None) -> str:
    base = (mime_type or "").split(";", 1)[0].strip().lower()
    return _MIME_ALIASES.get(base, base)


def max_bytes_for(media_type: MediaType) -> int:
    if media_type == MediaType.PDF:
        return settings.pdf_max_bytes
    return settings.image_max_bytes


def validate_upload(filename: str | None, declared_mime: str | None, content: bytes) -> tuple[str, MediaType]:
    """
    Check an upload before anything is stored.

    Returns:
        (mime_type, media_type)

    Raises:
        UploadValidationError: missing name, empty file, unsupported or
            mismatched type
        FileTooLargeError: over the per-media-type limit
    """
    if not filename or not filename.strip():
        raise UploadValidationError("A filename is required")

    mime_type = normalize_mime_type(declared_mime)
    media_type = ALLOWED_MIME_TYPES.get(mime_type)
    if media_type is None:
        raise UploadValidationError(
            "Unsupported file type. Upload a PDF or an image (JPEG, PNG, WebP, GIF).",
            details={"mime_type": mime_type or None},
        )

    if not content:
        raise UploadValidationError("The uploaded file is empty")

    limit = max_bytes_for(media_type)
    if len(content) > limit:
        raise FileTooLargeError(
            f"File too large. Maximum size for {media_type.value} files is {limit // (1024 * 1024)}MB",
            details={"max_bytes": limit},
        )

    detected = sniff_mime_type(content)
    if detected != mime_type:
        raise UploadValidationError(
            "File content does not match its declared type",
            details={"declared": mime_type, "detected": detected},
        )

    return mime_type, media_type


# =============================================================================
# Registry
# =============================================================================


@dataclass
class DeletedUpload:
    """What was removed, so the caller can revoke a queued task."""

    upload_id: UUID
    task_id: str | None
    candidates_removed: int


class UploadRegistry:
    """
    Database-backed registry of document uploads.

    Usage:
        registry = UploadRegistry(db, blob_store)
        upload = await registry.create_upload(pet_id, user_id, "card.jpg", "image/jpeg", content)
        upload = await registry.begin_classification(pet_id, upload.id)
    """

    def __init__(self, session: AsyncSession, blob_store: BlobStore):
        self.session = session
        self.blobs = blob_store

    # =========================================================================
    # Create / Read
    # =========================================================================

    async def create_upload(
        self,
        pet_id: UUID,
        user_id: UUID | None,
        filename: str,
        mime_type: str | None,
        content: bytes,
    ) -> DocumentUpload:
        """Validate, store the blob, and insert a ``pending`` upload."""
        mime_type, media_type = validate_upload(filename, mime_type, content)
        storage_key = build_storage_key(pet_id, filename, mime_type)

        await self.blobs.put(storage_key, content, mime_type)

        upload = DocumentUpload(
            pet_id=pet_id,
            uploaded_by=user_id,
            original_filename=filename.strip()[:255],
            mime_type=mime_type,
            media_type=media_type,
            file_size_bytes=len(content),
            storage_key=storage_key,
            status=UploadStatus.PENDING,
        )
        self.session.add(upload)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            await self.blobs.delete(storage_key)
            raise

        logger.info(
            "Upload stored",
            upload_id=str(upload.id),
            pet_id=str(pet_id),
            media_type=media_type.value,
            size=len(content),
        )
        return upload

    async def get_upload(self, pet_id: UUID, upload_id: UUID) -> DocumentUpload:
        """Fetch an upload scoped to its pet; raises NotFoundError."""
        upload = await self.session.scalar(
            select(DocumentUpload)
            .where(DocumentUpload.id == upload_id, DocumentUpload.pet_id == pet_id)
            .execution_options(populate_existing=True)
        )
        if upload is None:
            raise NotFoundError.upload(upload_id)
        return upload

    async def find_upload(self, upload_id: UUID) -> DocumentUpload | None:
        """Unscoped lookup for background runs, which only know the upload id."""
        return await self.session.scalar(
            select(DocumentUpload)
            .where(DocumentUpload.id == upload_id)
            .execution_options(populate_existing=True)
        )

    async def list_uploads(
        self,
        pet_id: UUID,
        status: UploadStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[DocumentUpload], int]:
        """Uploads for a pet, newest first, with the total count."""
        filters = [DocumentUpload.pet_id == pet_id]
        if status is not None:
            filters.append(DocumentUpload.status == status)

        total = await self.session.scalar(
            select(func.count()).select_from(DocumentUpload).where(*filters)
        )
        result = await self.session.execute(
            select(DocumentUpload)
            .where(*filters)
            .order_by(DocumentUpload.created_at.desc(), DocumentUpload.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def read_content(self, upload: DocumentUpload) -> bytes:
        """Raw bytes of the stored file; raises BlobNotFoundError."""
        return await self.blobs.get(upload.storage_key)

    # =========================================================================
    # State Machine
    # =========================================================================

    async def _guarded_update(
        self,
        upload_id: UUID,
        expected: set[UploadStatus],
        *conditions: ColumnElement[bool],
        **values: Any,
    ) -> bool:
        """UPDATE ... WHERE id = :id AND status IN (:expected). True if a row changed."""
        target = values.get("status")
        if target is not None and not all(s.can_transition_to(target) for s in expected):
            raise InvalidStateError(f"Illegal transition to {target.value}")

        result = await self.session.execute(
            update(DocumentUpload)
            .where(DocumentUpload.id == upload_id, DocumentUpload.status.in_(expected), *conditions)
            .values(updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def expire_stale_run(self, upload: DocumentUpload) -> bool:
        """
        Fail an in-flight run that never reported back.

        A run counts as lost once ``processing_started_at`` is older than
        ``stale_run_after_seconds``. The UPDATE is guarded on both the status
        and the start time, so a run that finishes meanwhile wins.

        Returns:
            True if the upload was moved to ``failed``.
        """
        if not upload.status.is_in_flight:
            return False

        cutoff = utc_now() - timedelta(seconds=settings.stale_run_after_seconds)
        changed = await self._guarded_update(
            upload.id,
            {upload.status},
            DocumentUpload.processing_started_at < cutoff,
            status=UploadStatus.FAILED,
            error_message=MSG_STALE_RUN,
            task_id=None,
            processing_completed_at=utc_now(),
        )
        await self.session.commit()
        if changed:
            logger.warning(
                "Stale run expired",
                upload_id=str(upload.id),
                status=upload.status.value,
                task_id=upload.task_id,
            )
        return changed

    async def _begin(
        self,
        pet_id: UUID,
        upload_id: UUID,
        target: UploadStatus,
        **values: Any,
    ) -> DocumentUpload:
        upload = await self.get_upload(pet_id, upload_id)
        if upload.is_reviewed:
            raise InvalidStateError("This document has already been reviewed")

        if upload.status.is_in_flight and await self.expire_stale_run(upload):
            upload = await self.get_upload(pet_id, upload_id)

        allowed = UploadStatus.sources_for(target)
        if upload.status.is_in_flight:
            raise AlreadyInProgressError(
                f"Document is already {upload.status.value}",
                details={"status": upload.status.value},
            )
        if upload.status not in allowed:
            raise InvalidStateError(
                f"Cannot move from {upload.status.value} to {target.value}",
                details={"status": upload.status.value},
            )

        changed = await self._guarded_update(
            upload_id,
            allowed,
            status=target,
            error_message=None,
            task_id=None,
            processing_started_at=utc_now(),
            processing_completed_at=None,
            **values,
        )
        await self.session.commit()

        upload = await self.get_upload(pet_id, upload_id)
        if not changed:
            # Lost the race to a concurrent caller
            if upload.status.is_in_flight:
                raise AlreadyInProgressError(
                    f"Document is already {upload.status.value}",
                    details={"status": upload.status.value},
                )
            raise InvalidStateError(
                f"Cannot move from {upload.status.value} to {target.value}",
                details={"status": upload.status.value},
            )

        logger.info("Upload transition", upload_id=str(upload_id), status=target.value)
        return upload

    async def begin_classification(self, pet_id: UUID, upload_id: UUID) -> DocumentUpload:
        """pending|failed -> classifying. Raises AlreadyInProgressError / InvalidStateError."""
        return await self._begin(pet_id, upload_id, UploadStatus.CLASSIFYING)

    async def begin_processing(
        self,
        pet_id: UUID,
        upload_id: UUID,
        confirmed_type: DocumentType | None = None,
    ) -> DocumentUpload:
        """pending|classified|failed -> processing, recording the confirmed type if given."""
        values: dict[str, Any] = {}
        if confirmed_type is not None:
            values["confirmed_document_type"] = confirmed_type
        return await self._begin(pet_id, upload_id, UploadStatus.PROCESSING, **values)

    async def attach_task(self, upload_id: UUID, task_id: str, status: UploadStatus) -> bool:
        """Remember the background task id while the run is still in ``status``."""
        changed = await self._guarded_update(upload_id, {status}, task_id=task_id)
        await self.session.commit()
        return changed

    async def record_classification(self, upload_id: UUID, classification: Classification) -> bool:
        """classifying -> classified. False when the result was discarded."""
        try:
            changed = await self._guarded_update(
                upload_id,
                {UploadStatus.CLASSIFYING},
                status=UploadStatus.CLASSIFIED,
                detected_document_type=classification.document_type,
                classification_confidence=classification.confidence,
                classification_explanation=classification.explanation,
                classification_summary=classification.summary,
                classification_alternatives=[t.value for t in classification.alternative_types],
                detected_pet_name=classification.pet_name,
                task_id=None,
                processing_completed_at=utc_now(),
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        if not changed:
            logger.warning("Classification discarded, upload moved on or was deleted", upload_id=str(upload_id))
        return changed

    async def record_extraction(self, upload_id: UUID, pet_id: UUID, result: ExtractionResult) -> bool:
        """
        processing -> completed, replacing candidates in the same transaction.

        False when the result was discarded; no candidates are written then.
        """
        try:
            changed = await self._guarded_update(
                upload_id,
                {UploadStatus.PROCESSING},
                status=UploadStatus.COMPLETED,
                extraction_model=result.model,
                tokens_used=result.tokens_used,
                task_id=None,
                processing_completed_at=utc_now(),
            )
            if not changed:
                await self.session.rollback()
                logger.warning("Extraction discarded, upload moved on or was deleted", upload_id=str(upload_id))
                return False

            await self.session.execute(
                delete(ExtractedRecord).where(ExtractedRecord.upload_id == upload_id)
            )
            self.session.add_all(
                ExtractedRecord(
                    upload_id=upload_id,
                    pet_id=pet_id,
                    record_kind=item.kind,
                    data=item.data,
                    confidence=item.confidence,
                    needs_review=item.needs_review,
                    field_flags=item.field_flags,
                    status=CandidateStatus.PENDING,
                )
                for item in result.items
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return True

    async def record_failure(self, upload_id: UUID, from_status: UploadStatus, message: str) -> bool:
        """
        classifying|processing -> failed with a user-facing message.

        Classification columns are left untouched so a detected type survives.
        """
        changed = await self._guarded_update(
            upload_id,
            {from_status},
            status=UploadStatus.FAILED,
            error_message=message,
            task_id=None,
            processing_completed_at=utc_now(),
        )
        await self.session.commit()
        if not changed:
            logger.warning("Failure discarded, upload moved on or was deleted", upload_id=str(upload_id))
        return changed

    # =========================================================================
    # Candidates
    # =========================================================================

    async def get_candidates(self, pet_id: UUID, upload_id: UUID) -> tuple[DocumentUpload, list[ExtractedRecord]]:
        upload = await self.get_upload(pet_id, upload_id)
        result = await self.session.execute(
            select(ExtractedRecord)
            .where(ExtractedRecord.upload_id == upload_id)
            .order_by(ExtractedRecord.id)
            .execution_options(populate_existing=True)
        )
        return upload, list(result.scalars().all())

    async def update_candidate(
        self,
        pet_id: UUID,
        upload_id: UUID,
        candidate_id: UUID,
        data: dict[str, Any],
    ) -> ExtractedRecord:
        """Store user edits on a pending candidate ahead of approval."""
        upload = await self.get_upload(pet_id, upload_id)
        if upload.status != UploadStatus.COMPLETED or upload.is_reviewed:
            raise InvalidStateError("Extracted records can only be edited before review")

        candidate = await self.session.scalar(
            select(ExtractedRecord).where(
                ExtractedRecord.id == candidate_id,
                ExtractedRecord.upload_id == upload_id,
            )
        )
        if candidate is None:
            raise NotFoundError.candidate(candidate_id)
        if candidate.status != CandidateStatus.PENDING:
            raise InvalidStateError("Only pending records can be edited")

        try:
            candidate.data = validate_record_data(candidate.record_kind, data)
        except pydantic.ValidationError as e:
            raise UploadValidationError(
                "Invalid record data",
                details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
            ) from e
        candidate.user_edited = True
        candidate.needs_review = False
        candidate.field_flags = []
        await self.session.commit()
        return candidate

    # =========================================================================
    # Delete
    # =========================================================================

    async def delete_upload(self, pet_id: UUID, upload_id: UUID) -> DeletedUpload:
        """
        Remove the blob, the candidates and the upload row.

        Audit entries referencing the upload are kept. The blob goes first so
        a storage failure leaves the upload in place for a retry.
        """
        upload = await self.get_upload(pet_id, upload_id)
        task_id = upload.task_id
        candidates = len(upload.extracted_records)

        await self.blobs.delete(upload.storage_key)

        async with transaction(self.session):
            await self.session.execute(
                delete(ExtractedRecord).where(ExtractedRecord.upload_id == upload_id)
            )
            await self.session.execute(
                delete(DocumentUpload).where(DocumentUpload.id == upload_id)
            )
        self.session.expunge_all()

        logger.info(
            "Upload deleted",
            upload_id=str(upload_id),
            pet_id=str(pet_id),
            candidates_removed=candidates,
        )
        return DeletedUpload(upload_id=upload_id, task_id=task_id, candidates_removed=candidates)
