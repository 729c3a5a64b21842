"""
Classify/process orchestration.

A run picks up an upload that the registry has already moved into
``classifying`` or ``processing``, calls the model with a bounded timeout,
and records the outcome through the registry's guarded transitions. Runs
open their own sessions because they outlive the HTTP request that started
them (BackgroundTasks) or run in another process entirely (Celery).

Failures never escape a run: they are logged with full detail and stored on
the upload as a short user-facing message.
"""

import asyncio
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.config import settings
from src.core.exceptions import UpstreamProcessingError
from src.core.logging import get_logger, log_context
from src.db.enums import DocumentType, UploadStatus
from src.db.models import DocumentUpload
from src.db.session import get_db_context
from src.services.classification import Classification, ClassificationService
from src.services.extraction import ExtractionResult, ExtractionService
from src.services.llm_client import (
    LLMClientFactory,
    LLMError,
    LLMParseError,
    LLMRateLimitError,
    get_llm_client,
)
from src.services.registry import UploadRegistry
from src.services.storage import BlobNotFoundError, BlobStore, StorageError

logger = get_logger(__name__)


# =============================================================================
# User-facing failure messages
# =============================================================================

MSG_UNREADABLE = "The uploaded file could not be read. Please upload it again."
MSG_TIMEOUT = "Document analysis took too long. Please try again."
MSG_UNPARSEABLE = "The document could not be analyzed. Try again or upload a clearer copy."
MSG_BUSY = "The analysis service is busy. Please try again in a few minutes."
MSG_UNAVAILABLE = "The analysis service is unavailable. Please try again later."
MSG_UNEXPECTED = "Document processing failed unexpectedly. Please try again."


def failure_message(error: BaseException) -> str:
    """Map an exception to a sanitized message safe to show the user."""
    if isinstance(error, UpstreamProcessingError):
        return error.message
    if isinstance(error, BlobNotFoundError):
        return MSG_UNREADABLE
    if isinstance(error, asyncio.TimeoutError):
        return MSG_TIMEOUT
    if isinstance(error, LLMParseError):
        return MSG_UNPARSEABLE
    if isinstance(error, LLMRateLimitError):
        return MSG_BUSY
    if isinstance(error, (LLMError, httpx.HTTPError, StorageError)):
        return MSG_UNAVAILABLE
    return MSG_UNEXPECTED


def extraction_type_hint(upload: DocumentUpload) -> DocumentType | None:
    """
    Document type to steer extraction with.

    A user-confirmed type always counts; a detected type only once its
    confidence reaches ``type_hint_min_confidence``.
    """
    if upload.confirmed_document_type is not None:
        return upload.confirmed_document_type
    if (
        upload.detected_document_type is not None
        and (upload.classification_confidence or 0) >= settings.type_hint_min_confidence
    ):
        return upload.detected_document_type
    return None


# =============================================================================
# Pipeline
# =============================================================================


class DocumentPipeline:
    """
    Runs classification and extraction for one upload at a time.

    Usage:
        pipeline = DocumentPipeline(AsyncSessionLocal, get_blob_store())
        await pipeline.run_classification(upload_id)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        llm_factory: LLMClientFactory = get_llm_client,
        timeout_seconds: float | None = None,
    ):
        self.session_factory = session_factory
        self.blobs = blob_store
        self.llm_factory = llm_factory
        self.timeout = timeout_seconds or settings.analysis_timeout_seconds

    async def _classify(self, content: bytes, mime_type: str) -> Classification:
        try:
            async with self.llm_factory() as llm:
                return await ClassificationService(llm).classify(content, mime_type)
        except (LLMError, httpx.HTTPError) as e:
            raise UpstreamProcessingError(failure_message(e)) from e

    async def _extract(
        self,
        content: bytes,
        mime_type: str,
        document_type: DocumentType | None,
    ) -> ExtractionResult:
        try:
            async with self.llm_factory() as llm:
                return await ExtractionService(llm).extract(content, mime_type, document_type)
        except (LLMError, httpx.HTTPError) as e:
            raise UpstreamProcessingError(failure_message(e)) from e

    async def _fail(self, registry: UploadRegistry, upload_id: UUID, status: UploadStatus, error: Exception) -> None:
        message = failure_message(error)
        logger.error(
            "Pipeline run failed",
            stage=status.value,
            error_type=type(error).__name__,
            error=str(error),
            exc_info=error,
        )
        await registry.record_failure(upload_id, status, message)

    async def run_classification(self, upload_id: UUID) -> bool:
        """
        Classify an upload that is in ``classifying``.

        Returns:
            True if a classification was recorded; False if the run failed
            or its result was discarded.
        """
        with log_context(upload_id=str(upload_id), stage="classify"):
            async with get_db_context(self.session_factory) as db:
                registry = UploadRegistry(db, self.blobs)
                upload = await registry.find_upload(upload_id)
                if upload is None or upload.status != UploadStatus.CLASSIFYING:
                    logger.warning(
                        "Classification skipped",
                        status=upload.status.value if upload else "deleted",
                    )
                    return False

                try:
                    content = await registry.read_content(upload)
                    classification = await asyncio.wait_for(
                        self._classify(content, upload.mime_type),
                        timeout=self.timeout,
                    )
                except Exception as e:
                    await self._fail(registry, upload_id, UploadStatus.CLASSIFYING, e)
                    return False

                try:
                    return await registry.record_classification(upload_id, classification)
                except Exception as e:
                    await self._fail(registry, upload_id, UploadStatus.CLASSIFYING, e)
                    return False

    async def run_processing(self, upload_id: UUID) -> bool:
        """
        Extract candidate records for an upload that is in ``processing``.

        Returns:
            True if candidates were stored and the upload completed.
        """
        with log_context(upload_id=str(upload_id), stage="process"):
            async with get_db_context(self.session_factory) as db:
                registry = UploadRegistry(db, self.blobs)
                upload = await registry.find_upload(upload_id)
                if upload is None or upload.status != UploadStatus.PROCESSING:
                    logger.warning(
                        "Processing skipped",
                        status=upload.status.value if upload else "deleted",
                    )
                    return False

                pet_id = upload.pet_id
                try:
                    content = await registry.read_content(upload)
                    result = await asyncio.wait_for(
                        self._extract(content, upload.mime_type, extraction_type_hint(upload)),
                        timeout=self.timeout,
                    )
                except Exception as e:
                    await self._fail(registry, upload_id, UploadStatus.PROCESSING, e)
                    return False

                try:
                    return await registry.record_extraction(upload_id, pet_id, result)
                except Exception as e:
                    await self._fail(registry, upload_id, UploadStatus.PROCESSING, e)
                    return False
