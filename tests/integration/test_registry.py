"""Integration tests for the upload registry state machine and pipeline runs."""

import asyncio
import json
from datetime import timedelta
from uuid import UUID

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import AlreadyInProgressError, InvalidStateError, NotFoundError
from src.db.base import utc_now
from src.db.enums import DocumentType, ReviewDecision, UploadStatus
from src.db.models import AuditLog, DocumentUpload, ExtractedRecord, PetVaccination
from src.schemas import CandidateDecision
from src.services.audit import RequestMeta
from src.services.classification import Classification
from src.services.llm_client import LLMAPIError, MockLLMClient
from src.services.merge import ReviewMergeEngine
from src.services.pipeline import MSG_TIMEOUT, MSG_UNAVAILABLE, MSG_UNEXPECTED, MSG_UNREADABLE, DocumentPipeline
from src.services.registry import MSG_STALE_RUN, UploadRegistry
from src.services.storage import LocalBlobStore
from tests.conftest import JPEG_BYTES, PDF_BYTES


def extraction_json(*items: dict) -> str:
    return json.dumps({"items": list(items)})


MEDICATION_ITEM = {
    "record_type": "medication",
    "confidence": 0.9,
    "data": {"name": "Carprofen", "dosage": "75mg", "frequency": "twice daily"},
}
CONDITION_ITEM = {
    "record_type": "condition",
    "confidence": 0.8,
    "data": {"name": "Osteoarthritis", "diagnosed_date": "2023-11-02"},
}


# =============================================================================
# Upload Lifecycle Tests
# =============================================================================


class TestUploadLifecycle:
    """Tests for the happy path through the status machine."""

    async def test_create_upload(
        self, registry: UploadRegistry, blob_store: LocalBlobStore, pet_id: UUID, user_id: UUID
    ) -> None:
        """Test a valid upload is stored as pending."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)

        assert upload.status == UploadStatus.PENDING
        assert upload.uploaded_by == user_id
        assert upload.file_size_bytes == len(JPEG_BYTES)
        assert await blob_store.get(upload.storage_key) == JPEG_BYTES

    async def test_classify_then_process(
        self, registry: UploadRegistry, pipeline: DocumentPipeline, pet_id: UUID, user_id: UUID
    ) -> None:
        """Test pending -> classifying -> classified -> processing -> completed."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)

        upload = await registry.begin_classification(pet_id, upload.id)
        assert upload.status == UploadStatus.CLASSIFYING
        assert await pipeline.run_classification(upload.id) is True

        upload = await registry.get_upload(pet_id, upload.id)
        assert upload.status == UploadStatus.CLASSIFIED
        assert upload.detected_document_type == DocumentType.VACCINATION_RECORD
        assert upload.classification_confidence == 92
        assert upload.classification_alternatives == ["visit_summary"]
        assert upload.detected_pet_name == "Max"

        await registry.begin_processing(pet_id, upload.id)
        assert await pipeline.run_processing(upload.id) is True

        upload, candidates = await registry.get_candidates(pet_id, upload.id)
        assert upload.status == UploadStatus.COMPLETED
        assert upload.extraction_model == "mock-model"
        assert upload.tokens_used == 150
        assert len(candidates) == 1
        assert candidates[0].data["name"] == "Rabies"
        assert candidates[0].data["administered_date"] == "2024-03-01"

    async def test_process_without_classification(
        self, registry: UploadRegistry, pipeline: DocumentPipeline, pet_id: UUID, user_id: UUID
    ) -> None:
        """Test processing may start straight from pending with a confirmed type."""
        upload = await registry.create_upload(pet_id, user_id, "labs.pdf", "application/pdf", PDF_BYTES)

        upload = await registry.begin_processing(pet_id, upload.id, confirmed_type=DocumentType.LAB_RESULTS)
        assert upload.confirmed_document_type == DocumentType.LAB_RESULTS
        assert await pipeline.run_processing(upload.id) is True

    async def test_wrong_pet_is_not_found(
        self, registry: UploadRegistry, pet_id: UUID, user_id: UUID
    ) -> None:
        """Test uploads are scoped to their pet."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)

        with pytest.raises(NotFoundError):
            await registry.get_upload(user_id, upload.id)

    async def test_list_uploads(self, registry: UploadRegistry, pet_id: UUID, user_id: UUID) -> None:
        """Test listing filters by status and reports the total."""
        first = await registry.create_upload(pet_id, user_id, "a.jpg", "image/jpeg", JPEG_BYTES)
        await registry.create_upload(pet_id, user_id, "b.pdf", "application/pdf", PDF_BYTES)
        await registry.begin_classification(pet_id, first.id)

        uploads, total = await registry.list_uploads(pet_id)
        assert total == 2

        uploads, total = await registry.list_uploads(pet_id, status=UploadStatus.CLASSIFYING)
        assert total == 1
        assert uploads[0].id == first.id


# =============================================================================
# Transition Guard Tests
# =============================================================================


class TestTransitionGuards:
    """Tests for single-flight runs and illegal transitions."""

    async def test_second_classify_rejected(
        self, registry: UploadRegistry, pet_id: UUID, user_id: UUID
    ) -> None:
        """Test a run in progress blocks another."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await registry.begin_classification(pet_id, upload.id)

        with pytest.raises(AlreadyInProgressError):
            await registry.begin_classification(pet_id, upload.id)
        with pytest.raises(AlreadyInProgressError):
            await registry.begin_processing(pet_id, upload.id)

    async def test_concurrent_classify_single_flight(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        pet_id: UUID,
        user_id: UUID,
    ) -> None:
        """Test two simultaneous classify calls start exactly one run."""
        async with session_factory() as session:
            upload = await UploadRegistry(session, blob_store).create_upload(
                pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES
            )

        async def attempt() -> DocumentUpload:
            async with session_factory() as session:
                return await UploadRegistry(session, blob_store).begin_classification(pet_id, upload.id)

        results = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

        started = [r for r in results if isinstance(r, DocumentUpload)]
        rejected = [r for r in results if isinstance(r, InvalidStateError)]
        assert len(started) == 1
        assert len(rejected) == 1

    async def test_completed_cannot_be_classified(
        self, registry: UploadRegistry, pipeline: DocumentPipeline, pet_id: UUID, user_id: UUID
    ) -> None:
        """Test completed uploads only move on through review."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await registry.begin_processing(pet_id, upload.id)
        await pipeline.run_processing(upload.id)

        with pytest.raises(InvalidStateError) as exc_info:
            await registry.begin_classification(pet_id, upload.id)
        assert not isinstance(exc_info.value, AlreadyInProgressError)

    async def test_reviewed_upload_rejects_new_runs(
        self,
        registry: UploadRegistry,
        pipeline: DocumentPipeline,
        db_session: AsyncSession,
        blob_store: LocalBlobStore,
        pet_id: UUID,
        user_id: UUID,
    ) -> None:
        """Test a reviewed upload is read-only."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await registry.begin_processing(pet_id, upload.id)
        await pipeline.run_processing(upload.id)
        _, candidates = await registry.get_candidates(pet_id, upload.id)

        await ReviewMergeEngine(db_session, blob_store).approve(
            pet_id,
            upload.id,
            [CandidateDecision(candidate_id=candidates[0].id, decision=ReviewDecision.APPROVE)],
            RequestMeta(user_id=user_id),
        )

        with pytest.raises(InvalidStateError):
            await registry.begin_processing(pet_id, upload.id)

    async def test_result_discarded_after_upload_moved_on(
        self, registry: UploadRegistry, pet_id: UUID, user_id: UUID
    ) -> None:
        """Test a late classification result is not written over a newer state."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await registry.begin_classification(pet_id, upload.id)
        await registry.record_failure(upload.id, UploadStatus.CLASSIFYING, "cancelled")

        late = Classification(
            document_type=DocumentType.LAB_RESULTS,
            confidence=80,
            explanation=None,
            summary={},
        )
        assert await registry.record_classification(upload.id, late) is False

        upload = await registry.get_upload(pet_id, upload.id)
        assert upload.status == UploadStatus.FAILED
        assert upload.detected_document_type is None

    async def test_run_for_deleted_upload_is_skipped(
        self, registry: UploadRegistry, pipeline: DocumentPipeline, pet_id: UUID, user_id: UUID
    ) -> None:
        """Test a run whose upload was deleted records nothing."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await registry.begin_processing(pet_id, upload.id)
        await registry.delete_upload(pet_id, upload.id)

        assert await pipeline.run_processing(upload.id) is False


# =============================================================================
# Failure Tests
# =============================================================================


class TestRunFailures:
    """Tests for failed runs and retries."""

    async def test_failure_keeps_classification(
        self,
        registry: UploadRegistry,
        pipeline: DocumentPipeline,
        mock_llm: MockLLMClient,
        pet_id: UUID,
        user_id: UUID,
    ) -> None:
        """Test a failed extraction keeps the detected type and stores a safe message."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await registry.begin_classification(pet_id, upload.id)
        await pipeline.run_classification(upload.id)

        mock_llm.set_responses([LLMAPIError("Claude API error 529: overloaded_error at req_abc123")])
        await registry.begin_processing(pet_id, upload.id)
        assert await pipeline.run_processing(upload.id) is False

        upload = await registry.get_upload(pet_id, upload.id)
        assert upload.status == UploadStatus.FAILED
        assert upload.error_message == MSG_UNAVAILABLE
        assert "req_abc123" not in upload.error_message
        assert upload.detected_document_type == DocumentType.VACCINATION_RECORD
        assert upload.classification_confidence == 92

    async def test_timeout_fails_run(
        self,
        registry: UploadRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: LocalBlobStore,
        mock_llm: MockLLMClient,
        pet_id: UUID,
        user_id: UUID,
    ) -> None:
        """Test a slow model call fails the run with the timeout message."""
        mock_llm.delay = 1.0
        slow_pipeline = DocumentPipeline(
            session_factory, blob_store, llm_factory=lambda: mock_llm, timeout_seconds=0.05
        )
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await registry.begin_classification(pet_id, upload.id)

        assert await slow_pipeline.run_classification(upload.id) is False

        upload = await registry.get_upload(pet_id, upload.id)
        assert upload.status == UploadStatus.FAILED
        assert upload.error_message == MSG_TIMEOUT

    async def test_missing_blob_fails_run(
        self,
        registry: UploadRegistry,
        pipeline: DocumentPipeline,
        blob_store: LocalBlobStore,
        pet_id: UUID,
        user_id: UUID,
    ) -> None:
        """Test an unreadable file fails the run without leaking the storage key."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await blob_store.delete(upload.storage_key)
        await registry.begin_classification(pet_id, upload.id)

        assert await pipeline.run_classification(upload.id) is False

        upload = await registry.get_upload(pet_id, upload.id)
        assert upload.error_message == MSG_UNREADABLE
        assert upload.storage_key not in upload.error_message

    async def test_retry_replaces_candidates(
        self,
        registry: UploadRegistry,
        pipeline: DocumentPipeline,
        mock_llm: MockLLMClient,
        db_session: AsyncSession,
        pet_id: UUID,
        user_id: UUID,
    ) -> None:
        """Test re-running extraction replaces the previous candidate set."""
        upload = await registry.create_upload(pet_id, user_id, "rx.pdf", "application/pdf", PDF_BYTES)
        await registry.begin_processing(pet_id, upload.id)
        await pipeline.run_processing(upload.id)

        await db_session.execute(
            update(DocumentUpload)
            .where(DocumentUpload.id == upload.id)
            .values(status=UploadStatus.FAILED, error_message="Retry requested")
        )
        await db_session.commit()

        mock_llm.set_responses([extraction_json(MEDICATION_ITEM, CONDITION_ITEM)])
        await registry.begin_processing(pet_id, upload.id)
        assert await pipeline.run_processing(upload.id) is True

        _, candidates = await registry.get_candidates(pet_id, upload.id)
        assert sorted(c.record_kind.value for c in candidates) == ["condition", "medication"]

        total = await db_session.scalar(
            select(func.count()).select_from(ExtractedRecord).where(ExtractedRecord.upload_id == upload.id)
        )
        assert total == 2

    async def test_empty_extraction_completes(
        self,
        registry: UploadRegistry,
        pipeline: DocumentPipeline,
        mock_llm: MockLLMClient,
        pet_id: UUID,
        user_id: UUID,
    ) -> None:
        """Test a document with nothing extractable completes with no candidates."""
        mock_llm.set_responses([extraction_json()])
        upload = await registry.create_upload(pet_id, user_id, "blank.pdf", "application/pdf", PDF_BYTES)
        await registry.begin_processing(pet_id, upload.id)

        assert await pipeline.run_processing(upload.id) is True

        upload, candidates = await registry.get_candidates(pet_id, upload.id)
        assert upload.status == UploadStatus.COMPLETED
        assert candidates == []


# =============================================================================
# Stale Run Tests
# =============================================================================


async def backdate_run(session: AsyncSession, upload_id: UUID, seconds: float) -> None:
    """Pretend the in-flight run started ``seconds`` ago."""
    await session.execute(
        update(DocumentUpload)
        .where(DocumentUpload.id == upload_id)
        .values(processing_started_at=utc_now() - timedelta(seconds=seconds))
    )
    await session.commit()


class TestStaleRuns:
    """Tests for runs that never report back."""

    async def test_recent_run_still_blocks(
        self, registry: UploadRegistry, db_session: AsyncSession, pet_id: UUID, user_id: UUID
    ) -> None:
        """Test a run inside the timeout window is left alone."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await registry.begin_classification(pet_id, upload.id)
        await backdate_run(db_session, upload.id, 5)

        with pytest.raises(AlreadyInProgressError):
            await registry.begin_classification(pet_id, upload.id)

        upload = await registry.get_upload(pet_id, upload.id)
        assert await registry.expire_stale_run(upload) is False
        assert upload.status == UploadStatus.CLASSIFYING

    async def test_stale_classification_fails_and_retries(
        self,
        registry: UploadRegistry,
        pipeline: DocumentPipeline,
        db_session: AsyncSession,
        pet_id: UUID,
        user_id: UUID,
    ) -> None:
        """Test an abandoned classification can be started again."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await registry.begin_classification(pet_id, upload.id)
        await backdate_run(db_session, upload.id, 3600)

        upload = await registry.begin_classification(pet_id, upload.id)
        assert upload.status == UploadStatus.CLASSIFYING
        assert upload.error_message is None

        assert await pipeline.run_classification(upload.id) is True
        upload = await registry.get_upload(pet_id, upload.id)
        assert upload.status == UploadStatus.CLASSIFIED

    async def test_stale_processing_expires_to_failed(
        self, registry: UploadRegistry, db_session: AsyncSession, pet_id: UUID, user_id: UUID
    ) -> None:
        """Test an abandoned extraction is failed with a user-facing message."""
        upload = await registry.create_upload(pet_id, user_id, "visit.pdf", "application/pdf", PDF_BYTES)
        await registry.begin_processing(pet_id, upload.id)
        await backdate_run(db_session, upload.id, 3600)

        upload = await registry.get_upload(pet_id, upload.id)
        assert await registry.expire_stale_run(upload) is True

        upload = await registry.get_upload(pet_id, upload.id)
        assert upload.status == UploadStatus.FAILED
        assert upload.error_message == MSG_STALE_RUN
        assert upload.task_id is None

    async def test_late_result_after_expiry_discarded(
        self,
        registry: UploadRegistry,
        pipeline: DocumentPipeline,
        db_session: AsyncSession,
        pet_id: UUID,
        user_id: UUID,
    ) -> None:
        """Test a run that finishes after its lease expired records nothing."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await registry.begin_classification(pet_id, upload.id)
        await backdate_run(db_session, upload.id, 3600)
        await registry.expire_stale_run(await registry.get_upload(pet_id, upload.id))

        assert await pipeline.run_classification(upload.id) is False

        upload = await registry.get_upload(pet_id, upload.id)
        assert upload.status == UploadStatus.FAILED
        assert upload.detected_document_type is None

    async def test_recording_error_fails_run(
        self,
        registry: UploadRegistry,
        pipeline: DocumentPipeline,
        monkeypatch: pytest.MonkeyPatch,
        pet_id: UUID,
        user_id: UUID,
    ) -> None:
        """Test a database error while storing a classification fails the run instead of hanging it."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await registry.begin_classification(pet_id, upload.id)

        async def broken_record(self, upload_id, classification):
            raise OperationalError("UPDATE document_uploads", {}, Exception("connection reset"))

        monkeypatch.setattr(UploadRegistry, "record_classification", broken_record)

        assert await pipeline.run_classification(upload.id) is False

        upload = await registry.get_upload(pet_id, upload.id)
        assert upload.status == UploadStatus.FAILED
        assert upload.error_message == MSG_UNEXPECTED


# =============================================================================
# Delete Tests
# =============================================================================


class TestDeleteUpload:
    """Tests for upload deletion."""

    async def test_delete_removes_blob_and_candidates(
        self,
        registry: UploadRegistry,
        pipeline: DocumentPipeline,
        db_session: AsyncSession,
        blob_store: LocalBlobStore,
        pet_id: UUID,
        user_id: UUID,
    ) -> None:
        """Test delete removes the file and candidates but keeps history."""
        upload = await registry.create_upload(pet_id, user_id, "rabies.jpg", "image/jpeg", JPEG_BYTES)
        await registry.begin_processing(pet_id, upload.id)
        await pipeline.run_processing(upload.id)
        _, candidates = await registry.get_candidates(pet_id, upload.id)
        await ReviewMergeEngine(db_session, blob_store).approve(
            pet_id,
            upload.id,
            [CandidateDecision(candidate_id=candidates[0].id, decision=ReviewDecision.APPROVE)],
            RequestMeta(user_id=user_id),
        )
        storage_key = upload.storage_key

        deleted = await registry.delete_upload(pet_id, upload.id)

        assert deleted.candidates_removed == 1
        assert not await blob_store.exists(storage_key)
        with pytest.raises(NotFoundError):
            await registry.get_upload(pet_id, upload.id)
        assert await db_session.scalar(select(func.count()).select_from(ExtractedRecord)) == 0
        assert await db_session.scalar(select(func.count()).select_from(AuditLog)) == 1
        assert await db_session.scalar(select(func.count()).select_from(PetVaccination)) == 1

    async def test_delete_unknown_upload(self, registry: UploadRegistry, pet_id: UUID) -> None:
        """Test deleting a missing upload raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await registry.delete_upload(pet_id, pet_id)
