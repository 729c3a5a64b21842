"""
Document upload, analysis and review endpoints.

Architecture:
    POST /pets/{pet_id}/documents/{id}/classify | /process
        → Registry moves the upload into classifying/processing (single-flight)
        → Run is dispatched to a Celery worker via Redis queue
        → Returns 202 Accepted; the client polls GET /pets/{pet_id}/documents/{id}

    ?wait=true
        → Run executes inside the request and the result is returned (200)

Fallback:
    If Celery/Redis is unavailable (e.g., local dev without Docker),
    runs fall back to FastAPI BackgroundTasks (in-process, same behavior
    but no separate worker process).
"""

from uuid import UUID

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Body,
    Depends,
    File,
    Query,
    Response,
    UploadFile,
    status,
)

from src.api.deps import (
    get_current_user_id,
    get_merge_engine,
    get_pipeline,
    get_registry,
    get_request_meta,
)
from src.core.config import settings
from src.core.logging import get_logger
from src.db.enums import RecordKind, UploadStatus
from src.db.models import DocumentUpload, ExtractedRecord
from src.schemas import (
    ApproveRequest,
    ApproveResponse,
    CandidateUpdate,
    ClassifyResponse,
    CommittedRecord,
    ConflictInfo,
    DocumentResponse,
    DocumentSummary,
    ExtractedRecordResponse,
    ExtractedRecordSet,
    PaginatedResponse,
    ProcessRequest,
    ProcessResponse,
)
from src.services.audit import RequestMeta
from src.services.classification import classification_view
from src.services.extraction import summarize_counts
from src.services.merge import ReviewMergeEngine
from src.services.pipeline import DocumentPipeline
from src.services.registry import UploadRegistry

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================


def document_view(upload: DocumentUpload) -> DocumentResponse:
    """Upload as returned by the API, with its classification when present."""
    return DocumentResponse.model_validate(upload).model_copy(
        update={"classification": classification_view(upload)}
    )


def record_set_view(upload: DocumentUpload, candidates: list[ExtractedRecord]) -> ExtractedRecordSet:
    """Candidates partitioned by record kind."""
    groups: dict[RecordKind, list[ExtractedRecordResponse]] = {kind: [] for kind in RecordKind}
    for candidate in candidates:
        groups[candidate.record_kind].append(ExtractedRecordResponse.model_validate(candidate))

    return ExtractedRecordSet(
        source_upload_id=upload.id,
        document_type=upload.effective_document_type,
        medications=groups[RecordKind.MEDICATION],
        conditions=groups[RecordKind.CONDITION],
        allergies=groups[RecordKind.ALLERGY],
        vaccinations=groups[RecordKind.VACCINATION],
        vets=groups[RecordKind.VET],
        emergency_contacts=groups[RecordKind.EMERGENCY_CONTACT],
        total=len(candidates),
        needs_review_count=sum(1 for c in candidates if c.needs_review),
        summary=summarize_counts({kind: len(items) for kind, items in groups.items()}),
        extraction_model=upload.extraction_model,
        tokens_used=upload.tokens_used,
    )


# =============================================================================
# Celery Dispatch Helpers
# =============================================================================


def _celery_available() -> bool:
    """Check if Celery broker (Redis) is reachable."""
    if settings.celery_task_always_eager:
        return False
    try:
        from src.workers.celery_app import celery_app
        conn = celery_app.connection()
        conn.ensure_connection(max_retries=1, timeout=2)
        conn.close()
        return True
    except Exception:
        return False


def _dispatch_to_celery(upload_id: UUID, stage: str) -> str | None:
    """
    Dispatch a pipeline run to the Celery queue.

    Returns the Celery task ID on success, None on failure.
    """
    try:
        from src.workers.tasks import classify_document_task, process_document_task

        task = classify_document_task if stage == "classify" else process_document_task
        result = task.delay(str(upload_id))
        return result.id
    except Exception as e:
        logger.warning("Failed to dispatch to Celery", error=str(e))
        return None


async def _dispatch(
    background_tasks: BackgroundTasks,
    registry: UploadRegistry,
    pipeline: DocumentPipeline,
    upload_id: UUID,
    stage: str,
) -> None:
    """Queue a run on Celery, or in-process via BackgroundTasks."""
    in_flight = UploadStatus.CLASSIFYING if stage == "classify" else UploadStatus.PROCESSING

    if _celery_available():
        task_id = _dispatch_to_celery(upload_id, stage)
        if task_id:
            await registry.attach_task(upload_id, task_id, in_flight)
            logger.info(
                "Run dispatched to Celery queue",
                upload_id=str(upload_id),
                stage=stage,
                celery_task_id=task_id,
            )
            return

    # Fallback: run in-process via BackgroundTasks
    logger.info(
        "Celery unavailable, using BackgroundTasks fallback",
        upload_id=str(upload_id),
        stage=stage,
    )
    run = pipeline.run_classification if stage == "classify" else pipeline.run_processing
    background_tasks.add_task(run, upload_id)


def _revoke(task_id: str) -> None:
    try:
        from src.workers.celery_app import celery_app
        celery_app.control.revoke(task_id)
    except Exception as e:
        # A running task finds the row gone and discards its result
        logger.warning("Could not revoke Celery task", task_id=task_id, error=str(e))


# =============================================================================
# Upload / Read
# =============================================================================


@router.post(
    "",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a document",
    description=(
        "Upload a PDF or photo of a pet health document. "
        "Accepted: PDF (max 20 MB), JPEG, PNG, WebP, GIF (max 10 MB)."
    ),
)
async def upload_document(
    pet_id: UUID,
    file: UploadFile = File(..., description="PDF or image file"),
    user_id: UUID = Depends(get_current_user_id),
    registry: UploadRegistry = Depends(get_registry),
) -> DocumentResponse:
    """Store an uploaded file as a pending document."""
    # Read one byte past the largest limit so oversize files are still detected
    content = await file.read(max(settings.pdf_max_bytes, settings.image_max_bytes) + 1)
    upload = await registry.create_upload(
        pet_id=pet_id,
        user_id=user_id,
        filename=file.filename or "",
        mime_type=file.content_type,
        content=content,
    )
    return document_view(upload)


@router.get(
    "",
    response_model=PaginatedResponse[DocumentSummary],
    summary="List documents",
    description="List a pet's uploaded documents, newest first.",
)
async def list_documents(
    pet_id: UUID,
    status_filter: UploadStatus | None = Query(default=None, alias="status", description="Filter by status"),
    limit: int = Query(default=50, ge=1, le=200, description="Items per page"),
    offset: int = Query(default=0, ge=0, description="Items to skip"),
    registry: UploadRegistry = Depends(get_registry),
) -> PaginatedResponse[DocumentSummary]:
    """List uploads for a pet."""
    uploads, total = await registry.list_uploads(pet_id, status=status_filter, limit=limit, offset=offset)
    return PaginatedResponse.create(
        items=[DocumentSummary.model_validate(u) for u in uploads],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{upload_id}",
    response_model=DocumentResponse,
    summary="Get document",
    description="Get an upload with its status and classification.",
)
async def get_document(
    pet_id: UUID,
    upload_id: UUID,
    registry: UploadRegistry = Depends(get_registry),
) -> DocumentResponse:
    """Get a single upload."""
    return document_view(await registry.get_upload(pet_id, upload_id))


# =============================================================================
# Classify / Process
# =============================================================================


@router.post(
    "/{upload_id}/classify",
    response_model=ClassifyResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Classify document",
    description=(
        "Detect the document type. Runs in the background unless wait=true. "
        "Rejected with 409 while a run is already in progress."
    ),
)
async def classify_document(
    pet_id: UUID,
    upload_id: UUID,
    response: Response,
    background_tasks: BackgroundTasks,
    wait: bool = Query(default=False, description="Run inside the request and return the result"),
    user_id: UUID = Depends(get_current_user_id),  # noqa: ARG001 - identity required
    registry: UploadRegistry = Depends(get_registry),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> ClassifyResponse:
    """Start classification for an upload."""
    upload = await registry.begin_classification(pet_id, upload_id)

    if wait:
        await pipeline.run_classification(upload_id)
        upload = await registry.get_upload(pet_id, upload_id)
        response.status_code = status.HTTP_200_OK
        return ClassifyResponse(
            document=document_view(upload),
            classification=classification_view(upload) if upload.status == UploadStatus.CLASSIFIED else None,
            message=upload.error_message or "Document classified",
        )

    await _dispatch(background_tasks, registry, pipeline, upload_id, "classify")
    return ClassifyResponse(
        document=document_view(upload),
        message="Classification started. Use GET /pets/{pet_id}/documents/{id} to check status.",
    )


@router.post(
    "/{upload_id}/process",
    response_model=ProcessResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Extract health records",
    description=(
        "Extract candidate health records for review. An optional document_type "
        "confirms or overrides the detected type. Runs in the background unless wait=true."
    ),
)
async def process_document(
    pet_id: UUID,
    upload_id: UUID,
    response: Response,
    background_tasks: BackgroundTasks,
    body: ProcessRequest | None = Body(default=None),
    wait: bool = Query(default=False, description="Run inside the request and return the result"),
    user_id: UUID = Depends(get_current_user_id),  # noqa: ARG001 - identity required
    registry: UploadRegistry = Depends(get_registry),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> ProcessResponse:
    """Start extraction for an upload."""
    confirmed_type = body.document_type if body else None
    upload = await registry.begin_processing(pet_id, upload_id, confirmed_type=confirmed_type)

    if wait:
        await pipeline.run_processing(upload_id)
        upload, candidates = await registry.get_candidates(pet_id, upload_id)
        response.status_code = status.HTTP_200_OK
        extraction = record_set_view(upload, candidates) if upload.status == UploadStatus.COMPLETED else None
        return ProcessResponse(
            document=document_view(upload),
            extraction=extraction,
            message=upload.error_message or (extraction.summary if extraction else "Processing finished"),
        )

    await _dispatch(background_tasks, registry, pipeline, upload_id, "process")
    return ProcessResponse(
        document=document_view(upload),
        message="Processing started. Use GET /pets/{pet_id}/documents/{id} to check status.",
    )


# =============================================================================
# Review
# =============================================================================


@router.get(
    "/{upload_id}/candidates",
    response_model=ExtractedRecordSet,
    summary="Get extracted records",
    description="Candidate health records extracted from the document, grouped by kind.",
)
async def get_candidates(
    pet_id: UUID,
    upload_id: UUID,
    registry: UploadRegistry = Depends(get_registry),
) -> ExtractedRecordSet:
    """Get the candidate set for an upload."""
    upload, candidates = await registry.get_candidates(pet_id, upload_id)
    return record_set_view(upload, candidates)


@router.patch(
    "/{upload_id}/candidates/{candidate_id}",
    response_model=ExtractedRecordResponse,
    summary="Edit an extracted record",
    description="Store user edits on a pending candidate ahead of approval.",
)
async def update_candidate(
    pet_id: UUID,
    upload_id: UUID,
    candidate_id: UUID,
    body: CandidateUpdate,
    user_id: UUID = Depends(get_current_user_id),  # noqa: ARG001 - identity required
    registry: UploadRegistry = Depends(get_registry),
) -> ExtractedRecordResponse:
    """Update one candidate's data."""
    candidate = await registry.update_candidate(pet_id, upload_id, candidate_id, body.data)
    return ExtractedRecordResponse.model_validate(candidate)


@router.post(
    "/{upload_id}/approve",
    response_model=ApproveResponse,
    summary="Approve extracted records",
    description=(
        "Commit approved candidates into the pet's health records in one transaction. "
        "Candidates without a decision are rejected. Duplicates of existing records "
        "are returned as conflicts (status=conflict, nothing committed) unless the "
        "decision sets on_conflict."
    ),
)
async def approve_document(
    pet_id: UUID,
    upload_id: UUID,
    body: ApproveRequest,
    meta: RequestMeta = Depends(get_request_meta),
    engine: ReviewMergeEngine = Depends(get_merge_engine),
) -> ApproveResponse:
    """Apply review decisions."""
    result = await engine.approve(pet_id, upload_id, body.decisions, meta)
    return ApproveResponse(
        status=result.status,
        committed=[
            CommittedRecord(
                candidate_id=item.candidate_id,
                record_kind=item.record_kind,
                record_id=item.record_id,
                entity_type=item.entity_type,
                action=item.action,
            )
            for item in result.committed
        ],
        rejected_candidate_ids=result.rejected_candidate_ids,
        conflicts=[ConflictInfo(**conflict.to_dict()) for conflict in result.conflicts],
        message=result.message,
    )


# =============================================================================
# Delete
# =============================================================================


@router.delete(
    "/{upload_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete document",
    description=(
        "Delete the upload, its stored file and its candidates. "
        "Committed health records and audit history are kept."
    ),
)
async def delete_document(
    pet_id: UUID,
    upload_id: UUID,
    user_id: UUID = Depends(get_current_user_id),  # noqa: ARG001 - identity required
    registry: UploadRegistry = Depends(get_registry),
) -> Response:
    """Delete an upload."""
    deleted = await registry.delete_upload(pet_id, upload_id)
    if deleted.task_id:
        _revoke(deleted.task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
