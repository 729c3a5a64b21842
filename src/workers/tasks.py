"""
Celery tasks for the document analysis pipeline.

Each task bridges Celery's synchronous execution model with the async
pipeline using asyncio.run(). Tasks build their own engine because the
API process's engine is bound to a different event loop.

Usage:
    # From API (dispatch to queue):
    from src.workers.tasks import classify_document_task
    classify_document_task.delay(str(upload_id))

    # Start worker:
    celery -A src.workers.celery_app worker -l info -P solo
"""

import asyncio
from uuid import UUID

from sqlalchemy.ext.asyncio import async_sessionmaker

from src.core.logging import get_logger
from src.workers.celery_app import celery_app

logger = get_logger(__name__)


async def _run_stage(upload_id: UUID, stage: str, db_url: str) -> bool:
    """Run one pipeline stage against a fresh engine."""
    from src.db.base import build_engine
    from src.services.pipeline import DocumentPipeline
    from src.services.storage import get_blob_store

    engine = build_engine(db_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    try:
        pipeline = DocumentPipeline(session_factory, get_blob_store())
        if stage == "classify":
            return await pipeline.run_classification(upload_id)
        return await pipeline.run_processing(upload_id)
    finally:
        await engine.dispose()


@celery_app.task(
    name="src.workers.tasks.classify_document_task",
    bind=True,
    acks_late=True,
)
def classify_document_task(self, upload_id_str: str) -> dict:
    """
    Celery task: classify an upload already moved to ``classifying``.

    Args:
        upload_id_str: Upload UUID as string (Celery requires JSON-serializable args)

    Returns:
        dict with the upload id and whether a result was recorded
    """
    from src.core.config import settings

    logger.info("Celery worker: classifying document", upload_id=upload_id_str, task_id=self.request.id)

    recorded = asyncio.run(_run_stage(UUID(upload_id_str), "classify", settings.db_url))

    logger.info("Celery worker: classification finished", upload_id=upload_id_str, recorded=recorded)
    return {"upload_id": upload_id_str, "recorded": recorded}


@celery_app.task(
    name="src.workers.tasks.process_document_task",
    bind=True,
    acks_late=True,
)
def process_document_task(self, upload_id_str: str) -> dict:
    """
    Celery task: extract candidate records for an upload in ``processing``.

    Args:
        upload_id_str: Upload UUID as string

    Returns:
        dict with the upload id and whether candidates were stored
    """
    from src.core.config import settings

    logger.info("Celery worker: processing document", upload_id=upload_id_str, task_id=self.request.id)

    recorded = asyncio.run(_run_stage(UUID(upload_id_str), "process", settings.db_url))

    logger.info("Celery worker: processing finished", upload_id=upload_id_str, recorded=recorded)
    return {"upload_id": upload_id_str, "recorded": recorded}
