"""Shared FastAPI dependencies."""

from uuid import UUID

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import UploadValidationError
from src.core.logging import bind_context
from src.db import get_db, get_session_factory
from src.services.audit import RequestMeta
from src.services.llm_client import LLMClientFactory, get_llm_client
from src.services.merge import ReviewMergeEngine
from src.services.pipeline import DocumentPipeline
from src.services.registry import UploadRegistry
from src.services.storage import BlobStore
from src.services.storage import get_blob_store as build_blob_store

_blob_store: BlobStore | None = None


def get_blob_store() -> BlobStore:
    """Process-wide blob store. Tests override this."""
    global _blob_store
    if _blob_store is None:
        _blob_store = build_blob_store()
    return _blob_store


def get_llm_factory() -> LLMClientFactory:
    """Factory for fresh LLM clients. Tests override this with a mock."""
    return get_llm_client


def _parse_user_id(value: str | None) -> UUID | None:
    if value is None or not value.strip():
        return None
    try:
        return UUID(value.strip())
    except ValueError as e:
        raise UploadValidationError("X-User-Id must be a UUID") from e


async def get_current_user_id(
    x_user_id: str | None = Header(default=None, description="Caller's user id"),
) -> UUID:
    """Caller identity for mutating routes, supplied by the auth gateway."""
    user_id = _parse_user_id(x_user_id)
    if user_id is None:
        raise UploadValidationError("X-User-Id header is required")
    bind_context(user_id=str(user_id))
    return user_id


async def get_request_meta(
    request: Request,
    user_id: UUID = Depends(get_current_user_id),
) -> RequestMeta:
    """Who is calling and from where, for audit entries."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return RequestMeta(
        user_id=user_id,
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
    )


def get_registry(
    db: AsyncSession = Depends(get_db),
    blobs: BlobStore = Depends(get_blob_store),
) -> UploadRegistry:
    return UploadRegistry(db, blobs)


def get_merge_engine(
    db: AsyncSession = Depends(get_db),
    blobs: BlobStore = Depends(get_blob_store),
) -> ReviewMergeEngine:
    return ReviewMergeEngine(db, blobs)


def get_pipeline(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    blobs: BlobStore = Depends(get_blob_store),
    llm_factory: LLMClientFactory = Depends(get_llm_factory),
) -> DocumentPipeline:
    return DocumentPipeline(session_factory, blobs, llm_factory=llm_factory)
