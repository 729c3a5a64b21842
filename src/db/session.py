"""
Database session management for FastAPI and standalone usage.

This module provides:
- FastAPI dependency for request-scoped database sessions
- Context manager for Celery tasks and background runs
- Transaction helper

Usage in FastAPI:
    @router.get("/pets/{pet_id}/documents")
    async def list_documents(pet_id: UUID, db: AsyncSession = Depends(get_db)):
        ...

Usage in workers:
    async with get_db_context() as db:
        upload = await db.get(DocumentUpload, upload_id)
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.base import AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session.

    One session per request, closed when the request completes. The session
    is NOT auto-committed; services commit explicitly at their own
    transaction boundaries.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    FastAPI dependency for code that must open its own sessions.

    Background pipeline runs outlive the request session, so they receive the
    factory rather than a session. Tests override this to point at their
    engine.
    """
    return AsyncSessionLocal


@asynccontextmanager
async def get_db_context(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions outside of a request.

    Used by Celery tasks, BackgroundTasks runs and scripts. The session is
    closed on exit even if an exception occurs.
    """
    factory = session_factory or AsyncSessionLocal
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Commit on success, roll back on any exception.

    Usage:
        async with transaction(db):
            db.add(record)
            db.add(audit_entry)
            # both are committed or neither is
    """
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
