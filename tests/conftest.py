"""Pytest configuration and shared fixtures."""

import os

# Settings are read at import time; point everything at local test doubles
os.environ.update(
    {
        "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
        "LLM_PROVIDER": "mock",
        "STORAGE_PROVIDER": "local",
        "CELERY_TASK_ALWAYS_EAGER": "true",
        "REDIS_LOCKS_ENABLED": "false",
        "LOG_LEVEL": "WARNING",
    }
)

from collections.abc import AsyncGenerator  # noqa: E402
from pathlib import Path  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402
from uuid6 import uuid7  # noqa: E402

from src.api.deps import get_blob_store, get_llm_factory  # noqa: E402
from src.db import build_engine, drop_db, get_db, get_session_factory, init_db  # noqa: E402
from src.main import app  # noqa: E402
from src.services.llm_client import MockLLMClient  # noqa: E402
from src.services.pipeline import DocumentPipeline  # noqa: E402
from src.services.registry import UploadRegistry  # noqa: E402
from src.services.storage import LocalBlobStore  # noqa: E402

# Minimal files that pass signature checks
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 256
PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n%%EOF\n"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine per test, with all tables created."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await init_db(test_engine)
    yield test_engine
    await drop_db(test_engine)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def blob_store(tmp_path: Path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def mock_llm() -> MockLLMClient:
    """Shared mock client; script it with set_responses()."""
    return MockLLMClient()


@pytest.fixture
def registry(db_session: AsyncSession, blob_store: LocalBlobStore) -> UploadRegistry:
    return UploadRegistry(db_session, blob_store)


@pytest.fixture
def pipeline(
    session_factory: async_sessionmaker[AsyncSession],
    blob_store: LocalBlobStore,
    mock_llm: MockLLMClient,
) -> DocumentPipeline:
    return DocumentPipeline(
        session_factory,
        blob_store,
        llm_factory=lambda: mock_llm,
        timeout_seconds=5.0,
    )


@pytest.fixture
def pet_id() -> UUID:
    return uuid7()


@pytest.fixture
def user_id() -> UUID:
    return uuid7()


# =============================================================================
# API
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    blob_store: LocalBlobStore,
    mock_llm: MockLLMClient,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an asynchronous test client for FastAPI with test overrides."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_llm_factory] = lambda: (lambda: mock_llm)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return JPEG_BYTES


@pytest.fixture
def pdf_bytes() -> bytes:
    return PDF_BYTES
