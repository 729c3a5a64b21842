"""
SQLAlchemy Base Configuration and Mixins.

This module provides:
- Async engine and session factory configuration
- Base declarative class for all models
- Reusable mixins (UUID7 primary key, timestamps)
- Dialect-portable column types (PostgreSQL in production, SQLite in tests)

All models in this project should inherit from `Base` and use the provided
mixins for consistency.
"""

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, MetaData, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from uuid6 import uuid7

from src.core.config import settings

# =============================================================================
# DATABASE ENGINE CONFIGURATION
# =============================================================================

# Naming convention for database constraints
# Keeps index/constraint names stable across Alembic autogenerate runs
NAMING_CONVENTION: dict[str, str] = {
    "ix": "ix_%(column_0_label)s",                    # Index
    "uq": "uq_%(table_name)s_%(column_0_name)s",      # Unique constraint
    "ck": "ck_%(table_name)s_%(constraint_name)s",    # Check constraint
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",  # Foreign key
    "pk": "pk_%(table_name)s",                        # Primary key
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

# JSONB on PostgreSQL, plain JSON elsewhere. Python None is stored as SQL NULL.
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def build_engine(url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """
    Create an async engine for the configured database.

    Pool sizing only applies to server databases; SQLite uses SQLAlchemy's
    default pool for aiosqlite.
    """
    url = url or settings.db_url
    kwargs: dict[str, Any] = {
        "echo": settings.api_debug if echo is None else echo,
    }
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_pre_ping=True,   # Check connection health before use
            pool_size=5,          # Base number of connections
            max_overflow=10,      # Allow up to 15 total (5 + 10)
        )
    return create_async_engine(url, **kwargs)


engine = build_engine()

# expire_on_commit=False keeps attributes readable after commit in async code;
# autoflush=False leaves flush points explicit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
)


def utc_now() -> datetime:
    """Timezone-aware UTC timestamp used for all Python-side defaults."""
    return datetime.now(timezone.utc)


def enum_column(enum_cls: type[Enum], length: int = 32) -> SAEnum:
    """
    Store a ``str`` Enum by value as a VARCHAR.

    Non-native so adding a member does not require ALTER TYPE; values are
    validated on the Python side.
    """
    return SAEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=length,
        validate_strings=True,
    )


# =============================================================================
# BASE CLASS
# =============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Features:
    - AsyncAttrs: Enables `await` on lazy-loaded relationships
    - Custom metadata with naming conventions
    - Automatic __tablename__ generation from class name

    Example:
        class PetAllergy(Base):
            # __tablename__ automatically set to "pet_allergies"
            allergen: Mapped[str] = mapped_column(String(255))
    """

    metadata = metadata

    __name__: str

    @declared_attr.directive
    def __tablename__(cls) -> str:
        """
        Generate table name from class name: CamelCase -> snake_case plural.

        - DocumentUpload -> document_uploads
        - PetAllergy -> pet_allergies
        - AuditLog -> audit_logs
        """
        name = cls.__name__
        snake_case = "".join(
            f"_{char.lower()}" if char.isupper() and i > 0 else char.lower()
            for i, char in enumerate(name)
        )
        if snake_case.endswith("y"):
            return snake_case[:-1] + "ies"
        elif snake_case.endswith("s"):
            return snake_case + "es"
        else:
            return snake_case + "s"

    def to_dict(self, exclude: set[str] | None = None) -> dict[str, Any]:
        """
        Convert model instance to a JSON-safe dictionary.

        Used for audit snapshots (old_values/new_values), so every value must
        survive a JSON column round trip:
        - UUID -> string
        - datetime/date -> ISO format string
        - Enum -> value
        """
        exclude = exclude or set()
        result = {}
        for column in self.__table__.columns:
            if column.name in exclude:
                continue
            value = getattr(self, column.name)
            if isinstance(value, uuid.UUID):
                value = str(value)
            elif isinstance(value, (datetime, date)):
                value = value.isoformat()
            elif isinstance(value, Enum):
                value = value.value
            result[column.name] = value
        return result


# =============================================================================
# MIXINS
# =============================================================================

class UUIDMixin:
    """
    Mixin that provides a UUID7 primary key.

    UUID7 is time-ordered, so it doubles as a tiebreaker when two rows share
    a created_at value.
    """

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid7,
        sort_order=-100,
    )


class TimestampMixin:
    """
    Mixin that provides created_at and updated_at timestamps.

    Defaults are set in Python so that values are visible before a refresh
    and identical across dialects.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        sort_order=100,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
        sort_order=101,
    )


class CreatedAtMixin:
    """
    Mixin that provides only created_at timestamp.

    For append-only rows such as audit entries.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        sort_order=100,
    )


# =============================================================================
# COMBINED BASE CLASSES (Convenience)
# =============================================================================

class UUIDTimestampBase(UUIDMixin, TimestampMixin, Base):
    """Abstract base with UUID7 + created_at + updated_at, for mutable rows."""

    __abstract__ = True


class UUIDCreatedBase(UUIDMixin, CreatedAtMixin, Base):
    """Abstract base with UUID7 + created_at, for immutable/append-only rows."""

    __abstract__ = True


# =============================================================================
# DATABASE LIFECYCLE UTILITIES
# =============================================================================

async def init_db(bind: AsyncEngine | None = None) -> None:
    """
    Create all tables.

    In production, use Alembic migrations instead. This is used by the test
    suite and for local development against SQLite.
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(bind: AsyncEngine | None = None) -> None:
    """Drop all tables. Destructive; tests only."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def dispose_engine() -> None:
    """Dispose of the engine and close all connections on shutdown."""
    await engine.dispose()
