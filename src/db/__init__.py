"""
Database package - SQLAlchemy models, session management, and utilities.

Exports:
- Base classes and mixins for model definition
- Session management for FastAPI and standalone usage
- Database lifecycle utilities
- Controlled vocabulary enums
- All database models

Usage:
    from src.db import Base, get_db, get_db_context
    from src.db import DocumentUpload, ExtractedRecord, AuditLog
    from src.db import UploadStatus, DocumentType, RecordKind
"""

from src.db.base import (
    # Engine and session factory
    AsyncSessionLocal,
    # Base classes
    Base,
    # Mixins
    CreatedAtMixin,
    TimestampMixin,
    UUIDCreatedBase,
    UUIDMixin,
    UUIDTimestampBase,
    # Lifecycle utilities
    build_engine,
    dispose_engine,
    drop_db,
    engine,
    init_db,
    metadata,
    utc_now,
)
from src.db.enums import (
    AuditAction,
    AuditSource,
    CandidateStatus,
    ConfidenceBand,
    ConflictResolution,
    DocumentType,
    MediaType,
    RecordKind,
    ReviewDecision,
    UploadStatus,
)
from src.db.models import (
    HEALTH_RECORD_MODELS,
    AuditLog,
    DocumentUpload,
    ExtractedRecord,
    HealthRecordMixin,
    PetAllergy,
    PetCondition,
    PetEmergencyContact,
    PetMedication,
    PetVaccination,
    PetVet,
    model_for,
)
from src.db.session import get_db, get_db_context, get_session_factory, transaction

__all__ = [
    # Base classes
    "Base",
    "UUIDCreatedBase",
    "UUIDTimestampBase",
    # Mixins
    "UUIDMixin",
    "TimestampMixin",
    "CreatedAtMixin",
    # Enums
    "UploadStatus",
    "DocumentType",
    "MediaType",
    "RecordKind",
    "ConfidenceBand",
    "CandidateStatus",
    "ReviewDecision",
    "ConflictResolution",
    "AuditAction",
    "AuditSource",
    # Models
    "DocumentUpload",
    "ExtractedRecord",
    "HealthRecordMixin",
    "PetVaccination",
    "PetMedication",
    "PetCondition",
    "PetAllergy",
    "PetVet",
    "PetEmergencyContact",
    "HEALTH_RECORD_MODELS",
    "model_for",
    "AuditLog",
    # Engine and factory
    "engine",
    "build_engine",
    "AsyncSessionLocal",
    "metadata",
    "utc_now",
    # Session utilities
    "get_db",
    "get_db_context",
    "get_session_factory",
    "transaction",
    # Lifecycle
    "init_db",
    "drop_db",
    "dispose_engine",
]
