"""
Database models for the document import pipeline.

This package contains SQLAlchemy models for:
- DocumentUpload: Uploaded files and their processing state
- ExtractedRecord: Candidate health records awaiting review
- Pet* health records: Permanent records, one table per record kind
- AuditLog: Append-only history of health-record mutations

Usage:
    from src.db.models import DocumentUpload, ExtractedRecord, AuditLog
    from src.db.models import PetVaccination, model_for

All models inherit from the base classes in src.db.base and use:
- UUID7 primary keys (time-sortable, globally unique)
- Timestamp mixins (created_at, updated_at)
- JSON columns (JSONB on PostgreSQL) for flexible payloads
"""

from src.db.models.audit_log import AuditLog
from src.db.models.document_upload import DocumentUpload
from src.db.models.extracted_record import ExtractedRecord
from src.db.models.health_records import (
    HEALTH_RECORD_MODELS,
    HealthRecordMixin,
    PetAllergy,
    PetCondition,
    PetEmergencyContact,
    PetMedication,
    PetVaccination,
    PetVet,
    model_for,
)

__all__ = [
    # Pipeline models
    "DocumentUpload",
    "ExtractedRecord",
    # Health records
    "HealthRecordMixin",
    "PetVaccination",
    "PetMedication",
    "PetCondition",
    "PetAllergy",
    "PetVet",
    "PetEmergencyContact",
    "HEALTH_RECORD_MODELS",
    "model_for",
    # Audit models
    "AuditLog",
]
