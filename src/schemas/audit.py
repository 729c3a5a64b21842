"""Pydantic schemas for the audit log endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from src.db.enums import AuditAction, AuditSource


class AuditLogResponse(BaseModel):
    """One immutable audit entry."""

    id: UUID
    pet_id: UUID
    entity_type: str
    entity_id: UUID
    action: AuditAction
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    changed_fields: list[str] | None = None
    changed_by: UUID | None = None
    source: AuditSource
    source_upload_id: UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
