"""Audit log API endpoints (read-only)."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.db import get_db
from src.db.enums import AuditAction
from src.schemas import AuditLogResponse, PaginatedResponse
from src.services.audit import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, AuditLogger

router = APIRouter()


@router.get(
    "",
    response_model=PaginatedResponse[AuditLogResponse],
    summary="List audit entries",
    description="Health-record changes for a pet, newest first.",
)
async def list_audit_log(
    pet_id: UUID,
    entity_type: str | None = Query(default=None, description="Table name, e.g. pet_vaccinations"),
    action: AuditAction | None = Query(default=None, description="create, update or delete"),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Items per page"),
    offset: int = Query(default=0, ge=0, description="Items to skip"),
    db: AsyncSession = Depends(get_db),
) -> PaginatedResponse[AuditLogResponse]:
    """List audit entries for a pet."""
    entries, total = await AuditLogger(db).list_for_pet(
        pet_id,
        entity_type=entity_type,
        action=action,
        limit=limit,
        offset=offset,
    )
    return PaginatedResponse.create(
        items=[AuditLogResponse.model_validate(e) for e in entries],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{entity_type}/{entity_id}",
    response_model=list[AuditLogResponse],
    summary="Record history",
    description="Every audit entry for one health record, newest first.",
)
async def get_record_history(
    pet_id: UUID,
    entity_type: str,
    entity_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> list[AuditLogResponse]:
    """Get the history of one record."""
    entries = await AuditLogger(db).list_for_record(entity_type, entity_id, pet_id=pet_id)
    return [AuditLogResponse.model_validate(e) for e in entries]
