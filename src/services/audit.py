"""
Audit logger for health-record mutations.

Entries are added to the caller's session, never committed here, so an audit
row exists if and only if the mutation it describes was committed.
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import get_logger
from src.db.enums import AuditAction, AuditSource
from src.db.models import AuditLog

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


@dataclass
class RequestMeta:
    """Who made a change and from where."""

    user_id: UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None


def compute_changed_fields(old_values: dict[str, Any], new_values: dict[str, Any]) -> list[str]:
    """
    Keys whose values differ across the union of both snapshots.

    A key present on only one side counts as changed. Sorted for stable output.
    """
    changed = set(old_values) ^ set(new_values)
    for key in set(old_values) & set(new_values):
        if old_values[key] != new_values[key]:
            changed.add(key)
    return sorted(changed)


class AuditLogger:
    """
    Writes and reads audit entries.

    Usage:
        audit = AuditLogger(session, meta=RequestMeta(user_id=user_id), source=AuditSource.PDF_IMPORT)
        audit.log_create("pet_vaccinations", record.id, record.pet_id, record.data_values())
    """

    def __init__(
        self,
        session: AsyncSession,
        meta: RequestMeta | None = None,
        source: AuditSource = AuditSource.MANUAL,
        source_upload_id: UUID | None = None,
    ):
        self.session = session
        self.meta = meta or RequestMeta()
        self.source = source
        self.source_upload_id = source_upload_id

    def _provenance(self) -> dict[str, Any]:
        return {
            "changed_by": self.meta.user_id,
            "ip_address": self.meta.ip_address,
            "user_agent": self.meta.user_agent,
            "source": self.source,
            "source_upload_id": self.source_upload_id,
        }

    # =========================================================================
    # Writes
    # =========================================================================

    def log_create(
        self,
        entity_type: str,
        entity_id: UUID,
        pet_id: UUID,
        new_values: dict[str, Any],
    ) -> AuditLog:
        entry = AuditLog.for_create(
            entity_type=entity_type,
            entity_id=entity_id,
            pet_id=pet_id,
            new_values=new_values,
            **self._provenance(),
        )
        self.session.add(entry)
        return entry

    def log_update(
        self,
        entity_type: str,
        entity_id: UUID,
        pet_id: UUID,
        old_values: dict[str, Any],
        new_values: dict[str, Any],
    ) -> AuditLog | None:
        """Add an update entry, or return None when nothing changed."""
        changed = compute_changed_fields(old_values, new_values)
        if not changed:
            logger.debug("Audit update skipped, no changes", entity_type=entity_type)
            return None
        entry = AuditLog.for_update(
            entity_type=entity_type,
            entity_id=entity_id,
            pet_id=pet_id,
            old_values=old_values,
            new_values=new_values,
            changed_fields=changed,
            **self._provenance(),
        )
        self.session.add(entry)
        return entry

    def log_delete(
        self,
        entity_type: str,
        entity_id: UUID,
        pet_id: UUID,
        old_values: dict[str, Any],
    ) -> AuditLog:
        entry = AuditLog.for_delete(
            entity_type=entity_type,
            entity_id=entity_id,
            pet_id=pet_id,
            old_values=old_values,
            **self._provenance(),
        )
        self.session.add(entry)
        return entry

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_for_pet(
        self,
        pet_id: UUID,
        entity_type: str | None = None,
        action: AuditAction | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> tuple[list[AuditLog], int]:
        """
        Entries for a pet, newest first.

        Returns:
            (entries, total matching entries)
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)

        filters = [AuditLog.pet_id == pet_id]
        if entity_type:
            filters.append(AuditLog.entity_type == entity_type)
        if action:
            filters.append(AuditLog.action == action)

        total = await self.session.scalar(select(func.count()).select_from(AuditLog).where(*filters))

        result = await self.session.execute(
            select(AuditLog)
            .where(*filters)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def list_for_record(
        self,
        entity_type: str,
        entity_id: UUID,
        pet_id: UUID | None = None,
    ) -> list[AuditLog]:
        """Full history of one record, newest first."""
        filters = [AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id]
        if pet_id is not None:
            filters.append(AuditLog.pet_id == pet_id)
        result = await self.session.execute(
            select(AuditLog)
            .where(*filters)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        )
        return list(result.scalars().all())

    async def list_for_upload(self, upload_id: UUID) -> list[AuditLog]:
        """Every change produced by one imported document, oldest first."""
        result = await self.session.execute(
            select(AuditLog)
            .where(AuditLog.source_upload_id == upload_id)
            .order_by(AuditLog.created_at, AuditLog.id)
        )
        return list(result.scalars().all())
