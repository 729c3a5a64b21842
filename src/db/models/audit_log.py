"""
AuditLog model for tracking health-record mutations.

Every create, update and delete on a health-record table produces one
entry, written in the same transaction as the mutation so the two commit or
roll back together.

Key features:
- Snapshots of the record before (old_values) and after (new_values)
- changed_fields for updates, so history views need not diff snapshots
- Provenance: who (changed_by), how (source), from which upload, from where
  (ip_address, user_agent)
- Append-only (no update path; entries outlive the uploads they reference)

Usage:
    async with transaction(session):
        session.add(record)
        await session.flush()
        session.add(
            AuditLog.for_create(
                entity_type="pet_vaccinations",
                entity_id=record.id,
                pet_id=record.pet_id,
                new_values=record.data_values(),
                source=AuditSource.PDF_IMPORT,
            )
        )
"""

import uuid
from typing import Any

from sqlalchemy import CheckConstraint, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import JSONType, UUIDCreatedBase, enum_column
from src.db.enums import AuditAction, AuditSource


class AuditLog(UUIDCreatedBase):
    """
    Immutable audit entry for one health-record mutation.

    Attributes:
        id: UUID7 primary key (time-ordered; tiebreaker for created_at)
        pet_id: Pet whose record changed
        entity_type: Health-record table (e.g. "pet_medications")
        entity_id: Id of the affected record
        action: create, update or delete
        old_values: Record state before the action (None for create)
        new_values: Record state after the action (None for delete)
        changed_fields: Keys whose values differ (update only)
        changed_by: Acting user, if known
        source: manual or pdf_import
        source_upload_id: Upload that produced the change, for imports
        ip_address / user_agent: Request metadata of the acting client
        created_at: When the entry was written

    source_upload_id is deliberately not a foreign key: deleting an upload
    must leave its audit history intact.
    """

    pet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Pet whose record changed",
    )

    entity_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Health-record table name",
    )

    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        comment="Id of the affected record",
    )

    action: Mapped[AuditAction] = mapped_column(
        enum_column(AuditAction, length=10),
        nullable=False,
        comment="create, update or delete",
    )

    # === Data Snapshots ===
    old_values: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Record state before the action",
    )

    new_values: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Record state after the action",
    )

    changed_fields: Mapped[list[str] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Keys whose values differ (update only)",
    )

    # === Provenance ===
    changed_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Acting user",
    )

    source: Mapped[AuditSource] = mapped_column(
        enum_column(AuditSource, length=20),
        nullable=False,
        default=AuditSource.MANUAL,
        comment="manual or pdf_import",
    )

    source_upload_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
        comment="Upload that produced the change",
    )

    ip_address: Mapped[str | None] = mapped_column(
        String(45),
        nullable=True,
        comment="Client IP (v4 or v6)",
    )

    user_agent: Mapped[str | None] = mapped_column(
        String(512),
        nullable=True,
        comment="Client user agent",
    )

    __table_args__ = (
        CheckConstraint(
            "(action != 'create' OR old_values IS NULL) AND "
            "(action != 'delete' OR new_values IS NULL)",
            name="snapshot_shape",
        ),
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        Index("ix_audit_logs_pet_id_created_at", "pet_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(entity={self.entity_type}:{self.entity_id}, action={self.action.value})>"

    # === Factory Methods ===
    @classmethod
    def for_create(
        cls,
        entity_type: str,
        entity_id: uuid.UUID,
        pet_id: uuid.UUID,
        new_values: dict[str, Any],
        **provenance: Any,
    ) -> "AuditLog":
        """Entry for a newly created record."""
        return cls(
            entity_type=entity_type,
            entity_id=entity_id,
            pet_id=pet_id,
            action=AuditAction.CREATE,
            old_values=None,
            new_values=new_values,
            **provenance,
        )

    @classmethod
    def for_update(
        cls,
        entity_type: str,
        entity_id: uuid.UUID,
        pet_id: uuid.UUID,
        old_values: dict[str, Any],
        new_values: dict[str, Any],
        changed_fields: list[str],
        **provenance: Any,
    ) -> "AuditLog":
        """Entry for an update; caller supplies the computed changed_fields."""
        return cls(
            entity_type=entity_type,
            entity_id=entity_id,
            pet_id=pet_id,
            action=AuditAction.UPDATE,
            old_values=old_values,
            new_values=new_values,
            changed_fields=changed_fields,
            **provenance,
        )

    @classmethod
    def for_delete(
        cls,
        entity_type: str,
        entity_id: uuid.UUID,
        pet_id: uuid.UUID,
        old_values: dict[str, Any],
        **provenance: Any,
    ) -> "AuditLog":
        """Entry for a deleted record."""
        return cls(
            entity_type=entity_type,
            entity_id=entity_id,
            pet_id=pet_id,
            action=AuditAction.DELETE,
            old_values=old_values,
            new_values=None,
            **provenance,
        )
