"""Initial schema - create document import and health record tables.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

This migration creates the complete document import schema:
- document_uploads: Uploaded files and their processing state
- extracted_records: Candidate health records awaiting review
- pet_vaccinations, pet_medications, pet_conditions, pet_allergies,
  pet_vets, pet_emergency_contacts: Permanent health records
- audit_logs: Append-only history of health-record mutations

Enum-valued columns are stored as VARCHAR (validated in the application),
so adding a status or record kind needs no ALTER TYPE.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column("id", sa.UUID(), nullable=False, comment="UUID7 primary key")


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
            comment="When the row was created",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
            comment="When the row was last updated",
        ),
    ]


def _health_record_columns() -> list[sa.Column]:
    return [
        sa.Column("pet_id", sa.UUID(), nullable=False, comment="Pet the record belongs to"),
        sa.Column(
            "source_upload_id",
            sa.UUID(),
            nullable=True,
            comment="Upload the record was imported from, if any",
        ),
    ]


def _create_health_record_table(name: str, *columns: sa.Column) -> None:
    op.create_table(
        name,
        _id_column(),
        *_health_record_columns(),
        *columns,
        *_timestamp_columns(),
        sa.ForeignKeyConstraint(
            ["source_upload_id"],
            ["document_uploads.id"],
            name=f"fk_{name}_source_upload_id_document_uploads",
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=f"pk_{name}"),
    )
    op.create_index(f"ix_{name}_pet_id", name, ["pet_id"], unique=False)


def upgrade() -> None:
    """Create all tables, indexes, and constraints."""

    # ==========================================================================
    # Create Tables
    # ==========================================================================

    # --------------------------------------------------------------------------
    # document_uploads table
    # --------------------------------------------------------------------------
    op.create_table(
        "document_uploads",
        _id_column(),
        sa.Column("pet_id", sa.UUID(), nullable=False, comment="Pet the document belongs to"),
        sa.Column("uploaded_by", sa.UUID(), nullable=True, comment="User who uploaded the document"),
        sa.Column("original_filename", sa.String(length=255), nullable=False, comment="Client-supplied filename"),
        sa.Column(
            "mime_type",
            sa.String(length=100),
            nullable=False,
            comment="MIME type, verified against the file signature",
        ),
        sa.Column("media_type", sa.String(length=10), nullable=False, comment="pdf or image"),
        sa.Column("file_size_bytes", sa.BigInteger(), nullable=False, comment="Size of the stored file in bytes"),
        sa.Column("storage_key", sa.String(length=512), nullable=False, comment="Blob store key for the raw file"),
        sa.Column(
            "status",
            sa.String(length=20),
            nullable=False,
            comment="pending, classifying, classified, processing, completed, failed",
        ),
        sa.Column("error_message", sa.Text(), nullable=True, comment="User-facing failure reason (only when failed)"),
        sa.Column("task_id", sa.String(length=255), nullable=True, comment="Background task id for the in-flight run"),
        sa.Column(
            "detected_document_type",
            sa.String(length=32),
            nullable=True,
            comment="Classifier's document type guess",
        ),
        sa.Column("classification_confidence", sa.Integer(), nullable=True, comment="Classifier confidence, 0-100"),
        sa.Column("classification_explanation", sa.Text(), nullable=True, comment="Classifier rationale"),
        sa.Column(
            "classification_summary",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Item counts seen during classification",
        ),
        sa.Column(
            "classification_alternatives",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Other document types the classifier considered",
        ),
        sa.Column("detected_pet_name", sa.String(length=255), nullable=True, comment="Pet name read from the document"),
        sa.Column(
            "confirmed_document_type",
            sa.String(length=32),
            nullable=True,
            comment="Document type confirmed by the user before extraction",
        ),
        sa.Column(
            "extraction_model",
            sa.String(length=100),
            nullable=True,
            comment="Model that produced the current candidates",
        ),
        sa.Column("tokens_used", sa.Integer(), nullable=True, comment="Total tokens consumed by the last extraction"),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "reviewed_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="When the extraction was approved; upload is read-only afterwards",
        ),
        sa.Column("reviewed_by", sa.UUID(), nullable=True, comment="User who approved the extraction"),
        *_timestamp_columns(),
        sa.CheckConstraint(
            "classification_confidence IS NULL OR "
            "(classification_confidence >= 0 AND classification_confidence <= 100)",
            name="ck_document_uploads_confidence_range",
        ),
        sa.CheckConstraint(
            "(status = 'failed') = (error_message IS NOT NULL)",
            name="ck_document_uploads_error_iff_failed",
        ),
        sa.CheckConstraint("file_size_bytes > 0", name="ck_document_uploads_file_size_positive"),
        sa.PrimaryKeyConstraint("id", name="pk_document_uploads"),
        sa.UniqueConstraint("storage_key", name="uq_document_uploads_storage_key"),
    )
    op.create_index("ix_document_uploads_pet_id", "document_uploads", ["pet_id"], unique=False)
    op.create_index("ix_document_uploads_status", "document_uploads", ["status"], unique=False)
    op.create_index(
        "ix_document_uploads_pet_id_created_at",
        "document_uploads",
        ["pet_id", "created_at"],
        unique=False,
    )

    # --------------------------------------------------------------------------
    # extracted_records table
    # --------------------------------------------------------------------------
    op.create_table(
        "extracted_records",
        _id_column(),
        sa.Column("upload_id", sa.UUID(), nullable=False, comment="Upload this candidate was extracted from"),
        sa.Column("pet_id", sa.UUID(), nullable=False, comment="Pet the candidate would be merged into"),
        sa.Column("record_kind", sa.String(length=30), nullable=False, comment="Target health record kind"),
        sa.Column(
            "data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            comment="Field values shaped like the target health record",
        ),
        sa.Column("confidence", sa.Float(), nullable=False, comment="Extractor confidence, 0.0-1.0"),
        sa.Column("needs_review", sa.Boolean(), nullable=False, comment="Low confidence or ambiguous fields"),
        sa.Column(
            "field_flags",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            comment="Fields that are missing or could not be normalized",
        ),
        sa.Column("user_edited", sa.Boolean(), nullable=False, comment="Data was changed by the user"),
        sa.Column("status", sa.String(length=20), nullable=False, comment="pending, approved, rejected"),
        sa.Column(
            "committed_record_id",
            sa.UUID(),
            nullable=True,
            comment="Health record created (or matched) on approval",
        ),
        *_timestamp_columns(),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 1",
            name="ck_extracted_records_confidence_range",
        ),
        sa.ForeignKeyConstraint(
            ["upload_id"],
            ["document_uploads.id"],
            name="fk_extracted_records_upload_id_document_uploads",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_extracted_records"),
    )
    op.create_index("ix_extracted_records_upload_id", "extracted_records", ["upload_id"], unique=False)
    op.create_index(
        "ix_extracted_records_upload_id_record_kind",
        "extracted_records",
        ["upload_id", "record_kind"],
        unique=False,
    )

    # --------------------------------------------------------------------------
    # Health record tables
    # --------------------------------------------------------------------------
    _create_health_record_table(
        "pet_vaccinations",
        sa.Column("name", sa.String(length=255), nullable=False, comment="Vaccine name"),
        sa.Column("administered_date", sa.Date(), nullable=True),
        sa.Column("expiration_date", sa.Date(), nullable=True),
        sa.Column("administered_by", sa.String(length=255), nullable=True),
        sa.Column("lot_number", sa.String(length=100), nullable=True),
    )
    _create_health_record_table(
        "pet_medications",
        sa.Column("name", sa.String(length=255), nullable=False, comment="Medication name"),
        sa.Column("dosage", sa.String(length=255), nullable=True),
        sa.Column("frequency", sa.String(length=255), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("prescribing_vet", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    _create_health_record_table(
        "pet_conditions",
        sa.Column("name", sa.String(length=255), nullable=False, comment="Condition name"),
        sa.Column("diagnosed_date", sa.Date(), nullable=True),
        sa.Column("severity", sa.String(length=50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    _create_health_record_table(
        "pet_allergies",
        sa.Column("allergen", sa.String(length=255), nullable=False, comment="Allergen"),
        sa.Column("reaction", sa.Text(), nullable=True),
        sa.Column("severity", sa.String(length=50), nullable=True),
    )
    _create_health_record_table(
        "pet_vets",
        sa.Column("clinic_name", sa.String(length=255), nullable=False, comment="Clinic name"),
        sa.Column("vet_name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    _create_health_record_table(
        "pet_emergency_contacts",
        sa.Column("name", sa.String(length=255), nullable=False, comment="Contact name"),
        sa.Column("relationship", sa.String(length=100), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    # --------------------------------------------------------------------------
    # audit_logs table
    # --------------------------------------------------------------------------
    op.create_table(
        "audit_logs",
        _id_column(),
        sa.Column("pet_id", sa.UUID(), nullable=False, comment="Pet whose record changed"),
        sa.Column("entity_type", sa.String(length=100), nullable=False, comment="Health-record table name"),
        sa.Column("entity_id", sa.UUID(), nullable=False, comment="Id of the affected record"),
        sa.Column("action", sa.String(length=10), nullable=False, comment="create, update or delete"),
        sa.Column(
            "old_values",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Record state before the action",
        ),
        sa.Column(
            "new_values",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Record state after the action",
        ),
        sa.Column(
            "changed_fields",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment="Keys whose values differ (update only)",
        ),
        sa.Column("changed_by", sa.UUID(), nullable=True, comment="Acting user"),
        sa.Column("source", sa.String(length=20), nullable=False, comment="manual or pdf_import"),
        # No FK: audit history outlives deleted uploads
        sa.Column("source_upload_id", sa.UUID(), nullable=True, comment="Upload that produced the change"),
        sa.Column("ip_address", sa.String(length=45), nullable=True, comment="Client IP (v4 or v6)"),
        sa.Column("user_agent", sa.String(length=512), nullable=True, comment="Client user agent"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
            comment="When the entry was written",
        ),
        sa.CheckConstraint(
            "(action != 'create' OR old_values IS NULL) AND "
            "(action != 'delete' OR new_values IS NULL)",
            name="ck_audit_logs_snapshot_shape",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_audit_logs"),
    )
    op.create_index("ix_audit_logs_pet_id", "audit_logs", ["pet_id"], unique=False)
    op.create_index("ix_audit_logs_source_upload_id", "audit_logs", ["source_upload_id"], unique=False)
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"], unique=False)
    op.create_index(
        "ix_audit_logs_pet_id_created_at",
        "audit_logs",
        ["pet_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    """Drop all tables in reverse order."""

    # Drop tables in reverse dependency order
    op.drop_table("audit_logs")
    op.drop_table("pet_emergency_contacts")
    op.drop_table("pet_vets")
    op.drop_table("pet_allergies")
    op.drop_table("pet_conditions")
    op.drop_table("pet_medications")
    op.drop_table("pet_vaccinations")
    op.drop_table("extracted_records")
    op.drop_table("document_uploads")
