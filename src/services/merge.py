"""
Review and merge engine.

Applies the user's per-candidate decisions for one completed upload and
commits approved records into the pet's health records.

Guarantees:
- All-or-nothing: one transaction per approve request. Records, audit
  entries, candidate statuses and the upload's review stamp commit together.
- No silent duplicates: an approved candidate that matches an existing
  record (or one created earlier in the same batch) is reported as a
  conflict unless the decision names a resolution. Any unresolved conflict
  aborts the whole batch.
- Serialized per pet: merges for one pet hold a lock (Redis or in-process,
  plus a transaction-scoped advisory lock on PostgreSQL).
- One-shot: a reviewed upload is read-only history.

Duplicate rules are deliberately conservative (case- and
whitespace-insensitive):
- medication: same name, dosage equal or either missing, frequency equal or
  either missing; only active medications count
- vaccination: same name and same administered date
- condition: same name
- allergy: same allergen
- vet: same clinic name, vet name equal or either missing
- emergency contact: same name, or same phone digits
"""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import UUID

import pydantic
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import (
    InvalidStateError,
    MergeConflictError,
    PersistenceError,
    UploadValidationError,
)
from src.core.logging import get_logger
from src.db.base import utc_now
from src.db.enums import (
    AuditSource,
    CandidateStatus,
    ConflictResolution,
    RecordKind,
    ReviewDecision,
    UploadStatus,
)
from src.db.models import ExtractedRecord, HealthRecordMixin, model_for
from src.schemas.records import validate_record_data
from src.schemas.review import CandidateDecision
from src.services.audit import AuditLogger, RequestMeta
from src.services.registry import UploadRegistry
from src.services.storage import BlobStore
from src.workers.locks import pet_merge_lock

logger = get_logger(__name__)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class Conflict:
    """An approved candidate that duplicates an existing record."""

    candidate_id: UUID
    record_kind: RecordKind
    existing_record_id: UUID
    existing_values: dict[str, Any]
    candidate_values: dict[str, Any]
    matched_on: list[str]

    @property
    def message(self) -> str:
        label = (
            self.candidate_values.get("name")
            or self.candidate_values.get("allergen")
            or self.candidate_values.get("clinic_name")
            or self.record_kind.value
        )
        return f"A matching {self.record_kind.value.replace('_', ' ')} already exists: {label}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidate_id": str(self.candidate_id),
            "record_kind": self.record_kind.value,
            "existing_record_id": str(self.existing_record_id),
            "existing_values": self.existing_values,
            "candidate_values": self.candidate_values,
            "matched_on": self.matched_on,
            "message": self.message,
        }


@dataclass
class CommittedItem:
    """A health record created, updated or linked by the merge."""

    candidate_id: UUID
    record_kind: RecordKind
    record_id: UUID
    action: str  # "created", "updated" or "linked"

    @property
    def entity_type(self) -> str:
        return self.record_kind.table_name


@dataclass
class MergeResult:
    """Outcome of an approve request."""

    status: str  # "merged" or "conflict"
    committed: list[CommittedItem] = field(default_factory=list)
    rejected_candidate_ids: list[UUID] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.status == "conflict":
            return (
                f"{len(self.conflicts)} record(s) match existing health records. "
                "Choose keep_both, skip or update_existing for each to continue."
            )
        created = sum(1 for item in self.committed if item.action == "created")
        updated = sum(1 for item in self.committed if item.action == "updated")
        linked = sum(1 for item in self.committed if item.action == "linked")
        return (
            f"Imported {created} new record(s), updated {updated}, "
            f"kept {linked} existing; rejected {len(self.rejected_candidate_ids)}"
        )


# =============================================================================
# Duplicate detection
# =============================================================================


def _norm(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip().casefold()


def _digits(value: Any) -> str:
    return re.sub(r"\D", "", str(value or ""))


def _loose_equal(a: Any, b: Any) -> bool:
    """Equal after normalization, or either side missing."""
    a, b = _norm(a), _norm(b)
    return not a or not b or a == b


def match_fields(kind: RecordKind, candidate: dict[str, Any], existing: dict[str, Any]) -> list[str] | None:
    """
    Fields on which ``candidate`` duplicates ``existing``, or None if it does not.

    Both arguments are JSON-shaped record values (dates as ISO strings).
    """
    if kind == RecordKind.MEDICATION:
        if not existing.get("is_active", True):
            return None
        if _norm(candidate.get("name")) != _norm(existing.get("name")):
            return None
        if not _loose_equal(candidate.get("dosage"), existing.get("dosage")):
            return None
        if not _loose_equal(candidate.get("frequency"), existing.get("frequency")):
            return None
        matched = ["name"]
        matched += [f for f in ("dosage", "frequency") if _norm(candidate.get(f)) and _norm(existing.get(f))]
        return matched

    if kind == RecordKind.VACCINATION:
        if _norm(candidate.get("name")) != _norm(existing.get("name")):
            return None
        if _norm(candidate.get("administered_date")) != _norm(existing.get("administered_date")):
            return None
        return ["name", "administered_date"]

    if kind == RecordKind.CONDITION:
        if _norm(candidate.get("name")) == _norm(existing.get("name")):
            return ["name"]
        return None

    if kind == RecordKind.ALLERGY:
        if _norm(candidate.get("allergen")) == _norm(existing.get("allergen")):
            return ["allergen"]
        return None

    if kind == RecordKind.VET:
        if _norm(candidate.get("clinic_name")) != _norm(existing.get("clinic_name")):
            return None
        if not _loose_equal(candidate.get("vet_name"), existing.get("vet_name")):
            return None
        return ["clinic_name"]

    if kind == RecordKind.EMERGENCY_CONTACT:
        matched = []
        if _norm(candidate.get("name")) and _norm(candidate.get("name")) == _norm(existing.get("name")):
            matched.append("name")
        phone = _digits(candidate.get("phone"))
        if phone and phone == _digits(existing.get("phone")):
            matched.append("phone")
        return matched or None

    return None


def _to_columns(model: type[HealthRecordMixin], data: dict[str, Any]) -> dict[str, Any]:
    """JSON-shaped values -> column values (ISO strings become dates)."""
    values = {}
    for name in model.data_fields:
        value = data.get(name)
        if name in model.date_fields and isinstance(value, str):
            value = date.fromisoformat(value)
        values[name] = value
    return {k: v for k, v in values.items() if v is not None}


# =============================================================================
# Merge Engine
# =============================================================================


class ReviewMergeEngine:
    """
    Commits reviewed candidates into health records.

    Usage:
        engine = ReviewMergeEngine(db, blob_store)
        result = await engine.approve(pet_id, upload_id, decisions, RequestMeta(user_id=user_id))
    """

    def __init__(self, session: AsyncSession, blob_store: BlobStore):
        self.session = session
        self.registry = UploadRegistry(session, blob_store)

    async def _pool(
        self,
        pools: dict[RecordKind, list[HealthRecordMixin]],
        pet_id: UUID,
        kind: RecordKind,
    ) -> list[HealthRecordMixin]:
        """Existing records of ``kind`` for the pet, loaded once per batch."""
        if kind not in pools:
            model = model_for(kind)
            result = await self.session.execute(
                select(model).where(model.pet_id == pet_id).order_by(model.created_at, model.id)
            )
            pools[kind] = list(result.scalars().all())
        return pools[kind]

    async def _advisory_lock(self, pet_id: UUID) -> None:
        if self.session.get_bind().dialect.name == "postgresql":
            await self.session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": f"merge:{pet_id}"},
            )

    async def _create_record(
        self,
        kind: RecordKind,
        pet_id: UUID,
        upload_id: UUID,
        data: dict[str, Any],
        audit: AuditLogger,
    ) -> HealthRecordMixin:
        model = model_for(kind)
        record = model(pet_id=pet_id, source_upload_id=upload_id, **_to_columns(model, data))
        self.session.add(record)
        await self.session.flush()
        audit.log_create(kind.table_name, record.id, pet_id, record.data_values())
        return record

    async def _update_record(
        self,
        record: HealthRecordMixin,
        data: dict[str, Any],
        audit: AuditLogger,
    ) -> None:
        old_values = record.data_values()
        for name, value in _to_columns(type(record), data).items():
            setattr(record, name, value)
        await self.session.flush()
        audit.log_update(
            record.record_kind.table_name,
            record.id,
            record.pet_id,
            old_values,
            record.data_values(),
        )

    def _validate(
        self,
        candidates: list[ExtractedRecord],
        decisions: list[CandidateDecision],
    ) -> tuple[list[tuple[ExtractedRecord, CandidateDecision, dict[str, Any]]], list[ExtractedRecord]]:
        """Split candidates into approved (with validated data) and rejected."""
        by_id = {c.id: c for c in candidates}
        unknown = [str(d.candidate_id) for d in decisions if d.candidate_id not in by_id]
        if unknown:
            raise UploadValidationError(
                "Decisions reference unknown extracted records",
                details={"candidate_ids": unknown},
            )

        decision_map = {d.candidate_id: d for d in decisions}
        approved = []
        rejected = []
        errors: dict[str, Any] = {}
        for candidate in candidates:
            decision = decision_map.get(candidate.id)
            if decision is None or not decision.decision.is_approval:
                rejected.append(candidate)
                continue
            data = decision.data if decision.decision == ReviewDecision.APPROVE_WITH_EDITS else candidate.data
            try:
                approved.append((candidate, decision, validate_record_data(candidate.record_kind, data or {})))
            except pydantic.ValidationError as e:
                errors[str(candidate.id)] = e.errors(include_url=False, include_context=False, include_input=False)

        if errors:
            raise UploadValidationError(
                "Some approved records are incomplete or invalid. Edit them and try again.",
                details={"candidates": errors},
            )
        return approved, rejected

    async def approve(
        self,
        pet_id: UUID,
        upload_id: UUID,
        decisions: list[CandidateDecision],
        meta: RequestMeta | None = None,
        raise_on_conflict: bool = False,
    ) -> MergeResult:
        """
        Apply decisions and commit approved records.

        Candidates without a decision are rejected.

        Raises:
            NotFoundError: unknown upload
            InvalidStateError: upload not completed or already reviewed
            UploadValidationError: unknown candidate ids or invalid data
            MergeConflictError: only with ``raise_on_conflict``
            PersistenceError: database failure; nothing was committed
        """
        meta = meta or RequestMeta()

        async with pet_merge_lock(pet_id):
            upload, candidates = await self.registry.get_candidates(pet_id, upload_id)
            if upload.status != UploadStatus.COMPLETED:
                raise InvalidStateError(
                    "Only processed documents can be approved",
                    details={"status": upload.status.value},
                )
            if upload.is_reviewed:
                raise InvalidStateError("This document has already been reviewed")

            pending = [c for c in candidates if c.status == CandidateStatus.PENDING]
            approved, rejected = self._validate(pending, decisions)

            audit = AuditLogger(
                self.session,
                meta=meta,
                source=AuditSource.PDF_IMPORT,
                source_upload_id=upload_id,
            )
            result = MergeResult(status="merged")

            try:
                await self._advisory_lock(pet_id)
                pools: dict[RecordKind, list[HealthRecordMixin]] = {}

                for candidate, decision, data in approved:
                    kind = candidate.record_kind
                    pool = await self._pool(pools, pet_id, kind)

                    match = None
                    for existing in pool:
                        matched_on = match_fields(kind, data, existing.data_values())
                        if matched_on:
                            match = (existing, matched_on)
                            break

                    if match and decision.on_conflict is None:
                        existing, matched_on = match
                        result.conflicts.append(
                            Conflict(
                                candidate_id=candidate.id,
                                record_kind=kind,
                                existing_record_id=existing.id,
                                existing_values=existing.data_values(),
                                candidate_values=data,
                                matched_on=matched_on,
                            )
                        )
                        continue

                    if match and decision.on_conflict == ConflictResolution.SKIP:
                        record, action = match[0], "linked"
                    elif match and decision.on_conflict == ConflictResolution.UPDATE_EXISTING:
                        record, action = match[0], "updated"
                        await self._update_record(record, data, audit)
                    else:
                        record, action = await self._create_record(kind, pet_id, upload_id, data, audit), "created"
                        pool.append(record)

                    candidate.status = CandidateStatus.APPROVED
                    candidate.committed_record_id = record.id
                    if decision.decision == ReviewDecision.APPROVE_WITH_EDITS:
                        candidate.data = data
                        candidate.user_edited = True
                    result.committed.append(
                        CommittedItem(candidate_id=candidate.id, record_kind=kind, record_id=record.id, action=action)
                    )

                if result.conflicts:
                    await self.session.rollback()
                    result.status = "conflict"
                    result.committed = []
                    logger.info(
                        "Merge blocked by conflicts",
                        upload_id=str(upload_id),
                        conflicts=len(result.conflicts),
                    )
                    if raise_on_conflict:
                        raise MergeConflictError([c.to_dict() for c in result.conflicts])
                    return result

                for candidate in rejected:
                    candidate.status = CandidateStatus.REJECTED
                    result.rejected_candidate_ids.append(candidate.id)

                upload.reviewed_at = utc_now()
                upload.reviewed_by = meta.user_id
                await self.session.commit()
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error(
                    "Merge failed, rolled back",
                    upload_id=str(upload_id),
                    pet_id=str(pet_id),
                    error=str(e),
                    exc_info=e,
                )
                raise PersistenceError("Could not save the approved records. Nothing was changed.") from e

        logger.info(
            "Merge committed",
            upload_id=str(upload_id),
            pet_id=str(pet_id),
            committed=len(result.committed),
            rejected=len(result.rejected_candidate_ids),
        )
        return result
