"""
Controlled vocabulary enums for the document import pipeline.

This module defines the allowed values for:
- Upload statuses and the transitions between them
- Document types the classifier may return
- Health record kinds the extractor may produce
- Review decisions and conflict resolutions
- Audit actions and sources

All enums are ``str`` enums so they serialize directly into JSON payloads
and database columns.
"""

from enum import Enum


class UploadStatus(str, Enum):
    """
    Processing status of a document upload.

    Lifecycle::

        PENDING -> CLASSIFYING -> CLASSIFIED -> PROCESSING -> COMPLETED
           |            |                          |
           |            +-> FAILED <---------------+
           +--------------------------------> PROCESSING
        FAILED -> CLASSIFYING | PROCESSING   (manual retry)

    Deletion is allowed from any status and is not modelled as a state.
    """

    PENDING = "pending"
    CLASSIFYING = "classifying"
    CLASSIFIED = "classified"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_in_flight(self) -> bool:
        """A classify or process run currently holds this upload."""
        return self in {UploadStatus.CLASSIFYING, UploadStatus.PROCESSING}

    def can_transition_to(self, target: "UploadStatus") -> bool:
        """Check a transition against the central table."""
        return target in _TRANSITIONS[self]

    @classmethod
    def sources_for(cls, target: "UploadStatus") -> set["UploadStatus"]:
        """All statuses from which ``target`` may be entered."""
        return {status for status, targets in _TRANSITIONS.items() if target in targets}

    @classmethod
    def values(cls) -> list[str]:
        """Return list of all valid status values."""
        return [member.value for member in cls]


_TRANSITIONS: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.PENDING: frozenset({UploadStatus.CLASSIFYING, UploadStatus.PROCESSING}),
    UploadStatus.CLASSIFYING: frozenset({UploadStatus.CLASSIFIED, UploadStatus.FAILED}),
    UploadStatus.CLASSIFIED: frozenset({UploadStatus.PROCESSING}),
    UploadStatus.PROCESSING: frozenset({UploadStatus.COMPLETED, UploadStatus.FAILED}),
    UploadStatus.COMPLETED: frozenset(),
    UploadStatus.FAILED: frozenset({UploadStatus.CLASSIFYING, UploadStatus.PROCESSING}),
}


class DocumentType(str, Enum):
    """Document categories the classifier can detect."""

    VACCINATION_RECORD = "vaccination_record"
    VISIT_SUMMARY = "visit_summary"
    LAB_RESULTS = "lab_results"
    PRESCRIPTION = "prescription"
    MEDICATION_LABEL = "medication_label"
    PET_ID_TAG = "pet_id_tag"
    OTHER = "other"

    @classmethod
    def from_string(cls, value: str | None) -> "DocumentType":
        """
        Convert model output to a DocumentType.

        Handles case, spaces and hyphens ("Vaccination Record" ->
        VACCINATION_RECORD). Unknown values map to OTHER rather than failing,
        since the type is advisory and the user confirms it before processing.
        """
        if not value:
            return cls.OTHER
        normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
        for member in cls:
            if member.value == normalized:
                return member
        return cls.OTHER

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    @classmethod
    def values(cls) -> list[str]:
        """Return list of all valid document type values."""
        return [member.value for member in cls]


class MediaType(str, Enum):
    """Coarse media category; drives size limits and how bytes reach the model."""

    PDF = "pdf"
    IMAGE = "image"


class RecordKind(str, Enum):
    """
    Kinds of health record the extractor produces and the merge engine writes.

    Each kind maps to exactly one health-record table, which is also the
    ``entity_type`` written to the audit log.
    """

    MEDICATION = "medication"
    CONDITION = "condition"
    ALLERGY = "allergy"
    VACCINATION = "vaccination"
    VET = "vet"
    EMERGENCY_CONTACT = "emergency_contact"

    @property
    def table_name(self) -> str:
        return _RECORD_TABLES[self]

    @classmethod
    def from_string(cls, value: str | None) -> "RecordKind | None":
        """Normalize model output ("Medications", "emergency-contact"); None if unknown."""
        if not value:
            return None
        normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
        for member in cls:
            if normalized in (member.value, f"{member.value}s"):
                return member
        return None

    @classmethod
    def values(cls) -> list[str]:
        """Return list of all valid record kind values."""
        return [member.value for member in cls]


_RECORD_TABLES: dict[RecordKind, str] = {
    RecordKind.MEDICATION: "pet_medications",
    RecordKind.CONDITION: "pet_conditions",
    RecordKind.ALLERGY: "pet_allergies",
    RecordKind.VACCINATION: "pet_vaccinations",
    RecordKind.VET: "pet_vets",
    RecordKind.EMERGENCY_CONTACT: "pet_emergency_contacts",
}


class ConfidenceBand(str, Enum):
    """Presentation band for a 0-100 classification score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def for_score(cls, confidence: int | float) -> "ConfidenceBand":
        """>=80 high, 50-79 medium, <50 low."""
        if confidence >= 80:
            return cls.HIGH
        if confidence >= 50:
            return cls.MEDIUM
        return cls.LOW


class CandidateStatus(str, Enum):
    """Review status of one extracted record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewDecision(str, Enum):
    """User decision for one candidate in an approve request."""

    APPROVE = "approve"
    APPROVE_WITH_EDITS = "approve_with_edits"
    REJECT = "reject"

    @property
    def is_approval(self) -> bool:
        return self != ReviewDecision.REJECT


class ConflictResolution(str, Enum):
    """How to treat an approved candidate that duplicates an existing record."""

    KEEP_BOTH = "keep_both"
    SKIP = "skip"
    UPDATE_EXISTING = "update_existing"


class AuditAction(str, Enum):
    """Mutation recorded by an audit entry."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class AuditSource(str, Enum):
    """Where a health-record mutation originated."""

    MANUAL = "manual"
    PDF_IMPORT = "pdf_import"
