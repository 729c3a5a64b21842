"""
Health record extraction service.

This module turns a classified document into candidate health records:
the model reads the file, returns items tagged with a record type, and each
item is mapped onto the field set of its health-record table.

Features:
- Type-aware prompting: the confirmed or confidently-detected document type
  steers the model toward the record kinds that document usually carries
- Per-kind field mapping with defaults (medications active, vets/contacts
  not primary) and unknown keys dropped
- Date normalization to YYYY-MM-DD
- Review flags for low confidence, missing required fields and unparseable
  dates
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from src.core.config import settings
from src.core.logging import get_logger
from src.db.enums import DocumentType, RecordKind
from src.db.models import model_for
from src.services.llm_client import BaseLLMClient, LLMAttachment, LLMMessage, LLMParseError
from src.services.parsing import parse_json_object

logger = get_logger(__name__)


# =============================================================================
# Prompts
# =============================================================================

EXTRACTION_SYSTEM_PROMPT = """You extract pet health records from veterinary documents (photos or PDFs).

For each piece of information found, categorize it into one of these record types:
- vaccination: name, administered_date, expiration_date, administered_by, lot_number
- medication: name, dosage, frequency, start_date, end_date, prescribing_vet, notes, is_active
- condition: name, diagnosed_date, severity, notes
- allergy: allergen, reaction, severity
- vet: clinic_name, vet_name, phone, email, address, is_primary
- emergency_contact: name, relationship, phone, email, is_primary

For each extracted item, provide a confidence score from 0.0 to 1.0:
- 1.0: Information is clearly and explicitly stated
- 0.8-0.9: Clearly stated with minor ambiguity
- 0.5-0.7: Inferred or partially legible
- Below 0.5: Unclear or guessed

Field formats:
- Dates in YYYY-MM-DD format, or null if not available
- severity for conditions: "mild", "moderate" or "severe"
- severity for allergies: "mild", "moderate", "severe" or "life-threatening"
- is_active is true for current prescriptions
- is_primary is true if this appears to be the pet's primary vet or contact

Only extract information that is actually present in the document.
Do not make up or assume information.
If no relevant health information is found, return an empty items array.

Respond with ONLY a valid JSON object in this exact format:
{
  "pet_name": "Max",
  "items": [
    {
      "record_type": "vaccination",
      "data": {"name": "Rabies", "administered_date": "2024-01-15", "expiration_date": "2025-01-15"},
      "confidence": 0.95
    }
  ]
}"""

# Record kinds each document type usually carries, used to steer the model
DOCUMENT_TYPE_FOCUS: dict[DocumentType, tuple[RecordKind, ...]] = {
    DocumentType.VACCINATION_RECORD: (RecordKind.VACCINATION, RecordKind.VET),
    DocumentType.VISIT_SUMMARY: (
        RecordKind.CONDITION,
        RecordKind.MEDICATION,
        RecordKind.VACCINATION,
        RecordKind.VET,
    ),
    DocumentType.LAB_RESULTS: (RecordKind.CONDITION,),
    DocumentType.PRESCRIPTION: (RecordKind.MEDICATION, RecordKind.VET),
    DocumentType.MEDICATION_LABEL: (RecordKind.MEDICATION,),
    DocumentType.PET_ID_TAG: (RecordKind.EMERGENCY_CONTACT, RecordKind.VET),
    DocumentType.OTHER: (),
}

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%m/%d/%y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%Y-%m-%dT%H:%M:%S",
)

_BOOL_FIELDS = {"is_active", "is_primary"}
_BOOL_DEFAULTS = {"is_active": True, "is_primary": False}


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ExtractedItem:
    """One candidate record, already mapped onto its record kind's fields."""

    kind: RecordKind
    data: dict[str, Any]
    confidence: float
    needs_review: bool = False
    field_flags: list[str] = field(default_factory=list)


@dataclass
class ExtractionResult:
    """All items extracted from one document."""

    items: list[ExtractedItem] = field(default_factory=list)
    pet_name: str | None = None
    model: str | None = None
    tokens_used: int = 0
    dropped_items: int = 0

    @property
    def counts(self) -> dict[RecordKind, int]:
        counts = {kind: 0 for kind in RecordKind}
        for item in self.items:
            counts[item.kind] += 1
        return counts

    @property
    def summary(self) -> str:
        return summarize_counts(self.counts)


# =============================================================================
# Normalization helpers
# =============================================================================


_PLURALS = {
    RecordKind.MEDICATION: ("medication", "medications"),
    RecordKind.VACCINATION: ("vaccination", "vaccinations"),
    RecordKind.CONDITION: ("condition", "conditions"),
    RecordKind.ALLERGY: ("allergy", "allergies"),
    RecordKind.VET: ("vet", "vets"),
    RecordKind.EMERGENCY_CONTACT: ("emergency contact", "emergency contacts"),
}


def summarize_counts(counts: dict[RecordKind, int]) -> str:
    """
    Human summary of extracted items.

    Examples:
        "Found: 1 medication, 2 vaccinations"
        "No health records found"
    """
    parts = []
    for kind, (singular, plural) in _PLURALS.items():
        count = counts.get(kind, 0)
        if count > 0:
            parts.append(f"{count} {singular if count == 1 else plural}")
    if not parts:
        return "No health records found"
    return f"Found: {', '.join(parts)}"


def normalize_date(value: Any) -> str | None:
    """
    Normalize a date-like value to YYYY-MM-DD.

    Returns None for empty input. Raises ValueError when the value is present
    but not a recognizable date.
    """
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    if not text or text.lower() in {"null", "none", "n/a", "unknown"}:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized date: {text!r}")


def _normalize_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "y", "1", "active", "current"}:
            return True
        if lowered in {"false", "no", "n", "0", "inactive"}:
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def _normalize_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _clamp_unit(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if score != score:  # NaN
        return 0.0
    # Some models answer on a 0-100 scale
    if score > 1.0:
        score = score / 100.0
    return max(0.0, min(1.0, score))


# =============================================================================
# Extraction Service
# =============================================================================


class ExtractionService:
    """
    Extracts candidate health records from document bytes.

    Usage:
        async with get_llm_client() as llm:
            service = ExtractionService(llm)
            result = await service.extract(content, "application/pdf", DocumentType.PRESCRIPTION)
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        review_threshold: float | None = None,
        max_tokens: int | None = None,
    ):
        """
        Initialize extraction service.

        Args:
            llm_client: LLM client for extraction
            review_threshold: Items below this confidence are flagged for review
            max_tokens: Maximum tokens in the response
        """
        self.llm = llm_client
        self.review_threshold = (
            settings.review_confidence_threshold if review_threshold is None else review_threshold
        )
        self.max_tokens = max_tokens or settings.llm_max_tokens

    # =========================================================================
    # Prompting
    # =========================================================================

    @staticmethod
    def type_hint(document_type: DocumentType | None) -> str:
        """Prompt suffix steering extraction toward the document type's record kinds."""
        if document_type is None or document_type == DocumentType.OTHER:
            return ""
        hint = f"This appears to be a {document_type.label.lower()}."
        focus = DOCUMENT_TYPE_FOCUS.get(document_type, ())
        if focus:
            kinds = ", ".join(kind.value for kind in focus)
            hint += (
                f" Focus on {kinds} records, but include any other health records present."
            )
        return hint

    async def extract(
        self,
        content: bytes,
        mime_type: str,
        document_type: DocumentType | None = None,
    ) -> ExtractionResult:
        """
        Extract candidate records from a document.

        Args:
            content: Raw file bytes
            mime_type: Verified MIME type
            document_type: Type hint; pass None to extract without steering

        Raises:
            LLMError: on upstream failure or unparseable output
        """
        prompt = "Extract all pet health records from this document."
        hint = self.type_hint(document_type)
        if hint:
            prompt = f"{prompt}\n\n{hint}"

        messages = [
            LLMMessage(role="system", content=EXTRACTION_SYSTEM_PROMPT),
            LLMMessage(
                role="user",
                content=prompt,
                attachments=[LLMAttachment(data=content, mime_type=mime_type)],
            ),
        ]

        response = await self.llm.complete(messages, temperature=0.0, max_tokens=self.max_tokens)

        result = self.parse_response(response.content)
        result.model = response.model
        result.tokens_used = response.total_tokens

        logger.info(
            "Records extracted",
            document_type=document_type.value if document_type else None,
            items=len(result.items),
            needs_review=sum(1 for item in result.items if item.needs_review),
            dropped=result.dropped_items,
        )
        return result

    # =========================================================================
    # Parsing and Mapping
    # =========================================================================

    def parse_response(self, text: str) -> ExtractionResult:
        """Parse model output; items of unknown kind are dropped with a warning."""
        data = parse_json_object(text)

        raw_items = data.get("items", [])
        if not isinstance(raw_items, list):
            raise LLMParseError("'items' must be a list")

        result = ExtractionResult()
        pet_name = data.get("pet_name")
        if isinstance(pet_name, str) and pet_name.strip():
            result.pet_name = pet_name.strip()

        for raw in raw_items:
            if not isinstance(raw, dict):
                result.dropped_items += 1
                continue
            kind = RecordKind.from_string(raw.get("record_type"))
            if kind is None:
                logger.warning("Unknown record type from model", record_type=raw.get("record_type"))
                result.dropped_items += 1
                continue
            raw_data = raw.get("data")
            if not isinstance(raw_data, dict):
                result.dropped_items += 1
                continue
            result.items.append(self.map_item(kind, raw_data, raw.get("confidence")))

        return result

    def map_item(self, kind: RecordKind, raw_data: dict[str, Any], confidence: Any) -> ExtractedItem:
        """Map raw model fields onto the record kind's field set and flag problems."""
        model = model_for(kind)
        data: dict[str, Any] = {}
        flags: list[str] = []

        for name in model.data_fields:
            value = raw_data.get(name)
            if name in model.date_fields:
                try:
                    data[name] = normalize_date(value)
                except ValueError:
                    data[name] = None
                    flags.append(name)
            elif name in _BOOL_FIELDS:
                data[name] = _normalize_bool(value, _BOOL_DEFAULTS[name])
            else:
                data[name] = _normalize_text(value)

        for name in model.required_fields:
            if not data.get(name) and name not in flags:
                flags.append(name)

        score = _clamp_unit(confidence)
        return ExtractedItem(
            kind=kind,
            data=data,
            confidence=score,
            needs_review=bool(flags) or score < self.review_threshold,
            field_flags=flags,
        )
