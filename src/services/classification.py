"""
Document classification service.

Asks the model what kind of pet health document an upload is, how confident
it is, and roughly what it contains. Classification is read-only: it never
touches health records, and the result is advisory until the user confirms
the type before extraction.

Confidence is reported on a 0-100 scale and banded for presentation:
- high (>= 80): shown as a confident match
- medium (50-79): shown with the explanation
- low (< 50): always carries an explanation and a warning
"""

from dataclasses import dataclass, field
from typing import Any

from src.core.logging import get_logger
from src.db.enums import ConfidenceBand, DocumentType
from src.db.models import DocumentUpload
from src.schemas.documents import ClassificationResponse, ClassificationSummary
from src.services.llm_client import BaseLLMClient, LLMAttachment, LLMMessage
from src.services.parsing import parse_json_object

logger = get_logger(__name__)


# =============================================================================
# Prompts
# =============================================================================

CLASSIFICATION_SYSTEM_PROMPT = """You classify pet health documents (photos or PDFs).

Possible document types:
- vaccination_record: Vaccination certificates, immunization records, rabies tags with certificate
- visit_summary: Veterinary visit summaries, exam reports, discharge notes
- lab_results: Blood work, urinalysis, diagnostic test results
- prescription: Written prescriptions, refill authorizations
- medication_label: Prescription labels, medication bottles, drug packaging
- pet_id_tag: Microchip registration, ID tags, pet licenses
- other: Documents that don't fit other categories

Evaluate the document and provide:
1. The most likely document type
2. A confidence score from 0-100
3. A brief explanation of why you classified it this way
4. Counts of the health items you can see, by category
5. Alternative types it could be (if confidence < 80)

If confidence is below 50, explain what makes the document difficult to classify.
Only classify based on what you can actually see - do not guess.

Respond with ONLY a valid JSON object in this exact format:
{
  "document_type": "medication_label",
  "confidence": 85,
  "explanation": "Prescription label with drug name, dosage and pharmacy details",
  "summary": {
    "medications_count": 1,
    "conditions_count": 0,
    "vaccinations_count": 0,
    "allergies_count": 0
  },
  "alternative_types": ["prescription"],
  "pet_name": "Max"
}"""

LOW_CONFIDENCE_FALLBACK = (
    "The document could not be classified with confidence. "
    "Check the detected type before continuing."
)

LOW_CONFIDENCE_WARNING = (
    "Low confidence classification. Please confirm the document type before processing."
)

_SUMMARY_KEYS = ("medications_count", "conditions_count", "vaccinations_count", "allergies_count")


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class Classification:
    """Result of classifying one document."""

    document_type: DocumentType
    confidence: int
    explanation: str | None
    summary: dict[str, int]
    alternative_types: list[DocumentType] = field(default_factory=list)
    pet_name: str | None = None
    model: str | None = None
    tokens_used: int = 0

    @property
    def confidence_band(self) -> ConfidenceBand:
        return ConfidenceBand.for_score(self.confidence)


def clamp_confidence(value: Any) -> int:
    """Coerce model output to an integer in [0, 100]; unparseable becomes 0."""
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0
    if score != score:  # NaN
        return 0
    return max(0, min(100, round(score)))


def _count(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def classification_view(upload: DocumentUpload) -> ClassificationResponse | None:
    """Build the API view of the classification stored on an upload."""
    if upload.detected_document_type is None or upload.classification_confidence is None:
        return None
    band = ConfidenceBand.for_score(upload.classification_confidence)
    summary = upload.classification_summary or {}
    return ClassificationResponse(
        document_type=upload.detected_document_type,
        document_type_label=upload.detected_document_type.label,
        confidence=upload.classification_confidence,
        confidence_band=band,
        explanation=upload.classification_explanation,
        summary=ClassificationSummary(**{key: _count(summary.get(key)) for key in _SUMMARY_KEYS}),
        alternative_types=[DocumentType.from_string(t) for t in upload.classification_alternatives or []],
        pet_name=upload.detected_pet_name,
        warning=LOW_CONFIDENCE_WARNING if band == ConfidenceBand.LOW else None,
    )


# =============================================================================
# Classification Service
# =============================================================================


class ClassificationService:
    """
    Classifies raw document bytes with a multimodal LLM.

    Usage:
        async with get_llm_client() as llm:
            result = await ClassificationService(llm).classify(content, "image/jpeg")
    """

    def __init__(self, llm_client: BaseLLMClient, max_tokens: int = 1024):
        self.llm = llm_client
        self.max_tokens = max_tokens

    async def classify(self, content: bytes, mime_type: str) -> Classification:
        """
        Classify a document.

        Raises:
            LLMError: on upstream failure or unparseable output
        """
        messages = [
            LLMMessage(role="system", content=CLASSIFICATION_SYSTEM_PROMPT),
            LLMMessage(
                role="user",
                content="Classify this pet health document.",
                attachments=[LLMAttachment(data=content, mime_type=mime_type)],
            ),
        ]

        response = await self.llm.complete(messages, temperature=0.0, max_tokens=self.max_tokens)
        result = self.parse_response(response.content)
        result.model = response.model
        result.tokens_used = response.total_tokens

        logger.info(
            "Document classified",
            document_type=result.document_type.value,
            confidence=result.confidence,
            band=result.confidence_band.value,
        )
        return result

    def parse_response(self, text: str) -> Classification:
        """
        Normalize model output into a Classification.

        - unknown types map to ``other``
        - confidence is clamped to [0, 100]
        - negative or missing counts become 0
        - a low-confidence result without an explanation gets a fallback one
        """
        data = parse_json_object(text)

        raw_type = data.get("document_type")
        document_type = DocumentType.from_string(raw_type)
        if raw_type and document_type == DocumentType.OTHER and str(raw_type).lower() != "other":
            logger.warning("Unknown document type from model", raw_type=raw_type)

        confidence = clamp_confidence(data.get("confidence"))

        explanation = data.get("explanation")
        explanation = explanation.strip() if isinstance(explanation, str) else None
        if not explanation:
            explanation = None
        if ConfidenceBand.for_score(confidence) == ConfidenceBand.LOW and not explanation:
            explanation = LOW_CONFIDENCE_FALLBACK

        raw_summary = data.get("summary") or {}
        if not isinstance(raw_summary, dict):
            raw_summary = {}
        summary = {key: _count(raw_summary.get(key)) for key in _SUMMARY_KEYS}

        alternatives = []
        for alt in data.get("alternative_types") or []:
            alt_type = DocumentType.from_string(alt if isinstance(alt, str) else None)
            if alt_type != document_type and alt_type not in alternatives:
                alternatives.append(alt_type)

        pet_name = data.get("pet_name")

        return Classification(
            document_type=document_type,
            confidence=confidence,
            explanation=explanation,
            summary=summary,
            alternative_types=alternatives,
            pet_name=pet_name.strip()[:255] if isinstance(pet_name, str) and pet_name.strip() else None,
        )
