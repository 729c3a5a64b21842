"""Unit tests for extraction service parsing and normalization logic."""

import json

import pytest

from src.db.enums import DocumentType, RecordKind
from src.services.extraction import ExtractionService, normalize_date, summarize_counts
from src.services.llm_client import LLMParseError, MockLLMClient


@pytest.fixture
def service() -> ExtractionService:
    return ExtractionService(MockLLMClient(), review_threshold=0.7)


# =============================================================================
# Date Normalization Tests
# =============================================================================


class TestNormalizeDate:
    """Tests for date normalization."""

    @pytest.mark.parametrize(
        "value",
        ["2024-03-01", "2024/03/01", "03/01/2024", "March 1, 2024", "1 Mar 2024", "2024-03-01T10:30:00"],
    )
    def test_known_formats(self, value: str) -> None:
        """Test common document date formats normalize to ISO."""
        assert normalize_date(value) == "2024-03-01"

    def test_empty_values(self) -> None:
        """Test empty and placeholder values become None."""
        assert normalize_date(None) is None
        assert normalize_date("") is None
        assert normalize_date("N/A") is None

    def test_garbage_raises(self) -> None:
        """Test unrecognizable dates raise."""
        with pytest.raises(ValueError):
            normalize_date("sometime last spring")


# =============================================================================
# Response Parsing Tests
# =============================================================================


class TestParseResponse:
    """Tests for parsing extractor output."""

    def test_parses_items(self, service: ExtractionService) -> None:
        """Test items are mapped to their record kinds."""
        text = json.dumps({
            "pet_name": "Biscuit",
            "items": [
                {
                    "record_type": "vaccination",
                    "confidence": 0.95,
                    "data": {"name": "Rabies", "administered_date": "03/01/2024"},
                },
                {
                    "record_type": "medication",
                    "confidence": 0.9,
                    "data": {"name": "Carprofen", "dosage": "75mg", "frequency": "twice daily"},
                },
            ],
        })

        result = service.parse_response(text)

        assert result.pet_name == "Biscuit"
        assert [item.kind for item in result.items] == [RecordKind.VACCINATION, RecordKind.MEDICATION]
        vaccination = result.items[0]
        assert vaccination.data["administered_date"] == "2024-03-01"
        assert vaccination.needs_review is False
        assert result.items[1].data["is_active"] is True

    def test_markdown_wrapped_json(self, service: ExtractionService) -> None:
        """Test JSON inside a markdown code block is recovered."""
        text = '```json\n{"items": [{"record_type": "allergy", "confidence": 0.8, "data": {"allergen": "Chicken"}}]}\n```'
        result = service.parse_response(text)
        assert result.items[0].data["allergen"] == "Chicken"

    def test_unknown_kinds_are_dropped(self, service: ExtractionService) -> None:
        """Test unknown record types are counted, not stored."""
        text = json.dumps({
            "items": [
                {"record_type": "surgery", "confidence": 0.9, "data": {"name": "Spay"}},
                {"record_type": "condition", "confidence": 0.9, "data": {"name": "Otitis"}},
                "not an object",
            ]
        })
        result = service.parse_response(text)
        assert len(result.items) == 1
        assert result.dropped_items == 2

    def test_invalid_json_raises(self, service: ExtractionService) -> None:
        """Test unparseable output raises LLMParseError."""
        with pytest.raises(LLMParseError):
            service.parse_response("I could not read this document.")

    def test_summary(self, service: ExtractionService) -> None:
        """Test the human summary of an extraction."""
        text = json.dumps({
            "items": [
                {"record_type": "medication", "confidence": 0.9, "data": {"name": "Apoquel"}},
                {"record_type": "vaccination", "confidence": 0.9, "data": {"name": "Rabies"}},
                {"record_type": "vaccination", "confidence": 0.9, "data": {"name": "DHPP"}},
            ]
        })
        assert service.parse_response(text).summary == "Found: 1 medication, 2 vaccinations"


# =============================================================================
# Item Mapping Tests
# =============================================================================


class TestMapItem:
    """Tests for mapping and flagging individual items."""

    def test_low_confidence_needs_review(self, service: ExtractionService) -> None:
        """Test items under the threshold are flagged for review."""
        item = service.map_item(RecordKind.CONDITION, {"name": "Otitis"}, 0.4)
        assert item.needs_review is True
        assert item.field_flags == []

    def test_percent_scale_confidence(self, service: ExtractionService) -> None:
        """Test 0-100 confidences are rescaled."""
        item = service.map_item(RecordKind.CONDITION, {"name": "Otitis"}, 85)
        assert item.confidence == pytest.approx(0.85)

    def test_bad_date_is_flagged(self, service: ExtractionService) -> None:
        """Test unparseable dates are cleared and flagged."""
        item = service.map_item(
            RecordKind.VACCINATION,
            {"name": "Rabies", "administered_date": "smudged"},
            0.95,
        )
        assert item.data["administered_date"] is None
        assert item.field_flags == ["administered_date"]
        assert item.needs_review is True

    def test_missing_required_field_is_flagged(self, service: ExtractionService) -> None:
        """Test missing required fields are flagged."""
        item = service.map_item(RecordKind.VET, {"vet_name": "Dr. Patel"}, 0.9)
        assert "clinic_name" in item.field_flags
        assert item.needs_review is True

    def test_unknown_fields_are_ignored(self, service: ExtractionService) -> None:
        """Test only the record kind's fields are kept."""
        item = service.map_item(RecordKind.ALLERGY, {"allergen": "Beef", "color": "red"}, 0.9)
        assert set(item.data) == {"allergen", "reaction", "severity"}


# =============================================================================
# Prompt Hints and Summaries
# =============================================================================


class TestHintsAndSummaries:
    """Tests for type hints and summary text."""

    def test_type_hint_focuses_on_kinds(self) -> None:
        """Test a document type steers toward its record kinds."""
        hint = ExtractionService.type_hint(DocumentType.VACCINATION_RECORD)
        assert "vaccination record" in hint
        assert "vaccination" in hint

    def test_no_hint_for_other_or_none(self) -> None:
        """Test no steering without a useful type."""
        assert ExtractionService.type_hint(None) == ""
        assert ExtractionService.type_hint(DocumentType.OTHER) == ""

    def test_empty_summary(self) -> None:
        """Test the summary when nothing was found."""
        assert summarize_counts({}) == "No health records found"

    async def test_extract_uses_mock_default(self) -> None:
        """Test the end-to-end extract call against the mock client."""
        async with MockLLMClient() as llm:
            result = await ExtractionService(llm).extract(b"%PDF-1.4", "application/pdf", None)
        assert len(result.items) == 1
        assert result.items[0].data["name"] == "Rabies"
        assert result.tokens_used == 150
        assert result.model == "mock-model"
