"""Unit tests for upload validation and request schemas."""

import pydantic
import pytest
from uuid6 import uuid7

from src.core.exceptions import FileTooLargeError, UploadValidationError
from src.db.enums import MediaType, RecordKind, ReviewDecision
from src.schemas import ApproveRequest, CandidateDecision, validate_record_data
from src.services.registry import sniff_mime_type, validate_upload

JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 32
PDF = b"%PDF-1.7\n" + b"\x00" * 32


# =============================================================================
# Upload Validation Tests
# =============================================================================


class TestValidateUpload:
    """Tests for checks that run before anything is stored."""

    def test_accepts_pdf_and_images(self) -> None:
        """Test accepted types and their media categories."""
        assert validate_upload("labs.pdf", "application/pdf", PDF) == ("application/pdf", MediaType.PDF)
        assert validate_upload("card.jpg", "image/jpeg", JPEG) == ("image/jpeg", MediaType.IMAGE)

    def test_mime_aliases_and_parameters(self) -> None:
        """Test common aliases and parameters are normalized."""
        assert validate_upload("card.jpg", "image/jpg", JPEG)[0] == "image/jpeg"
        assert validate_upload("labs.pdf", "application/pdf; charset=binary", PDF)[0] == "application/pdf"

    def test_unsupported_type(self) -> None:
        """Test non-document types are rejected."""
        with pytest.raises(UploadValidationError):
            validate_upload("notes.txt", "text/plain", b"hello")

    def test_signature_mismatch(self) -> None:
        """Test a declared type must match the file signature."""
        with pytest.raises(UploadValidationError) as exc_info:
            validate_upload("card.pdf", "application/pdf", JPEG)
        assert exc_info.value.details == {"declared": "application/pdf", "detected": "image/jpeg"}

    def test_empty_file_and_missing_name(self) -> None:
        """Test empty files and blank names are rejected."""
        with pytest.raises(UploadValidationError):
            validate_upload("card.jpg", "image/jpeg", b"")
        with pytest.raises(UploadValidationError):
            validate_upload("  ", "image/jpeg", JPEG)

    def test_image_size_limit(self) -> None:
        """Test images over 10 MB are rejected with 413."""
        oversized = b"\xff\xd8\xff" + b"\x00" * (10 * 1024 * 1024)
        with pytest.raises(FileTooLargeError) as exc_info:
            validate_upload("big.jpg", "image/jpeg", oversized)
        assert exc_info.value.status_code == 413

    def test_pdf_allows_more_than_image_limit(self) -> None:
        """Test PDFs get the larger limit."""
        content = b"%PDF-1.4" + b"\x00" * (11 * 1024 * 1024)
        assert validate_upload("big.pdf", "application/pdf", content)[1] == MediaType.PDF

    @pytest.mark.parametrize(
        ("content", "expected"),
        [
            (b"\x89PNG\r\n\x1a\n....", "image/png"),
            (b"GIF89a....", "image/gif"),
            (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
            (b"PK\x03\x04", None),
        ],
    )
    def test_sniff_mime_type(self, content: bytes, expected: str | None) -> None:
        """Test file signature detection."""
        assert sniff_mime_type(content) == expected


# =============================================================================
# Record Data Tests
# =============================================================================


class TestRecordData:
    """Tests for per-kind record payload validation."""

    def test_normalizes_payload(self) -> None:
        """Test whitespace is stripped, blanks become None, extras are dropped."""
        data = validate_record_data(
            RecordKind.MEDICATION,
            {"name": "  Carprofen ", "dosage": "75mg", "frequency": "", "color": "white"},
        )
        assert data["name"] == "Carprofen"
        assert data["frequency"] is None
        assert data["is_active"] is True
        assert "color" not in data

    def test_dates_serialized_as_iso(self) -> None:
        """Test dates come back as ISO strings."""
        data = validate_record_data(RecordKind.VACCINATION, {"name": "Rabies", "administered_date": "2024-03-01"})
        assert data["administered_date"] == "2024-03-01"

    def test_required_field_missing(self) -> None:
        """Test missing required fields fail validation."""
        with pytest.raises(pydantic.ValidationError):
            validate_record_data(RecordKind.ALLERGY, {"reaction": "hives"})
        with pytest.raises(pydantic.ValidationError):
            validate_record_data(RecordKind.CONDITION, {"name": "   "})

    def test_bad_date(self) -> None:
        """Test malformed dates fail validation."""
        with pytest.raises(pydantic.ValidationError):
            validate_record_data(RecordKind.VACCINATION, {"name": "Rabies", "administered_date": "last March"})


# =============================================================================
# Review Request Tests
# =============================================================================


class TestReviewSchemas:
    """Tests for approve request validation."""

    def test_edits_require_data(self) -> None:
        """Test approve_with_edits must carry data."""
        with pytest.raises(pydantic.ValidationError):
            CandidateDecision(candidate_id=uuid7(), decision=ReviewDecision.APPROVE_WITH_EDITS)

    def test_duplicate_candidate_ids_rejected(self) -> None:
        """Test a candidate may be decided only once per request."""
        candidate_id = uuid7()
        with pytest.raises(pydantic.ValidationError):
            ApproveRequest(
                decisions=[
                    {"candidate_id": candidate_id, "decision": "approve"},
                    {"candidate_id": candidate_id, "decision": "reject"},
                ]
            )

    def test_on_conflict_defaults_to_unset(self) -> None:
        """Test conflicts are reported unless a resolution is chosen."""
        decision = CandidateDecision(candidate_id=uuid7(), decision=ReviewDecision.APPROVE)
        assert decision.on_conflict is None
