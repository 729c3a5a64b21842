"""Unit tests for duplicate detection rules used by the merge engine."""

from src.db.enums import RecordKind
from src.services.merge import match_fields


class TestMedicationRules:
    """Tests for medication duplicates."""

    def test_same_name_and_dosage(self) -> None:
        """Test the Carprofen 75mg case matches."""
        existing = {"name": "Carprofen", "dosage": "75mg", "frequency": None, "is_active": True}
        candidate = {"name": " carprofen ", "dosage": "75MG", "frequency": "twice daily"}
        assert match_fields(RecordKind.MEDICATION, candidate, existing) == ["name", "dosage"]

    def test_missing_dosage_still_matches(self) -> None:
        """Test an empty dosage on either side does not prevent a match."""
        existing = {"name": "Apoquel", "dosage": None, "is_active": True}
        assert match_fields(RecordKind.MEDICATION, {"name": "Apoquel", "dosage": "16mg"}, existing) == ["name"]

    def test_different_dosage_is_not_duplicate(self) -> None:
        """Test a different dosage is a different prescription."""
        existing = {"name": "Carprofen", "dosage": "75mg", "is_active": True}
        assert match_fields(RecordKind.MEDICATION, {"name": "Carprofen", "dosage": "100mg"}, existing) is None

    def test_inactive_medication_ignored(self) -> None:
        """Test only active medications count."""
        existing = {"name": "Carprofen", "dosage": "75mg", "is_active": False}
        assert match_fields(RecordKind.MEDICATION, {"name": "Carprofen", "dosage": "75mg"}, existing) is None


class TestOtherKinds:
    """Tests for the remaining record kinds."""

    def test_vaccination_needs_same_date(self) -> None:
        """Test boosters on different dates are distinct records."""
        existing = {"name": "Rabies", "administered_date": "2024-03-01"}
        assert match_fields(
            RecordKind.VACCINATION, {"name": "Rabies", "administered_date": "2024-03-01"}, existing
        ) == ["name", "administered_date"]
        assert match_fields(
            RecordKind.VACCINATION, {"name": "Rabies", "administered_date": "2027-03-01"}, existing
        ) is None

    def test_condition_and_allergy_by_name(self) -> None:
        """Test conditions match on name and allergies on allergen."""
        assert match_fields(RecordKind.CONDITION, {"name": "Otitis  Externa"}, {"name": "otitis externa"}) == ["name"]
        assert match_fields(RecordKind.ALLERGY, {"allergen": "Chicken"}, {"allergen": "chicken"}) == ["allergen"]
        assert match_fields(RecordKind.ALLERGY, {"allergen": "Beef"}, {"allergen": "Chicken"}) is None

    def test_vet_by_clinic(self) -> None:
        """Test vets match on clinic, with vet name loose."""
        existing = {"clinic_name": "Oak Street Animal Hospital", "vet_name": "Dr. Patel"}
        assert match_fields(RecordKind.VET, {"clinic_name": "Oak Street Animal Hospital"}, existing) == ["clinic_name"]
        assert match_fields(
            RecordKind.VET, {"clinic_name": "Oak Street Animal Hospital", "vet_name": "Dr. Lee"}, existing
        ) is None

    def test_emergency_contact_by_phone_digits(self) -> None:
        """Test contacts match on name or on phone digits."""
        existing = {"name": "Sam Rivera", "phone": "(555) 010-2000"}
        assert match_fields(RecordKind.EMERGENCY_CONTACT, {"name": "S. Rivera", "phone": "555-010-2000"}, existing) == [
            "phone"
        ]
        assert match_fields(RecordKind.EMERGENCY_CONTACT, {"name": "Sam Rivera"}, existing) == ["name"]
        assert match_fields(RecordKind.EMERGENCY_CONTACT, {"name": "Alex Kim", "phone": None}, existing) is None
