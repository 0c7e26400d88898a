"""Tests for field validators, bundle validation and the sanitiser."""

import pytest

from app.pipeline.validation import (
    ValidationIssue,
    ValidationResult,
    is_valid_date,
    is_valid_email,
    is_valid_percentage,
    is_valid_phone,
    is_valid_sa_id,
    is_valid_url,
    sanitise_extraction,
    validate_extraction,
)


class TestSaId:

    def test_valid_checksum(self):
        assert is_valid_sa_id("9001045800082") is True

    def test_wrong_check_digit(self):
        assert is_valid_sa_id("9001045800089") is False

    @pytest.mark.parametrize("value", ["90010", "abcdefghijklm", "", "90010458000821"])
    def test_wrong_shape(self, value):
        assert is_valid_sa_id(value) is False

    def test_spaces_ignored(self):
        assert is_valid_sa_id("900104 5800 082") is True


class TestScalarValidators:

    def test_email(self):
        assert is_valid_email("a@b.co")
        assert not is_valid_email("not-an-email")
        assert not is_valid_email("a@b")

    def test_phone_sa_and_international(self):
        assert is_valid_phone("082 123 4567")
        assert is_valid_phone("+27 (82) 123-4567")
        assert is_valid_phone("+441234567890")
        assert not is_valid_phone("12345")

    def test_url(self):
        assert is_valid_url("www.metcon.co.za")
        assert is_valid_url("https://example.com/path")
        assert not is_valid_url("localhost")

    def test_date_formats(self):
        assert is_valid_date("2024-03-01")
        assert is_valid_date("01/03/2024")
        assert is_valid_date("1 March 2024")
        assert not is_valid_date("next tuesday")

    def test_percentage(self):
        assert is_valid_percentage(0)
        assert is_valid_percentage(100)
        assert is_valid_percentage("45.5")
        assert not is_valid_percentage(150)
        assert not is_valid_percentage(-1)
        assert not is_valid_percentage("lots")


class TestValidateExtraction:

    def test_empty_bundle_is_valid(self):
        result = validate_extraction({})
        assert result.valid is True
        assert result.errors == []
        assert result.warnings == []

    def test_bad_email_is_error(self):
        result = validate_extraction({"email_address": "nope"})
        assert result.valid is False
        assert [e.field for e in result.errors] == ["email_address"]

    def test_bad_phone_is_only_warning(self):
        result = validate_extraction({"business_phone_cell": "123"})
        assert result.valid is True
        assert [w.field for w in result.warnings] == ["business_phone_cell"]

    def test_unusual_website_is_warning(self):
        result = validate_extraction({"website": "intranet"})
        assert result.valid is True
        assert result.warnings[0].field == "website"

    def test_unclear_date_is_warning(self):
        result = validate_extraction({"license_expiry_date": "soon"})
        assert result.valid is True
        assert result.warnings[0].field == "license_expiry_date"

    def test_payment_percentage_out_of_range(self):
        result = validate_extraction({"payment_cash_pct": 120})
        assert result.valid is False
        assert result.errors[0].field == "payment_cash_pct"

    def test_person_ownership_150_is_invalid(self):
        bundle = {"associated_persons": [
            {"person_full_name": "A", "ownership_percentage": 40},
            {"person_full_name": "B", "ownership_percentage": 150},
        ]}
        result = validate_extraction(bundle)
        assert result.valid is False
        assert result.errors[0].field == "associated_persons[1].ownership_percentage"

    def test_person_email_is_warning(self):
        bundle = {"associated_persons": [{"person_full_name": "A", "person_email": "bad"}]}
        result = validate_extraction(bundle)
        assert result.valid is True
        assert result.warnings[0].field == "associated_persons[0].person_email"

    def test_to_dict(self):
        result = ValidationResult(valid=False, errors=[ValidationIssue("x", "bad")])
        assert result.to_dict() == {
            "valid": False,
            "errors": [{"field": "x", "message": "bad"}],
            "warnings": [],
        }


class TestSanitise:

    def test_invalid_field_removed_valid_kept(self):
        bundle = {"email_address": "broken", "registered_name": "Acme"}
        result = sanitise_extraction(bundle, validate_extraction(bundle))
        assert "email_address" not in result
        assert result["registered_name"] == "Acme"

    def test_warnings_do_not_drop_fields(self):
        bundle = {"business_phone_work": "123"}
        result = sanitise_extraction(bundle, validate_extraction(bundle))
        assert result == bundle

    def test_input_not_mutated(self):
        bundle = {"email_address": "broken"}
        sanitise_extraction(bundle, validate_extraction(bundle))
        assert bundle == {"email_address": "broken"}

    def test_person_error_drops_only_sub_field(self):
        bundle = {"associated_persons": [
            {"person_full_name": "Jane", "ownership_percentage": 150},
        ]}
        result = sanitise_extraction(bundle, validate_extraction(bundle))
        assert result["associated_persons"] == [{"person_full_name": "Jane"}]
        # original person dict untouched
        assert bundle["associated_persons"][0]["ownership_percentage"] == 150
