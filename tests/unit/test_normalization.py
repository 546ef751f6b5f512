"""
Unit tests for extracted-field normalization and data-quality checks.
"""

import pytest

from cardscan_workers.processing.normalization import (
    FIRST_VISIT,
    REGULAR_ATTENDEE,
    SECOND_VISIT,
    format_phone_number,
    normalize_interests,
    normalize_keywords,
    normalize_visit_status,
)
from cardscan_workers.processing.quality import validate_card_data

pytestmark = pytest.mark.unit


class TestVisitStatus:

    @pytest.mark.parametrize("raw,expected", [
        ("First Time", FIRST_VISIT),
        ("I'm new here", FIRST_VISIT),
        ("Guest", FIRST_VISIT),
        ("2nd time", SECOND_VISIT),
        ("Second visit", SECOND_VISIT),
        ("Member", REGULAR_ATTENDEE),
        ("Returning guest", REGULAR_ATTENDEE),
        ("I attend regularly", REGULAR_ATTENDEE),
    ])
    def test_maps_common_labels(self, raw, expected):
        assert normalize_visit_status(raw) == expected

    def test_unknown_kept_as_written(self):
        assert normalize_visit_status("Visiting family") == "Visiting family"

    def test_empty(self):
        assert normalize_visit_status("") is None
        assert normalize_visit_status(None) is None


class TestInterests:

    def test_maps_and_deduplicates(self):
        result = normalize_interests(["I want to volunteer", "Serving team", "Life Group", "Coffee"])
        assert result == ["Volunteering", "Small Groups", "Coffee"]

    def test_skips_blank_and_non_strings(self):
        assert normalize_interests(["", "  ", None, 3, "Kids"]) == ["Kids Ministry"]

    def test_none(self):
        assert normalize_interests(None) == []


class TestKeywords:

    def test_lowercases_and_trims(self):
        assert normalize_keywords([" Family ", "PRAYER", ""]) == ["family", "prayer"]


class TestPhoneFormatting:

    @pytest.mark.parametrize("raw,expected", [
        ("555.123.4567", "(555) 123-4567"),
        ("1-555-123-4567", "(555) 123-4567"),
        ("(555)1234567", "(555) 123-4567"),
        (" 123-4567 ", "123-4567"),
    ])
    def test_format(self, raw, expected):
        assert format_phone_number(raw) == expected

    def test_empty(self):
        assert format_phone_number("   ") is None


class TestValidateCardData:
    """Tests for validate_card_data."""

    def test_clean_card_is_valid(self):
        report = validate_card_data({"name": "Jane Visitor", "phone": "555-123-4567", "email": "j@x.org"})
        assert report.is_valid
        assert not report.needs_review
        assert report.to_json() == []

    def test_nine_digit_phone(self):
        report = validate_card_data({"name": "Jane", "phone": "555-123-456", "email": "j@x.org"})
        assert [i.field for i in report.issues] == ["phone"]
        assert "9 digits" in report.issues[0].message
        assert report.needs_review

    def test_same_digit_phone(self):
        report = validate_card_data({"name": "Jane", "phone": "111-111-1111", "email": "j@x.org"})
        assert "same digit" in report.issues[0].message

    def test_missing_fields(self):
        report = validate_card_data({})
        assert {i.field for i in report.issues} == {"name", "phone", "email"}

    def test_email_without_at(self):
        report = validate_card_data({"name": "Jane", "phone": "5551234567", "email": "jane.example.com"})
        assert report.to_json() == [
            {"field": "email", "message": "Email is missing @ symbol", "severity": "error"},
        ]

    def test_non_string_values_do_not_crash(self):
        report = validate_card_data({"name": 42, "phone": 5551234567, "email": None})
        assert {i.field for i in report.issues} == {"email"}
