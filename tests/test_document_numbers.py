"""
Unit tests for document number formatting and parsing.
"""
import pytest
from datetime import date

from freight_core.errors import InvalidDocumentNumberError
from freight_core.document_numbers import (
    format_document_number,
    parse_document_number,
    parse_document_number_or_raise,
    generate_bkk_number,
    parse_bkk_number,
    is_valid_bkk_number,
    generate_invoice_number,
    parse_invoice_number,
    generate_si_number,
    generate_notice_number,
    generate_manifest_number,
    generate_booking_number,
    to_roman_month,
    generate_jo_number,
    validate_container_number,
)


class TestBKKNumbers:
    """Test BKK voucher numbers."""

    def test_generate(self):
        assert generate_bkk_number(2025, 1) == "BKK-2025-0001"
        assert generate_bkk_number(2025, 123) == "BKK-2025-0123"

    def test_round_trip(self):
        """Parsing a generated number gives back its year and sequence."""
        assert parse_bkk_number(generate_bkk_number(2025, 42)) == {"year": 2025, "sequence": 42}

    @pytest.mark.parametrize("number", [
        "BKK-2025-001",
        "BKK-25-0001",
        "INV-2025-0001",
        "bkk-2025-0001",
        "",
        None,
    ])
    def test_invalid(self, number):
        """Malformed numbers parse to None."""
        assert parse_bkk_number(number) is None
        assert is_valid_bkk_number(number) is False


class TestOtherNumbers:
    """Test the remaining document number formats."""

    def test_invoice(self):
        assert generate_invoice_number(2025, 7) == "INV-2025-0007"
        assert parse_invoice_number("INV-2025-0007") == {"year": 2025, "sequence": 7}

    def test_five_digit_formats(self):
        """Shipping documents use five-digit sequences."""
        assert generate_si_number(2025, 1) == "SI-2025-00001"
        assert generate_notice_number(2025, 12) == "AN-2025-00012"
        assert generate_manifest_number(2025, 123) == "MF-2025-00123"
        assert generate_booking_number(2025, 9) == "BKG-2025-00009"

    def test_unknown_prefix(self):
        with pytest.raises(ValueError):
            format_document_number("PO", 2025, 1)

    def test_parse_other_prefix(self):
        assert parse_document_number("SI", "SI-2024-00310") == {"year": 2024, "sequence": 310}
        assert parse_document_number("SI", "SI-2024-0310") is None

    def test_parse_or_raise(self):
        with pytest.raises(InvalidDocumentNumberError) as excinfo:
            parse_document_number_or_raise("BKK", "BKK-2025-1")
        assert "BKK-YYYY-NNNN" in str(excinfo.value)


class TestJobOrderNumbers:
    """Test job order numbers with Roman month."""

    def test_roman_months(self):
        assert to_roman_month(1) == "I"
        assert to_roman_month(10) == "X"
        assert to_roman_month(12) == "XII"
        assert to_roman_month(13) == ""

    def test_generate_jo_number(self):
        assert generate_jo_number(42, date(2025, 10, 3)) == "JO-0042/CARGO/X/2025"


class TestContainerNumbers:
    """Test container number shape validation."""

    @pytest.mark.parametrize("container_no,expected", [
        ("MSKU1234567", True),
        ("MSKU123456", False),
        ("msku1234567", False),
        ("MSK1234567", False),
        ("", False),
        (None, False),
    ])
    def test_validate(self, container_no, expected):
        assert validate_container_number(container_no) is expected
