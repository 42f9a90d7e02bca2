"""
Freight ERP Core - Document Numbering

Formatting and parsing of human-facing document numbers. Sequence
allocation belongs to the persistence layer; these helpers only render a
(year, sequence) pair and read it back.

Formats:
- BKK-YYYY-NNNN   cash disbursement vouchers
- INV-YYYY-NNNN   customer invoices
- SI-YYYY-NNNNN   shipping instructions
- AN-YYYY-NNNNN   arrival notices
- MF-YYYY-NNNNN   cargo manifests
- BKG-YYYY-NNNNN  freight bookings
- JO-NNNN/CARGO/<roman month>/YYYY  job orders
"""

import re
from datetime import date
from typing import Dict, Optional

from freight_core.errors import InvalidDocumentNumberError


# prefix: sequence width
NUMBER_FORMATS: Dict[str, int] = {
    "BKK": 4,
    "INV": 4,
    "SI": 5,
    "AN": 5,
    "MF": 5,
    "BKG": 5,
}

ROMAN_MONTHS = ["I", "II", "III", "IV", "V", "VI", "VII", "VIII", "IX", "X", "XI", "XII"]

CONTAINER_NUMBER_PATTERN = re.compile(r"^[A-Z]{4}\d{7}$")


def _pattern(prefix: str) -> "re.Pattern":
    width = NUMBER_FORMATS[prefix]
    return re.compile(rf"^{prefix}-(\d{{4}})-(\d{{{width}}})$")


def format_document_number(prefix: str, year: int, sequence: int) -> str:
    """Render PREFIX-YYYY-NNNN with the prefix's sequence width."""
    if prefix not in NUMBER_FORMATS:
        raise ValueError(f"Unknown document number prefix '{prefix}'")
    width = NUMBER_FORMATS[prefix]
    return f"{prefix}-{year}-{str(sequence).zfill(width)}"


def parse_document_number(prefix: str, number: str) -> Optional[Dict[str, int]]:
    """Return {"year", "sequence"} or None if the number does not match the format."""
    if not isinstance(number, str):
        return None
    match = _pattern(prefix).match(number)
    if not match:
        return None
    return {"year": int(match.group(1)), "sequence": int(match.group(2))}


def is_valid_document_number(prefix: str, number: str) -> bool:
    return parse_document_number(prefix, number) is not None


def parse_document_number_or_raise(prefix: str, number: str) -> Dict[str, int]:
    parsed = parse_document_number(prefix, number)
    if parsed is None:
        width = NUMBER_FORMATS[prefix]
        raise InvalidDocumentNumberError(number, f"{prefix}-YYYY-{'N' * width}")
    return parsed


# =============================================================================
# PER-DOCUMENT HELPERS
# =============================================================================

def generate_bkk_number(year: int, sequence: int) -> str:
    return format_document_number("BKK", year, sequence)


def parse_bkk_number(number: str) -> Optional[Dict[str, int]]:
    return parse_document_number("BKK", number)


def is_valid_bkk_number(number: str) -> bool:
    return is_valid_document_number("BKK", number)


def generate_invoice_number(year: int, sequence: int) -> str:
    return format_document_number("INV", year, sequence)


def parse_invoice_number(number: str) -> Optional[Dict[str, int]]:
    return parse_document_number("INV", number)


def generate_si_number(year: int, sequence: int) -> str:
    return format_document_number("SI", year, sequence)


def generate_notice_number(year: int, sequence: int) -> str:
    return format_document_number("AN", year, sequence)


def generate_manifest_number(year: int, sequence: int) -> str:
    return format_document_number("MF", year, sequence)


def generate_booking_number(year: int, sequence: int) -> str:
    return format_document_number("BKG", year, sequence)


def to_roman_month(month: int) -> str:
    """Roman numeral for a month (1-12); empty string when out of range."""
    if 1 <= month <= 12:
        return ROMAN_MONTHS[month - 1]
    return ""


def generate_jo_number(sequence: int, on: date) -> str:
    """Job order number, e.g. JO-0042/CARGO/X/2025."""
    return f"JO-{str(sequence).zfill(4)}/CARGO/{to_roman_month(on.month)}/{on.year}"


def validate_container_number(container_no: str) -> bool:
    """ISO 6346 shape check: owner code (4 capitals) followed by 7 digits."""
    if not container_no or not isinstance(container_no, str):
        return False
    return bool(CONTAINER_NUMBER_PATTERN.match(container_no))
