"""
Freight ERP Core - Validation Engine

Declarative input validation for document create/update payloads. A rule
set is a sequence of small rule objects; validate() runs every rule and
collects every failure, so a form can show all problems at once.

Rules never raise on bad input: a value that is missing, blank or of the
wrong type is reported as an error message.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from freight_core.temporal import to_date

logger = logging.getLogger(__name__)


class ValidationResult(BaseModel):
    """Outcome of validating a payload"""
    valid: bool
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: List[str]) -> "ValidationResult":
        return cls(valid=not errors, errors=list(errors))


# =============================================================================
# FIELD ACCESS
# =============================================================================

_MISSING = object()


def _lookup(payload: Any, path: str) -> Any:
    """Read a (dotted) field from a dict payload; _MISSING if absent."""
    current = payload
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _is_blank(value: Any) -> bool:
    if value is _MISSING or value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def _as_number(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


# =============================================================================
# RULES
# =============================================================================

@dataclass(frozen=True)
class Required:
    """Field must be present and not blank after trimming."""
    field: str
    message: str

    def check(self, payload: Dict[str, Any]) -> Optional[str]:
        return self.message if _is_blank(_lookup(payload, self.field)) else None


@dataclass(frozen=True)
class _NumericRule:
    field: str
    message: str

    def accepts(self, number: Decimal) -> bool:
        raise NotImplementedError

    def check(self, payload: Dict[str, Any]) -> Optional[str]:
        value = _lookup(payload, self.field)
        # Absence is reported by Required
        if _is_blank(value):
            return None
        number = _as_number(value)
        if number is None or not self.accepts(number):
            return self.message
        return None


@dataclass(frozen=True)
class Positive(_NumericRule):
    """Field, when present, must be a number greater than zero."""

    def accepts(self, number: Decimal) -> bool:
        return number > 0


@dataclass(frozen=True)
class NonNegative(_NumericRule):
    """Field, when present, must be a number of zero or more."""

    def accepts(self, number: Decimal) -> bool:
        return number >= 0


@dataclass(frozen=True)
class Range(_NumericRule):
    """Field, when present, must fall within [minimum, maximum]."""
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def accepts(self, number: Decimal) -> bool:
        if self.minimum is not None and number < Decimal(str(self.minimum)):
            return False
        if self.maximum is not None and number > Decimal(str(self.maximum)):
            return False
        return True


@dataclass(frozen=True)
class OneOf:
    """Field, when present, must be one of choices."""
    field: str
    choices: Tuple[str, ...]
    message: str

    def check(self, payload: Dict[str, Any]) -> Optional[str]:
        value = _lookup(payload, self.field)
        if _is_blank(value):
            return None
        return None if value in self.choices else self.message


@dataclass(frozen=True)
class Matches:
    """Field, when present, must fully match pattern."""
    field: str
    pattern: str
    message: str

    def check(self, payload: Dict[str, Any]) -> Optional[str]:
        value = _lookup(payload, self.field)
        if _is_blank(value):
            return None
        if not isinstance(value, str) or re.fullmatch(self.pattern, value) is None:
            return self.message
        return None


@dataclass(frozen=True)
class NotBefore:
    """Date field must not fall before another date field (skipped if either is missing)."""
    field: str
    other: str
    message: str

    def check(self, payload: Dict[str, Any]) -> Optional[str]:
        later = to_date(_lookup(payload, self.field))
        earlier = to_date(_lookup(payload, self.other))
        if later is None or earlier is None:
            return None
        return self.message if later < earlier else None


@dataclass(frozen=True)
class When:
    """Apply nested rules only when condition(payload) holds."""
    condition: Callable[[Dict[str, Any]], bool]
    rules: Tuple[Any, ...]

    def check_all(self, payload: Dict[str, Any]) -> List[str]:
        if not self.condition(payload):
            return []
        return _run(self.rules, payload)


def _run(rules: Sequence[Any], payload: Dict[str, Any]) -> List[str]:
    errors = []
    for rule in rules:
        if isinstance(rule, When):
            errors.extend(rule.check_all(payload))
            continue
        message = rule.check(payload)
        if message is not None:
            errors.append(message)
    return errors


def validate(rules: Sequence[Any], payload: Optional[Dict[str, Any]]) -> ValidationResult:
    """Run every rule against payload and accumulate all failures."""
    if not isinstance(payload, dict):
        payload = {}
    return ValidationResult.from_errors(_run(rules, payload))


# =============================================================================
# RULE SETS
# =============================================================================

CONTAINER_TYPES = ("20GP", "40GP", "40HC", "20OT", "40OT", "20FR", "40FR", "BREAKBULK")
TRAINING_TYPES = ("induction", "refresher", "specialized", "certification", "toolbox")
CONTAINERIZED_COMMODITIES = ("general", "reefer")

BKK_CREATE = (
    Required("purpose", "Purpose is required"),
    Required("amount_requested", "Amount is required"),
    Positive("amount_requested", "Amount must be greater than zero"),
)

BKK_REJECT = (
    Required("reason", "Rejection reason is required"),
)

BKK_RELEASE = (
    Required("release_method", "Release method must be cash or transfer"),
    OneOf("release_method", ("cash", "transfer"), "Release method must be cash or transfer"),
)

BKK_SETTLE = (
    Required("amount_spent", "Amount spent is required"),
    NonNegative("amount_spent", "Amount spent cannot be negative"),
)

BILL_OF_LADING = (
    Required("booking_id", "A freight booking must be selected"),
    Required("vessel_name", "Vessel name is required"),
    Required("port_of_loading", "Port of loading is required"),
    Required("port_of_discharge", "Port of discharge is required"),
    Required("shipper_name", "Shipper name is required"),
    Required("cargo_description", "Cargo description is required"),
)

ARRIVAL_NOTICE = (
    Required("bl_id", "A Bill of Lading must be selected"),
)


def _is_dangerous(payload: Dict[str, Any]) -> bool:
    return payload.get("commodity_type") == "dangerous"


def _dangerous_goods_details(payload: Dict[str, Any]) -> bool:
    return _is_dangerous(payload) and isinstance(payload.get("dangerous_goods"), dict)


BOOKING_SUBMISSION = (
    Required("shipping_line_id", "Shipping line is required"),
    Required("origin_port_id", "Origin port is required"),
    Required("destination_port_id", "Destination port is required"),
    Required("cargo_description", "Cargo description is required"),
    Required("commodity_type", "Commodity type is required"),
    Required("shipper_name", "Shipper name is required"),
    Required("consignee_name", "Consignee name is required"),
    When(_is_dangerous, (
        Required("dangerous_goods", "Dangerous goods details are required for hazardous cargo"),
    )),
    When(_dangerous_goods_details, (
        Required("dangerous_goods.un_number", "UN number is required"),
        Required("dangerous_goods.class", "DG class is required"),
        Required("dangerous_goods.proper_shipping_name", "Proper shipping name is required"),
    )),
    NotBefore("etd", "cutoff_date", "ETD must be after cutoff date"),
)

BOOKING_CONTAINER = (
    Required("container_type", "Container type is required"),
    OneOf("container_type", CONTAINER_TYPES, "Invalid container type"),
    NonNegative("gross_weight_kg", "Weight cannot be negative"),
    NonNegative("packages_count", "Package count cannot be negative"),
    Matches("container_no", r"[A-Z]{4}\d{7}", "Container number must be 4 letters followed by 7 digits"),
)

INVOICE = (
    Required("customer_id", "Customer is required"),
    Required("invoice_date", "Invoice date is required"),
    Required("due_date", "Due date is required"),
    NotBefore("due_date", "invoice_date", "Due date cannot be before invoice date"),
)

INVOICE_LINE_ITEM = (
    Required("description", "Description is required"),
    Required("quantity", "Quantity is required"),
    Positive("quantity", "Quantity must be greater than zero"),
    Required("unit_price", "Unit price is required"),
    NonNegative("unit_price", "Unit price cannot be negative"),
)

TRAINING_COURSE = (
    Required("course_code", "Course code is required"),
    Required("course_name", "Course name is required"),
    Required("training_type", "Invalid training type"),
    OneOf("training_type", TRAINING_TYPES, "Invalid training type"),
    NonNegative("duration_hours", "Duration must be positive"),
    Range("validity_months", "Validity must be at least 1 month", minimum=1),
    Range("passing_score", "Passing score must be between 0 and 100", minimum=0, maximum=100),
)

RULE_SETS: Dict[str, Tuple[Any, ...]] = {
    "bkk_create": BKK_CREATE,
    "bkk_reject": BKK_REJECT,
    "bkk_release": BKK_RELEASE,
    "bkk_settle": BKK_SETTLE,
    "bill_of_lading": BILL_OF_LADING,
    "arrival_notice": ARRIVAL_NOTICE,
    "booking_submission": BOOKING_SUBMISSION,
    "booking_container": BOOKING_CONTAINER,
    "invoice": INVOICE,
    "invoice_line_item": INVOICE_LINE_ITEM,
    "training_course": TRAINING_COURSE,
}


# =============================================================================
# ENTRY POINTS
# =============================================================================

def validate_document(kind: str, payload: Optional[Dict[str, Any]]) -> ValidationResult:
    """Validate payload against the named rule set; unknown kinds are invalid."""
    rules = RULE_SETS.get(kind)
    if rules is None:
        logger.warning("No validation rules registered for %r", kind)
        return ValidationResult(valid=False, errors=[f"Unknown document kind '{kind}'"])
    return validate(rules, payload)


def validate_invoice(payload: Optional[Dict[str, Any]]) -> ValidationResult:
    """
    Validate an invoice header and every one of its line items.

    Line item errors are prefixed with their 1-based position, e.g.
    "Line 2: Quantity must be greater than zero".
    """
    payload = payload if isinstance(payload, dict) else {}
    errors = list(validate(INVOICE, payload).errors)

    items = payload.get("line_items") or []
    if not items:
        errors.append("At least one line item is required")
    for position, item in enumerate(items, start=1):
        for message in validate(INVOICE_LINE_ITEM, item).errors:
            errors.append(f"Line {position}: {message}")

    return ValidationResult.from_errors(errors)


def validate_booking_has_containers(booking: Dict[str, Any], containers: Sequence[Dict[str, Any]]) -> ValidationResult:
    """Containerized cargo (general, reefer) needs at least one container."""
    errors = []
    if booking.get("commodity_type") in CONTAINERIZED_COMMODITIES and not containers:
        errors.append("At least one container is required for containerized cargo")
    return ValidationResult.from_errors(errors)
