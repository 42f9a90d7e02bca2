"""
Unit tests for the validation engine.
Tests rule primitives, document rule sets and invoice validation.
"""
import pytest

from freight_core.validation import (
    ValidationResult,
    Required,
    Positive,
    NonNegative,
    Range,
    OneOf,
    Matches,
    NotBefore,
    When,
    validate,
    validate_document,
    validate_invoice,
    validate_booking_has_containers,
    BKK_CREATE,
    BKK_REJECT,
    BKK_RELEASE,
    BKK_SETTLE,
    BILL_OF_LADING,
    ARRIVAL_NOTICE,
    BOOKING_SUBMISSION,
    BOOKING_CONTAINER,
    TRAINING_COURSE,
)


class TestRules:
    """Test individual rule primitives."""

    @pytest.mark.parametrize("value,valid", [
        ("Fuel", True),
        (0, True),
        ("   ", False),
        ("", False),
        (None, False),
    ])
    def test_required(self, value, valid):
        """Blank strings count as missing; zero does not."""
        result = validate([Required("purpose", "Purpose is required")], {"purpose": value})
        assert result.valid is valid

    def test_required_missing_key(self):
        result = validate([Required("purpose", "Purpose is required")], {})
        assert result.errors == ["Purpose is required"]

    def test_numeric_rules_skip_missing(self):
        """Absent values are left to Required."""
        rules = [Positive("amount", "must be positive"), NonNegative("amount", "must not be negative")]
        assert validate(rules, {}).valid is True

    @pytest.mark.parametrize("value,positive,non_negative", [
        (10, True, True),
        ("10.5", True, True),
        (0, False, True),
        (-1, False, False),
        ("abc", False, False),
        (True, False, False),
    ])
    def test_numeric_rules(self, value, positive, non_negative):
        assert validate([Positive("amount", "x")], {"amount": value}).valid is positive
        assert validate([NonNegative("amount", "x")], {"amount": value}).valid is non_negative

    def test_range(self):
        rule = Range("score", "out of range", minimum=0, maximum=100)
        assert validate([rule], {"score": 100}).valid is True
        assert validate([rule], {"score": 101}).valid is False
        assert validate([rule], {"score": -1}).valid is False

    def test_one_of(self):
        rule = OneOf("method", ("cash", "transfer"), "bad method")
        assert validate([rule], {"method": "cash"}).valid is True
        assert validate([rule], {"method": "cheque"}).errors == ["bad method"]

    def test_matches(self):
        rule = Matches("code", r"[A-Z]{3}", "bad code")
        assert validate([rule], {"code": "ABC"}).valid is True
        assert validate([rule], {"code": "ABCD"}).valid is False
        assert validate([rule], {"code": 123}).valid is False

    def test_not_before(self):
        rule = NotBefore("etd", "cutoff_date", "ETD must be after cutoff date")
        assert validate([rule], {"etd": "2025-06-10", "cutoff_date": "2025-06-08"}).valid is True
        assert validate([rule], {"etd": "2025-06-05", "cutoff_date": "2025-06-08"}).valid is False
        assert validate([rule], {"etd": "2025-06-05"}).valid is True

    def test_when(self):
        rule = When(lambda p: p.get("kind") == "dg", (Required("un_number", "UN number is required"),))
        assert validate([rule], {"kind": "general"}).valid is True
        assert validate([rule], {"kind": "dg"}).errors == ["UN number is required"]

    def test_dotted_fields(self):
        rule = Required("dangerous_goods.un_number", "UN number is required")
        assert validate([rule], {"dangerous_goods": {"un_number": "UN1203"}}).valid is True
        assert validate([rule], {"dangerous_goods": "n/a"}).valid is False

    def test_non_dict_payload(self):
        """A missing payload fails every required field."""
        assert validate(BKK_REJECT, None).errors == ["Rejection reason is required"]


class TestBKKRules:
    """Test BKK create/reject/release/settle validation."""

    def test_create_valid(self):
        result = validate(BKK_CREATE, {"purpose": "Port charges", "amount_requested": 1500000})
        assert result == ValidationResult(valid=True, errors=[])

    def test_create_accumulates_all_errors(self):
        """Every failing rule is reported, not just the first."""
        result = validate(BKK_CREATE, {"purpose": " "})
        assert result.valid is False
        assert result.errors == ["Purpose is required", "Amount is required"]

    def test_create_zero_amount(self):
        result = validate(BKK_CREATE, {"purpose": "Fuel", "amount_requested": 0})
        assert result.errors == ["Amount must be greater than zero"]

    def test_reject_requires_reason(self):
        assert validate(BKK_REJECT, {"reason": ""}).errors == ["Rejection reason is required"]

    @pytest.mark.parametrize("method,valid", [
        ("cash", True),
        ("transfer", True),
        ("cheque", False),
        (None, False),
    ])
    def test_release_method(self, method, valid):
        """Release method must be cash or transfer, reported once."""
        result = validate(BKK_RELEASE, {"release_method": method})
        assert result.valid is valid
        if not valid:
            assert result.errors == ["Release method must be cash or transfer"]

    def test_settle(self):
        assert validate(BKK_SETTLE, {"amount_spent": 0}).valid is True
        assert validate(BKK_SETTLE, {}).errors == ["Amount spent is required"]
        assert validate(BKK_SETTLE, {"amount_spent": -5}).errors == ["Amount spent cannot be negative"]


class TestShippingDocumentRules:
    """Test bill of lading, arrival notice and booking validation."""

    def test_bill_of_lading_all_missing(self):
        result = validate(BILL_OF_LADING, {})
        assert len(result.errors) == 6
        assert result.errors[0] == "A freight booking must be selected"

    def test_arrival_notice(self):
        assert validate(ARRIVAL_NOTICE, {"bl_id": "bl-1"}).valid is True
        assert validate(ARRIVAL_NOTICE, {}).errors == ["A Bill of Lading must be selected"]

    def test_booking_submission_valid(self):
        booking = {
            "shipping_line_id": "sl-1",
            "origin_port_id": "IDTPP",
            "destination_port_id": "SGSIN",
            "cargo_description": "Machinery parts",
            "commodity_type": "general",
            "shipper_name": "PT Example",
            "consignee_name": "Example Pte Ltd",
            "cutoff_date": "2025-06-08",
            "etd": "2025-06-10",
        }
        assert validate(BOOKING_SUBMISSION, booking).valid is True

    def test_dangerous_goods_details(self):
        """Hazardous cargo needs DG details and each of their fields."""
        base = {
            "shipping_line_id": "sl-1",
            "origin_port_id": "IDTPP",
            "destination_port_id": "SGSIN",
            "cargo_description": "Paint",
            "commodity_type": "dangerous",
            "shipper_name": "PT Example",
            "consignee_name": "Example Pte Ltd",
        }
        assert validate(BOOKING_SUBMISSION, base).errors == [
            "Dangerous goods details are required for hazardous cargo",
        ]
        with_dg = dict(base, dangerous_goods={"un_number": "UN1263", "class": ""})
        assert validate(BOOKING_SUBMISSION, with_dg).errors == [
            "DG class is required",
            "Proper shipping name is required",
        ]

    def test_etd_before_cutoff(self):
        result = validate(BOOKING_SUBMISSION, {"etd": "2025-06-01", "cutoff_date": "2025-06-03"})
        assert "ETD must be after cutoff date" in result.errors

    def test_container(self):
        assert validate(BOOKING_CONTAINER, {"container_type": "40HC", "gross_weight_kg": 12000}).valid is True
        assert validate(BOOKING_CONTAINER, {}).errors == ["Container type is required"]
        assert validate(BOOKING_CONTAINER, {"container_type": "53FT"}).errors == ["Invalid container type"]
        result = validate(BOOKING_CONTAINER, {"container_type": "20GP", "packages_count": -1, "container_no": "X1"})
        assert result.errors == [
            "Package count cannot be negative",
            "Container number must be 4 letters followed by 7 digits",
        ]

    def test_booking_has_containers(self):
        assert validate_booking_has_containers({"commodity_type": "general"}, []).valid is False
        assert validate_booking_has_containers({"commodity_type": "breakbulk"}, []).valid is True
        assert validate_booking_has_containers({"commodity_type": "reefer"}, [{"container_type": "20GP"}]).valid is True


class TestTrainingCourse:
    """Test training course validation."""

    def test_valid_course(self):
        course = {
            "course_code": "HSE-01",
            "course_name": "Safety Induction",
            "training_type": "induction",
            "validity_months": 12,
            "passing_score": 70,
        }
        assert validate(TRAINING_COURSE, course).valid is True

    def test_invalid_course(self):
        course = {
            "course_code": "HSE-01",
            "course_name": "Safety Induction",
            "training_type": "webinar",
            "validity_months": 0,
            "passing_score": 120,
        }
        assert validate(TRAINING_COURSE, course).errors == [
            "Invalid training type",
            "Validity must be at least 1 month",
            "Passing score must be between 0 and 100",
        ]


class TestEntryPoints:
    """Test lookup by name and invoice validation."""

    def test_validate_document(self):
        assert validate_document("bkk_reject", {"reason": "Duplicate"}).valid is True

    def test_unknown_kind_is_invalid(self):
        result = validate_document("purchase_order", {})
        assert result.valid is False
        assert "Unknown document kind" in result.errors[0]

    def test_invoice_with_line_errors(self):
        """Line item errors carry their position."""
        invoice = {
            "customer_id": "cust-1",
            "invoice_date": "2025-06-01",
            "due_date": "2025-07-01",
            "line_items": [
                {"description": "Ocean freight", "quantity": 1, "unit_price": 5000000},
                {"description": "", "quantity": 0, "unit_price": 100},
            ],
        }
        result = validate_invoice(invoice)
        assert result.valid is False
        assert result.errors == [
            "Line 2: Description is required",
            "Line 2: Quantity must be greater than zero",
        ]

    def test_invoice_without_lines(self):
        result = validate_invoice({"customer_id": "c", "invoice_date": "2025-06-01", "due_date": "2025-05-01"})
        assert result.errors == [
            "Due date cannot be before invoice date",
            "At least one line item is required",
        ]

    def test_result_serializes(self):
        result = validate_invoice(None)
        assert result.model_dump()["valid"] is False
