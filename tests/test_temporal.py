"""
Unit tests for temporal classification.
Tests compliance, staleness, snapshot freshness and booking cutoff warnings.
"""
import pytest
from datetime import date, datetime, timedelta, timezone

from freight_core import temporal
from freight_core.temporal import (
    ComplianceStatus,
    CutoffWarningLevel,
    StalenessLevel,
    to_datetime,
    to_date,
    days_between,
    days_until_expiry,
    compliance_status,
    is_expiring_soon,
    calculate_valid_to,
    overall_compliance,
    count_expiring_within_days,
    count_fully_compliant,
    count_non_compliant,
    days_in_status,
    staleness_level,
    is_stale,
    cutoff_warning_level,
    cutoff_warning_message,
    free_time_expiry,
)

TODAY = date(2025, 6, 1)


class TestDateCoercion:
    """Test reading dates from mixed inputs."""

    def test_iso_strings(self):
        assert to_date("2025-06-01") == TODAY
        assert to_date("2025-06-01T23:59:59Z") == TODAY

    def test_datetime_and_date(self):
        assert to_date(datetime(2025, 6, 1, 15, 0)) == TODAY
        assert to_datetime(TODAY) == datetime(2025, 6, 1)

    def test_unreadable_values(self):
        """Blank, garbage and unsupported values read as None."""
        assert to_datetime("") is None
        assert to_datetime("not a date") is None
        assert to_datetime(12345) is None
        assert to_date(None) is None

    def test_days_between_ignores_time_of_day(self):
        assert days_between("2025-06-01T23:00:00", "2025-06-02T01:00:00") == 1
        assert days_between("2025-06-05", "2025-06-01") == -4
        assert days_between(None, TODAY) is None


class TestCompliance:
    """Test certificate compliance classification."""

    @pytest.mark.parametrize("valid_to,expected", [
        (None, ComplianceStatus.VALID),
        ("2025-05-31", ComplianceStatus.EXPIRED),
        ("2025-06-01", ComplianceStatus.EXPIRED),
        ("2025-06-02", ComplianceStatus.EXPIRING_SOON),
        ("2025-07-01", ComplianceStatus.EXPIRING_SOON),
        ("2025-07-02", ComplianceStatus.VALID),
    ])
    def test_compliance_boundaries(self, valid_to, expected):
        """Expired on or before today, expiring within 30 days, otherwise valid."""
        assert compliance_status(valid_to, TODAY) == expected

    def test_custom_warning_window(self):
        assert compliance_status("2025-06-10", TODAY, warning_days=7) == ComplianceStatus.VALID

    def test_days_until_expiry(self):
        assert days_until_expiry("2025-06-11", TODAY) == 10
        assert days_until_expiry(None, TODAY) is None

    def test_is_expiring_soon(self):
        assert is_expiring_soon("2025-06-15", TODAY) is True
        assert is_expiring_soon("2025-05-15", TODAY) is False

    def test_calculate_valid_to(self):
        """Validity adds calendar months, clamped to month end."""
        assert calculate_valid_to("2025-01-15", 12) == date(2026, 1, 15)
        assert calculate_valid_to("2025-01-31", 1) == date(2025, 2, 28)
        assert calculate_valid_to(None, 12) is None

    def test_overall_compliance(self):
        entries = [
            {"compliance_status": "valid"},
            {"compliance_status": "expiring_soon"},
            {"compliance_status": "expired"},
        ]
        assert overall_compliance(entries) == 66.67
        assert overall_compliance([]) == 100.0

    def test_count_expiring_within_days(self):
        entries = [
            {"valid_to": "2025-06-01"},
            {"valid_to": "2025-07-01"},
            {"valid_to": "2025-07-02"},
            {"valid_to": "2025-05-31"},
            {"valid_to": None},
        ]
        assert count_expiring_within_days(entries, TODAY) == 2

    MATRIX = [
        {"employee_id": "e1", "is_mandatory": True, "compliance_status": "valid"},
        {"employee_id": "e1", "is_mandatory": True, "compliance_status": "expiring_soon"},
        {"employee_id": "e2", "is_mandatory": True, "compliance_status": "valid"},
        {"employee_id": "e2", "is_mandatory": True, "compliance_status": "not_trained"},
        {"employee_id": "e3", "is_mandatory": False, "compliance_status": "expired"},
        {"employee_id": "e4", "is_mandatory": True, "compliance_status": "expired"},
    ]

    def test_count_fully_compliant(self):
        """Optional courses are ignored; no mandatory courses means compliant."""
        assert count_fully_compliant(self.MATRIX, ["e1", "e2", "e3", "e4", "e5"]) == 3

    def test_count_non_compliant(self):
        assert count_non_compliant(self.MATRIX, ["e1", "e2", "e3", "e4", "e5"]) == 2
        assert count_non_compliant([], ["e1"]) == 0


class TestStaleness:
    """Test follow-up staleness levels."""

    @pytest.mark.parametrize("days,expected", [
        (0, StalenessLevel.NORMAL),
        (5, StalenessLevel.NORMAL),
        (6, StalenessLevel.WARNING),
        (7, StalenessLevel.WARNING),
        (8, StalenessLevel.ALERT),
    ])
    def test_draft_thresholds(self, days, expected):
        """Draft PJOs warn after 5 days and alert after 7."""
        assert staleness_level("draft", days) == expected

    @pytest.mark.parametrize("days,expected", [
        (3, StalenessLevel.NORMAL),
        (4, StalenessLevel.WARNING),
        (30, StalenessLevel.WARNING),
    ])
    def test_pending_approval_thresholds(self, days, expected):
        """Pending approval only ever warns."""
        assert staleness_level("pending_approval", days) == expected

    def test_status_without_thresholds(self):
        assert staleness_level("approved", 100) == StalenessLevel.NORMAL

    def test_days_in_status(self):
        assert days_in_status("2025-05-25", TODAY) == 7
        assert days_in_status("2025-06-05", TODAY) == 0
        assert days_in_status(None, TODAY) == 0

    def test_thresholds_follow_config(self, monkeypatch):
        """Thresholds are read from configuration at call time."""
        monkeypatch.setitem(temporal.STALENESS_THRESHOLDS, "draft", {"alert": 2, "warning": 1})
        assert staleness_level("draft", 3) == StalenessLevel.ALERT


class TestSnapshotFreshness:
    """Test dashboard data staleness."""

    NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    def test_fresh(self):
        assert is_stale(self.NOW - timedelta(minutes=4), self.NOW) is False

    def test_exactly_at_threshold_is_fresh(self):
        """Comparison is strict: exactly five minutes old is not stale."""
        assert is_stale(self.NOW - timedelta(minutes=5), self.NOW) is False

    def test_past_threshold(self):
        assert is_stale(self.NOW - timedelta(minutes=5, milliseconds=1), self.NOW) is True

    def test_custom_threshold(self):
        assert is_stale(self.NOW - timedelta(seconds=2), self.NOW, threshold_ms=1000) is True

    def test_naive_treated_as_utc(self):
        assert is_stale(datetime(2025, 6, 1, 11, 58), self.NOW) is False

    def test_unreadable_snapshot_is_stale(self):
        assert is_stale("garbage", self.NOW) is True

    def test_invalid_reference_time_raises(self):
        with pytest.raises(ValueError):
            is_stale(self.NOW, "garbage")


class TestBookingCutoff:
    """Test booking cutoff warnings and free time."""

    @pytest.mark.parametrize("cutoff,expected", [
        ("2025-05-31", CutoffWarningLevel.ALERT),
        ("2025-06-01", CutoffWarningLevel.WARNING),
        ("2025-06-04", CutoffWarningLevel.WARNING),
        ("2025-06-05", CutoffWarningLevel.NONE),
        (None, CutoffWarningLevel.NONE),
    ])
    def test_cutoff_levels(self, cutoff, expected):
        """Alert once passed, warning within three days."""
        assert cutoff_warning_level(cutoff, TODAY) == expected

    def test_cutoff_messages(self):
        assert cutoff_warning_message("2025-05-29", TODAY) == "Cutoff date has passed (3 days ago)"
        assert cutoff_warning_message("2025-06-02", TODAY) == "Cutoff in 1 day"
        assert cutoff_warning_message("2025-06-03", TODAY) == "Cutoff in 2 days"
        assert cutoff_warning_message("2025-07-01", TODAY) is None

    def test_free_time_expiry(self):
        assert free_time_expiry("2025-06-01", 7) == date(2025, 6, 8)
        assert free_time_expiry(None, 7) is None
