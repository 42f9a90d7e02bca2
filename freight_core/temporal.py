"""
Freight ERP Core - Temporal Classification

Derives urgency classifications (certificate compliance, follow-up
staleness, booking cutoff warnings, dashboard data freshness) from a target
date and an explicit reference date. Nothing here reads the system clock:
every function takes its "today"/"now" as an argument.

Date-level comparisons truncate time-of-day on both sides.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from freight_core.config import (
    CUTOFF_WARNING_DAYS,
    EXPIRY_WARNING_DAYS,
    STALENESS_THRESHOLD_MS,
    STALENESS_THRESHOLDS,
)

logger = logging.getLogger(__name__)


class ComplianceStatus(str, Enum):
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    NOT_TRAINED = "not_trained"


class StalenessLevel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    ALERT = "alert"


class CutoffWarningLevel(str, Enum):
    NONE = "none"
    WARNING = "warning"
    ALERT = "alert"


# =============================================================================
# DATE COERCION
# =============================================================================

def to_datetime(value: Any) -> Optional[datetime]:
    """Coerce a datetime, date or ISO string to a datetime; None if it cannot be read."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return date_parser.isoparse(value)
        except (ValueError, OverflowError):
            logger.debug("Unparseable date value %r", value)
            return None
    return None


def to_date(value: Any) -> Optional[date]:
    """Coerce a value to a calendar date (time-of-day dropped)."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    dt = to_datetime(value)
    return dt.date() if dt is not None else None


def days_between(start: Any, end: Any) -> Optional[int]:
    """Whole days from start to end (negative if end is earlier)."""
    start_d = to_date(start)
    end_d = to_date(end)
    if start_d is None or end_d is None:
        return None
    return (end_d - start_d).days


# =============================================================================
# COMPLIANCE (TRAINING CERTIFICATES)
# =============================================================================

def days_until_expiry(valid_to: Any, as_of: Any) -> Optional[int]:
    """Days remaining until valid_to, or None when no expiry is tracked."""
    return days_between(as_of, valid_to)


def compliance_status(
    valid_to: Any,
    as_of: Any,
    warning_days: int = EXPIRY_WARNING_DAYS
) -> ComplianceStatus:
    """
    Classify a certificate against its expiry date.

    - no (or unreadable) expiry: valid
    - expiry on or before as_of: expired
    - expiry within warning_days: expiring_soon
    - otherwise: valid
    """
    days = days_until_expiry(valid_to, as_of)
    if days is None:
        return ComplianceStatus.VALID
    if days <= 0:
        return ComplianceStatus.EXPIRED
    if days <= warning_days:
        return ComplianceStatus.EXPIRING_SOON
    return ComplianceStatus.VALID


def is_expiring_soon(valid_to: Any, as_of: Any, threshold_days: int = EXPIRY_WARNING_DAYS) -> bool:
    return compliance_status(valid_to, as_of, threshold_days) == ComplianceStatus.EXPIRING_SOON


def calculate_valid_to(valid_from: Any, validity_months: int) -> Optional[date]:
    """Certificate expiry: valid_from plus whole calendar months (clamped to month end)."""
    start = to_date(valid_from)
    if start is None:
        return None
    return start + relativedelta(months=validity_months)


def overall_compliance(entries: Iterable[Dict[str, Any]]) -> float:
    """
    Percentage of entries that are valid or expiring soon, to two decimals.

    An empty population is fully compliant (100.0).
    """
    entries = list(entries)
    if not entries:
        return 100.0
    compliant = sum(
        1 for e in entries
        if e.get("compliance_status") in (ComplianceStatus.VALID, ComplianceStatus.EXPIRING_SOON)
    )
    return round(compliant / len(entries) * 100, 2)


def count_expiring_within_days(entries: Iterable[Dict[str, Any]], as_of: Any, days: int = EXPIRY_WARNING_DAYS) -> int:
    """Count entries whose valid_to falls within [as_of, as_of + days]."""
    today = to_date(as_of)
    if today is None:
        return 0
    horizon = today + timedelta(days=days)
    count = 0
    for entry in entries:
        expiry = to_date(entry.get("valid_to"))
        if expiry is not None and today <= expiry <= horizon:
            count += 1
    return count


def _mandatory_statuses(entries: Iterable[Dict[str, Any]]) -> Dict[Any, List[Any]]:
    by_employee: Dict[Any, List[Any]] = {}
    for entry in entries:
        if entry.get("is_mandatory"):
            by_employee.setdefault(entry.get("employee_id"), []).append(entry.get("compliance_status"))
    return by_employee


def count_fully_compliant(entries: Iterable[Dict[str, Any]], employee_ids: Iterable[Any]) -> int:
    """
    Count employees whose mandatory training is all valid or expiring soon.

    An employee with no mandatory entries counts as compliant.
    """
    mandatory = _mandatory_statuses(entries)
    ok = (ComplianceStatus.VALID, ComplianceStatus.EXPIRING_SOON)
    return sum(
        1 for employee_id in employee_ids
        if all(status in ok for status in mandatory.get(employee_id, []))
    )


def count_non_compliant(entries: Iterable[Dict[str, Any]], employee_ids: Iterable[Any]) -> int:
    """Count employees with at least one mandatory course not trained or expired."""
    mandatory = _mandatory_statuses(entries)
    bad = (ComplianceStatus.NOT_TRAINED, ComplianceStatus.EXPIRED)
    return sum(
        1 for employee_id in employee_ids
        if any(status in bad for status in mandatory.get(employee_id, []))
    )


# =============================================================================
# STALENESS
# =============================================================================

def days_in_status(since: Any, as_of: Any) -> int:
    """Days a record has sat in its status; 0 when unknown or in the future."""
    days = days_between(since, as_of)
    if days is None:
        return 0
    return max(0, days)


def staleness_level(document_type: str, days: int) -> StalenessLevel:
    """
    Urgency of a record that has sat `days` in a status.

    Thresholds come from STALENESS_THRESHOLDS; a level applies when days is
    strictly greater than its threshold. Statuses without thresholds are
    always normal.
    """
    thresholds = STALENESS_THRESHOLDS.get(document_type)
    if not thresholds:
        return StalenessLevel.NORMAL
    alert_after = thresholds.get("alert")
    if alert_after is not None and days > alert_after:
        return StalenessLevel.ALERT
    warning_after = thresholds.get("warning")
    if warning_after is not None and days > warning_after:
        return StalenessLevel.WARNING
    return StalenessLevel.NORMAL


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_stale(calculated_at: Any, now: Any, threshold_ms: Optional[int] = None) -> bool:
    """
    True when a snapshot is older than threshold_ms.

    Strict comparison: exactly at the threshold is still fresh. Naive
    datetimes are treated as UTC. An unreadable calculated_at is stale.
    """
    threshold = STALENESS_THRESHOLD_MS if threshold_ms is None else threshold_ms
    calculated = to_datetime(calculated_at)
    current = to_datetime(now)
    if current is None:
        raise ValueError(f"Invalid reference time: {now!r}")
    if calculated is None:
        return True
    elapsed = _as_utc(current) - _as_utc(calculated)
    return elapsed > timedelta(milliseconds=threshold)


# =============================================================================
# BOOKING CUTOFF / FREE TIME
# =============================================================================

def cutoff_warning_level(
    cutoff_date: Any,
    as_of: Any,
    warning_days: int = CUTOFF_WARNING_DAYS
) -> CutoffWarningLevel:
    """alert once the cutoff has passed, warning within warning_days, else none."""
    days = days_between(as_of, cutoff_date)
    if days is None:
        return CutoffWarningLevel.NONE
    if days < 0:
        return CutoffWarningLevel.ALERT
    if days <= warning_days:
        return CutoffWarningLevel.WARNING
    return CutoffWarningLevel.NONE


def cutoff_warning_message(cutoff_date: Any, as_of: Any) -> Optional[str]:
    level = cutoff_warning_level(cutoff_date, as_of)
    days = days_between(as_of, cutoff_date)
    if level == CutoffWarningLevel.ALERT:
        return f"Cutoff date has passed ({abs(days)} days ago)"
    if level == CutoffWarningLevel.WARNING:
        return f"Cutoff in {days} day{'' if days == 1 else 's'}"
    return None


def free_time_expiry(eta: Any, free_time_days: int) -> Optional[date]:
    """Last day of container free time after vessel arrival."""
    arrival = to_date(eta)
    if arrival is None:
        return None
    return arrival + timedelta(days=free_time_days)
