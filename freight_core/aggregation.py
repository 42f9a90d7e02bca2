"""
Freight ERP Core - Aggregation / Rollup Engine

Dashboard rollups over collections the caller has already fetched: sales
pipeline stages, win/loss analysis, top customers with period-over-period
trend, revenue by month, generic group-by counts, HSE incident trends and
the pending cash advance (BKK) queue.

Contract shared by every function here:
- empty input yields zero-valued aggregates, never None and never an error
- inputs are not modified
- output is deterministic (stable ordering, explicit tie-breaks)
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, asdict, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from freight_core.config import WIN_RATE_TARGET
from freight_core.reconciliation import to_money
from freight_core.temporal import StalenessLevel, days_between, days_in_status, staleness_level, to_date, to_datetime

logger = logging.getLogger(__name__)


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class PeriodType(str, Enum):
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    THIS_QUARTER = "this_quarter"
    THIS_YEAR = "this_year"
    CUSTOM = "custom"


PIPELINE_STAGE_ORDER = ["draft", "pending_approval", "approved", "converted", "rejected"]
OPEN_PIPELINE_STATUSES = ("draft", "pending_approval", "approved")
FOLLOWUP_STATUSES = ("draft", "pending_approval")


# =============================================================================
# OUTPUT RECORDS
# =============================================================================

@dataclass(frozen=True)
class PipelineEntry:
    status: str
    count: int
    value: int
    conversion_rate: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WinLossBucket:
    count: int = 0
    value: int = 0
    percentage: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WinLossData:
    won: WinLossBucket
    lost: WinLossBucket
    pending: WinLossBucket
    loss_reasons: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TopCustomer:
    id: str
    name: str
    total_value: int
    job_count: int
    avg_value: int
    trend: TrendDirection
    trend_percentage: int

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["trend"] = self.trend.value
        return result


@dataclass(frozen=True)
class PeriodFilter:
    """Inclusive calendar-date range."""
    type: PeriodType
    start_date: date
    end_date: date

    def contains(self, value: Any) -> bool:
        day = to_date(value)
        return day is not None and self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class GroupTotal:
    key: str
    count: int
    total: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MonthlyRevenue:
    month: str
    revenue: int
    collected: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PendingFollowup:
    id: str
    pjo_number: Optional[str]
    customer_name: str
    value: int
    status: str
    days_in_status: int
    staleness: StalenessLevel

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["staleness"] = self.staleness.value
        return result


@dataclass(frozen=True)
class SalesKPIs:
    pipeline_value: int
    pipeline_count: int
    win_rate: float
    win_rate_target: int
    active_pjos_count: int
    new_customers_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PendingBKKItem:
    id: str
    bkk_number: Optional[str]
    jo_number: str
    amount: int
    category: str
    requested_by: str
    created_at: Any

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# HELPERS
# =============================================================================

def _is_active(record: Dict[str, Any]) -> bool:
    return record.get("is_active") is not False


def pjo_value(pjo: Dict[str, Any]) -> int:
    """Calculated revenue, falling back to the estimate, then zero."""
    if pjo.get("total_revenue_calculated") is not None:
        return to_money(pjo["total_revenue_calculated"])
    if pjo.get("total_estimated_revenue") is not None:
        return to_money(pjo["total_estimated_revenue"])
    return 0


def _is_converted(pjo: Dict[str, Any]) -> bool:
    return pjo.get("status") == "approved" and pjo.get("converted_to_jo") is True


def _round_percent(part: Any, whole: Any) -> int:
    """part/whole as a whole percentage, half-up."""
    if not whole:
        return 0
    ratio = Decimal(part) * 100 / Decimal(whole)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _rate(part: Any, whole: Any) -> float:
    if not whole:
        return 0.0
    return part / whole * 100


# =============================================================================
# PIPELINE
# =============================================================================

def pipeline_value(pjos: Iterable[Dict[str, Any]]) -> int:
    """Value of active PJOs still in the pipeline (draft, pending, approved)."""
    return sum(
        (pjo_value(p) for p in pjos if _is_active(p) and p.get("status") in OPEN_PIPELINE_STATUSES),
        0,
    )


def group_by_pipeline_stage(pjos: Iterable[Dict[str, Any]]) -> List[PipelineEntry]:
    """
    Exactly five stages in order: draft, pending_approval, approved,
    converted, rejected.

    Approved PJOs already converted to a job order are counted as
    "converted". Non-terminal stages carry the share of records that moved
    past them; terminal stages carry None.
    """
    counts = {status: 0 for status in PIPELINE_STAGE_ORDER}
    values = {status: 0 for status in PIPELINE_STAGE_ORDER}

    for pjo in pjos:
        if not _is_active(pjo):
            continue
        status = "converted" if _is_converted(pjo) else pjo.get("status")
        if status in counts:
            counts[status] += 1
            values[status] += pjo_value(pjo)

    moved_past = {
        "draft": counts["pending_approval"] + counts["approved"] + counts["converted"],
        "pending_approval": counts["approved"] + counts["converted"],
        "approved": counts["converted"],
    }

    result = []
    for status in PIPELINE_STAGE_ORDER:
        rate = None
        if status in moved_past and counts[status] > 0:
            forward = moved_past[status]
            rate = _rate(forward, forward + counts[status])
        result.append(PipelineEntry(status=status, count=counts[status], value=values[status], conversion_rate=rate))
    return result


def conversion_rate(from_count: int, to_count: int) -> float:
    """Percentage of from_count that reached the next stage; 0 when nothing entered."""
    return _rate(to_count, from_count)


def win_rate(converted: int, rejected: int) -> float:
    """converted / (converted + rejected) as a percentage."""
    return _rate(converted, converted + rejected)


def overall_conversion_rate(pjos: Iterable[Dict[str, Any]]) -> float:
    active = [p for p in pjos if _is_active(p)]
    converted = sum(1 for p in active if _is_converted(p))
    return _rate(converted, len(active))


# =============================================================================
# WIN / LOSS
# =============================================================================

def group_loss_reasons(pjos: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Rejection reasons with counts, most frequent first (ties alphabetical)."""
    reasons: Dict[str, int] = defaultdict(int)
    for pjo in pjos:
        reason = pjo.get("rejection_reason")
        if pjo.get("status") == "rejected" and reason:
            reasons[reason] += 1
    ordered = sorted(reasons.items(), key=lambda item: (-item[1], item[0]))
    return [{"reason": reason, "count": count} for reason, count in ordered]


def win_loss_data(pjos: Iterable[Dict[str, Any]]) -> WinLossData:
    """
    Split active PJOs into won (converted), lost (rejected) and pending.

    Percentages are rounded per bucket against the total of the three, so
    they may sum to 99 or 101.
    """
    active = [p for p in pjos if _is_active(p)]

    won = [p for p in active if _is_converted(p)]
    lost = [p for p in active if p.get("status") == "rejected"]
    pending = [
        p for p in active
        if p.get("status") in FOLLOWUP_STATUSES or (p.get("status") == "approved" and not _is_converted(p))
    ]
    total = len(won) + len(lost) + len(pending)

    def bucket(items: List[Dict[str, Any]]) -> WinLossBucket:
        return WinLossBucket(
            count=len(items),
            value=sum((pjo_value(p) for p in items), 0),
            percentage=_round_percent(len(items), total),
        )

    return WinLossData(
        won=bucket(won),
        lost=bucket(lost),
        pending=bucket(pending),
        loss_reasons=group_loss_reasons(active),
    )


# =============================================================================
# PERIODS
# =============================================================================

def period_dates(
    period_type: Union[PeriodType, str],
    as_of: Any,
    custom_start: Any = None,
    custom_end: Any = None
) -> PeriodFilter:
    """
    Calendar bounds of the week (Monday start), month, quarter or year containing as_of.

    Unrecognised period types fall back to the current month.
    """
    try:
        kind = PeriodType(period_type)
    except ValueError:
        logger.warning("Unknown period type %r, using this_month", period_type)
        kind = PeriodType.THIS_MONTH
    today = to_date(as_of)

    if kind == PeriodType.THIS_WEEK:
        start = today - timedelta(days=today.weekday())
        end = start + timedelta(days=6)
    elif kind == PeriodType.THIS_QUARTER:
        start = date(today.year, (today.month - 1) // 3 * 3 + 1, 1)
        end = start + relativedelta(months=3, days=-1)
    elif kind == PeriodType.THIS_YEAR:
        start = date(today.year, 1, 1)
        end = date(today.year, 12, 31)
    elif kind == PeriodType.CUSTOM:
        start = to_date(custom_start) or today
        end = to_date(custom_end) or today
    else:
        start = today.replace(day=1)
        end = start + relativedelta(months=1, days=-1)

    return PeriodFilter(type=kind, start_date=start, end_date=end)


def previous_period(period: PeriodFilter) -> PeriodFilter:
    """Period of equal length ending the day before period starts."""
    length = (period.end_date - period.start_date).days
    end = period.start_date - timedelta(days=1)
    return PeriodFilter(type=period.type, start_date=end - timedelta(days=length), end_date=end)


def filter_by_period(
    records: Iterable[Dict[str, Any]],
    period: PeriodFilter,
    date_field: str = "created_at"
) -> List[Dict[str, Any]]:
    return [r for r in records if period.contains(r.get(date_field))]


# =============================================================================
# TOP CUSTOMERS
# =============================================================================

def customer_trend(current_value: Any, previous_value: Any) -> Tuple[TrendDirection, int]:
    """Direction and whole-percent size of the change from previous to current."""
    current = to_money(current_value)
    previous = to_money(previous_value)

    if previous == 0:
        if current > 0:
            return (TrendDirection.UP, 100)
        return (TrendDirection.STABLE, 0)

    change = _round_percent(abs(current - previous), previous)
    if current > previous:
        return (TrendDirection.UP, change)
    if current < previous:
        return (TrendDirection.DOWN, change)
    return (TrendDirection.STABLE, 0)


def rank_customers_by_value(
    pjos: Iterable[Dict[str, Any]],
    period: PeriodFilter,
    previous: PeriodFilter
) -> List[TopCustomer]:
    """
    Customers ranked by approved/converted PJO value created in `period`.

    Ties on value are broken by customer id so the ranking is stable.
    """
    won = [p for p in pjos if p.get("status") in ("approved", "converted")]

    current: Dict[str, Dict[str, Any]] = {}
    for pjo in won:
        if not period.contains(pjo.get("created_at")):
            continue
        entry = current.setdefault(
            pjo.get("customer_id"),
            {"name": pjo.get("customer_name"), "total": 0, "jobs": 0},
        )
        entry["total"] += pjo_value(pjo)
        entry["jobs"] += 1

    earlier: Dict[str, int] = defaultdict(int)
    for pjo in won:
        if previous.contains(pjo.get("created_at")):
            earlier[pjo.get("customer_id")] += pjo_value(pjo)

    customers = []
    for customer_id, data in current.items():
        trend, trend_pct = customer_trend(data["total"], earlier.get(customer_id, 0))
        avg = to_money(Decimal(data["total"]) / Decimal(data["jobs"])) if data["jobs"] else 0
        customers.append(TopCustomer(
            id=customer_id,
            name=data["name"],
            total_value=data["total"],
            job_count=data["jobs"],
            avg_value=avg,
            trend=trend,
            trend_percentage=trend_pct,
        ))

    customers.sort(key=lambda c: (-c.total_value, str(c.id)))
    logger.debug("Ranked %d customers for %s..%s", len(customers), period.start_date, period.end_date)
    return customers


# =============================================================================
# GENERIC GROUPING
# =============================================================================

KeySelector = Union[str, Callable[[Dict[str, Any]], Any]]


def _resolve(selector: KeySelector) -> Callable[[Dict[str, Any]], Any]:
    if callable(selector):
        return selector
    return lambda record: record.get(selector)


def group_by_key(
    records: Iterable[Dict[str, Any]],
    key: KeySelector,
    value: Optional[KeySelector] = None
) -> List[GroupTotal]:
    """
    Group records by a field name or key function, with count and summed value.

    Missing keys are grouped under "unknown". Output is sorted by key.
    """
    key_fn = _resolve(key)
    value_fn = _resolve(value) if value is not None else None

    groups: Dict[str, Dict[str, int]] = defaultdict(lambda: {"count": 0, "total": 0})
    for record in records:
        group_key = key_fn(record)
        group_key = "unknown" if group_key is None else str(group_key.value if isinstance(group_key, Enum) else group_key)
        groups[group_key]["count"] += 1
        if value_fn is not None:
            groups[group_key]["total"] += to_money(value_fn(record))

    return [GroupTotal(key=k, count=v["count"], total=v["total"]) for k, v in sorted(groups.items())]


def count_by(records: Iterable[Dict[str, Any]], key: KeySelector) -> Dict[str, int]:
    return {group.key: group.count for group in group_by_key(records, key)}


def month_key(value: Any) -> Optional[str]:
    """YYYY-MM for a date-like value."""
    day = to_date(value)
    return day.strftime("%Y-%m") if day is not None else None


# =============================================================================
# REVENUE
# =============================================================================

def revenue_mtd(invoices: Iterable[Dict[str, Any]], as_of: Any) -> int:
    """Invoiced amount (excluding cancelled) dated in the month of as_of."""
    today = to_date(as_of)
    total = 0
    for inv in invoices:
        if inv.get("status") == "cancelled":
            continue
        day = to_date(inv.get("invoice_date"))
        if day is not None and day.year == today.year and day.month == today.month:
            total += to_money(inv.get("total_amount"))
    return total


def group_revenue_by_month(invoices: Iterable[Dict[str, Any]]) -> List[MonthlyRevenue]:
    """Revenue and collections per invoice month (YYYY-MM-01), oldest first."""
    months: Dict[str, Dict[str, int]] = defaultdict(lambda: {"revenue": 0, "collected": 0})
    for inv in invoices:
        if inv.get("status") == "cancelled":
            continue
        day = to_date(inv.get("invoice_date"))
        if day is None:
            continue
        month = months[day.strftime("%Y-%m-01")]
        month["revenue"] += to_money(inv.get("total_amount"))
        month["collected"] += to_money(inv.get("amount_paid"))
    return [MonthlyRevenue(month=m, revenue=v["revenue"], collected=v["collected"]) for m, v in sorted(months.items())]


def revenue_trend(invoices: Iterable[Dict[str, Any]], as_of: Any, months: int = 6) -> List[MonthlyRevenue]:
    """Monthly revenue from the first day of the month `months` months before as_of."""
    cutoff = (to_date(as_of) - relativedelta(months=months)).replace(day=1)
    recent = [inv for inv in invoices if (to_date(inv.get("invoice_date")) or date.min) >= cutoff]
    return group_revenue_by_month(recent)


# =============================================================================
# SALES FOLLOW-UP & KPIs
# =============================================================================

def pending_followups(pjos: Iterable[Dict[str, Any]], as_of: Any) -> List[PendingFollowup]:
    """Draft / pending-approval PJOs with their staleness, oldest first."""
    followups = []
    for pjo in pjos:
        if not _is_active(pjo) or pjo.get("status") not in FOLLOWUP_STATUSES:
            continue
        days = days_in_status(pjo.get("created_at"), as_of)
        followups.append(PendingFollowup(
            id=pjo.get("id"),
            pjo_number=pjo.get("pjo_number"),
            customer_name=pjo.get("customer_name") or "Unknown",
            value=pjo_value(pjo),
            status=pjo["status"],
            days_in_status=days,
            staleness=staleness_level(pjo["status"], days),
        ))
    followups.sort(key=lambda f: (-f.days_in_status, str(f.id)))
    return followups


def count_stale(followups: Iterable[PendingFollowup]) -> int:
    return sum(1 for f in followups if f.staleness != StalenessLevel.NORMAL)


def sales_kpis(pjos: Iterable[Dict[str, Any]], new_customers_count: int = 0) -> SalesKPIs:
    active = [p for p in pjos if _is_active(p)]
    in_pipeline = [
        p for p in active
        if p.get("status") in FOLLOWUP_STATUSES or (p.get("status") == "approved" and not _is_converted(p))
    ]
    converted = sum(1 for p in active if _is_converted(p))
    rejected = sum(1 for p in active if p.get("status") == "rejected")

    return SalesKPIs(
        pipeline_value=sum((pjo_value(p) for p in in_pipeline), 0),
        pipeline_count=len(in_pipeline),
        win_rate=win_rate(converted, rejected),
        win_rate_target=WIN_RATE_TARGET,
        active_pjos_count=sum(1 for p in active if p.get("status") in FOLLOWUP_STATUSES),
        new_customers_count=new_customers_count,
    )


# =============================================================================
# HSE INCIDENTS
# =============================================================================

def _has_injury(incident: Dict[str, Any], lost_time_only: bool = False) -> bool:
    if incident.get("incident_type") != "accident":
        return False
    for person in incident.get("persons") or []:
        if person.get("person_type") != "injured":
            continue
        if not lost_time_only or (person.get("days_lost") or 0) > 0:
            return True
    return False


def monthly_incident_trend(incidents: Iterable[Dict[str, Any]], as_of: Any, months: int = 6) -> List[Dict[str, Any]]:
    """Incident, near-miss and injury counts for the last `months` months (oldest first)."""
    incidents = list(incidents)
    current_month = to_date(as_of).replace(day=1)
    trend = []
    for offset in range(months - 1, -1, -1):
        label = (current_month - relativedelta(months=offset)).strftime("%Y-%m")
        in_month = [i for i in incidents if month_key(i.get("incident_date")) == label]
        trend.append({
            "month": label,
            "total": len(in_month),
            "near_misses": sum(1 for i in in_month if i.get("incident_type") == "near_miss"),
            "injuries": sum(1 for i in in_month if _has_injury(i)),
        })
    return trend


def days_since_last_lti(incidents: Iterable[Dict[str, Any]], as_of: Any) -> int:
    """
    Days since the most recent lost-time injury.

    Without any LTI on record, days since 1 January of as_of's year (capped at 365).
    """
    today = to_date(as_of)
    lti_dates = [
        d for d in (to_date(i.get("incident_date")) for i in incidents if _has_injury(i, lost_time_only=True))
        if d is not None
    ]
    if not lti_dates:
        return min((today - date(today.year, 1, 1)).days, 365)
    return max(0, days_between(max(lti_dates), today))


# =============================================================================
# CASH ADVANCE QUEUE
# =============================================================================

def _pending_bkks(bkks: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [b for b in bkks if b.get("status") == "pending"]


def count_pending_bkk(bkks: Iterable[Dict[str, Any]]) -> int:
    return len(_pending_bkks(bkks))


def pending_bkk_amount(bkks: Iterable[Dict[str, Any]]) -> int:
    """Total amount_requested across BKKs awaiting approval."""
    return sum((to_money(b.get("amount_requested")) for b in _pending_bkks(bkks)), 0)


def _created_sort_key(bkk: Dict[str, Any]) -> datetime:
    created = to_datetime(bkk.get("created_at"))
    if created is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created


def pending_bkk_list(bkks: Iterable[Dict[str, Any]], limit: int = 5) -> List[PendingBKKItem]:
    """
    Newest pending BKKs for the approval queue, at most `limit` of them.

    Ordered by created_at descending, then id. Undated requests sort last.
    """
    pending = sorted(_pending_bkks(bkks), key=lambda b: str(b.get("id") or ""))
    pending.sort(key=_created_sort_key, reverse=True)

    items = []
    for bkk in pending[:max(0, limit)]:
        job_order = bkk.get("job_order") or {}
        requester = bkk.get("requested_by_user") or {}
        items.append(PendingBKKItem(
            id=bkk.get("id"),
            bkk_number=bkk.get("bkk_number"),
            jo_number=job_order.get("jo_number") or "-",
            amount=to_money(bkk.get("amount_requested")),
            category=bkk.get("purpose") or "General",
            requested_by=requester.get("full_name") or "Unknown",
            created_at=bkk.get("created_at"),
        ))
    return items
