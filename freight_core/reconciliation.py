"""
Freight ERP Core - Monetary Reconciliation Engine

Budget consumption for cash disbursements (BKK), settlement differences,
invoice totals with VAT, receivable/payable aging and cost variance.

Money is carried as integers in the smallest currency unit. Anything that can
produce a fraction (quantity x unit price, VAT, currency conversion) goes
through Decimal and is quantized to a whole unit with ROUND_HALF_UP, so sums
never accumulate floating-point error and summation order never matters.
"""

import logging
from dataclasses import dataclass, asdict, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from freight_core.config import COST_AT_RISK_PERCENT, DEFAULT_MARGIN_TARGET, VAT_RATE_PERCENT
from freight_core.temporal import days_between
from freight_core.workflow_engine import BKKStatus, InvoiceStatus

logger = logging.getLogger(__name__)


# =============================================================================
# MONEY HELPERS
# =============================================================================

def to_decimal(value: Any) -> Decimal:
    """Convert value to Decimal (None -> 0)."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_money(value: Any) -> int:
    """Quantize a value to whole currency units (ROUND_HALF_UP)."""
    if value is None:
        return 0
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return int(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount: Any, percent: Any) -> int:
    """percent% of amount, quantized to whole units."""
    return to_money(to_decimal(amount) * to_decimal(percent) / Decimal("100"))


# =============================================================================
# BKK (CASH DISBURSEMENT) RECONCILIATION
# =============================================================================

BKK_INACTIVE_STATUSES = frozenset({BKKStatus.REJECTED.value, BKKStatus.CANCELLED.value})
BKK_DISBURSED_STATUSES = frozenset({BKKStatus.RELEASED.value, BKKStatus.SETTLED.value})
BKK_PENDING_STATUSES = frozenset({BKKStatus.DRAFT.value, BKKStatus.PENDING.value, BKKStatus.APPROVED.value})


class SettlementType(str, Enum):
    RETURN = "return"           # money comes back to the cashier
    ADDITIONAL = "additional"   # requester is owed the overspend
    EXACT = "exact"


@dataclass(frozen=True)
class AvailableBudget:
    budget_amount: int
    already_disbursed: int
    pending_requests: int
    available: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SettlementDifference:
    released_amount: int
    spent_amount: int
    difference: int
    type: SettlementType

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["type"] = self.type.value
        return result


@dataclass(frozen=True)
class BKKSummary:
    total_requested: int
    total_released: int
    total_settled: int
    pending_return: int
    count: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def available_budget(budget_amount: Any, requests: Iterable[Dict[str, Any]]) -> AvailableBudget:
    """
    Budget left on a cost item after existing disbursement requests.

    Rejected/cancelled requests are ignored. Released/settled requests count
    as disbursed; draft/pending/approved requests are still reserved. The
    result may be negative: over-allocation is reported, not rejected.
    """
    budget = to_money(budget_amount)
    disbursed = 0
    pending = 0

    for request in requests:
        status = request.get("status")
        if status in BKK_INACTIVE_STATUSES:
            continue
        amount = to_money(request.get("amount_requested"))
        if status in BKK_DISBURSED_STATUSES:
            disbursed += amount
        elif status in BKK_PENDING_STATUSES:
            pending += amount
        else:
            logger.warning("Ignoring BKK %s with unknown status '%s'", request.get("id"), status)

    return AvailableBudget(
        budget_amount=budget,
        already_disbursed=disbursed,
        pending_requests=pending,
        available=budget - disbursed - pending,
    )


def settlement_difference(released_amount: Any, spent_amount: Any) -> SettlementDifference:
    """Compare cash released against cash actually spent."""
    released = to_money(released_amount)
    spent = to_money(spent_amount)

    if spent < released:
        kind = SettlementType.RETURN
    elif spent > released:
        kind = SettlementType.ADDITIONAL
    else:
        kind = SettlementType.EXACT

    return SettlementDifference(
        released_amount=released,
        spent_amount=spent,
        difference=abs(released - spent),
        type=kind,
    )


def bkk_summary(bkks: Iterable[Dict[str, Any]]) -> BKKSummary:
    """Totals and per-status counts for the BKKs of one job order."""
    count = {status.value: 0 for status in BKKStatus}
    total_requested = 0
    total_released = 0
    total_settled = 0

    for bkk in bkks:
        status = bkk.get("status")
        if status in count:
            count[status] += 1
        amount = to_money(bkk.get("amount_requested"))

        if status not in BKK_INACTIVE_STATUSES:
            total_requested += amount
        if status in BKK_DISBURSED_STATUSES:
            total_released += amount
        if status == BKKStatus.SETTLED.value and bkk.get("amount_spent") is not None:
            total_settled += to_money(bkk.get("amount_spent"))

    return BKKSummary(
        total_requested=total_requested,
        total_released=total_released,
        total_settled=total_settled,
        pending_return=total_released - total_settled,
        count=count,
    )


# =============================================================================
# INVOICE TOTALS
# =============================================================================

@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: int
    tax_amount: int
    grand_total: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def line_amount(item: Dict[str, Any]) -> int:
    """quantity x unit_price for one line, quantized to whole units."""
    return to_money(to_decimal(item.get("quantity")) * to_decimal(item.get("unit_price")))


def calculate_vat(amount: Any, rate_percent: Any = VAT_RATE_PERCENT) -> int:
    return percent_of(amount, rate_percent)


def invoice_totals(line_items: Iterable[Dict[str, Any]], tax_rate_percent: Any = VAT_RATE_PERCENT) -> InvoiceTotals:
    """Subtotal, VAT and grand total for a set of invoice lines."""
    subtotal = sum((line_amount(item) for item in line_items), 0)
    tax_amount = calculate_vat(subtotal, tax_rate_percent)
    return InvoiceTotals(subtotal=subtotal, tax_amount=tax_amount, grand_total=subtotal + tax_amount)


def term_invoice_totals(revenue: Any, percentage: Any) -> Dict[str, int]:
    """Amounts for a progress (term) invoice billing `percentage`% of JO revenue."""
    base_amount = percent_of(revenue, percentage)
    vat_amount = calculate_vat(base_amount)
    return {
        "base_amount": base_amount,
        "vat_amount": vat_amount,
        "total_amount": base_amount + vat_amount,
    }


# =============================================================================
# AGING
# =============================================================================

class AgingBucket(str, Enum):
    CURRENT = "current"
    DAYS_1_30 = "1-30 days"
    DAYS_31_60 = "31-60 days"
    DAYS_61_90 = "61-90 days"
    OVER_90 = "over 90 days"


AGING_BUCKET_ORDER: List[AgingBucket] = [
    AgingBucket.CURRENT,
    AgingBucket.DAYS_1_30,
    AgingBucket.DAYS_31_60,
    AgingBucket.DAYS_61_90,
    AgingBucket.OVER_90,
]

# Settled or voided documents are not outstanding
AR_EXCLUDED_STATUSES = frozenset({InvoiceStatus.CANCELLED.value, InvoiceStatus.PAID.value})
AP_EXCLUDED_STATUSES = frozenset({"cancelled", "paid"})


@dataclass(frozen=True)
class AgingBucketTotal:
    bucket: AgingBucket
    invoice_count: int
    total_amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bucket": self.bucket.value,
            "invoice_count": self.invoice_count,
            "total_amount": self.total_amount,
        }


def days_overdue(due_date: Any, as_of: Any) -> int:
    """Whole days past due (0 when not yet due or no due date)."""
    days = days_between(due_date, as_of)
    if days is None:
        return 0
    return max(0, days)


def aging_bucket(due_date: Any, as_of: Any) -> AgingBucket:
    """Classify a due date into its aging bucket; no due date is current."""
    days = days_overdue(due_date, as_of)
    if days <= 0:
        return AgingBucket.CURRENT
    if days <= 30:
        return AgingBucket.DAYS_1_30
    if days <= 60:
        return AgingBucket.DAYS_31_60
    if days <= 90:
        return AgingBucket.DAYS_61_90
    return AgingBucket.OVER_90


def overdue_severity(days: int) -> str:
    """Colour band for an overdue row: warning (<=30), orange (<=60), critical."""
    if days <= 30:
        return "warning"
    if days <= 60:
        return "orange"
    return "critical"


def _group_by_bucket(rows: Iterable[Dict[str, Any]], amount_fn, as_of: Any) -> List[AgingBucketTotal]:
    counts = {bucket: 0 for bucket in AGING_BUCKET_ORDER}
    amounts = {bucket: 0 for bucket in AGING_BUCKET_ORDER}
    for row in rows:
        bucket = aging_bucket(row.get("due_date"), as_of)
        counts[bucket] += 1
        amounts[bucket] += amount_fn(row)
    return [
        AgingBucketTotal(bucket=bucket, invoice_count=counts[bucket], total_amount=amounts[bucket])
        for bucket in AGING_BUCKET_ORDER
    ]


def has_critical_overdue(buckets: Iterable[AgingBucketTotal]) -> bool:
    """True when anything sits in the over-90-days bucket."""
    return any(b.bucket == AgingBucket.OVER_90 and b.total_amount > 0 for b in buckets)


# --- Accounts receivable ----------------------------------------------------

def ar_amount_due(invoice: Dict[str, Any]) -> int:
    due = to_money(invoice.get("total_amount")) - to_money(invoice.get("amount_paid"))
    return max(0, due)


def _outstanding_ar(invoices: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        inv for inv in invoices
        if inv.get("status") not in AR_EXCLUDED_STATUSES and ar_amount_due(inv) > 0
    ]


def total_ar(invoices: Iterable[Dict[str, Any]]) -> int:
    return sum((ar_amount_due(inv) for inv in _outstanding_ar(invoices)), 0)


def overdue_ar(invoices: Iterable[Dict[str, Any]], as_of: Any) -> int:
    return sum(
        (ar_amount_due(inv) for inv in _outstanding_ar(invoices) if days_overdue(inv.get("due_date"), as_of) > 0),
        0,
    )


def count_outstanding_ar(invoices: Iterable[Dict[str, Any]]) -> int:
    return len(_outstanding_ar(invoices))


def group_by_aging_bucket(invoices: Iterable[Dict[str, Any]], as_of: Any) -> List[AgingBucketTotal]:
    """
    Receivables aging: always the five buckets in fixed order.

    Bucket totals sum exactly to total_ar() for the same invoices.
    """
    return _group_by_bucket(_outstanding_ar(invoices), ar_amount_due, as_of)


# --- Accounts payable -------------------------------------------------------

def ap_amount_due(vendor_invoice: Dict[str, Any]) -> int:
    return max(0, to_money(vendor_invoice.get("amount_due")))


def _outstanding_ap(vendor_invoices: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        inv for inv in vendor_invoices
        if inv.get("status") not in AP_EXCLUDED_STATUSES and ap_amount_due(inv) > 0
    ]


def total_ap(vendor_invoices: Iterable[Dict[str, Any]]) -> int:
    return sum((ap_amount_due(inv) for inv in _outstanding_ap(vendor_invoices)), 0)


def overdue_ap(vendor_invoices: Iterable[Dict[str, Any]], as_of: Any) -> int:
    return sum(
        (ap_amount_due(inv) for inv in _outstanding_ap(vendor_invoices) if days_overdue(inv.get("due_date"), as_of) > 0),
        0,
    )


def count_pending_verification(vendor_invoices: Iterable[Dict[str, Any]]) -> int:
    """Vendor invoices received but not yet verified."""
    return sum(1 for inv in vendor_invoices if inv.get("status") == "received")


def group_ap_by_aging_bucket(vendor_invoices: Iterable[Dict[str, Any]], as_of: Any) -> List[AgingBucketTotal]:
    """Payables aging; vendor invoices without a due date are current."""
    return _group_by_bucket(_outstanding_ap(vendor_invoices), ap_amount_due, as_of)


# =============================================================================
# CASH FLOW
# =============================================================================

@dataclass(frozen=True)
class CashFlowProjection:
    expected_inflows: int
    expected_outflows: int
    net_projection: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def net_cash(received: Any, paid: Any) -> int:
    return to_money(received) - to_money(paid)


def _due_within(row: Dict[str, Any], as_of: Any, days: int) -> bool:
    offset = days_between(as_of, row.get("due_date"))
    return offset is not None and 0 <= offset <= days


def cash_flow_projection(
    ar_invoices: Iterable[Dict[str, Any]],
    ap_invoices: Iterable[Dict[str, Any]],
    days: int,
    as_of: Any
) -> CashFlowProjection:
    """Receivables and payables falling due in the next `days` days (inclusive)."""
    inflows = sum((ar_amount_due(inv) for inv in _outstanding_ar(ar_invoices) if _due_within(inv, as_of, days)), 0)
    outflows = sum((ap_amount_due(inv) for inv in _outstanding_ap(ap_invoices) if _due_within(inv, as_of, days)), 0)
    return CashFlowProjection(
        expected_inflows=inflows,
        expected_outflows=outflows,
        net_projection=inflows - outflows,
    )


# =============================================================================
# MARGIN & COST VARIANCE
# =============================================================================

class CostStatus(str, Enum):
    CONFIRMED = "confirmed"
    AT_RISK = "at_risk"
    EXCEEDED = "exceeded"


@dataclass(frozen=True)
class CostStatusResult:
    status: CostStatus
    variance: int
    variance_pct: float

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, "variance": self.variance, "variance_pct": self.variance_pct}


@dataclass(frozen=True)
class BudgetAnalysis:
    total_estimated: int
    total_actual: int
    total_variance: int
    variance_pct: float
    items_confirmed: int
    items_pending: int
    items_over_budget: int
    items_under_budget: int
    all_confirmed: bool
    has_overruns: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def gross_profit(revenue: Any, cost: Any) -> int:
    return to_money(revenue) - to_money(cost)


def profit_margin(profit: Any, revenue: Any) -> float:
    """Profit as a percentage of revenue; 0 when there is no revenue."""
    revenue_d = to_decimal(revenue)
    if revenue_d == 0:
        return 0.0
    return float(to_decimal(profit) / revenue_d * 100)


def margin_indicator(margin: float, target: float = DEFAULT_MARGIN_TARGET) -> str:
    """Traffic light for a margin: green at target, yellow from half the target, else red."""
    if margin >= target:
        return "green"
    if margin >= target * 0.5:
        return "yellow"
    return "red"


def percentage_change(current: Any, previous: Any) -> float:
    """Relative change in percent; from zero it is 100 (growth) or 0."""
    previous_d = to_decimal(previous)
    current_d = to_decimal(current)
    if previous_d == 0:
        return 100.0 if current_d > 0 else 0.0
    return float((current_d - previous_d) / previous_d * 100)


def _variance_pct(variance: int, estimated: int) -> float:
    if estimated <= 0:
        return 0.0
    return float(Decimal(variance) / Decimal(estimated) * 100)


def cost_variance(estimated_amount: Any, actual_amount: Any) -> Tuple[int, float]:
    """(actual - estimated, variance as percent of estimate); 0.0 percent without an estimate."""
    estimated = to_money(estimated_amount)
    variance = to_money(actual_amount) - estimated
    return variance, _variance_pct(variance, estimated)


def cost_status(estimated_amount: Any, actual_amount: Any) -> CostStatusResult:
    """
    Compare an actual cost against its estimate.

    confirmed while actual <= COST_AT_RISK_PERCENT% of estimate, at_risk up to
    the estimate, exceeded beyond it.
    """
    estimated = to_money(estimated_amount)
    actual = to_money(actual_amount)
    variance, variance_pct = cost_variance(estimated, actual)

    if actual * 100 <= estimated * COST_AT_RISK_PERCENT:
        status = CostStatus.CONFIRMED
    elif actual <= estimated:
        status = CostStatus.AT_RISK
    else:
        status = CostStatus.EXCEEDED

    return CostStatusResult(status=status, variance=variance, variance_pct=variance_pct)


def analyze_budget(cost_items: Iterable[Dict[str, Any]]) -> BudgetAnalysis:
    """Roll up PJO cost items: estimate vs confirmed actuals."""
    cost_items = list(cost_items)
    total_estimated = sum((to_money(item.get("estimated_amount")) for item in cost_items), 0)
    confirmed = [item for item in cost_items if item.get("actual_amount") is not None]
    total_actual = sum((to_money(item.get("actual_amount")) for item in confirmed), 0)
    total_variance = total_actual - total_estimated

    items_pending = len(cost_items) - len(confirmed)
    items_over = sum(1 for item in cost_items if item.get("status") == "exceeded")
    items_under = sum(1 for item in cost_items if item.get("status") == "under_budget")

    return BudgetAnalysis(
        total_estimated=total_estimated,
        total_actual=total_actual,
        total_variance=total_variance,
        variance_pct=_variance_pct(total_variance, total_estimated),
        items_confirmed=len(confirmed),
        items_pending=items_pending,
        items_over_budget=items_over,
        items_under_budget=items_under,
        all_confirmed=items_pending == 0 and len(cost_items) > 0,
        has_overruns=items_over > 0,
    )


def convert_to_idr(amount: Any, currency: Optional[str], exchange_rate: Any) -> int:
    """Convert a foreign-currency amount to IDR at the given rate."""
    if not currency or currency.upper() == "IDR":
        return to_money(amount)
    return to_money(to_decimal(amount) * to_decimal(exchange_rate))
