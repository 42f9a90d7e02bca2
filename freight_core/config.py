"""
Freight ERP Core - Configuration

Business constants shared by the reconciliation, temporal and aggregation
engines. Every value can be overridden through the environment (or a local
.env file) so finance can tune thresholds without a code change.
"""

import os
import logging
from typing import Dict

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    """Read an integer from the environment, falling back to default."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using default %s", name, raw, default)
        return default


# =============================================================================
# MONETARY
# =============================================================================

# Indonesian VAT (PPN), applied to invoice subtotals
VAT_RATE_PERCENT = _env_int("FREIGHT_VAT_RATE_PERCENT", 11)

# Target gross margin (%) used for margin indicators
DEFAULT_MARGIN_TARGET = _env_int("FREIGHT_MARGIN_TARGET", 20)

# Cost items above this share of their estimate are "at risk"
COST_AT_RISK_PERCENT = _env_int("FREIGHT_COST_AT_RISK_PERCENT", 90)


# =============================================================================
# TEMPORAL
# =============================================================================

# Dashboard snapshots older than this are stale (5 minutes)
STALENESS_THRESHOLD_MS = _env_int("FREIGHT_STALENESS_THRESHOLD_MS", 5 * 60 * 1000)

# Certificates expiring within this many days are "expiring_soon"
EXPIRY_WARNING_DAYS = _env_int("FREIGHT_EXPIRY_WARNING_DAYS", 30)

# Booking cutoffs within this many days raise a warning
CUTOFF_WARNING_DAYS = _env_int("FREIGHT_CUTOFF_WARNING_DAYS", 3)

# Days-in-status thresholds per PJO status: {status: {level: days}}
# A level applies when days_in_status is strictly greater than its value.
STALENESS_THRESHOLDS: Dict[str, Dict[str, int]] = {
    "draft": {
        "alert": _env_int("FREIGHT_DRAFT_ALERT_DAYS", 7),
        "warning": _env_int("FREIGHT_DRAFT_WARNING_DAYS", 5),
    },
    "pending_approval": {
        "warning": _env_int("FREIGHT_PENDING_APPROVAL_WARNING_DAYS", 3),
    },
}


# =============================================================================
# SALES
# =============================================================================

WIN_RATE_TARGET = _env_int("FREIGHT_WIN_RATE_TARGET", 60)
