"""
Freight ERP Core - Document Lifecycle Engine

This module implements the deterministic status state machines for every
document type handled by the forwarding operation. Each document type owns a
closed status enum and a transition table ({current_status: allowed targets});
a single table-driven validator works over all of them.

The engine is pure business logic with no HTTP or DB calls. Callers load a
row, ask the engine whether the requested status change is legal, and persist
the document the engine hands back.

Document Types Supported:
- INVOICE: customer invoices (draft -> sent -> paid / overdue)
- DISBURSEMENT: BKK cash disbursement vouchers
- BILL_OF_LADING: B/L with amendment loop
- SHIPPING_INSTRUCTION: SI with amendment loop
- ARRIVAL_NOTICE: linear notification flow
- CARGO_MANIFEST: submission / approval
- BOOKING: freight bookings, cancellable until completion
"""

from enum import Enum
from datetime import datetime
from types import MappingProxyType
from typing import Optional, Dict, List, Tuple, Any, Mapping, FrozenSet, Iterable
import logging

from freight_core.errors import UnknownDocumentTypeError
from freight_core.temporal import to_date

logger = logging.getLogger(__name__)

TransitionTable = Mapping[str, FrozenSet[str]]


# =============================================================================
# DOCUMENT TYPE DEFINITIONS
# =============================================================================

class DocType(str, Enum):
    """Document types that carry a status lifecycle."""
    INVOICE = "invoice"
    DISBURSEMENT = "disbursement"                 # BKK (Bukti Kas Keluar)
    BILL_OF_LADING = "bill_of_lading"
    SHIPPING_INSTRUCTION = "shipping_instruction"
    ARRIVAL_NOTICE = "arrival_notice"
    CARGO_MANIFEST = "cargo_manifest"
    BOOKING = "booking"


# =============================================================================
# STATUS ENUMS
# =============================================================================

class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    OVERDUE = "overdue"       # only when due_date < today
    PAID = "paid"
    CANCELLED = "cancelled"


class BKKStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RELEASED = "released"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class BLStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    ISSUED = "issued"
    RELEASED = "released"
    SURRENDERED = "surrendered"
    AMENDED = "amended"


class SIStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    AMENDED = "amended"


class ArrivalNoticeStatus(str, Enum):
    PENDING = "pending"
    NOTIFIED = "notified"
    CLEARED = "cleared"
    DELIVERED = "delivered"


class ManifestStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"


class BookingStatus(str, Enum):
    DRAFT = "draft"
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    AMENDED = "amended"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# =============================================================================
# TRANSITION TABLES
# =============================================================================

def _build_table(definition: Dict[Enum, Iterable[Enum]]) -> TransitionTable:
    """Freeze a {status: [targets]} definition into a read-only table."""
    return MappingProxyType({
        status.value: frozenset(target.value for target in targets)
        for status, targets in definition.items()
    })


INVOICE_TRANSITIONS = _build_table({
    InvoiceStatus.DRAFT: [InvoiceStatus.SENT, InvoiceStatus.CANCELLED],
    InvoiceStatus.SENT: [InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED],
    InvoiceStatus.OVERDUE: [InvoiceStatus.PAID, InvoiceStatus.CANCELLED],
    InvoiceStatus.PAID: [],          # Terminal
    InvoiceStatus.CANCELLED: [],     # Terminal
})

BKK_TRANSITIONS = _build_table({
    BKKStatus.DRAFT: [BKKStatus.PENDING],
    BKKStatus.PENDING: [BKKStatus.APPROVED, BKKStatus.REJECTED, BKKStatus.CANCELLED],
    BKKStatus.APPROVED: [BKKStatus.RELEASED, BKKStatus.CANCELLED],
    BKKStatus.RELEASED: [BKKStatus.SETTLED],
    BKKStatus.SETTLED: [],           # Terminal
    BKKStatus.REJECTED: [],          # Terminal
    BKKStatus.CANCELLED: [],         # Terminal
})

BL_TRANSITIONS = _build_table({
    BLStatus.DRAFT: [BLStatus.SUBMITTED, BLStatus.AMENDED],
    BLStatus.SUBMITTED: [BLStatus.ISSUED, BLStatus.DRAFT, BLStatus.AMENDED],
    BLStatus.ISSUED: [BLStatus.RELEASED, BLStatus.SURRENDERED, BLStatus.AMENDED],
    BLStatus.RELEASED: [BLStatus.AMENDED],
    BLStatus.SURRENDERED: [BLStatus.AMENDED],
    BLStatus.AMENDED: [BLStatus.SUBMITTED, BLStatus.ISSUED],
})

SI_TRANSITIONS = _build_table({
    SIStatus.DRAFT: [SIStatus.SUBMITTED, SIStatus.AMENDED],
    SIStatus.SUBMITTED: [SIStatus.CONFIRMED, SIStatus.DRAFT, SIStatus.AMENDED],
    SIStatus.CONFIRMED: [SIStatus.AMENDED],
    SIStatus.AMENDED: [SIStatus.SUBMITTED, SIStatus.CONFIRMED],
})

ARRIVAL_NOTICE_TRANSITIONS = _build_table({
    ArrivalNoticeStatus.PENDING: [ArrivalNoticeStatus.NOTIFIED],
    ArrivalNoticeStatus.NOTIFIED: [ArrivalNoticeStatus.CLEARED],
    ArrivalNoticeStatus.CLEARED: [ArrivalNoticeStatus.DELIVERED],
    ArrivalNoticeStatus.DELIVERED: [],   # Terminal
})

MANIFEST_TRANSITIONS = _build_table({
    ManifestStatus.DRAFT: [ManifestStatus.SUBMITTED],
    ManifestStatus.SUBMITTED: [ManifestStatus.APPROVED, ManifestStatus.DRAFT],
    ManifestStatus.APPROVED: [],         # Terminal
})

BOOKING_TRANSITIONS = _build_table({
    BookingStatus.DRAFT: [BookingStatus.REQUESTED, BookingStatus.CANCELLED],
    BookingStatus.REQUESTED: [BookingStatus.CONFIRMED, BookingStatus.CANCELLED],
    BookingStatus.CONFIRMED: [BookingStatus.AMENDED, BookingStatus.SHIPPED, BookingStatus.CANCELLED],
    BookingStatus.AMENDED: [BookingStatus.SHIPPED, BookingStatus.CANCELLED],
    BookingStatus.SHIPPED: [BookingStatus.COMPLETED, BookingStatus.CANCELLED],
    BookingStatus.COMPLETED: [],         # Terminal
    BookingStatus.CANCELLED: [],         # Terminal
})

TRANSITION_TABLES: Mapping[str, TransitionTable] = MappingProxyType({
    DocType.INVOICE.value: INVOICE_TRANSITIONS,
    DocType.DISBURSEMENT.value: BKK_TRANSITIONS,
    DocType.BILL_OF_LADING.value: BL_TRANSITIONS,
    DocType.SHIPPING_INSTRUCTION.value: SI_TRANSITIONS,
    DocType.ARRIVAL_NOTICE.value: ARRIVAL_NOTICE_TRANSITIONS,
    DocType.CARGO_MANIFEST.value: MANIFEST_TRANSITIONS,
    DocType.BOOKING.value: BOOKING_TRANSITIONS,
})

STATUS_ENUMS: Mapping[str, type] = MappingProxyType({
    DocType.INVOICE.value: InvoiceStatus,
    DocType.DISBURSEMENT.value: BKKStatus,
    DocType.BILL_OF_LADING.value: BLStatus,
    DocType.SHIPPING_INSTRUCTION.value: SIStatus,
    DocType.ARRIVAL_NOTICE.value: ArrivalNoticeStatus,
    DocType.CARGO_MANIFEST.value: ManifestStatus,
    DocType.BOOKING.value: BookingStatus,
})

# Status every new document starts in (root of its table)
INITIAL_STATUSES: Mapping[str, str] = MappingProxyType({
    DocType.INVOICE.value: InvoiceStatus.DRAFT.value,
    DocType.DISBURSEMENT.value: BKKStatus.DRAFT.value,
    DocType.BILL_OF_LADING.value: BLStatus.DRAFT.value,
    DocType.SHIPPING_INSTRUCTION.value: SIStatus.DRAFT.value,
    DocType.ARRIVAL_NOTICE.value: ArrivalNoticeStatus.PENDING.value,
    DocType.CARGO_MANIFEST.value: ManifestStatus.DRAFT.value,
    DocType.BOOKING.value: BookingStatus.DRAFT.value,
})

# Timestamp column the caller stamps when a document enters a status
TRANSITION_TIMESTAMP_FIELDS: Mapping[str, Dict[str, str]] = MappingProxyType({
    DocType.INVOICE.value: {
        InvoiceStatus.SENT.value: "sent_at",
        InvoiceStatus.PAID.value: "paid_at",
        InvoiceStatus.CANCELLED.value: "cancelled_at",
    },
    DocType.DISBURSEMENT.value: {
        BKKStatus.PENDING.value: "requested_at",
        BKKStatus.APPROVED.value: "approved_at",
        BKKStatus.REJECTED.value: "approved_at",
        BKKStatus.RELEASED.value: "released_at",
        BKKStatus.SETTLED.value: "settled_at",
    },
    DocType.BILL_OF_LADING.value: {
        BLStatus.ISSUED.value: "issued_at",
        BLStatus.RELEASED.value: "released_at",
    },
    DocType.SHIPPING_INSTRUCTION.value: {
        SIStatus.SUBMITTED.value: "submitted_at",
        SIStatus.CONFIRMED.value: "confirmed_at",
    },
    DocType.ARRIVAL_NOTICE.value: {
        ArrivalNoticeStatus.NOTIFIED.value: "notified_at",
        ArrivalNoticeStatus.CLEARED.value: "cleared_at",
        ArrivalNoticeStatus.DELIVERED.value: "delivered_at",
    },
    DocType.CARGO_MANIFEST.value: {
        ManifestStatus.SUBMITTED.value: "submitted_at",
    },
    DocType.BOOKING.value: {
        BookingStatus.CONFIRMED.value: "confirmed_at",
    },
})


def _key(value: Any) -> Any:
    """Normalize enum members to their raw string value."""
    return value.value if isinstance(value, Enum) else value


def _lookup(mapping: Mapping, key: Any) -> Any:
    """mapping.get(key), treating unhashable keys as absent."""
    try:
        return mapping.get(key)
    except TypeError:
        return None


# =============================================================================
# CORE VALIDATOR
# =============================================================================

def is_valid_transition(table: TransitionTable, from_status: Any, to_status: Any) -> bool:
    """
    Check whether a status change is allowed by a transition table.

    Unknown (or unhashable) statuses on either side fail closed (False)
    rather than raising.
    """
    from_key = _key(from_status)
    allowed = _lookup(table, from_key)
    if allowed is None:
        logger.warning("Unknown source status '%s', transition rejected", from_key)
        return False
    try:
        return _key(to_status) in allowed
    except TypeError:
        logger.warning("Unhashable target status %r, transition rejected", to_status)
        return False


def can_mark_overdue(due_date: Any, today: Any) -> bool:
    """An invoice may only become overdue once its due date has passed."""
    due = to_date(due_date)
    current = to_date(today)
    if due is None or current is None:
        return False
    return due < current


def can_delete_bill_of_lading(status: Any) -> bool:
    """B/Ls that were issued, released or surrendered are legal records and cannot be deleted."""
    protected = {BLStatus.ISSUED.value, BLStatus.RELEASED.value, BLStatus.SURRENDERED.value}
    return _key(status) not in protected


# =============================================================================
# STATUS HISTORY ENTRY
# =============================================================================

class StatusHistoryEntry:
    """Represents a single entry in a document's status history."""

    def __init__(
        self,
        timestamp: datetime,
        from_status: Optional[str],
        to_status: str,
        actor: str = "system",
        reason: Optional[str] = None,
        metadata: Optional[Dict] = None
    ):
        self.timestamp = timestamp.isoformat()
        self.from_status = from_status
        self.to_status = to_status
        self.actor = actor
        self.reason = reason
        self.metadata = metadata or {}

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor": self.actor,
            "reason": self.reason,
            "metadata": self.metadata
        }


# =============================================================================
# MAIN TRANSITION ENGINE
# =============================================================================

class TransitionEngine:
    """
    Multi-type document status state machine.

    Reads doc_type from the document (or takes it explicitly) and validates
    against that type's table. Never mutates the documents it is given.
    """

    @staticmethod
    def get_transition_table(doc_type: Any) -> TransitionTable:
        """Get the transition table for a document type."""
        doc_key = _key(doc_type)
        table = _lookup(TRANSITION_TABLES, doc_key)
        if table is None:
            raise UnknownDocumentTypeError(doc_key)
        return table

    @staticmethod
    def can_transition(doc_type: Any, current_status: Any, target_status: Any) -> Tuple[bool, str]:
        """
        Check if a transition is valid for the given document type.

        Returns:
            (can_transition, reason)
        """
        doc_key = _key(doc_type)
        current_key = _key(current_status)
        target_key = _key(target_status)

        table = _lookup(TRANSITION_TABLES, doc_key)
        if table is None:
            return (False, f"Unknown document type '{doc_key}'")

        allowed = _lookup(table, current_key)
        if allowed is None:
            return (False, f"No transitions defined for status '{current_key}' in {doc_key} lifecycle")

        if not is_valid_transition(table, current_key, target_key):
            valid = sorted(allowed)
            return (False, f"Cannot transition from '{current_key}' to '{target_key}' in {doc_key} lifecycle. Valid: {valid}")

        return (True, "Transition allowed")

    @staticmethod
    def get_next_statuses(doc_type: Any, current_status: Any) -> List[str]:
        """Statuses reachable in one step, sorted; empty for terminal or unknown statuses."""
        table = TransitionEngine.get_transition_table(doc_type)
        return sorted(_lookup(table, _key(current_status)) or frozenset())

    @staticmethod
    def is_terminal_status(doc_type: Any, status: Any) -> bool:
        """A status is terminal when it has an entry with no outgoing transitions."""
        table = TransitionEngine.get_transition_table(doc_type)
        allowed = _lookup(table, _key(status))
        return allowed is not None and len(allowed) == 0

    @staticmethod
    def get_terminal_statuses(doc_type: Any) -> List[str]:
        table = TransitionEngine.get_transition_table(doc_type)
        return sorted(status for status, targets in table.items() if not targets)

    @staticmethod
    def get_initial_status(doc_type: Any) -> str:
        TransitionEngine.get_transition_table(doc_type)
        return INITIAL_STATUSES[_key(doc_type)]

    @staticmethod
    def get_all_statuses(doc_type: Any) -> List[str]:
        doc_key = _key(doc_type)
        status_enum = _lookup(STATUS_ENUMS, doc_key)
        if status_enum is None:
            raise UnknownDocumentTypeError(doc_key)
        return [s.value for s in status_enum]

    @staticmethod
    def get_all_doc_types() -> List[str]:
        return [d.value for d in DocType]

    @staticmethod
    def advance_status(
        document: Dict,
        target_status: Any,
        now: datetime,
        actor: str = "system",
        reason: Optional[str] = None,
        doc_type: Any = None,
        metadata: Optional[Dict] = None
    ) -> Tuple[Dict, StatusHistoryEntry, bool]:
        """
        Move a document to a new status.

        Args:
            document: The document row (not modified)
            target_status: Requested status
            now: Transition time, used for timestamps and the overdue guard
            actor: Who/what triggered this transition
            reason: Optional free-text reason
            doc_type: Document type; read from document["doc_type"] when omitted
            metadata: Extra data stored on the history entry

        Returns:
            (resulting_document, history_entry, success)
        """
        doc_key = _key(doc_type) if doc_type is not None else document.get("doc_type")
        current_status = document.get("status")
        target_key = _key(target_status)

        allowed, why = TransitionEngine.can_transition(doc_key, current_status, target_key)

        if allowed and doc_key == DocType.INVOICE.value and target_key == InvoiceStatus.OVERDUE.value:
            if not can_mark_overdue(document.get("due_date"), now):
                allowed, why = False, "Cannot mark as overdue - due date has not passed"

        if not allowed:
            logger.warning(
                "Invalid status transition: doc=%s, type=%s, current=%s, target=%s, reason=%s",
                document.get("id"), doc_key, current_status, target_key, why
            )
            history_entry = StatusHistoryEntry(
                timestamp=now,
                from_status=current_status,
                to_status=current_status,
                actor=actor,
                reason=f"Transition blocked: {why}",
                metadata=metadata
            )
            return (document, history_entry, False)

        history_entry = StatusHistoryEntry(
            timestamp=now,
            from_status=current_status,
            to_status=target_key,
            actor=actor,
            reason=reason,
            metadata=metadata
        )

        updated = dict(document)
        updated["status"] = target_key
        updated["updated_at"] = now.isoformat()

        timestamp_field = TRANSITION_TIMESTAMP_FIELDS.get(doc_key, {}).get(target_key)
        if timestamp_field:
            updated[timestamp_field] = now.isoformat()

        updated["status_history"] = list(document.get("status_history") or []) + [history_entry.to_dict()]

        logger.info(
            "Status transition: doc=%s, type=%s, %s -> %s (actor=%s)",
            document.get("id"), doc_key, current_status, target_key, actor
        )

        return (updated, history_entry, True)


# =============================================================================
# BKK ACTION HINTS
# =============================================================================

BKK_APPROVER_ROLES = ("admin", "finance", "manager", "super_admin")
BKK_RELEASER_ROLES = ("admin", "finance", "super_admin")
BKK_SETTLER_ROLES = ("ops", "admin", "super_admin")


def get_available_bkk_actions(status: Any, user_role: str, is_requester: bool = False) -> List[str]:
    """
    List the actions a user may offer on a BKK in its current status.

    This is a presentation hint; authorization is enforced by the caller.
    """
    status_key = _key(status)
    actions = ["view"]

    if status_key == BKKStatus.DRAFT.value:
        if is_requester:
            actions.append("submit")
    elif status_key == BKKStatus.PENDING.value:
        if is_requester:
            actions.append("cancel")
        if user_role in BKK_APPROVER_ROLES:
            actions.extend(["approve", "reject"])
    elif status_key == BKKStatus.APPROVED.value:
        if user_role in BKK_RELEASER_ROLES:
            actions.append("release")
        if is_requester or user_role in BKK_APPROVER_ROLES:
            actions.append("cancel")
    elif status_key == BKKStatus.RELEASED.value:
        if is_requester or user_role in BKK_SETTLER_ROLES:
            actions.append("settle")

    return actions
