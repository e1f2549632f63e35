"""
Order status model (``procurement_kernel.domain.order_status``).

Responsibility
--------------
Defines the canonical purchase-order lifecycle, the legal transitions
between states, the receivable subset watched by the receiving
projection, and the total mapping to and from the coarse legacy status
vocabulary still used by external consumers.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``ORDER_TRANSITIONS`` is the only source of legal transitions.  Terminal
  states (``cancelled``, ``closed``) have no outgoing edges and no state
  transitions to itself.
* ``to_enhanced`` and ``to_legacy`` are total: every input, including
  unknown strings, maps to exactly one member of the other vocabulary.
  Unknown values map to ``draft``.
"""

from __future__ import annotations

from enum import Enum


class OrderStatus(str, Enum):
    """Canonical purchase-order lifecycle states."""

    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SENT_TO_SUPPLIER = "sent_to_supplier"
    PARTIALLY_RECEIVED = "partially_received"
    FULLY_RECEIVED = "fully_received"
    CANCELLED = "cancelled"
    CLOSED = "closed"


class LegacyStatus(str, Enum):
    """Coarse status vocabulary understood by legacy consumers."""

    DRAFT = "draft"
    SENT = "sent"
    PARTIAL = "partial"
    RECEIVED = "received"
    CANCELLED = "cancelled"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.DRAFT: frozenset({
        OrderStatus.PENDING_APPROVAL,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PENDING_APPROVAL: frozenset({
        OrderStatus.APPROVED,
        # Rejection or expiry returns the order to draft for rework
        OrderStatus.DRAFT,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.APPROVED: frozenset({
        OrderStatus.SENT_TO_SUPPLIER,
        OrderStatus.PARTIALLY_RECEIVED,
        OrderStatus.FULLY_RECEIVED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.SENT_TO_SUPPLIER: frozenset({
        OrderStatus.PARTIALLY_RECEIVED,
        OrderStatus.FULLY_RECEIVED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PARTIALLY_RECEIVED: frozenset({
        OrderStatus.FULLY_RECEIVED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.FULLY_RECEIVED: frozenset({
        OrderStatus.CLOSED,
    }),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.CLOSED: frozenset(),
}

TERMINAL_ORDER_STATUSES: frozenset[OrderStatus] = frozenset(
    status for status, targets in ORDER_TRANSITIONS.items() if not targets
)

RECEIVABLE_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.APPROVED,
    OrderStatus.SENT_TO_SUPPLIER,
    OrderStatus.PARTIALLY_RECEIVED,
})

_LEGACY_TO_ENHANCED: dict[LegacyStatus, OrderStatus] = {
    LegacyStatus.DRAFT: OrderStatus.DRAFT,
    LegacyStatus.SENT: OrderStatus.SENT_TO_SUPPLIER,
    LegacyStatus.PARTIAL: OrderStatus.PARTIALLY_RECEIVED,
    LegacyStatus.RECEIVED: OrderStatus.FULLY_RECEIVED,
    LegacyStatus.CANCELLED: OrderStatus.CANCELLED,
}

_ENHANCED_TO_LEGACY: dict[OrderStatus, LegacyStatus] = {
    OrderStatus.DRAFT: LegacyStatus.DRAFT,
    OrderStatus.PENDING_APPROVAL: LegacyStatus.DRAFT,
    OrderStatus.APPROVED: LegacyStatus.SENT,
    OrderStatus.SENT_TO_SUPPLIER: LegacyStatus.SENT,
    OrderStatus.PARTIALLY_RECEIVED: LegacyStatus.PARTIAL,
    OrderStatus.FULLY_RECEIVED: LegacyStatus.RECEIVED,
    OrderStatus.CANCELLED: LegacyStatus.CANCELLED,
    OrderStatus.CLOSED: LegacyStatus.RECEIVED,
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Return True if ``current -> target`` is a legal transition."""
    return target in ORDER_TRANSITIONS.get(current, frozenset())


def valid_transitions(status: OrderStatus) -> frozenset[OrderStatus]:
    return ORDER_TRANSITIONS.get(status, frozenset())


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_ORDER_STATUSES


def receivable_statuses() -> frozenset[OrderStatus]:
    """The statuses the receiving projection must mirror."""
    return RECEIVABLE_STATUSES


def is_receivable(status: OrderStatus) -> bool:
    return status in RECEIVABLE_STATUSES


def _raw(value: object) -> str:
    if isinstance(value, Enum):
        value = value.value
    return str(value).strip().lower()


def _coerce_legacy(value: LegacyStatus | str | None) -> LegacyStatus | None:
    if isinstance(value, LegacyStatus):
        return value
    if value is None:
        return None
    try:
        return LegacyStatus(_raw(value))
    except ValueError:
        return None


def _coerce_enhanced(value: OrderStatus | str | None) -> OrderStatus | None:
    if isinstance(value, OrderStatus):
        return value
    if value is None:
        return None
    try:
        return OrderStatus(_raw(value))
    except ValueError:
        return None


def to_enhanced(value: LegacyStatus | str | None) -> OrderStatus:
    """Map a legacy status to the canonical lifecycle.

    Unknown or missing values map to ``draft``.
    """
    legacy = _coerce_legacy(value)
    if legacy is None:
        return OrderStatus.DRAFT
    return _LEGACY_TO_ENHANCED[legacy]


def to_legacy(value: OrderStatus | str | None) -> LegacyStatus:
    """Map a canonical status to the legacy vocabulary.

    Unknown or missing values map to ``draft``.
    """
    status = _coerce_enhanced(value)
    if status is None:
        return LegacyStatus.DRAFT
    return _ENHANCED_TO_LEGACY[status]


def canonical_legacy_form(value: LegacyStatus | str | None) -> LegacyStatus:
    """The legacy member a raw legacy value denotes (``draft`` if unknown)."""
    legacy = _coerce_legacy(value)
    return legacy if legacy is not None else LegacyStatus.DRAFT


def parse_status(value: OrderStatus | LegacyStatus | str) -> OrderStatus:
    """Accept either vocabulary and return the canonical status.

    Canonical names win over legacy names (``draft`` and ``cancelled``
    exist in both and map to themselves).
    """
    status = _coerce_enhanced(value)
    if status is not None:
        return status
    return to_enhanced(value)
