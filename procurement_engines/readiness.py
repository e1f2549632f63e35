"""
procurement_engines.readiness -- Receiving readiness checks.

An approved order becomes visible to the receiving process only when it
carries what receiving needs to match deliveries: a supplier, at least
one priced line, and an expected delivery date.
"""

from __future__ import annotations

from datetime import date

from procurement_kernel.domain.integration import ReadinessReport, ReceivingQueueEntry
from procurement_kernel.domain.purchase_order import ZERO, PurchaseOrder


def check_readiness(order: PurchaseOrder, today: date | None = None) -> ReadinessReport:
    problems: list[str] = []
    warnings: list[str] = []

    if not order.supplier_id:
        problems.append("missing supplier")
    if not order.lines:
        problems.append("order has no lines")
    elif order.total <= ZERO:
        problems.append("order total must be positive")

    for line in order.lines:
        if line.ordered_quantity <= ZERO:
            problems.append(f"line {line.line_number}: quantity must be positive")
        if line.unit_cost <= ZERO:
            problems.append(f"line {line.line_number}: unit cost must be positive")

    if order.expected_date is None:
        problems.append("missing expected delivery date")
    elif today is not None and order.expected_date < today:
        warnings.append(f"expected date {order.expected_date.isoformat()} is in the past")

    return ReadinessReport(
        order_id=order.order_id,
        problems=tuple(problems),
        warnings=tuple(warnings),
    )


def projection_entry(order: PurchaseOrder, refreshed_at, last_event_id=None) -> ReceivingQueueEntry:
    """Projection row for ``order``."""
    return ReceivingQueueEntry(
        order_id=order.order_id,
        po_number=order.po_number,
        supplier_id=order.supplier_id,
        supplier_name=order.supplier_name,
        status=order.status,
        total=order.total,
        currency=order.currency,
        line_count=len(order.lines),
        expected_date=order.expected_date,
        refreshed_at=refreshed_at,
        last_event_id=last_event_id,
    )


def entry_drifted(entry: ReceivingQueueEntry, order: PurchaseOrder) -> bool:
    """Whether a projection row no longer mirrors the order."""
    return (
        entry.status != order.status
        or entry.po_number != order.po_number
        or entry.supplier_id != order.supplier_id
        or entry.supplier_name != order.supplier_name
        or entry.total != order.total
        or entry.currency != order.currency
        or entry.line_count != len(order.lines)
        or entry.expected_date != order.expected_date
    )
