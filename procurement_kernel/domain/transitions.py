"""
Order transitions (``procurement_kernel.domain.transitions``).

Responsibility
--------------
The single pure function that moves a ``PurchaseOrder`` between
statuses.  It checks transition legality and the business rules for
the target status, and on success returns the updated order together
with the explicit list of outbound events the caller must dispatch.

Architecture position
---------------------
**Kernel domain layer** -- pure.  Time and actor are passed in.

Invariants enforced
-------------------
* Illegal pairs never raise: ``apply_transition`` returns a failed
  ``TransitionResult`` carrying an ``InvalidTransitionError``.
* Entering ``pending_approval`` requires at least one line, a positive
  total and a supplier.
* Entering ``approved`` requires an actor and records ``approved_by`` /
  ``approved_at``.
* Every successful transition emits exactly one ``OrderEvent``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from procurement_kernel.domain.integration import OrderEvent, event_kind_for
from procurement_kernel.domain.order_status import (
    OrderStatus,
    can_transition,
    is_terminal,
)
from procurement_kernel.domain.purchase_order import ZERO, PurchaseOrder
from procurement_kernel.exceptions import (
    InvalidTransitionError,
    OrderValidationError,
    ProcurementKernelError,
)


@dataclass(frozen=True)
class TransitionResult:
    """Result of attempting an order transition."""

    success: bool
    order: PurchaseOrder
    from_status: OrderStatus
    to_status: OrderStatus
    events: tuple[OrderEvent, ...] = ()
    error: ProcurementKernelError | None = None

    def raise_for_error(self) -> TransitionResult:
        if self.error is not None:
            raise self.error
        return self


def validate_business_rules(
    order: PurchaseOrder,
    target: OrderStatus,
    actor_id: str | None,
) -> list[dict[str, str]]:
    """Field-level problems preventing ``order`` from entering ``target``."""
    problems: list[dict[str, str]] = []

    if target == OrderStatus.PENDING_APPROVAL:
        if not order.lines:
            problems.append({
                "field": "lines",
                "code": "NO_LINES",
                "message": "order must have at least one line",
            })
        if order.total <= ZERO:
            problems.append({
                "field": "total",
                "code": "NON_POSITIVE_TOTAL",
                "message": "order total must be greater than zero",
            })
        if not order.supplier_id:
            problems.append({
                "field": "supplier_id",
                "code": "MISSING_SUPPLIER",
                "message": "supplier is required",
            })

    if target == OrderStatus.APPROVED and not actor_id:
        problems.append({
            "field": "approved_by",
            "code": "MISSING_APPROVER",
            "message": "approval requires an approving actor",
        })

    return problems


def apply_transition(
    order: PurchaseOrder,
    target: OrderStatus,
    actor_id: str,
    at: datetime,
    reason: str = "",
    context: dict[str, Any] | None = None,
) -> TransitionResult:
    """Move ``order`` to ``target``.

    Returns a ``TransitionResult``; never raises for illegal input.
    """
    current = order.status

    if not can_transition(current, target):
        if is_terminal(current):
            detail = f"{current.value} is terminal"
        elif current == target:
            detail = "order is already in this status"
        else:
            detail = "transition not allowed"
        return TransitionResult(
            success=False,
            order=order,
            from_status=current,
            to_status=target,
            error=InvalidTransitionError(
                str(order.order_id), current.value, target.value, detail,
            ),
        )

    problems = validate_business_rules(order, target, actor_id)
    if problems:
        return TransitionResult(
            success=False,
            order=order,
            from_status=current,
            to_status=target,
            error=OrderValidationError(str(order.order_id), target.value, problems),
        )

    changes: dict[str, Any] = {"status": target, "updated_at": at}
    if target == OrderStatus.APPROVED:
        changes["approved_by"] = actor_id
        changes["approved_at"] = at
    elif target == OrderStatus.DRAFT:
        changes["approved_by"] = None
        changes["approved_at"] = None

    event_context = dict(context or {})
    if reason:
        event_context.setdefault("reason", reason)

    event = OrderEvent(
        kind=event_kind_for(target),
        order_id=order.order_id,
        from_status=current,
        to_status=target,
        actor_id=actor_id,
        occurred_at=at,
        context=event_context,
    )

    return TransitionResult(
        success=True,
        order=order.with_changes(**changes),
        from_status=current,
        to_status=target,
        events=(event,),
    )


def next_logical_status(order: PurchaseOrder) -> OrderStatus | None:
    """The next status on the happy path, or ``None`` at the end of it.

    Receiving statuses depend on quantities: an order with every line
    received goes to ``fully_received``; one with some receipts goes to
    ``partially_received``.
    """
    if order.status == OrderStatus.DRAFT:
        return OrderStatus.PENDING_APPROVAL
    if order.status == OrderStatus.PENDING_APPROVAL:
        return OrderStatus.APPROVED
    if order.status in (OrderStatus.APPROVED, OrderStatus.SENT_TO_SUPPLIER, OrderStatus.PARTIALLY_RECEIVED):
        if order.is_fully_received:
            return OrderStatus.FULLY_RECEIVED
        if order.has_receipts:
            if order.status == OrderStatus.PARTIALLY_RECEIVED:
                return None
            return OrderStatus.PARTIALLY_RECEIVED
        if order.status == OrderStatus.APPROVED:
            return OrderStatus.SENT_TO_SUPPLIER
        return None
    if order.status == OrderStatus.FULLY_RECEIVED:
        return OrderStatus.CLOSED
    return None
