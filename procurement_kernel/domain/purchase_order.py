"""
Purchase order value objects (``procurement_kernel.domain.purchase_order``).

Responsibility
--------------
Immutable snapshots of a purchase order and its lines, with derived
monetary totals and the attribute map that approval conditions are
evaluated against.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``subtotal`` and ``total`` are always derived from lines and tax; they
  are never stored independently on the domain object.
* ``version`` is the optimistic-concurrency token.  Every persisted
  mutation increments it by exactly one.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from procurement_kernel.domain.order_status import OrderStatus

ZERO = Decimal("0")


@dataclass(frozen=True)
class PurchaseOrderLine:
    """A single ordered product line."""

    line_id: UUID
    product_id: str
    ordered_quantity: Decimal
    unit_cost: Decimal
    description: str = ""
    received_quantity: Decimal = ZERO
    category: str | None = None
    line_number: int = 0

    @property
    def line_total(self) -> Decimal:
        return self.ordered_quantity * self.unit_cost

    @property
    def remaining_quantity(self) -> Decimal:
        return max(self.ordered_quantity - self.received_quantity, ZERO)

    @property
    def is_fully_received(self) -> bool:
        return self.received_quantity >= self.ordered_quantity


@dataclass(frozen=True)
class PurchaseOrder:
    """Immutable purchase order snapshot.

    Mutated only through ``procurement_kernel.domain.transitions`` (status)
    and the receiving service (received quantities); both return a new
    instance.
    """

    order_id: UUID
    po_number: str
    supplier_id: str | None
    supplier_name: str = ""
    lines: tuple[PurchaseOrderLine, ...] = ()
    tax_amount: Decimal = ZERO
    currency: str = "USD"
    status: OrderStatus = OrderStatus.DRAFT
    department: str | None = None
    supplier_category: str | None = None
    payment_terms: str | None = None
    expected_date: date | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    receipt_count: int = 0
    version: int = 1

    @property
    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self.lines), ZERO)

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax_amount

    @property
    def is_fully_received(self) -> bool:
        return bool(self.lines) and all(line.is_fully_received for line in self.lines)

    @property
    def has_receipts(self) -> bool:
        return any(line.received_quantity > ZERO for line in self.lines)

    def line(self, line_id: UUID) -> PurchaseOrderLine | None:
        for candidate in self.lines:
            if candidate.line_id == line_id:
                return candidate
        return None

    def condition_attributes(self) -> dict[str, Any]:
        """Attributes approval conditions may reference.

        ``product_category`` is multi-valued: one entry per distinct line
        category.
        """
        categories = tuple(sorted({
            line.category for line in self.lines if line.category
        }))
        return {
            "supplier_category": self.supplier_category,
            "product_category": categories,
            "department": self.department,
            "payment_terms": self.payment_terms,
            "currency": self.currency,
        }

    def with_changes(self, **changes: Any) -> PurchaseOrder:
        return replace(self, **changes)


def new_order(
    po_number: str,
    supplier_id: str | None,
    lines: list[PurchaseOrderLine] | tuple[PurchaseOrderLine, ...],
    *,
    supplier_name: str = "",
    tax_amount: Decimal = ZERO,
    currency: str = "USD",
    department: str | None = None,
    supplier_category: str | None = None,
    payment_terms: str | None = None,
    expected_date: date | None = None,
    created_by: str | None = None,
    order_id: UUID | None = None,
) -> PurchaseOrder:
    """Build a draft order, numbering lines in the given order."""
    numbered = tuple(
        replace(line, line_number=index)
        for index, line in enumerate(lines, start=1)
    )
    return PurchaseOrder(
        order_id=order_id or uuid4(),
        po_number=po_number,
        supplier_id=supplier_id,
        supplier_name=supplier_name,
        lines=numbered,
        tax_amount=tax_amount,
        currency=currency,
        status=OrderStatus.DRAFT,
        department=department,
        supplier_category=supplier_category,
        payment_terms=payment_terms,
        expected_date=expected_date,
        created_by=created_by,
    )


@dataclass(frozen=True)
class OrderQuery:
    """Filter accepted by ``OrderStore.query``."""

    statuses: frozenset[OrderStatus] | None = None
    supplier_id: str | None = None
    order_ids: frozenset[UUID] | None = None
    limit: int | None = None


# Expected type of each amendable field; every one of them may be cleared
# with ``None`` except the supplier name, which is stored as "".
_AMENDMENT_TYPES: dict[str, type] = {
    "supplier_id": str,
    "supplier_name": str,
    "expected_date": date,
    "payment_terms": str,
    "department": str,
    "supplier_category": str,
}


def amendment_problems(changes: dict[str, Any]) -> list[dict[str, str]]:
    """Field-level problems with the values of an amendment."""
    problems: list[dict[str, str]] = []
    for field, value in sorted(changes.items()):
        expected = _AMENDMENT_TYPES.get(field)
        if expected is None:
            continue
        if value is None:
            if field == "supplier_name":
                problems.append({
                    "field": field,
                    "code": "REQUIRED",
                    "message": "supplier_name cannot be cleared",
                })
            continue
        # datetime is a date subclass but would silently drop into a Date column
        if not isinstance(value, expected) or isinstance(value, datetime):
            problems.append({
                "field": field,
                "code": "WRONG_TYPE",
                "message": f"{field} must be a {expected.__name__}",
            })
        elif expected is str and field != "supplier_name" and not value.strip():
            problems.append({
                "field": field,
                "code": "BLANK",
                "message": f"{field} must not be blank",
            })
    return problems


def new_order_problems(order: PurchaseOrder) -> list[dict[str, str]]:
    """Problems that make ``order`` unusable as a new draft.

    Completeness (lines, supplier, positive total) is only required on
    submission; this checks values that are wrong in any status.
    """
    problems: list[dict[str, str]] = []
    if not isinstance(order.po_number, str) or not order.po_number.strip():
        problems.append({
            "field": "po_number",
            "code": "REQUIRED",
            "message": "po_number is required",
        })
    if not isinstance(order.currency, str) or len(order.currency) != 3:
        problems.append({
            "field": "currency",
            "code": "INVALID_CURRENCY",
            "message": "currency must be a three-letter code",
        })
    if not isinstance(order.tax_amount, Decimal) or order.tax_amount < ZERO:
        problems.append({
            "field": "tax_amount",
            "code": "NEGATIVE_AMOUNT",
            "message": "tax_amount must be a non-negative Decimal",
        })
    if order.expected_date is not None and (
        not isinstance(order.expected_date, date) or isinstance(order.expected_date, datetime)
    ):
        problems.append({
            "field": "expected_date",
            "code": "WRONG_TYPE",
            "message": "expected_date must be a date",
        })

    seen: set[UUID] = set()
    for line in order.lines:
        label = f"lines[{line.line_number}]"
        if line.line_id in seen:
            problems.append({
                "field": label,
                "code": "DUPLICATE_LINE",
                "message": f"line {line.line_id} appears more than once",
            })
        seen.add(line.line_id)
        if not isinstance(line.ordered_quantity, Decimal) or line.ordered_quantity <= ZERO:
            problems.append({
                "field": f"{label}.ordered_quantity",
                "code": "NON_POSITIVE_QUANTITY",
                "message": "ordered quantity must be greater than zero",
            })
        if not isinstance(line.unit_cost, Decimal) or line.unit_cost < ZERO:
            problems.append({
                "field": f"{label}.unit_cost",
                "code": "NEGATIVE_AMOUNT",
                "message": "unit cost must not be negative",
            })
        if line.received_quantity != ZERO:
            problems.append({
                "field": f"{label}.received_quantity",
                "code": "PREMATURE_RECEIPT",
                "message": "new orders cannot carry received quantities",
            })
    return problems
