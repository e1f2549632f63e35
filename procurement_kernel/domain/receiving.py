"""
Receiving domain types (``procurement_kernel.domain.receiving``).

Responsibility
--------------
Value objects for receipt validation: the transient receipt items
judged by the tolerance validator, the per-direction tolerance rules,
the partial, quality, expiry and damage rules, and the structured
validation result.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Over-receipt and under-receipt are governed by independent
  ``ToleranceRule`` instances.
* ``ValidationResult.can_proceed`` is ``is_valid or requires_approval``;
  a blocking error always forces ``can_proceed=False``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from procurement_kernel.domain.integration import OrderEvent
from procurement_kernel.domain.purchase_order import PurchaseOrder


class ItemCondition(str, Enum):
    GOOD = "good"
    DAMAGED = "damaged"
    EXPIRED = "expired"
    REJECTED = "rejected"


QUALITY_EXCEPTION_CONDITIONS: frozenset[ItemCondition] = frozenset({
    ItemCondition.DAMAGED,
    ItemCondition.EXPIRED,
    ItemCondition.REJECTED,
})


class ToleranceType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class QualityStatus(str, Enum):
    """Outcome of the inspection performed at the dock."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DamagedItemHandling(str, Enum):
    REJECT = "reject"
    ACCEPT = "accept"
    PARTIAL_ACCEPT = "partial_accept"


@dataclass(frozen=True)
class DamageReport:
    category: str
    description: str = ""
    photographs: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReceiptEntry:
    """Quantity reported received for one order line."""

    line_id: UUID
    quantity: Decimal
    condition: ItemCondition = ItemCondition.GOOD
    quality_status: QualityStatus | None = None
    expiry_date: date | None = None
    damage_report: DamageReport | None = None


@dataclass(frozen=True)
class ReceiptItem:
    """A receipt entry joined with the ordered and prior received quantities."""

    line_id: UUID
    ordered_quantity: Decimal
    previously_received: Decimal
    received_now: Decimal
    condition: ItemCondition = ItemCondition.GOOD
    product_name: str = ""
    quality_status: QualityStatus | None = None
    expiry_date: date | None = None
    damage_report: DamageReport | None = None

    @property
    def total_received(self) -> Decimal:
        return self.previously_received + self.received_now


@dataclass(frozen=True)
class ToleranceRule:
    """Thresholds for one variance direction.

    In percentage mode all thresholds are percentages of the ordered
    quantity; in fixed mode they are absolute units.
    """

    tolerance_type: ToleranceType = ToleranceType.PERCENTAGE
    tolerance_value: Decimal = Decimal("5")
    warning_threshold: Decimal = Decimal("2")
    block_threshold: Decimal | None = None
    require_approval: bool = True
    approval_roles: tuple[str, ...] = ()
    auto_accept: bool = False
    enabled: bool = True


@dataclass(frozen=True)
class ToleranceConfig:
    """Independent over- and under-receipt rules.

    Under-receipt is only judged on final receipts unless
    ``evaluate_under_on_partial`` is set.
    """

    over: ToleranceRule = ToleranceRule()
    under: ToleranceRule = ToleranceRule(
        tolerance_value=Decimal("10"),
        warning_threshold=Decimal("5"),
        require_approval=False,
        auto_accept=True,
    )
    evaluate_under_on_partial: bool = False


@dataclass(frozen=True)
class PartialReceivingRules:
    enabled: bool = True
    allow_partial_receipts: bool = True
    max_partial_receipts: int = 5
    require_reason: bool = False


@dataclass(frozen=True)
class QualityCheckRules:
    """Who may record an inspection result, and what a rejection means."""

    enabled: bool = True
    require_quality_check: bool = False
    quality_check_roles: tuple[str, ...] = ()
    damaged_item_handling: DamagedItemHandling = DamagedItemHandling.PARTIAL_ACCEPT


@dataclass(frozen=True)
class ExpiryRules:
    """Day thresholds are measured from the receipt date."""

    enabled: bool = True
    check_on_receipt: bool = True
    warn_before_days: int = 30
    reject_expired: bool = True
    accept_near_expiry_with_approval: bool = True
    near_expiry_threshold_days: int = 7
    approval_roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class DamageRules:
    enabled: bool = True
    require_damage_report: bool = True
    photograph_required: bool = False
    damage_categories: tuple[str, ...] = (
        "Physical Damage",
        "Water Damage",
        "Contamination",
        "Packaging Issue",
    )


@dataclass(frozen=True)
class ReceivingRules:
    """Receipt rules beyond quantity tolerance."""

    partial: PartialReceivingRules = PartialReceivingRules()
    quality: QualityCheckRules = QualityCheckRules()
    expiry: ExpiryRules = ExpiryRules()
    damage: DamageRules = DamageRules()


@dataclass(frozen=True)
class ReceivingContext:
    """Facts about the receipt that are not on its items.

    ``is_partial`` means the order still has open quantity after this
    receipt and the receipt is not marked final.
    """

    receiver_role: str | None = None
    receipt_date: date | None = None
    is_partial: bool = False
    previous_receipts: int = 0
    partial_reason: str | None = None


@dataclass(frozen=True)
class ValidationIssue:
    """A single finding, item-level when ``line_id`` is set."""

    code: str
    message: str
    severity: IssueSeverity
    line_id: UUID | None = None
    variance: Decimal | None = None

    @property
    def is_blocking(self) -> bool:
        return self.severity == IssueSeverity.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "line_id": str(self.line_id) if self.line_id else None,
            "variance": str(self.variance) if self.variance is not None else None,
        }


@dataclass(frozen=True)
class QualityException:
    """Items excluded from quantity math because of their condition."""

    line_id: UUID
    condition: ItemCondition
    quantity: Decimal
    product_name: str = ""


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    can_proceed: bool
    requires_approval: bool = False
    required_roles: tuple[str, ...] = ()
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()
    quality_exceptions: tuple[QualityException, ...] = ()


@dataclass(frozen=True)
class ReceivingStatistics:
    total_items: int
    fully_received_items: int
    partially_received_items: int
    quality_exception_items: int
    completion_percentage: Decimal
    total_variance: Decimal


@dataclass(frozen=True)
class ReceiptOutcome:
    """Result of committing a receipt."""

    order: PurchaseOrder
    validation: ValidationResult
    events: tuple[OrderEvent, ...] = ()
