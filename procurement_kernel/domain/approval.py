"""
Approval domain types (``procurement_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the purchase-order approval workflow.  Defines the
approval request lifecycle, threshold policies and their conditions,
decision records, and the outcome objects returned by the orchestrator.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* ``APPROVAL_TRANSITIONS`` defines the only valid request status
  transitions.  Terminal states have no outgoing edges.  ``escalated``
  is transient: escalation moves ``pending -> escalated -> pending`` in a
  single unit of work.
* Policy snapshot -- ``ApprovalRequest.policy`` is copied at creation and
  never re-read from configuration, so in-flight requests keep their
  meaning when configuration changes.
* Quorum counts distinct approvers only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from procurement_kernel.domain.integration import OrderEvent
from procurement_kernel.domain.purchase_order import PurchaseOrder


# =========================================================================
# Approval Status Lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.ESCALATED,
        ApprovalStatus.EXPIRED,
        ApprovalStatus.CANCELLED,
    }),
    ApprovalStatus.ESCALATED: frozenset({
        ApprovalStatus.PENDING,
        ApprovalStatus.EXPIRED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.EXPIRED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.EXPIRED,
    ApprovalStatus.CANCELLED,
})

OPEN_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.PENDING,
    ApprovalStatus.ESCALATED,
})


class ApprovalDecision(str, Enum):
    """Decision types that an approver can make."""

    APPROVE = "approve"
    REJECT = "reject"


# =========================================================================
# Policy and Condition Types
# =========================================================================


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    IN = "in"
    NOT_IN = "not_in"


CONDITION_FIELDS: frozenset[str] = frozenset({
    "supplier_category",
    "product_category",
    "department",
    "payment_terms",
    "currency",
})


@dataclass(frozen=True)
class ApprovalCondition:
    """A predicate over order attributes.

    A ``blocking`` condition that matches prevents the auto-approve
    shortcut even when the policy enables it.
    """

    field: str
    operator: ConditionOperator
    value: Any
    blocking: bool = False

    def to_dict(self) -> dict[str, Any]:
        value = list(self.value) if isinstance(self.value, (tuple, list, frozenset, set)) else self.value
        return {
            "field": self.field,
            "operator": self.operator.value,
            "value": value,
            "blocking": self.blocking,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApprovalCondition:
        value = data["value"]
        if isinstance(value, list):
            value = tuple(value)
        return cls(
            field=data["field"],
            operator=ConditionOperator(data["operator"]),
            value=value,
            blocking=bool(data.get("blocking", False)),
        )


@dataclass(frozen=True)
class ApprovalPolicy:
    """A threshold-based approval policy.

    Amount range is half-open: ``[min_amount, max_amount)``.  A ``None``
    ``max_amount`` means unbounded.  Higher ``priority`` wins ties.
    """

    name: str
    min_amount: Decimal
    max_amount: Decimal | None = None
    required_roles: tuple[str, ...] = ()
    required_approvers: int = 1
    escalation_timeout_hours: int | None = None
    priority: int = 0
    auto_approve: bool = False
    conditions: tuple[ApprovalCondition, ...] = ()
    skip_weekends: bool = True
    skip_holidays: bool = True
    max_escalations: int | None = None
    is_active: bool = True

    @property
    def specificity(self) -> int:
        """Number of non-blocking conditions that had to match."""
        return sum(1 for c in self.conditions if not c.blocking)

    @property
    def range_width(self) -> Decimal | None:
        """Width of the amount range; ``None`` for an unbounded range."""
        if self.max_amount is None:
            return None
        return self.max_amount - self.min_amount

    def covers(self, amount: Decimal) -> bool:
        if amount < self.min_amount:
            return False
        if self.max_amount is not None and amount >= self.max_amount:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        """Serializable snapshot stored alongside each request."""
        return {
            "name": self.name,
            "min_amount": str(self.min_amount),
            "max_amount": str(self.max_amount) if self.max_amount is not None else None,
            "required_roles": list(self.required_roles),
            "required_approvers": self.required_approvers,
            "escalation_timeout_hours": self.escalation_timeout_hours,
            "priority": self.priority,
            "auto_approve": self.auto_approve,
            "conditions": [c.to_dict() for c in self.conditions],
            "skip_weekends": self.skip_weekends,
            "skip_holidays": self.skip_holidays,
            "max_escalations": self.max_escalations,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApprovalPolicy:
        max_amount = data.get("max_amount")
        return cls(
            name=data["name"],
            min_amount=Decimal(str(data["min_amount"])),
            max_amount=Decimal(str(max_amount)) if max_amount is not None else None,
            required_roles=tuple(data.get("required_roles", ())),
            required_approvers=int(data.get("required_approvers", 1)),
            escalation_timeout_hours=data.get("escalation_timeout_hours"),
            priority=int(data.get("priority", 0)),
            auto_approve=bool(data.get("auto_approve", False)),
            conditions=tuple(
                ApprovalCondition.from_dict(c) for c in data.get("conditions", ())
            ),
            skip_weekends=bool(data.get("skip_weekends", True)),
            skip_holidays=bool(data.get("skip_holidays", True)),
            max_escalations=data.get("max_escalations"),
            is_active=bool(data.get("is_active", True)),
        )


# =========================================================================
# Request and Decision Records
# =========================================================================


@dataclass(frozen=True)
class ApprovalDecisionRecord:
    """Record of a single approval decision. Immutable."""

    decision_id: UUID
    request_id: UUID
    approver_id: str
    role: str
    decision: ApprovalDecision
    reason: str = ""
    decided_at: datetime | None = None


@dataclass(frozen=True)
class DecisionInput:
    """A decision as submitted by an approver."""

    approver_id: str
    decision: ApprovalDecision
    reason: str = ""


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request."""

    request_id: UUID
    order_id: UUID
    initiator_id: str
    policy: ApprovalPolicy
    amount: Decimal
    currency: str = "USD"
    status: ApprovalStatus = ApprovalStatus.PENDING
    eligible_roles: tuple[str, ...] = ()
    escalation_count: int = 0
    created_at: datetime | None = None
    deadline: datetime | None = None
    resolved_at: datetime | None = None
    decisions: tuple[ApprovalDecisionRecord, ...] = ()
    version: int = 1

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_APPROVAL_STATUSES

    @property
    def approvers(self) -> frozenset[str]:
        return frozenset(
            d.approver_id for d in self.decisions
            if d.decision == ApprovalDecision.APPROVE
        )

    def has_decided(self, approver_id: str) -> bool:
        return any(d.approver_id == approver_id for d in self.decisions)


# =========================================================================
# Evaluation and Outcome Types
# =========================================================================


@dataclass(frozen=True)
class QuorumEvaluation:
    """Result of evaluating a request's decisions against its policy."""

    is_approved: bool = False
    is_rejected: bool = False
    required_approvers: int = 0
    current_approvers: int = 0
    reason: str = ""

    @property
    def is_final(self) -> bool:
        return self.is_approved or self.is_rejected


@dataclass(frozen=True)
class ApprovalSubmission:
    """Result of submitting an order for approval.

    ``request`` is ``None`` when the resolved policy auto-approved the
    order; the audit trail and ``events`` have the same shape either way.
    """

    order: PurchaseOrder
    policy_name: str
    request: ApprovalRequest | None = None
    events: tuple[OrderEvent, ...] = ()

    @property
    def auto_approved(self) -> bool:
        return self.request is None


@dataclass(frozen=True)
class DecisionOutcome:
    """Result of a decision submission."""

    request: ApprovalRequest
    order: PurchaseOrder
    quorum: QuorumEvaluation
    events: tuple[OrderEvent, ...] = ()

    @property
    def finalized(self) -> bool:
        return not self.request.is_open


@dataclass(frozen=True)
class BulkFailure:
    request_id: UUID
    error_code: str
    reason: str


@dataclass(frozen=True)
class BulkResult:
    """Partitioned outcome of a bulk decision; never all-or-nothing."""

    succeeded: tuple[UUID, ...] = ()
    failed: tuple[BulkFailure, ...] = ()
    outcomes: tuple[DecisionOutcome, ...] = ()

    @property
    def events(self) -> tuple[OrderEvent, ...]:
        return tuple(e for outcome in self.outcomes for e in outcome.events)

    @property
    def failed_ids(self) -> tuple[UUID, ...]:
        return tuple(f.request_id for f in self.failed)


class EscalationAction(str, Enum):
    ESCALATED = "escalated"
    EXPIRED = "expired"


@dataclass(frozen=True)
class EscalationResult:
    request_id: UUID
    order_id: UUID
    action: EscalationAction
    escalation_count: int
    added_roles: tuple[str, ...] = ()
    new_deadline: datetime | None = None
    events: tuple[OrderEvent, ...] = ()


@dataclass(frozen=True)
class ApprovalStatistics:
    """Counts by status plus overdue and mean resolution time."""

    by_status: dict[str, int] = field(default_factory=dict)
    overdue: int = 0
    average_resolution_hours: Decimal | None = None

    @property
    def total(self) -> int:
        return sum(self.by_status.values())
