"""
Module: procurement_kernel.models.approval
Responsibility: ORM persistence for approval requests and decisions.

Architecture position: Kernel > Models.  May import from db/, utils/ and
    exceptions; domain DTOs are imported lazily inside the converters.

Invariants enforced:
    - Lifecycle: DB check constraint limits status values; the service layer
      enforces transition rules.
    - Decision uniqueness: UNIQUE(request_id, approver_id) prevents the same
      approver deciding twice even if two workers race.
    - Decisions are append-only (ORM listeners reject UPDATE/DELETE).
    - ``version`` is the compare-and-swap token for request mutations.

Failure modes:
    - IntegrityError on duplicate approver decision.
    - ImmutabilityViolationError on decision UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import Base, UUIDString
from procurement_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from procurement_kernel.domain.approval import (
        ApprovalDecisionRecord,
        ApprovalRequest,
    )


class ApprovalRequestModel(Base):
    """Persistent approval request with its policy snapshot."""

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'escalated', "
            "'expired', 'cancelled')",
            name="ck_approval_requests_valid_status",
        ),
        Index("ix_approval_requests_order_status", "order_id", "status"),
        # Escalation scan
        Index("ix_approval_requests_deadline", "status", "deadline"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    order_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    initiator_id: Mapped[str] = mapped_column(String(100), nullable=False)
    policy_name: Mapped[str] = mapped_column(String(200), nullable=False)
    policy_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    eligible_roles: Mapped[list] = mapped_column(JSON, nullable=False)
    escalation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    deadline: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    decisions: Mapped[list["ApprovalDecisionModel"]] = relationship(
        "ApprovalDecisionModel",
        back_populates="request",
        primaryjoin="ApprovalRequestModel.request_id == ApprovalDecisionModel.request_id",
        order_by="ApprovalDecisionModel.decided_at",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_id} order={self.order_id} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from procurement_kernel.domain.approval import (
            ApprovalPolicy,
            ApprovalRequest as ApprovalRequestDTO,
            ApprovalStatus,
        )

        return ApprovalRequestDTO(
            request_id=self.request_id,
            order_id=self.order_id,
            initiator_id=self.initiator_id,
            policy=ApprovalPolicy.from_dict(self.policy_snapshot),
            amount=self.amount,
            currency=self.currency,
            status=ApprovalStatus(self.status),
            eligible_roles=tuple(self.eligible_roles),
            escalation_count=self.escalation_count,
            created_at=self.created_at,
            deadline=self.deadline,
            resolved_at=self.resolved_at,
            decisions=tuple(d.to_dto() for d in self.decisions),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalRequest) -> ApprovalRequestModel:
        """Create ORM model from domain DTO (decisions are inserted separately)."""
        return cls(
            request_id=dto.request_id,
            order_id=dto.order_id,
            initiator_id=dto.initiator_id,
            policy_name=dto.policy.name,
            policy_snapshot=dto.policy.to_dict(),
            amount=dto.amount,
            currency=dto.currency,
            status=dto.status.value,
            eligible_roles=list(dto.eligible_roles),
            escalation_count=dto.escalation_count,
            created_at=dto.created_at,
            deadline=dto.deadline,
            resolved_at=dto.resolved_at,
            version=dto.version,
        )


class ApprovalDecisionModel(Base):
    """Persistent approval decision record. Append-only."""

    __tablename__ = "approval_decisions"

    __table_args__ = (
        Index("ix_approval_decisions_request_id", "request_id"),
        UniqueConstraint(
            "request_id", "approver_id",
            name="uq_approval_decisions_approver",
        ),
    )

    decision_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.request_id"),
        nullable=False,
    )
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(100), nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, default="", nullable=False)
    decided_at: Mapped[datetime] = mapped_column(nullable=False)

    request: Mapped["ApprovalRequestModel"] = relationship(
        "ApprovalRequestModel",
        back_populates="decisions",
        foreign_keys=[request_id],
        primaryjoin="ApprovalDecisionModel.request_id == ApprovalRequestModel.request_id",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalDecision {self.decision_id} "
            f"request={self.request_id} "
            f"decision={self.decision}>"
        )

    def to_dto(self) -> ApprovalDecisionRecord:
        """Convert ORM model to frozen domain DTO."""
        from procurement_kernel.domain.approval import (
            ApprovalDecision,
            ApprovalDecisionRecord as DecisionDTO,
        )

        return DecisionDTO(
            decision_id=self.decision_id,
            request_id=self.request_id,
            approver_id=self.approver_id,
            role=self.role,
            decision=ApprovalDecision(self.decision),
            reason=self.reason,
            decided_at=self.decided_at,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalDecisionRecord) -> ApprovalDecisionModel:
        """Create ORM model from domain DTO."""
        return cls(
            decision_id=dto.decision_id,
            request_id=dto.request_id,
            approver_id=dto.approver_id,
            role=dto.role,
            decision=dto.decision.value,
            reason=dto.reason,
            decided_at=dto.decided_at,
        )


# =============================================================================
# ORM-Level Immutability for Decisions (Append-Only)
# =============================================================================


@event.listens_for(ApprovalDecisionModel, "before_update")
def prevent_decision_update(mapper, connection, target):
    """Prevent updates to approval decision records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalDecision",
        entity_id=str(target.decision_id),
        reason="Approval decisions are immutable -- cannot modify",
    )


@event.listens_for(ApprovalDecisionModel, "before_delete")
def prevent_decision_delete(mapper, connection, target):
    """Prevent deletion of approval decision records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalDecision",
        entity_id=str(target.decision_id),
        reason="Approval decisions are immutable -- cannot delete",
    )
