"""
Module: procurement_kernel.models.integration
Responsibility: ORM persistence for integration events and the receiving
    projection.

Architecture position: Kernel > Models.  May import from db/, utils/ and
    exceptions; domain DTOs are imported lazily inside the converters.

Invariants enforced:
    - Integration events are never deleted; ``processing_status`` and the
      retry fields carry their whole lifecycle.
    - The receiving projection holds at most one row per order
      (UNIQUE(order_id)), so replays cannot duplicate visibility.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Date,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base, UUIDString
from procurement_kernel.utils.serialization import to_jsonable

if TYPE_CHECKING:
    from procurement_kernel.domain.integration import (
        IntegrationEvent,
        ReceivingQueueEntry,
    )


class IntegrationEventModel(Base):
    """Persistent integration event with retry state."""

    __tablename__ = "integration_events"

    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('pending', 'processed', 'failed')",
            name="ck_integration_events_valid_status",
        ),
        CheckConstraint(
            "kind IN ('approved', 'status_changed', 'cancelled')",
            name="ck_integration_events_valid_kind",
        ),
        # Retry sweep: pending events ordered by due time
        Index("ix_integration_events_due", "processing_status", "next_attempt_at"),
        Index("ix_integration_events_order", "order_id", "processing_status"),
        Index("ix_integration_events_seq", "seq"),
    )

    event_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    # Insertion order; events sharing an occurred_at still apply in sequence
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    order_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    context: Mapped[dict] = mapped_column(JSON, nullable=False)
    processing_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending",
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<IntegrationEvent {self.event_id} {self.kind} "
            f"status={self.processing_status} retries={self.retry_count}>"
        )

    def to_dto(self) -> IntegrationEvent:
        from procurement_kernel.domain.integration import (
            IntegrationEvent as IntegrationEventDTO,
            IntegrationEventKind,
            ProcessingStatus,
        )
        from procurement_kernel.domain.order_status import OrderStatus

        return IntegrationEventDTO(
            event_id=self.event_id,
            order_id=self.order_id,
            kind=IntegrationEventKind(self.kind),
            occurred_at=self.occurred_at,
            actor_id=self.actor_id,
            from_status=OrderStatus(self.from_status) if self.from_status else None,
            to_status=OrderStatus(self.to_status) if self.to_status else None,
            processing_status=ProcessingStatus(self.processing_status),
            retry_count=self.retry_count,
            last_error=self.last_error,
            next_attempt_at=self.next_attempt_at,
            processed_at=self.processed_at,
            context=dict(self.context or {}),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: IntegrationEvent, seq: int) -> IntegrationEventModel:
        return cls(
            seq=seq,
            event_id=dto.event_id,
            order_id=dto.order_id,
            kind=dto.kind.value,
            from_status=dto.from_status.value if dto.from_status else None,
            to_status=dto.to_status.value if dto.to_status else None,
            occurred_at=dto.occurred_at,
            actor_id=dto.actor_id,
            context=to_jsonable(dict(dto.context)),
            processing_status=dto.processing_status.value,
            retry_count=dto.retry_count,
            last_error=dto.last_error,
            next_attempt_at=dto.next_attempt_at,
            processed_at=dto.processed_at,
            version=dto.version,
        )


class ReceivingQueueEntryModel(Base):
    """One row per order visible to the receiving process."""

    __tablename__ = "receiving_queue"

    __table_args__ = (
        Index("ix_receiving_queue_expected_date", "expected_date"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    po_number: Mapped[str] = mapped_column(String(50), nullable=False)
    supplier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    total: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    line_count: Mapped[int] = mapped_column(Integer, nullable=False)
    expected_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    refreshed_at: Mapped[datetime] = mapped_column(nullable=False)
    last_event_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<ReceivingQueueEntry {self.po_number} status={self.status}>"

    def to_dto(self) -> ReceivingQueueEntry:
        from procurement_kernel.domain.integration import (
            ReceivingQueueEntry as ReceivingQueueEntryDTO,
        )
        from procurement_kernel.domain.order_status import OrderStatus

        return ReceivingQueueEntryDTO(
            order_id=self.order_id,
            po_number=self.po_number,
            supplier_id=self.supplier_id,
            supplier_name=self.supplier_name,
            status=OrderStatus(self.status),
            total=self.total,
            currency=self.currency,
            line_count=self.line_count,
            expected_date=self.expected_date,
            refreshed_at=self.refreshed_at,
            last_event_id=self.last_event_id,
        )
