"""
Module: procurement_kernel.models.audit
Responsibility: ORM persistence for audit entries and the notification outbox.

Architecture position: Kernel > Models.  May import from db/, utils/ and
    exceptions; domain DTOs are imported lazily inside the converters.

Invariants enforced:
    - Audit entries are append-only (ORM listeners reject UPDATE/DELETE).
    - Notifications carry their own retry state, independent of integration
      event retries.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base, UUIDString
from procurement_kernel.utils.serialization import to_jsonable
from procurement_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from procurement_kernel.domain.audit import AuditEntry, NotificationRecord


class AuditEntryModel(Base):
    """Persistent audit entry. Append-only."""

    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("ix_audit_entries_entity", "entity_type", "entity_id"),
        Index("ix_audit_entries_action", "action"),
        Index("ix_audit_entries_seq", "seq"),
    )

    entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    # Allocated from the "audit_entry" sequence; total order within an instant
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> AuditEntry:
        from procurement_kernel.domain.audit import AuditAction
        from procurement_kernel.domain.audit import AuditEntry as AuditEntryDTO

        return AuditEntryDTO(
            entry_id=self.entry_id,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            action=AuditAction(self.action),
            actor_id=self.actor_id,
            payload=dict(self.payload or {}),
            recorded_at=self.recorded_at,
        )

    @classmethod
    def from_dto(cls, dto: AuditEntry, seq: int) -> AuditEntryModel:
        return cls(
            seq=seq,
            entry_id=dto.entry_id,
            entity_type=dto.entity_type,
            entity_id=dto.entity_id,
            action=dto.action.value,
            actor_id=dto.actor_id,
            payload=to_jsonable(dto.payload),
            recorded_at=dto.recorded_at,
        )


@event.listens_for(AuditEntryModel, "before_update")
def prevent_audit_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEntry",
        entity_id=str(target.entry_id),
        reason="Audit entries are immutable -- cannot modify",
    )


@event.listens_for(AuditEntryModel, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEntry",
        entity_id=str(target.entry_id),
        reason="Audit entries are immutable -- cannot delete",
    )


class NotificationModel(Base):
    """Notification outbox row."""

    __tablename__ = "notifications"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'sent', 'failed')",
            name="ck_notifications_valid_status",
        ),
        Index("ix_notifications_due", "status", "next_attempt_at"),
    )

    notification_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    template: Mapped[str] = mapped_column(String(100), nullable=False)
    recipients: Mapped[list] = mapped_column(JSON, nullable=False)
    context: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    next_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Notification {self.template} status={self.status} "
            f"attempts={self.attempts}>"
        )

    def to_dto(self) -> NotificationRecord:
        from procurement_kernel.domain.audit import (
            NotificationRecord as NotificationDTO,
            NotificationStatus,
        )

        return NotificationDTO(
            notification_id=self.notification_id,
            template=self.template,
            recipients=tuple(self.recipients),
            context=dict(self.context or {}),
            created_at=self.created_at,
            status=NotificationStatus(self.status),
            attempts=self.attempts,
            last_error=self.last_error,
            next_attempt_at=self.next_attempt_at,
            sent_at=self.sent_at,
        )

    @classmethod
    def from_dto(cls, dto: NotificationRecord) -> NotificationModel:
        return cls(
            notification_id=dto.notification_id,
            template=dto.template,
            recipients=list(dto.recipients),
            context=to_jsonable(dict(dto.context)),
            created_at=dto.created_at,
            status=dto.status.value,
            attempts=dto.attempts,
            last_error=dto.last_error,
            next_attempt_at=dto.next_attempt_at,
            sent_at=dto.sent_at,
        )
