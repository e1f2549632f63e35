"""
Integration domain types (``procurement_kernel.domain.integration``).

Responsibility
--------------
Value objects exchanged between the approval workflow and the receiving
integration bridge: the outbound ``OrderEvent`` every successful
transition returns, the persisted ``IntegrationEvent`` carrying retry
state, and the receiving projection entry.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Retry state lives on ``IntegrationEvent`` (``retry_count``,
  ``next_attempt_at``, ``processing_status``), never in ad-hoc flags.
* A ``failed`` event is excluded from automatic retry until re-armed
  by a manual retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from procurement_kernel.domain.order_status import OrderStatus, is_receivable


class IntegrationEventKind(str, Enum):
    """What happened to the order."""

    APPROVED = "approved"
    STATUS_CHANGED = "status_changed"
    CANCELLED = "cancelled"


class ProcessingStatus(str, Enum):
    """Processing lifecycle of an integration event."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class QueueChange(str, Enum):
    """Effect of a status change on the receiving projection."""

    ADDED = "added"
    REMOVED = "removed"
    UPDATED = "updated"
    NONE = "none"


def event_kind_for(target: OrderStatus) -> IntegrationEventKind:
    if target == OrderStatus.APPROVED:
        return IntegrationEventKind.APPROVED
    if target == OrderStatus.CANCELLED:
        return IntegrationEventKind.CANCELLED
    return IntegrationEventKind.STATUS_CHANGED


def determine_queue_change(
    from_status: OrderStatus | None,
    to_status: OrderStatus,
) -> QueueChange:
    """Classify a transition by its effect on receiving visibility."""
    was_receivable = from_status is not None and is_receivable(from_status)
    now_receivable = is_receivable(to_status)
    if now_receivable and not was_receivable:
        return QueueChange.ADDED
    if was_receivable and not now_receivable:
        return QueueChange.REMOVED
    if now_receivable:
        return QueueChange.UPDATED
    return QueueChange.NONE


@dataclass(frozen=True)
class OrderEvent:
    """Outbound event returned by a successful order transition.

    Consumed by the event dispatcher, which records it as an
    ``IntegrationEvent`` and hands it to the receiving bridge.
    """

    kind: IntegrationEventKind
    order_id: UUID
    from_status: OrderStatus
    to_status: OrderStatus
    actor_id: str
    occurred_at: datetime
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def queue_change(self) -> QueueChange:
        return determine_queue_change(self.from_status, self.to_status)


@dataclass(frozen=True)
class IntegrationEvent:
    """Persisted integration event with its retry state."""

    event_id: UUID
    order_id: UUID
    kind: IntegrationEventKind
    occurred_at: datetime
    actor_id: str
    from_status: OrderStatus | None = None
    to_status: OrderStatus | None = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    retry_count: int = 0
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    processed_at: datetime | None = None
    context: dict[str, Any] = field(default_factory=dict)
    version: int = 1

    @property
    def is_pending(self) -> bool:
        return self.processing_status == ProcessingStatus.PENDING

    @property
    def is_failed(self) -> bool:
        return self.processing_status == ProcessingStatus.FAILED

    def is_due(self, now: datetime) -> bool:
        return self.is_pending and (
            self.next_attempt_at is None or self.next_attempt_at <= now
        )


@dataclass(frozen=True)
class ReceivingQueueEntry:
    """One row of the receiving projection."""

    order_id: UUID
    po_number: str
    supplier_id: str | None
    supplier_name: str
    status: OrderStatus
    total: Decimal
    currency: str
    line_count: int
    expected_date: date | None = None
    refreshed_at: datetime | None = None
    last_event_id: UUID | None = None


@dataclass(frozen=True)
class ReadinessReport:
    """Whether an order carries what the receiving process needs."""

    order_id: UUID
    problems: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def is_ready(self) -> bool:
        return not self.problems


@dataclass(frozen=True)
class ReconciliationReport:
    """Corrections applied by a reconciliation pass."""

    added: tuple[UUID, ...] = ()
    removed: tuple[UUID, ...] = ()
    refreshed: tuple[UUID, ...] = ()
    skipped: tuple[UUID, ...] = ()

    @property
    def corrections(self) -> int:
        return len(self.added) + len(self.removed) + len(self.refreshed)
