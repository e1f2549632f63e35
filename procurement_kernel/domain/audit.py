"""
Audit entry value objects (``procurement_kernel.domain.audit``).

Every decision, status change and failure path produces an ``AuditEntry``
that is handed to the ``AuditSink`` after the unit of work settles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class AuditAction(str, Enum):
    """Audit trail actions."""

    # Orders
    ORDER_CREATED = "order_created"
    ORDER_CREATION_REFUSED = "order_creation_refused"
    ORDER_TRANSITIONED = "order_transitioned"
    ORDER_TRANSITION_REJECTED = "order_transition_rejected"
    ORDER_AMENDED = "order_amended"
    ORDER_AMENDMENT_REFUSED = "order_amendment_refused"

    # Approval workflow
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_REQUEST_REFUSED = "approval_request_refused"
    APPROVAL_AUTO_APPROVED = "approval_auto_approved"
    APPROVAL_DECISION_RECORDED = "approval_decision_recorded"
    APPROVAL_DECISION_REFUSED = "approval_decision_refused"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_REJECTED = "approval_rejected"
    APPROVAL_ESCALATED = "approval_escalated"
    APPROVAL_EXPIRED = "approval_expired"
    APPROVAL_CANCELLED = "approval_cancelled"

    # Receiving
    RECEIPT_RECORDED = "receipt_recorded"
    RECEIPT_REFUSED = "receipt_refused"

    # Integration bridge
    RECEIVING_QUEUE_ADDED = "receiving_queue_added"
    RECEIVING_QUEUE_UPDATED = "receiving_queue_updated"
    RECEIVING_QUEUE_REMOVED = "receiving_queue_removed"
    INTEGRATION_RETRY_SCHEDULED = "integration_retry_scheduled"
    INTEGRATION_FAILED = "integration_failed"
    INTEGRATION_MANUAL_RETRY = "integration_manual_retry"
    RECONCILIATION_CORRECTED = "reconciliation_corrected"

    # Notifications
    NOTIFICATION_FAILED = "notification_failed"


@dataclass(frozen=True)
class AuditEntry:
    """Immutable audit record."""

    entity_type: str
    entity_id: str
    action: AuditAction
    actor_id: str
    recorded_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    entry_id: UUID = field(default_factory=uuid4)


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class NotificationRecord:
    """Outbox row for a templated notification."""

    notification_id: UUID
    template: str
    recipients: tuple[str, ...]
    context: dict[str, Any]
    created_at: datetime
    status: NotificationStatus = NotificationStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    sent_at: datetime | None = None
