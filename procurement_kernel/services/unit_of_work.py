"""
Unit of work -- one transaction, its stores, and its deferred side effects.

Responsibility:
    Open a session from the factory, expose the session-bound stores, and
    collect the audit entries the work produces.  Audit entries are handed
    to the sink only after the transaction settles:

    * on commit, every collected entry is recorded;
    * on rollback, only entries registered with ``audit_failure`` are
      recorded, so refused operations stay visible while work that never
      happened leaves no trace.

    Outbound order events are written to the integration event outbox in
    the same transaction as the order change that produced them.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Usage:
    with unit_of_work(session_factory, clock, audit_sink) as uow:
        order = uow.orders.get(order_id)
        ...
        uow.audit("PurchaseOrder", order.order_id, AuditAction.ORDER_TRANSITIONED, actor)
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Generator, Iterable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from procurement_kernel.db.engine import session_scope
from procurement_kernel.domain.audit import AuditAction, AuditEntry
from procurement_kernel.domain.clock import Clock
from procurement_kernel.domain.integration import (
    IntegrationEvent,
    OrderEvent,
    QueueChange,
)
from procurement_kernel.domain.protocols import AuditSink
from procurement_kernel.services.approval_store import ApprovalRequestStore
from procurement_kernel.services.integration_event_store import IntegrationEventStore
from procurement_kernel.services.notification_outbox import NotificationOutbox
from procurement_kernel.services.order_store import SqlOrderStore
from procurement_kernel.services.receiving_projection import ReceivingProjection


class UnitOfWork:
    """Stores bound to one session plus the audit entries collected so far."""

    def __init__(self, session: Session, clock: Clock):
        self.session = session
        self.clock = clock
        self.orders = SqlOrderStore(session, clock)
        self.approvals = ApprovalRequestStore(session)
        self.integration_events = IntegrationEventStore(session)
        self.projection = ReceivingProjection(session)
        self.notifications = NotificationOutbox(session)
        self._audits: list[tuple[AuditEntry, bool]] = []

    def _entry(
        self,
        entity_type: str,
        entity_id: UUID | str,
        action: AuditAction,
        actor_id: str,
        payload: dict[str, Any],
    ) -> AuditEntry:
        return AuditEntry(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            actor_id=actor_id,
            recorded_at=self.clock.now(),
            payload=payload,
        )

    def audit(
        self,
        entity_type: str,
        entity_id: UUID | str,
        action: AuditAction,
        actor_id: str,
        **payload: Any,
    ) -> AuditEntry:
        """Collect an entry that is recorded only if the work commits."""
        entry = self._entry(entity_type, entity_id, action, actor_id, payload)
        self._audits.append((entry, False))
        return entry

    def audit_failure(
        self,
        entity_type: str,
        entity_id: UUID | str,
        action: AuditAction,
        actor_id: str,
        **payload: Any,
    ) -> AuditEntry:
        """Collect an entry that is recorded whether or not the work commits."""
        entry = self._entry(entity_type, entity_id, action, actor_id, payload)
        self._audits.append((entry, True))
        return entry

    def audit_entries(self, committed: bool) -> list[AuditEntry]:
        return [entry for entry, always in self._audits if committed or always]

    def record_events(self, events: Iterable[OrderEvent]) -> list[IntegrationEvent]:
        """Write queue-affecting events to the integration outbox."""
        recorded = []
        for event in events:
            if event.queue_change == QueueChange.NONE:
                continue
            recorded.append(self.integration_events.add(integration_event_from(event)))
        return recorded


def integration_event_from(event: OrderEvent) -> IntegrationEvent:
    return IntegrationEvent(
        event_id=uuid4(),
        order_id=event.order_id,
        kind=event.kind,
        occurred_at=event.occurred_at,
        actor_id=event.actor_id,
        from_status=event.from_status,
        to_status=event.to_status,
        context=dict(event.context),
    )


@contextmanager
def unit_of_work(
    session_factory: Callable[[], Session],
    clock: Clock,
    audit_sink: AuditSink,
) -> Generator[UnitOfWork, None, None]:
    """Transactional scope that flushes collected audits once it settles."""
    uow: UnitOfWork | None = None
    committed = False
    try:
        with session_scope(session_factory) as session:
            uow = UnitOfWork(session, clock)
            yield uow
        committed = True
    finally:
        if uow is not None:
            for entry in uow.audit_entries(committed):
                audit_sink.record(entry)
