"""
ReceivingIntegrationBridge -- keeps the receiving queue in sync with order state.

Responsibility:
    Consume integration events (written to the outbox by order
    transitions), upsert or remove the receiving projection row of the
    affected order, and confirm each change through the audit sink.
    Failures are recorded on the events and retried with exponential
    backoff; a periodic reconciliation re-derives the projection from
    authoritative order state.

Architecture position:
    Services -- composes procurement_engines.readiness and
    procurement_engines.retry with kernel stores.

Invariants enforced:
    - The projection is derived from the order as currently stored, never
      from the event payload, so out-of-order or repeated delivery
      converges to the same row.
    - Processing is idempotent: rows are keyed by order id and processed
      events are never processed again.
    - An order becomes visible to receiving only when it passes the
      readiness check; readiness problems are retried like transient
      failures.
    - Events that exhaust their attempts are marked ``failed``, excluded
      from the retry sweep, and re-armed only by ``manual_retry``.
    - Integration failures never propagate into the approval path.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from procurement_config.provider import ConfigProvider
from procurement_engines.readiness import (
    check_readiness,
    entry_drifted,
    projection_entry,
)
from procurement_engines.retry import schedule_retry
from procurement_kernel.domain.audit import AuditAction
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.integration import (
    IntegrationEvent,
    OrderEvent,
    ProcessingStatus,
    QueueChange,
    ReceivingQueueEntry,
    ReconciliationReport,
    event_kind_for,
)
from procurement_kernel.domain.order_status import (
    RECEIVABLE_STATUSES,
    OrderStatus,
    is_receivable,
)
from procurement_kernel.domain.protocols import AuditSink
from procurement_kernel.domain.purchase_order import OrderQuery
from procurement_kernel.exceptions import (
    IntegrationRetryNotAllowedError,
    ProcurementKernelError,
    ReceivingNotReadyError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.services.unit_of_work import UnitOfWork, unit_of_work

logger = get_logger("services.receiving_integration")

INTEGRATION_ACTOR_ID = "system:receiving-integration"
EVENT_ENTITY = "IntegrationEvent"
QUEUE_ENTITY = "ReceivingQueueEntry"

_QUEUE_AUDIT_ACTIONS: dict[QueueChange, AuditAction] = {
    QueueChange.ADDED: AuditAction.RECEIVING_QUEUE_ADDED,
    QueueChange.UPDATED: AuditAction.RECEIVING_QUEUE_UPDATED,
    QueueChange.REMOVED: AuditAction.RECEIVING_QUEUE_REMOVED,
}


class ReceivingIntegrationBridge:
    """Receiving projection synchronization with retry and reconciliation."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: ConfigProvider,
        audit_sink: AuditSink,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._audit_sink = audit_sink
        self._clock = clock or SystemClock()

    def _uow(self):
        return unit_of_work(self._session_factory, self._clock, self._audit_sink)

    # -------------------------------------------------------------------------
    # Event intake
    # -------------------------------------------------------------------------

    def record_event(self, event: OrderEvent) -> IntegrationEvent | None:
        """Store ``event`` for processing; ``None`` if it cannot affect the queue."""
        with self._uow() as uow:
            recorded = uow.record_events([event])
        return recorded[0] if recorded else None

    def on_purchase_order_approved(
        self,
        order_id: UUID,
        context: dict[str, Any] | None = None,
        actor_id: str = INTEGRATION_ACTOR_ID,
    ) -> IntegrationEvent:
        """Record an approval and make the order visible to receiving.

        A readiness failure does not fail the approval: the event stays
        pending with a scheduled retry.
        """
        event = self.record_event(OrderEvent(
            kind=event_kind_for(OrderStatus.APPROVED),
            order_id=order_id,
            from_status=OrderStatus.PENDING_APPROVAL,
            to_status=OrderStatus.APPROVED,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            context=dict(context or {}),
        ))
        self.process_order(order_id)
        return self.get_event(event.event_id)

    def on_purchase_order_status_changed(
        self,
        order_id: UUID,
        from_status: OrderStatus,
        to_status: OrderStatus,
        context: dict[str, Any] | None = None,
        actor_id: str = INTEGRATION_ACTOR_ID,
    ) -> IntegrationEvent | None:
        """Record a status change; refreshes or removes the projection row."""
        event = self.record_event(OrderEvent(
            kind=event_kind_for(to_status),
            order_id=order_id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            context=dict(context or {}),
        ))
        if event is None:
            logger.debug(
                "status_change_ignored",
                extra={
                    "order_id": str(order_id),
                    "from_status": from_status.value,
                    "to_status": to_status.value,
                },
            )
            return None
        self.process_order(order_id)
        return self.get_event(event.event_id)

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    def process_order(self, order_id: UUID) -> list[IntegrationEvent]:
        """Process every due event of one order in a single unit of work.

        Returns the events in their new state (processed, rescheduled or
        failed).
        """
        now = self._clock.now()
        due_ids: list[UUID] = []
        with LogContext.bind(order_id=str(order_id)):
            try:
                with self._uow() as uow:
                    due = uow.integration_events.due_for_order(order_id, now)
                    due_ids = [event.event_id for event in due]
                    if not due:
                        return []
                    change = self._sync(uow, order_id, due[-1].event_id, now)
                    processed = [
                        uow.integration_events.update(
                            replace(
                                event,
                                processing_status=ProcessingStatus.PROCESSED,
                                processed_at=now,
                                last_error=None,
                                next_attempt_at=None,
                            ),
                            expected_version=event.version,
                        )
                        for event in due
                    ]
                    if change is not None:
                        uow.audit(
                            QUEUE_ENTITY,
                            order_id,
                            _QUEUE_AUDIT_ACTIONS[change],
                            INTEGRATION_ACTOR_ID,
                            event_ids=due_ids,
                        )
            except Exception as exc:
                logger.warning(
                    "integration_processing_failed",
                    exc_info=not isinstance(exc, (ProcurementKernelError, SQLAlchemyError)),
                    extra={
                        "order_id": str(order_id),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                if not due_ids:
                    raise
                return self._schedule_retries(due_ids, exc)

        logger.info(
            "integration_events_processed",
            extra={
                "order_id": str(order_id),
                "events": len(processed),
                "queue_change": change.value if change is not None else None,
            },
        )
        return processed

    def _sync(
        self,
        uow: UnitOfWork,
        order_id: UUID,
        event_id: UUID,
        now: datetime,
    ) -> QueueChange | None:
        """Bring the projection row of ``order_id`` in line with the order."""
        order = uow.orders.get(order_id)
        if not is_receivable(order.status):
            return QueueChange.REMOVED if uow.projection.remove(order_id) else None

        if uow.projection.get(order_id) is None:
            report = check_readiness(order, now.date())
            if not report.is_ready:
                raise ReceivingNotReadyError(str(order_id), list(report.problems))
            for warning in report.warnings:
                logger.warning(
                    "receiving_readiness_warning",
                    extra={"order_id": str(order_id), "warning": warning},
                )
        return uow.projection.upsert(projection_entry(order, now, event_id))

    def _schedule_retries(
        self,
        event_ids: list[UUID],
        error: BaseException,
    ) -> list[IntegrationEvent]:
        policy = self._config.current().integration.retry_policy
        now = self._clock.now()
        results: list[IntegrationEvent] = []
        with self._uow() as uow:
            for event_id in event_ids:
                event = uow.integration_events.get(event_id)
                if not event.is_pending:
                    results.append(event)
                    continue
                decision = schedule_retry(policy, event.retry_count, error, now)
                updated = uow.integration_events.update(
                    replace(
                        event,
                        processing_status=decision.status,
                        retry_count=decision.retry_count,
                        last_error=str(error),
                        next_attempt_at=decision.next_attempt_at,
                    ),
                    expected_version=event.version,
                )
                uow.audit(
                    EVENT_ENTITY,
                    event_id,
                    (
                        AuditAction.INTEGRATION_FAILED
                        if decision.exhausted
                        else AuditAction.INTEGRATION_RETRY_SCHEDULED
                    ),
                    INTEGRATION_ACTOR_ID,
                    order_id=event.order_id,
                    retry_count=decision.retry_count,
                    next_attempt_at=decision.next_attempt_at,
                    transient=decision.transient,
                    error=str(error),
                    error_code=getattr(error, "code", type(error).__name__),
                )
                if decision.exhausted:
                    logger.error(
                        "integration_event_failed",
                        extra={
                            "event_id": str(event_id),
                            "order_id": str(event.order_id),
                            "retry_count": decision.retry_count,
                        },
                    )
                else:
                    logger.info(
                        "integration_retry_scheduled",
                        extra={
                            "event_id": str(event_id),
                            "retry_count": decision.retry_count,
                            "next_attempt_at": decision.next_attempt_at.isoformat(),
                        },
                    )
                results.append(updated)
        return results

    def process_event(self, event_id: UUID) -> IntegrationEvent:
        """Process ``event_id`` if it is due; other events come back unchanged."""
        event = self.get_event(event_id)
        if not event.is_due(self._clock.now()):
            return event
        self.process_order(event.order_id)
        return self.get_event(event_id)

    def process_due_events(self, limit: int | None = None) -> list[IntegrationEvent]:
        """Retry sweep: process every order with due events."""
        batch = limit if limit is not None else self._config.current().integration.batch_size
        with self._uow() as uow:
            order_ids = uow.integration_events.due_order_ids(self._clock.now(), batch)

        results: list[IntegrationEvent] = []
        for order_id in order_ids:
            try:
                results.extend(self.process_order(order_id))
            except Exception:
                logger.exception(
                    "integration_sweep_order_failed",
                    extra={"order_id": str(order_id)},
                )
        return results

    # -------------------------------------------------------------------------
    # Failed events
    # -------------------------------------------------------------------------

    def manual_retry(self, event_id: UUID, actor_id: str) -> IntegrationEvent:
        """Re-arm a failed event with a fresh attempt budget and process it.

        Raises:
            IntegrationRetryNotAllowedError: The event has not failed.
        """
        with self._uow() as uow:
            event = uow.integration_events.get(event_id)
            if event.processing_status != ProcessingStatus.FAILED:
                uow.audit_failure(
                    EVENT_ENTITY,
                    event_id,
                    AuditAction.INTEGRATION_MANUAL_RETRY,
                    actor_id,
                    order_id=event.order_id,
                    refused=True,
                    status=event.processing_status,
                )
                raise IntegrationRetryNotAllowedError(
                    str(event_id), event.processing_status.value,
                )
            uow.integration_events.update(
                replace(
                    event,
                    processing_status=ProcessingStatus.PENDING,
                    retry_count=0,
                    next_attempt_at=None,
                ),
                expected_version=event.version,
            )
            uow.audit(
                EVENT_ENTITY,
                event_id,
                AuditAction.INTEGRATION_MANUAL_RETRY,
                actor_id,
                order_id=event.order_id,
                previous_retry_count=event.retry_count,
                last_error=event.last_error,
            )
        logger.info(
            "integration_manual_retry",
            extra={"event_id": str(event_id), "actor_id": actor_id},
        )
        self.process_order(event.order_id)
        return self.get_event(event_id)

    def failed_events(self, limit: int | None = None) -> list[IntegrationEvent]:
        with self._uow() as uow:
            return uow.integration_events.with_status(ProcessingStatus.FAILED, limit)

    def pending_events(self, limit: int | None = None) -> list[IntegrationEvent]:
        with self._uow() as uow:
            return uow.integration_events.with_status(ProcessingStatus.PENDING, limit)

    def get_event(self, event_id: UUID) -> IntegrationEvent:
        with self._uow() as uow:
            return uow.integration_events.get(event_id)

    def events_for_order(self, order_id: UUID) -> list[IntegrationEvent]:
        with self._uow() as uow:
            return uow.integration_events.for_order(order_id)

    # -------------------------------------------------------------------------
    # Projection
    # -------------------------------------------------------------------------

    def queue_entries(self) -> list[ReceivingQueueEntry]:
        with self._uow() as uow:
            return uow.projection.entries()

    def reconcile(self) -> ReconciliationReport:
        """Re-derive the projection from authoritative order state.

        Adds missing receivable orders (when ready), removes rows whose
        order left the receivable set, and refreshes drifted rows.
        """
        now = self._clock.now()
        added: list[UUID] = []
        removed: list[UUID] = []
        refreshed: list[UUID] = []
        skipped: list[UUID] = []

        with self._uow() as uow:
            orders = uow.orders.query(OrderQuery(statuses=RECEIVABLE_STATUSES))
            entries = {entry.order_id: entry for entry in uow.projection.entries()}

            for order in orders:
                entry = entries.pop(order.order_id, None)
                if entry is None:
                    if not check_readiness(order, now.date()).is_ready:
                        skipped.append(order.order_id)
                        continue
                    uow.projection.upsert(projection_entry(order, now))
                    added.append(order.order_id)
                elif entry_drifted(entry, order):
                    uow.projection.upsert(projection_entry(order, now, entry.last_event_id))
                    refreshed.append(order.order_id)

            for order_id in entries:
                uow.projection.remove(order_id)
                removed.append(order_id)

            for action, order_ids in (("added", added), ("removed", removed), ("refreshed", refreshed)):
                for order_id in order_ids:
                    uow.audit(
                        QUEUE_ENTITY,
                        order_id,
                        AuditAction.RECONCILIATION_CORRECTED,
                        INTEGRATION_ACTOR_ID,
                        correction=action,
                    )

        report = ReconciliationReport(
            added=tuple(added),
            removed=tuple(removed),
            refreshed=tuple(refreshed),
            skipped=tuple(skipped),
        )
        logger.info(
            "reconciliation_completed",
            extra={
                "added": len(added),
                "removed": len(removed),
                "refreshed": len(refreshed),
                "skipped": len(skipped),
            },
        )
        return report
