"""
ProcurementOrchestrator -- DI container and public surface of the engine.

Contract:
    Wires configuration, audit sink, order service, approval workflow,
    receiving service, integration bridge, event dispatcher, notification
    service and background tasks.  Every operation that commits order
    transitions hands the returned outbound events to the dispatcher
    after the transaction has committed.

Invariants enforced:
    - Clock injection: every service receives the same clock.
    - The audit sink is wrapped in ``SafeAuditSink``; audit failures are
      logged and never break the audited operation.
    - With ``audit.background_writes`` the services record into a
      ``BufferedAuditSink`` drained by the ``audit_drain`` task, so audit
      storage latency stays off the caller's thread.
    - Background tasks are created here but only run after ``start()``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from procurement_config import get_active_config
from procurement_config.provider import ConfigProvider
from procurement_config.schema import ProcurementConfigSnapshot
from procurement_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from procurement_kernel.domain.approval import (
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStatistics,
    ApprovalSubmission,
    BulkResult,
    DecisionInput,
    DecisionOutcome,
    EscalationResult,
)
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.integration import (
    IntegrationEvent,
    OrderEvent,
    ReceivingQueueEntry,
    ReconciliationReport,
)
from procurement_kernel.domain.order_status import OrderStatus, is_receivable
from procurement_kernel.domain.protocols import (
    AuditSink,
    NotificationDispatcher,
    RoleDirectory,
)
from procurement_kernel.domain.purchase_order import OrderQuery, PurchaseOrder
from procurement_kernel.domain.receiving import (
    ReceiptEntry,
    ReceiptOutcome,
    ValidationResult,
)
from procurement_kernel.domain.transitions import TransitionResult
from procurement_kernel.logging_config import get_logger
from procurement_kernel.services.audit_sink import (
    BufferedAuditSink,
    SafeAuditSink,
    SqlAuditSink,
)
from procurement_kernel.services.order_service import OrderService
from procurement_kernel.services.role_directory import StaticRoleDirectory
from procurement_services.approval_workflow import ApprovalWorkflow
from procurement_services.debounce import Debouncer
from procurement_services.event_dispatcher import EventDispatcher
from procurement_services.notification import NotificationService
from procurement_services.receiving_integration import ReceivingIntegrationBridge
from procurement_services.receiving_service import ReceivingService
from procurement_services.scheduler import BackgroundTasks, PeriodicTask

logger = get_logger("services.orchestrator")

OPERATOR_ACTOR_ID = "system:operator"


class ProcurementOrchestrator:
    """Top-level facade over the approval and receiving workflows.

    Non-goals:
        - Does NOT start background tasks automatically -- caller decides.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: ConfigProvider | ProcurementConfigSnapshot,
        role_directory: RoleDirectory | None = None,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        notification_dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config if isinstance(config, ConfigProvider) else ConfigProvider(config)
        self._clock = clock or SystemClock()
        self._roles = role_directory or StaticRoleDirectory()
        self._audit = SafeAuditSink(audit_sink or SqlAuditSink(session_factory))

        snapshot = self._config.current()
        self._audit_buffer = (
            BufferedAuditSink(self._audit) if snapshot.audit.background_writes else None
        )
        writer = self._audit_buffer or self._audit
        self.notifications = NotificationService(
            session_factory,
            writer,
            notification_dispatcher,
            snapshot.notifications,
            self._clock,
        )
        self.orders = OrderService(
            session_factory,
            writer,
            self._clock,
            self._roles,
            lambda: self._config.current().transition_permissions,
        )
        self.approvals = ApprovalWorkflow(
            session_factory,
            self._config,
            self._roles,
            writer,
            self._clock,
            self.notifications,
        )
        self.receiving = ReceivingService(
            session_factory, self._config, self._roles, writer, self._clock,
        )
        self.bridge = ReceivingIntegrationBridge(
            session_factory, self._config, writer, self._clock,
        )

        window = snapshot.integration.debounce_seconds
        self.debouncer = (
            Debouncer(self._clock, window, self.bridge.process_order)
            if window > 0 else None
        )
        self.dispatcher = EventDispatcher(self.bridge, self.debouncer)
        self.background = self._build_background_tasks(snapshot)

        logger.info(
            "orchestrator_initialized",
            extra={
                "config_version": snapshot.label,
                "checksum": snapshot.checksum,
                "background_tasks": list(self.background.names),
            },
        )

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_url(
        cls,
        database_url: str,
        config_path: Path | str | None = None,
        role_directory: RoleDirectory | None = None,
        clock: Clock | None = None,
        create_schema: bool = True,
    ) -> ProcurementOrchestrator:
        """Initialize the engine, load configuration and wire everything.

        Args:
            database_url: SQLAlchemy URL (PostgreSQL or SQLite).
            config_path: YAML configuration; the packaged default when None.
            role_directory: Identity lookup; an empty static directory when None.
            clock: Optional clock for deterministic runs.
            create_schema: Create missing tables.
        """
        init_engine_from_url(database_url)
        if create_schema:
            create_tables()
        return cls(
            get_session_factory(),
            ConfigProvider(get_active_config(config_path)),
            role_directory=role_directory,
            clock=clock,
        )

    def _build_background_tasks(self, snapshot: ProcurementConfigSnapshot) -> BackgroundTasks:
        tasks = BackgroundTasks()
        if snapshot.escalation.enabled:
            tasks.add(PeriodicTask(
                "escalations",
                snapshot.escalation.check_interval_seconds,
                self.process_escalations,
            ))
        tasks.add(PeriodicTask(
            "integration_retry",
            snapshot.integration.retry_sweep_interval_seconds,
            self.bridge.process_due_events,
        ))
        tasks.add(PeriodicTask(
            "reconciliation",
            snapshot.integration.reconcile_interval_seconds,
            self.bridge.reconcile,
        ))
        if self.debouncer is not None:
            tasks.add(PeriodicTask(
                "debounce_flush",
                max(snapshot.integration.debounce_seconds / 2, 0.5),
                self.debouncer.flush_due,
            ))
        if snapshot.notifications.enabled:
            tasks.add(PeriodicTask(
                "notification_retry",
                snapshot.notifications.retry_interval_seconds,
                self.notifications.retry_due,
            ))
        if self._audit_buffer is not None:
            tasks.add(PeriodicTask(
                "audit_drain",
                snapshot.audit.flush_interval_seconds,
                self._audit_buffer.drain,
            ))
        return tasks

    @property
    def config(self) -> ConfigProvider:
        return self._config

    @property
    def audit_sink(self) -> SafeAuditSink:
        return self._audit

    def flush_audit(self) -> int:
        """Write queued audit entries now; returns how many were written."""
        if self._audit_buffer is None:
            return 0
        return self._audit_buffer.drain()

    def _dispatch(self, events: Iterable[OrderEvent]) -> None:
        self.dispatcher.dispatch(events)

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    def create_order(self, order: PurchaseOrder, actor_id: str) -> PurchaseOrder:
        return self.orders.create_order(order, actor_id)

    def get_order(self, order_id: UUID) -> PurchaseOrder:
        return self.orders.get_order(order_id)

    def amend_order(self, order_id: UUID, actor_id: str, **changes) -> PurchaseOrder:
        order = self.orders.amend(order_id, actor_id, **changes)
        if is_receivable(order.status):
            if self.debouncer is not None:
                self.debouncer.submit(order_id)
            else:
                self.dispatcher.dispatch_order(order_id)
        return order

    def transition_order(
        self,
        order_id: UUID,
        target: OrderStatus,
        actor_id: str,
        reason: str = "",
    ) -> TransitionResult:
        """Non-approval transition; failures are returned, not raised."""
        result = self.orders.transition(order_id, target, actor_id, reason)
        if result.success:
            self._dispatch(result.events)
        return result

    def cancel_order(self, order_id: UUID, actor_id: str, reason: str = "") -> TransitionResult:
        result = self.approvals.cancel_for_order(order_id, actor_id, reason)
        if result.success:
            self._dispatch(result.events)
        return result

    # -------------------------------------------------------------------------
    # Approval
    # -------------------------------------------------------------------------

    def request_approval(self, order_id: UUID, initiator_id: str) -> ApprovalSubmission:
        submission = self.approvals.create_request(order_id, initiator_id)
        self._dispatch(submission.events)
        return submission

    def decide(self, request_id: UUID, decision: DecisionInput) -> DecisionOutcome:
        outcome = self.approvals.submit_decision(request_id, decision)
        self._dispatch(outcome.events)
        return outcome

    def bulk_decide(self, request_ids: Iterable[UUID], decision: DecisionInput) -> BulkResult:
        result = self.approvals.bulk_decide(request_ids, decision)
        self._dispatch(result.events)
        return result

    def bulk_approve(
        self,
        request_ids: Iterable[UUID],
        approver_id: str,
        reason: str = "",
    ) -> BulkResult:
        return self.bulk_decide(
            request_ids,
            DecisionInput(approver_id=approver_id, decision=ApprovalDecision.APPROVE, reason=reason),
        )

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        return self.approvals.get_request(request_id)

    def requests_for_order(self, order_id: UUID) -> list[ApprovalRequest]:
        return self.approvals.requests_for_order(order_id)

    def pending_for_approver(self, approver_id: str) -> list[ApprovalRequest]:
        return self.approvals.pending_for_approver(approver_id)

    def approval_statistics(self) -> ApprovalStatistics:
        return self.approvals.statistics()

    def process_escalations(self) -> list[EscalationResult]:
        results = self.approvals.process_escalations()
        self._dispatch(e for result in results for e in result.events)
        return results

    # -------------------------------------------------------------------------
    # Receiving
    # -------------------------------------------------------------------------

    def validate_receipt(
        self,
        order_id: UUID,
        receipt_items: Iterable[ReceiptEntry],
        final_receipt: bool = False,
        actor_id: str | None = None,
        partial_reason: str | None = None,
    ) -> ValidationResult:
        return self.receiving.validate_receipt(
            order_id, list(receipt_items), final_receipt, actor_id, partial_reason,
        )

    def record_receipt(
        self,
        order_id: UUID,
        items: Iterable[ReceiptEntry],
        actor_id: str,
        approved_by: str | None = None,
        final_receipt: bool = False,
        partial_reason: str | None = None,
    ) -> ReceiptOutcome:
        outcome = self.receiving.record_receipt(
            order_id, list(items), actor_id, approved_by, final_receipt, partial_reason,
        )
        self._dispatch(outcome.events)
        return outcome

    def receiving_queue(self) -> list[PurchaseOrder]:
        """Orders currently visible to the receiving process, queue order."""
        entries = self.bridge.queue_entries()
        if not entries:
            return []
        orders = {
            order.order_id: order
            for order in self.orders.query(
                OrderQuery(order_ids=frozenset(e.order_id for e in entries))
            )
        }
        return [orders[e.order_id] for e in entries if e.order_id in orders]

    def receiving_queue_entries(self) -> list[ReceivingQueueEntry]:
        return self.bridge.queue_entries()

    # -------------------------------------------------------------------------
    # Integration
    # -------------------------------------------------------------------------

    def failed_integration_events(self) -> list[IntegrationEvent]:
        return self.bridge.failed_events()

    def retry_integration_event(
        self,
        event_id: UUID,
        actor_id: str = OPERATOR_ACTOR_ID,
    ) -> IntegrationEvent:
        return self.bridge.manual_retry(event_id, actor_id)

    def process_due_events(self) -> list[IntegrationEvent]:
        return self.bridge.process_due_events()

    def reconcile(self) -> ReconciliationReport:
        return self.bridge.reconcile()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        self.background.start()

    def stop(self, timeout: float = 30.0) -> None:
        """Stop background tasks, run still-pending debounced refreshes and
        write any queued audit entries."""
        self.background.stop(timeout=timeout)
        if self.debouncer is not None:
            self.debouncer.flush_all()
        self.flush_audit()

    @property
    def is_running(self) -> bool:
        return self.background.is_running
