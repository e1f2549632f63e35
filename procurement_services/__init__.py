"""
procurement_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure calculation engines
    (procurement_engines/) with kernel stores and units of work: the
    approval workflow, receiving, the receiving integration bridge,
    notifications, outbound event dispatch and background tasks.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        procurement_services/ -> procurement_engines/  (allowed)
        procurement_services/ -> procurement_kernel/   (allowed)
        procurement_engines/  -> procurement_services/ (FORBIDDEN)
        procurement_kernel/   -> procurement_services/ (FORBIDDEN)
"""

from procurement_services.approval_workflow import (
    AUTO_APPROVER_ID,
    ESCALATION_ACTOR_ID,
    ApprovalWorkflow,
)
from procurement_services.debounce import Debouncer
from procurement_services.event_dispatcher import EventDispatcher
from procurement_services.notification import (
    LoggingNotificationDispatcher,
    NotificationService,
)
from procurement_services.orchestrator import ProcurementOrchestrator
from procurement_services.receiving_integration import ReceivingIntegrationBridge
from procurement_services.receiving_service import ReceivingService
from procurement_services.scheduler import BackgroundTasks, PeriodicTask

__all__ = [
    "AUTO_APPROVER_ID",
    "ApprovalWorkflow",
    "BackgroundTasks",
    "Debouncer",
    "ESCALATION_ACTOR_ID",
    "EventDispatcher",
    "LoggingNotificationDispatcher",
    "NotificationService",
    "PeriodicTask",
    "ProcurementOrchestrator",
    "ReceivingIntegrationBridge",
    "ReceivingService",
]
