"""Services for the procurement kernel (stores and transactional shell)."""

from procurement_kernel.services.approval_store import ApprovalRequestStore
from procurement_kernel.services.audit_sink import SafeAuditSink, SqlAuditSink
from procurement_kernel.services.integration_event_store import IntegrationEventStore
from procurement_kernel.services.notification_outbox import NotificationOutbox
from procurement_kernel.services.order_service import (
    OrderService,
    close_open_request,
    commit_transition,
    retry_on_conflict,
)
from procurement_kernel.services.order_store import SqlOrderStore
from procurement_kernel.services.receiving_projection import ReceivingProjection
from procurement_kernel.services.role_directory import StaticRoleDirectory
from procurement_kernel.services.unit_of_work import UnitOfWork, unit_of_work

__all__ = [
    "ApprovalRequestStore",
    "IntegrationEventStore",
    "NotificationOutbox",
    "OrderService",
    "ReceivingProjection",
    "SafeAuditSink",
    "SqlAuditSink",
    "SqlOrderStore",
    "StaticRoleDirectory",
    "UnitOfWork",
    "close_open_request",
    "commit_transition",
    "retry_on_conflict",
    "unit_of_work",
]
