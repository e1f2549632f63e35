"""
Pure domain layer.

This module contains immutable value objects and pure domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time
- I/O
"""

from procurement_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    OPEN_APPROVAL_STATUSES,
    TERMINAL_APPROVAL_STATUSES,
    ApprovalCondition,
    ApprovalDecision,
    ApprovalDecisionRecord,
    ApprovalPolicy,
    ApprovalRequest,
    ApprovalStatistics,
    ApprovalStatus,
    ApprovalSubmission,
    BulkFailure,
    BulkResult,
    ConditionOperator,
    DecisionInput,
    DecisionOutcome,
    EscalationAction,
    EscalationResult,
    QuorumEvaluation,
)
from procurement_kernel.domain.audit import (
    AuditAction,
    AuditEntry,
    NotificationRecord,
    NotificationStatus,
)
from procurement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from procurement_kernel.domain.integration import (
    IntegrationEvent,
    IntegrationEventKind,
    OrderEvent,
    ProcessingStatus,
    QueueChange,
    ReadinessReport,
    ReceivingQueueEntry,
    ReconciliationReport,
    determine_queue_change,
)
from procurement_kernel.domain.order_status import (
    ORDER_TRANSITIONS,
    RECEIVABLE_STATUSES,
    LegacyStatus,
    OrderStatus,
    can_transition,
    canonical_legacy_form,
    is_receivable,
    is_terminal,
    parse_status,
    receivable_statuses,
    to_enhanced,
    to_legacy,
    valid_transitions,
)
from procurement_kernel.domain.protocols import (
    AuditSink,
    NotificationDispatcher,
    NotificationResult,
    OrderStore,
    RoleDirectory,
)
from procurement_kernel.domain.purchase_order import (
    OrderQuery,
    PurchaseOrder,
    PurchaseOrderLine,
    new_order,
)
from procurement_kernel.domain.receiving import (
    ItemCondition,
    QualityException,
    ReceiptEntry,
    ReceiptItem,
    ReceiptOutcome,
    ReceivingStatistics,
    ToleranceConfig,
    ToleranceRule,
    ToleranceType,
    ValidationIssue,
    ValidationResult,
)
from procurement_kernel.domain.transitions import (
    TransitionResult,
    apply_transition,
    next_logical_status,
    validate_business_rules,
)
