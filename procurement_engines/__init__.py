"""
Pure calculation engines for the procurement workflow.

Every function here is deterministic and free of I/O: time, configuration
and collaborator state are passed in.
"""

from procurement_engines.approval import (
    blocking_conditions_fired,
    condition_matches,
    evaluate_quorum,
    is_auto_approvable,
    resolve_policy,
    validate_approver_role,
)
from procurement_engines.escalation import (
    EscalationLevel,
    EscalationPlan,
    compute_deadline,
    deadline_for_policy,
    is_overdue,
    merge_roles,
    plan_escalation,
)
from procurement_engines.readiness import (
    check_readiness,
    entry_drifted,
    projection_entry,
)
from procurement_engines.retry import (
    RetryDecision,
    RetryPolicy,
    is_transient,
    schedule_retry,
)
from procurement_engines.tolerance import (
    build_receipt_items,
    calculate_variance,
    receiving_statistics,
    validate_receipt,
)
