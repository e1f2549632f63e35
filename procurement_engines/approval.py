"""
procurement_engines.approval -- Pure approval threshold resolution and quorum.

Responsibility:
    Select the approval policy that governs an order, decide whether the
    auto-approve shortcut applies, check approver eligibility, and judge
    whether the decisions collected so far finalize a request.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procurement_kernel/domain/ types.

Invariants enforced:
    - Deterministic selection: among covering policies the most specific
      wins (count of non-blocking conditions), then the narrowest amount
      range, then the highest priority.  A tie that survives every
      tie-breaker raises ``NoUniquePolicyError``; resolution fails closed.
    - Reject veto: a single ``reject`` finalizes the request as rejected
      regardless of how many approvals were collected.
    - Quorum counts distinct approvers, never decisions.

Failure modes:
    - ``NoUniquePolicyError`` on an unresolvable tie.
    - Returns ``None`` from ``resolve_policy`` when nothing covers the
      amount; the caller turns that into ``PolicyNotFoundError``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Mapping

from procurement_kernel.domain.approval import (
    ApprovalCondition,
    ApprovalDecision,
    ApprovalDecisionRecord,
    ApprovalPolicy,
    ConditionOperator,
    QuorumEvaluation,
)
from procurement_kernel.exceptions import NoUniquePolicyError


def resolve_policy(
    policies: Iterable[ApprovalPolicy],
    amount: Decimal,
    attributes: Mapping[str, Any] | None = None,
) -> ApprovalPolicy | None:
    """Select the single policy that governs ``amount`` and ``attributes``.

    Args:
        policies: Configured policies (inactive ones are ignored).
        amount: Order total.
        attributes: Order attributes conditions are evaluated against
            (see ``PurchaseOrder.condition_attributes``).

    Returns:
        The winning policy, or ``None`` when no policy covers the amount.

    Raises:
        NoUniquePolicyError: Two or more candidates tie on every key.
    """
    attributes = attributes or {}
    candidates = [
        policy for policy in policies
        if policy.is_active
        and policy.covers(amount)
        and _filters_match(policy, attributes)
    ]
    if not candidates:
        return None

    ranked = sorted(candidates, key=_rank_key)
    best = ranked[0]
    tied = [p for p in ranked if _rank_key(p) == _rank_key(best)]
    if len(tied) > 1:
        raise NoUniquePolicyError(
            str(amount), sorted(p.name for p in tied),
        )
    return best


def _rank_key(policy: ApprovalPolicy) -> tuple:
    # Sort ascending: more conditions, narrower range, higher priority first.
    width = policy.range_width
    unbounded = width is None
    return (
        -policy.specificity,
        unbounded,
        width if width is not None else Decimal("0"),
        -policy.priority,
    )


def _filters_match(policy: ApprovalPolicy, attributes: Mapping[str, Any]) -> bool:
    return all(
        condition_matches(c, attributes)
        for c in policy.conditions
        if not c.blocking
    )


def condition_matches(
    condition: ApprovalCondition,
    attributes: Mapping[str, Any],
) -> bool:
    """Evaluate one condition against the order attributes.

    Multi-valued attributes (tuples such as ``product_category``) match
    when any element satisfies the operator.  A missing attribute never
    matches, except under ``not_in``.
    """
    actual = attributes.get(condition.field)
    values = actual if isinstance(actual, (tuple, list, frozenset, set)) else (actual,)
    values = tuple(v for v in values if v is not None)
    expected = condition.value

    if condition.operator == ConditionOperator.EQUALS:
        return any(_norm(v) == _norm(expected) for v in values)

    if condition.operator == ConditionOperator.CONTAINS:
        needle = _norm(expected)
        return any(needle in _norm(v) for v in values)

    options = expected if isinstance(expected, (tuple, list, frozenset, set)) else (expected,)
    normalized = {_norm(o) for o in options}

    if condition.operator == ConditionOperator.IN:
        return any(_norm(v) in normalized for v in values)

    if condition.operator == ConditionOperator.NOT_IN:
        return all(_norm(v) not in normalized for v in values)

    return False


def _norm(value: Any) -> str:
    return str(value).strip().lower()


def is_auto_approvable(
    policy: ApprovalPolicy,
    attributes: Mapping[str, Any] | None = None,
) -> bool:
    """True when the policy auto-approves and no blocking condition fires."""
    if not policy.auto_approve:
        return False
    attributes = attributes or {}
    return not any(
        condition_matches(c, attributes)
        for c in policy.conditions
        if c.blocking
    )


def blocking_conditions_fired(
    policy: ApprovalPolicy,
    attributes: Mapping[str, Any],
) -> tuple[ApprovalCondition, ...]:
    return tuple(
        c for c in policy.conditions
        if c.blocking and condition_matches(c, attributes)
    )


def validate_approver_role(
    role: str | None,
    eligible_roles: Iterable[str],
) -> bool:
    """Check whether ``role`` may decide on a request.

    An empty ``eligible_roles`` accepts any known role; an unknown user
    (``role is None``) is never eligible.
    """
    if role is None:
        return False
    eligible = tuple(eligible_roles)
    if not eligible:
        return True
    return role in eligible


def evaluate_quorum(
    policy: ApprovalPolicy,
    decisions: Iterable[ApprovalDecisionRecord],
) -> QuorumEvaluation:
    """Judge the decisions collected for a request against its policy.

    Args:
        policy: The request's policy snapshot.
        decisions: Every decision recorded on the request.

    Returns:
        QuorumEvaluation with ``is_approved`` / ``is_rejected`` and the
        distinct approver count.
    """
    decisions = tuple(decisions)
    required = max(policy.required_approvers, 1)

    for d in decisions:
        if d.decision == ApprovalDecision.REJECT:
            return QuorumEvaluation(
                is_rejected=True,
                required_approvers=required,
                current_approvers=0,
                reason=f"Rejected by {d.approver_id}",
            )

    approvers = {d.approver_id for d in decisions if d.decision == ApprovalDecision.APPROVE}
    current = len(approvers)
    is_approved = current >= required

    return QuorumEvaluation(
        is_approved=is_approved,
        required_approvers=required,
        current_approvers=current,
        reason="Approved" if is_approved else f"{current}/{required} approvals",
    )
