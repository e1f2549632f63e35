"""
Configuration Validator (``procurement_config.validator``).

Responsibility
--------------
Checks a ``ProcurementConfigSnapshot`` for structural problems before it
becomes active.

Invariants enforced
-------------------
* Policy names are unique.
* Amount ranges are well formed (``min < max``, ``min >= 0``).
* Non-auto-approve policies name at least one role and need at least one
  approver.
* Condition fields reference known order attributes.
* Two policies that would tie on every resolution key for some amount
  are reported as an error, since resolution would fail closed.
* Tolerance thresholds are ordered: warning <= tolerance <= block.
* Escalation levels are numbered 1..n without gaps.
* Receiving limits are non-negative and the near-expiry window sits
  inside the warning window.
* Transition permissions name real order statuses.

Failure modes
-------------
* Errors  -> the snapshot MUST NOT be activated.
* Warnings  -> the snapshot may be activated but should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from itertools import combinations

from procurement_config.schema import ProcurementConfigSnapshot
from procurement_kernel.domain.approval import CONDITION_FIELDS, ApprovalPolicy
from procurement_kernel.domain.order_status import OrderStatus
from procurement_kernel.domain.permissions import WILDCARD
from procurement_kernel.domain.receiving import ToleranceRule


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_snapshot(snapshot: ProcurementConfigSnapshot) -> ConfigValidationResult:
    """Validate a configuration snapshot.

    Returns:
        ConfigValidationResult with all errors and warnings found.
    """
    result = ConfigValidationResult()

    _validate_policies(snapshot, result)
    _validate_tolerance("over", snapshot.tolerance.over, result)
    _validate_tolerance("under", snapshot.tolerance.under, result)
    _validate_escalation(snapshot, result)

    integration = snapshot.integration
    if integration.max_attempts < 1:
        result.add_error("integration.max_attempts must be at least 1")
    if integration.base_delay_seconds < 0 or integration.backoff_multiplier < 1:
        result.add_error("integration backoff must be non-negative and non-shrinking")
    if integration.debounce_seconds < 0:
        result.add_error("integration.debounce_seconds must not be negative")

    if snapshot.notifications.max_attempts < 1:
        result.add_error("notifications.max_attempts must be at least 1")

    if snapshot.bulk_parallelism < 1:
        result.add_error("bulk_parallelism must be at least 1")

    _validate_receiving(snapshot, result)
    _validate_transition_permissions(snapshot, result)

    if snapshot.audit.flush_interval_seconds <= 0:
        result.add_error("audit.flush_interval_seconds must be positive")

    return result


def _validate_policies(snapshot: ProcurementConfigSnapshot, result: ConfigValidationResult) -> None:
    policies = [p for p in snapshot.policies if p.is_active]
    if not policies:
        result.add_warning("No active approval policies; every submission will fail")
        return

    seen: set[str] = set()
    for policy in snapshot.policies:
        if policy.name in seen:
            result.add_error(f"Duplicate approval policy name: {policy.name}")
        seen.add(policy.name)

    for policy in policies:
        prefix = f"Policy '{policy.name}'"
        if policy.min_amount < 0:
            result.add_error(f"{prefix}: min_amount must not be negative")
        if policy.max_amount is not None and policy.max_amount <= policy.min_amount:
            result.add_error(f"{prefix}: max_amount must exceed min_amount")
        if not policy.auto_approve:
            if not policy.required_roles:
                result.add_error(f"{prefix}: required_roles must not be empty")
            if policy.required_approvers < 1:
                result.add_error(f"{prefix}: required_approvers must be at least 1")
        for condition in policy.conditions:
            if condition.field not in CONDITION_FIELDS:
                result.add_error(
                    f"{prefix}: unknown condition field '{condition.field}'"
                )
        if policy.escalation_timeout_hours is not None and policy.escalation_timeout_hours <= 0:
            result.add_error(f"{prefix}: escalation_timeout_hours must be positive")

    for a, b in combinations(policies, 2):
        if _always_tie(a, b):
            result.add_error(
                f"Policies '{a.name}' and '{b.name}' overlap with identical "
                f"conditions, range width and priority"
            )

    unconditioned = [p for p in policies if p.specificity == 0]
    if not any(p.min_amount <= Decimal("0") for p in unconditioned):
        result.add_warning("No unconditioned policy covers amounts starting at 0")
    if not any(p.max_amount is None for p in unconditioned):
        result.add_warning("No unconditioned policy has an unbounded upper range")


def _always_tie(a: ApprovalPolicy, b: ApprovalPolicy) -> bool:
    a_max = a.max_amount
    b_max = b.max_amount
    overlaps = (
        (b_max is None or a.min_amount < b_max)
        and (a_max is None or b.min_amount < a_max)
    )
    if not overlaps:
        return False
    return (
        a.range_width == b.range_width
        and a.priority == b.priority
        and set(c for c in a.conditions if not c.blocking)
        == set(c for c in b.conditions if not c.blocking)
    )


def _validate_tolerance(direction: str, rule: ToleranceRule, result: ConfigValidationResult) -> None:
    prefix = f"tolerance.{direction}"
    if rule.tolerance_value < 0 or rule.warning_threshold < 0:
        result.add_error(f"{prefix}: thresholds must not be negative")
    if rule.warning_threshold > rule.tolerance_value:
        result.add_error(f"{prefix}: warning_threshold exceeds tolerance_value")
    if rule.block_threshold is not None and rule.block_threshold < rule.tolerance_value:
        result.add_error(f"{prefix}: block_threshold is below tolerance_value")
    if rule.require_approval and not rule.approval_roles:
        result.add_warning(f"{prefix}: approval required but no approval_roles configured")


def _validate_escalation(snapshot: ProcurementConfigSnapshot, result: ConfigValidationResult) -> None:
    settings = snapshot.escalation
    if settings.max_escalations < 0:
        result.add_error("escalation.max_escalations must not be negative")
    numbers = [lvl.level for lvl in settings.levels]
    if numbers != list(range(1, len(numbers) + 1)):
        result.add_error("escalation.levels must be numbered 1..n without gaps")
    for lvl in settings.levels:
        if not lvl.roles:
            result.add_error(f"escalation level {lvl.level} names no roles")
        if lvl.after_hours <= 0:
            result.add_error(f"escalation level {lvl.level}: after_hours must be positive")
    if settings.enabled and len(settings.levels) < settings.max_escalations:
        result.add_warning(
            "fewer escalation levels than max_escalations; requests expire early"
        )


def _validate_receiving(snapshot: ProcurementConfigSnapshot, result: ConfigValidationResult) -> None:
    rules = snapshot.receiving
    if rules.partial.max_partial_receipts < 1:
        result.add_error("receiving.partial_receiving.max_partial_receipts must be at least 1")

    expiry = rules.expiry
    if expiry.warn_before_days < 0 or expiry.near_expiry_threshold_days < 0:
        result.add_error("receiving.expiry_handling day windows must not be negative")
    elif expiry.near_expiry_threshold_days > expiry.warn_before_days:
        result.add_warning(
            "receiving.expiry_handling: near_expiry_threshold_days exceeds warn_before_days"
        )
    if expiry.accept_near_expiry_with_approval and not expiry.approval_roles:
        result.add_warning("receiving.expiry_handling: near-expiry approval has no approval_roles")

    if rules.quality.require_quality_check and not rules.quality.quality_check_roles:
        result.add_error("receiving.quality_checks: required checks name no quality_check_roles")
    if rules.damage.require_damage_report and not rules.damage.damage_categories:
        result.add_error("receiving.damage_handling: damage reports required but no categories")


def _validate_transition_permissions(
    snapshot: ProcurementConfigSnapshot, result: ConfigValidationResult,
) -> None:
    known = {status.value for status in OrderStatus} | {WILDCARD}
    for role, statuses in snapshot.transition_permissions.grants:
        for status in sorted(statuses - known):
            result.add_error(f"transition_permissions.{role}: unknown status {status!r}")
