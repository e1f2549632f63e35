"""
Configuration Loader (``procurement_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into a frozen
``ProcurementConfigSnapshot``.  Runtime callers go through
``procurement_config.get_active_config()`` or a ``ConfigProvider``; this
module is the parsing layer underneath them.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass.
* Amounts and tolerance thresholds are parsed as ``Decimal`` from their
  string form, never through ``float``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  document, stored on the snapshot for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown enum values (operator, tolerance type, priority name,
  damaged item handling)
  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from procurement_config.schema import (
    PRIORITY_NAMES,
    AuditSettings,
    EscalationSettings,
    IntegrationSettings,
    NotificationSettings,
    ProcurementConfigSnapshot,
)
from procurement_engines.escalation import EscalationLevel
from procurement_kernel.domain.approval import (
    ApprovalCondition,
    ApprovalPolicy,
    ConditionOperator,
)
from procurement_kernel.domain.permissions import TransitionPermissions
from procurement_kernel.domain.receiving import (
    DamagedItemHandling,
    DamageRules,
    ExpiryRules,
    PartialReceivingRules,
    QualityCheckRules,
    ReceivingRules,
    ToleranceConfig,
    ToleranceRule,
    ToleranceType,
)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "procurement.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_priority(value: Any) -> int:
    """Accept an integer or one of ``low|medium|high|urgent``."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    name = str(value).strip().lower()
    if name in PRIORITY_NAMES:
        return PRIORITY_NAMES[name]
    if name.lstrip("-").isdigit():
        return int(name)
    raise ValueError(f"Unknown priority {value!r}")


def parse_condition(data: dict[str, Any]) -> ApprovalCondition:
    value = data["value"]
    if isinstance(value, list):
        value = tuple(value)
    return ApprovalCondition(
        field=data["field"],
        operator=ConditionOperator(data.get("operator", "equals")),
        value=value,
        blocking=bool(data.get("blocking", False)),
    )


def parse_policy(data: dict[str, Any]) -> ApprovalPolicy:
    """
    Parse an ``ApprovalPolicy`` from a dict.

    Required keys: ``name``, ``min_amount``.  ``max_amount`` may be
    omitted or null for an unbounded range.
    """
    max_amount = data.get("max_amount")
    timeout = data.get("escalation_timeout_hours")
    max_escalations = data.get("max_escalations")
    return ApprovalPolicy(
        name=data["name"],
        min_amount=parse_decimal(data["min_amount"]),
        max_amount=parse_decimal(max_amount) if max_amount is not None else None,
        required_roles=tuple(data.get("required_roles", ())),
        required_approvers=int(data.get("required_approvers", 1)),
        escalation_timeout_hours=int(timeout) if timeout is not None else None,
        priority=parse_priority(data.get("priority")),
        auto_approve=bool(data.get("auto_approve", False)),
        conditions=tuple(parse_condition(c) for c in data.get("conditions", ())),
        skip_weekends=bool(data.get("skip_weekends", True)),
        skip_holidays=bool(data.get("skip_holidays", True)),
        max_escalations=int(max_escalations) if max_escalations is not None else None,
        is_active=bool(data.get("is_active", True)),
    )


def parse_tolerance_rule(data: dict[str, Any], defaults: ToleranceRule) -> ToleranceRule:
    block = data.get("block_threshold", defaults.block_threshold)
    return ToleranceRule(
        tolerance_type=ToleranceType(data.get("tolerance_type", defaults.tolerance_type.value)),
        tolerance_value=parse_decimal(data.get("tolerance_value", defaults.tolerance_value)),
        warning_threshold=parse_decimal(data.get("warning_threshold", defaults.warning_threshold)),
        block_threshold=parse_decimal(block) if block is not None else None,
        require_approval=bool(data.get("require_approval", defaults.require_approval)),
        approval_roles=tuple(data.get("approval_roles", defaults.approval_roles)),
        auto_accept=bool(data.get("auto_accept", defaults.auto_accept)),
        enabled=bool(data.get("enabled", defaults.enabled)),
    )


def parse_tolerance(data: dict[str, Any]) -> ToleranceConfig:
    defaults = ToleranceConfig()
    return ToleranceConfig(
        over=parse_tolerance_rule(data.get("over", {}), defaults.over),
        under=parse_tolerance_rule(data.get("under", {}), defaults.under),
        evaluate_under_on_partial=bool(data.get("evaluate_under_on_partial", False)),
    )


def parse_escalation(data: dict[str, Any]) -> EscalationSettings:
    levels = tuple(
        EscalationLevel(
            level=int(item["level"]),
            after_hours=int(item["after_hours"]),
            roles=tuple(item.get("roles", ())),
            priority=parse_priority(item.get("priority", 3)),
        )
        for item in data.get("levels", ())
    )
    return EscalationSettings(
        enabled=bool(data.get("enabled", True)),
        max_escalations=int(data.get("max_escalations", 3)),
        check_interval_seconds=float(data.get("check_interval_seconds", 300.0)),
        levels=tuple(sorted(levels, key=lambda lvl: lvl.level)),
    )


def parse_integration(data: dict[str, Any]) -> IntegrationSettings:
    defaults = IntegrationSettings()
    return IntegrationSettings(
        base_delay_seconds=float(data.get("base_delay_seconds", defaults.base_delay_seconds)),
        backoff_multiplier=float(data.get("backoff_multiplier", defaults.backoff_multiplier)),
        max_attempts=int(data.get("max_attempts", defaults.max_attempts)),
        debounce_seconds=float(data.get("debounce_seconds", defaults.debounce_seconds)),
        retry_sweep_interval_seconds=float(
            data.get("retry_sweep_interval_seconds", defaults.retry_sweep_interval_seconds)
        ),
        reconcile_interval_seconds=float(
            data.get("reconcile_interval_seconds", defaults.reconcile_interval_seconds)
        ),
        batch_size=int(data.get("batch_size", defaults.batch_size)),
    )


def parse_notifications(data: dict[str, Any]) -> NotificationSettings:
    defaults = NotificationSettings()
    return NotificationSettings(
        enabled=bool(data.get("enabled", defaults.enabled)),
        base_delay_seconds=float(data.get("base_delay_seconds", defaults.base_delay_seconds)),
        backoff_multiplier=float(data.get("backoff_multiplier", defaults.backoff_multiplier)),
        max_attempts=int(data.get("max_attempts", defaults.max_attempts)),
        retry_interval_seconds=float(
            data.get("retry_interval_seconds", defaults.retry_interval_seconds)
        ),
        escalation_recipients=tuple(data.get("escalation_recipients", ())),
    )


def parse_receiving(data: dict[str, Any]) -> ReceivingRules:
    """
    Parse receiving rules from the ``receiving`` section.

    Each of ``partial_receiving``, ``quality_checks``, ``expiry_handling``
    and ``damage_handling`` may be omitted; omitted keys keep the
    dataclass defaults.
    """
    partial = data.get("partial_receiving", {})
    quality = data.get("quality_checks", {})
    expiry = data.get("expiry_handling", {})
    damage = data.get("damage_handling", {})
    p, q, e, d = PartialReceivingRules(), QualityCheckRules(), ExpiryRules(), DamageRules()
    return ReceivingRules(
        partial=PartialReceivingRules(
            enabled=bool(partial.get("enabled", p.enabled)),
            allow_partial_receipts=bool(
                partial.get("allow_partial_receipts", p.allow_partial_receipts)
            ),
            max_partial_receipts=int(partial.get("max_partial_receipts", p.max_partial_receipts)),
            require_reason=bool(partial.get("require_reason", p.require_reason)),
        ),
        quality=QualityCheckRules(
            enabled=bool(quality.get("enabled", q.enabled)),
            require_quality_check=bool(
                quality.get("require_quality_check", q.require_quality_check)
            ),
            quality_check_roles=tuple(quality.get("quality_check_roles", q.quality_check_roles)),
            damaged_item_handling=DamagedItemHandling(
                quality.get("damaged_item_handling", q.damaged_item_handling.value)
            ),
        ),
        expiry=ExpiryRules(
            enabled=bool(expiry.get("enabled", e.enabled)),
            check_on_receipt=bool(expiry.get("check_on_receipt", e.check_on_receipt)),
            warn_before_days=int(expiry.get("warn_before_days", e.warn_before_days)),
            reject_expired=bool(expiry.get("reject_expired", e.reject_expired)),
            accept_near_expiry_with_approval=bool(
                expiry.get("accept_near_expiry_with_approval", e.accept_near_expiry_with_approval)
            ),
            near_expiry_threshold_days=int(
                expiry.get("near_expiry_threshold_days", e.near_expiry_threshold_days)
            ),
            approval_roles=tuple(expiry.get("approval_roles", e.approval_roles)),
        ),
        damage=DamageRules(
            enabled=bool(damage.get("enabled", d.enabled)),
            require_damage_report=bool(
                damage.get("require_damage_report", d.require_damage_report)
            ),
            photograph_required=bool(damage.get("photograph_required", d.photograph_required)),
            damage_categories=tuple(damage.get("damage_categories", d.damage_categories)),
        ),
    )


def parse_transition_permissions(data: dict[str, Any] | None) -> TransitionPermissions:
    """An absent section leaves transitions open to every known user."""
    if not data:
        return TransitionPermissions()
    return TransitionPermissions.from_mapping(
        data.get("roles", {}),
        enforced=bool(data.get("enforced", True)),
    )


def parse_audit(data: dict[str, Any]) -> AuditSettings:
    defaults = AuditSettings()
    return AuditSettings(
        background_writes=bool(data.get("background_writes", defaults.background_writes)),
        flush_interval_seconds=float(
            data.get("flush_interval_seconds", defaults.flush_interval_seconds)
        ),
    )


def parse_snapshot(data: dict[str, Any]) -> ProcurementConfigSnapshot:
    """Build a snapshot from a parsed YAML document."""
    return ProcurementConfigSnapshot(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        policies=tuple(parse_policy(p) for p in data.get("approval_policies", ())),
        tolerance=parse_tolerance(data.get("tolerance", {})),
        escalation=parse_escalation(data.get("escalation", {})),
        integration=parse_integration(data.get("integration", {})),
        notifications=parse_notifications(data.get("notifications", {})),
        receiving=parse_receiving(data.get("receiving", {})),
        transition_permissions=parse_transition_permissions(data.get("transition_permissions")),
        audit=parse_audit(data.get("audit", {})),
        holidays=frozenset(parse_date(d) for d in data.get("holidays", ())),
        bulk_parallelism=int(data.get("bulk_parallelism", 4)),
        checksum=compute_checksum(data),
    )


def load_config(path: Path | str | None = None) -> ProcurementConfigSnapshot:
    """Load and parse a configuration file (the packaged default when ``None``)."""
    return parse_snapshot(load_yaml_file(Path(path) if path else DEFAULT_CONFIG_PATH))
