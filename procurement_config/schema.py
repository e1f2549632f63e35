"""
Procurement configuration schema.

A ``ProcurementConfigSnapshot`` is the single runtime artifact: approval
policies, receipt tolerances and receiving rules, transition permissions,
escalation ladder, integration retry settings, notification and audit
settings, frozen together under one version and checksum.  Services
receive a snapshot (or a ``ConfigProvider``) through their constructor;
nothing reads configuration globally.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from procurement_engines.escalation import EscalationLevel
from procurement_engines.retry import RetryPolicy
from procurement_kernel.domain.approval import ApprovalPolicy
from procurement_kernel.domain.permissions import TransitionPermissions
from procurement_kernel.domain.receiving import ReceivingRules, ToleranceConfig

PRIORITY_NAMES: dict[str, int] = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "urgent": 4,
}


@dataclass(frozen=True)
class EscalationSettings:
    enabled: bool = True
    max_escalations: int = 3
    check_interval_seconds: float = 300.0
    levels: tuple[EscalationLevel, ...] = ()


@dataclass(frozen=True)
class IntegrationSettings:
    """Receiving bridge retry, debounce and reconciliation settings."""

    base_delay_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    max_attempts: int = 3
    debounce_seconds: float = 2.0
    retry_sweep_interval_seconds: float = 30.0
    reconcile_interval_seconds: float = 900.0
    batch_size: int = 100

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            base_delay_seconds=self.base_delay_seconds,
            multiplier=self.backoff_multiplier,
            max_attempts=self.max_attempts,
        )


@dataclass(frozen=True)
class NotificationSettings:
    """Notification outbox settings; retries are independent of integration retries."""

    enabled: bool = True
    base_delay_seconds: float = 60.0
    backoff_multiplier: float = 2.0
    max_attempts: int = 3
    retry_interval_seconds: float = 60.0
    escalation_recipients: tuple[str, ...] = ()

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            base_delay_seconds=self.base_delay_seconds,
            multiplier=self.backoff_multiplier,
            max_attempts=self.max_attempts,
        )


@dataclass(frozen=True)
class AuditSettings:
    """Audit writes are queued and drained by a background task when
    ``background_writes`` is set; otherwise each entry is written on the
    caller's thread.
    """

    background_writes: bool = True
    flush_interval_seconds: float = 1.0


@dataclass(frozen=True)
class ProcurementConfigSnapshot:
    """Immutable, versioned configuration.

    In-flight approval requests keep the policy snapshot copied at
    creation; replacing the active snapshot never changes them.
    """

    config_id: str
    version: int
    policies: tuple[ApprovalPolicy, ...] = ()
    tolerance: ToleranceConfig = field(default_factory=ToleranceConfig)
    escalation: EscalationSettings = field(default_factory=EscalationSettings)
    integration: IntegrationSettings = field(default_factory=IntegrationSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    receiving: ReceivingRules = field(default_factory=ReceivingRules)
    transition_permissions: TransitionPermissions = field(default_factory=TransitionPermissions)
    audit: AuditSettings = field(default_factory=AuditSettings)
    holidays: frozenset[date] = frozenset()
    bulk_parallelism: int = 4
    checksum: str = ""

    @property
    def label(self) -> str:
        return f"{self.config_id}@v{self.version}"

    def policy(self, name: str) -> ApprovalPolicy | None:
        for candidate in self.policies:
            if candidate.name == name:
                return candidate
        return None
