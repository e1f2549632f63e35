"""
procurement_engines.escalation -- Pure escalation planning.

Responsibility:
    Compute approval deadlines (skipping weekends and holidays when the
    policy asks for it) and decide what happens to an overdue request:
    escalate to the next role tier or force-expire.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Time is passed in.

Invariants enforced:
    - A deadline never lands on a skipped day; it is pushed forward by
      whole days until it does not.
    - A request is escalated at most ``max_escalations`` times; the next
      overdue scan expires it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from procurement_kernel.domain.approval import (
    ApprovalPolicy,
    ApprovalRequest,
    EscalationAction,
)

# Safety bound: a holiday calendar covering every day must not loop forever.
_MAX_SKIPPED_DAYS = 366


@dataclass(frozen=True)
class EscalationLevel:
    """One tier of the escalation ladder.

    ``level`` is 1-based: the first escalation applies level 1.
    """

    level: int
    after_hours: int
    roles: tuple[str, ...]
    priority: int = 3


@dataclass(frozen=True)
class EscalationPlan:
    """What the escalation scan should do with one overdue request."""

    action: EscalationAction
    level: EscalationLevel | None = None
    reason: str = ""


def is_skipped_day(
    day: date,
    skip_weekends: bool,
    skip_holidays: bool,
    holidays: frozenset[date] = frozenset(),
) -> bool:
    if skip_weekends and day.weekday() >= 5:
        return True
    if skip_holidays and day in holidays:
        return True
    return False


def compute_deadline(
    start: datetime,
    hours: float,
    skip_weekends: bool = True,
    skip_holidays: bool = True,
    holidays: Iterable[date] = (),
) -> datetime:
    """Add ``hours`` to ``start``, then roll forward past skipped days.

    Args:
        start: When the clock starts (request creation or last escalation).
        hours: Timeout in hours.
        skip_weekends: Push deadlines falling on Saturday/Sunday forward.
        skip_holidays: Push deadlines falling on a holiday forward.
        holidays: Holiday calendar.

    Returns:
        The deadline, keeping ``start``'s timezone.
    """
    holiday_set = frozenset(holidays)
    deadline = start + timedelta(hours=hours)
    for _ in range(_MAX_SKIPPED_DAYS):
        if not is_skipped_day(deadline.date(), skip_weekends, skip_holidays, holiday_set):
            return deadline
        deadline += timedelta(days=1)
    return deadline


def deadline_for_policy(
    policy: ApprovalPolicy,
    start: datetime,
    holidays: Iterable[date] = (),
    hours: float | None = None,
) -> datetime | None:
    """Deadline for a request under ``policy``; ``None`` when it never times out."""
    timeout = hours if hours is not None else policy.escalation_timeout_hours
    if timeout is None:
        return None
    return compute_deadline(
        start,
        timeout,
        skip_weekends=policy.skip_weekends,
        skip_holidays=policy.skip_holidays,
        holidays=holidays,
    )


def is_overdue(request: ApprovalRequest, now: datetime) -> bool:
    return request.is_open and request.deadline is not None and request.deadline <= now


def plan_escalation(
    request: ApprovalRequest,
    levels: Iterable[EscalationLevel],
    max_escalations: int,
) -> EscalationPlan:
    """Decide whether an overdue request escalates or expires.

    ``request.policy.max_escalations`` overrides ``max_escalations`` when
    set.  Running out of configured levels also expires the request.
    """
    limit = (
        request.policy.max_escalations
        if request.policy.max_escalations is not None
        else max_escalations
    )
    if request.escalation_count >= limit:
        return EscalationPlan(
            action=EscalationAction.EXPIRED,
            reason=f"escalation limit {limit} reached",
        )

    next_level = request.escalation_count + 1
    by_level = {lvl.level: lvl for lvl in levels}
    level = by_level.get(next_level)
    if level is None:
        return EscalationPlan(
            action=EscalationAction.EXPIRED,
            reason=f"no escalation level {next_level} configured",
        )

    return EscalationPlan(
        action=EscalationAction.ESCALATED,
        level=level,
        reason=f"escalated to level {next_level}",
    )


def merge_roles(current: Iterable[str], added: Iterable[str]) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Append roles not already eligible; returns (merged, newly_added)."""
    merged = list(current)
    new: list[str] = []
    for role in added:
        if role not in merged:
            merged.append(role)
            new.append(role)
    return tuple(merged), tuple(new)
