"""
Tests for escalation deadline computation and planning.

Covers:
- compute_deadline rolls past weekends and holidays
- deadline_for_policy honours the policy's flags and timeout
- plan_escalation walks the level ladder and expires at the limit
- merge_roles appends only new roles
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from procurement_engines.escalation import (
    EscalationLevel,
    compute_deadline,
    deadline_for_policy,
    is_overdue,
    merge_roles,
    plan_escalation,
)
from procurement_kernel.domain.approval import (
    ApprovalPolicy,
    ApprovalRequest,
    ApprovalStatus,
    EscalationAction,
)

MONDAY = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
FRIDAY = datetime(2026, 3, 6, 9, 0, tzinfo=timezone.utc)

LEVELS = (
    EscalationLevel(level=1, after_hours=24, roles=("finance_manager",)),
    EscalationLevel(level=2, after_hours=48, roles=("director",)),
)


def make_request(escalation_count=0, max_escalations=None, deadline=None, status=ApprovalStatus.PENDING):
    policy = ApprovalPolicy(
        name="standard",
        min_amount=Decimal("0"),
        escalation_timeout_hours=24,
        max_escalations=max_escalations,
    )
    return ApprovalRequest(
        request_id=uuid4(),
        order_id=uuid4(),
        initiator_id="bob",
        policy=policy,
        amount=Decimal("500"),
        status=status,
        escalation_count=escalation_count,
        deadline=deadline,
    )


class TestComputeDeadline:
    def test_weekday_deadline_unchanged(self):
        assert compute_deadline(MONDAY, 24) == datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc)

    def test_weekend_pushed_to_monday(self):
        deadline = compute_deadline(FRIDAY, 24)
        assert deadline == datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc)
        assert deadline.weekday() == 0

    def test_weekends_counted_when_not_skipped(self):
        deadline = compute_deadline(FRIDAY, 24, skip_weekends=False)
        assert deadline.date() == date(2026, 3, 7)

    def test_holiday_pushed_forward(self):
        deadline = compute_deadline(MONDAY, 24, holidays=[date(2026, 3, 3)])
        assert deadline.date() == date(2026, 3, 4)

    def test_holiday_before_weekend_rolls_over_both(self):
        thursday = datetime(2026, 3, 5, 9, 0, tzinfo=timezone.utc)
        deadline = compute_deadline(thursday, 24, holidays=[date(2026, 3, 6)])
        assert deadline.date() == date(2026, 3, 9)

    def test_holidays_ignored_when_not_skipped(self):
        deadline = compute_deadline(MONDAY, 24, skip_holidays=False, holidays=[date(2026, 3, 3)])
        assert deadline.date() == date(2026, 3, 3)


class TestDeadlineForPolicy:
    def test_no_timeout_means_no_deadline(self):
        policy = ApprovalPolicy(name="p", min_amount=Decimal("0"))
        assert deadline_for_policy(policy, MONDAY) is None

    def test_explicit_hours_override_policy(self):
        policy = ApprovalPolicy(name="p", min_amount=Decimal("0"), escalation_timeout_hours=24)
        assert deadline_for_policy(policy, MONDAY, hours=48).date() == date(2026, 3, 4)


class TestPlanEscalation:
    def test_first_escalation_uses_level_one(self):
        plan = plan_escalation(make_request(), LEVELS, max_escalations=3)

        assert plan.action == EscalationAction.ESCALATED
        assert plan.level.roles == ("finance_manager",)

    def test_second_escalation_uses_level_two(self):
        plan = plan_escalation(make_request(escalation_count=1), LEVELS, max_escalations=3)
        assert plan.level.level == 2

    def test_missing_level_expires(self):
        plan = plan_escalation(make_request(escalation_count=2), LEVELS, max_escalations=3)

        assert plan.action == EscalationAction.EXPIRED
        assert "level 3" in plan.reason

    def test_limit_reached_expires(self):
        plan = plan_escalation(make_request(escalation_count=3), LEVELS, max_escalations=3)
        assert plan.action == EscalationAction.EXPIRED

    def test_policy_limit_overrides_global(self):
        plan = plan_escalation(
            make_request(escalation_count=1, max_escalations=1), LEVELS, max_escalations=3,
        )

        assert plan.action == EscalationAction.EXPIRED
        assert "limit 1" in plan.reason


class TestOverdue:
    def test_open_past_deadline(self):
        assert is_overdue(make_request(deadline=MONDAY), FRIDAY)

    def test_deadline_in_future(self):
        assert not is_overdue(make_request(deadline=FRIDAY), MONDAY)

    def test_closed_request_is_never_overdue(self):
        request = make_request(deadline=MONDAY, status=ApprovalStatus.APPROVED)
        assert not is_overdue(request, FRIDAY)

    def test_no_deadline(self):
        assert not is_overdue(make_request(), FRIDAY)


class TestMergeRoles:
    def test_only_new_roles_are_reported(self):
        merged, added = merge_roles(("finance_manager",), ("finance_manager", "director"))

        assert merged == ("finance_manager", "director")
        assert added == ("director",)
