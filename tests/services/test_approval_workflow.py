"""
Tests for the approval workflow through the orchestrator.

Covers:
- Submission: auto-approve shortcut, blocking conditions, policy
  selection, duplicate and unresolvable submissions
- Decisions: quorum, reject veto, unauthorized / duplicate / closed
  refusals and their failure audits
- Bulk decisions: partitioned results and input validation
- Escalation and forced expiry
- Cancellation closing the open request
- Queries: pending_for_approver, statistics
"""

from dataclasses import replace
from decimal import Decimal

import pytest

from procurement_config.provider import ConfigProvider
from procurement_kernel.domain.approval import (
    ApprovalDecision,
    ApprovalStatus,
    DecisionInput,
    EscalationAction,
)
from procurement_kernel.domain.audit import AuditAction
from procurement_kernel.domain.order_status import OrderStatus
from procurement_kernel.exceptions import (
    DuplicateApprovalRequestError,
    DuplicateDecisionError,
    MalformedInputError,
    PolicyNotFoundError,
    RequestClosedError,
    UnauthorizedApproverError,
)
from procurement_services.approval_workflow import AUTO_APPROVER_ID, ApprovalWorkflow
from tests.factories import order_totalling


def approve(approver_id: str, reason: str = "") -> DecisionInput:
    return DecisionInput(approver_id=approver_id, decision=ApprovalDecision.APPROVE, reason=reason)


def reject(approver_id: str, reason: str = "") -> DecisionInput:
    return DecisionInput(approver_id=approver_id, decision=ApprovalDecision.REJECT, reason=reason)


@pytest.fixture
def submit(orchestrator):
    """Create an order of ``amount`` and submit it for approval."""

    def _submit(amount, **order_kwargs):
        order = orchestrator.create_order(order_totalling(amount, **order_kwargs), "bob")
        return orchestrator.request_approval(order.order_id, "bob")

    return _submit


# =============================================================================
# Submission
# =============================================================================


class TestSubmission:
    """Policy resolution and the auto-approve shortcut."""

    def test_small_order_is_auto_approved(self, orchestrator, audit_sink, submit):
        submission = submit("500")
        order_id = submission.order.order_id

        assert submission.auto_approved
        assert submission.policy_name == "small_purchases"
        assert submission.order.status == OrderStatus.APPROVED
        assert submission.order.approved_by == AUTO_APPROVER_ID
        assert [e.to_status for e in submission.events] == [
            OrderStatus.PENDING_APPROVAL,
            OrderStatus.APPROVED,
        ]
        assert orchestrator.requests_for_order(order_id) == []
        assert AuditAction.APPROVAL_AUTO_APPROVED in audit_sink.actions(order_id)

    def test_auto_approved_order_reaches_receiving_queue(self, orchestrator, submit):
        submission = submit("500")
        queue = orchestrator.receiving_queue()
        assert [o.order_id for o in queue] == [submission.order.order_id]

    def test_blocking_condition_forces_manual_approval(self, orchestrator, submit):
        submission = submit("500", supplier_category="new_supplier")

        assert not submission.auto_approved
        assert submission.order.status == OrderStatus.PENDING_APPROVAL
        assert submission.request.policy.name == "small_purchases"
        assert submission.request.eligible_roles == ("department_manager",)

    def test_request_snapshot(self, submit, clock):
        submission = submit("5000")
        request = submission.request

        assert request.status == ApprovalStatus.PENDING
        assert request.policy.name == "standard_purchases"
        assert request.amount == Decimal("5000")
        assert request.created_at == clock.now()
        # 48 hours from Monday 09:00
        assert request.deadline.isoformat() == "2026-03-04T09:00:00+00:00"

    def test_category_specific_policy(self, submit):
        submission = submit("5000", category="it_hardware")
        assert submission.request.policy.name == "it_equipment"
        assert submission.request.eligible_roles == ("it_manager",)

    def test_requested_notification_goes_to_eligible_roles(self, submit, dispatcher):
        submit("5000")
        template, recipients, context = dispatcher.sent[0]

        assert template == "approval_requested"
        assert recipients == ("role:department_manager", "role:finance_manager")
        assert context["policy"] == "standard_purchases"

    def test_pending_events_do_not_touch_receiving_queue(self, orchestrator, submit):
        submit("5000")
        assert orchestrator.receiving_queue_entries() == []

    def test_second_submission_is_refused(self, orchestrator, audit_sink, submit):
        submission = submit("5000")
        order_id = submission.order.order_id

        with pytest.raises(DuplicateApprovalRequestError):
            orchestrator.request_approval(order_id, "bob")

        refused = audit_sink.of(AuditAction.APPROVAL_REQUEST_REFUSED)
        assert refused[0].payload["error_code"] == "DUPLICATE_APPROVAL_REQUEST"
        assert len(orchestrator.requests_for_order(order_id)) == 1

    def test_missing_initiator(self, orchestrator):
        order = orchestrator.create_order(order_totalling("5000"), "bob")
        with pytest.raises(MalformedInputError):
            orchestrator.request_approval(order.order_id, "")

    def test_no_covering_policy(
        self, orchestrator, session_factory, config_snapshot, roles, audit_sink, clock,
    ):
        only_large = replace(
            config_snapshot,
            policies=(config_snapshot.policy("large_purchases"),),
        )
        workflow = ApprovalWorkflow(
            session_factory, ConfigProvider(only_large), roles, audit_sink, clock,
        )
        order = orchestrator.create_order(order_totalling("500"), "bob")

        with pytest.raises(PolicyNotFoundError):
            workflow.create_request(order.order_id, "bob")

        assert orchestrator.get_order(order.order_id).status == OrderStatus.DRAFT
        assert audit_sink.actions(order.order_id)[-1] == AuditAction.APPROVAL_REQUEST_REFUSED


# =============================================================================
# Decisions
# =============================================================================


class TestDecisions:
    """Quorum, veto and refusals."""

    def test_single_approver_quorum(self, orchestrator, audit_sink, submit):
        request = submit("5000").request
        outcome = orchestrator.decide(request.request_id, approve("frank", "budgeted"))

        assert outcome.finalized
        assert outcome.request.status == ApprovalStatus.APPROVED
        assert outcome.order.status == OrderStatus.APPROVED
        assert outcome.order.approved_by == "frank"
        assert AuditAction.APPROVAL_GRANTED in audit_sink.actions(request.request_id)

    def test_two_approver_quorum(self, orchestrator, submit):
        request = submit("20000").request

        first = orchestrator.decide(request.request_id, approve("frank"))
        assert not first.finalized
        assert first.quorum.current_approvers == 1
        assert orchestrator.get_order(request.order_id).status == OrderStatus.PENDING_APPROVAL

        second = orchestrator.decide(request.request_id, approve("dana"))
        assert second.request.status == ApprovalStatus.APPROVED
        assert second.request.approvers == frozenset({"frank", "dana"})
        assert second.order.status == OrderStatus.APPROVED

    def test_reject_vetoes_and_returns_order_to_draft(self, orchestrator, audit_sink, submit):
        request = submit("20000").request
        orchestrator.decide(request.request_id, approve("frank"))
        outcome = orchestrator.decide(request.request_id, reject("dana", "over budget"))

        assert outcome.request.status == ApprovalStatus.REJECTED
        assert outcome.order.status == OrderStatus.DRAFT
        assert outcome.order.approved_by is None
        rejected = audit_sink.of(AuditAction.APPROVAL_REJECTED)
        assert rejected[0].payload["reason"] == "over budget"

    def test_rejected_order_can_be_resubmitted(self, orchestrator, submit):
        request = submit("5000").request
        orchestrator.decide(request.request_id, reject("frank"))

        resubmitted = orchestrator.request_approval(request.order_id, "bob")

        assert resubmitted.request.request_id != request.request_id
        assert len(orchestrator.requests_for_order(request.order_id)) == 2

    def test_ineligible_role_is_refused_and_audited(self, orchestrator, audit_sink, submit):
        request = submit("5000").request

        with pytest.raises(UnauthorizedApproverError) as exc_info:
            orchestrator.decide(request.request_id, approve("bob"))

        assert exc_info.value.role == "clerk"
        refused = audit_sink.of(AuditAction.APPROVAL_DECISION_REFUSED)
        assert refused[0].payload["error_code"] == "UNAUTHORIZED_APPROVER"
        assert orchestrator.get_request(request.request_id).decisions == ()

    def test_unknown_user_is_refused(self, orchestrator, submit):
        request = submit("5000").request
        with pytest.raises(UnauthorizedApproverError):
            orchestrator.decide(request.request_id, approve("mallory"))

    def test_same_approver_twice(self, orchestrator, submit):
        request = submit("20000").request
        orchestrator.decide(request.request_id, approve("frank"))

        with pytest.raises(DuplicateDecisionError):
            orchestrator.decide(request.request_id, approve("frank"))

        assert len(orchestrator.get_request(request.request_id).decisions) == 1

    def test_decision_on_closed_request(self, orchestrator, audit_sink, submit):
        request = submit("5000").request
        orchestrator.decide(request.request_id, approve("frank"))

        with pytest.raises(RequestClosedError):
            orchestrator.decide(request.request_id, approve("alice"))

        refused = audit_sink.of(AuditAction.APPROVAL_DECISION_REFUSED)
        assert refused[-1].payload["error_code"] == "REQUEST_CLOSED"

    def test_decided_notification_goes_to_initiator(self, orchestrator, dispatcher, submit):
        request = submit("5000").request
        orchestrator.decide(request.request_id, approve("frank"))

        assert dispatcher.templates() == ["approval_requested", "approval_decided"]
        assert dispatcher.sent[-1][1] == ("bob",)

    def test_approval_adds_order_to_receiving_queue(self, orchestrator, submit):
        request = submit("5000").request
        orchestrator.decide(request.request_id, approve("frank"))

        entries = orchestrator.receiving_queue_entries()
        assert [e.order_id for e in entries] == [request.order_id]
        assert entries[0].status == OrderStatus.APPROVED


# =============================================================================
# Bulk decisions
# =============================================================================


class TestBulkDecisions:
    def test_partitions_successes_and_failures(self, orchestrator, submit):
        r1 = submit("5000").request
        r2 = submit("6000").request
        r3 = submit("7000").request
        orchestrator.cancel_order(r2.order_id, "bob", "duplicate order")

        result = orchestrator.bulk_approve(
            [r1.request_id, r2.request_id, r3.request_id], "frank", "month end",
        )

        assert result.succeeded == (r1.request_id, r3.request_id)
        assert result.failed_ids == (r2.request_id,)
        assert result.failed[0].error_code == "REQUEST_CLOSED"
        assert orchestrator.get_order(r1.order_id).status == OrderStatus.APPROVED
        assert orchestrator.get_order(r3.order_id).status == OrderStatus.APPROVED

    def test_unauthorized_items_fail_individually(self, orchestrator, submit):
        standard = submit("5000").request
        it_request = submit("5000", category="software").request

        result = orchestrator.bulk_approve([standard.request_id, it_request.request_id], "frank")

        assert result.succeeded == (standard.request_id,)
        assert result.failed[0].error_code == "UNAUTHORIZED_APPROVER"

    def test_bulk_events_feed_receiving_queue(self, orchestrator, submit):
        r1 = submit("5000").request
        r2 = submit("5000").request

        orchestrator.bulk_approve([r1.request_id, r2.request_id], "frank")

        queued = {e.order_id for e in orchestrator.receiving_queue_entries()}
        assert queued == {r1.order_id, r2.order_id}

    def test_empty_ids(self, orchestrator):
        with pytest.raises(MalformedInputError):
            orchestrator.bulk_approve([], "frank")

    def test_duplicate_ids(self, orchestrator, submit):
        request = submit("5000").request
        with pytest.raises(MalformedInputError):
            orchestrator.bulk_approve([request.request_id, request.request_id], "frank")


# =============================================================================
# Escalation
# =============================================================================


class TestEscalation:
    def test_nothing_overdue(self, orchestrator, submit):
        submit("5000")
        assert orchestrator.process_escalations() == []

    def test_overdue_request_gains_next_level_roles(
        self, orchestrator, audit_sink, dispatcher, clock, submit,
    ):
        request = submit("5000", category="it_hardware").request
        with pytest.raises(UnauthorizedApproverError):
            orchestrator.decide(request.request_id, approve("frank"))

        clock.advance_hours(49)
        results = orchestrator.process_escalations()

        assert len(results) == 1
        assert results[0].action == EscalationAction.ESCALATED
        assert results[0].added_roles == ("finance_manager",)
        assert results[0].escalation_count == 1

        escalated = orchestrator.get_request(request.request_id)
        assert escalated.status == ApprovalStatus.PENDING
        assert escalated.eligible_roles == ("it_manager", "finance_manager")
        assert escalated.deadline > clock.now()
        assert AuditAction.APPROVAL_ESCALATED in audit_sink.actions(request.request_id)
        assert "role:finance_manager" in dispatcher.sent[-1][1]

        outcome = orchestrator.decide(request.request_id, approve("frank"))
        assert outcome.order.status == OrderStatus.APPROVED

    def test_request_expires_after_escalation_limit(self, orchestrator, audit_sink, clock, submit):
        request = submit("5000", category="it_hardware").request

        actions = []
        for _ in range(4):
            clock.advance_hours(24 * 7)
            actions.extend(r.action for r in orchestrator.process_escalations())

        assert actions == [EscalationAction.ESCALATED] * 3 + [EscalationAction.EXPIRED]
        expired = orchestrator.get_request(request.request_id)
        assert expired.status == ApprovalStatus.EXPIRED
        assert expired.escalation_count == 3
        assert orchestrator.get_order(request.order_id).status == OrderStatus.DRAFT
        assert AuditAction.APPROVAL_EXPIRED in audit_sink.actions(request.request_id)

    def test_expired_request_is_not_rescanned(self, orchestrator, clock, submit):
        submit("5000", category="it_hardware")
        for _ in range(4):
            clock.advance_hours(24 * 7)
            orchestrator.process_escalations()

        clock.advance_hours(24 * 7)
        assert orchestrator.process_escalations() == []


# =============================================================================
# Cancellation and queries
# =============================================================================


class TestCancellationAndQueries:
    def test_cancelling_order_cancels_open_request(self, orchestrator, audit_sink, submit):
        request = submit("5000").request

        result = orchestrator.cancel_order(request.order_id, "bob", "supplier withdrew")

        assert result.success
        assert result.order.status == OrderStatus.CANCELLED
        cancelled = orchestrator.get_request(request.request_id)
        assert cancelled.status == ApprovalStatus.CANCELLED
        assert cancelled.resolved_at is not None
        assert AuditAction.APPROVAL_CANCELLED in audit_sink.actions(request.request_id)

    def test_pending_for_approver(self, orchestrator, submit):
        standard = submit("5000").request
        submit("5000", category="software")

        pending = orchestrator.pending_for_approver("frank")
        assert [r.request_id for r in pending] == [standard.request_id]

        orchestrator.decide(standard.request_id, approve("frank"))
        assert orchestrator.pending_for_approver("frank") == []

    def test_pending_for_unknown_user(self, orchestrator, submit):
        submit("5000")
        assert orchestrator.pending_for_approver("mallory") == []

    def test_statistics(self, orchestrator, clock, submit):
        decided = submit("5000").request
        submit("6000")
        clock.advance_hours(2)
        orchestrator.decide(decided.request_id, approve("frank"))

        stats = orchestrator.approval_statistics()

        assert stats.by_status["approved"] == 1
        assert stats.by_status["pending"] == 1
        assert stats.total == 2
        assert stats.overdue == 0
        assert stats.average_resolution_hours == Decimal("2.00")
