"""
Tests for OrderService: creation, amendment and non-approval transitions.

Covers:
- create_order stamps the creator and audits; unusable lines are refused
- amend: allowed fields and value types, supplier lock after draft, terminal orders
- transition refuses approval statuses and audits refusals
- Role-based transition permissions, with system actors exempt
- Cancelling closes the open approval request
- Receivable amendments write a refresh event to the outbox
"""

from dataclasses import replace
from datetime import date, datetime
from uuid import uuid4

import pytest

from procurement_kernel.domain.approval import ApprovalStatus
from procurement_kernel.domain.audit import AuditAction
from procurement_kernel.domain.integration import IntegrationEventKind, ProcessingStatus
from procurement_kernel.domain.order_status import OrderStatus
from procurement_kernel.domain.permissions import TransitionPermissions
from procurement_kernel.exceptions import (
    InvalidTransitionError,
    MalformedInputError,
    OrderNotFoundError,
    OrderValidationError,
    TransitionNotPermittedError,
)
from tests.factories import make_line, make_order


class TestCreate:
    def test_create_persists_draft(self, orchestrator, audit_sink, clock):
        order = orchestrator.create_order(make_order(), "bob")

        stored = orchestrator.get_order(order.order_id)
        assert stored.status == OrderStatus.DRAFT
        assert stored.created_by == "bob"
        assert stored.created_at == clock.now()
        assert stored.total == order.total
        assert audit_sink.actions(order.order_id) == [AuditAction.ORDER_CREATED]

    def test_non_draft_is_rejected(self, orchestrator):
        with pytest.raises(MalformedInputError):
            orchestrator.create_order(make_order().with_changes(status=OrderStatus.APPROVED), "bob")

    def test_unknown_order(self, orchestrator):
        with pytest.raises(OrderNotFoundError):
            orchestrator.get_order(uuid4())

    @pytest.mark.parametrize(
        ("line", "code"),
        [
            (make_line("-5", "10"), "NON_POSITIVE_QUANTITY"),
            (make_line("0", "10"), "NON_POSITIVE_QUANTITY"),
            (make_line("5", "-10"), "NEGATIVE_AMOUNT"),
        ],
    )
    def test_unusable_line_is_refused(self, orchestrator, audit_sink, line, code):
        order = make_order([make_line(), line])

        with pytest.raises(OrderValidationError) as exc_info:
            orchestrator.create_order(order, "bob")

        assert [p["code"] for p in exc_info.value.problems] == [code]
        assert exc_info.value.problems[0]["field"].startswith("lines[2]")
        assert audit_sink.actions(order.order_id) == [AuditAction.ORDER_CREATION_REFUSED]
        assert orchestrator.orders.query() == []

    def test_negative_tax_is_refused(self, orchestrator):
        with pytest.raises(OrderValidationError) as exc_info:
            orchestrator.create_order(make_order(tax_amount="-1"), "bob")
        assert exc_info.value.code == "ORDER_VALIDATION_FAILED"


class TestAmend:
    def test_amend_draft(self, orchestrator, audit_sink):
        order = orchestrator.create_order(make_order(), "bob")

        amended = orchestrator.amend_order(
            order.order_id, "bob", supplier_id="SUP-2", expected_date=date(2026, 4, 1),
        )

        assert amended.supplier_id == "SUP-2"
        assert amended.expected_date == date(2026, 4, 1)
        assert amended.version == order.version + 1
        assert audit_sink.of(AuditAction.ORDER_AMENDED)[0].payload["changes"]["supplier_id"] == "SUP-2"

    def test_unknown_field(self, orchestrator):
        order = orchestrator.create_order(make_order(), "bob")
        with pytest.raises(MalformedInputError):
            orchestrator.amend_order(order.order_id, "bob", total="1")

    def test_empty_amendment(self, orchestrator):
        order = orchestrator.create_order(make_order(), "bob")
        with pytest.raises(MalformedInputError):
            orchestrator.amend_order(order.order_id, "bob")

    def test_badly_typed_value_is_refused_before_writing(self, orchestrator, audit_sink):
        order = orchestrator.create_order(make_order(), "bob")

        with pytest.raises(MalformedInputError) as exc_info:
            orchestrator.amend_order(order.order_id, "bob", expected_date="next tuesday")

        assert exc_info.value.field == "expected_date"
        refused = audit_sink.of(AuditAction.ORDER_AMENDMENT_REFUSED)
        assert refused[0].payload["error_code"] == "MALFORMED_INPUT"
        assert refused[0].payload["fields"] == ["expected_date"]
        stored = orchestrator.get_order(order.order_id)
        assert stored.version == order.version
        assert stored.expected_date == order.expected_date

    @pytest.mark.parametrize(
        "changes",
        [
            {"payment_terms": "   "},
            {"department": 42},
            {"supplier_name": None},
            {"expected_date": datetime(2026, 4, 1, 9, 0)},
        ],
    )
    def test_malformed_values(self, orchestrator, changes):
        order = orchestrator.create_order(make_order(), "bob")
        with pytest.raises(MalformedInputError):
            orchestrator.amend_order(order.order_id, "bob", **changes)

    def test_optional_field_can_be_cleared(self, orchestrator):
        order = orchestrator.create_order(make_order(), "bob")
        amended = orchestrator.amend_order(order.order_id, "bob", department=None)
        assert amended.department is None

    def test_supplier_locked_after_draft(self, orchestrator, audit_sink, approved_order):
        order = approved_order()

        with pytest.raises(InvalidTransitionError):
            orchestrator.amend_order(order.order_id, "bob", supplier_id="SUP-2")

        assert audit_sink.of(AuditAction.ORDER_AMENDMENT_REFUSED)[0].payload["fields"] == ["supplier_id"]

    def test_terminal_order_cannot_be_amended(self, orchestrator):
        order = orchestrator.create_order(make_order(), "bob")
        orchestrator.cancel_order(order.order_id, "bob")

        with pytest.raises(InvalidTransitionError):
            orchestrator.amend_order(order.order_id, "bob", payment_terms="NET60")

    def test_receivable_amendment_writes_refresh_event(self, orchestrator, approved_order):
        order = approved_order()

        orchestrator.orders.amend(order.order_id, "bob", payment_terms="NET60")

        events = orchestrator.bridge.events_for_order(order.order_id)
        assert [e.kind for e in events] == [
            IntegrationEventKind.APPROVED,
            IntegrationEventKind.STATUS_CHANGED,
        ]
        assert events[-1].processing_status == ProcessingStatus.PENDING
        assert events[-1].context == {"amended": ["payment_terms"]}

    def test_same_instant_events_keep_write_order(self, orchestrator, approved_order):
        order = approved_order()

        for days in range(1, 6):
            orchestrator.orders.amend(order.order_id, "bob", expected_date=date(2026, 4, days))

        events = orchestrator.bridge.events_for_order(order.order_id)
        assert len({e.occurred_at for e in events}) == 1
        assert [e.kind for e in events] == [IntegrationEventKind.APPROVED] + [
            IntegrationEventKind.STATUS_CHANGED
        ] * 5

        [processed, *_] = orchestrator.process_due_events()
        [entry] = orchestrator.receiving_queue_entries()
        assert processed.order_id == order.order_id
        assert entry.expected_date == date(2026, 4, 5)
        assert entry.last_event_id == events[-1].event_id

    def test_draft_amendment_writes_no_event(self, orchestrator):
        order = orchestrator.create_order(make_order(), "bob")
        orchestrator.amend_order(order.order_id, "bob", payment_terms="NET60")
        assert orchestrator.bridge.events_for_order(order.order_id) == []


class TestTransition:
    @pytest.mark.parametrize("target", [OrderStatus.PENDING_APPROVAL, OrderStatus.APPROVED])
    def test_approval_statuses_are_refused(self, orchestrator, audit_sink, target):
        order = orchestrator.create_order(make_order(), "bob")

        result = orchestrator.transition_order(order.order_id, target, "bob")

        assert not result.success
        assert isinstance(result.error, InvalidTransitionError)
        assert orchestrator.get_order(order.order_id).status == OrderStatus.DRAFT
        assert audit_sink.actions(order.order_id)[-1] == AuditAction.ORDER_TRANSITION_REJECTED

    def test_illegal_transition_is_returned(self, orchestrator):
        order = orchestrator.create_order(make_order(), "bob")

        result = orchestrator.transition_order(order.order_id, OrderStatus.CLOSED, "bob")

        assert not result.success
        assert result.error.code == "INVALID_TRANSITION"

    def test_ship_receive_close(self, orchestrator, approved_order):
        order = approved_order()

        for target in (OrderStatus.SENT_TO_SUPPLIER, OrderStatus.FULLY_RECEIVED, OrderStatus.CLOSED):
            assert orchestrator.transition_order(order.order_id, target, "pat").success

        assert orchestrator.get_order(order.order_id).status == OrderStatus.CLOSED
        orchestrator.debouncer.flush_all()
        assert orchestrator.receiving_queue_entries() == []

    def test_cancel_closes_open_request(self, orchestrator, audit_sink):
        order = orchestrator.create_order(make_order(), "bob")
        submission = orchestrator.request_approval(order.order_id, "bob")

        result = orchestrator.cancel_order(order.order_id, "bob", "no longer needed")

        assert result.success
        assert result.order.status == OrderStatus.CANCELLED
        request = orchestrator.get_request(submission.request.request_id)
        assert request.status == ApprovalStatus.CANCELLED
        cancelled = audit_sink.of(AuditAction.APPROVAL_CANCELLED)
        assert cancelled[0].payload["reason"] == "no longer needed"


class TestTransitionPermissions:
    def test_clerk_may_not_ship(self, orchestrator, audit_sink, approved_order):
        order = approved_order()

        result = orchestrator.transition_order(order.order_id, OrderStatus.SENT_TO_SUPPLIER, "bob")

        assert not result.success
        assert isinstance(result.error, TransitionNotPermittedError)
        assert result.error.code == "INSUFFICIENT_PERMISSIONS"
        assert orchestrator.get_order(order.order_id).status == OrderStatus.APPROVED
        rejected = audit_sink.of(AuditAction.ORDER_TRANSITION_REJECTED)
        assert rejected[-1].payload["role"] == "clerk"
        assert rejected[-1].payload["error_code"] == "INSUFFICIENT_PERMISSIONS"

    def test_unknown_user_may_not_cancel(self, orchestrator):
        order = orchestrator.create_order(make_order(), "bob")

        result = orchestrator.cancel_order(order.order_id, "mallory", "not mine")

        assert not result.success
        assert result.error.role is None
        assert orchestrator.get_order(order.order_id).status == OrderStatus.DRAFT

    def test_warehouse_may_receive_but_not_close(self, orchestrator, approved_order):
        order = approved_order()
        assert orchestrator.transition_order(order.order_id, OrderStatus.SENT_TO_SUPPLIER, "pat").success

        assert orchestrator.transition_order(
            order.order_id, OrderStatus.FULLY_RECEIVED, "wendy",
        ).success
        closed = orchestrator.transition_order(order.order_id, OrderStatus.CLOSED, "wendy")
        assert closed.error.code == "INSUFFICIENT_PERMISSIONS"

    def test_system_actor_is_not_role_checked(self, orchestrator, approved_order):
        order = approved_order()

        result = orchestrator.transition_order(
            order.order_id, OrderStatus.SENT_TO_SUPPLIER, "system:operator",
        )

        assert result.success

    def test_illegal_move_reports_invalid_transition_first(self, orchestrator):
        order = orchestrator.create_order(make_order(), "ivan")

        result = orchestrator.transition_order(order.order_id, OrderStatus.CLOSED, "ivan")

        assert result.error.code == "INVALID_TRANSITION"

    def test_unenforced_table_allows_everyone(self, orchestrator, config_provider, approved_order):
        order = approved_order()
        config_provider.replace(replace(
            config_provider.current(), transition_permissions=TransitionPermissions(),
        ))

        result = orchestrator.transition_order(order.order_id, OrderStatus.SENT_TO_SUPPLIER, "bob")

        assert result.success
