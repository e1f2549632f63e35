"""Tests for receiving readiness and projection drift detection."""

from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal

from procurement_engines.readiness import check_readiness, entry_drifted, projection_entry
from procurement_kernel.domain.order_status import OrderStatus
from tests.factories import make_line, make_order

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class TestCheckReadiness:
    def test_complete_order_is_ready(self):
        report = check_readiness(make_order())
        assert report.is_ready
        assert report.problems == ()

    def test_missing_expected_date(self):
        report = check_readiness(make_order(expected_date=None))

        assert not report.is_ready
        assert report.problems == ("missing expected delivery date",)

    def test_missing_supplier(self):
        assert "missing supplier" in check_readiness(make_order(supplier_id=None)).problems

    def test_no_lines(self):
        assert "order has no lines" in check_readiness(make_order(lines=[])).problems

    def test_zero_cost_line(self):
        report = check_readiness(make_order([make_line(unit_cost="0")]))
        assert "line 1: unit cost must be positive" in report.problems

    def test_past_expected_date_is_only_a_warning(self):
        report = check_readiness(make_order(expected_date=date(2026, 1, 1)), today=date(2026, 3, 2))

        assert report.is_ready
        assert len(report.warnings) == 1


class TestEntryDrift:
    def test_fresh_entry_matches(self):
        order = make_order().with_changes(status=OrderStatus.APPROVED)
        assert not entry_drifted(projection_entry(order, NOW), order)

    def test_status_change_is_drift(self):
        order = make_order().with_changes(status=OrderStatus.APPROVED)
        entry = projection_entry(order, NOW)
        assert entry_drifted(entry, order.with_changes(status=OrderStatus.SENT_TO_SUPPLIER))

    def test_total_change_is_drift(self):
        order = make_order().with_changes(status=OrderStatus.APPROVED)
        entry = projection_entry(order, NOW)
        assert entry_drifted(replace(entry, total=Decimal("1")), order)
