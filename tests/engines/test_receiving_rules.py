"""
Tests for the receiving rules judged alongside tolerance.

Receipt date is 2024-01-03 unless a test says otherwise; the default
expiry windows are 30 days (warning) and 7 days (approval).
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from procurement_engines.tolerance import (
    build_receipt_items,
    is_partial_receipt,
    receiving_rule_issues,
    validate_receipt,
)
from procurement_kernel.domain.receiving import (
    DamagedItemHandling,
    DamageReport,
    ItemCondition,
    QualityStatus,
    ReceiptEntry,
    ReceiptItem,
    ReceivingContext,
    ReceivingRules,
)
from tests.factories import make_line, make_order

RECEIPT_DATE = date(2024, 1, 3)
RULES = ReceivingRules()


def item(received_now="10", **details) -> ReceiptItem:
    return ReceiptItem(
        line_id=uuid4(),
        ordered_quantity=Decimal("100"),
        previously_received=Decimal("0"),
        received_now=Decimal(received_now),
        product_name="Widget",
        **details,
    )


def context(**changes) -> ReceivingContext:
    return replace(
        ReceivingContext(receiver_role="warehouse_manager", receipt_date=RECEIPT_DATE),
        **changes,
    )


def with_section(section, **changes) -> ReceivingRules:
    return replace(RULES, **{section: replace(getattr(RULES, section), **changes)})


def codes(items, rules=RULES, ctx=None):
    issues, _ = receiving_rule_issues(items, rules, ctx or context())
    return [issue.code for issue in issues]


class TestPartialDetection:
    def test_open_quantity_is_partial(self):
        order = make_order()
        items = build_receipt_items(order, [ReceiptEntry(order.lines[0].line_id, Decimal("40"))])
        assert is_partial_receipt(order, items)

    def test_completing_receipt_is_not_partial(self):
        order = make_order()
        items = build_receipt_items(order, [ReceiptEntry(order.lines[0].line_id, Decimal("100"))])
        assert not is_partial_receipt(order, items)

    def test_final_receipt_is_never_partial(self):
        order = make_order()
        items = build_receipt_items(order, [ReceiptEntry(order.lines[0].line_id, Decimal("1"))])
        assert not is_partial_receipt(order, items, is_final_receipt=True)

    def test_damaged_quantity_leaves_line_open(self):
        order = make_order()
        items = build_receipt_items(order, [
            ReceiptEntry(order.lines[0].line_id, Decimal("100"), ItemCondition.DAMAGED),
        ])
        assert is_partial_receipt(order, items)

    def test_entry_details_are_carried(self):
        order = make_order([make_line("10", "5")])
        report = DamageReport("Water Damage", photographs=("crate.jpg",))
        [built] = build_receipt_items(order, [
            ReceiptEntry(
                order.lines[0].line_id, Decimal("2"), ItemCondition.DAMAGED,
                quality_status=QualityStatus.REJECTED,
                expiry_date=date(2024, 6, 1),
                damage_report=report,
            ),
        ])
        assert built.quality_status == QualityStatus.REJECTED
        assert built.expiry_date == date(2024, 6, 1)
        assert built.damage_report is report


class TestPartialRules:
    def test_within_limit(self):
        assert codes([item()], ctx=context(is_partial=True, previous_receipts=4)) == []

    def test_limit_reached(self):
        ctx = context(is_partial=True, previous_receipts=5)
        assert codes([item()], ctx=ctx) == ["MAX_PARTIAL_RECEIPTS_EXCEEDED"]

    def test_not_allowed(self):
        rules = with_section("partial", allow_partial_receipts=False)
        assert codes([item()], rules, context(is_partial=True)) == ["PARTIAL_RECEIVING_NOT_ALLOWED"]

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_blank_reason(self, reason):
        rules = with_section("partial", require_reason=True)
        ctx = context(is_partial=True, partial_reason=reason)
        assert codes([item()], rules, ctx) == ["PARTIAL_REASON_REQUIRED"]

    def test_completing_receipt_ignores_partial_rules(self):
        rules = with_section("partial", allow_partial_receipts=False, require_reason=True)
        assert codes([item()], rules, context(is_partial=False)) == []


class TestExpiry:
    @pytest.mark.parametrize(
        "expiry, expected",
        [
            (date(2024, 1, 2), ["EXPIRED_ITEMS_REJECTED"]),
            (date(2024, 1, 3), ["NEAR_EXPIRY_APPROVAL_REQUIRED"]),
            (date(2024, 1, 10), ["NEAR_EXPIRY_APPROVAL_REQUIRED"]),
            (date(2024, 1, 11), ["EXPIRY_WARNING"]),
            (date(2024, 2, 2), ["EXPIRY_WARNING"]),
            (date(2024, 2, 3), []),
        ],
    )
    def test_windows(self, expiry, expected):
        assert codes([item(expiry_date=expiry)]) == expected

    def test_near_expiry_without_approval_only_warns(self):
        rules = with_section("expiry", accept_near_expiry_with_approval=False)
        issues, needs_approval = receiving_rule_issues(
            [item(expiry_date=date(2024, 1, 5))], rules, context(),
        )
        assert [i.code for i in issues] == ["NEAR_EXPIRY_WARNING"]
        assert not needs_approval

    def test_expired_goods_may_be_approved_when_not_rejected(self):
        rules = with_section("expiry", reject_expired=False)
        assert codes([item(expiry_date=date(2023, 12, 1))], rules) == [
            "NEAR_EXPIRY_APPROVAL_REQUIRED",
        ]

    def test_skipped_without_receipt_date(self):
        assert codes([item(expiry_date=date(2020, 1, 1))], ctx=context(receipt_date=None)) == []

    def test_approval_roles_reach_the_result(self):
        rules = with_section("expiry", approval_roles=("procurement_manager",))
        result = validate_receipt(
            [item(expiry_date=date(2024, 1, 4))], rules=rules, context=context(),
        )
        assert result.can_proceed
        assert result.requires_approval
        assert result.required_roles == ("procurement_manager",)


class TestQuality:
    def test_unchecked_goods_pass_when_checks_are_optional(self):
        assert codes([item()]) == []

    def test_required_check_by_inspector(self):
        rules = with_section(
            "quality", require_quality_check=True, quality_check_roles=("warehouse_manager",),
        )
        assert codes([item()], rules) == ["QUALITY_CHECK_REQUIRED"]
        assert codes([item()], rules, context(receiver_role="clerk")) == [
            "QUALITY_CHECK_UNAUTHORIZED",
        ]

    def test_result_from_unauthorized_role(self):
        rules = with_section("quality", quality_check_roles=("warehouse_manager",))
        ctx = context(receiver_role="clerk")
        assert codes([item(quality_status=QualityStatus.APPROVED)], rules, ctx) == [
            "QUALITY_CHECK_UNAUTHORIZED",
        ]

    @pytest.mark.parametrize(
        "handling, expected, blocking",
        [
            (DamagedItemHandling.REJECT, "QUALITY_CHECK_FAILED", True),
            (DamagedItemHandling.PARTIAL_ACCEPT, "QUALITY_CHECK_CONDITIONAL", False),
            (DamagedItemHandling.ACCEPT, "QUALITY_CHECK_CONDITIONAL", False),
        ],
    )
    def test_failed_check(self, handling, expected, blocking):
        rules = with_section(
            "quality",
            quality_check_roles=("warehouse_manager",),
            damaged_item_handling=handling,
        )
        [issue], _ = receiving_rule_issues(
            [item(quality_status=QualityStatus.REJECTED)], rules, context(),
        )
        assert issue.code == expected
        assert issue.is_blocking is blocking


class TestDamage:
    def damaged(self, report=None):
        return item(condition=ItemCondition.DAMAGED, damage_report=report)

    def test_report_required(self):
        assert codes([self.damaged()]) == ["DAMAGE_REPORT_REQUIRED"]

    def test_report_optional(self):
        rules = with_section("damage", require_damage_report=False)
        assert codes([self.damaged()], rules) == []

    def test_photographs_required(self):
        rules = with_section("damage", photograph_required=True)
        assert codes([self.damaged(DamageReport("Contamination"))], rules) == [
            "DAMAGE_PHOTOS_REQUIRED",
        ]
        with_photo = DamageReport("Contamination", photographs=("pallet.jpg",))
        assert codes([self.damaged(with_photo)], rules) == []

    def test_unknown_category_warns(self):
        [issue], _ = receiving_rule_issues(
            [self.damaged(DamageReport("Stolen"))], RULES, context(),
        )
        assert issue.code == "INVALID_DAMAGE_CATEGORY"
        assert not issue.is_blocking

    def test_good_items_need_no_report(self):
        assert codes([item(condition=ItemCondition.GOOD)]) == []

    def test_damage_blocks_the_receipt(self):
        result = validate_receipt([self.damaged()], rules=RULES, context=context())
        assert not result.can_proceed
        assert [e.code for e in result.errors] == ["DAMAGE_REPORT_REQUIRED"]
        assert result.quality_exceptions[0].condition == ItemCondition.DAMAGED

    def test_rules_are_skipped_without_configuration(self):
        result = validate_receipt([self.damaged()])
        assert result.can_proceed
