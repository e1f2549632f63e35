"""
Tests for the receipt tolerance validator.

Worked examples use ordered 100, over tolerance 5%, warning 2%, block 10%:
103 is valid with a warning, 107 requires approval, 112 is blocked.
"""

from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

import pytest

from procurement_engines.tolerance import (
    build_receipt_items,
    calculate_variance,
    receiving_statistics,
    validate_receipt,
)
from procurement_kernel.domain.receiving import (
    ItemCondition,
    ReceiptEntry,
    ReceiptItem,
    ToleranceConfig,
    ToleranceRule,
    ToleranceType,
)
from procurement_kernel.exceptions import ReceiptValidationError
from tests.factories import make_line, make_order

OVER = ToleranceRule(
    tolerance_value=Decimal("5"),
    warning_threshold=Decimal("2"),
    block_threshold=Decimal("10"),
    require_approval=True,
    approval_roles=("warehouse_manager",),
)
CONFIG = ToleranceConfig(over=OVER)


def item(
    received_now: str,
    ordered: str = "100",
    previously: str = "0",
    condition: ItemCondition = ItemCondition.GOOD,
) -> ReceiptItem:
    return ReceiptItem(
        line_id=uuid4(),
        ordered_quantity=Decimal(ordered),
        previously_received=Decimal(previously),
        received_now=Decimal(received_now),
        condition=condition,
        product_name="Widget",
    )


class TestVariance:
    def test_percentage(self):
        assert calculate_variance(item("107"), ToleranceType.PERCENTAGE) == Decimal("7.00")

    def test_fixed(self):
        assert calculate_variance(item("96"), ToleranceType.FIXED) == Decimal("-4")

    def test_uses_cumulative_quantity(self):
        assert calculate_variance(item("60", previously="50"), ToleranceType.PERCENTAGE) == Decimal("10.00")


class TestOverReceipt:
    """The three worked examples plus the exact-match case."""

    def test_exact_quantity_is_valid(self):
        result = validate_receipt([item("100")], CONFIG)
        assert result.is_valid
        assert result.warnings == ()

    def test_within_tolerance_warns(self):
        result = validate_receipt([item("103")], CONFIG)

        assert result.is_valid
        assert result.can_proceed
        assert [w.code for w in result.warnings] == ["OVER_RECEIPT_WARNING"]

    def test_above_tolerance_requires_approval(self):
        result = validate_receipt([item("107")], CONFIG)

        assert not result.is_valid
        assert result.can_proceed
        assert result.requires_approval
        assert result.required_roles == ("warehouse_manager",)
        assert result.warnings[0].code == "OVER_RECEIPT_REQUIRES_APPROVAL"

    def test_above_block_threshold_is_blocked(self):
        result = validate_receipt([item("112")], CONFIG)

        assert not result.can_proceed
        assert not result.requires_approval
        assert result.errors[0].code == "OVER_RECEIPT_BLOCKED"
        assert result.errors[0].variance == Decimal("12.00")

    def test_auto_accept_without_approval(self):
        rule = ToleranceRule(
            tolerance_value=Decimal("5"),
            warning_threshold=Decimal("2"),
            require_approval=False,
            auto_accept=True,
        )
        result = validate_receipt([item("107")], ToleranceConfig(over=rule))

        assert result.is_valid
        assert result.warnings[0].code == "OVER_RECEIPT_ACCEPTED"

    def test_exceeding_without_approval_or_auto_accept_is_an_error(self):
        rule = ToleranceRule(tolerance_value=Decimal("5"), require_approval=False)
        result = validate_receipt([item("107")], ToleranceConfig(over=rule))

        assert not result.can_proceed
        assert result.errors[0].code == "OVER_RECEIPT_EXCEEDS_TOLERANCE"

    def test_fixed_mode(self):
        rule = ToleranceRule(
            tolerance_type=ToleranceType.FIXED,
            tolerance_value=Decimal("2"),
            warning_threshold=Decimal("1"),
            block_threshold=Decimal("5"),
        )
        config = ToleranceConfig(over=rule)

        assert validate_receipt([item("12", ordered="10")], config).is_valid
        assert validate_receipt([item("14", ordered="10")], config).requires_approval
        assert not validate_receipt([item("16", ordered="10")], config).can_proceed

    def test_disabled_rule_ignores_variance(self):
        result = validate_receipt([item("150")], ToleranceConfig(over=ToleranceRule(enabled=False)))
        assert result.is_valid


class TestUnderReceipt:
    """Under-receipt uses its own rule and is judged on final receipts only."""

    def test_partial_receipt_is_not_judged(self):
        result = validate_receipt([item("40")], CONFIG, is_final_receipt=False)
        assert result.is_valid
        assert result.warnings == ()

    def test_final_short_receipt_within_tolerance_warns(self):
        result = validate_receipt([item("93")], CONFIG, is_final_receipt=True)

        assert result.is_valid
        assert result.warnings[0].code == "UNDER_RECEIPT_WARNING"

    def test_final_short_receipt_beyond_tolerance_is_auto_accepted(self):
        result = validate_receipt([item("80")], CONFIG, is_final_receipt=True)

        assert result.is_valid
        assert result.warnings[0].code == "UNDER_RECEIPT_ACCEPTED"

    def test_partial_judging_when_configured(self):
        config = ToleranceConfig(over=OVER, evaluate_under_on_partial=True)
        result = validate_receipt([item("80")], config)
        assert result.warnings[0].code == "UNDER_RECEIPT_ACCEPTED"

    def test_directions_are_independent(self):
        under = ToleranceRule(
            tolerance_value=Decimal("1"),
            warning_threshold=Decimal("0"),
            block_threshold=Decimal("3"),
        )
        config = ToleranceConfig(over=OVER, under=under)

        assert validate_receipt([item("104")], config).is_valid
        assert not validate_receipt([item("96")], config, is_final_receipt=True).can_proceed


class TestStructuralChecks:
    def test_empty_receipt(self):
        result = validate_receipt([], CONFIG)
        assert result.errors[0].code == "EMPTY_RECEIPT"

    def test_duplicate_line(self):
        first = item("10")
        duplicate = ReceiptItem(
            line_id=first.line_id,
            ordered_quantity=first.ordered_quantity,
            previously_received=first.previously_received,
            received_now=Decimal("5"),
        )
        codes = [e.code for e in validate_receipt([first, duplicate], CONFIG).errors]
        assert "DUPLICATE_LINE" in codes

    def test_negative_quantity(self):
        codes = [e.code for e in validate_receipt([item("-1"), item("5")], CONFIG).errors]
        assert "NEGATIVE_QUANTITY" in codes

    def test_zero_total_quantity(self):
        codes = [e.code for e in validate_receipt([item("0")], CONFIG).errors]
        assert codes == ["ZERO_TOTAL_QUANTITY"]

    @pytest.mark.parametrize(
        "condition",
        [ItemCondition.DAMAGED, ItemCondition.EXPIRED, ItemCondition.REJECTED],
    )
    def test_quality_exceptions_skip_quantity_math(self, condition):
        result = validate_receipt([item("150", condition=condition)], CONFIG)

        assert result.can_proceed
        assert result.quality_exceptions[0].condition == condition
        assert result.quality_exceptions[0].quantity == Decimal("150")


class TestBuildReceiptItems:
    def test_joins_order_lines(self):
        line = replace(make_line(product_id="SKU-9"), received_quantity=Decimal("30"))
        order = make_order([line])
        items = build_receipt_items(order, [ReceiptEntry(order.lines[0].line_id, Decimal("20"))])

        assert items[0].previously_received == Decimal("30")
        assert items[0].total_received == Decimal("50")
        assert items[0].product_name == "SKU-9"

    def test_unknown_line_is_rejected(self):
        order = make_order()
        with pytest.raises(ReceiptValidationError):
            build_receipt_items(order, [ReceiptEntry(uuid4(), Decimal("1"))])


class TestReceivingStatistics:
    def test_completion_and_variance(self):
        order = make_order([make_line(quantity="100"), make_line(quantity="50")])
        lines = (
            replace(order.lines[0], received_quantity=Decimal("100")),
            replace(order.lines[1], received_quantity=Decimal("20")),
        )
        stats = receiving_statistics(order.with_changes(lines=lines))

        assert stats.total_items == 2
        assert stats.fully_received_items == 1
        assert stats.partially_received_items == 1
        assert stats.completion_percentage == Decimal("80.00")
        assert stats.total_variance == Decimal("-30")
