"""
procurement_engines.tolerance -- Pure receipt tolerance validation.

Responsibility:
    Judge received quantities against ordered quantities and produce a
    structured ``ValidationResult``: blocking errors, approval
    requirements, warnings and quality exceptions.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Over-receipt and under-receipt are judged by independent rules.
    - Variance uses the cumulative received quantity
      (previously received + received now).
    - Damaged, expired and rejected items never count toward quantity
      variance; they are reported as quality exceptions.
    - Under-receipt on a partial receipt is expected and not judged
      unless the configuration asks for it.
    - Partial, quality, expiry and damage rules only add findings; they
      never change which quantities count.

Worked examples (ordered 100, over tolerance 5%, block 10%):
    received 103 -> valid (warning above the 2% warning threshold)
    received 107 -> requires approval, can proceed
    received 112 -> blocked, cannot proceed
"""

from __future__ import annotations

from collections import Counter
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from procurement_kernel.domain.purchase_order import ZERO, PurchaseOrder
from procurement_kernel.domain.receiving import (
    QUALITY_EXCEPTION_CONDITIONS,
    DamagedItemHandling,
    IssueSeverity,
    ItemCondition,
    QualityException,
    QualityStatus,
    ReceiptEntry,
    ReceiptItem,
    ReceivingContext,
    ReceivingRules,
    ReceivingStatistics,
    ToleranceConfig,
    ToleranceRule,
    ToleranceType,
    ValidationIssue,
    ValidationResult,
)
from procurement_kernel.exceptions import ReceiptValidationError

HUNDRED = Decimal("100")
_PERCENT_QUANTUM = Decimal("0.01")


def build_receipt_items(
    order: PurchaseOrder,
    entries: Sequence[ReceiptEntry],
) -> list[ReceiptItem]:
    """Join receipt entries with the order's lines.

    Raises:
        ReceiptValidationError: An entry names a line the order does not have.
    """
    unknown = [str(e.line_id) for e in entries if order.line(e.line_id) is None]
    if unknown:
        raise ReceiptValidationError(
            str(order.order_id),
            [f"unknown line {line_id}" for line_id in unknown],
        )

    items = []
    for entry in entries:
        line = order.line(entry.line_id)
        items.append(ReceiptItem(
            line_id=entry.line_id,
            ordered_quantity=line.ordered_quantity,
            previously_received=line.received_quantity,
            received_now=entry.quantity,
            condition=entry.condition,
            product_name=line.description or line.product_id,
            quality_status=entry.quality_status,
            expiry_date=entry.expiry_date,
            damage_report=entry.damage_report,
        ))
    return items


def calculate_variance(item: ReceiptItem, tolerance_type: ToleranceType) -> Decimal:
    """Signed variance of the cumulative received quantity.

    Percentage mode: ``(total_received - ordered) / ordered * 100``.
    Fixed mode: ``total_received - ordered``.
    """
    difference = item.total_received - item.ordered_quantity
    if tolerance_type == ToleranceType.FIXED:
        return difference
    if item.ordered_quantity == ZERO:
        return ZERO
    return (difference / item.ordered_quantity * HUNDRED).quantize(
        _PERCENT_QUANTUM, rounding=ROUND_HALF_UP,
    )


def _request_level_issues(items: Sequence[ReceiptItem]) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    if not items:
        issues.append(ValidationIssue(
            code="EMPTY_RECEIPT",
            message="receipt contains no items",
            severity=IssueSeverity.ERROR,
        ))
        return issues

    counts = Counter(item.line_id for item in items)
    for line_id, count in counts.items():
        if count > 1:
            issues.append(ValidationIssue(
                code="DUPLICATE_LINE",
                message=f"line appears {count} times in one receipt",
                severity=IssueSeverity.ERROR,
                line_id=line_id,
            ))

    for item in items:
        if item.received_now < ZERO:
            issues.append(ValidationIssue(
                code="NEGATIVE_QUANTITY",
                message=f"{item.product_name or item.line_id}: received quantity is negative",
                severity=IssueSeverity.ERROR,
                line_id=item.line_id,
            ))
        if item.ordered_quantity <= ZERO:
            issues.append(ValidationIssue(
                code="ZERO_ORDERED_QUANTITY",
                message=f"{item.product_name or item.line_id}: ordered quantity must be positive",
                severity=IssueSeverity.ERROR,
                line_id=item.line_id,
            ))

    if sum((item.received_now for item in items), ZERO) == ZERO:
        issues.append(ValidationIssue(
            code="ZERO_TOTAL_QUANTITY",
            message="receipt total quantity is zero",
            severity=IssueSeverity.ERROR,
        ))

    return issues


def _judge(
    item: ReceiptItem,
    rule: ToleranceRule,
    direction: str,
) -> tuple[ValidationIssue | None, bool]:
    """Return the issue (if any) and whether approval is required."""
    variance = calculate_variance(item, rule.tolerance_type)
    magnitude = abs(variance)
    unit = "%" if rule.tolerance_type == ToleranceType.PERCENTAGE else " units"
    label = item.product_name or str(item.line_id)
    prefix = direction.upper()

    if rule.block_threshold is not None and magnitude > rule.block_threshold:
        return ValidationIssue(
            code=f"{prefix}_RECEIPT_BLOCKED",
            message=(
                f"{label}: {direction}-receipt of {magnitude}{unit} exceeds "
                f"block threshold {rule.block_threshold}{unit}"
            ),
            severity=IssueSeverity.ERROR,
            line_id=item.line_id,
            variance=variance,
        ), False

    if magnitude > rule.tolerance_value:
        message = (
            f"{label}: {direction}-receipt of {magnitude}{unit} exceeds "
            f"tolerance {rule.tolerance_value}{unit}"
        )
        if rule.require_approval:
            return ValidationIssue(
                code=f"{prefix}_RECEIPT_REQUIRES_APPROVAL",
                message=message,
                severity=IssueSeverity.WARNING,
                line_id=item.line_id,
                variance=variance,
            ), True
        if rule.auto_accept:
            return ValidationIssue(
                code=f"{prefix}_RECEIPT_ACCEPTED",
                message=message,
                severity=IssueSeverity.WARNING,
                line_id=item.line_id,
                variance=variance,
            ), False
        return ValidationIssue(
            code=f"{prefix}_RECEIPT_EXCEEDS_TOLERANCE",
            message=message,
            severity=IssueSeverity.ERROR,
            line_id=item.line_id,
            variance=variance,
        ), False

    if magnitude > rule.warning_threshold:
        return ValidationIssue(
            code=f"{prefix}_RECEIPT_WARNING",
            message=(
                f"{label}: {direction}-receipt of {magnitude}{unit} is above "
                f"warning threshold {rule.warning_threshold}{unit}"
            ),
            severity=IssueSeverity.WARNING,
            line_id=item.line_id,
            variance=variance,
        ), False

    return None, False


def is_partial_receipt(
    order: PurchaseOrder,
    items: Sequence[ReceiptItem],
    is_final_receipt: bool = False,
) -> bool:
    """Whether the order keeps open quantity after ``items`` are accepted."""
    if is_final_receipt:
        return False
    accepted = Counter()
    for item in items:
        if item.condition not in QUALITY_EXCEPTION_CONDITIONS:
            accepted[item.line_id] += item.received_now
    return any(
        line.received_quantity + accepted.get(line.line_id, ZERO) < line.ordered_quantity
        for line in order.lines
    )


def _issue(
    code: str,
    message: str,
    severity: IssueSeverity,
    item: ReceiptItem | None = None,
) -> ValidationIssue:
    return ValidationIssue(
        code=code,
        message=message,
        severity=severity,
        line_id=item.line_id if item is not None else None,
    )


def _quality_issues(
    item: ReceiptItem,
    rules: ReceivingRules,
    context: ReceivingContext,
) -> list[ValidationIssue]:
    config = rules.quality
    if not config.enabled:
        return []
    label = item.product_name or str(item.line_id)
    authorized = context.receiver_role in config.quality_check_roles
    status = item.quality_status

    if status is None or status == QualityStatus.PENDING:
        if not config.require_quality_check:
            return []
        if authorized:
            return [_issue(
                "QUALITY_CHECK_REQUIRED",
                f"quality check required for {label}",
                IssueSeverity.WARNING, item,
            )]
        return [_issue(
            "QUALITY_CHECK_UNAUTHORIZED",
            f"receiver is not authorized to perform the quality check for {label}",
            IssueSeverity.ERROR, item,
        )]

    # An inspection result only counts when an authorized role recorded it
    if not authorized:
        return [_issue(
            "QUALITY_CHECK_UNAUTHORIZED",
            f"receiver is not authorized to record a quality result for {label}",
            IssueSeverity.ERROR, item,
        )]
    if status == QualityStatus.REJECTED:
        if config.damaged_item_handling == DamagedItemHandling.REJECT:
            return [_issue(
                "QUALITY_CHECK_FAILED",
                f"quality check failed for {label}",
                IssueSeverity.ERROR, item,
            )]
        return [_issue(
            "QUALITY_CHECK_CONDITIONAL",
            f"quality check failed but {label} is accepted conditionally",
            IssueSeverity.WARNING, item,
        )]
    return []


def _expiry_issues(
    item: ReceiptItem,
    rules: ReceivingRules,
    context: ReceivingContext,
) -> tuple[list[ValidationIssue], bool]:
    """Issues for a dated item, and whether accepting it needs approval."""
    config = rules.expiry
    if (
        not config.enabled
        or not config.check_on_receipt
        or item.expiry_date is None
        or context.receipt_date is None
    ):
        return [], False
    label = item.product_name or str(item.line_id)
    days = (item.expiry_date - context.receipt_date).days

    if days < 0 and config.reject_expired:
        return [_issue(
            "EXPIRED_ITEMS_REJECTED",
            f"{label} expired {-days} days ago",
            IssueSeverity.ERROR, item,
        )], False
    if days <= config.near_expiry_threshold_days:
        if config.accept_near_expiry_with_approval:
            return [_issue(
                "NEAR_EXPIRY_APPROVAL_REQUIRED",
                f"{label} expires in {days} days; accepting it requires approval",
                IssueSeverity.WARNING, item,
            )], True
        return [_issue(
            "NEAR_EXPIRY_WARNING",
            f"{label} expires in {days} days",
            IssueSeverity.WARNING, item,
        )], False
    if days <= config.warn_before_days:
        return [_issue(
            "EXPIRY_WARNING",
            f"{label} expires in {days} days",
            IssueSeverity.WARNING, item,
        )], False
    return [], False


def _damage_issues(item: ReceiptItem, rules: ReceivingRules) -> list[ValidationIssue]:
    config = rules.damage
    if not config.enabled or item.condition != ItemCondition.DAMAGED:
        return []
    label = item.product_name or str(item.line_id)
    report = item.damage_report
    if report is None:
        if config.require_damage_report:
            return [_issue(
                "DAMAGE_REPORT_REQUIRED",
                f"damage report required for damaged {label}",
                IssueSeverity.ERROR, item,
            )]
        return []

    issues = []
    if config.photograph_required and not report.photographs:
        issues.append(_issue(
            "DAMAGE_PHOTOS_REQUIRED",
            f"damage photographs required for damaged {label}",
            IssueSeverity.ERROR, item,
        ))
    if report.category not in config.damage_categories:
        issues.append(_issue(
            "INVALID_DAMAGE_CATEGORY",
            f"unknown damage category {report.category!r}; use one of "
            f"{', '.join(config.damage_categories)}",
            IssueSeverity.WARNING, item,
        ))
    return issues


def _partial_issues(rules: ReceivingRules, context: ReceivingContext) -> list[ValidationIssue]:
    config = rules.partial
    if not context.is_partial:
        return []
    if not config.enabled or not config.allow_partial_receipts:
        return [_issue(
            "PARTIAL_RECEIVING_NOT_ALLOWED",
            "partial receiving is not allowed",
            IssueSeverity.ERROR,
        )]
    issues = []
    if context.previous_receipts >= config.max_partial_receipts:
        issues.append(_issue(
            "MAX_PARTIAL_RECEIPTS_EXCEEDED",
            f"maximum of {config.max_partial_receipts} partial receipts reached",
            IssueSeverity.ERROR,
        ))
    if config.require_reason and not (context.partial_reason or "").strip():
        issues.append(_issue(
            "PARTIAL_REASON_REQUIRED",
            "a reason is required for a partial receipt",
            IssueSeverity.ERROR,
        ))
    return issues


def receiving_rule_issues(
    items: Sequence[ReceiptItem],
    rules: ReceivingRules,
    context: ReceivingContext,
) -> tuple[list[ValidationIssue], bool]:
    """Partial, quality, expiry and damage findings for a receipt.

    Returns the issues and whether any of them asks for approval (by the
    expiry approval roles).
    """
    issues = _partial_issues(rules, context)
    needs_approval = False
    for item in items:
        issues.extend(_quality_issues(item, rules, context))
        expiry, approval = _expiry_issues(item, rules, context)
        issues.extend(expiry)
        needs_approval = needs_approval or approval
        issues.extend(_damage_issues(item, rules))
    return issues, needs_approval


def validate_receipt(
    items: Sequence[ReceiptItem],
    config: ToleranceConfig | None = None,
    is_final_receipt: bool = False,
    rules: ReceivingRules | None = None,
    context: ReceivingContext | None = None,
) -> ValidationResult:
    """Validate a receipt against tolerance rules.

    Args:
        items: Receipt items joined with ordered and prior quantities.
        config: Over/under tolerance rules (defaults apply when ``None``).
        is_final_receipt: Whether this receipt closes out the order; only
            then is under-receipt judged (unless configured otherwise).
        rules: Partial, quality, expiry and damage rules; skipped when
            ``None``.
        context: Receiver role, receipt date and partial-receipt facts
            the rules are judged against.

    Returns:
        ValidationResult.  ``can_proceed`` is False whenever an error is
        present; ``requires_approval`` lists the roles of every rule that
        asked for approval.
    """
    config = config or ToleranceConfig()
    items = tuple(items)

    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []
    quality: list[QualityException] = []
    roles: list[str] = []
    requires_approval = False

    errors.extend(_request_level_issues(items))
    malformed = {issue.line_id for issue in errors if issue.line_id is not None}

    for item in items:
        if item.condition in QUALITY_EXCEPTION_CONDITIONS:
            quality.append(QualityException(
                line_id=item.line_id,
                condition=item.condition,
                quantity=item.received_now,
                product_name=item.product_name,
            ))
            continue
        if item.line_id in malformed:
            continue

        difference = item.total_received - item.ordered_quantity
        if difference > ZERO:
            rule, direction = config.over, "over"
        elif difference < ZERO and (is_final_receipt or config.evaluate_under_on_partial):
            rule, direction = config.under, "under"
        else:
            continue

        if not rule.enabled:
            continue

        issue, needs_approval = _judge(item, rule, direction)
        if issue is None:
            continue
        if issue.is_blocking:
            errors.append(issue)
        else:
            warnings.append(issue)
        if needs_approval:
            requires_approval = True
            for role in rule.approval_roles:
                if role not in roles:
                    roles.append(role)

    if rules is not None:
        rule_issues, expiry_approval = receiving_rule_issues(
            items, rules, context or ReceivingContext(),
        )
        errors.extend(issue for issue in rule_issues if issue.is_blocking)
        warnings.extend(issue for issue in rule_issues if not issue.is_blocking)
        if expiry_approval:
            requires_approval = True
            for role in rules.expiry.approval_roles:
                if role not in roles:
                    roles.append(role)

    can_proceed = not errors
    return ValidationResult(
        is_valid=can_proceed and not requires_approval,
        can_proceed=can_proceed,
        requires_approval=requires_approval and can_proceed,
        required_roles=tuple(roles) if requires_approval and can_proceed else (),
        errors=tuple(errors),
        warnings=tuple(warnings),
        quality_exceptions=tuple(quality),
    )


def receiving_statistics(
    order: PurchaseOrder,
    quality_exceptions: Iterable[QualityException] = (),
) -> ReceivingStatistics:
    """Summarize receiving progress for an order."""
    lines = order.lines
    ordered = sum((line.ordered_quantity for line in lines), ZERO)
    received = sum((min(line.received_quantity, line.ordered_quantity) for line in lines), ZERO)
    completion = (
        (received / ordered * HUNDRED).quantize(_PERCENT_QUANTUM, rounding=ROUND_HALF_UP)
        if ordered > ZERO else ZERO
    )
    return ReceivingStatistics(
        total_items=len(lines),
        fully_received_items=sum(1 for line in lines if line.is_fully_received),
        partially_received_items=sum(
            1 for line in lines
            if ZERO < line.received_quantity < line.ordered_quantity
        ),
        quality_exception_items=len({q.line_id for q in quality_exceptions}),
        completion_percentage=completion,
        total_variance=sum(
            (line.received_quantity - line.ordered_quantity for line in lines), ZERO,
        ),
    )
