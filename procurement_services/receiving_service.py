"""
ReceivingService -- validate and commit goods receipts.

Responsibility:
    Join receipt entries with the order's lines, judge them with the
    tolerance validator, and commit accepted quantities together with the
    resulting receiving status (``partially_received`` or
    ``fully_received``).

Architecture position:
    Services -- composes procurement_engines.tolerance with kernel stores.

Invariants enforced:
    - Only receivable orders accept receipts.
    - A receipt with blocking tolerance errors is never committed.
    - A receipt that requires approval is committed only when
      ``approved_by`` holds one of the required roles.
    - Damaged, expired and rejected items never add to received
      quantities.
    - Partial, quality, expiry and damage rules from the active
      configuration are judged with the tolerance rules; every committed
      receipt bumps the order's ``receipt_count``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import replace
from decimal import Decimal
from typing import Callable, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from procurement_config.provider import ConfigProvider
from procurement_engines.approval import validate_approver_role
from procurement_engines.tolerance import (
    build_receipt_items,
    is_partial_receipt,
    receiving_statistics,
    validate_receipt,
)
from procurement_kernel.domain.audit import AuditAction
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.order_status import OrderStatus, is_receivable
from procurement_kernel.domain.protocols import AuditSink, RoleDirectory
from procurement_kernel.domain.purchase_order import ZERO, PurchaseOrder
from procurement_kernel.domain.receiving import (
    QUALITY_EXCEPTION_CONDITIONS,
    ReceiptEntry,
    ReceiptItem,
    ReceiptOutcome,
    ReceivingContext,
    ReceivingStatistics,
    ValidationResult,
)
from procurement_kernel.exceptions import (
    InvalidTransitionError,
    ProcurementKernelError,
    ReceiptApprovalRequiredError,
    ReceiptValidationError,
    ToleranceViolationError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.services.order_service import (
    ORDER_ENTITY,
    commit_transition,
    retry_on_conflict,
)
from procurement_kernel.services.unit_of_work import UnitOfWork, unit_of_work

logger = get_logger("services.receiving")


class ReceivingService:
    """Goods receipt validation and commit."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: ConfigProvider,
        role_directory: RoleDirectory,
        audit_sink: AuditSink,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._roles = role_directory
        self._audit_sink = audit_sink
        self._clock = clock or SystemClock()

    def _uow(self):
        return unit_of_work(self._session_factory, self._clock, self._audit_sink)

    def validate_receipt(
        self,
        order_id: UUID,
        entries: Sequence[ReceiptEntry],
        final_receipt: bool = False,
        actor_id: str | None = None,
        partial_reason: str | None = None,
    ) -> ValidationResult:
        """Judge a receipt without committing it.

        ``actor_id`` is the prospective receiver; quality results are
        judged against its role.
        """
        snapshot = self._config.current()
        with self._uow() as uow:
            order = uow.orders.get(order_id)
        items = build_receipt_items(order, entries)
        return validate_receipt(
            items,
            snapshot.tolerance,
            final_receipt,
            snapshot.receiving,
            self._context(order, items, actor_id, final_receipt, partial_reason),
        )

    def _context(
        self,
        order: PurchaseOrder,
        items: Sequence[ReceiptItem],
        actor_id: str | None,
        final_receipt: bool,
        partial_reason: str | None,
    ) -> ReceivingContext:
        return ReceivingContext(
            receiver_role=self._roles.role_of(actor_id) if actor_id else None,
            receipt_date=self._clock.now().date(),
            is_partial=is_partial_receipt(order, items, final_receipt),
            previous_receipts=order.receipt_count,
            partial_reason=partial_reason,
        )

    def record_receipt(
        self,
        order_id: UUID,
        entries: Sequence[ReceiptEntry],
        actor_id: str,
        approved_by: str | None = None,
        final_receipt: bool = False,
        partial_reason: str | None = None,
    ) -> ReceiptOutcome:
        """Validate and commit a receipt.

        Args:
            order_id: The receiving order.
            entries: Quantities received per line.
            actor_id: Who reports the receipt.
            approved_by: Approver for variances that require approval.
            final_receipt: No more goods are expected; under-receipt is
                judged and the order moves to ``fully_received``.
            partial_reason: Why goods are still outstanding; required
                when the partial receiving rules ask for one.

        Raises:
            InvalidTransitionError: The order is not open for receiving.
            ReceiptValidationError: An entry names an unknown line.
            ToleranceViolationError: Blocking variance or receiving rule.
            ReceiptApprovalRequiredError: Approval required but
                ``approved_by`` is missing or ineligible.
        """
        with LogContext.bind(order_id=str(order_id), actor_id=actor_id):
            return retry_on_conflict(
                "receipt_record",
                lambda: self._record_once(
                    order_id, entries, actor_id, approved_by, final_receipt, partial_reason,
                ),
            )

    def _record_once(
        self,
        order_id: UUID,
        entries: Sequence[ReceiptEntry],
        actor_id: str,
        approved_by: str | None,
        final_receipt: bool,
        partial_reason: str | None,
    ) -> ReceiptOutcome:
        snapshot = self._config.current()
        with self._uow() as uow:
            order = uow.orders.get(order_id)
            if not is_receivable(order.status):
                self._refuse(
                    uow, order_id, actor_id,
                    InvalidTransitionError(
                        str(order_id),
                        order.status.value,
                        OrderStatus.PARTIALLY_RECEIVED.value,
                        "order is not open for receiving",
                    ),
                )

            try:
                items = build_receipt_items(order, entries)
            except ReceiptValidationError as exc:
                self._refuse(uow, order_id, actor_id, exc)

            validation = validate_receipt(
                items,
                snapshot.tolerance,
                final_receipt,
                snapshot.receiving,
                self._context(order, items, actor_id, final_receipt, partial_reason),
            )
            if not validation.can_proceed:
                self._refuse(
                    uow, order_id, actor_id,
                    ToleranceViolationError(
                        str(order_id), [issue.to_dict() for issue in validation.errors],
                    ),
                )
            if validation.requires_approval:
                role = self._roles.role_of(approved_by) if approved_by else None
                if not validate_approver_role(role, validation.required_roles):
                    self._refuse(
                        uow, order_id, actor_id,
                        ReceiptApprovalRequiredError(
                            str(order_id),
                            [issue.to_dict() for issue in validation.warnings],
                            list(validation.required_roles),
                            approved_by,
                        ),
                    )

            accepted: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
            for item in items:
                if item.condition not in QUALITY_EXCEPTION_CONDITIONS:
                    accepted[item.line_id] += item.received_now

            now = self._clock.now()
            updated = order.with_changes(
                lines=tuple(
                    replace(line, received_quantity=line.received_quantity + accepted[line.line_id])
                    if line.line_id in accepted else line
                    for line in order.lines
                ),
                updated_at=now,
                receipt_count=order.receipt_count + 1,
            )
            received_any = any(quantity != ZERO for quantity in accepted.values())

            events = ()
            if updated.is_fully_received or final_receipt:
                target = OrderStatus.FULLY_RECEIVED
            elif received_any or order.status == OrderStatus.PARTIALLY_RECEIVED:
                target = OrderStatus.PARTIALLY_RECEIVED
            else:
                target = order.status

            context = {"final_receipt": final_receipt}
            if target != order.status:
                result = commit_transition(
                    uow, updated, target, actor_id, reason="goods received", context=context,
                ).raise_for_error()
                saved, events = result.order, result.events
            else:
                saved = uow.orders.save(updated, expected_version=order.version)

            uow.audit(
                ORDER_ENTITY,
                order_id,
                AuditAction.RECEIPT_RECORDED,
                actor_id,
                approved_by=approved_by if validation.requires_approval else None,
                final_receipt=final_receipt,
                partial_reason=partial_reason,
                receipt_number=saved.receipt_count,
                lines={str(line_id): quantity for line_id, quantity in accepted.items()},
                warnings=[issue.to_dict() for issue in validation.warnings],
                quality_exceptions=[
                    {
                        "line_id": str(q.line_id),
                        "condition": q.condition,
                        "quantity": q.quantity,
                    }
                    for q in validation.quality_exceptions
                ],
                status=saved.status,
            )

        logger.info(
            "receipt_recorded",
            extra={
                "order_id": str(order_id),
                "status": saved.status.value,
                "warnings": len(validation.warnings),
                "quality_exceptions": len(validation.quality_exceptions),
            },
        )
        return ReceiptOutcome(order=saved, validation=validation, events=events)

    def _refuse(
        self,
        uow: UnitOfWork,
        order_id: UUID,
        actor_id: str,
        error: ProcurementKernelError,
    ) -> None:
        payload = {"error_code": error.code, "reason": str(error)}
        if isinstance(error, ToleranceViolationError):
            payload["issues"] = error.issues
        uow.audit_failure(
            ORDER_ENTITY, order_id, AuditAction.RECEIPT_REFUSED, actor_id, **payload,
        )
        logger.info(
            "receipt_refused",
            extra={"order_id": str(order_id), "error_code": error.code},
        )
        raise error

    def statistics(self, order_id: UUID) -> ReceivingStatistics:
        with self._uow() as uow:
            order = uow.orders.get(order_id)
        return receiving_statistics(order)
