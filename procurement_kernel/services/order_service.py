"""
OrderService -- order lifecycle operations outside the approval workflow.

Responsibility:
    Create orders, apply non-approval transitions (shipping, receiving
    status, cancellation, closing) and amend mutable order fields.  Every
    successful change is saved by compare-and-swap, audited, and its
    queue-affecting events are written to the integration outbox in the
    same transaction.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - ``pending_approval`` and ``approved`` are reachable only through the
      approval workflow; ``transition`` refuses them.
    - Cancelling an order closes its open approval request in the same
      unit of work.
    - A version conflict is retried once with freshly read state.
    - Manual transitions are limited to the statuses the actor's role is
      granted; ``system:`` actors are exempt.

Failure modes:
    - OrderNotFoundError for unknown orders.
    - InvalidTransitionError / OrderValidationError /
      TransitionNotPermittedError carried on a failed ``TransitionResult``
      (never raised by ``transition``).
    - ConcurrentModificationError after the single retry is exhausted.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from procurement_kernel.domain.approval import ApprovalStatus
from procurement_kernel.domain.audit import AuditAction
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.integration import (
    IntegrationEventKind,
    OrderEvent,
)
from procurement_kernel.domain.order_status import (
    OrderStatus,
    can_transition,
    is_receivable,
    is_terminal,
)
from procurement_kernel.domain.permissions import TransitionPermissions
from procurement_kernel.domain.protocols import AuditSink, RoleDirectory
from procurement_kernel.domain.purchase_order import (
    OrderQuery,
    PurchaseOrder,
    amendment_problems,
    new_order_problems,
)
from procurement_kernel.domain.transitions import TransitionResult, apply_transition
from procurement_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    MalformedInputError,
    OrderValidationError,
    TransitionNotPermittedError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.services.unit_of_work import UnitOfWork, unit_of_work

logger = get_logger("services.order")

T = TypeVar("T")

ORDER_ENTITY = "PurchaseOrder"
APPROVAL_ENTITY = "ApprovalRequest"

APPROVAL_GATED_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.PENDING_APPROVAL,
    OrderStatus.APPROVED,
})

AMENDABLE_FIELDS: frozenset[str] = frozenset({
    "supplier_id",
    "supplier_name",
    "expected_date",
    "payment_terms",
    "department",
    "supplier_category",
})


def retry_on_conflict(operation: str, fn: Callable[[], T]) -> T:
    """Run ``fn``; on a version conflict run it once more."""
    try:
        return fn()
    except ConcurrentModificationError as exc:
        logger.info(
            "concurrent_modification_retry",
            extra={
                "operation": operation,
                "entity_type": exc.entity_type,
                "entity_id": exc.entity_id,
            },
        )
        return fn()


def commit_transition(
    uow: UnitOfWork,
    order: PurchaseOrder,
    target: OrderStatus,
    actor_id: str,
    reason: str = "",
    context: dict[str, Any] | None = None,
) -> TransitionResult:
    """Apply, save, audit and outbox one order transition inside ``uow``.

    A refused transition is audited as a failure and returned unchanged;
    the caller decides whether to raise it.
    """
    at = uow.clock.now()
    result = apply_transition(order, target, actor_id, at, reason, context)
    if not result.success:
        uow.audit_failure(
            ORDER_ENTITY,
            order.order_id,
            AuditAction.ORDER_TRANSITION_REJECTED,
            actor_id,
            from_status=result.from_status,
            to_status=result.to_status,
            error_code=result.error.code,
            reason=str(result.error),
        )
        logger.info(
            "order_transition_rejected",
            extra={
                "order_id": str(order.order_id),
                "from_status": result.from_status.value,
                "to_status": result.to_status.value,
                "error_code": result.error.code,
            },
        )
        return result

    saved = uow.orders.save(result.order, expected_version=order.version)
    uow.audit(
        ORDER_ENTITY,
        order.order_id,
        AuditAction.ORDER_TRANSITIONED,
        actor_id,
        from_status=result.from_status,
        to_status=result.to_status,
        reason=reason,
    )
    uow.record_events(result.events)
    logger.info(
        "order_transitioned",
        extra={
            "order_id": str(order.order_id),
            "from_status": result.from_status.value,
            "to_status": result.to_status.value,
            "actor_id": actor_id,
        },
    )
    return replace(result, order=saved)


class OrderService:
    """Order creation, amendment and non-approval transitions."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        audit_sink: AuditSink,
        clock: Clock | None = None,
        role_directory: RoleDirectory | None = None,
        permissions: Callable[[], TransitionPermissions] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._audit_sink = audit_sink
        self._clock = clock or SystemClock()
        self._roles = role_directory
        self._permissions = permissions

    def _uow(self):
        return unit_of_work(self._session_factory, self._clock, self._audit_sink)

    def create_order(self, order: PurchaseOrder, actor_id: str) -> PurchaseOrder:
        """Persist a new draft order.

        Raises:
            MalformedInputError: ``order`` is not a draft.
            OrderValidationError: line or header values are unusable.
        """
        if order.status != OrderStatus.DRAFT:
            raise MalformedInputError("status", "new orders must start in draft")
        with self._uow() as uow:
            problems = new_order_problems(order)
            if problems:
                error = OrderValidationError(
                    str(order.order_id), OrderStatus.DRAFT.value, problems,
                )
                uow.audit_failure(
                    ORDER_ENTITY,
                    order.order_id,
                    AuditAction.ORDER_CREATION_REFUSED,
                    actor_id,
                    po_number=order.po_number,
                    error_code=error.code,
                    problems=problems,
                )
                raise error
            stamped = order.with_changes(
                created_by=order.created_by or actor_id,
                created_at=order.created_at or self._clock.now(),
            )
            saved = uow.orders.add(stamped)
            uow.audit(
                ORDER_ENTITY,
                saved.order_id,
                AuditAction.ORDER_CREATED,
                actor_id,
                po_number=saved.po_number,
                total=saved.total,
                currency=saved.currency,
            )
        logger.info(
            "order_created",
            extra={"order_id": str(saved.order_id), "po_number": saved.po_number},
        )
        return saved

    def get_order(self, order_id: UUID) -> PurchaseOrder:
        with self._uow() as uow:
            return uow.orders.get(order_id)

    def query(self, query: OrderQuery | None = None) -> list[PurchaseOrder]:
        with self._uow() as uow:
            return uow.orders.query(query)

    def transition(
        self,
        order_id: UUID,
        target: OrderStatus,
        actor_id: str,
        reason: str = "",
        context: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Move an order to ``target``.

        Approval statuses are refused here; they belong to the approval
        workflow.  A legal transition is then checked against the
        configured role permissions.  Cancelling closes any open approval
        request.
        """
        return retry_on_conflict(
            "order_transition",
            lambda: self._transition_once(order_id, target, actor_id, reason, context),
        )

    def _transition_once(
        self,
        order_id: UUID,
        target: OrderStatus,
        actor_id: str,
        reason: str,
        context: dict[str, Any] | None,
    ) -> TransitionResult:
        with self._uow() as uow:
            order = uow.orders.get(order_id)

            if target in APPROVAL_GATED_STATUSES:
                error = InvalidTransitionError(
                    str(order_id),
                    order.status.value,
                    target.value,
                    "use the approval workflow",
                )
                uow.audit_failure(
                    ORDER_ENTITY,
                    order_id,
                    AuditAction.ORDER_TRANSITION_REJECTED,
                    actor_id,
                    from_status=order.status,
                    to_status=target,
                    error_code=error.code,
                    reason=str(error),
                )
                return TransitionResult(
                    success=False,
                    order=order,
                    from_status=order.status,
                    to_status=target,
                    error=error,
                )

            if can_transition(order.status, target):
                refused = self._check_permission(uow, order, target, actor_id)
                if refused is not None:
                    return refused

            result = commit_transition(uow, order, target, actor_id, reason, context)
            if result.success and target == OrderStatus.CANCELLED:
                close_open_request(uow, order_id, actor_id, reason)
            return result

    def _check_permission(
        self,
        uow: UnitOfWork,
        order: PurchaseOrder,
        target: OrderStatus,
        actor_id: str,
    ) -> TransitionResult | None:
        """Refusal result when ``actor_id``'s role may not enter ``target``."""
        if self._permissions is None:
            return None
        permissions = self._permissions()
        role = self._roles.role_of(actor_id) if self._roles is not None else None
        if permissions.allows(actor_id, role, target):
            return None

        error = TransitionNotPermittedError(
            str(order.order_id), actor_id, role, target.value,
        )
        uow.audit_failure(
            ORDER_ENTITY,
            order.order_id,
            AuditAction.ORDER_TRANSITION_REJECTED,
            actor_id,
            from_status=order.status,
            to_status=target,
            role=role,
            error_code=error.code,
            reason=str(error),
        )
        logger.info(
            "order_transition_not_permitted",
            extra={
                "order_id": str(order.order_id),
                "actor_id": actor_id,
                "role": role,
                "to_status": target.value,
            },
        )
        return TransitionResult(
            success=False,
            order=order,
            from_status=order.status,
            to_status=target,
            error=error,
        )

    def amend(self, order_id: UUID, actor_id: str, **changes: Any) -> PurchaseOrder:
        """Change mutable header fields of a non-terminal order.

        ``supplier_id`` may only change while the order is a draft.  A
        receivable order emits a refresh event so the receiving queue
        picks up the new values.  Unknown fields and badly typed values
        are refused with ``MalformedInputError`` before anything is
        written.
        """
        return retry_on_conflict(
            "order_amend",
            lambda: self._amend_once(order_id, actor_id, changes),
        )

    def _amend_once(
        self,
        order_id: UUID,
        actor_id: str,
        changes: dict[str, Any],
    ) -> PurchaseOrder:
        with self._uow() as uow:
            order = uow.orders.get(order_id)
            malformed = _malformed_amendment(changes)
            if malformed is not None:
                uow.audit_failure(
                    ORDER_ENTITY,
                    order_id,
                    AuditAction.ORDER_AMENDMENT_REFUSED,
                    actor_id,
                    fields=sorted(changes),
                    error_code=malformed.code,
                    reason=str(malformed),
                )
                raise malformed

            refusal = None
            if is_terminal(order.status):
                refusal = "terminal orders cannot be amended"
            elif "supplier_id" in changes and order.status != OrderStatus.DRAFT:
                refusal = "supplier can only change while the order is a draft"
            if refusal is not None:
                error = InvalidTransitionError(
                    str(order_id), order.status.value, order.status.value, refusal,
                )
                uow.audit_failure(
                    ORDER_ENTITY,
                    order_id,
                    AuditAction.ORDER_AMENDMENT_REFUSED,
                    actor_id,
                    fields=sorted(changes),
                    error_code=error.code,
                    reason=refusal,
                )
                raise error

            now = self._clock.now()
            saved = uow.orders.save(
                order.with_changes(updated_at=now, **changes),
                expected_version=order.version,
            )
            uow.audit(
                ORDER_ENTITY,
                order_id,
                AuditAction.ORDER_AMENDED,
                actor_id,
                changes=changes,
            )
            if is_receivable(order.status):
                uow.record_events([
                    OrderEvent(
                        kind=IntegrationEventKind.STATUS_CHANGED,
                        order_id=order_id,
                        from_status=order.status,
                        to_status=order.status,
                        actor_id=actor_id,
                        occurred_at=now,
                        context={"amended": sorted(changes)},
                    )
                ])
        logger.info(
            "order_amended",
            extra={"order_id": str(order_id), "fields": sorted(changes)},
        )
        return saved


def close_open_request(
    uow: UnitOfWork,
    order_id: UUID,
    actor_id: str,
    reason: str = "",
) -> bool:
    """Cancel the open approval request of ``order_id``, if any."""
    request = uow.approvals.open_for_order(order_id)
    if request is None:
        return False
    uow.approvals.update(
        replace(
            request,
            status=ApprovalStatus.CANCELLED,
            resolved_at=uow.clock.now(),
        ),
        expected_version=request.version,
    )
    uow.audit(
        APPROVAL_ENTITY,
        request.request_id,
        AuditAction.APPROVAL_CANCELLED,
        actor_id,
        order_id=order_id,
        reason=reason,
    )
    logger.info(
        "approval_request_cancelled",
        extra={"request_id": str(request.request_id), "order_id": str(order_id)},
    )
    return True


def _malformed_amendment(changes: dict[str, Any]) -> MalformedInputError | None:
    if not changes:
        return MalformedInputError("changes", "no fields to amend")
    unknown = sorted(set(changes) - AMENDABLE_FIELDS)
    if unknown:
        return MalformedInputError(", ".join(unknown), "field cannot be amended")
    problems = amendment_problems(changes)
    if problems:
        return MalformedInputError(
            ", ".join(p["field"] for p in problems),
            "; ".join(p["message"] for p in problems),
        )
    return None
