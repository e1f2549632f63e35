"""
ApprovalWorkflow -- lifecycle of purchase-order approval requests.

Responsibility:
    Submit orders for approval (resolving the governing policy or taking
    the auto-approve shortcut), record approver decisions until quorum or
    rejection, run bulk decisions with bounded parallelism, and escalate
    or expire overdue requests.

Architecture position:
    Services -- composes procurement_engines (policy resolution, quorum,
    escalation planning) with kernel stores inside units of work.

Invariants enforced:
    - An order reaches ``approved`` only when its request met quorum or
      the resolved policy auto-approved it; both paths are audited and
      emit the same outbound event.
    - A single ``reject`` finalizes the request as ``rejected`` and
      returns the order to ``draft``.
    - Every decision bumps the request version, so concurrent approvers
      serialize through compare-and-swap; a lost race is retried once
      with fresh state and both decisions persist.
    - ``escalated`` is transient: an escalation moves the request
      ``pending -> escalated -> pending`` in one unit of work.
    - Bulk items run in independent units of work; a failing item never
      affects its siblings.

Failure modes:
    - PolicyNotFoundError / NoUniquePolicyError on submission.
    - DuplicateApprovalRequestError when the order already has an open request.
    - UnauthorizedApproverError, DuplicateDecisionError, RequestClosedError
      on decisions (each audited).
    - ConcurrentModificationError once the single retry is exhausted.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, Iterable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from procurement_config.provider import ConfigProvider
from procurement_config.schema import ProcurementConfigSnapshot
from procurement_engines.approval import (
    blocking_conditions_fired,
    evaluate_quorum,
    is_auto_approvable,
    resolve_policy,
    validate_approver_role,
)
from procurement_engines.escalation import (
    compute_deadline,
    deadline_for_policy,
    is_overdue,
    merge_roles,
    plan_escalation,
)
from procurement_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    ApprovalDecision,
    ApprovalDecisionRecord,
    ApprovalRequest,
    ApprovalStatistics,
    ApprovalStatus,
    ApprovalSubmission,
    BulkFailure,
    BulkResult,
    DecisionInput,
    DecisionOutcome,
    EscalationAction,
    EscalationResult,
)
from procurement_kernel.domain.audit import AuditAction
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.order_status import OrderStatus
from procurement_kernel.domain.protocols import AuditSink, RoleDirectory
from procurement_kernel.domain.transitions import TransitionResult
from procurement_kernel.exceptions import (
    DuplicateApprovalRequestError,
    DuplicateDecisionError,
    MalformedInputError,
    NoUniquePolicyError,
    PolicyNotFoundError,
    ProcurementKernelError,
    RequestClosedError,
    UnauthorizedApproverError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.services.order_service import (
    APPROVAL_ENTITY,
    ORDER_ENTITY,
    OrderService,
    commit_transition,
    retry_on_conflict,
)
from procurement_kernel.services.unit_of_work import UnitOfWork, unit_of_work
from procurement_services.notification import NotificationService, role_recipients

logger = get_logger("services.approval_workflow")

AUTO_APPROVER_ID = "system:auto-approval"
ESCALATION_ACTOR_ID = "system:escalation"


def _advance(request: ApprovalRequest, *path: ApprovalStatus) -> ApprovalRequest:
    """Walk ``request`` through ``path``, refusing any illegal hop."""
    current = request.status
    for target in path:
        if target not in APPROVAL_TRANSITIONS.get(current, frozenset()):
            raise RequestClosedError(str(request.request_id), current.value)
        current = target
    return replace(request, status=current)


class ApprovalWorkflow:
    """Approval request orchestration."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: ConfigProvider,
        role_directory: RoleDirectory,
        audit_sink: AuditSink,
        clock: Clock | None = None,
        notifications: NotificationService | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._roles = role_directory
        self._audit_sink = audit_sink
        self._clock = clock or SystemClock()
        self._notifications = notifications
        self._orders = OrderService(
            session_factory,
            audit_sink,
            self._clock,
            role_directory,
            lambda: config.current().transition_permissions,
        )

    def _uow(self):
        return unit_of_work(self._session_factory, self._clock, self._audit_sink)

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def create_request(self, order_id: UUID, initiator_id: str) -> ApprovalSubmission:
        """Submit a draft order for approval.

        Resolves the governing policy against the order total and
        attributes.  When the policy auto-approves (and no blocking
        condition fires) the order goes straight to ``approved``;
        otherwise a pending request is opened for the policy's roles.
        """
        if not initiator_id:
            raise MalformedInputError("initiator_id", "initiator is required")
        with LogContext.bind(order_id=str(order_id), actor_id=initiator_id):
            submission = retry_on_conflict(
                "approval_submit",
                lambda: self._create_once(order_id, initiator_id),
            )
        if submission.request is not None:
            self._notify(
                "approval_requested",
                role_recipients(submission.request.eligible_roles),
                submission.request,
            )
        return submission

    def _create_once(self, order_id: UUID, initiator_id: str) -> ApprovalSubmission:
        snapshot = self._config.current()
        with self._uow() as uow:
            order = uow.orders.get(order_id)

            existing = uow.approvals.open_for_order(order_id)
            if existing is not None:
                self._refuse_submission(
                    uow, order_id, initiator_id,
                    DuplicateApprovalRequestError(str(order_id), str(existing.request_id)),
                )

            attributes = order.condition_attributes()
            try:
                policy = resolve_policy(snapshot.policies, order.total, attributes)
            except NoUniquePolicyError as exc:
                self._refuse_submission(uow, order_id, initiator_id, exc)
            if policy is None:
                self._refuse_submission(
                    uow, order_id, initiator_id,
                    PolicyNotFoundError(str(order.total), order.currency),
                )

            context = {"policy": policy.name, "config_version": snapshot.label}
            submitted = commit_transition(
                uow, order, OrderStatus.PENDING_APPROVAL, initiator_id, context=context,
            ).raise_for_error()

            if is_auto_approvable(policy, attributes):
                approved = commit_transition(
                    uow,
                    submitted.order,
                    OrderStatus.APPROVED,
                    AUTO_APPROVER_ID,
                    reason="auto-approved",
                    context={**context, "auto_approved": True},
                ).raise_for_error()
                uow.audit(
                    ORDER_ENTITY,
                    order_id,
                    AuditAction.APPROVAL_AUTO_APPROVED,
                    AUTO_APPROVER_ID,
                    policy=policy.name,
                    amount=order.total,
                    currency=order.currency,
                    initiator_id=initiator_id,
                )
                logger.info(
                    "approval_auto_approved",
                    extra={"order_id": str(order_id), "policy": policy.name},
                )
                return ApprovalSubmission(
                    order=approved.order,
                    policy_name=policy.name,
                    events=submitted.events + approved.events,
                )

            now = self._clock.now()
            request = ApprovalRequest(
                request_id=uuid4(),
                order_id=order_id,
                initiator_id=initiator_id,
                policy=policy,
                amount=order.total,
                currency=order.currency,
                eligible_roles=policy.required_roles,
                created_at=now,
                deadline=deadline_for_policy(policy, now, snapshot.holidays),
            )
            uow.approvals.add(request)
            uow.audit(
                APPROVAL_ENTITY,
                request.request_id,
                AuditAction.APPROVAL_REQUESTED,
                initiator_id,
                order_id=order_id,
                policy=policy.name,
                amount=order.total,
                required_approvers=policy.required_approvers,
                eligible_roles=list(policy.required_roles),
                deadline=request.deadline,
                blocking_conditions=[
                    c.field for c in blocking_conditions_fired(policy, attributes)
                ],
            )
        logger.info(
            "approval_requested",
            extra={
                "order_id": str(order_id),
                "request_id": str(request.request_id),
                "policy": policy.name,
            },
        )
        return ApprovalSubmission(
            order=submitted.order,
            policy_name=policy.name,
            request=request,
            events=submitted.events,
        )

    def _refuse_submission(
        self,
        uow: UnitOfWork,
        order_id: UUID,
        initiator_id: str,
        error: ProcurementKernelError,
    ) -> None:
        uow.audit_failure(
            ORDER_ENTITY,
            order_id,
            AuditAction.APPROVAL_REQUEST_REFUSED,
            initiator_id,
            error_code=error.code,
            reason=str(error),
        )
        logger.info(
            "approval_request_refused",
            extra={"order_id": str(order_id), "error_code": error.code},
        )
        raise error

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    def submit_decision(self, request_id: UUID, decision: DecisionInput) -> DecisionOutcome:
        """Record one approver's decision and finalize when it settles the request."""
        if not decision.approver_id:
            raise MalformedInputError("approver_id", "approver is required")
        with LogContext.bind(request_id=str(request_id), actor_id=decision.approver_id):
            outcome = retry_on_conflict(
                "approval_decision",
                lambda: self._decide_once(request_id, decision),
            )
        if outcome.finalized:
            self._notify(
                "approval_decided",
                (outcome.request.initiator_id,),
                outcome.request,
            )
        return outcome

    def _decide_once(self, request_id: UUID, decision: DecisionInput) -> DecisionOutcome:
        with self._uow() as uow:
            request = uow.approvals.get(request_id)
            approver_id = decision.approver_id

            if not request.is_open:
                self._refuse_decision(
                    uow, request, decision,
                    RequestClosedError(str(request_id), request.status.value),
                )

            role = self._roles.role_of(approver_id)
            if not validate_approver_role(role, request.eligible_roles):
                self._refuse_decision(
                    uow, request, decision,
                    UnauthorizedApproverError(
                        str(request_id), approver_id, role, list(request.eligible_roles),
                    ),
                )

            if request.has_decided(approver_id):
                self._refuse_decision(
                    uow, request, decision,
                    DuplicateDecisionError(str(request_id), approver_id),
                )

            now = self._clock.now()
            record = ApprovalDecisionRecord(
                decision_id=uuid4(),
                request_id=request_id,
                approver_id=approver_id,
                role=role,
                decision=decision.decision,
                reason=decision.reason,
                decided_at=now,
            )
            try:
                uow.approvals.add_decision(record)
            except DuplicateDecisionError as exc:
                self._refuse_decision(uow, request, decision, exc)

            decisions = request.decisions + (record,)
            quorum = evaluate_quorum(request.policy, decisions)
            order = uow.orders.get(request.order_id)
            events = ()
            updated = replace(request, decisions=decisions)
            transition_context = {
                "request_id": str(request_id),
                "policy": request.policy.name,
            }

            if quorum.is_approved:
                result = commit_transition(
                    uow, order, OrderStatus.APPROVED, approver_id,
                    reason=decision.reason, context=transition_context,
                ).raise_for_error()
                order, events = result.order, result.events
                updated = replace(_advance(updated, ApprovalStatus.APPROVED), resolved_at=now)
                uow.audit(
                    APPROVAL_ENTITY,
                    request_id,
                    AuditAction.APPROVAL_GRANTED,
                    approver_id,
                    order_id=request.order_id,
                    approvers=sorted(updated.approvers),
                    required_approvers=quorum.required_approvers,
                )
            elif quorum.is_rejected:
                result = commit_transition(
                    uow, order, OrderStatus.DRAFT, approver_id,
                    reason=decision.reason or quorum.reason, context=transition_context,
                ).raise_for_error()
                order, events = result.order, result.events
                updated = replace(_advance(updated, ApprovalStatus.REJECTED), resolved_at=now)
                uow.audit(
                    APPROVAL_ENTITY,
                    request_id,
                    AuditAction.APPROVAL_REJECTED,
                    approver_id,
                    order_id=request.order_id,
                    reason=decision.reason,
                )

            updated = uow.approvals.update(updated, expected_version=request.version)
            uow.audit(
                APPROVAL_ENTITY,
                request_id,
                AuditAction.APPROVAL_DECISION_RECORDED,
                approver_id,
                order_id=request.order_id,
                role=role,
                decision=decision.decision,
                reason=decision.reason,
                approvals=quorum.current_approvers,
                required_approvers=quorum.required_approvers,
            )

        logger.info(
            "approval_decision_recorded",
            extra={
                "request_id": str(request_id),
                "approver_id": approver_id,
                "decision": decision.decision.value,
                "request_status": updated.status.value,
            },
        )
        return DecisionOutcome(request=updated, order=order, quorum=quorum, events=events)

    def _refuse_decision(
        self,
        uow: UnitOfWork,
        request: ApprovalRequest,
        decision: DecisionInput,
        error: ProcurementKernelError,
    ) -> None:
        uow.audit_failure(
            APPROVAL_ENTITY,
            request.request_id,
            AuditAction.APPROVAL_DECISION_REFUSED,
            decision.approver_id,
            order_id=request.order_id,
            decision=decision.decision,
            error_code=error.code,
            reason=str(error),
        )
        logger.info(
            "approval_decision_refused",
            extra={
                "request_id": str(request.request_id),
                "approver_id": decision.approver_id,
                "error_code": error.code,
            },
        )
        raise error

    # -------------------------------------------------------------------------
    # Bulk decisions
    # -------------------------------------------------------------------------

    def bulk_decide(self, request_ids: Iterable[UUID], decision: DecisionInput) -> BulkResult:
        """Apply one decision to many requests.

        Each request is decided in its own unit of work on a bounded
        thread pool.  Results are partitioned, never all-or-nothing;
        order follows ``request_ids``.

        Raises:
            MalformedInputError: Empty or duplicated ids, or no approver.
        """
        ids = list(request_ids)
        if not ids:
            raise MalformedInputError("request_ids", "at least one request id is required")
        if len(set(ids)) != len(ids):
            raise MalformedInputError("request_ids", "request ids must be unique")
        if not decision.approver_id:
            raise MalformedInputError("approver_id", "approver is required")

        workers = max(1, min(self._config.current().bulk_parallelism, len(ids)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bulk-decision") as pool:
            results = list(pool.map(lambda rid: self._bulk_item(rid, decision), ids))

        succeeded: list[UUID] = []
        failed: list[BulkFailure] = []
        outcomes: list[DecisionOutcome] = []
        for request_id, outcome, failure in results:
            if failure is not None:
                failed.append(failure)
            else:
                succeeded.append(request_id)
                outcomes.append(outcome)

        logger.info(
            "bulk_decision_completed",
            extra={
                "approver_id": decision.approver_id,
                "decision": decision.decision.value,
                "succeeded": len(succeeded),
                "failed": len(failed),
            },
        )
        return BulkResult(
            succeeded=tuple(succeeded),
            failed=tuple(failed),
            outcomes=tuple(outcomes),
        )

    def bulk_approve(
        self,
        request_ids: Iterable[UUID],
        approver_id: str,
        reason: str = "",
    ) -> BulkResult:
        return self.bulk_decide(
            request_ids,
            DecisionInput(approver_id=approver_id, decision=ApprovalDecision.APPROVE, reason=reason),
        )

    def _bulk_item(
        self,
        request_id: UUID,
        decision: DecisionInput,
    ) -> tuple[UUID, DecisionOutcome | None, BulkFailure | None]:
        try:
            return request_id, self.submit_decision(request_id, decision), None
        except ProcurementKernelError as exc:
            return request_id, None, BulkFailure(request_id, exc.code, str(exc))
        except Exception as exc:
            logger.exception(
                "bulk_decision_item_failed",
                extra={"request_id": str(request_id)},
            )
            return request_id, None, BulkFailure(request_id, "UNEXPECTED_ERROR", str(exc))

    # -------------------------------------------------------------------------
    # Escalation
    # -------------------------------------------------------------------------

    def process_escalations(self) -> list[EscalationResult]:
        """Escalate or expire every open request past its deadline."""
        snapshot = self._config.current()
        if not snapshot.escalation.enabled:
            return []

        with self._uow() as uow:
            overdue = uow.approvals.overdue_ids(self._clock.now())

        results: list[EscalationResult] = []
        for request_id in overdue:
            try:
                result = retry_on_conflict(
                    "approval_escalation",
                    lambda rid=request_id: self._escalate_once(rid, snapshot),
                )
            except ProcurementKernelError as exc:
                logger.warning(
                    "approval_escalation_failed",
                    extra={"request_id": str(request_id), "error_code": exc.code},
                )
                continue
            if result is None:
                continue
            results.append(result)
            if result.action == EscalationAction.ESCALATED:
                recipients = role_recipients(result.added_roles) + tuple(
                    snapshot.notifications.escalation_recipients
                )
                self._notify_escalation("approval_escalated", recipients, result)
            else:
                self._notify_escalation(
                    "approval_expired",
                    tuple(snapshot.notifications.escalation_recipients),
                    result,
                )

        if results:
            logger.info("escalation_scan_completed", extra={"processed": len(results)})
        return results

    def _escalate_once(
        self,
        request_id: UUID,
        snapshot: ProcurementConfigSnapshot,
    ) -> EscalationResult | None:
        now = self._clock.now()
        with self._uow() as uow:
            request = uow.approvals.get(request_id)
            if not is_overdue(request, now):
                return None

            plan = plan_escalation(
                request, snapshot.escalation.levels, snapshot.escalation.max_escalations,
            )

            if plan.action == EscalationAction.EXPIRED:
                expired = replace(_advance(request, ApprovalStatus.EXPIRED), resolved_at=now)
                uow.approvals.update(expired, expected_version=request.version)
                order = uow.orders.get(request.order_id)
                events = ()
                if order.status == OrderStatus.PENDING_APPROVAL:
                    result = commit_transition(
                        uow, order, OrderStatus.DRAFT, ESCALATION_ACTOR_ID,
                        reason=plan.reason,
                        context={"request_id": str(request_id), "expired": True},
                    ).raise_for_error()
                    events = result.events
                uow.audit(
                    APPROVAL_ENTITY,
                    request_id,
                    AuditAction.APPROVAL_EXPIRED,
                    ESCALATION_ACTOR_ID,
                    order_id=request.order_id,
                    escalation_count=request.escalation_count,
                    reason=plan.reason,
                )
                logger.info(
                    "approval_expired",
                    extra={"request_id": str(request_id), "reason": plan.reason},
                )
                return EscalationResult(
                    request_id=request_id,
                    order_id=request.order_id,
                    action=EscalationAction.EXPIRED,
                    escalation_count=request.escalation_count,
                    events=events,
                )

            level = plan.level
            merged, added = merge_roles(request.eligible_roles, level.roles)
            deadline = compute_deadline(
                now,
                level.after_hours,
                skip_weekends=request.policy.skip_weekends,
                skip_holidays=request.policy.skip_holidays,
                holidays=snapshot.holidays,
            )
            reopened = replace(
                _advance(request, ApprovalStatus.ESCALATED, ApprovalStatus.PENDING),
                eligible_roles=merged,
                escalation_count=request.escalation_count + 1,
                deadline=deadline,
            )
            uow.approvals.update(reopened, expected_version=request.version)
            uow.audit(
                APPROVAL_ENTITY,
                request_id,
                AuditAction.APPROVAL_ESCALATED,
                ESCALATION_ACTOR_ID,
                order_id=request.order_id,
                level=level.level,
                priority=level.priority,
                added_roles=list(added),
                eligible_roles=list(merged),
                new_deadline=deadline,
            )
        logger.info(
            "approval_escalated",
            extra={
                "request_id": str(request_id),
                "level": level.level,
                "added_roles": list(added),
            },
        )
        return EscalationResult(
            request_id=request_id,
            order_id=request.order_id,
            action=EscalationAction.ESCALATED,
            escalation_count=reopened.escalation_count,
            added_roles=added,
            new_deadline=deadline,
        )

    # -------------------------------------------------------------------------
    # Cancellation and queries
    # -------------------------------------------------------------------------

    def cancel_for_order(
        self,
        order_id: UUID,
        actor_id: str,
        reason: str = "",
    ) -> TransitionResult:
        """Cancel the order; its open request is closed in the same unit of work."""
        return self._orders.transition(order_id, OrderStatus.CANCELLED, actor_id, reason)

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        with self._uow() as uow:
            return uow.approvals.get(request_id)

    def requests_for_order(self, order_id: UUID) -> list[ApprovalRequest]:
        with self._uow() as uow:
            return uow.approvals.for_order(order_id)

    def pending_for_approver(self, approver_id: str) -> list[ApprovalRequest]:
        """Open requests the approver may still decide on."""
        role = self._roles.role_of(approver_id)
        if role is None:
            return []
        with self._uow() as uow:
            requests = uow.approvals.open_requests()
        return [
            r for r in requests
            if validate_approver_role(role, r.eligible_roles) and not r.has_decided(approver_id)
        ]

    def statistics(self) -> ApprovalStatistics:
        with self._uow() as uow:
            return uow.approvals.statistics(self._clock.now())

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def _notify(
        self,
        template: str,
        recipients: tuple[str, ...],
        request: ApprovalRequest,
    ) -> None:
        if self._notifications is None:
            return
        self._notifications.notify(
            template,
            recipients,
            {
                "request_id": str(request.request_id),
                "order_id": str(request.order_id),
                "policy": request.policy.name,
                "amount": str(request.amount),
                "currency": request.currency,
                "status": request.status.value,
                "deadline": request.deadline.isoformat() if request.deadline else None,
            },
        )

    def _notify_escalation(
        self,
        template: str,
        recipients: tuple[str, ...],
        result: EscalationResult,
    ) -> None:
        if self._notifications is None:
            return
        self._notifications.notify(
            template,
            recipients,
            {
                "request_id": str(result.request_id),
                "order_id": str(result.order_id),
                "escalation_count": result.escalation_count,
                "new_deadline": result.new_deadline.isoformat() if result.new_deadline else None,
            },
        )
