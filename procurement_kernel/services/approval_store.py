"""
ApprovalRequestStore -- persistence for approval requests and decisions.

Responsibility:
    Insert requests and decisions, compare-and-swap request updates, and
    the queries the approval workflow needs (open request per order,
    overdue scan, statistics).

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Request updates are CAS on ``version``; concurrent approvers on the
      same request serialize through it.
    - Decisions are append-only; a second decision by the same approver
      is refused by UNIQUE(request_id, approver_id) and surfaced as
      ``DuplicateDecisionError``.

Failure modes:
    - ApprovalRequestNotFoundError for unknown ids.
    - ConcurrentModificationError on version mismatch.
    - DuplicateDecisionError on a racing duplicate decision.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from procurement_kernel.domain.approval import (
    OPEN_APPROVAL_STATUSES,
    ApprovalDecisionRecord,
    ApprovalRequest,
    ApprovalStatistics,
    ApprovalStatus,
)
from procurement_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    ConcurrentModificationError,
    DuplicateDecisionError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.approval import (
    ApprovalDecisionModel,
    ApprovalRequestModel,
)
from procurement_kernel.services.base import BaseStore

logger = get_logger("services.approval_store")

_OPEN_VALUES = [s.value for s in OPEN_APPROVAL_STATUSES]


class ApprovalRequestStore(BaseStore):
    """Approval request and decision persistence."""

    def _decisions(self, request_id: UUID) -> tuple[ApprovalDecisionRecord, ...]:
        rows = self.session.execute(
            select(ApprovalDecisionModel)
            .where(ApprovalDecisionModel.request_id == request_id)
            .order_by(ApprovalDecisionModel.decided_at, ApprovalDecisionModel.approver_id)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def _to_dto(self, model: ApprovalRequestModel) -> ApprovalRequest:
        dto = model.to_dto()
        return replace(dto, decisions=self._decisions(dto.request_id))

    def get(self, request_id: UUID) -> ApprovalRequest:
        model = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.request_id == request_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return self._to_dto(model)

    def add(self, request: ApprovalRequest) -> ApprovalRequest:
        self.session.add(ApprovalRequestModel.from_dto(request))
        self.session.flush()
        return request

    def add_decision(self, record: ApprovalDecisionRecord) -> ApprovalDecisionRecord:
        self.session.add(ApprovalDecisionModel.from_dto(record))
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateDecisionError(
                str(record.request_id), record.approver_id,
            ) from exc
        return record

    def update(self, request: ApprovalRequest, expected_version: int) -> ApprovalRequest:
        """CAS write of the mutable request fields."""
        new_version = expected_version + 1
        result = self.session.execute(
            update(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.request_id == request.request_id,
                ApprovalRequestModel.version == expected_version,
            )
            .values(
                status=request.status.value,
                eligible_roles=list(request.eligible_roles),
                escalation_count=request.escalation_count,
                deadline=request.deadline,
                resolved_at=request.resolved_at,
                version=new_version,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "approval_request_version_conflict",
                extra={
                    "request_id": str(request.request_id),
                    "expected_version": expected_version,
                },
            )
            raise ConcurrentModificationError(
                "ApprovalRequest", str(request.request_id), expected_version,
            )
        self.session.flush()
        self.session.expire_all()
        return replace(request, version=new_version)

    def open_for_order(self, order_id: UUID) -> ApprovalRequest | None:
        model = self.session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.order_id == order_id,
                ApprovalRequestModel.status.in_(_OPEN_VALUES),
            )
            .order_by(ApprovalRequestModel.created_at.desc())
            .execution_options(populate_existing=True)
        ).scalars().first()
        return self._to_dto(model) if model is not None else None

    def for_order(self, order_id: UUID) -> list[ApprovalRequest]:
        models = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.order_id == order_id)
            .order_by(ApprovalRequestModel.created_at)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [self._to_dto(m) for m in models]

    def open_requests(self, limit: int | None = None) -> list[ApprovalRequest]:
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.status.in_(_OPEN_VALUES))
            .order_by(ApprovalRequestModel.created_at)
            .execution_options(populate_existing=True)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [self._to_dto(m) for m in self.session.execute(stmt).scalars().all()]

    def overdue_ids(self, now: datetime, limit: int | None = None) -> list[UUID]:
        """Ids of open requests whose deadline has passed."""
        stmt = (
            select(ApprovalRequestModel.request_id)
            .where(
                ApprovalRequestModel.status.in_(_OPEN_VALUES),
                ApprovalRequestModel.deadline.is_not(None),
                ApprovalRequestModel.deadline <= now,
            )
            .order_by(ApprovalRequestModel.deadline)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def statistics(self, now: datetime) -> ApprovalStatistics:
        counts = self.session.execute(
            select(ApprovalRequestModel.status, func.count())
            .group_by(ApprovalRequestModel.status)
        ).all()
        by_status = {status.value: 0 for status in ApprovalStatus}
        for status, count in counts:
            by_status[status] = count

        overdue = len(self.overdue_ids(now))

        resolved = self.session.execute(
            select(ApprovalRequestModel.created_at, ApprovalRequestModel.resolved_at)
            .where(ApprovalRequestModel.resolved_at.is_not(None))
        ).all()
        average = None
        if resolved:
            total_seconds = sum(
                (resolved_at - created_at).total_seconds()
                for created_at, resolved_at in resolved
            )
            average = (
                Decimal(str(total_seconds)) / Decimal(len(resolved)) / Decimal(3600)
            ).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

        return ApprovalStatistics(
            by_status=by_status,
            overdue=overdue,
            average_resolution_hours=average,
        )
