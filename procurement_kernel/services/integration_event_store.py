"""
IntegrationEventStore -- persistence for integration events and their retry state.

Responsibility:
    Insert events (the outbox written in the same unit of work as the
    order transition), compare-and-swap their processing state, and
    answer the retry sweep's "what is due" query.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Events are never deleted.
    - Only ``pending`` events whose ``next_attempt_at`` has passed are
      due; ``failed`` events are excluded until manually re-armed.
    - Every query returns events in insertion (``seq``) order.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select, update

from procurement_kernel.domain.integration import IntegrationEvent, ProcessingStatus
from procurement_kernel.exceptions import (
    ConcurrentModificationError,
    IntegrationEventNotFoundError,
)
from procurement_kernel.models.integration import IntegrationEventModel
from procurement_kernel.services.base import BaseStore
from procurement_kernel.services.sequence_service import SequenceService


class IntegrationEventStore(BaseStore):
    """Integration event persistence."""

    def add(self, event: IntegrationEvent) -> IntegrationEvent:
        seq = SequenceService(self.session).next_value(SequenceService.INTEGRATION_EVENT)
        self.session.add(IntegrationEventModel.from_dto(event, seq))
        self.session.flush()
        return event

    def get(self, event_id: UUID) -> IntegrationEvent:
        model = self.session.execute(
            select(IntegrationEventModel)
            .where(IntegrationEventModel.event_id == event_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise IntegrationEventNotFoundError(str(event_id))
        return model.to_dto()

    def update(self, event: IntegrationEvent, expected_version: int) -> IntegrationEvent:
        new_version = expected_version + 1
        result = self.session.execute(
            update(IntegrationEventModel)
            .where(
                IntegrationEventModel.event_id == event.event_id,
                IntegrationEventModel.version == expected_version,
            )
            .values(
                processing_status=event.processing_status.value,
                retry_count=event.retry_count,
                last_error=event.last_error,
                next_attempt_at=event.next_attempt_at,
                processed_at=event.processed_at,
                version=new_version,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError(
                "IntegrationEvent", str(event.event_id), expected_version,
            )
        self.session.flush()
        return replace(event, version=new_version)

    def _due_clause(self, now: datetime):
        return (
            IntegrationEventModel.processing_status == ProcessingStatus.PENDING.value,
            or_(
                IntegrationEventModel.next_attempt_at.is_(None),
                IntegrationEventModel.next_attempt_at <= now,
            ),
        )

    def due_for_order(self, order_id: UUID, now: datetime) -> list[IntegrationEvent]:
        models = self.session.execute(
            select(IntegrationEventModel)
            .where(IntegrationEventModel.order_id == order_id, *self._due_clause(now))
            .order_by(IntegrationEventModel.seq)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def due_order_ids(self, now: datetime, limit: int | None = None) -> list[UUID]:
        """Distinct orders with at least one due event, by their oldest event."""
        stmt = (
            select(IntegrationEventModel.order_id)
            .where(*self._due_clause(now))
            .group_by(IntegrationEventModel.order_id)
            .order_by(func.min(IntegrationEventModel.seq))
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def pending_for_order(self, order_id: UUID) -> list[IntegrationEvent]:
        models = self.session.execute(
            select(IntegrationEventModel)
            .where(
                IntegrationEventModel.order_id == order_id,
                IntegrationEventModel.processing_status == ProcessingStatus.PENDING.value,
            )
            .order_by(IntegrationEventModel.seq)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def for_order(self, order_id: UUID) -> list[IntegrationEvent]:
        models = self.session.execute(
            select(IntegrationEventModel)
            .where(IntegrationEventModel.order_id == order_id)
            .order_by(IntegrationEventModel.seq)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def with_status(
        self,
        status: ProcessingStatus,
        limit: int | None = None,
    ) -> list[IntegrationEvent]:
        stmt = (
            select(IntegrationEventModel)
            .where(IntegrationEventModel.processing_status == status.value)
            .order_by(IntegrationEventModel.seq)
            .execution_options(populate_existing=True)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]
