"""
NotificationOutbox -- persistence for templated notifications.

Notifications are written to the outbox before delivery is attempted,
so a failed or interrupted send can be retried later without involving
the workflow that produced it.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select

from procurement_kernel.domain.audit import NotificationRecord, NotificationStatus
from procurement_kernel.models.audit import NotificationModel
from procurement_kernel.services.base import BaseStore


class NotificationOutbox(BaseStore):

    def add(self, record: NotificationRecord) -> NotificationRecord:
        self.session.add(NotificationModel.from_dto(record))
        self.session.flush()
        return record

    def get(self, notification_id: UUID) -> NotificationRecord | None:
        model = self._load(notification_id)
        return model.to_dto() if model is not None else None

    def _load(self, notification_id: UUID) -> NotificationModel | None:
        return self.session.execute(
            select(NotificationModel)
            .where(NotificationModel.notification_id == notification_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def save(self, record: NotificationRecord) -> NotificationRecord:
        """Persist the delivery state of ``record``."""
        model = self._load(record.notification_id)
        model.status = record.status.value
        model.attempts = record.attempts
        model.last_error = record.last_error
        model.next_attempt_at = record.next_attempt_at
        model.sent_at = record.sent_at
        self.session.flush()
        return record

    def due(self, now: datetime, limit: int | None = None) -> list[NotificationRecord]:
        stmt = (
            select(NotificationModel)
            .where(
                NotificationModel.status == NotificationStatus.PENDING.value,
                or_(
                    NotificationModel.next_attempt_at.is_(None),
                    NotificationModel.next_attempt_at <= now,
                ),
            )
            .order_by(NotificationModel.created_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def with_status(self, status: NotificationStatus) -> list[NotificationRecord]:
        models = self.session.execute(
            select(NotificationModel)
            .where(NotificationModel.status == status.value)
            .order_by(NotificationModel.created_at)
        ).scalars().all()
        return [m.to_dto() for m in models]
