"""
NotificationService -- templated notifications with an independent retry budget.

Responsibility:
    Persist each notification to the outbox, attempt delivery through the
    injected ``NotificationDispatcher``, and reschedule failed sends with
    exponential backoff.  Delivery problems never propagate to the
    workflow that produced the notification.

Architecture position:
    Services -- composes procurement_engines.retry with kernel stores.

Invariants enforced:
    - A notification is written before the first send attempt, so a crash
      mid-send leaves a pending row for ``retry_due``.
    - Retry state (attempts, next_attempt_at) lives on the outbox row.
    - Exhausted notifications are marked ``failed`` and audited.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Iterable
from uuid import uuid4

from sqlalchemy.orm import Session

from procurement_config.schema import NotificationSettings
from procurement_engines.retry import schedule_retry
from procurement_kernel.domain.audit import (
    AuditAction,
    NotificationRecord,
    NotificationStatus,
)
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.integration import ProcessingStatus
from procurement_kernel.domain.protocols import (
    AuditSink,
    NotificationDispatcher,
    NotificationResult,
)
from procurement_kernel.exceptions import TransientIntegrationError
from procurement_kernel.logging_config import get_logger
from procurement_kernel.services.unit_of_work import unit_of_work

logger = get_logger("services.notification")

NOTIFICATION_ENTITY = "Notification"
SYSTEM_ACTOR = "system:notifications"


def role_recipients(roles: Iterable[str]) -> tuple[str, ...]:
    """Address every holder of each role."""
    return tuple(f"role:{role}" for role in roles)


class LoggingNotificationDispatcher:
    """Dispatcher that only logs; the default when no transport is wired."""

    def send(
        self,
        template: str,
        recipients: tuple[str, ...],
        context: dict[str, Any],
    ) -> NotificationResult:
        logger.info(
            "notification_dispatched",
            extra={"template": template, "recipients": list(recipients)},
        )
        return NotificationResult(success=True)


class NotificationService:
    """Outbox-backed notification delivery."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        audit_sink: AuditSink,
        dispatcher: NotificationDispatcher | None = None,
        settings: NotificationSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._audit_sink = audit_sink
        self._dispatcher = dispatcher or LoggingNotificationDispatcher()
        self._settings = settings or NotificationSettings()
        self._clock = clock or SystemClock()

    def _uow(self):
        return unit_of_work(self._session_factory, self._clock, self._audit_sink)

    def notify(
        self,
        template: str,
        recipients: Iterable[str],
        context: dict[str, Any] | None = None,
    ) -> NotificationRecord | None:
        """Queue and attempt one notification.

        Returns the record after the first attempt, or ``None`` when
        notifications are disabled or there is nobody to notify.  Never
        raises.
        """
        recipients = tuple(dict.fromkeys(recipients))
        if not self._settings.enabled or not recipients:
            return None
        try:
            record = NotificationRecord(
                notification_id=uuid4(),
                template=template,
                recipients=recipients,
                context=dict(context or {}),
                created_at=self._clock.now(),
            )
            with self._uow() as uow:
                uow.notifications.add(record)
            return self._attempt(record)
        except Exception:
            logger.exception("notification_enqueue_failed", extra={"template": template})
            return None

    def retry_due(self, limit: int | None = None) -> list[NotificationRecord]:
        """Re-attempt every pending notification whose backoff has elapsed."""
        with self._uow() as uow:
            due = uow.notifications.due(self._clock.now(), limit)
        results = []
        for record in due:
            try:
                results.append(self._attempt(record))
            except Exception:
                logger.exception(
                    "notification_retry_failed",
                    extra={"notification_id": str(record.notification_id)},
                )
        return results

    def failed(self) -> list[NotificationRecord]:
        with self._uow() as uow:
            return uow.notifications.with_status(NotificationStatus.FAILED)

    def _attempt(self, record: NotificationRecord) -> NotificationRecord:
        try:
            result = self._dispatcher.send(
                record.template, record.recipients, dict(record.context),
            )
        except Exception as exc:
            logger.warning(
                "notification_dispatcher_raised",
                extra={
                    "notification_id": str(record.notification_id),
                    "error": str(exc),
                },
            )
            result = NotificationResult(success=False, error=str(exc) or type(exc).__name__)

        now = self._clock.now()
        if result.success:
            updated = replace(
                record,
                status=NotificationStatus.SENT,
                attempts=record.attempts + 1,
                last_error=None,
                next_attempt_at=None,
                sent_at=now,
            )
        else:
            error = result.error or "delivery failed"
            decision = schedule_retry(
                self._settings.retry_policy,
                record.attempts,
                TransientIntegrationError(error),
                now,
            )
            exhausted = decision.status == ProcessingStatus.FAILED
            updated = replace(
                record,
                status=NotificationStatus.FAILED if exhausted else NotificationStatus.PENDING,
                attempts=decision.retry_count,
                last_error=error,
                next_attempt_at=decision.next_attempt_at,
            )

        with self._uow() as uow:
            uow.notifications.save(updated)
            if updated.status == NotificationStatus.FAILED:
                uow.audit(
                    NOTIFICATION_ENTITY,
                    record.notification_id,
                    AuditAction.NOTIFICATION_FAILED,
                    SYSTEM_ACTOR,
                    template=record.template,
                    attempts=updated.attempts,
                    error=updated.last_error,
                )

        logger.info(
            "notification_attempted",
            extra={
                "notification_id": str(record.notification_id),
                "template": record.template,
                "status": updated.status.value,
                "attempts": updated.attempts,
            },
        )
        return updated
