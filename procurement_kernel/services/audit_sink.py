"""
Audit sinks.

``SqlAuditSink`` appends entries to the ``audit_entries`` table in its
own short transaction, so an audit write never shares fate with the
unit of work it describes.  ``SafeAuditSink`` wraps any sink and turns
sink failures into log records: auditing is fire-and-forget and must
never break the operation being audited.  ``BufferedAuditSink`` takes
the write off the caller's thread: ``record`` only enqueues, and a
background task drains the queue into the wrapped sink in recording
order.
"""

from __future__ import annotations

import threading
from queue import Empty, SimpleQueue
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_kernel.db.engine import session_scope
from procurement_kernel.domain.audit import AuditAction, AuditEntry
from procurement_kernel.domain.protocols import AuditSink
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.audit import AuditEntryModel
from procurement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.audit")


class SqlAuditSink:
    """Append-only audit storage."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def record(self, entry: AuditEntry) -> None:
        with session_scope(self._session_factory) as session:
            seq = SequenceService(session).next_value(SequenceService.AUDIT_ENTRY)
            session.add(AuditEntryModel.from_dto(entry, seq))
        logger.debug(
            "audit_recorded",
            extra={
                "audit_action": entry.action.value,
                "entity_type": entry.entity_type,
                "entity_id": entry.entity_id,
            },
        )

    def entries(
        self,
        entity_id: str | UUID | None = None,
        action: AuditAction | None = None,
    ) -> list[AuditEntry]:
        """Query recorded entries in the order they were recorded."""
        with session_scope(self._session_factory) as session:
            stmt = select(AuditEntryModel)
            if entity_id is not None:
                stmt = stmt.where(AuditEntryModel.entity_id == str(entity_id))
            if action is not None:
                stmt = stmt.where(AuditEntryModel.action == action.value)
            stmt = stmt.order_by(AuditEntryModel.seq)
            return [m.to_dto() for m in session.execute(stmt).scalars().all()]


class SafeAuditSink:
    """Wraps a sink; failures are logged and swallowed."""

    def __init__(self, inner: AuditSink):
        self._inner = inner

    @property
    def inner(self) -> AuditSink:
        return self._inner

    def record(self, entry: AuditEntry) -> None:
        try:
            self._inner.record(entry)
        except Exception:
            logger.exception(
                "audit_sink_failed",
                extra={
                    "audit_action": entry.action.value,
                    "entity_type": entry.entity_type,
                    "entity_id": entry.entity_id,
                },
            )


class BufferedAuditSink:
    """Queues entries; ``drain`` writes them to the wrapped sink.

    ``record`` never blocks on storage.  Draining is serialized, so
    entries reach the wrapped sink in the order they were recorded even
    when a periodic drain and a shutdown drain overlap.
    """

    def __init__(self, inner: AuditSink):
        self._inner = inner
        self._queue: SimpleQueue[AuditEntry] = SimpleQueue()
        self._drain_lock = threading.Lock()

    @property
    def inner(self) -> AuditSink:
        return self._inner

    def record(self, entry: AuditEntry) -> None:
        self._queue.put(entry)

    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self, limit: int | None = None) -> int:
        """Write up to ``limit`` queued entries (all when ``None``)."""
        written = 0
        with self._drain_lock:
            while limit is None or written < limit:
                try:
                    entry = self._queue.get_nowait()
                except Empty:
                    break
                self._inner.record(entry)
                written += 1
        if written:
            logger.debug("audit_drained", extra={"count": written})
        return written
