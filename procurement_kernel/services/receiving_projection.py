"""
ReceivingProjection -- the receiving queue read model.

One row per order visible to the receiving process.  Rows are keyed by
order id, so an upsert replayed any number of times leaves exactly one
row.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select

from procurement_kernel.domain.integration import QueueChange, ReceivingQueueEntry
from procurement_kernel.models.integration import ReceivingQueueEntryModel
from procurement_kernel.services.base import BaseStore


class ReceivingProjection(BaseStore):

    def _load(self, order_id: UUID) -> ReceivingQueueEntryModel | None:
        return self.session.execute(
            select(ReceivingQueueEntryModel)
            .where(ReceivingQueueEntryModel.order_id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get(self, order_id: UUID) -> ReceivingQueueEntry | None:
        model = self._load(order_id)
        return model.to_dto() if model is not None else None

    def upsert(self, entry: ReceivingQueueEntry) -> QueueChange:
        """Insert or overwrite the row for ``entry.order_id``."""
        model = self._load(entry.order_id)
        change = QueueChange.UPDATED
        if model is None:
            model = ReceivingQueueEntryModel(order_id=entry.order_id)
            self.session.add(model)
            change = QueueChange.ADDED
        model.po_number = entry.po_number
        model.supplier_id = entry.supplier_id
        model.supplier_name = entry.supplier_name
        model.status = entry.status.value
        model.total = entry.total
        model.currency = entry.currency
        model.line_count = entry.line_count
        model.expected_date = entry.expected_date
        model.refreshed_at = entry.refreshed_at
        model.last_event_id = entry.last_event_id
        self.session.flush()
        return change

    def remove(self, order_id: UUID) -> bool:
        result = self.session.execute(
            delete(ReceivingQueueEntryModel)
            .where(ReceivingQueueEntryModel.order_id == order_id)
            .execution_options(synchronize_session=False)
        )
        self.session.flush()
        return result.rowcount > 0

    def entries(self) -> list[ReceivingQueueEntry]:
        models = self.session.execute(
            select(ReceivingQueueEntryModel)
            .order_by(
                ReceivingQueueEntryModel.expected_date,
                ReceivingQueueEntryModel.po_number,
            )
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def order_ids(self) -> set[UUID]:
        return set(self.session.execute(
            select(ReceivingQueueEntryModel.order_id)
        ).scalars().all())
