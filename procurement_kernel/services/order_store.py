"""
SqlOrderStore -- reference ``OrderStore`` backed by SQLAlchemy.

Responsibility:
    Load, insert and compare-and-swap update purchase orders.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - ``save`` writes only when the stored version equals
      ``expected_version`` and bumps it by one.  A lost race raises
      ``ConcurrentModificationError``; nothing is written.
    - Reads bypass the identity map so a retried unit of work always sees
      freshly committed state.

Failure modes:
    - OrderNotFoundError for unknown ids.
    - ConcurrentModificationError on version mismatch.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.purchase_order import OrderQuery, PurchaseOrder
from procurement_kernel.exceptions import (
    ConcurrentModificationError,
    OrderNotFoundError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.purchase_order import (
    PurchaseOrderLineModel,
    PurchaseOrderModel,
)
from procurement_kernel.services.base import BaseStore

logger = get_logger("services.order_store")


class SqlOrderStore(BaseStore):
    """Authoritative purchase order storage."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _load(self, order_id: UUID) -> PurchaseOrderModel | None:
        return self.session.execute(
            select(PurchaseOrderModel)
            .where(PurchaseOrderModel.order_id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get(self, order_id: UUID) -> PurchaseOrder:
        model = self._load(order_id)
        if model is None:
            raise OrderNotFoundError(str(order_id))
        return model.to_dto()

    def exists(self, order_id: UUID) -> bool:
        return self.session.execute(
            select(PurchaseOrderModel.id).where(PurchaseOrderModel.order_id == order_id)
        ).first() is not None

    def add(self, order: PurchaseOrder) -> PurchaseOrder:
        """Insert a new order (version 1)."""
        now = self._clock.now()
        model = PurchaseOrderModel.from_dto(order.with_changes(version=1), now)
        self.session.add(model)
        self.session.flush()
        logger.debug(
            "order_inserted",
            extra={"order_id": str(order.order_id), "po_number": order.po_number},
        )
        return model.to_dto()

    def save(self, order: PurchaseOrder, expected_version: int) -> PurchaseOrder:
        """Compare-and-swap write of the order header and received quantities."""
        updated_at = order.updated_at or self._clock.now()
        new_version = expected_version + 1

        result = self.session.execute(
            update(PurchaseOrderModel)
            .where(
                PurchaseOrderModel.order_id == order.order_id,
                PurchaseOrderModel.version == expected_version,
            )
            .values(
                status=order.status.value,
                supplier_id=order.supplier_id,
                supplier_name=order.supplier_name,
                tax_amount=order.tax_amount,
                department=order.department,
                supplier_category=order.supplier_category,
                payment_terms=order.payment_terms,
                expected_date=order.expected_date,
                approved_by=order.approved_by,
                approved_at=order.approved_at,
                receipt_count=order.receipt_count,
                updated_at=updated_at,
                version=new_version,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if not self.exists(order.order_id):
                raise OrderNotFoundError(str(order.order_id))
            logger.info(
                "order_version_conflict",
                extra={
                    "order_id": str(order.order_id),
                    "expected_version": expected_version,
                },
            )
            raise ConcurrentModificationError(
                "PurchaseOrder", str(order.order_id), expected_version,
            )

        for line in order.lines:
            self.session.execute(
                update(PurchaseOrderLineModel)
                .where(PurchaseOrderLineModel.line_id == line.line_id)
                .values(received_quantity=line.received_quantity)
                .execution_options(synchronize_session=False)
            )

        self.session.flush()
        # Core UPDATEs bypass the identity map
        self.session.expire_all()
        return order.with_changes(version=new_version, updated_at=updated_at)

    def query(self, query: OrderQuery | None = None) -> list[PurchaseOrder]:
        query = query or OrderQuery()
        stmt = select(PurchaseOrderModel).execution_options(populate_existing=True)
        if query.statuses is not None:
            stmt = stmt.where(
                PurchaseOrderModel.status.in_([s.value for s in query.statuses])
            )
        if query.supplier_id is not None:
            stmt = stmt.where(PurchaseOrderModel.supplier_id == query.supplier_id)
        if query.order_ids is not None:
            stmt = stmt.where(PurchaseOrderModel.order_id.in_(list(query.order_ids)))
        stmt = stmt.order_by(PurchaseOrderModel.created_at, PurchaseOrderModel.po_number)
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        return [model.to_dto() for model in self.session.execute(stmt).scalars()]
