"""
Module: procurement_kernel.models.purchase_order
Responsibility: ORM persistence for purchase orders and their lines.

Architecture position: Kernel > Models.  May import from db/base.py only
    (domain types are imported lazily inside to_dto/from_dto).

Invariants enforced:
    - Status values limited by a DB check constraint.
    - ``version`` is the compare-and-swap token; SqlOrderStore only writes
      through ``UPDATE ... WHERE version = :expected``.
    - One row per (order_id, line_number).

Failure modes:
    - IntegrityError on duplicate order_id or po_number.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from procurement_kernel.domain.purchase_order import (
        PurchaseOrder,
        PurchaseOrderLine,
    )


class PurchaseOrderModel(Base):
    """Persistent purchase order header."""

    __tablename__ = "purchase_orders"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'pending_approval', 'approved', "
            "'sent_to_supplier', 'partially_received', 'fully_received', "
            "'cancelled', 'closed')",
            name="ck_purchase_orders_valid_status",
        ),
        Index("ix_purchase_orders_status", "status"),
        Index("ix_purchase_orders_supplier", "supplier_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    po_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    supplier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier_name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="draft")
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier_category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_terms: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expected_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    receipt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        "PurchaseOrderLineModel",
        back_populates="order",
        primaryjoin="PurchaseOrderModel.order_id == PurchaseOrderLineModel.order_id",
        order_by="PurchaseOrderLineModel.line_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.po_number} status={self.status} v{self.version}>"

    def to_dto(self) -> PurchaseOrder:
        """Convert ORM model to frozen domain DTO."""
        from procurement_kernel.domain.order_status import OrderStatus
        from procurement_kernel.domain.purchase_order import (
            PurchaseOrder as PurchaseOrderDTO,
        )

        return PurchaseOrderDTO(
            order_id=self.order_id,
            po_number=self.po_number,
            supplier_id=self.supplier_id,
            supplier_name=self.supplier_name,
            lines=tuple(line.to_dto() for line in self.lines),
            tax_amount=self.tax_amount,
            currency=self.currency,
            status=OrderStatus(self.status),
            department=self.department,
            supplier_category=self.supplier_category,
            payment_terms=self.payment_terms,
            expected_date=self.expected_date,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            created_by=self.created_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
            receipt_count=self.receipt_count,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: PurchaseOrder, now: datetime) -> PurchaseOrderModel:
        """Create ORM model (header and lines) from domain DTO."""
        model = cls(
            order_id=dto.order_id,
            po_number=dto.po_number,
            supplier_id=dto.supplier_id,
            supplier_name=dto.supplier_name,
            tax_amount=dto.tax_amount,
            currency=dto.currency,
            status=dto.status.value,
            department=dto.department,
            supplier_category=dto.supplier_category,
            payment_terms=dto.payment_terms,
            expected_date=dto.expected_date,
            approved_by=dto.approved_by,
            approved_at=dto.approved_at,
            created_by=dto.created_by,
            created_at=dto.created_at or now,
            updated_at=dto.updated_at or now,
            receipt_count=dto.receipt_count,
            version=dto.version,
        )
        model.lines = [
            PurchaseOrderLineModel.from_dto(line, dto.order_id) for line in dto.lines
        ]
        return model


class PurchaseOrderLineModel(Base):
    """Persistent purchase order line."""

    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint(
            "order_id", "line_number",
            name="uq_purchase_order_lines_number",
        ),
        Index("ix_purchase_order_lines_order_id", "order_id"),
    )

    line_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("purchase_orders.order_id"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ordered_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)

    order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="lines",
        foreign_keys=[order_id],
        primaryjoin="PurchaseOrderLineModel.order_id == PurchaseOrderModel.order_id",
    )

    def to_dto(self) -> PurchaseOrderLine:
        from procurement_kernel.domain.purchase_order import (
            PurchaseOrderLine as PurchaseOrderLineDTO,
        )

        return PurchaseOrderLineDTO(
            line_id=self.line_id,
            product_id=self.product_id,
            description=self.description,
            category=self.category,
            ordered_quantity=self.ordered_quantity,
            received_quantity=self.received_quantity,
            unit_cost=self.unit_cost,
            line_number=self.line_number,
        )

    @classmethod
    def from_dto(cls, dto: PurchaseOrderLine, order_id: UUID) -> PurchaseOrderLineModel:
        return cls(
            line_id=dto.line_id,
            order_id=order_id,
            line_number=dto.line_number,
            product_id=dto.product_id,
            description=dto.description,
            category=dto.category,
            ordered_quantity=dto.ordered_quantity,
            received_quantity=dto.received_quantity,
            unit_cost=dto.unit_cost,
        )
