"""
Module: backoffice_kernel.models.order
Responsibility: ORM persistence for sales/purchase orders and their lines.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - order_number is unique per tenant (uq_order_tenant_number) and is
      allocated by SequenceAllocator, never derived from existing rows.
    - OrderItem.total is the unrounded line total; Order.total_amount is
      the rounded sum of its items.
    - No ORM relationships: items are read with an explicit query.
"""

from datetime import date
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import Base, TenantScoped, TrackedBase, UUIDString, str_enum
from backoffice_kernel.domain.values import Money


class OrderStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Order(TrackedBase):
    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("tenant_id", "order_number", name="uq_order_tenant_number"),
    )

    order_number: Mapped[str] = mapped_column(String(32), nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        str_enum(OrderStatus, length=16),
        default=OrderStatus.DRAFT,
        nullable=False,
    )

    customer_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("customers.id"), nullable=True
    )

    supplier_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("suppliers.id"), nullable=True
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    total_amount: Mapped[Money] = mapped_column(nullable=False)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Order {self.order_number} {self.status.value} {self.total_amount}>"


class OrderItem(TenantScoped, Base):
    __tablename__ = "order_items"

    __table_args__ = (
        Index("idx_order_item_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )

    quantity: Mapped[Money] = mapped_column(nullable=False)

    price: Mapped[Money] = mapped_column(nullable=False)

    # Percentage, e.g. 20 for 20% VAT
    tax_rate: Mapped[Money] = mapped_column(nullable=False)

    # Unrounded: quantity * price * (1 + tax_rate / 100)
    total: Mapped[Money] = mapped_column(nullable=False)
