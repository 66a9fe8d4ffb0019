"""
Module: backoffice_kernel.models.stock_movement
Responsibility: ORM persistence for the append-only stock ledger.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - quantity > 0; the effect on a balance is determined by movement_type
      alone (validated by StockLedger before insert, and by
      ck_stock_movement_quantity_positive on PostgreSQL).
    - Rows are never updated or deleted (db/immutability.py).  Corrections
      are new ADJUSTMENT movements.
    - (created_at, id) is the fold order within a (warehouse, product) key.
"""

from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import TrackedBase, UUIDString, str_enum
from backoffice_kernel.domain.stock import MovementType
from backoffice_kernel.domain.values import Money


class StockMovement(TrackedBase):
    __tablename__ = "stock_movements"

    __table_args__ = (
        Index(
            "idx_stock_movement_key",
            "tenant_id", "warehouse_id", "product_id", "created_at",
        ),
        CheckConstraint("quantity > 0", name="ck_stock_movement_quantity_positive").ddl_if(dialect="postgresql"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )

    movement_type: Mapped[MovementType] = mapped_column(
        str_enum(MovementType, length=16),
        nullable=False,
    )

    quantity: Mapped[Money] = mapped_column(nullable=False)

    # Originating document, e.g. an order id with reference_type "ORDER"
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.movement_type.value} {self.quantity} "
            f"{self.warehouse_id}/{self.product_id}>"
        )
