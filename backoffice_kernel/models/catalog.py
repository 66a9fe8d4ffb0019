"""
Module: backoffice_kernel.models.catalog
Responsibility: Reference records the core resolves foreign keys against:
    warehouses, products, customers and suppliers.  Their CRUD belongs to
    the surrounding back office; the kernel reads them through the record
    store.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Warehouse lifecycle is an explicit status (ACTIVE -> ARCHIVED), not a
      boolean flag.  Archived warehouses accept no new movements.
    - Product.is_service marks non-trackable items; the stock ledger
      rejects movements for them.
"""

from enum import Enum

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import Base, TenantScoped, str_enum


class WarehouseStatus(str, Enum):
    """Warehouse lifecycle.  ARCHIVED is terminal for stock operations."""

    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class Warehouse(TenantScoped, Base):
    __tablename__ = "warehouses"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[WarehouseStatus] = mapped_column(
        str_enum(WarehouseStatus, length=16),
        default=WarehouseStatus.ACTIVE,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Warehouse {self.name} {self.status.value}>"


class Product(TenantScoped, Base):
    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_product_tenant_sku"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    sku: Mapped[str | None] = mapped_column(String(64), nullable=True)

    unit: Mapped[str] = mapped_column(String(16), default="pcs", nullable=False)

    # Services are sold but never stocked
    is_service: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Product {self.sku or self.name}>"


class Customer(TenantScoped, Base):
    __tablename__ = "customers"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    email: Mapped[str | None] = mapped_column(String(254), nullable=True)

    tax_id: Mapped[str | None] = mapped_column(String(32), nullable=True)


class Supplier(TenantScoped, Base):
    __tablename__ = "suppliers"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    email: Mapped[str | None] = mapped_column(String(254), nullable=True)

    tax_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
