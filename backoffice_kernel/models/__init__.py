"""ORM models.  Importing this package registers every table on Base.metadata."""

from backoffice_kernel.models.audit_log import AuditAction, AuditLogEntry
from backoffice_kernel.models.catalog import (
    Customer,
    Product,
    Supplier,
    Warehouse,
    WarehouseStatus,
)
from backoffice_kernel.models.document_sequence import DocumentSequence
from backoffice_kernel.models.invoice import Invoice, Payment, PaymentMethod
from backoffice_kernel.models.order import Order, OrderItem, OrderStatus
from backoffice_kernel.models.stock_movement import StockMovement

__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "Customer",
    "DocumentSequence",
    "Invoice",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentMethod",
    "Product",
    "StockMovement",
    "Supplier",
    "Warehouse",
    "WarehouseStatus",
]
