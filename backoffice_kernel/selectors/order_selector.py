"""
Module: backoffice_kernel.selectors.order_selector
Responsibility: Explicit read shape for an order and its line items.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select

from backoffice_kernel.domain.values import Money
from backoffice_kernel.exceptions import OrderNotFoundError
from backoffice_kernel.models.order import Order, OrderItem, OrderStatus
from backoffice_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class OrderItemView:
    id: UUID
    product_id: UUID
    quantity: Money
    price: Money
    tax_rate: Money
    total: Money


@dataclass(frozen=True)
class OrderView:
    id: UUID
    tenant_id: UUID
    order_number: str
    status: OrderStatus
    customer_id: UUID | None
    supplier_id: UUID | None
    currency: str
    total_amount: Money
    due_date: date | None
    created_at: datetime
    items: tuple[OrderItemView, ...]


class OrderSelector(BaseSelector):
    def get_order(self, tenant_id: UUID, order_id: UUID) -> OrderView:
        order = self.session.execute(
            select(Order).where(Order.id == order_id, Order.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(str(order_id))
        items = self.session.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order_id, OrderItem.tenant_id == tenant_id)
            .order_by(OrderItem.id)
        ).scalars()
        return OrderView(
            id=order.id,
            tenant_id=order.tenant_id,
            order_number=order.order_number,
            status=order.status,
            customer_id=order.customer_id,
            supplier_id=order.supplier_id,
            currency=order.currency,
            total_amount=order.total_amount,
            due_date=order.due_date,
            created_at=order.created_at,
            items=tuple(
                OrderItemView(
                    id=i.id,
                    product_id=i.product_id,
                    quantity=i.quantity,
                    price=i.price,
                    tax_rate=i.tax_rate,
                    total=i.total,
                )
                for i in items
            ),
        )
