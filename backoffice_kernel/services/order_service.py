"""
OrderService -- order creation with allocated numbers and exact totals.

Responsibility:
    Validates order input against the record store, allocates the ORD
    number, computes unrounded line totals and the once-rounded order
    total, persists the order with its lines and audits the creation.

Architecture position:
    Kernel > Services.  Called by AccountingCore.

Invariants enforced:
    - order_number comes from SequenceAllocator (never max+1).
    - total_amount == round_currency(sum of unrounded line totals).

Failure modes:
    - InvalidOrderError for an empty order or invalid line values.
    - RecordNotFoundError for an unknown product, customer or supplier.
    - InvalidCurrencyError for a bad currency code.
"""

from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from backoffice_kernel.db.types import validate_currency
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.pricing import LineItemSpec, document_total, line_total
from backoffice_kernel.domain.sequences import DocumentKind
from backoffice_kernel.exceptions import InvalidOrderError, MoneyArithmeticError
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit_log import AuditAction
from backoffice_kernel.models.catalog import Customer, Product, Supplier
from backoffice_kernel.models.order import Order, OrderItem, OrderStatus
from backoffice_kernel.services.audit_sink import AuditRecord, AuditSink, snapshot
from backoffice_kernel.services.base import BaseService
from backoffice_kernel.services.record_store import SqlRecordStore
from backoffice_kernel.services.sequence_allocator import SequenceAllocator

logger = get_logger("services.order")


def _line_spec(item) -> LineItemSpec:
    if isinstance(item, LineItemSpec):
        return item
    try:
        return LineItemSpec(**item)
    except (TypeError, ValueError, MoneyArithmeticError) as exc:
        raise InvalidOrderError(f"invalid line item {item!r}: {exc}") from exc


class OrderService(BaseService):
    def __init__(
        self,
        session: Session,
        sequences: SequenceAllocator,
        store: SqlRecordStore,
        audit_sink: AuditSink,
        clock: Clock | None = None,
        default_currency: str = "RUB",
    ):
        super().__init__(session)
        self._sequences = sequences
        self._store = store
        self._audit = audit_sink
        self._clock = clock or SystemClock()
        self._default_currency = default_currency

    def create_order(
        self,
        tenant_id: UUID,
        items: list,
        actor_id: UUID | None = None,
        currency: str | None = None,
        customer_id: UUID | None = None,
        supplier_id: UUID | None = None,
        status: OrderStatus | str = OrderStatus.DRAFT,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> Order:
        """
        Create an order.  ``items`` are LineItemSpec instances or dicts
        with product_id, quantity, price and optional tax_rate.
        """
        if not items:
            raise InvalidOrderError("order must have at least one line item")
        specs = [_line_spec(item) for item in items]
        order_currency = validate_currency(currency or self._default_currency)

        for spec in specs:
            self._store.get(Product, tenant_id, spec.product_id)
        if customer_id is not None:
            self._store.get(Customer, tenant_id, customer_id)
        if supplier_id is not None:
            self._store.get(Supplier, tenant_id, supplier_id)

        totals = [line_total(s.quantity, s.price, s.tax_rate) for s in specs]

        now = self._clock.now()
        order_number = self._sequences.next_number(tenant_id, DocumentKind.ORDER, now.year)

        order = Order(
            tenant_id=tenant_id,
            order_number=order_number,
            status=OrderStatus(status),
            customer_id=customer_id,
            supplier_id=supplier_id,
            currency=order_currency,
            total_amount=document_total(totals),
            due_date=due_date,
            notes=notes,
            created_at=now,
            created_by=actor_id,
        )
        self.session.add(order)
        self.session.flush()

        lines = [
            OrderItem(
                tenant_id=tenant_id,
                order_id=order.id,
                product_id=spec.product_id,
                quantity=spec.quantity,
                price=spec.price,
                tax_rate=spec.tax_rate,
                total=total,
            )
            for spec, total in zip(specs, totals)
        ]
        self.session.add_all(lines)
        self.session.flush()

        new_values = snapshot(order)
        new_values["items"] = [snapshot(line, exclude=("tenant_id", "order_id")) for line in lines]
        self._audit.record(AuditRecord(
            tenant_id=tenant_id,
            user_id=actor_id,
            action=AuditAction.CREATE,
            entity_type="Order",
            entity_id=order.id,
            new_values=new_values,
        ))

        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "order_number": order_number,
                "total_amount": str(order.total_amount),
                "line_count": len(lines),
            },
        )
        return order
