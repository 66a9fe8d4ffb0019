"""
InvoiceService -- invoice creation and deletion.

Responsibility:
    Creates invoices (optionally seeded from an order's total and
    currency) with an allocated INV number and the VAT contained in the
    total, and deletes invoices that have no payments.

Architecture position:
    Kernel > Services.  Called by AccountingCore.  Payment application
    and status edits belong to InvoiceReconciler.

Invariants enforced:
    - invoice_number comes from SequenceAllocator.
    - paid_amount starts at zero; total_amount >= 0.
    - An invoice with payments is never deleted (paid_amount must stay
      reconcilable with its payments).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice_kernel.db.types import validate_currency
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.invoice_status import InvoiceStatus, status_ignoring_overdue
from backoffice_kernel.domain.pricing import included_tax
from backoffice_kernel.domain.sequences import DocumentKind
from backoffice_kernel.domain.values import Money
from backoffice_kernel.exceptions import (
    InvalidStateError,
    InvoiceHasPaymentsError,
    OrderNotFoundError,
    ValidationError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit_log import AuditAction
from backoffice_kernel.models.invoice import Invoice, Payment
from backoffice_kernel.models.order import Order
from backoffice_kernel.services.audit_sink import AuditRecord, AuditSink, snapshot
from backoffice_kernel.services.base import BaseService
from backoffice_kernel.services.invoice_reconciler import InvoiceReconciler
from backoffice_kernel.services.notifications import NotificationQueue
from backoffice_kernel.services.sequence_allocator import SequenceAllocator

logger = get_logger("services.invoice")

_CREATABLE_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.ISSUED})


class InvoiceService(BaseService):
    def __init__(
        self,
        session: Session,
        sequences: SequenceAllocator,
        reconciler: InvoiceReconciler,
        audit_sink: AuditSink,
        clock: Clock | None = None,
        notifications: NotificationQueue | None = None,
        default_currency: str = "RUB",
        default_tax_rate: Decimal = Decimal("20"),
    ):
        super().__init__(session)
        self._sequences = sequences
        self._reconciler = reconciler
        self._audit = audit_sink
        self._clock = clock or SystemClock()
        self._notifications = notifications if notifications is not None else NotificationQueue()
        self._default_currency = default_currency
        self._default_tax_rate = default_tax_rate

    def create_invoice(
        self,
        tenant_id: UUID,
        actor_id: UUID | None = None,
        order_id: UUID | None = None,
        total_amount: Money | None = None,
        currency: str | None = None,
        status: InvoiceStatus | str = InvoiceStatus.DRAFT,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> Invoice:
        """
        Create an invoice in DRAFT or ISSUED status.  A zero-total invoice
        created as ISSUED is already settled and lands in PAID.

        With ``order_id`` the order's total is copied (an explicit
        ``total_amount`` is then rejected); currency precedence is
        explicit > order > default.
        """
        initial = InvoiceStatus(status)
        if initial not in _CREATABLE_STATUSES:
            raise ValidationError(f"Invoices are created as DRAFT or ISSUED, not {initial.value}")

        order = None
        if order_id is not None:
            if total_amount is not None:
                raise ValidationError("total_amount cannot be given together with order_id")
            order = self.session.execute(
                select(Order).where(Order.id == order_id, Order.tenant_id == tenant_id)
            ).scalar_one_or_none()
            if order is None:
                raise OrderNotFoundError(str(order_id))
            total = order.total_amount
        else:
            total = Money.of(total_amount if total_amount is not None else 0)
        if total.is_negative:
            raise ValidationError(f"Invoice total must be non-negative, got {total}")
        total = total.round_currency()
        status_on_create = (
            status_ignoring_overdue(Money.zero(), total) if initial == InvoiceStatus.ISSUED else initial
        )

        invoice_currency = validate_currency(
            currency or (order.currency if order is not None else self._default_currency)
        )

        now = self._clock.now()
        invoice_number = self._sequences.next_number(tenant_id, DocumentKind.INVOICE, now.year)
        invoice = Invoice(
            tenant_id=tenant_id,
            order_id=order_id,
            invoice_number=invoice_number,
            status=status_on_create,
            total_amount=total,
            tax_amount=included_tax(total, self._default_tax_rate),
            paid_amount=Money.zero(),
            currency=invoice_currency,
            due_date=due_date,
            issued_date=now.date() if initial == InvoiceStatus.ISSUED else None,
            notes=notes,
            created_at=now,
            created_by=actor_id,
        )
        self.session.add(invoice)
        self.session.flush()

        self._audit.record(AuditRecord(
            tenant_id=tenant_id,
            user_id=actor_id,
            action=AuditAction.CREATE,
            entity_type="Invoice",
            entity_id=invoice.id,
            new_values=snapshot(invoice),
        ))
        if initial == InvoiceStatus.ISSUED:
            self._notifications.invoice_issued(tenant_id, invoice.id, invoice_number)

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice_number,
                "total_amount": str(total),
                "invoice_status": initial.value,
            },
        )
        return invoice

    def delete_invoice(self, tenant_id: UUID, invoice_id: UUID, actor_id: UUID | None = None) -> None:
        """Delete an invoice that has no payments.  Paid or cancelled history stays."""
        invoice = self._reconciler.lock_invoice(tenant_id, invoice_id)
        payment_count = self.session.execute(
            select(func.count()).select_from(Payment).where(Payment.invoice_id == invoice.id)
        ).scalar_one()
        if payment_count:
            raise InvoiceHasPaymentsError(str(invoice_id), invoice.status.value, payment_count)
        if not invoice.paid_amount.is_zero:
            raise InvalidStateError(
                str(invoice_id), invoice.status.value, "Invoice has a non-zero paid amount"
            )

        before = snapshot(invoice)
        self.session.delete(invoice)
        self.session.flush()
        self._audit.record(AuditRecord(
            tenant_id=tenant_id,
            user_id=actor_id,
            action=AuditAction.DELETE,
            entity_type="Invoice",
            entity_id=invoice_id,
            old_values=before,
        ))
        logger.info("invoice_deleted", extra={"invoice_id": str(invoice_id)})
