"""
Module: backoffice_kernel.selectors.invoice_selector
Responsibility: Explicit read shapes for invoices and their payments, and
    the reconciliation drift check (paid_amount vs sum of payments).
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Two explicit queries (invoice, then payments); no relationship
      loading.
    - Money sums happen in Python so they are exact on every dialect.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select

from backoffice_kernel.domain.invoice_status import InvoiceStatus
from backoffice_kernel.domain.values import Money, money_sum
from backoffice_kernel.exceptions import InvoiceNotFoundError
from backoffice_kernel.models.invoice import Invoice, Payment, PaymentMethod
from backoffice_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class PaymentView:
    id: UUID
    invoice_id: UUID | None
    amount: Money
    currency: str
    payment_method: PaymentMethod
    payment_date: date
    reference: str | None
    created_at: datetime


@dataclass(frozen=True)
class InvoiceView:
    id: UUID
    tenant_id: UUID
    order_id: UUID | None
    invoice_number: str
    status: InvoiceStatus
    total_amount: Money
    tax_amount: Money
    paid_amount: Money
    currency: str
    due_date: date | None
    issued_date: date | None
    created_at: datetime
    payments: tuple[PaymentView, ...] = ()

    @property
    def remaining_amount(self) -> Money:
        return self.total_amount - self.paid_amount


@dataclass(frozen=True)
class ReconciliationDrift:
    """An invoice whose stored paid_amount disagrees with its payments."""

    invoice_id: UUID
    invoice_number: str
    paid_amount: Money
    payments_total: Money

    @property
    def difference(self) -> Money:
        return self.paid_amount - self.payments_total


def payment_view(p: Payment) -> PaymentView:
    return PaymentView(
        id=p.id,
        invoice_id=p.invoice_id,
        amount=p.amount,
        currency=p.currency,
        payment_method=p.payment_method,
        payment_date=p.payment_date,
        reference=p.reference,
        created_at=p.created_at,
    )


def invoice_view(inv: Invoice, payments: tuple[PaymentView, ...] = ()) -> InvoiceView:
    return InvoiceView(
        id=inv.id,
        tenant_id=inv.tenant_id,
        order_id=inv.order_id,
        invoice_number=inv.invoice_number,
        status=inv.status,
        total_amount=inv.total_amount,
        tax_amount=inv.tax_amount,
        paid_amount=inv.paid_amount,
        currency=inv.currency,
        due_date=inv.due_date,
        issued_date=inv.issued_date,
        created_at=inv.created_at,
        payments=payments,
    )


class InvoiceSelector(BaseSelector):
    def get_invoice(self, tenant_id: UUID, invoice_id: UUID) -> InvoiceView:
        """Invoice with its payments (oldest first)."""
        invoice = self.session.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id, Invoice.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        payments = self.session.execute(
            select(Payment)
            .where(Payment.invoice_id == invoice_id, Payment.tenant_id == tenant_id)
            .order_by(Payment.created_at, Payment.id)
        ).scalars()
        return invoice_view(invoice, tuple(payment_view(p) for p in payments))

    def list_invoices(
        self,
        tenant_id: UUID,
        status: InvoiceStatus | str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[InvoiceView]:
        """Invoices without payments, newest first."""
        stmt = select(Invoice).where(Invoice.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(Invoice.status == InvoiceStatus(status))
        stmt = stmt.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit).offset(offset)
        return [invoice_view(inv) for inv in self.session.execute(stmt).scalars()]

    def find_reconciliation_drift(self, tenant_id: UUID) -> list[ReconciliationDrift]:
        """
        Invoices whose paid_amount differs from the sum of their payments.

        Empty in a healthy database; anything returned means a write path
        bypassed InvoiceReconciler.
        """
        invoices = self.session.execute(
            select(Invoice.id, Invoice.invoice_number, Invoice.paid_amount)
            .where(Invoice.tenant_id == tenant_id)
        ).all()
        payment_rows = self.session.execute(
            select(Payment.invoice_id, Payment.amount)
            .where(Payment.tenant_id == tenant_id, Payment.invoice_id.is_not(None))
        ).all()

        amounts: dict[UUID, list[Money]] = defaultdict(list)
        for invoice_id, amount in payment_rows:
            amounts[invoice_id].append(amount)

        drift = []
        for invoice_id, number, paid in invoices:
            total = money_sum(amounts.get(invoice_id, ()))
            if total != paid:
                drift.append(ReconciliationDrift(invoice_id, number, paid, total))
        return sorted(drift, key=lambda d: d.invoice_number)
