"""
Module: backoffice_kernel.models.invoice
Responsibility: ORM persistence for invoices and the payments applied to
    them.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - invoice_number is unique per tenant (uq_invoice_tenant_number).
    - 0 <= paid_amount <= total_amount, and paid_amount equals the sum of
      linked payment amounts at every committed state.  Maintained by
      InvoiceReconciler under a row lock on the invoice.  On PostgreSQL the
      ck_invoice_* CHECK constraints back up the bounds and
      ck_payment_amount_positive rejects non-positive payments.
    - Payment rows are never updated (ORM listener).  They are deleted only
      by InvoiceReconciler.reverse_payment together with the invoice update.

Failure modes:
    - IntegrityError on duplicate invoice number or violated constraint.
    - ImmutabilityViolationError on any UPDATE of a Payment.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import TrackedBase, UTCDateTime, UUIDString, str_enum
from backoffice_kernel.domain.invoice_status import InvoiceStatus
from backoffice_kernel.domain.values import Money


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    CARD = "CARD"
    ELECTRONIC = "ELECTRONIC"
    OTHER = "OTHER"


class Invoice(TrackedBase):
    """
    Aggregate root for paid_amount and status.

    Contract:
        Mutated only by InvoiceReconciler (payments, status edits) and
        InvoiceService (creation/deletion) inside one transaction that holds
        the invoice row lock.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_invoice_tenant_number"),
        Index("idx_invoice_status", "tenant_id", "status"),
        Index("idx_invoice_order", "order_id"),
        # Money is a string column outside PostgreSQL, so the checks only exist there
        CheckConstraint("total_amount >= 0", name="ck_invoice_total_non_negative").ddl_if(dialect="postgresql"),
        CheckConstraint("paid_amount >= 0", name="ck_invoice_paid_non_negative").ddl_if(dialect="postgresql"),
        CheckConstraint("paid_amount <= total_amount", name="ck_invoice_paid_within_total").ddl_if(dialect="postgresql"),
    )

    order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=True
    )

    invoice_number: Mapped[str] = mapped_column(String(32), nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        str_enum(InvoiceStatus, length=16),
        default=InvoiceStatus.DRAFT,
        nullable=False,
    )

    total_amount: Mapped[Money] = mapped_column(nullable=False)

    # VAT contained in total_amount
    tax_amount: Mapped[Money] = mapped_column(nullable=False)

    paid_amount: Mapped[Money] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    issued_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def remaining_amount(self) -> Money:
        return self.total_amount - self.paid_amount

    def __repr__(self) -> str:
        return (
            f"<Invoice {self.invoice_number} {self.status.value} "
            f"{self.paid_amount}/{self.total_amount} {self.currency}>"
        )


class Payment(TrackedBase):
    """A payment received.  Linked to at most one invoice; immutable."""

    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payment_invoice", "invoice_id"),
        CheckConstraint("amount > 0", name="ck_payment_amount_positive").ddl_if(dialect="postgresql"),
    )

    invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=True
    )

    amount: Mapped[Money] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    payment_method: Mapped[PaymentMethod] = mapped_column(
        str_enum(PaymentMethod, length=16),
        nullable=False,
    )

    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Payment {self.amount} {self.currency} -> {self.invoice_id}>"
