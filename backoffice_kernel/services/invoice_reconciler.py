"""
InvoiceReconciler -- applies and reverses payments under an invoice lock.

Responsibility:
    Keeps Invoice.paid_amount equal to the sum of its payments and keeps
    Invoice.status consistent with the derived-status table, under any
    number of concurrent payment operations.  Also owns the explicit
    status edits: issue, cancel, mark_overdue, clear_overdue.

Architecture position:
    Kernel > Services.  Called by AccountingCore, which owns the
    transaction, timeout and post-commit notification dispatch.

Invariants enforced:
    - Linearization: every mutation first takes ``SELECT ... FOR UPDATE``
      on the invoice row and re-reads it (populate_existing), so two
      payments can never both read the same pre-update paid_amount.
    - 0 <= paid_amount <= total_amount after every operation.
    - Status follows domain/invoice_status.py; OVERDUE survives payment
      application and reversal until clear_overdue; CANCELLED is terminal.
    - Payment row, invoice update and audit records are one unit of work.
      Rejections raise before anything is written.

Failure modes:
    - InvoiceNotFoundError / PaymentNotFoundError for missing targets.
    - InvalidPaymentError for a non-positive amount.
    - CurrencyMismatchError when payment and invoice currencies differ.
    - PaymentExceedsBalanceError when paid + amount > total.
    - InvoiceCancelledError / InvalidStateError / InvalidStatusTransitionError
      for operations illegal in the current status.
"""

from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from backoffice_kernel.db.types import validate_currency
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.invoice_status import (
    PAYABLE_STATUSES,
    InvoiceStatus,
    derive_status,
    status_ignoring_overdue,
)
from backoffice_kernel.domain.values import Money
from backoffice_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidPaymentError,
    InvalidStateError,
    InvalidStatusTransitionError,
    InvoiceCancelledError,
    InvoiceNotFoundError,
    MoneyArithmeticError,
    PaymentExceedsBalanceError,
    PaymentNotFoundError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit_log import AuditAction
from backoffice_kernel.models.invoice import Invoice, Payment, PaymentMethod
from backoffice_kernel.services.audit_sink import AuditRecord, AuditSink, snapshot
from backoffice_kernel.services.base import BaseService
from backoffice_kernel.services.notifications import NotificationQueue

logger = get_logger("services.invoice_reconciler")


@dataclass(frozen=True)
class ReconciliationResult:
    """Invoice state after a payment was applied or reversed."""

    invoice_id: UUID
    payment_id: UUID
    paid_amount: Money
    total_amount: Money
    status: InvoiceStatus

    @property
    def remaining_amount(self) -> Money:
        return self.total_amount - self.paid_amount


class InvoiceReconciler(BaseService):
    """
    State machine over Invoice.status driven by paid_amount.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT retry on lock failures; ConcurrencyError propagates.
    """

    def __init__(
        self,
        session: Session,
        audit_sink: AuditSink,
        clock: Clock | None = None,
        notifications: NotificationQueue | None = None,
    ):
        super().__init__(session)
        self._audit = audit_sink
        self._clock = clock or SystemClock()
        self._notifications = notifications if notifications is not None else NotificationQueue()

    # -- locking ------------------------------------------------------------

    def lock_invoice(self, tenant_id: UUID, invoice_id: UUID) -> Invoice:
        """Lock and freshly load the invoice row."""
        invoice = self.session.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id, Invoice.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def _load_payment(self, tenant_id: UUID, payment_id: UUID) -> Payment:
        payment = self.session.execute(
            select(Payment)
            .where(Payment.id == payment_id, Payment.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    def _audit_invoice_update(self, invoice: Invoice, before: dict, actor_id: UUID | None) -> None:
        self._audit.record(AuditRecord(
            tenant_id=invoice.tenant_id,
            user_id=actor_id,
            action=AuditAction.UPDATE,
            entity_type="Invoice",
            entity_id=invoice.id,
            old_values=before,
            new_values=snapshot(invoice),
        ))

    # -- payments -----------------------------------------------------------

    def _validate_amount(self, amount) -> Money:
        try:
            value = Money.of(amount)
        except (TypeError, MoneyArithmeticError) as exc:
            raise InvalidPaymentError(f"invalid amount {amount!r}") from exc
        if not value.is_positive:
            raise InvalidPaymentError(f"amount must be positive, got {value}")
        return value

    def apply_payment(
        self,
        tenant_id: UUID,
        invoice_id: UUID,
        amount: Money,
        payment_method: PaymentMethod | str,
        payment_date: date | None = None,
        actor_id: UUID | None = None,
        currency: str | None = None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> ReconciliationResult:
        """
        Apply a payment to an invoice.

        Preconditions:
            - The caller is within an active database transaction.

        Postconditions:
            - A new Payment row exists, invoice.paid_amount increased by
              exactly ``amount`` and status re-derived.  Audit records for
              both rows are written and a payment_received notification is
              queued.
            - On any failure nothing was written.
        """
        value = self._validate_amount(amount)
        method = PaymentMethod(payment_method)

        invoice = self.lock_invoice(tenant_id, invoice_id)

        if invoice.status == InvoiceStatus.CANCELLED:
            raise InvoiceCancelledError(str(invoice_id))
        if invoice.status not in PAYABLE_STATUSES:
            raise InvalidStateError(
                str(invoice_id),
                invoice.status.value,
                "Payments can only be applied to issued invoices",
            )

        payment_currency = validate_currency(currency) if currency else invoice.currency
        if payment_currency != invoice.currency:
            raise CurrencyMismatchError(invoice.currency, payment_currency)

        new_paid = invoice.paid_amount + value
        if new_paid > invoice.total_amount:
            logger.info(
                "payment_rejected_exceeds_balance",
                extra={
                    "invoice_id": str(invoice_id),
                    "total_amount": str(invoice.total_amount),
                    "paid_amount": str(invoice.paid_amount),
                    "payment_amount": str(value),
                },
            )
            raise PaymentExceedsBalanceError(
                str(invoice_id),
                invoice.total_amount.amount,
                invoice.paid_amount.amount,
                value.amount,
            )

        before = snapshot(invoice)
        now = self._clock.now()
        payment = Payment(
            tenant_id=tenant_id,
            invoice_id=invoice.id,
            amount=value,
            currency=payment_currency,
            payment_method=method,
            payment_date=payment_date or now.date(),
            reference=reference,
            notes=notes,
            created_at=now,
            created_by=actor_id,
        )
        self.session.add(payment)

        invoice.paid_amount = new_paid
        invoice.status = derive_status(new_paid, invoice.total_amount, invoice.status)
        invoice.updated_at = now
        self.session.flush()

        self._audit.record(AuditRecord(
            tenant_id=tenant_id,
            user_id=actor_id,
            action=AuditAction.CREATE,
            entity_type="Payment",
            entity_id=payment.id,
            new_values=snapshot(payment),
        ))
        self._audit_invoice_update(invoice, before, actor_id)
        self._notifications.payment_received(tenant_id, invoice.id, payment.id, str(value))

        logger.info(
            "payment_applied",
            extra={
                "invoice_id": str(invoice.id),
                "payment_id": str(payment.id),
                "payment_amount": str(value),
                "paid_amount": str(invoice.paid_amount),
                "invoice_status": invoice.status.value,
            },
        )
        return ReconciliationResult(
            invoice_id=invoice.id,
            payment_id=payment.id,
            paid_amount=invoice.paid_amount,
            total_amount=invoice.total_amount,
            status=invoice.status,
        )

    def record_unlinked_payment(
        self,
        tenant_id: UUID,
        amount: Money,
        currency: str,
        payment_method: PaymentMethod | str,
        payment_date: date | None = None,
        actor_id: UUID | None = None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> Payment:
        """Record a payment that is not (yet) linked to any invoice."""
        value = self._validate_amount(amount)
        now = self._clock.now()
        payment = Payment(
            tenant_id=tenant_id,
            invoice_id=None,
            amount=value,
            currency=validate_currency(currency),
            payment_method=PaymentMethod(payment_method),
            payment_date=payment_date or now.date(),
            reference=reference,
            notes=notes,
            created_at=now,
            created_by=actor_id,
        )
        self.session.add(payment)
        self.session.flush()
        self._audit.record(AuditRecord(
            tenant_id=tenant_id,
            user_id=actor_id,
            action=AuditAction.CREATE,
            entity_type="Payment",
            entity_id=payment.id,
            new_values=snapshot(payment),
        ))
        logger.info("unlinked_payment_recorded", extra={"payment_id": str(payment.id)})
        return payment

    def reverse_payment(
        self,
        tenant_id: UUID,
        payment_id: UUID,
        actor_id: UUID | None = None,
    ) -> ReconciliationResult | None:
        """
        Delete a payment and take its amount back off the invoice.

        Returns None for an unlinked payment (nothing to reconcile).

        Postconditions:
            - The Payment row is gone, invoice.paid_amount decreased by its
              amount and status re-derived downward.
        """
        payment = self._load_payment(tenant_id, payment_id)
        if payment.invoice_id is None:
            before = snapshot(payment)
            self.session.delete(payment)
            self.session.flush()
            self._audit.record(AuditRecord(
                tenant_id=tenant_id,
                user_id=actor_id,
                action=AuditAction.DELETE,
                entity_type="Payment",
                entity_id=payment_id,
                old_values=before,
            ))
            logger.info("unlinked_payment_reversed", extra={"payment_id": str(payment_id)})
            return None

        invoice = self.lock_invoice(tenant_id, payment.invoice_id)
        # A concurrent reversal may have removed the row while we waited
        payment = self._load_payment(tenant_id, payment_id)

        if invoice.status == InvoiceStatus.CANCELLED:
            raise InvoiceCancelledError(str(invoice.id))

        new_paid = invoice.paid_amount - payment.amount
        if new_paid.is_negative:
            raise InvalidStateError(
                str(invoice.id),
                invoice.status.value,
                f"Reversing {payment.amount} would make paid amount negative",
            )

        before_invoice = snapshot(invoice)
        before_payment = snapshot(payment)

        self.session.delete(payment)
        invoice.paid_amount = new_paid
        invoice.status = derive_status(new_paid, invoice.total_amount, invoice.status)
        invoice.updated_at = self._clock.now()
        self.session.flush()

        self._audit.record(AuditRecord(
            tenant_id=tenant_id,
            user_id=actor_id,
            action=AuditAction.DELETE,
            entity_type="Payment",
            entity_id=payment_id,
            old_values=before_payment,
        ))
        self._audit_invoice_update(invoice, before_invoice, actor_id)

        logger.info(
            "payment_reversed",
            extra={
                "invoice_id": str(invoice.id),
                "payment_id": str(payment_id),
                "payment_amount": before_payment["amount"],
                "paid_amount": str(invoice.paid_amount),
                "invoice_status": invoice.status.value,
            },
        )
        return ReconciliationResult(
            invoice_id=invoice.id,
            payment_id=payment_id,
            paid_amount=invoice.paid_amount,
            total_amount=invoice.total_amount,
            status=invoice.status,
        )

    # -- explicit status edits ----------------------------------------------

    def _transition(
        self,
        tenant_id: UUID,
        invoice_id: UUID,
        target: InvoiceStatus,
        allowed_from: frozenset[InvoiceStatus],
    ) -> Invoice:
        invoice = self.lock_invoice(tenant_id, invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED:
            raise InvoiceCancelledError(str(invoice_id))
        if invoice.status not in allowed_from:
            raise InvalidStatusTransitionError(
                str(invoice_id), invoice.status.value, target.value
            )
        return invoice

    def issue(self, tenant_id: UUID, invoice_id: UUID, actor_id: UUID | None = None) -> Invoice:
        """
        DRAFT -> ISSUED, exactly once.  Stamps issued_date and queues a
        notification.  A zero-total invoice is settled on issue and lands
        in PAID.
        """
        invoice = self._transition(
            tenant_id, invoice_id, InvoiceStatus.ISSUED,
            frozenset({InvoiceStatus.DRAFT}),
        )
        before = snapshot(invoice)
        now = self._clock.now()
        invoice.status = status_ignoring_overdue(invoice.paid_amount, invoice.total_amount)
        invoice.issued_date = now.date()
        invoice.updated_at = now
        self.session.flush()
        self._audit_invoice_update(invoice, before, actor_id)
        self._notifications.invoice_issued(tenant_id, invoice.id, invoice.invoice_number)
        logger.info("invoice_issued", extra={"invoice_id": str(invoice.id)})
        return invoice

    def cancel(self, tenant_id: UUID, invoice_id: UUID, actor_id: UUID | None = None) -> Invoice:
        """
        Move an invoice to CANCELLED.  Refused while payments are applied;
        reverse them first so paid_amount stays reconcilable.
        """
        invoice = self._transition(
            tenant_id, invoice_id, InvoiceStatus.CANCELLED,
            frozenset(InvoiceStatus) - {InvoiceStatus.CANCELLED},
        )
        if not invoice.paid_amount.is_zero:
            raise InvalidStateError(
                str(invoice_id),
                invoice.status.value,
                "Cannot cancel an invoice with applied payments",
            )
        before = snapshot(invoice)
        invoice.status = InvoiceStatus.CANCELLED
        invoice.updated_at = self._clock.now()
        self.session.flush()
        self._audit_invoice_update(invoice, before, actor_id)
        logger.info("invoice_cancelled", extra={"invoice_id": str(invoice.id)})
        return invoice

    def mark_overdue(self, tenant_id: UUID, invoice_id: UUID, actor_id: UUID | None = None) -> Invoice:
        invoice = self._transition(
            tenant_id, invoice_id, InvoiceStatus.OVERDUE,
            frozenset({InvoiceStatus.ISSUED, InvoiceStatus.PARTIALLY_PAID}),
        )
        before = snapshot(invoice)
        invoice.status = InvoiceStatus.OVERDUE
        invoice.updated_at = self._clock.now()
        self.session.flush()
        self._audit_invoice_update(invoice, before, actor_id)
        logger.info("invoice_marked_overdue", extra={"invoice_id": str(invoice.id)})
        return invoice

    def clear_overdue(self, tenant_id: UUID, invoice_id: UUID, actor_id: UUID | None = None) -> Invoice:
        """OVERDUE -> the status derived from paid_amount."""
        invoice = self.lock_invoice(tenant_id, invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED:
            raise InvoiceCancelledError(str(invoice_id))
        target = status_ignoring_overdue(invoice.paid_amount, invoice.total_amount)
        if invoice.status != InvoiceStatus.OVERDUE:
            raise InvalidStatusTransitionError(
                str(invoice_id), invoice.status.value, target.value
            )
        before = snapshot(invoice)
        invoice.status = target
        invoice.updated_at = self._clock.now()
        self.session.flush()
        self._audit_invoice_update(invoice, before, actor_id)
        logger.info(
            "invoice_overdue_cleared",
            extra={"invoice_id": str(invoice.id), "invoice_status": target.value},
        )
        return invoice
