"""
Tests for InvoiceReconciler.

paid_amount must always equal the sum of the invoice's payments and the
status must follow the derived-status table after every change.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from backoffice_kernel.domain.invoice_status import InvoiceStatus
from backoffice_kernel.domain.values import Money
from backoffice_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidCurrencyError,
    InvalidPaymentError,
    InvalidStateError,
    InvalidStatusTransitionError,
    InvoiceCancelledError,
    InvoiceNotFoundError,
    PaymentExceedsBalanceError,
    PaymentNotFoundError,
)
from backoffice_kernel.models.audit_log import AuditAction
from backoffice_kernel.models.invoice import Payment, PaymentMethod


def payment_sum(session, invoice_id) -> Money:
    rows = session.execute(select(Payment.amount).where(Payment.invoice_id == invoice_id)).scalars()
    total = Money.zero()
    for amount in rows:
        total = total + amount
    return total


def payment_count(session, tenant_id) -> int:
    return session.execute(
        select(func.count()).select_from(Payment).where(Payment.tenant_id == tenant_id)
    ).scalar_one()


@pytest.fixture
def invoice(make_invoice):
    return make_invoice("1000.00")


class TestApplyPayment:
    def test_partial_then_full_then_rejected(self, session, reconciler, invoice, tenant_id):
        first = reconciler.apply_payment(tenant_id, invoice.id, Money("400.00"), PaymentMethod.BANK_TRANSFER)
        assert first.paid_amount == Money("400.00")
        assert first.status == InvoiceStatus.PARTIALLY_PAID
        assert first.remaining_amount == Money("600.00")

        second = reconciler.apply_payment(tenant_id, invoice.id, Money("600.00"), "CASH")
        assert second.paid_amount == Money("1000.00")
        assert second.status == InvoiceStatus.PAID

        with pytest.raises(PaymentExceedsBalanceError):
            reconciler.apply_payment(tenant_id, invoice.id, Money("0.01"), "CASH")

        session.refresh(invoice)
        assert invoice.paid_amount == Money("1000.00")
        assert invoice.status == InvoiceStatus.PAID
        assert payment_sum(session, invoice.id) == invoice.paid_amount
        assert payment_count(session, tenant_id) == 2

    def test_payment_row_fields(self, session, reconciler, invoice, tenant_id, test_actor_id, deterministic_clock):
        result = reconciler.apply_payment(
            tenant_id, invoice.id, Money("10.50"), "CARD",
            payment_date=date(2024, 12, 30), actor_id=test_actor_id,
            reference="TX-1", notes="first instalment",
        )
        payment = session.get(Payment, result.payment_id)
        assert payment.invoice_id == invoice.id
        assert payment.amount == Money("10.50")
        assert payment.currency == "RUB"
        assert payment.payment_method == PaymentMethod.CARD
        assert payment.payment_date == date(2024, 12, 30)
        assert payment.reference == "TX-1"
        assert payment.created_at == deterministic_clock.now()
        assert payment.created_by == test_actor_id

    def test_payment_date_defaults_to_today(self, session, reconciler, invoice, tenant_id):
        result = reconciler.apply_payment(tenant_id, invoice.id, Money("1"), "CASH")
        assert session.get(Payment, result.payment_id).payment_date == date(2025, 1, 1)

    def test_exceeds_balance_details(self, session, reconciler, invoice, tenant_id, captured_logs):
        reconciler.apply_payment(tenant_id, invoice.id, Money("900.00"), "CASH")
        with pytest.raises(PaymentExceedsBalanceError) as exc_info:
            reconciler.apply_payment(tenant_id, invoice.id, Money("100.01"), "CASH")

        error = exc_info.value
        assert error.code == "PAYMENT_EXCEEDS_BALANCE"
        assert error.total_amount == Decimal("1000.00")
        assert error.paid_amount == Decimal("900.00")
        assert error.payment_amount == Decimal("100.01")
        assert error.remaining == Decimal("100.00")
        assert payment_count(session, tenant_id) == 1
        assert any(r["message"] == "payment_rejected_exceeds_balance" for r in captured_logs())

    @pytest.mark.parametrize("amount", [Money("0"), Money("-1.00"), 12.5, "abc"])
    def test_invalid_amount(self, session, reconciler, invoice, tenant_id, amount):
        with pytest.raises(InvalidPaymentError):
            reconciler.apply_payment(tenant_id, invoice.id, amount, "CASH")
        assert payment_count(session, tenant_id) == 0

    def test_unknown_payment_method(self, reconciler, invoice, tenant_id):
        with pytest.raises(ValueError):
            reconciler.apply_payment(tenant_id, invoice.id, Money("1"), "BARTER")

    def test_draft_rejected(self, reconciler, make_invoice, tenant_id):
        draft = make_invoice("100.00", status=InvoiceStatus.DRAFT)
        with pytest.raises(InvalidStateError) as exc_info:
            reconciler.apply_payment(tenant_id, draft.id, Money("1"), "CASH")
        assert exc_info.value.state == "DRAFT"

    def test_cancelled_rejected(self, reconciler, invoice, tenant_id):
        reconciler.cancel(tenant_id, invoice.id)
        with pytest.raises(InvoiceCancelledError):
            reconciler.apply_payment(tenant_id, invoice.id, Money("1"), "CASH")

    def test_currency_mismatch(self, session, reconciler, invoice, tenant_id):
        with pytest.raises(CurrencyMismatchError) as exc_info:
            reconciler.apply_payment(tenant_id, invoice.id, Money("1"), "CASH", currency="USD")
        assert exc_info.value.expected == "RUB"
        assert exc_info.value.received == "USD"
        assert payment_count(session, tenant_id) == 0

    def test_lowercase_currency_accepted(self, reconciler, invoice, tenant_id):
        result = reconciler.apply_payment(tenant_id, invoice.id, Money("1"), "CASH", currency="rub")
        assert result.paid_amount == Money("1")

    def test_invalid_currency(self, reconciler, invoice, tenant_id):
        with pytest.raises(InvalidCurrencyError):
            reconciler.apply_payment(tenant_id, invoice.id, Money("1"), "CASH", currency="XXQ")

    def test_missing_invoice(self, reconciler, tenant_id):
        with pytest.raises(InvoiceNotFoundError):
            reconciler.apply_payment(tenant_id, uuid4(), Money("1"), "CASH")

    def test_other_tenant_cannot_pay(self, reconciler, invoice, other_tenant_id):
        with pytest.raises(InvoiceNotFoundError):
            reconciler.apply_payment(other_tenant_id, invoice.id, Money("1"), "CASH")

    def test_audit_and_notification(self, reconciler, invoice, tenant_id, audit_sink, notification_queue):
        notification_queue.discard()
        result = reconciler.apply_payment(tenant_id, invoice.id, Money("250.00"), "CASH")

        [payment_record] = audit_sink.for_entity("Payment")
        assert payment_record.action == AuditAction.CREATE
        assert Decimal(payment_record.new_values["amount"]) == Decimal("250.00")

        invoice_updates = [r for r in audit_sink.for_entity("Invoice") if r.action == AuditAction.UPDATE]
        [update] = invoice_updates
        assert Decimal(update.old_values["paid_amount"]) == 0
        assert Decimal(update.new_values["paid_amount"]) == Decimal("250.00")
        assert update.new_values["status"] == "PARTIALLY_PAID"

        [pending] = notification_queue.pending
        assert pending.method == "notify_payment_received"
        assert pending.kwargs["payment_id"] == result.payment_id
        assert pending.kwargs["amount"] == "250.00"

    def test_zero_total_invoice_cannot_take_payment(self, reconciler, make_invoice, tenant_id):
        empty = make_invoice("0")
        assert empty.status == InvoiceStatus.PAID
        with pytest.raises(PaymentExceedsBalanceError):
            reconciler.apply_payment(tenant_id, empty.id, Money("0.01"), "CASH")


class TestOverdue:
    def test_overdue_survives_settlement_and_reversal(self, reconciler, invoice, tenant_id):
        reconciler.mark_overdue(tenant_id, invoice.id)

        partial = reconciler.apply_payment(tenant_id, invoice.id, Money("300.00"), "CASH")
        assert partial.status == InvoiceStatus.OVERDUE

        paid = reconciler.apply_payment(tenant_id, invoice.id, Money("700.00"), "CASH")
        assert paid.status == InvoiceStatus.OVERDUE
        assert paid.paid_amount == Money("1000.00")

        reversed_ = reconciler.reverse_payment(tenant_id, paid.payment_id)
        assert reversed_.status == InvoiceStatus.OVERDUE
        assert reversed_.paid_amount == Money("300.00")

    def test_clear_overdue_on_settled_invoice(self, reconciler, invoice, tenant_id):
        reconciler.mark_overdue(tenant_id, invoice.id)
        reconciler.apply_payment(tenant_id, invoice.id, Money("1000.00"), "CASH")
        assert reconciler.clear_overdue(tenant_id, invoice.id).status == InvoiceStatus.PAID

    def test_reversal_keeps_overdue(self, reconciler, invoice, tenant_id):
        first = reconciler.apply_payment(tenant_id, invoice.id, Money("300.00"), "CASH")
        reconciler.mark_overdue(tenant_id, invoice.id)
        result = reconciler.reverse_payment(tenant_id, first.payment_id)
        assert result.status == InvoiceStatus.OVERDUE
        assert result.paid_amount == Money("0")

    def test_clear_overdue(self, reconciler, invoice, tenant_id):
        reconciler.apply_payment(tenant_id, invoice.id, Money("1.00"), "CASH")
        reconciler.mark_overdue(tenant_id, invoice.id)
        cleared = reconciler.clear_overdue(tenant_id, invoice.id)
        assert cleared.status == InvoiceStatus.PARTIALLY_PAID

    def test_clear_overdue_unpaid(self, reconciler, invoice, tenant_id):
        reconciler.mark_overdue(tenant_id, invoice.id)
        assert reconciler.clear_overdue(tenant_id, invoice.id).status == InvoiceStatus.ISSUED

    def test_clear_requires_overdue(self, reconciler, invoice, tenant_id):
        with pytest.raises(InvalidStatusTransitionError):
            reconciler.clear_overdue(tenant_id, invoice.id)

    def test_mark_overdue_requires_issued(self, reconciler, make_invoice, tenant_id):
        draft = make_invoice("10.00", status=InvoiceStatus.DRAFT)
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            reconciler.mark_overdue(tenant_id, draft.id)
        assert exc_info.value.from_status == "DRAFT"
        assert exc_info.value.to_status == "OVERDUE"

    def test_paid_cannot_become_overdue(self, reconciler, invoice, tenant_id):
        reconciler.apply_payment(tenant_id, invoice.id, Money("1000.00"), "CASH")
        with pytest.raises(InvalidStatusTransitionError):
            reconciler.mark_overdue(tenant_id, invoice.id)


class TestReversePayment:
    def test_round_trip(self, session, reconciler, invoice, tenant_id):
        before = reconciler.apply_payment(tenant_id, invoice.id, Money("100.00"), "CASH")
        applied = reconciler.apply_payment(tenant_id, invoice.id, Money("250.00"), "CASH")
        result = reconciler.reverse_payment(tenant_id, applied.payment_id)

        assert result.paid_amount == before.paid_amount
        assert result.status == before.status
        assert session.get(Payment, applied.payment_id) is None
        session.refresh(invoice)
        assert payment_sum(session, invoice.id) == invoice.paid_amount

    def test_reverse_to_zero(self, reconciler, invoice, tenant_id):
        applied = reconciler.apply_payment(tenant_id, invoice.id, Money("1000.00"), "CASH")
        result = reconciler.reverse_payment(tenant_id, applied.payment_id)
        assert result.status == InvoiceStatus.ISSUED
        assert result.paid_amount.is_zero

    def test_audit(self, reconciler, invoice, tenant_id, audit_sink, test_actor_id):
        applied = reconciler.apply_payment(tenant_id, invoice.id, Money("5.00"), "CASH")
        reconciler.reverse_payment(tenant_id, applied.payment_id, actor_id=test_actor_id)

        deletes = [r for r in audit_sink.for_entity("Payment") if r.action == AuditAction.DELETE]
        [delete] = deletes
        assert delete.entity_id == applied.payment_id
        assert Decimal(delete.old_values["amount"]) == Decimal("5.00")
        assert delete.new_values is None
        assert delete.user_id == test_actor_id

    def test_missing_payment(self, reconciler, tenant_id):
        with pytest.raises(PaymentNotFoundError):
            reconciler.reverse_payment(tenant_id, uuid4())

    def test_twice(self, reconciler, invoice, tenant_id):
        applied = reconciler.apply_payment(tenant_id, invoice.id, Money("5.00"), "CASH")
        reconciler.reverse_payment(tenant_id, applied.payment_id)
        with pytest.raises(PaymentNotFoundError):
            reconciler.reverse_payment(tenant_id, applied.payment_id)

    def test_other_tenant(self, reconciler, invoice, tenant_id, other_tenant_id):
        applied = reconciler.apply_payment(tenant_id, invoice.id, Money("5.00"), "CASH")
        with pytest.raises(PaymentNotFoundError):
            reconciler.reverse_payment(other_tenant_id, applied.payment_id)


class TestUnlinkedPayments:
    def test_record_and_reverse(self, session, reconciler, tenant_id, audit_sink):
        payment = reconciler.record_unlinked_payment(tenant_id, Money("75.00"), "eur", "ELECTRONIC")
        assert payment.invoice_id is None
        assert payment.currency == "EUR"
        assert audit_sink.for_entity("Payment")[0].action == AuditAction.CREATE

        assert reconciler.reverse_payment(tenant_id, payment.id) is None
        assert session.get(Payment, payment.id) is None
        assert audit_sink.for_entity("Payment")[-1].action == AuditAction.DELETE

    def test_rejects_non_positive(self, reconciler, tenant_id):
        with pytest.raises(InvalidPaymentError):
            reconciler.record_unlinked_payment(tenant_id, Money("0"), "RUB", "CASH")


class TestStatusEdits:
    def test_issue(self, reconciler, make_invoice, tenant_id, notification_queue, deterministic_clock):
        draft = make_invoice("10.00", status=InvoiceStatus.DRAFT)
        assert draft.issued_date is None

        deterministic_clock.advance(86_400)
        issued = reconciler.issue(tenant_id, draft.id)
        assert issued.status == InvoiceStatus.ISSUED
        assert issued.issued_date == date(2025, 1, 2)

        [pending] = notification_queue.pending
        assert pending.method == "notify_invoice_issued"
        assert pending.kwargs["invoice_number"] == issued.invoice_number

    def test_issue_zero_total_lands_in_paid(self, reconciler, make_invoice, tenant_id, notification_queue):
        draft = make_invoice("0", status=InvoiceStatus.DRAFT)
        issued = reconciler.issue(tenant_id, draft.id)
        assert issued.status == InvoiceStatus.PAID
        assert issued.issued_date is not None
        [pending] = notification_queue.pending
        assert pending.method == "notify_invoice_issued"

    def test_issue_only_once(self, reconciler, invoice, tenant_id):
        with pytest.raises(InvalidStatusTransitionError):
            reconciler.issue(tenant_id, invoice.id)

    def test_cancel(self, reconciler, invoice, tenant_id, audit_sink):
        cancelled = reconciler.cancel(tenant_id, invoice.id)
        assert cancelled.status == InvoiceStatus.CANCELLED
        update = audit_sink.for_entity("Invoice")[-1]
        assert update.old_values["status"] == "ISSUED"
        assert update.new_values["status"] == "CANCELLED"

    def test_cancel_draft(self, reconciler, make_invoice, tenant_id):
        draft = make_invoice("10.00", status=InvoiceStatus.DRAFT)
        assert reconciler.cancel(tenant_id, draft.id).status == InvoiceStatus.CANCELLED

    def test_cancel_refused_with_payments(self, reconciler, invoice, tenant_id):
        reconciler.apply_payment(tenant_id, invoice.id, Money("1.00"), "CASH")
        with pytest.raises(InvalidStateError, match="applied payments"):
            reconciler.cancel(tenant_id, invoice.id)

    def test_cancelled_is_terminal(self, reconciler, invoice, tenant_id):
        reconciler.cancel(tenant_id, invoice.id)
        for operation in (reconciler.cancel, reconciler.issue, reconciler.mark_overdue, reconciler.clear_overdue):
            with pytest.raises(InvoiceCancelledError):
                operation(tenant_id, invoice.id)
