"""
End-to-end tests through AccountingCore with real commits.

Each call is its own transaction; these tests check commit/rollback
boundaries, post-commit notifications and log context, on top of the
service-level behaviour covered elsewhere.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from backoffice_kernel.config import KernelSettings
from backoffice_kernel.domain.invoice_status import InvoiceStatus
from backoffice_kernel.domain.sequences import DocumentKind
from backoffice_kernel.domain.values import Money
from backoffice_kernel.exceptions import (
    InvalidMovementError,
    InvalidStateError,
    InvoiceHasPaymentsError,
    InvoiceNotFoundError,
    OrderNotFoundError,
    PaymentExceedsBalanceError,
)
from backoffice_kernel.models.audit_log import AuditLogEntry
from backoffice_kernel.models.catalog import Customer, Product, Warehouse, WarehouseStatus
from backoffice_kernel.models.invoice import Invoice
from backoffice_kernel.services.accounting_core import AccountingCore

pytestmark = pytest.mark.slow_locks


@pytest.fixture
def stock(seed, tenant_id):
    warehouse_id = seed(Warehouse, tenant_id, name="Main")
    product_id = seed(Product, tenant_id, name="Widget", sku="W-1")
    return warehouse_id, product_id


class ExplodingAuditSink:
    def record(self, record):
        raise RuntimeError("audit store unavailable")


class TestOrderToCashFlow:
    def test_full_flow(self, core, seed, tenant_id, test_actor_id, notifier, deterministic_clock):
        product_id = seed(Product, tenant_id, name="Widget", sku="W-1")
        customer_id = seed(Customer, tenant_id, name="Acme")

        order = core.create_order(
            tenant_id,
            [{"product_id": product_id, "quantity": Money("4"), "price": Money("250"), "tax_rate": Decimal("0")}],
            actor_id=test_actor_id,
            customer_id=customer_id,
        )
        assert order.order_number == "ORD-2025-000001"
        assert order.total_amount == Money("1000.00")
        assert len(order.items) == 1
        assert core.get_order(tenant_id, order.id).order_number == order.order_number

        draft = core.create_invoice(tenant_id, actor_id=test_actor_id, order_id=order.id)
        assert draft.status == InvoiceStatus.DRAFT
        assert draft.total_amount == Money("1000.00")
        assert notifier.calls == []

        issued = core.issue_invoice(tenant_id, draft.id, test_actor_id)
        assert issued.status == InvoiceStatus.ISSUED
        assert [name for name, _ in notifier.calls] == ["invoice_issued"]

        first = core.apply_payment(tenant_id, draft.id, Money("400.00"), actor_id=test_actor_id)
        assert first.status == InvoiceStatus.PARTIALLY_PAID
        deterministic_clock.tick()
        second = core.apply_payment(tenant_id, draft.id, Money("600.00"), "CASH", actor_id=test_actor_id)
        assert second.status == InvoiceStatus.PAID

        with pytest.raises(PaymentExceedsBalanceError):
            core.apply_payment(tenant_id, draft.id, Money("0.01"))

        final = core.get_invoice(tenant_id, draft.id)
        assert final.paid_amount == Money("1000.00")
        assert final.status == InvoiceStatus.PAID
        assert [p.amount for p in final.payments] == [Money("400.00"), Money("600.00")]
        assert final.remaining_amount.is_zero
        assert core.find_reconciliation_drift(tenant_id) == []

        reversed_ = core.reverse_payment(tenant_id, second.payment_id, test_actor_id)
        assert reversed_.status == InvoiceStatus.PARTIALLY_PAID
        assert core.get_invoice(tenant_id, draft.id).paid_amount == Money("400.00")

    def test_audit_rows_committed(self, core, session_factory, tenant_id, test_actor_id):
        invoice = core.create_invoice(tenant_id, actor_id=test_actor_id, total_amount=Money("10"),
                                      status=InvoiceStatus.ISSUED)
        core.apply_payment(tenant_id, invoice.id, Money("10"), actor_id=test_actor_id)

        sess = session_factory()
        entries = sess.execute(
            select(AuditLogEntry).where(AuditLogEntry.tenant_id == tenant_id)
        ).scalars().all()
        sess.close()
        assert sorted(e.entity_type for e in entries) == ["Invoice", "Invoice", "Payment"]
        assert all(e.user_id == test_actor_id for e in entries)


class TestStock:
    def test_append_and_balance(self, core, stock, tenant_id, deterministic_clock):
        warehouse_id, product_id = stock
        core.append_movement(tenant_id, warehouse_id, product_id, "IN", Money("50"))
        deterministic_clock.tick()
        core.append_movement(tenant_id, warehouse_id, product_id, "OUT", Money("20"))
        deterministic_clock.tick()
        view = core.append_movement(tenant_id, warehouse_id, product_id, "RESERVED", Money("10"))

        [balance] = core.current_balance(tenant_id)
        assert (balance.on_hand, balance.reserved, balance.available) == (Money("30"), Money("10"), Money("20"))
        assert balance.last_movement_at == view.created_at

        report = core.recalculate_balances(tenant_id)
        assert report.movements_folded == 3
        assert list(report.balances) == [balance]

        page = core.list_movements(tenant_id, limit=2)
        assert page.total == 3
        assert page.items[0].id == view.id

    def test_rejected_append_writes_nothing(self, core, stock, tenant_id):
        warehouse_id, product_id = stock
        with pytest.raises(InvalidMovementError):
            core.append_movement(tenant_id, warehouse_id, product_id, "OUT", Money("0"))
        assert core.list_movements(tenant_id).total == 0

    def test_archiving_takes_effect_immediately(self, core, stock, tenant_id, test_actor_id):
        warehouse_id, product_id = stock
        core.append_movement(tenant_id, warehouse_id, product_id, "IN", Money("1"))

        status = core.set_warehouse_status(tenant_id, warehouse_id, "ARCHIVED", test_actor_id)
        assert status == WarehouseStatus.ARCHIVED
        with pytest.raises(InvalidMovementError, match="archived"):
            core.append_movement(tenant_id, warehouse_id, product_id, "IN", Money("1"))

        core.set_warehouse_status(tenant_id, warehouse_id, WarehouseStatus.ACTIVE)
        core.append_movement(tenant_id, warehouse_id, product_id, "IN", Money("1"))
        assert core.current_balance(tenant_id)[0].on_hand == Money("2")


class TestTransactionBoundaries:
    def test_failing_audit_sink_rolls_back(self, session_factory, deterministic_clock, stock, tenant_id):
        core = AccountingCore(
            session_factory,
            clock=deterministic_clock,
            settings=KernelSettings(database_url="sqlite://"),
            audit_sink_factory=lambda session: ExplodingAuditSink(),
        )
        warehouse_id, product_id = stock
        with pytest.raises(RuntimeError):
            core.append_movement(tenant_id, warehouse_id, product_id, "IN", Money("5"))
        with pytest.raises(RuntimeError):
            core.create_invoice(tenant_id, total_amount=Money("5"))

        assert core.list_movements(tenant_id).total == 0
        assert core.list_invoices(tenant_id) == []
        # The failed create_invoice must not have consumed a number
        assert core.next_document_number(tenant_id, DocumentKind.INVOICE, 2025) == "INV-2025-000001"

    def test_rejection_is_logged(self, core, tenant_id, captured_logs):
        with pytest.raises(InvoiceNotFoundError):
            core.apply_payment(tenant_id, uuid4(), Money("1"))
        [event] = [r for r in captured_logs() if r["message"] == "operation_rejected"]
        assert event["error_code"] == "INVOICE_NOT_FOUND"
        assert event["operation"] == "apply_payment"

    def test_log_context(self, core, stock, tenant_id, test_actor_id, captured_logs):
        warehouse_id, product_id = stock
        core.append_movement(tenant_id, warehouse_id, product_id, "IN", Money("1"), actor_id=test_actor_id)

        [event] = [r for r in captured_logs() if r["message"] == "movement_appended"]
        assert event["tenant_id"] == str(tenant_id)
        assert event["actor_id"] == str(test_actor_id)
        assert event["operation"] == "append_movement"
        assert event["correlation_id"]

    def test_results_usable_after_session_closed(self, core, tenant_id):
        invoice = core.create_invoice(tenant_id, total_amount=Money("12.34"))
        assert invoice.total_amount == Money("12.34")
        assert invoice.invoice_number == "INV-2025-000001"


class TestNotifications:
    def test_payment_notification_after_commit(self, core, tenant_id, notifier):
        invoice = core.create_invoice(tenant_id, total_amount=Money("100"), status="ISSUED")
        result = core.apply_payment(tenant_id, invoice.id, Money("25.00"))

        name, kwargs = notifier.calls[-1]
        assert name == "payment_received"
        assert kwargs["payment_id"] == result.payment_id
        assert kwargs["amount"] == "25.00"

    def test_rejected_payment_sends_nothing(self, core, tenant_id, notifier):
        invoice = core.create_invoice(tenant_id, total_amount=Money("1"))
        with pytest.raises(InvalidStateError):
            core.apply_payment(tenant_id, invoice.id, Money("1"))
        assert notifier.calls == []

    def test_failing_notifier_keeps_commit(self, session_factory, deterministic_clock, tenant_id, failing_notifier, captured_logs):
        core = AccountingCore(
            session_factory,
            clock=deterministic_clock,
            settings=KernelSettings(database_url="sqlite://"),
            notifier=failing_notifier,
        )
        invoice = core.create_invoice(tenant_id, total_amount=Money("100"), status=InvoiceStatus.ISSUED)
        result = core.apply_payment(tenant_id, invoice.id, Money("100"))

        assert result.status == InvoiceStatus.PAID
        assert core.get_invoice(tenant_id, invoice.id).status == InvoiceStatus.PAID
        assert len(failing_notifier.calls) == 2
        messages = [r["message"] for r in captured_logs()]
        assert messages.count("notification_failed") == 2
        assert "notifications_undelivered" in messages


class TestInvoiceQueries:
    def test_list_and_filter(self, core, tenant_id, other_tenant_id, deterministic_clock):
        first = core.create_invoice(tenant_id, total_amount=Money("1"))
        deterministic_clock.tick()
        second = core.create_invoice(tenant_id, total_amount=Money("2"), status="ISSUED")
        core.create_invoice(other_tenant_id, total_amount=Money("3"))

        assert [i.id for i in core.list_invoices(tenant_id)] == [second.id, first.id]
        assert [i.id for i in core.list_invoices(tenant_id, status="DRAFT")] == [first.id]
        assert [i.id for i in core.list_invoices(tenant_id, limit=1, offset=1)] == [first.id]

    def test_status_edits(self, core, tenant_id):
        invoice = core.create_invoice(tenant_id, total_amount=Money("50"), status="ISSUED")
        assert core.mark_invoice_overdue(tenant_id, invoice.id).status == InvoiceStatus.OVERDUE
        assert core.clear_invoice_overdue(tenant_id, invoice.id).status == InvoiceStatus.ISSUED
        assert core.cancel_invoice(tenant_id, invoice.id).status == InvoiceStatus.CANCELLED

    def test_overdue_outlives_full_payment_and_reversal(self, core, tenant_id):
        invoice = core.create_invoice(tenant_id, total_amount=Money("100"), status="ISSUED")
        core.mark_invoice_overdue(tenant_id, invoice.id)

        paid = core.apply_payment(tenant_id, invoice.id, Money("100"))
        assert paid.status == InvoiceStatus.OVERDUE
        reversed_ = core.reverse_payment(tenant_id, paid.payment_id)
        assert reversed_.status == InvoiceStatus.OVERDUE
        assert reversed_.paid_amount.is_zero
        assert core.get_invoice(tenant_id, invoice.id).status == InvoiceStatus.OVERDUE

    def test_zero_total_issue_settles(self, core, tenant_id):
        draft = core.create_invoice(tenant_id, total_amount=Money("0"))
        assert draft.status == InvoiceStatus.DRAFT
        assert core.issue_invoice(tenant_id, draft.id).status == InvoiceStatus.PAID

    def test_delete(self, core, tenant_id):
        invoice = core.create_invoice(tenant_id, total_amount=Money("50"), status="ISSUED")
        core.apply_payment(tenant_id, invoice.id, Money("1"))
        with pytest.raises(InvoiceHasPaymentsError):
            core.delete_invoice(tenant_id, invoice.id)

        empty = core.create_invoice(tenant_id, total_amount=Money("5"))
        core.delete_invoice(tenant_id, empty.id)
        with pytest.raises(InvoiceNotFoundError):
            core.get_invoice(tenant_id, empty.id)

    def test_unknown_order(self, core, tenant_id):
        with pytest.raises(OrderNotFoundError):
            core.get_order(tenant_id, uuid4())

    def test_drift_detected(self, core, db_engine, tenant_id):
        invoice = core.create_invoice(tenant_id, total_amount=Money("100"), status="ISSUED")
        core.apply_payment(tenant_id, invoice.id, Money("30"))

        # Core-level write bypasses the reconciler
        with db_engine.begin() as conn:
            conn.execute(
                update(Invoice.__table__)
                .where(Invoice.__table__.c.id == invoice.id)
                .values(paid_amount=Money("31"))
            )

        [drift] = core.find_reconciliation_drift(tenant_id)
        assert drift.invoice_id == invoice.id
        assert drift.paid_amount == Money("31")
        assert drift.payments_total == Money("30")
        assert drift.difference == Money("1")


class TestSequences:
    def test_next_sequence_commits(self, core, tenant_id):
        assert core.next_sequence(tenant_id, DocumentKind.ORDER, 2025) == 1
        assert core.next_sequence(tenant_id, DocumentKind.ORDER, 2025) == 2
        assert core.next_document_number(tenant_id, DocumentKind.ORDER, 2025) == "ORD-2025-000003"


def test_unlinked_payment(core, tenant_id):
    payment = core.record_unlinked_payment(tenant_id, Money("12.00"), "USD", "CARD")
    assert payment.invoice_id is None
    assert payment.currency == "USD"
    assert core.reverse_payment(tenant_id, payment.id) is None


