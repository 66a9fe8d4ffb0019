"""
Tests for the PostgreSQL CHECK constraints on money and quantity columns.

The services enforce these bounds before writing; the constraints reject
rows written around them.  Money is a string column on SQLite, where the
constraints are not emitted.
"""

from datetime import date

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from backoffice_kernel.domain.invoice_status import InvoiceStatus
from backoffice_kernel.domain.stock import MovementType
from backoffice_kernel.domain.values import Money
from backoffice_kernel.models.invoice import Invoice, Payment, PaymentMethod
from backoffice_kernel.models.stock_movement import StockMovement


def _constraint_names(model) -> set[str]:
    return {c.name for c in model.__table__.constraints if c.name}


def test_constraints_declared():
    assert {
        "ck_invoice_total_non_negative",
        "ck_invoice_paid_non_negative",
        "ck_invoice_paid_within_total",
    } <= _constraint_names(Invoice)
    assert "ck_payment_amount_positive" in _constraint_names(Payment)
    assert "ck_stock_movement_quantity_positive" in _constraint_names(StockMovement)


@pytest.mark.postgres
class TestPostgresChecks:
    def _set_invoice(self, session, invoice, **values):
        session.execute(
            update(Invoice.__table__).where(Invoice.__table__.c.id == invoice.id).values(**values)
        )

    def test_paid_above_total_rejected(self, session, make_invoice):
        invoice = make_invoice("100.00")
        with pytest.raises(IntegrityError, match="ck_invoice_paid_within_total"):
            self._set_invoice(session, invoice, paid_amount=Money("100.01"))

    def test_negative_paid_rejected(self, session, make_invoice):
        invoice = make_invoice("100.00")
        with pytest.raises(IntegrityError, match="ck_invoice_paid_non_negative"):
            self._set_invoice(session, invoice, paid_amount=Money("-1"))

    def test_negative_total_rejected(self, session, make_invoice):
        invoice = make_invoice("100.00", status=InvoiceStatus.DRAFT)
        # paid_within_total fails too; either name may be reported
        with pytest.raises(IntegrityError, match="ck_invoice_"):
            self._set_invoice(session, invoice, total_amount=Money("-5"))

    def test_settled_invoice_accepted(self, session, make_invoice):
        invoice = make_invoice("100.00")
        self._set_invoice(session, invoice, paid_amount=Money("100.00"))

    @pytest.mark.parametrize("amount", ["0", "-10.00"])
    def test_non_positive_payment_rejected(self, session, tenant_id, deterministic_clock, amount):
        session.add(Payment(
            tenant_id=tenant_id,
            amount=Money(amount),
            currency="RUB",
            payment_method=PaymentMethod.CASH,
            payment_date=date(2025, 1, 1),
            created_at=deterministic_clock.now(),
        ))
        with pytest.raises(IntegrityError, match="ck_payment_amount_positive"):
            session.flush()

    def test_zero_quantity_movement_rejected(self, session, tenant_id, warehouse, product, deterministic_clock):
        session.add(StockMovement(
            tenant_id=tenant_id,
            warehouse_id=warehouse.id,
            product_id=product.id,
            movement_type=MovementType.IN,
            quantity=Money("0"),
            created_at=deterministic_clock.now(),
        ))
        with pytest.raises(IntegrityError, match="ck_stock_movement_quantity_positive"):
            session.flush()
