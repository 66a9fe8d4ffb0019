"""
Invoice status -- the derived-status table for invoices.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Status table (applied after every paid_amount change):

    paid_amount        | prior status | resulting status
    -------------------|--------------|------------------
    any                | OVERDUE      | OVERDUE
    paid == total      | other        | PAID
    0 < paid < total   | other        | PARTIALLY_PAID
    0                  | other        | ISSUED

PAID wins over ISSUED when the total is zero.

DRAFT and CANCELLED are manual states: payments are never applied to them
so the table is not consulted for those.  OVERDUE is a manual state too,
but payable: it survives every payment and reversal, including one that
settles the invoice, and only clear_overdue leaves it.
"""

from enum import Enum

from backoffice_kernel.domain.values import Money


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


# Statuses in which payments may be applied or reversed
PAYABLE_STATUSES = frozenset({
    InvoiceStatus.ISSUED,
    InvoiceStatus.PARTIALLY_PAID,
    InvoiceStatus.PAID,
    InvoiceStatus.OVERDUE,
})


def derive_status(
    paid_amount: Money,
    total_amount: Money,
    prior_status: InvoiceStatus,
) -> InvoiceStatus:
    """Apply the status table.  ``prior_status`` must be payable."""
    if prior_status == InvoiceStatus.OVERDUE:
        return InvoiceStatus.OVERDUE
    if paid_amount >= total_amount:
        return InvoiceStatus.PAID
    if paid_amount.is_zero:
        return InvoiceStatus.ISSUED
    return InvoiceStatus.PARTIALLY_PAID


def status_ignoring_overdue(paid_amount: Money, total_amount: Money) -> InvoiceStatus:
    """Status an invoice would have if it had never been marked overdue."""
    return derive_status(paid_amount, total_amount, InvoiceStatus.ISSUED)
