"""
Pricing -- line and document totals.

Line totals are kept unrounded; a document total is the sum of unrounded
line totals rounded once, half-up, to currency precision.  An invoice that
copies its order's total therefore reproduces the line-item sum exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from backoffice_kernel.domain.values import Money, money_sum

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineItemSpec:
    """One order line as supplied by the caller."""

    product_id: UUID
    quantity: Money
    price: Money
    tax_rate: Decimal = Decimal("20")

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", Money.of(self.quantity))
        object.__setattr__(self, "price", Money.of(self.price))
        if isinstance(self.tax_rate, float):
            raise TypeError("Tax rate must not be a float")
        object.__setattr__(self, "tax_rate", Decimal(str(self.tax_rate)))
        if not self.quantity.is_positive:
            raise ValueError(f"Line quantity must be positive, got {self.quantity}")
        if self.price.is_negative:
            raise ValueError(f"Line price must be non-negative, got {self.price}")
        if self.tax_rate < 0 or self.tax_rate > HUNDRED:
            raise ValueError(f"Tax rate must be within 0..100, got {self.tax_rate}")


def line_total(quantity: Money, price: Money, tax_rate: Decimal) -> Money:
    """Net amount plus tax for one line. Unrounded."""
    net = price * quantity.amount
    return net + net.percentage(tax_rate)


def document_total(line_totals: Iterable[Money]) -> Money:
    """Sum of unrounded line totals, rounded once to currency precision."""
    return money_sum(line_totals).round_currency()


def included_tax(gross_total: Money, tax_rate: Decimal) -> Money:
    """Tax contained in a tax-inclusive total: ``total * rate / (100 + rate)``."""
    rate = Decimal(str(tax_rate))
    return (gross_total * rate / (HUNDRED + rate)).round_currency()
