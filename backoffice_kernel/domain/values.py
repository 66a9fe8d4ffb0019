"""
Values -- Immutable, self-validating fixed-point decimal value object.

Responsibility:
    Provides ``Money``, the single numeric type for every monetary amount
    and stock quantity in the kernel.  Replaces raw Decimal/float wherever
    amounts flow through domain logic.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by pricing, stock folding, invoice status and all services.

Invariants enforced:
    - Amounts are always Decimal, never float (float input is rejected).
    - All arithmetic runs in a dedicated decimal context; results whose
      magnitude exceeds the Numeric(38, 9) storage capacity, division by
      zero and invalid operations raise MoneyArithmeticError.
    - Currency rounding is ROUND_HALF_UP at 2 places, applied only where
      callers ask for it (line totals stay unrounded).

Failure modes:
    - TypeError when constructed from float or combined with a non-scalar.
    - MoneyArithmeticError on overflow, division by zero or NaN/Infinity.

Non-goals:
    - Money carries no currency; the owning record (invoice, payment,
      order) holds the currency code and services compare it explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import (
    ROUND_HALF_UP,
    Context,
    Decimal,
    DivisionByZero,
    InvalidOperation,
    Overflow,
)

from backoffice_kernel.db.types import (
    CURRENCY_DECIMAL_PLACES,
    MONEY_MAX_ABS,
    MONEY_PRECISION,
    round_money,
)
from backoffice_kernel.exceptions import MoneyArithmeticError

# Working precision leaves headroom above storage precision so that
# intermediate products (quantity * price * rate) are exact before rounding.
_CONTEXT = Context(
    prec=MONEY_PRECISION * 2,
    rounding=ROUND_HALF_UP,
    traps=[Overflow, DivisionByZero, InvalidOperation],
)

Scalar = Decimal | int | str


def _to_decimal(value: object, operation: str) -> Decimal:
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Money {operation} does not accept {type(value).__name__}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise MoneyArithmeticError(operation, f"not a decimal number: {value!r}") from exc
    else:
        raise TypeError(f"Money {operation} does not accept {type(value).__name__}")
    if not result.is_finite():
        raise MoneyArithmeticError(operation, f"non-finite value {value!r}")
    return result


def _checked(value: Decimal, operation: str) -> Decimal:
    if value.copy_abs() >= MONEY_MAX_ABS:
        raise MoneyArithmeticError(operation, f"result {value} exceeds storage capacity")
    return value


@dataclass(frozen=True, slots=True, eq=False)
class Money:
    """
    Fixed-point decimal amount or quantity.

    Contract:
        Wraps a finite Decimal.  Every arithmetic operation returns a new
        Money and never rounds implicitly.

    Guarantees:
        - Immutable and hashable (frozen dataclass with slots)
        - amount is always a finite Decimal within storage capacity
    """

    amount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _checked(_to_decimal(self.amount, "construct"), "construct"))

    @classmethod
    def of(cls, amount: Money | Scalar) -> Money:
        """Factory accepting Money, Decimal, int or numeric string."""
        if isinstance(amount, Money):
            return amount
        return cls(_to_decimal(amount, "construct"))

    @classmethod
    def zero(cls) -> Money:
        return cls(Decimal("0"))

    # -- predicates ---------------------------------------------------------

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    # -- arithmetic ---------------------------------------------------------

    def _combine(self, other: object, operation: str) -> Decimal:
        if isinstance(other, Money):
            return other.amount
        return _to_decimal(other, operation)

    def __add__(self, other: Money | Scalar) -> Money:
        if not isinstance(other, (Money, Decimal, int, str)):
            return NotImplemented
        value = _CONTEXT.add(self.amount, self._combine(other, "add"))
        return Money(_checked(value, "add"))

    __radd__ = __add__

    def __sub__(self, other: Money | Scalar) -> Money:
        if not isinstance(other, (Money, Decimal, int, str)):
            return NotImplemented
        value = _CONTEXT.subtract(self.amount, self._combine(other, "subtract"))
        return Money(_checked(value, "subtract"))

    def __neg__(self) -> Money:
        return Money(self.amount.copy_negate())

    def __abs__(self) -> Money:
        return Money(self.amount.copy_abs())

    def __mul__(self, factor: Scalar) -> Money:
        """Multiply by a scalar."""
        if isinstance(factor, Money) or not isinstance(factor, (Decimal, int, str)):
            return NotImplemented
        try:
            value = _CONTEXT.multiply(self.amount, _to_decimal(factor, "multiply"))
        except (Overflow, InvalidOperation) as exc:
            raise MoneyArithmeticError("multiply", str(exc) or type(exc).__name__) from exc
        return Money(_checked(value, "multiply"))

    __rmul__ = __mul__

    def __truediv__(self, divisor: Scalar) -> Money:
        """Divide by a scalar."""
        if isinstance(divisor, Money) or not isinstance(divisor, (Decimal, int, str)):
            return NotImplemented
        denominator = _to_decimal(divisor, "divide")
        if denominator == 0:
            raise MoneyArithmeticError("divide", "division by zero")
        try:
            value = _CONTEXT.divide(self.amount, denominator)
        except (Overflow, InvalidOperation, DivisionByZero) as exc:
            raise MoneyArithmeticError("divide", str(exc) or type(exc).__name__) from exc
        return Money(_checked(value, "divide"))

    def percentage(self, rate: Scalar) -> Money:
        """Return ``rate`` percent of this amount, unrounded."""
        return self * _to_decimal(rate, "percentage") / 100

    def clamp_to_zero(self) -> Money:
        """Return this amount, or zero if it is negative."""
        return self if self.amount >= 0 else Money.zero()

    # -- rounding -----------------------------------------------------------

    def round_currency(self) -> Money:
        """Round half-up to currency precision (2 places)."""
        return Money(round_money(self.amount, CURRENCY_DECIMAL_PLACES))

    def quantize(self, decimal_places: int) -> Money:
        return Money(round_money(self.amount, decimal_places))

    # -- comparison ---------------------------------------------------------

    def _compare_value(self, other: object) -> Decimal | None:
        if isinstance(other, Money):
            return other.amount
        if isinstance(other, (Decimal, int)) and not isinstance(other, bool):
            return Decimal(other)
        return None

    def __eq__(self, other: object) -> bool:
        value = self._compare_value(other)
        if value is None:
            return NotImplemented
        return self.amount == value

    def __hash__(self) -> int:
        return hash(self.amount)

    def __lt__(self, other: Money | Decimal | int) -> bool:
        value = self._compare_value(other)
        if value is None:
            return NotImplemented
        return self.amount < value

    def __le__(self, other: Money | Decimal | int) -> bool:
        value = self._compare_value(other)
        if value is None:
            return NotImplemented
        return self.amount <= value

    def __gt__(self, other: Money | Decimal | int) -> bool:
        value = self._compare_value(other)
        if value is None:
            return NotImplemented
        return self.amount > value

    def __ge__(self, other: Money | Decimal | int) -> bool:
        value = self._compare_value(other)
        if value is None:
            return NotImplemented
        return self.amount >= value

    def __str__(self) -> str:
        return str(self.amount)

    def __repr__(self) -> str:
        return f"Money({str(self.amount)!r})"


def money_sum(values) -> Money:
    """Sum an iterable of Money, starting from zero."""
    total = Money.zero()
    for value in values:
        total = total + value
    return total
