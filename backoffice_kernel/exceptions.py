"""
Typed Exception Hierarchy for the Backoffice Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The CRUD layer in front of this kernel maps failures to HTTP responses. Doing
that by parsing messages is fragile, so every failure is:
  1. A TYPED exception class (catch by type, not message)
  2. Tagged with a CODE class attribute (machine-readable, API-safe)
  3. Carrying structured DATA as attributes (not just a message string)

Example:
    try:
        core.apply_payment(...)
    except PaymentExceedsBalanceError as e:
        api_response(status=e.http_status, code=e.code, remaining=str(e.remaining))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BackofficeKernelError:

    BackofficeKernelError (base)
    |
    +-- NotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- OrderNotFoundError
    |   +-- RecordNotFoundError
    |
    +-- ValidationError
    |   +-- InvalidMovementError
    |   +-- InvalidPaymentError
    |   +-- InvalidOrderError
    |   +-- CurrencyMismatchError
    |   +-- InvalidCurrencyError
    |
    +-- ReconciliationError
    |   +-- PaymentExceedsBalanceError
    |
    +-- InvalidStateError
    |   +-- InvoiceCancelledError
    |   +-- InvalidStatusTransitionError
    |   +-- InvoiceHasPaymentsError
    |
    +-- ConcurrencyError                  (retryable)
    |   +-- ConcurrencyConflictError
    |   +-- TransactionTimeoutError
    |
    +-- SequenceExhaustedError
    |
    +-- MoneyArithmeticError              (also a builtin ArithmeticError)
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | HTTP | When Raised
----------------|-----------------------------|------|---------------------------------
Not found       | INVOICE_NOT_FOUND           | 404  | Invoice absent in tenant
                | PAYMENT_NOT_FOUND           | 404  | Payment absent in tenant
                | ORDER_NOT_FOUND             | 404  | Order absent in tenant
                | RECORD_NOT_FOUND            | 404  | Warehouse/product/... absent
Validation      | INVALID_MOVEMENT            | 422  | Non-positive qty, service item,
                |                             |      | cross-tenant or archived refs
                | INVALID_PAYMENT             | 422  | Non-positive payment amount
                | INVALID_ORDER               | 422  | Empty order or invalid line
                | CURRENCY_MISMATCH           | 422  | Payment currency != invoice
                | INVALID_CURRENCY            | 422  | Not an ISO 4217 code
Reconciliation  | PAYMENT_EXCEEDS_BALANCE     | 422  | paid + amount > total
State           | INVALID_STATE               | 409  | Operation illegal in state
                | INVOICE_CANCELLED           | 409  | Mutating a CANCELLED invoice
                | INVALID_STATUS_TRANSITION   | 409  | e.g. issuing twice
                | INVOICE_HAS_PAYMENTS        | 409  | Deleting a paid invoice
Concurrency     | CONCURRENCY_CONFLICT        | 409  | Lock/serialization failure
                | TRANSACTION_TIMEOUT         | 409  | Lock wait/statement timeout
Sequence        | SEQUENCE_EXHAUSTED          | 409  | Suffix beyond 6 digits
Arithmetic      | MONEY_ARITHMETIC            | 422  | Overflow / division by zero
Immutability    | IMMUTABILITY_VIOLATION      | 409  | UPDATE/DELETE of ledger rows

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Only ConcurrencyError subclasses are marked retryable. They come from
   benign contention; everything else is a logic or input error.

2. MoneyArithmeticError also inherits from the builtin ArithmeticError so
   generic numeric handlers keep working.

3. Codes are class attributes so they are available without instantiation.

===============================================================================
"""

from decimal import Decimal


class BackofficeKernelError(Exception):
    """
    Base exception for all backoffice kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification and an `http_status` hint for the CRUD layer.
    """

    code: str = "BACKOFFICE_KERNEL_ERROR"
    http_status: int = 400
    retryable: bool = False


# Not-found exceptions


class NotFoundError(BackofficeKernelError):
    """Base exception for missing targets."""

    code: str = "NOT_FOUND"
    http_status: int = 404


class InvoiceNotFoundError(NotFoundError):
    """Invoice with given ID was not found in the tenant."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class PaymentNotFoundError(NotFoundError):
    """Payment with given ID was not found in the tenant."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class OrderNotFoundError(NotFoundError):
    """Order with given ID was not found in the tenant."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class RecordNotFoundError(NotFoundError):
    """Reference record (warehouse, product, customer, ...) was not found."""

    code: str = "RECORD_NOT_FOUND"

    def __init__(self, entity_type: str, record_id: str):
        self.entity_type = entity_type
        self.record_id = record_id
        super().__init__(f"{entity_type} not found: {record_id}")


# Validation exceptions


class ValidationError(BackofficeKernelError):
    """Base exception for rejected input."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 422


class InvalidMovementError(ValidationError):
    """Stock movement violates an event-level invariant."""

    code: str = "INVALID_MOVEMENT"

    def __init__(self, reason: str, **details: str):
        self.reason = reason
        self.details = details
        super().__init__(f"Invalid stock movement: {reason}")


class InvalidPaymentError(ValidationError):
    """Payment input is invalid (e.g. non-positive amount)."""

    code: str = "INVALID_PAYMENT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid payment: {reason}")


class InvalidOrderError(ValidationError):
    """Order input is invalid (no lines, bad line values, unknown party)."""

    code: str = "INVALID_ORDER"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid order: {reason}")


class CurrencyMismatchError(ValidationError):
    """Amounts in different currencies were combined."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(f"Currency mismatch: expected {expected}, received {received}")


class InvalidCurrencyError(ValidationError):
    """Currency code is not a valid ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


# Reconciliation exceptions


class ReconciliationError(BackofficeKernelError):
    """Base exception for invoice/payment reconciliation failures."""

    code: str = "RECONCILIATION_ERROR"
    http_status: int = 422


class PaymentExceedsBalanceError(ReconciliationError):
    """Applying the payment would push paid amount above the invoice total."""

    code: str = "PAYMENT_EXCEEDS_BALANCE"

    def __init__(
        self,
        invoice_id: str,
        total_amount: Decimal,
        paid_amount: Decimal,
        payment_amount: Decimal,
    ):
        self.invoice_id = invoice_id
        self.total_amount = total_amount
        self.paid_amount = paid_amount
        self.payment_amount = payment_amount
        self.remaining = total_amount - paid_amount
        super().__init__(
            f"Payment {payment_amount} exceeds remaining balance {self.remaining} "
            f"of invoice {invoice_id}"
        )


# State exceptions


class InvalidStateError(BackofficeKernelError):
    """Operation is not allowed in the entity's current state."""

    code: str = "INVALID_STATE"
    http_status: int = 409

    def __init__(self, entity_id: str, state: str, reason: str):
        self.entity_id = entity_id
        self.state = state
        self.reason = reason
        super().__init__(f"{reason} (entity {entity_id} is {state})")


class InvoiceCancelledError(InvalidStateError):
    """A CANCELLED invoice cannot be mutated."""

    code: str = "INVOICE_CANCELLED"

    def __init__(self, invoice_id: str):
        super().__init__(invoice_id, "CANCELLED", "Cancelled invoice cannot be modified")


class InvalidStatusTransitionError(InvalidStateError):
    """Requested status change is not part of the invoice state machine."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, invoice_id: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            invoice_id,
            from_status,
            f"Transition {from_status} -> {to_status} is not allowed",
        )


class InvoiceHasPaymentsError(InvalidStateError):
    """Invoice with linked payments cannot be deleted."""

    code: str = "INVOICE_HAS_PAYMENTS"

    def __init__(self, invoice_id: str, state: str, payment_count: int):
        self.payment_count = payment_count
        super().__init__(
            invoice_id,
            state,
            f"Cannot delete invoice with {payment_count} associated payment(s)",
        )


# Concurrency exceptions


class ConcurrencyError(BackofficeKernelError):
    """Base exception for benign contention. Safe to retry."""

    code: str = "CONCURRENCY_ERROR"
    http_status: int = 409
    retryable: bool = True


class ConcurrencyConflictError(ConcurrencyError):
    """Lock or serialization failure; the transaction was rolled back."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, resource: str, detail: str = ""):
        self.resource = resource
        self.detail = detail
        message = f"Concurrent modification of {resource}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class TransactionTimeoutError(ConcurrencyError):
    """Transaction exceeded its lock wait or statement timeout."""

    code: str = "TRANSACTION_TIMEOUT"

    def __init__(self, operation: str, timeout_ms: int | None = None):
        self.operation = operation
        self.timeout_ms = timeout_ms
        suffix = f" after {timeout_ms}ms" if timeout_ms is not None else ""
        super().__init__(f"Transaction for {operation} timed out{suffix}")


# Sequence exceptions


class SequenceExhaustedError(BackofficeKernelError):
    """Sequence scope has no numbers left in its formatted range."""

    code: str = "SEQUENCE_EXHAUSTED"
    http_status: int = 409

    def __init__(self, tenant_id: str, kind: str, year: int, limit: int):
        self.tenant_id = tenant_id
        self.kind = kind
        self.year = year
        self.limit = limit
        super().__init__(
            f"Sequence {kind}/{year} exhausted for tenant {tenant_id} (limit {limit})"
        )


# Arithmetic exceptions


class MoneyArithmeticError(BackofficeKernelError, ArithmeticError):
    """Overflow, division by zero or invalid decimal operation on Money."""

    code: str = "MONEY_ARITHMETIC"
    http_status: int = 422

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Money {operation} failed: {reason}")


# Immutability exceptions


class ImmutabilityViolationError(BackofficeKernelError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"
    http_status: int = 409

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
