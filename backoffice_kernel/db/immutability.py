"""
ORM-Level Immutability Enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | Rule                               | Why
----------------|------------------------------------|-----------------------------
StockMovement   | No UPDATE, no DELETE               | Balances are folds of the log
AuditLogEntry   | No UPDATE, no DELETE               | Audit trail is append-only
Payment         | No UPDATE (DELETE only via         | paid_amount = sum(payments)
                | InvoiceReconciler.reverse_payment) |

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_update event] --> _check_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

before_update fires for every instance marked dirty, including those with
no net change, so the update checks look at column history first.

Payment deletion is permitted at the ORM level because reverse_payment
deletes the row while holding the invoice lock.  Bulk/raw SQL bypasses
these listeners.

===============================================================================
USAGE
===============================================================================

    from backoffice_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent, called by AccountingCore

    unregister_immutability_listeners()  # TESTS ONLY
"""

from sqlalchemy import event, inspect

from backoffice_kernel.exceptions import ImmutabilityViolationError
from backoffice_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _changed_columns(target) -> list[str]:
    state = inspect(target)
    return [
        attr.key
        for attr in state.mapper.column_attrs
        if state.attrs[attr.key].history.has_changes()
    ]


def _block(entity_type: str, target, operation: str, reason: str, **extra) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_stock_movement_update(mapper, connection, target):
    changed = _changed_columns(target)
    if changed:
        _block(
            "StockMovement", target, "UPDATE",
            "Stock movements are append-only",
            fields=changed,
        )


def _check_stock_movement_delete(mapper, connection, target):
    _block("StockMovement", target, "DELETE", "Stock movements cannot be deleted")


def _check_audit_entry_update(mapper, connection, target):
    changed = _changed_columns(target)
    if changed:
        _block(
            "AuditLogEntry", target, "UPDATE",
            "Audit log entries are immutable",
            fields=changed,
        )


def _check_audit_entry_delete(mapper, connection, target):
    _block("AuditLogEntry", target, "DELETE", "Audit log entries cannot be deleted")


def _check_payment_update(mapper, connection, target):
    changed = _changed_columns(target)
    if changed:
        _block(
            "Payment", target, "UPDATE",
            "Payments cannot be modified; reverse and re-apply instead",
            fields=changed,
        )


def _listeners():
    from backoffice_kernel.models.audit_log import AuditLogEntry
    from backoffice_kernel.models.invoice import Payment
    from backoffice_kernel.models.stock_movement import StockMovement

    return (
        (StockMovement, "before_update", _check_stock_movement_update),
        (StockMovement, "before_delete", _check_stock_movement_delete),
        (AuditLogEntry, "before_update", _check_audit_entry_update),
        (AuditLogEntry, "before_delete", _check_audit_entry_delete),
        (Payment, "before_update", _check_payment_update),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners. Safe to call more than once."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability listeners.

    WARNING: FOR TESTING ONLY.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)


def immutability_listeners_registered() -> bool:
    return all(
        event.contains(target, event_name, listener_fn)
        for target, event_name, listener_fn in _listeners()
    )
