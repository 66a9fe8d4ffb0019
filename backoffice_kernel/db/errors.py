"""
Module: backoffice_kernel.db.errors
Responsibility: Map driver-level failures (lock timeouts, serialization
    failures, deadlocks, SQLite busy) to the kernel's typed concurrency
    errors.  Callers never parse driver messages themselves.
Architecture position: Kernel > DB.  Imported by the orchestrator.

PostgreSQL SQLSTATE mapping:
    40001 serialization_failure   -> ConcurrencyConflictError
    40P01 deadlock_detected       -> ConcurrencyConflictError
    55P03 lock_not_available      -> TransactionTimeoutError
    57014 query_canceled          -> TransactionTimeoutError
SQLite:
    "database is locked" / "database table is locked"
                                  -> TransactionTimeoutError
"""

from sqlalchemy.exc import DBAPIError

from backoffice_kernel.exceptions import (
    BackofficeKernelError,
    ConcurrencyConflictError,
    TransactionTimeoutError,
)

_CONFLICT_SQLSTATES = frozenset({"40001", "40P01"})
_TIMEOUT_SQLSTATES = frozenset({"55P03", "57014"})
_SQLITE_LOCKED_MESSAGES = ("database is locked", "database table is locked")


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return str(code) if code else None


def translate_db_error(
    exc: DBAPIError,
    operation: str,
    timeout_ms: int | None = None,
) -> BackofficeKernelError | None:
    """
    Return the typed kernel error for ``exc``, or None if it is not a
    recognised contention failure.

    The caller raises the returned error ``from exc``.
    """
    sqlstate = _sqlstate(exc)
    if sqlstate in _CONFLICT_SQLSTATES:
        return ConcurrencyConflictError(operation, detail=f"SQLSTATE {sqlstate}")
    if sqlstate in _TIMEOUT_SQLSTATES:
        return TransactionTimeoutError(operation, timeout_ms)

    message = str(exc.orig).lower() if exc.orig is not None else ""
    if any(text in message for text in _SQLITE_LOCKED_MESSAGES):
        return TransactionTimeoutError(operation, timeout_ms)
    return None
