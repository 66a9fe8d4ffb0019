"""
SequenceAllocator -- per-scope document numbers via locked counter rows.

Responsibility:
    Produces strictly increasing numbers per (tenant, document kind, year)
    scope and formats them as ``ORD-2025-000001`` / ``INV-2025-000001``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by OrderService and InvoiceService.

Invariants enforced:
    - Monotonicity: the locked DocumentSequence row is the sole source of
      truth for the next value.  Deriving the number from the maximum
      existing order/invoice number is FORBIDDEN.
    - Transactional: the increment is visible only after the caller's
      transaction commits.  A rollback returns the value to the scope, so
      numbers are gapless except for values handed out by a transaction
      that later failed after allocation and was retried by the caller.
    - Bounded retry: first use of a scope races on the unique constraint;
      the losing insert is rolled back to a savepoint and retried at most
      ``max_attempts`` times.

Failure modes:
    - ConcurrencyConflictError: the counter row could not be created or
      locked within ``max_attempts``.
    - SequenceExhaustedError: the scope has issued 999 999 numbers.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice_kernel.domain.sequences import (
    MAX_SEQUENCE_VALUE,
    DocumentKind,
    format_document_number,
)
from backoffice_kernel.exceptions import ConcurrencyConflictError, SequenceExhaustedError
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.document_sequence import DocumentSequence
from backoffice_kernel.services.base import BaseService

logger = get_logger("services.sequence_allocator")


class SequenceAllocator(BaseService):
    """
    Allocates document sequence numbers.

    Contract:
        ``next()`` returns the next integer for the scope and keeps the
        counter row locked until the caller's transaction ends.

    Guarantees:
        - Two transactions allocating in the same scope are serialized by
          ``SELECT ... FOR UPDATE`` (PostgreSQL) or by the database write
          lock (SQLite, BEGIN IMMEDIATE).
        - Values within a scope are unique and strictly increasing in
          commit order.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, max_attempts: int = 3):
        super().__init__(session)
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")
        self._max_attempts = max_attempts

    def _lock_counter(self, tenant_id: UUID, kind: DocumentKind, year: int) -> DocumentSequence | None:
        return self.session.execute(
            select(DocumentSequence)
            .where(
                DocumentSequence.tenant_id == tenant_id,
                DocumentSequence.kind == kind,
                DocumentSequence.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create_counter(self, tenant_id: UUID, kind: DocumentKind, year: int) -> DocumentSequence | None:
        """Insert the scope's counter in a savepoint; None if another transaction won."""
        savepoint = self.session.begin_nested()
        try:
            counter = DocumentSequence(tenant_id=tenant_id, kind=kind, year=year, current_value=0)
            self.session.add(counter)
            self.session.flush()
            savepoint.commit()
            return counter
        except IntegrityError:
            savepoint.rollback()
            return None

    def next(self, tenant_id: UUID, kind: DocumentKind, year: int) -> int:
        """
        Reserve the next value for the scope.

        Preconditions:
            - The caller is within an active database transaction.
            - 1 <= year <= 9999.

        Postconditions:
            - Returns an integer in 1..999999 strictly greater than every
              value previously committed for the scope.
        """
        kind = DocumentKind(kind)
        if not 1 <= year <= 9999:
            raise ValueError(f"Year out of range: {year}")

        for attempt in range(1, self._max_attempts + 1):
            counter = self._lock_counter(tenant_id, kind, year)
            if counter is None:
                counter = self._create_counter(tenant_id, kind, year)
                if counter is None:
                    logger.info(
                        "sequence_counter_race_retry",
                        extra={"kind": kind.value, "year": year, "attempt": attempt},
                    )
                    continue

            if counter.current_value >= MAX_SEQUENCE_VALUE:
                raise SequenceExhaustedError(str(tenant_id), kind.value, year, MAX_SEQUENCE_VALUE)

            counter.current_value += 1
            self.session.flush()
            logger.debug(
                "sequence_allocated",
                extra={"kind": kind.value, "year": year, "value": counter.current_value},
            )
            return counter.current_value

        logger.warning(
            "sequence_allocation_conflict",
            extra={"kind": kind.value, "year": year, "attempts": self._max_attempts},
        )
        raise ConcurrencyConflictError(
            f"sequence {kind.value}/{year}",
            detail=f"counter not acquired after {self._max_attempts} attempts",
        )

    def next_number(self, tenant_id: UUID, kind: DocumentKind, year: int) -> str:
        """Reserve the next value and return it formatted."""
        return self.format_number(kind, year, self.next(tenant_id, kind, year))

    def current(self, tenant_id: UUID, kind: DocumentKind, year: int) -> int | None:
        """Last allocated value for the scope, without locking or incrementing."""
        return self.session.execute(
            select(DocumentSequence.current_value).where(
                DocumentSequence.tenant_id == tenant_id,
                DocumentSequence.kind == DocumentKind(kind),
                DocumentSequence.year == year,
            )
        ).scalar_one_or_none()

    @staticmethod
    def format_number(kind: DocumentKind, year: int, value: int) -> str:
        return format_document_number(kind, year, value)
