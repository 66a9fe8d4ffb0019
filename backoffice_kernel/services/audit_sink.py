"""
AuditSink -- before/after snapshots of every core mutation.

Responsibility:
    Defines the ``AuditRecord`` shape and the ``AuditSink`` contract the
    surrounding back office consumes, plus the SQL implementation that
    writes ``AuditLogEntry`` rows in the caller's transaction.

Architecture position:
    Kernel > Services.  Called by StockLedger, InvoiceReconciler,
    InvoiceService and OrderService once per mutated entity.

Invariants enforced:
    - record() is called on every successful mutation path; it is never
      skipped.  Because SqlAuditSink writes in the same transaction, a
      rolled-back mutation leaves no audit row.
    - Snapshots are JSON-safe: UUID, Money, Decimal, dates and enums are
      converted to strings.

Failure modes:
    - Errors from the sink propagate and abort the mutation.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.values import Money
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit_log import AuditAction, AuditLogEntry
from backoffice_kernel.services.base import BaseService

logger = get_logger("services.audit_sink")


@dataclass(frozen=True)
class AuditRecord:
    """One audited mutation."""

    tenant_id: UUID
    user_id: UUID | None
    action: AuditAction
    entity_type: str
    entity_id: UUID
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None


class AuditSink(Protocol):
    """Receives one AuditRecord per core mutation."""

    def record(self, record: AuditRecord) -> None:
        ...


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, Money):
        return str(value.amount)
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return str(value)


def snapshot(row: Any, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    """Column values of an ORM row as a JSON-safe dict."""
    state = inspect(row)
    return {
        attr.key: _json_safe(getattr(row, attr.key))
        for attr in state.mapper.column_attrs
        if attr.key not in exclude
    }


class SqlAuditSink(BaseService):
    """
    Writes AuditLogEntry rows in the caller's transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def record(self, record: AuditRecord) -> None:
        entry = AuditLogEntry(
            tenant_id=record.tenant_id,
            user_id=record.user_id,
            action=record.action,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            old_values=record.old_values,
            new_values=record.new_values,
            created_at=self._clock.now(),
        )
        self.session.add(entry)
        self.session.flush()
        logger.debug(
            "audit_recorded",
            extra={
                "audit_action": record.action.value,
                "entity_type": record.entity_type,
                "audited_entity_id": str(record.entity_id),
            },
        )


@dataclass
class InMemoryAuditSink:
    """Collects records in a list; for tests and dry runs."""

    records: list[AuditRecord] = field(default_factory=list)

    def record(self, record: AuditRecord) -> None:
        self.records.append(record)

    def for_entity(self, entity_type: str) -> list[AuditRecord]:
        return [r for r in self.records if r.entity_type == entity_type]
