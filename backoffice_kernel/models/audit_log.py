"""
Module: backoffice_kernel.models.audit_log
Responsibility: ORM persistence for before/after snapshots of core
    mutations, written by SqlAuditSink.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (db/immutability.py).
    - Written in the same transaction as the mutation it describes, so a
      rolled-back mutation leaves no audit row behind.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import Base, TenantScoped, UTCDateTime, UUIDString, str_enum


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class AuditLogEntry(TenantScoped, Base):
    __tablename__ = "audit_log"

    __table_args__ = (
        Index("idx_audit_log_entity", "entity_type", "entity_id"),
        Index("idx_audit_log_created", "tenant_id", "created_at"),
    )

    # Acting user; None for system actions
    user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    action: Mapped[AuditAction] = mapped_column(
        str_enum(AuditAction, length=8),
        nullable=False,
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    old_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLogEntry {self.action.value} {self.entity_type}:{self.entity_id}>"
