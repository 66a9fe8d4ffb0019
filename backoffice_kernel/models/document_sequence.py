"""
Module: backoffice_kernel.models.document_sequence
Responsibility: Counter rows backing SequenceAllocator, one per
    (tenant, document kind, year) scope.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - One row per scope (uq_document_sequence_scope).  Concurrent first
      use collides on this constraint and is retried by the allocator.
    - current_value only ever increases, and only while the row is held
      with SELECT ... FOR UPDATE.
"""

from sqlalchemy import BigInteger, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import Base, TenantScoped, str_enum
from backoffice_kernel.domain.sequences import DocumentKind


class DocumentSequence(TenantScoped, Base):
    __tablename__ = "document_sequences"

    __table_args__ = (
        UniqueConstraint("tenant_id", "kind", "year", name="uq_document_sequence_scope"),
    )

    kind: Mapped[DocumentKind] = mapped_column(
        str_enum(DocumentKind, length=16),
        nullable=False,
    )

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Last allocated suffix; 0 before first allocation
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<DocumentSequence {self.kind.value}/{self.year}={self.current_value}>"
