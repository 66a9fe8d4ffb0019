"""
Module: backoffice_kernel.db.base
Responsibility: Declarative base for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, the exact-decimal money column type,
    UTC-aware timestamps and the TenantScoped/TrackedBase mixins.
Architecture position: Kernel > DB.  ALL model files import from here.
    May import from db/types.py and domain/values.py (a pure value type).
    MUST NOT import from models/, services/ or selectors/.

Invariants enforced:
    - UUID primary keys generated with uuid4, stored as String(36).
    - Money columns never pass through float: Numeric(38, 9) on PostgreSQL,
      canonical decimal text on other dialects (SQLite has no exact
      decimal storage).
    - Timestamps are timezone-aware UTC on the way in and on the way out.

Failure modes:
    - TypeError on binding a float to a money column.
    - ValueError on binding a naive datetime.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from backoffice_kernel.db.types import MONEY_PRECISION, MONEY_SCALE
from backoffice_kernel.domain.values import Money


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class MoneyType(TypeDecorator):
    """
    Exact decimal column that loads as ``Money``.

    Contract:
        Accepts Money, Decimal, int or numeric str on bind; always returns
        Money (or None) on load.

    Guarantees:
        - PostgreSQL: NUMERIC(38, 9), bound as Decimal.
        - Other dialects: VARCHAR(64) holding the Decimal's canonical text.
          Arithmetic and ordering on such columns happen in Python, never
          in SQL.
    """

    impl = String(64)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(
                Numeric(MONEY_PRECISION, MONEY_SCALE, asdecimal=True)
            )
        return dialect.type_descriptor(String(64))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = Money.of(value).amount
        if dialect.name == "postgresql":
            return amount
        return str(amount)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Money(Decimal(str(value)))


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime normalized to UTC.

    SQLite stores datetimes without an offset, so values are converted to
    UTC and stripped on bind, then re-tagged as UTC on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime is not allowed: {value!r}")
        value = value.astimezone(timezone.utc)
        if dialect.name == "postgresql":
            return value
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Money maps to MoneyType, datetime to UTCDateTime, UUID to
          UUIDString.
    """

    type_annotation_map: ClassVar[dict] = {
        Money: MoneyType(),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TenantScoped:
    """Mixin for rows owned by exactly one tenant."""

    tenant_id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        nullable=False,
        index=True,
    )


class TrackedBase(TenantScoped, Base):
    """
    Abstract base with tenant ownership plus creation metadata.

    created_at is always supplied by the service layer from the injected
    Clock; there is no server default so tests stay deterministic.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    created_by: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


def str_enum(enum_cls: type, length: int = 32) -> SAEnum:
    """VARCHAR-backed enum column storing member values, loading members."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
