"""
RecordStore -- tenant-scoped access to reference records.

Responsibility:
    The narrow record-store contract (find_by_id, find_many, create,
    update, delete) for Order, Product, Customer, Supplier and Warehouse
    rows.  The core uses it only to resolve foreign keys; the surrounding
    CRUD layer owns everything else about these entities.

Architecture position:
    Kernel > Services.  SqlRecordStore is flush-only like every service.

Invariants enforced:
    - Every lookup and mutation is filtered by tenant_id.  A record of
      another tenant is indistinguishable from a missing one, except via
      owner_of(), which the ledger uses to report cross-tenant references.
    - tenant_id and id cannot be changed through update().

Failure modes:
    - RecordNotFoundError from get/update/delete on a missing record.
    - ValueError for an unsupported model, unknown filter or field.
"""

from typing import Any, Protocol, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice_kernel.exceptions import RecordNotFoundError
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.catalog import Customer, Product, Supplier, Warehouse
from backoffice_kernel.models.order import Order
from backoffice_kernel.services.base import BaseService

logger = get_logger("services.record_store")

RECORD_TYPES = (Order, Product, Customer, Supplier, Warehouse)

_PROTECTED_FIELDS = frozenset({"id", "tenant_id"})

R = TypeVar("R")


class RecordStore(Protocol):
    def find_by_id(self, model: type[R], tenant_id: UUID, record_id: UUID) -> R | None: ...

    def find_many(
        self,
        model: type[R],
        tenant_id: UUID,
        filters: dict[str, Any] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[R]: ...

    def owner_of(self, model: type, record_id: UUID) -> UUID | None: ...


class SqlRecordStore(BaseService):
    """SQLAlchemy implementation of the record store."""

    def _check_model(self, model: type) -> None:
        if model not in RECORD_TYPES:
            raise ValueError(f"Unsupported record type: {model.__name__}")

    def _columns(self, model: type) -> set[str]:
        return {c.key for c in model.__table__.columns}

    def find_by_id(self, model: type[R], tenant_id: UUID, record_id: UUID) -> R | None:
        self._check_model(model)
        return self.session.execute(
            select(model).where(model.id == record_id, model.tenant_id == tenant_id)
        ).scalar_one_or_none()

    def get(self, model: type[R], tenant_id: UUID, record_id: UUID) -> R:
        record = self.find_by_id(model, tenant_id, record_id)
        if record is None:
            raise RecordNotFoundError(model.__name__, str(record_id))
        return record

    def owner_of(self, model: type, record_id: UUID) -> UUID | None:
        """Tenant that owns ``record_id``, regardless of caller tenant."""
        self._check_model(model)
        return self.session.execute(
            select(model.tenant_id).where(model.id == record_id)
        ).scalar_one_or_none()

    def find_many(
        self,
        model: type[R],
        tenant_id: UUID,
        filters: dict[str, Any] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[R]:
        """
        Equality-filtered page of records, ordered by id for stable paging.
        """
        self._check_model(model)
        if limit <= 0 or offset < 0:
            raise ValueError(f"Invalid page: limit={limit}, offset={offset}")
        stmt = select(model).where(model.tenant_id == tenant_id)
        columns = self._columns(model)
        for key, value in (filters or {}).items():
            if key not in columns:
                raise ValueError(f"Unknown filter for {model.__name__}: '{key}'")
            stmt = stmt.where(getattr(model, key) == value)
        stmt = stmt.order_by(model.id).limit(limit).offset(offset)
        return list(self.session.execute(stmt).scalars())

    def count(self, model: type, tenant_id: UUID, filters: dict[str, Any] | None = None) -> int:
        self._check_model(model)
        stmt = select(func.count()).select_from(model).where(model.tenant_id == tenant_id)
        for key, value in (filters or {}).items():
            stmt = stmt.where(getattr(model, key) == value)
        return self.session.execute(stmt).scalar_one()

    def create(self, model: type[R], tenant_id: UUID, /, **values: Any) -> R:
        self._check_model(model)
        bad = (set(values) - self._columns(model)) | (set(values) & {"tenant_id"})
        if bad:
            raise ValueError(f"Invalid fields for {model.__name__}: {sorted(bad)}")
        record = model(tenant_id=tenant_id, **values)
        self.session.add(record)
        self.session.flush()
        logger.debug("record_created", extra={"record_type": model.__name__, "record_id": str(record.id)})
        return record

    def update(self, model: type[R], tenant_id: UUID, record_id: UUID, /, **values: Any) -> R:
        record = self.get(model, tenant_id, record_id)
        bad = (set(values) - self._columns(model)) | (set(values) & _PROTECTED_FIELDS)
        if bad:
            raise ValueError(f"Cannot update fields of {model.__name__}: {sorted(bad)}")
        for key, value in values.items():
            setattr(record, key, value)
        self.session.flush()
        logger.debug("record_updated", extra={"record_type": model.__name__, "record_id": str(record_id)})
        return record

    def delete(self, model: type, tenant_id: UUID, record_id: UUID) -> None:
        record = self.get(model, tenant_id, record_id)
        self.session.delete(record)
        self.session.flush()
        logger.debug("record_deleted", extra={"record_type": model.__name__, "record_id": str(record_id)})
