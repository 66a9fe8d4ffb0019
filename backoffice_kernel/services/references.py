"""
ReferenceResolver -- validated, cached views of warehouses and products.

Resolves ids through the record store and keeps frozen snapshots in an
injected TtlCache.  ORM rows are never cached, only the fields the core
checks.  Callers that change a warehouse or product invalidate its key.
"""

from dataclasses import dataclass
from uuid import UUID

from backoffice_kernel.exceptions import InvalidMovementError, RecordNotFoundError
from backoffice_kernel.models.catalog import Product, Warehouse, WarehouseStatus
from backoffice_kernel.services.record_store import RecordStore
from backoffice_kernel.services.reference_cache import TtlCache


@dataclass(frozen=True)
class WarehouseRef:
    id: UUID
    tenant_id: UUID
    status: WarehouseStatus


@dataclass(frozen=True)
class ProductRef:
    id: UUID
    tenant_id: UUID
    is_service: bool


def warehouse_key(tenant_id: UUID, warehouse_id: UUID) -> tuple:
    return ("warehouse", tenant_id, warehouse_id)


def product_key(tenant_id: UUID, product_id: UUID) -> tuple:
    return ("product", tenant_id, product_id)


class ReferenceResolver:
    def __init__(self, store: RecordStore, cache: TtlCache):
        self._store = store
        self._cache = cache

    def _missing(self, model: type, tenant_id: UUID, record_id: UUID, label: str):
        owner = self._store.owner_of(model, record_id)
        if owner is None:
            return RecordNotFoundError(model.__name__, str(record_id))
        return InvalidMovementError(
            f"{label} belongs to another tenant",
            record_id=str(record_id),
            tenant_id=str(tenant_id),
        )

    def warehouse(self, tenant_id: UUID, warehouse_id: UUID) -> WarehouseRef:
        """
        Raises RecordNotFoundError if the warehouse does not exist and
        InvalidMovementError if it belongs to another tenant.
        """
        key = warehouse_key(tenant_id, warehouse_id)
        ref = self._cache.get(key)
        if ref is not None:
            return ref
        row = self._store.find_by_id(Warehouse, tenant_id, warehouse_id)
        if row is None:
            raise self._missing(Warehouse, tenant_id, warehouse_id, "warehouse")
        ref = WarehouseRef(id=row.id, tenant_id=row.tenant_id, status=row.status)
        self._cache.put(key, ref)
        return ref

    def product(self, tenant_id: UUID, product_id: UUID) -> ProductRef:
        key = product_key(tenant_id, product_id)
        ref = self._cache.get(key)
        if ref is not None:
            return ref
        row = self._store.find_by_id(Product, tenant_id, product_id)
        if row is None:
            raise self._missing(Product, tenant_id, product_id, "product")
        ref = ProductRef(id=row.id, tenant_id=row.tenant_id, is_service=row.is_service)
        self._cache.put(key, ref)
        return ref

    def invalidate_warehouse(self, tenant_id: UUID, warehouse_id: UUID) -> None:
        self._cache.invalidate(warehouse_key(tenant_id, warehouse_id))

    def invalidate_product(self, tenant_id: UUID, product_id: UUID) -> None:
        self._cache.invalidate(product_key(tenant_id, product_id))
