"""Concurrent stock movement appends: every append lands exactly once."""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from backoffice_kernel.domain.values import Money
from backoffice_kernel.models.catalog import Product, Warehouse

pytestmark = pytest.mark.slow_locks


def test_concurrent_appends_sum(core, seed, tenant_id):
    warehouse_id = seed(Warehouse, tenant_id, name="Main")
    product_id = seed(Product, tenant_id, name="Widget", sku="W-1")
    barrier = Barrier(20)

    def append(i):
        barrier.wait()
        movement_type = "RESERVED" if i % 4 == 0 else "IN"
        return core.append_movement(tenant_id, warehouse_id, product_id, movement_type, Money("1.5"))

    with ThreadPoolExecutor(max_workers=20) as pool:
        movements = list(pool.map(append, range(20)))

    assert len({m.id for m in movements}) == 20
    [balance] = core.current_balance(tenant_id)
    assert balance.on_hand == Money("22.5")
    assert balance.reserved == Money("7.5")
    assert core.recalculate_balances(tenant_id).movements_folded == 20
