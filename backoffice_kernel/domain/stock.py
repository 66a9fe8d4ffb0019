"""
Stock -- Pure fold of stock movements into balances.

Responsibility:
    Defines the movement types and the derived ``StockBalance``, and folds
    a sequence of movements into balances.  No I/O; the projector feeds
    rows read from the ledger.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - on_hand  = sum(IN) + sum(ADJUSTMENT) - sum(OUT)
    - reserved = sum(RESERVED) - sum(UNRESERVED)
    - available = on_hand - reserved
    - The fold is a sum, so the result does not depend on the order in
      which movements are folded.  No intermediate clamping is applied.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Protocol
from uuid import UUID

from backoffice_kernel.domain.values import Money


class MovementType(str, Enum):
    """Kinds of stock movement.

    Each member contributes to exactly one of on_hand or reserved.
    """

    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"
    RESERVED = "RESERVED"
    UNRESERVED = "UNRESERVED"


# (on_hand sign, reserved sign)
_EFFECT: dict[MovementType, tuple[int, int]] = {
    MovementType.IN: (1, 0),
    MovementType.ADJUSTMENT: (1, 0),
    MovementType.OUT: (-1, 0),
    MovementType.RESERVED: (0, 1),
    MovementType.UNRESERVED: (0, -1),
}


class MovementLike(Protocol):
    warehouse_id: UUID
    product_id: UUID
    movement_type: MovementType
    quantity: Money
    created_at: datetime


@dataclass(frozen=True)
class MovementRecord:
    """Plain movement value, used where no ORM row is at hand."""

    warehouse_id: UUID
    product_id: UUID
    movement_type: MovementType
    quantity: Money
    created_at: datetime


BalanceKey = tuple[UUID, UUID]


@dataclass(frozen=True)
class StockBalance:
    """Derived balance for one (warehouse, product) key."""

    warehouse_id: UUID
    product_id: UUID
    on_hand: Money
    reserved: Money
    last_movement_at: datetime | None = None

    @property
    def available(self) -> Money:
        return self.on_hand - self.reserved

    @property
    def is_reportable(self) -> bool:
        """True when the balance is worth reporting: stock on hand or reserved."""
        return self.on_hand.is_positive or self.reserved.is_positive


def apply_movement(balance: StockBalance, movement: MovementLike) -> StockBalance:
    """Return ``balance`` with one more movement folded in."""
    on_hand_sign, reserved_sign = _EFFECT[MovementType(movement.movement_type)]
    last = balance.last_movement_at
    if last is None or movement.created_at > last:
        last = movement.created_at
    return StockBalance(
        warehouse_id=balance.warehouse_id,
        product_id=balance.product_id,
        on_hand=balance.on_hand + movement.quantity * on_hand_sign,
        reserved=balance.reserved + movement.quantity * reserved_sign,
        last_movement_at=last,
    )


def empty_balance(warehouse_id: UUID, product_id: UUID) -> StockBalance:
    return StockBalance(
        warehouse_id=warehouse_id,
        product_id=product_id,
        on_hand=Money.zero(),
        reserved=Money.zero(),
    )


def fold_movements(movements: Iterable[MovementLike]) -> dict[BalanceKey, StockBalance]:
    """
    Fold movements into one balance per (warehouse_id, product_id).

    Every key that has at least one movement appears in the result,
    including keys whose balance nets to zero.  Use ``reportable`` to
    drop those.
    """
    balances: dict[BalanceKey, StockBalance] = {}
    for movement in movements:
        key = (movement.warehouse_id, movement.product_id)
        current = balances.get(key)
        if current is None:
            current = empty_balance(*key)
        balances[key] = apply_movement(current, movement)
    return balances


def reportable(balances: Iterable[StockBalance]) -> list[StockBalance]:
    """Balances with on_hand > 0 or reserved > 0, sorted by key."""
    return sorted(
        (b for b in balances if b.is_reportable),
        key=lambda b: (str(b.warehouse_id), str(b.product_id)),
    )
