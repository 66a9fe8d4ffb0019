"""
Module: backoffice_kernel.selectors.stock_selector
Responsibility: BalanceProjector -- derives stock balances by folding the
    movement ledger on demand, plus paginated movement history.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - No stored balances: every answer is a fold of StockMovement rows, so
      the ledger stays the only write path.
    - Each query reads its movements in ONE statement ordered by
      (created_at, id).  AccountingCore opens the transaction in
      REPEATABLE READ on PostgreSQL, so a concurrent append is either
      wholly visible or not at all.
    - Only balances with on_hand > 0 or reserved > 0 are reported.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from backoffice_kernel.domain.stock import MovementType, StockBalance, fold_movements, reportable
from backoffice_kernel.domain.values import Money
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.stock_movement import StockMovement
from backoffice_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.stock")

MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class RecalculationReport:
    """Result of a full-tenant recompute."""

    tenant_id: UUID
    balances: tuple[StockBalance, ...]
    keys_scanned: int
    movements_folded: int

    @property
    def zero_keys(self) -> int:
        """Keys that have movements but net to nothing on hand or reserved."""
        return self.keys_scanned - len(self.balances)


@dataclass(frozen=True)
class MovementView:
    id: UUID
    warehouse_id: UUID
    product_id: UUID
    movement_type: MovementType
    quantity: Money
    reference_id: UUID | None
    reference_type: str | None
    notes: str | None
    created_at: datetime
    created_by: UUID | None


@dataclass(frozen=True)
class MovementPage:
    items: tuple[MovementView, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit


class BalanceProjector(BaseSelector):
    """
    Folds the ledger into current balances.

    Contract:
        Returns StockBalance DTOs; never writes.
    """

    def _movement_rows(
        self,
        tenant_id: UUID,
        warehouse_id: UUID | None = None,
        product_id: UUID | None = None,
    ):
        stmt = select(
            StockMovement.warehouse_id,
            StockMovement.product_id,
            StockMovement.movement_type,
            StockMovement.quantity,
            StockMovement.created_at,
        ).where(StockMovement.tenant_id == tenant_id)
        if warehouse_id is not None:
            stmt = stmt.where(StockMovement.warehouse_id == warehouse_id)
        if product_id is not None:
            stmt = stmt.where(StockMovement.product_id == product_id)
        stmt = stmt.order_by(StockMovement.created_at, StockMovement.id)
        return self.session.execute(stmt).all()

    def current_balance(
        self,
        tenant_id: UUID,
        warehouse_id: UUID | None = None,
        product_id: UUID | None = None,
    ) -> list[StockBalance]:
        """
        Non-zero balances for the tenant, optionally narrowed to one
        warehouse and/or product, sorted by (warehouse_id, product_id).
        """
        rows = self._movement_rows(tenant_id, warehouse_id, product_id)
        return reportable(fold_movements(rows).values())

    def balance_for(self, tenant_id: UUID, warehouse_id: UUID, product_id: UUID) -> StockBalance | None:
        """Balance of exactly one key, or None when it is not reportable."""
        balances = self.current_balance(tenant_id, warehouse_id, product_id)
        return balances[0] if balances else None

    def recalculate(self, tenant_id: UUID) -> RecalculationReport:
        """
        Full recompute over every movement of the tenant.

        Equivalent to current_balance(tenant_id) but also reports how much
        was folded, for drift checks against any derived summary.
        """
        rows = self._movement_rows(tenant_id)
        folded = fold_movements(rows)
        report = RecalculationReport(
            tenant_id=tenant_id,
            balances=tuple(reportable(folded.values())),
            keys_scanned=len(folded),
            movements_folded=len(rows),
        )
        logger.info(
            "balances_recalculated",
            extra={
                "keys_scanned": report.keys_scanned,
                "movements_folded": report.movements_folded,
                "balance_count": len(report.balances),
            },
        )
        return report

    def list_movements(
        self,
        tenant_id: UUID,
        warehouse_id: UUID | None = None,
        product_id: UUID | None = None,
        movement_type: MovementType | str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> MovementPage:
        """Movement history, newest first.  ``date_to`` is exclusive."""
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be within 1..{MAX_PAGE_SIZE}, got {limit}")

        conditions = [StockMovement.tenant_id == tenant_id]
        if warehouse_id is not None:
            conditions.append(StockMovement.warehouse_id == warehouse_id)
        if product_id is not None:
            conditions.append(StockMovement.product_id == product_id)
        if movement_type is not None:
            conditions.append(StockMovement.movement_type == MovementType(movement_type))
        if date_from is not None:
            conditions.append(StockMovement.created_at >= date_from)
        if date_to is not None:
            conditions.append(StockMovement.created_at < date_to)

        total = self.session.execute(
            select(func.count()).select_from(StockMovement).where(*conditions)
        ).scalar_one()
        rows = self.session.execute(
            select(StockMovement)
            .where(*conditions)
            .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).scalars()

        items = tuple(movement_view(m) for m in rows)
        return MovementPage(items=items, total=total, page=page, limit=limit)


def movement_view(m: StockMovement) -> MovementView:
    return MovementView(
        id=m.id,
        warehouse_id=m.warehouse_id,
        product_id=m.product_id,
        movement_type=m.movement_type,
        quantity=m.quantity,
        reference_id=m.reference_id,
        reference_type=m.reference_type,
        notes=m.notes,
        created_at=m.created_at,
        created_by=m.created_by,
    )
