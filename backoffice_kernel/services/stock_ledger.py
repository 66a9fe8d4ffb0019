"""
StockLedger -- append-only inventory movement log.

Responsibility:
    Validates and appends StockMovement events.  The ledger is the system
    of record for inventory; balances are derived by BalanceProjector.

Architecture position:
    Kernel > Services.  Called by AccountingCore.

Invariants enforced:
    - quantity > 0; the movement type alone determines the sign.
    - The product is a trackable (non-service) item.
    - Warehouse and product belong to the movement's tenant.
    - The warehouse is ACTIVE.
    - There is no update or delete path.  Corrections are new ADJUSTMENT
      movements; the ORM listener rejects anything else.
    - Appends take no row locks: movements are independent and the fold is
      commutative.

Failure modes:
    - InvalidMovementError for any violated rule above.
    - RecordNotFoundError when the warehouse or product does not exist.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.stock import MovementType
from backoffice_kernel.domain.values import Money
from backoffice_kernel.exceptions import InvalidMovementError, MoneyArithmeticError
from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.models.audit_log import AuditAction
from backoffice_kernel.models.catalog import WarehouseStatus
from backoffice_kernel.models.stock_movement import StockMovement
from backoffice_kernel.services.audit_sink import AuditRecord, AuditSink, snapshot
from backoffice_kernel.services.base import BaseService
from backoffice_kernel.services.references import ReferenceResolver

logger = get_logger("services.stock_ledger")


class StockLedger(BaseService):
    def __init__(
        self,
        session: Session,
        references: ReferenceResolver,
        audit_sink: AuditSink,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._references = references
        self._audit = audit_sink
        self._clock = clock or SystemClock()

    def _coerce_type(self, movement_type) -> MovementType:
        try:
            return MovementType(movement_type)
        except ValueError:
            raise InvalidMovementError(
                f"unknown movement type {movement_type!r}"
            ) from None

    def _coerce_quantity(self, quantity) -> Money:
        try:
            value = Money.of(quantity)
        except (TypeError, MoneyArithmeticError) as exc:
            raise InvalidMovementError(f"invalid quantity {quantity!r}") from exc
        if not value.is_positive:
            raise InvalidMovementError(
                "quantity must be positive", quantity=str(value)
            )
        return value

    def append(
        self,
        tenant_id: UUID,
        warehouse_id: UUID,
        product_id: UUID,
        movement_type: MovementType | str,
        quantity: Money,
        actor_id: UUID | None = None,
        reference_id: UUID | None = None,
        reference_type: str | None = None,
        notes: str | None = None,
    ) -> StockMovement:
        """
        Validate and append one movement.

        Postconditions:
            - The movement row and its CREATE audit record are flushed in
              the caller's transaction.
        """
        kind = self._coerce_type(movement_type)
        qty = self._coerce_quantity(quantity)

        warehouse = self._references.warehouse(tenant_id, warehouse_id)
        if warehouse.status != WarehouseStatus.ACTIVE:
            raise InvalidMovementError(
                "warehouse is archived", warehouse_id=str(warehouse_id)
            )

        product = self._references.product(tenant_id, product_id)
        if product.is_service:
            raise InvalidMovementError(
                "service products are not stock-tracked", product_id=str(product_id)
            )

        movement = StockMovement(
            tenant_id=tenant_id,
            warehouse_id=warehouse_id,
            product_id=product_id,
            movement_type=kind,
            quantity=qty,
            reference_id=reference_id,
            reference_type=reference_type,
            notes=notes,
            created_at=self._clock.now(),
            created_by=actor_id,
        )
        self.session.add(movement)
        self.session.flush()

        self._audit.record(AuditRecord(
            tenant_id=tenant_id,
            user_id=actor_id,
            action=AuditAction.CREATE,
            entity_type="StockMovement",
            entity_id=movement.id,
            new_values=snapshot(movement),
        ))

        logger.info(
            "movement_appended",
            extra={
                "movement_id": str(movement.id),
                "movement_type": kind.value,
                "quantity": str(qty),
                "warehouse_id": str(warehouse_id),
                "product_id": str(product_id),
            },
        )
        return movement
