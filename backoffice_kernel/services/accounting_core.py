"""
AccountingCore -- transaction-owning entry point for every core operation.

Responsibility:
    Exposes the operations the surrounding back office calls (stock
    appends and balance queries, order and invoice creation, payment
    application and reversal, invoice status edits, sequence allocation)
    and gives each of them exactly one database transaction.

Architecture position:
    Kernel > Services -- the only component that commits.  Wires the
    flush-only services and selectors to a fresh session per call.

Invariants enforced:
    - One transaction per external operation: commit on success, rollback
      on ANY error, so no partial invoice/payment write and no partial
      ledger append is ever visible.
    - Write transactions are bounded by ``transaction_timeout_ms``; driver
      lock/serialization failures surface as ConcurrencyConflictError or
      TransactionTimeoutError (both retryable, never retried here).
    - Balance and invoice reads run against one snapshot (REPEATABLE READ
      on PostgreSQL).
    - Notifications are dispatched only after a successful commit and a
      failing notifier never undoes the committed work.
    - Every operation runs inside LogContext.bind(tenant_id, actor_id,
      operation, correlation_id).

Failure modes:
    - Any BackofficeKernelError raised by a service propagates unchanged
      after rollback.
    - Unrecognised database errors propagate unchanged after rollback.
"""

from contextlib import contextmanager
from datetime import date
from typing import Callable, Generator
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from backoffice_kernel.config import KernelSettings
from backoffice_kernel.db.engine import apply_transaction_timeout, begin_snapshot_read
from backoffice_kernel.db.errors import translate_db_error
from backoffice_kernel.db.immutability import register_immutability_listeners
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.domain.invoice_status import InvoiceStatus
from backoffice_kernel.domain.sequences import DocumentKind
from backoffice_kernel.domain.stock import MovementType, StockBalance
from backoffice_kernel.domain.values import Money
from backoffice_kernel.exceptions import BackofficeKernelError, ConcurrencyError
from backoffice_kernel.logging_config import LogContext, get_logger
from backoffice_kernel.models.audit_log import AuditAction
from backoffice_kernel.models.catalog import Warehouse, WarehouseStatus
from backoffice_kernel.models.invoice import PaymentMethod
from backoffice_kernel.models.order import OrderStatus
from backoffice_kernel.selectors.invoice_selector import (
    InvoiceSelector,
    InvoiceView,
    PaymentView,
    ReconciliationDrift,
    payment_view,
)
from backoffice_kernel.selectors.order_selector import OrderSelector, OrderView
from backoffice_kernel.selectors.stock_selector import (
    BalanceProjector,
    MovementPage,
    MovementView,
    RecalculationReport,
    movement_view,
)
from backoffice_kernel.services.audit_sink import AuditRecord, AuditSink, SqlAuditSink, snapshot
from backoffice_kernel.services.invoice_reconciler import InvoiceReconciler, ReconciliationResult
from backoffice_kernel.services.invoice_service import InvoiceService
from backoffice_kernel.services.notifications import InvoiceNotifier, NotificationQueue, NullNotifier
from backoffice_kernel.services.order_service import OrderService
from backoffice_kernel.services.record_store import SqlRecordStore
from backoffice_kernel.services.reference_cache import TtlCache
from backoffice_kernel.services.references import ReferenceResolver, warehouse_key
from backoffice_kernel.services.sequence_allocator import SequenceAllocator
from backoffice_kernel.services.stock_ledger import StockLedger

logger = get_logger("services.accounting_core")


class _UnitOfWork:
    """Services bound to one session and one notification queue."""

    def __init__(self, core: "AccountingCore", session: Session):
        self.session = session
        self.notifications = NotificationQueue()
        self.audit: AuditSink = core._audit_sink_factory(session)
        self._core = core

    def store(self) -> SqlRecordStore:
        return SqlRecordStore(self.session)

    def sequences(self) -> SequenceAllocator:
        return SequenceAllocator(self.session, self._core.settings.sequence_max_attempts)

    def references(self) -> ReferenceResolver:
        return ReferenceResolver(self.store(), self._core.reference_cache)

    def ledger(self) -> StockLedger:
        return StockLedger(self.session, self.references(), self.audit, self._core.clock)

    def reconciler(self) -> InvoiceReconciler:
        return InvoiceReconciler(self.session, self.audit, self._core.clock, self.notifications)

    def invoices(self) -> InvoiceService:
        settings = self._core.settings
        return InvoiceService(
            self.session,
            self.sequences(),
            self.reconciler(),
            self.audit,
            self._core.clock,
            self.notifications,
            default_currency=settings.default_currency,
            default_tax_rate=settings.default_tax_rate,
        )

    def orders(self) -> OrderService:
        return OrderService(
            self.session,
            self.sequences(),
            self.store(),
            self.audit,
            self._core.clock,
            default_currency=self._core.settings.default_currency,
        )


class AccountingCore:
    """
    Facade over the accounting-consistency kernel.

    Contract:
        Every public method is one transaction.  Arguments are plain ids,
        Money values and enums; results are frozen DTOs that stay valid
        after the session is closed.

    Non-goals:
        - Does NOT retry ConcurrencyError; retrying is the caller's call.
        - Does NOT authenticate or authorize the actor.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        clock: Clock | None = None,
        settings: KernelSettings | None = None,
        notifier: InvoiceNotifier | None = None,
        audit_sink_factory: Callable[[Session], AuditSink] | None = None,
        reference_cache: TtlCache | None = None,
    ):
        self._session_factory = session_factory
        self.clock = clock or SystemClock()
        self.settings = settings or KernelSettings()
        self._notifier = notifier or NullNotifier()
        self._audit_sink_factory = audit_sink_factory or (
            lambda session: SqlAuditSink(session, self.clock)
        )
        self.reference_cache = reference_cache or TtlCache(
            self.settings.reference_cache_ttl_seconds, self.clock
        )
        register_immutability_listeners()

    # -- transaction boundary -----------------------------------------------

    @contextmanager
    def _unit_of_work(
        self,
        operation: str,
        tenant_id: UUID,
        actor_id: UUID | None = None,
        entity_id: UUID | None = None,
        read_only: bool = False,
    ) -> Generator[_UnitOfWork, None, None]:
        timeout_ms = self.settings.transaction_timeout_ms
        correlation_id = LogContext.get_all().get("correlation_id") or str(uuid4())
        with LogContext.bind(
            correlation_id=correlation_id,
            tenant_id=tenant_id,
            actor_id=actor_id,
            operation=operation,
            entity_id=entity_id,
        ):
            session = self._session_factory()
            work = _UnitOfWork(self, session)
            try:
                if read_only:
                    begin_snapshot_read(session)
                else:
                    apply_transaction_timeout(session, timeout_ms)
                yield work
                session.commit()
            except DBAPIError as exc:
                session.rollback()
                translated = translate_db_error(exc, operation, timeout_ms)
                if translated is None:
                    logger.error("operation_failed", exc_info=True)
                    raise
                logger.warning(
                    "operation_conflict",
                    extra={"error_code": translated.code},
                )
                raise translated from exc
            except ConcurrencyError as exc:
                session.rollback()
                logger.warning("operation_conflict", extra={"error_code": exc.code})
                raise
            except BackofficeKernelError as exc:
                session.rollback()
                logger.info("operation_rejected", extra={"error_code": exc.code})
                raise
            except Exception:
                session.rollback()
                logger.error("operation_failed", exc_info=True)
                raise
            finally:
                session.close()

            if work.notifications.pending:
                failures = work.notifications.dispatch(self._notifier)
                if failures:
                    logger.warning("notifications_undelivered", extra={"failures": failures})

    # -- sequences -----------------------------------------------------------

    def next_sequence(self, tenant_id: UUID, kind: DocumentKind, year: int) -> int:
        with self._unit_of_work("next_sequence", tenant_id) as work:
            return work.sequences().next(tenant_id, kind, year)

    def next_document_number(self, tenant_id: UUID, kind: DocumentKind, year: int) -> str:
        with self._unit_of_work("next_document_number", tenant_id) as work:
            return work.sequences().next_number(tenant_id, kind, year)

    # -- stock ---------------------------------------------------------------

    def append_movement(
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
    ) -> MovementView:
        with self._unit_of_work("append_movement", tenant_id, actor_id) as work:
            movement = work.ledger().append(
                tenant_id,
                warehouse_id,
                product_id,
                movement_type,
                quantity,
                actor_id=actor_id,
                reference_id=reference_id,
                reference_type=reference_type,
                notes=notes,
            )
            return movement_view(movement)

    def current_balance(
        self,
        tenant_id: UUID,
        warehouse_id: UUID | None = None,
        product_id: UUID | None = None,
    ) -> list[StockBalance]:
        with self._unit_of_work("current_balance", tenant_id, read_only=True) as work:
            return BalanceProjector(work.session).current_balance(tenant_id, warehouse_id, product_id)

    def recalculate_balances(self, tenant_id: UUID) -> RecalculationReport:
        with self._unit_of_work("recalculate_balances", tenant_id, read_only=True) as work:
            return BalanceProjector(work.session).recalculate(tenant_id)

    def list_movements(self, tenant_id: UUID, **filters) -> MovementPage:
        with self._unit_of_work("list_movements", tenant_id, read_only=True) as work:
            return BalanceProjector(work.session).list_movements(tenant_id, **filters)

    def set_warehouse_status(
        self,
        tenant_id: UUID,
        warehouse_id: UUID,
        status: WarehouseStatus | str,
        actor_id: UUID | None = None,
    ) -> WarehouseStatus:
        """Move a warehouse through its lifecycle and drop it from the reference cache."""
        new_status = WarehouseStatus(status)
        with self._unit_of_work("set_warehouse_status", tenant_id, actor_id, warehouse_id) as work:
            store = work.store()
            warehouse = store.get(Warehouse, tenant_id, warehouse_id)
            before = snapshot(warehouse)
            store.update(Warehouse, tenant_id, warehouse_id, status=new_status)
            work.audit.record(AuditRecord(
                tenant_id=tenant_id,
                user_id=actor_id,
                action=AuditAction.UPDATE,
                entity_type="Warehouse",
                entity_id=warehouse_id,
                old_values=before,
                new_values=snapshot(warehouse),
            ))
        # After commit: a concurrent append may have cached the old status meanwhile
        self.reference_cache.invalidate(warehouse_key(tenant_id, warehouse_id))
        return new_status

    # -- orders --------------------------------------------------------------

    def create_order(
        self,
        tenant_id: UUID,
        items: list,
        actor_id: UUID | None = None,
        currency: str | None = None,
        customer_id: UUID | None = None,
        supplier_id: UUID | None = None,
        status: OrderStatus | str = OrderStatus.DRAFT,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> OrderView:
        with self._unit_of_work("create_order", tenant_id, actor_id) as work:
            order = work.orders().create_order(
                tenant_id,
                items,
                actor_id=actor_id,
                currency=currency,
                customer_id=customer_id,
                supplier_id=supplier_id,
                status=status,
                due_date=due_date,
                notes=notes,
            )
            return OrderSelector(work.session).get_order(tenant_id, order.id)

    def get_order(self, tenant_id: UUID, order_id: UUID) -> OrderView:
        with self._unit_of_work("get_order", tenant_id, entity_id=order_id, read_only=True) as work:
            return OrderSelector(work.session).get_order(tenant_id, order_id)

    # -- invoices ------------------------------------------------------------

    def create_invoice(
        self,
        tenant_id: UUID,
        actor_id: UUID | None = None,
        order_id: UUID | None = None,
        total_amount: Money | None = None,
        currency: str | None = None,
        status: InvoiceStatus | str = InvoiceStatus.DRAFT,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> InvoiceView:
        with self._unit_of_work("create_invoice", tenant_id, actor_id) as work:
            invoice = work.invoices().create_invoice(
                tenant_id,
                actor_id=actor_id,
                order_id=order_id,
                total_amount=total_amount,
                currency=currency,
                status=status,
                due_date=due_date,
                notes=notes,
            )
            return InvoiceSelector(work.session).get_invoice(tenant_id, invoice.id)

    def delete_invoice(self, tenant_id: UUID, invoice_id: UUID, actor_id: UUID | None = None) -> None:
        with self._unit_of_work("delete_invoice", tenant_id, actor_id, invoice_id) as work:
            work.invoices().delete_invoice(tenant_id, invoice_id, actor_id)

    def _status_edit(self, operation: str, tenant_id: UUID, invoice_id: UUID, actor_id: UUID | None) -> InvoiceView:
        with self._unit_of_work(operation, tenant_id, actor_id, invoice_id) as work:
            getattr(work.reconciler(), operation)(tenant_id, invoice_id, actor_id)
            return InvoiceSelector(work.session).get_invoice(tenant_id, invoice_id)

    def issue_invoice(self, tenant_id: UUID, invoice_id: UUID, actor_id: UUID | None = None) -> InvoiceView:
        return self._status_edit("issue", tenant_id, invoice_id, actor_id)

    def cancel_invoice(self, tenant_id: UUID, invoice_id: UUID, actor_id: UUID | None = None) -> InvoiceView:
        return self._status_edit("cancel", tenant_id, invoice_id, actor_id)

    def mark_invoice_overdue(self, tenant_id: UUID, invoice_id: UUID, actor_id: UUID | None = None) -> InvoiceView:
        return self._status_edit("mark_overdue", tenant_id, invoice_id, actor_id)

    def clear_invoice_overdue(self, tenant_id: UUID, invoice_id: UUID, actor_id: UUID | None = None) -> InvoiceView:
        return self._status_edit("clear_overdue", tenant_id, invoice_id, actor_id)

    def get_invoice(self, tenant_id: UUID, invoice_id: UUID) -> InvoiceView:
        with self._unit_of_work("get_invoice", tenant_id, entity_id=invoice_id, read_only=True) as work:
            return InvoiceSelector(work.session).get_invoice(tenant_id, invoice_id)

    def list_invoices(self, tenant_id: UUID, **filters) -> list[InvoiceView]:
        with self._unit_of_work("list_invoices", tenant_id, read_only=True) as work:
            return InvoiceSelector(work.session).list_invoices(tenant_id, **filters)

    def find_reconciliation_drift(self, tenant_id: UUID) -> list[ReconciliationDrift]:
        with self._unit_of_work("find_reconciliation_drift", tenant_id, read_only=True) as work:
            return InvoiceSelector(work.session).find_reconciliation_drift(tenant_id)

    # -- payments ------------------------------------------------------------

    def apply_payment(
        self,
        tenant_id: UUID,
        invoice_id: UUID,
        amount: Money,
        payment_method: PaymentMethod | str = PaymentMethod.BANK_TRANSFER,
        payment_date: date | None = None,
        actor_id: UUID | None = None,
        currency: str | None = None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> ReconciliationResult:
        with self._unit_of_work("apply_payment", tenant_id, actor_id, invoice_id) as work:
            return work.reconciler().apply_payment(
                tenant_id,
                invoice_id,
                amount,
                payment_method,
                payment_date=payment_date,
                actor_id=actor_id,
                currency=currency,
                reference=reference,
                notes=notes,
            )

    def reverse_payment(
        self,
        tenant_id: UUID,
        payment_id: UUID,
        actor_id: UUID | None = None,
    ) -> ReconciliationResult | None:
        with self._unit_of_work("reverse_payment", tenant_id, actor_id, payment_id) as work:
            return work.reconciler().reverse_payment(tenant_id, payment_id, actor_id)

    def record_unlinked_payment(
        self,
        tenant_id: UUID,
        amount: Money,
        currency: str,
        payment_method: PaymentMethod | str = PaymentMethod.BANK_TRANSFER,
        payment_date: date | None = None,
        actor_id: UUID | None = None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> PaymentView:
        with self._unit_of_work("record_unlinked_payment", tenant_id, actor_id) as work:
            payment = work.reconciler().record_unlinked_payment(
                tenant_id,
                amount,
                currency,
                payment_method,
                payment_date=payment_date,
                actor_id=actor_id,
                reference=reference,
                notes=notes,
            )
            return payment_view(payment)
