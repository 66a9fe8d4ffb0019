"""
Notifications -- invoice issued / payment received hooks.

Services enqueue notifications while the transaction is open; the
orchestrator dispatches them only after commit.  A failing notifier is
logged and never affects the committed reconciliation.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from backoffice_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class InvoiceNotifier(Protocol):
    def notify_invoice_issued(self, tenant_id: UUID, invoice_id: UUID, invoice_number: str) -> None:
        ...

    def notify_payment_received(
        self, tenant_id: UUID, invoice_id: UUID, payment_id: UUID, amount: str
    ) -> None:
        ...


class NullNotifier:
    """Default notifier: does nothing."""

    def notify_invoice_issued(self, tenant_id, invoice_id, invoice_number) -> None:
        return None

    def notify_payment_received(self, tenant_id, invoice_id, payment_id, amount) -> None:
        return None


@dataclass(frozen=True)
class PendingNotification:
    method: str
    kwargs: dict[str, Any]


@dataclass
class NotificationQueue:
    """Notifications collected during one transaction."""

    pending: list[PendingNotification] = field(default_factory=list)

    def invoice_issued(self, tenant_id: UUID, invoice_id: UUID, invoice_number: str) -> None:
        self.pending.append(PendingNotification(
            "notify_invoice_issued",
            {"tenant_id": tenant_id, "invoice_id": invoice_id, "invoice_number": invoice_number},
        ))

    def payment_received(
        self, tenant_id: UUID, invoice_id: UUID, payment_id: UUID, amount: str
    ) -> None:
        self.pending.append(PendingNotification(
            "notify_payment_received",
            {
                "tenant_id": tenant_id,
                "invoice_id": invoice_id,
                "payment_id": payment_id,
                "amount": amount,
            },
        ))

    def discard(self) -> None:
        self.pending.clear()

    def dispatch(self, notifier: InvoiceNotifier) -> int:
        """
        Deliver every pending notification, then empty the queue.

        Returns the number of notifications that failed.  Failures are
        logged with traceback and do not stop later deliveries.
        """
        failures = 0
        pending, self.pending = self.pending, []
        for item in pending:
            try:
                getattr(notifier, item.method)(**item.kwargs)
            except Exception:
                failures += 1
                logger.warning(
                    "notification_failed",
                    extra={"notification": item.method, "invoice_id": item.kwargs.get("invoice_id")},
                    exc_info=True,
                )
        return failures
