"""
Order settlement reconciler: applies provider status observations to orders.

Order lifecycle: PENDING -> PAID | CANCELLED | REFUNDED. Terminal states are
absorbing; every transition is a single conditional write on
``status = 'PENDING'`` so concurrent webhooks and polls cannot regress an order.
The first terminal observation wins; later disagreeing ones are logged.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional

from app.database import get_db
from app.errors import (
    ConflictError,
    NotFoundError,
    ProviderCommunicationError,
    error_for_kind,
)
from app.models.schemas import Order, OrderStatus, PaymentProvider
from app.services.order_service import OrderService
from app.services.payment_orchestrator import PaymentOrchestrator
from app.services.store_config import StoreConfigResolver

logger = logging.getLogger(__name__)

# Native terminal (and fallback) statuses -> order status. Anything else is PENDING.
TERMINAL_STATUS_MAP = {
    "FINISHED": OrderStatus.PAID,
    "PAID": OrderStatus.PAID,
    "CANCELED": OrderStatus.CANCELLED,
    "CANCELLED": OrderStatus.CANCELLED,
    "ABANDONED": OrderStatus.CANCELLED,
    "ERROR": OrderStatus.CANCELLED,
    "DECLINED": OrderStatus.CANCELLED,
    "REFUNDED": OrderStatus.REFUNDED,
}


def map_terminal_status(native_status: Optional[str]) -> OrderStatus:
    if not native_status:
        return OrderStatus.PENDING
    return TERMINAL_STATUS_MAP.get(native_status.upper(), OrderStatus.PENDING)


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"        # PENDING -> terminal transition written
    UNCHANGED = "unchanged"    # PENDING observation, nothing to do
    DUPLICATE = "duplicate"    # same terminal status already recorded
    CONFLICT = "conflict"      # different terminal status already recorded
    NOT_FOUND = "not_found"
    IGNORED = "ignored"        # notification carried nothing actionable


@dataclass
class ReconcileResult:
    order_id: str
    outcome: ReconcileOutcome
    order_status: OrderStatus
    provider_status: Optional[str] = None
    # status came from the generic payment query, not a terminal endpoint
    fallback: bool = False


class SettlementReconciler:
    """Turns webhooks, polls and cancellations into order status transitions."""

    def __init__(
        self,
        orchestrator: PaymentOrchestrator,
        resolver: StoreConfigResolver | None = None,
        order_service: OrderService | None = None,
    ):
        self.orchestrator = orchestrator
        self.resolver = resolver or orchestrator.resolver
        self.orders = order_service or OrderService()

    def apply_status(
        self, order_id: str, status: OrderStatus, payment_id: Optional[str] = None
    ) -> ReconcileOutcome:
        """
        Apply an observed status to an order.

        A PENDING observation never changes the status; it only records the
        provider payment id when none is set yet. A terminal observation moves
        a PENDING order in one conditional write; an order already in a
        terminal state is left as is.
        """
        if status is OrderStatus.PENDING:
            order = self.orders.find_order(order_id)
            if not order:
                return ReconcileOutcome.NOT_FOUND
            if payment_id:
                self.orders.attach_payment_id(order_id, payment_id)
            return ReconcileOutcome.UNCHANGED

        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """UPDATE orders
                   SET status = ?,
                       payment_id = COALESCE(payment_id, ?),
                       paid_at = CASE WHEN ? = 'PAID' THEN ? ELSE paid_at END,
                       updated_at = ?
                   WHERE id = ? AND status = 'PENDING'""",
                (status.value, payment_id, status.value, now, now, order_id),
            )
            db.commit()
            if cursor.rowcount == 1:
                logger.info(
                    "Order settled: id=%s, status=%s, payment_id=%s",
                    order_id, status.value, payment_id,
                )
                return ReconcileOutcome.APPLIED

            row = db.execute(
                "SELECT status FROM orders WHERE id = ?", (order_id,)
            ).fetchone()
        finally:
            db.close()

        if not row:
            logger.warning("Status update for unknown order: id=%s", order_id)
            return ReconcileOutcome.NOT_FOUND
        if row["status"] == status.value:
            logger.info("Duplicate status update ignored: id=%s, status=%s", order_id, status.value)
            return ReconcileOutcome.DUPLICATE

        logger.warning(
            "Settlement anomaly: order %s is %s, provider now reports %s (payment_id=%s); kept %s",
            order_id, row["status"], status.value, payment_id, row["status"],
        )
        return ReconcileOutcome.CONFLICT

    # ── Webhooks ──────────────────────────────────────────

    def handle_webhook(
        self,
        provider: PaymentProvider,
        raw_body: bytes,
        store_id: Optional[str],
        headers: Optional[Mapping[str, str]] = None,
    ) -> Optional[ReconcileOutcome]:
        """
        Process a provider notification. Never raises: providers retry on
        non-2xx, so every failure is logged and the caller still acknowledges.

        Returns:
            The reconcile outcome, or None when processing failed.
        """
        try:
            return self._handle_webhook(provider, raw_body, store_id, headers)
        except Exception:
            logger.exception(
                "Webhook processing failed: provider=%s, store=%s", provider.value, store_id
            )
            return None

    def _handle_webhook(
        self,
        provider: PaymentProvider,
        raw_body: bytes,
        store_id: Optional[str],
        headers: Optional[Mapping[str, str]],
    ) -> ReconcileOutcome:
        if not store_id:
            logger.warning("Webhook ignored: no store_id, provider=%s", provider.value)
            return ReconcileOutcome.IGNORED

        config = self.resolver.get_config(store_id)
        if not config:
            logger.warning("Webhook ignored: unknown store %s", store_id)
            return ReconcileOutcome.IGNORED

        result = self.orchestrator.handle_webhook(provider, raw_body, config, headers)
        if result.is_empty:
            return ReconcileOutcome.IGNORED

        order = self.orders.find_by_external_reference(result.order_ref)
        if not order or order.store_id != store_id:
            logger.warning(
                "Webhook for unknown order: provider=%s, store=%s, reference=%s",
                provider.value, store_id, result.order_ref,
            )
            return ReconcileOutcome.NOT_FOUND

        if order.payment_provider != provider:
            logger.warning(
                "Webhook ignored: order %s is being paid with %s, notification from %s",
                order.id,
                order.payment_provider.value if order.payment_provider else None,
                provider.value,
            )
            return ReconcileOutcome.IGNORED

        logger.info(
            "Webhook received: provider=%s, order=%s, status=%s, payment_id=%s",
            provider.value, order.id, result.status.value, result.payment_id,
        )
        return self.apply_status(order.id, result.status, result.payment_id)

    # ── Terminal payments ─────────────────────────────────

    def _terminal_order(self, payment_intent_id: str, store_id: str):
        config = self.resolver.get_config(store_id)
        if not config:
            raise NotFoundError("store not found")
        order = self.orders.find_by_payment_id(payment_intent_id, store_id)
        if not order:
            raise NotFoundError("no order for this payment intent")
        return config, order

    def _result(
        self,
        order: Order,
        outcome: ReconcileOutcome,
        provider_status: Optional[str],
        fallback: bool = False,
    ):
        current = self.orders.get_order(order.id)
        return ReconcileResult(
            order_id=order.id,
            outcome=outcome,
            order_status=current.status,
            provider_status=provider_status,
            fallback=fallback,
        )

    def poll_terminal_payment(self, payment_intent_id: str, store_id: str) -> ReconcileResult:
        """
        Query the terminal payment once and apply what the provider reports.

        Raises:
            NotFoundError: unknown store or no order holds this intent id.
            ProviderCommunicationError: the status query failed.
        """
        config, order = self._terminal_order(payment_intent_id, store_id)
        result = self.orchestrator.get_terminal_status(
            payment_intent_id, config, order.payment_provider
        )
        if not result.success:
            logger.warning(
                "Terminal status query failed: intent=%s, error=%s",
                payment_intent_id, result.error,
            )
            raise ProviderCommunicationError(result.error or "terminal status query failed")

        outcome = self.apply_status(order.id, map_terminal_status(result.status))
        return self._result(order, outcome, result.status, result.fallback)

    def cancel_terminal_payment(self, payment_intent_id: str, store_id: str) -> ReconcileResult:
        """
        Cancel the intent at the provider, then mark the order CANCELLED.

        The order is only touched after the provider confirms the cancellation.

        Raises:
            ConflictError: the order is already settled; the provider is not called.
        """
        config, order = self._terminal_order(payment_intent_id, store_id)
        if order.status.is_terminal:
            raise ConflictError(f"order is already {order.status.value}")

        result = self.orchestrator.cancel_terminal_payment(
            payment_intent_id, config, order.payment_provider
        )
        if not result.success:
            logger.warning(
                "Terminal cancel failed: intent=%s, order=%s, error=%s",
                payment_intent_id, order.id, result.error,
            )
            raise error_for_kind(result.error_kind, result.error or "cancellation failed")

        outcome = self.apply_status(order.id, OrderStatus.CANCELLED)
        return self._result(order, outcome, result.status)
