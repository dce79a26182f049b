"""
Checkout service: starts payment attempts for existing orders.

Each attempt claims the order first (one in-flight attempt per order), calls
the provider through the orchestrator and releases the claim when the
provider call fails so the customer can retry.
"""

import logging
from typing import Optional

from app.errors import ConflictError, NotFoundError, error_for_kind
from app.models.schemas import (
    OnlinePaymentParams,
    Order,
    OrderStatus,
    PaymentItem,
    PaymentMethodType,
    PaymentProvider,
    PaymentResult,
    StorePaymentConfig,
    TerminalPaymentParams,
    TerminalPaymentResult,
)
from app.services.order_service import OrderService
from app.services.payment_orchestrator import PaymentOrchestrator

logger = logging.getLogger(__name__)


class CheckoutService:

    def __init__(self, orchestrator: PaymentOrchestrator, order_service: OrderService | None = None):
        self.orchestrator = orchestrator
        self.orders = order_service or OrderService()

    def _load(self, order_id: str) -> tuple[Order, StorePaymentConfig]:
        order = self.orders.get_order(order_id)
        config = self.orchestrator.resolver.get_config(order.store_id)
        if not config:
            raise NotFoundError("store not found")
        if order.status is not OrderStatus.PENDING:
            raise ConflictError(f"order is already {order.status.value}")
        return order, config

    def _claim(
        self,
        order: Order,
        provider: PaymentProvider,
        payment_method: Optional[PaymentMethodType],
        point_payment: bool,
    ) -> None:
        if not self.orders.claim_for_payment(order.id, provider, payment_method, point_payment):
            logger.warning(
                "Payment attempt refused, another attempt is in flight: order=%s", order.id
            )
            raise ConflictError("a payment attempt is already in progress for this order")

    def start_online_payment(
        self,
        order_id: str,
        provider: Optional[PaymentProvider] = None,
        payment_method: Optional[PaymentMethodType] = None,
    ) -> PaymentResult:
        """
        Create a hosted checkout or PIX charge for the order.

        Raises:
            NotFoundError: unknown order or store.
            ConflictError: order not PENDING or already being paid.
            ProviderConfigurationError / ProviderCommunicationError /
            PaymentDeclinedError: the provider call failed.
        """
        order, config = self._load(order_id)
        effective = self.orchestrator.effective_provider(config, provider)
        self._claim(order, effective, payment_method, point_payment=False)

        params = OnlinePaymentParams(
            order_id=order.id,
            items=[
                PaymentItem(
                    id=item.product_id,
                    title=item.product_name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                )
                for item in order.items
            ],
            total=order.total,
            store_slug=config.store_slug,
            store_id=config.store_id,
            payment_method=payment_method,
        )
        result = self.orchestrator.create_online_payment(params, config, effective)
        if not result.success:
            self.orders.release_claim(order.id)
            raise error_for_kind(result.error_kind, result.error or "payment creation failed")

        logger.info(
            "Online payment started: order=%s, provider=%s, method=%s",
            order.id, effective.value, payment_method.value if payment_method else "any",
        )
        return result

    def start_terminal_payment(
        self, order_id: str, provider: Optional[PaymentProvider] = None
    ) -> TerminalPaymentResult:
        """
        Send the order total to the store's card terminal.

        The gate check runs before the claim so a disabled terminal leaves the
        order untouched.
        """
        order, config = self._load(order_id)
        effective = self.orchestrator.effective_provider(config, provider)
        settings = config.settings_for(effective)
        if not settings.terminal_enabled:
            raise ConflictError("terminal not enabled for this provider")

        self._claim(order, effective, None, point_payment=True)
        params = TerminalPaymentParams(
            order_id=order.id,
            amount=order.total,
            description=f"Pedido {order.id[:8]}",
            device_id=settings.device_id or "",
            store_id=config.store_id,
        )
        result = self.orchestrator.create_terminal_payment(params, config, effective)
        if not result.success:
            self.orders.release_claim(order.id)
            raise error_for_kind(result.error_kind, result.error or "terminal payment failed")

        if result.payment_intent_id:
            self.orders.attach_payment_id(order.id, result.payment_intent_id)
        logger.info(
            "Terminal payment started: order=%s, provider=%s, intent=%s",
            order.id, effective.value, result.payment_intent_id,
        )
        return result
