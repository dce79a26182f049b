"""
Mercado Pago adapter.

- Online: Checkout Pro preferences for cards (redirect), direct PIX payments
  for QR codes.
- Terminal: Point integration API payment intents (create, status, cancel).
- Webhooks: ``{"type": "payment", "data": {"id": ...}}`` notifications,
  resolved by fetching the payment and reading its external_reference.
"""

import logging
import os
from typing import Mapping, Optional

from app.models.schemas import (
    OnlinePaymentParams,
    OrderStatus,
    PaymentMethodType,
    PaymentProvider,
    PaymentResult,
    PaymentStatusResult,
    ProviderCredentials,
    TerminalPaymentParams,
    TerminalPaymentResult,
    WebhookResult,
)
from app.services.providers.base import (
    PaymentProviderAdapter,
    ProviderRequestError,
    to_minor_units,
    to_wire_amount,
)
from app.services.sign import verify_mercadopago_signature

logger = logging.getLogger(__name__)

MERCADOPAGO_API_URL = "https://api.mercadopago.com"
PIX_PAYER_EMAIL = os.getenv("PIX_PAYER_EMAIL", "pagador@autoatendimento.com.br")

# Payment types to exclude from the checkout so only the requested rail remains.
_EXCLUDED_PAYMENT_TYPES = {
    PaymentMethodType.CREDIT_CARD: [
        "debit_card", "bank_transfer", "ticket", "atm", "prepaid_card",
    ],
    PaymentMethodType.DEBIT_CARD: [
        "credit_card", "bank_transfer", "ticket", "atm", "prepaid_card",
    ],
}


class MercadoPagoAdapter(PaymentProviderAdapter):
    provider = PaymentProvider.MERCADOPAGO
    display_name = "Mercado Pago"
    supports_device_listing = True

    STATUS_MAP = {
        "approved": OrderStatus.PAID,
        "rejected": OrderStatus.CANCELLED,
        "cancelled": OrderStatus.CANCELLED,
        "refunded": OrderStatus.REFUNDED,
        "charged_back": OrderStatus.REFUNDED,
    }

    def _error_message(self, data: dict, status_code: int) -> str:
        causes = data.get("cause")
        if isinstance(causes, list) and causes and isinstance(causes[0], dict):
            description = causes[0].get("description")
            if description:
                return description
        return data.get("message") or data.get("error") or f"HTTP {status_code}"

    # ── Online ────────────────────────────────────────────

    def create_online_payment(
        self, params: OnlinePaymentParams, credentials: ProviderCredentials
    ) -> PaymentResult:
        token = credentials.access_token
        if not token:
            return PaymentResult(
                success=False,
                error="Mercado Pago is not configured for this store",
                error_kind="configuration",
            )

        try:
            if params.payment_method == PaymentMethodType.PIX:
                return self._create_pix_payment(params, token)
            return self._create_preference(params, token)
        except ProviderRequestError as e:
            logger.error(
                "Mercado Pago create_online_payment failed: order=%s, error=%s",
                params.order_id, e,
            )
            return PaymentResult(success=False, error=str(e), error_kind=e.kind)

    def _create_preference(self, params: OnlinePaymentParams, token: str) -> PaymentResult:
        body = {
            "items": [
                {
                    "id": item.id,
                    "title": item.title,
                    "quantity": item.quantity,
                    "unit_price": to_wire_amount(item.unit_price),
                    "currency_id": "BRL",
                }
                for item in params.items
            ],
            "external_reference": params.order_id,
            "back_urls": {
                "success": self.return_url(params.store_slug, "sucesso"),
                "failure": self.return_url(params.store_slug, "falha"),
                "pending": self.return_url(params.store_slug, "pendente"),
            },
            "auto_return": "approved",
            "notification_url": self.notification_url(params.store_id),
        }
        excluded = _EXCLUDED_PAYMENT_TYPES.get(params.payment_method)
        if excluded:
            body["payment_methods"] = {
                "excluded_payment_types": [{"id": t} for t in excluded],
            }

        data = self._request(
            "POST", f"{MERCADOPAGO_API_URL}/checkout/preferences", token, body
        )
        redirect_url = data.get("init_point")
        if not redirect_url:
            raise ProviderRequestError(
                "Mercado Pago: preference created without a checkout URL"
            )
        logger.info(
            "Mercado Pago preference created: order=%s, preference=%s",
            params.order_id, data.get("id"),
        )
        return PaymentResult(
            success=True,
            preference_id=data.get("id"),
            redirect_url=redirect_url,
        )

    def _create_pix_payment(self, params: OnlinePaymentParams, token: str) -> PaymentResult:
        body = {
            "transaction_amount": to_wire_amount(params.total),
            "description": f"Pedido {params.order_id[:8]}",
            "payment_method_id": "pix",
            "external_reference": params.order_id,
            "notification_url": self.notification_url(params.store_id),
            "payer": {"email": PIX_PAYER_EMAIL},
        }
        data = self._request(
            "POST",
            f"{MERCADOPAGO_API_URL}/v1/payments",
            token,
            body,
            extra_headers={"X-Idempotency-Key": f"{params.order_id}-pix"},
        )

        if data.get("status") == "rejected":
            detail = data.get("status_detail") or "rejected"
            return PaymentResult(
                success=False,
                error=f"Mercado Pago: PIX payment rejected ({detail})",
                error_kind="declined",
            )

        transaction = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        qr_code = transaction.get("qr_code")
        if not qr_code:
            raise ProviderRequestError("Mercado Pago: PIX payment returned no QR code")

        logger.info(
            "Mercado Pago PIX created: order=%s, payment=%s",
            params.order_id, data.get("id"),
        )
        return PaymentResult(
            success=True,
            preference_id=str(data.get("id")) if data.get("id") is not None else None,
            qr_code_text=qr_code,
            qr_code_base64=transaction.get("qr_code_base64"),
        )

    # ── Terminal (Point) ──────────────────────────────────

    def create_terminal_payment(
        self, params: TerminalPaymentParams, credentials: ProviderCredentials
    ) -> TerminalPaymentResult:
        token = credentials.access_token
        if not token:
            return TerminalPaymentResult(
                success=False,
                error="Mercado Pago is not configured",
                error_kind="configuration",
            )
        if not params.device_id:
            return TerminalPaymentResult(
                success=False,
                error="Point terminal is not configured",
                error_kind="configuration",
            )

        body = {
            "amount": to_minor_units(params.amount),
            "description": params.description,
            "additional_info": {
                "external_reference": params.order_id,
                "print_on_terminal": True,
            },
        }
        try:
            data = self._request(
                "POST",
                f"{MERCADOPAGO_API_URL}/point/integration-api/devices/"
                f"{params.device_id}/payment-intents",
                token,
                body,
            )
        except ProviderRequestError as e:
            logger.error(
                "Mercado Pago Point create failed: order=%s, device=%s, error=%s",
                params.order_id, params.device_id, e,
            )
            return TerminalPaymentResult(success=False, error=str(e), error_kind=e.kind)

        logger.info(
            "Mercado Pago Point intent created: order=%s, intent=%s",
            params.order_id, data.get("id"),
        )
        return TerminalPaymentResult(
            success=True,
            payment_intent_id=data.get("id"),
            status=data.get("state") or "OPEN",
        )

    def query_terminal_status(
        self, payment_intent_id: str, credentials: ProviderCredentials
    ) -> TerminalPaymentResult:
        token = credentials.access_token
        if not token:
            return TerminalPaymentResult(
                success=False,
                error="Mercado Pago is not configured",
                error_kind="configuration",
            )
        try:
            data = self._request(
                "GET",
                f"{MERCADOPAGO_API_URL}/point/integration-api/payment-intents/"
                f"{payment_intent_id}",
                token,
            )
        except ProviderRequestError as e:
            return TerminalPaymentResult(success=False, error=str(e), error_kind=e.kind)

        return TerminalPaymentResult(
            success=True,
            payment_intent_id=data.get("id") or payment_intent_id,
            status=data.get("state"),
        )

    def cancel_terminal_payment(
        self,
        payment_intent_id: str,
        credentials: ProviderCredentials,
        device_id: Optional[str] = None,
    ) -> TerminalPaymentResult:
        token = credentials.access_token
        if not token or not device_id:
            return TerminalPaymentResult(
                success=False,
                error="Mercado Pago Point configuration is incomplete",
                error_kind="configuration",
            )
        try:
            self._request(
                "DELETE",
                f"{MERCADOPAGO_API_URL}/point/integration-api/devices/"
                f"{device_id}/payment-intents/{payment_intent_id}",
                token,
            )
        except ProviderRequestError as e:
            return TerminalPaymentResult(success=False, error=str(e), error_kind=e.kind)

        logger.info("Mercado Pago Point intent cancelled: intent=%s", payment_intent_id)
        return TerminalPaymentResult(
            success=True, payment_intent_id=payment_intent_id, status="CANCELED"
        )

    def list_devices(self, credentials: ProviderCredentials) -> list[dict]:
        """Point devices linked to the account; empty on any failure."""
        token = credentials.access_token
        if not token:
            return []
        try:
            data = self._request(
                "GET", f"{MERCADOPAGO_API_URL}/point/integration-api/devices", token
            )
        except ProviderRequestError as e:
            logger.warning("Mercado Pago device listing failed: %s", e)
            return []
        devices = data.get("devices") or []
        return [
            {"id": d.get("id"), "operating_mode": d.get("operating_mode")}
            for d in devices
            if isinstance(d, dict)
        ]

    # ── Status and webhooks ───────────────────────────────

    def _fetch_payment(self, payment_id: str, token: str) -> dict:
        return self._request(
            "GET", f"{MERCADOPAGO_API_URL}/v1/payments/{payment_id}", token
        )

    def query_payment_status(
        self, payment_id: str, credentials: ProviderCredentials
    ) -> PaymentStatusResult:
        token = credentials.access_token
        if not token:
            return PaymentStatusResult(error="Mercado Pago is not configured")
        try:
            data = self._fetch_payment(payment_id, token)
        except ProviderRequestError as e:
            logger.warning("Mercado Pago status query failed: payment=%s, error=%s", payment_id, e)
            return PaymentStatusResult(error=str(e))

        return PaymentStatusResult(
            status=self.map_status(data.get("status")),
            payment_id=str(data.get("id") or payment_id),
            payment_method=data.get("payment_method_id"),
        )

    def handle_webhook(
        self,
        raw_body: bytes,
        credentials: ProviderCredentials,
        headers: Optional[Mapping[str, str]] = None,
    ) -> WebhookResult:
        body = self._parse_json_body(raw_body)
        if body is None:
            logger.warning("Mercado Pago webhook ignored: body is not a JSON object")
            return WebhookResult()

        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        payment_id = data.get("id")
        if body.get("type") != "payment" or not payment_id:
            logger.info("Mercado Pago webhook ignored: type=%s", body.get("type"))
            return WebhookResult()
        payment_id = str(payment_id)

        headers = headers or {}
        if credentials.webhook_secret and not verify_mercadopago_signature(
            credentials.webhook_secret,
            headers.get("x-signature"),
            payment_id,
            headers.get("x-request-id"),
        ):
            logger.warning("Mercado Pago webhook rejected: bad signature, payment=%s", payment_id)
            return WebhookResult()

        if not credentials.access_token:
            logger.warning("Mercado Pago webhook ignored: store has no access token")
            return WebhookResult()

        try:
            payment = self._fetch_payment(payment_id, credentials.access_token)
        except ProviderRequestError as e:
            logger.warning("Mercado Pago webhook payment lookup failed: payment=%s, error=%s", payment_id, e)
            return WebhookResult()

        order_ref = payment.get("external_reference")
        if not order_ref:
            logger.warning("Mercado Pago webhook payment %s has no external_reference", payment_id)
            return WebhookResult()

        return WebhookResult(
            order_ref=str(order_ref),
            status=self.map_status(payment.get("status")),
            payment_id=payment_id,
        )
