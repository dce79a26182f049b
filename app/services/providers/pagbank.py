"""
PagBank adapter.

- Online: hosted checkouts for cards (redirect), orders with ``qr_codes`` for PIX.
- Terminal: card charges for the Moderninha. PagBank has no dedicated terminal
  status or cancel endpoint, so those capabilities report an explicit failure
  and callers fall back to the generic payment status query.
- Webhooks: signed order/charge notifications; the charge is re-read from the API.
"""

import base64
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

import httpx

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
)
from app.services.sign import verify_pagbank_signature

logger = logging.getLogger(__name__)

PAGBANK_API_URL = (
    "https://sandbox.api.pagseguro.com"
    if os.getenv("PAGBANK_SANDBOX", "0").lower() in ("1", "true")
    else "https://api.pagseguro.com"
)
PAGBANK_CUSTOMER_TAX_ID = os.getenv("PAGBANK_CUSTOMER_TAX_ID", "12345678909")

CHECKOUT_EXPIRATION = timedelta(hours=1)
PIX_EXPIRATION = timedelta(minutes=30)

# Field limits imposed by the PagBank API.
_MAX_FIELD_LEN = 64


def _expiration(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) + delta).isoformat(timespec="seconds")


class PagBankAdapter(PaymentProviderAdapter):
    provider = PaymentProvider.PAGBANK
    display_name = "PagBank"

    supports_terminal_status = False
    supports_terminal_cancel = False

    STATUS_MAP = {
        "PAID": OrderStatus.PAID,
        "AUTHORIZED": OrderStatus.PENDING,
        "WAITING": OrderStatus.PENDING,
        "IN_ANALYSIS": OrderStatus.PENDING,
        "DECLINED": OrderStatus.CANCELLED,
        "CANCELED": OrderStatus.CANCELLED,
    }

    def _error_message(self, data: dict, status_code: int) -> str:
        messages = data.get("error_messages")
        if isinstance(messages, list) and messages and isinstance(messages[0], dict):
            description = messages[0].get("description")
            if description:
                return description
        return data.get("message") or f"HTTP {status_code}"

    def _items(self, params: OnlinePaymentParams) -> list[dict]:
        return [
            {
                "reference_id": item.id[:_MAX_FIELD_LEN],
                "name": item.title[:_MAX_FIELD_LEN],
                "quantity": item.quantity,
                "unit_amount": to_minor_units(item.unit_price),
            }
            for item in params.items
        ]

    # ── Online ────────────────────────────────────────────

    def create_online_payment(
        self, params: OnlinePaymentParams, credentials: ProviderCredentials
    ) -> PaymentResult:
        token = credentials.access_token
        if not token:
            return PaymentResult(
                success=False,
                error="PagBank is not configured for this store",
                error_kind="configuration",
            )

        try:
            if params.payment_method == PaymentMethodType.PIX:
                return self._create_pix_order(params, credentials)
            return self._create_checkout(params, token)
        except ProviderRequestError as e:
            logger.error(
                "PagBank create_online_payment failed: order=%s, error=%s",
                params.order_id, e,
            )
            return PaymentResult(success=False, error=str(e), error_kind=e.kind)

    def _create_checkout(self, params: OnlinePaymentParams, token: str) -> PaymentResult:
        if params.payment_method:
            methods = [{"type": params.payment_method.value}]
        else:
            methods = [{"type": t.value} for t in PaymentMethodType]

        body = {
            "reference_id": params.order_id,
            "expiration_date": _expiration(CHECKOUT_EXPIRATION),
            "customer_modifiable": False,
            "items": self._items(params),
            "additional_amount": 0,
            "discount_amount": 0,
            "payment_methods": methods,
            "soft_descriptor": "AUTOATENDIMENTO",
            "redirect_url": self.return_url(params.store_slug, "sucesso"),
            "return_url": self.return_url(params.store_slug, "sucesso"),
            "notification_urls": [self.notification_url(params.store_id)],
        }
        if params.payment_method in (None, PaymentMethodType.CREDIT_CARD):
            body["payment_methods_configs"] = [
                {
                    "type": "CREDIT_CARD",
                    "config_options": [{"option": "INSTALLMENTS_LIMIT", "value": "1"}],
                },
            ]

        data = self._request("POST", f"{PAGBANK_API_URL}/checkouts", token, body)
        pay_link = next(
            (link.get("href") for link in data.get("links") or [] if link.get("rel") == "PAY"),
            None,
        )
        if not pay_link:
            raise ProviderRequestError("PagBank: checkout created without a PAY link")

        logger.info("PagBank checkout created: order=%s, checkout=%s", params.order_id, data.get("id"))
        return PaymentResult(success=True, preference_id=data.get("id"), redirect_url=pay_link)

    def _create_pix_order(
        self, params: OnlinePaymentParams, credentials: ProviderCredentials
    ) -> PaymentResult:
        token = credentials.access_token
        body = {
            "reference_id": params.order_id,
            "customer": {
                "name": "Cliente Autoatendimento",
                "email": credentials.email or "cliente@autoatendimento.com.br",
                "tax_id": PAGBANK_CUSTOMER_TAX_ID,
            },
            "items": self._items(params),
            "qr_codes": [
                {
                    "amount": {"value": to_minor_units(params.total)},
                    "expiration_date": _expiration(PIX_EXPIRATION),
                },
            ],
            "notification_urls": [self.notification_url(params.store_id)],
        }
        data = self._request("POST", f"{PAGBANK_API_URL}/orders", token, body)

        qr_codes = data.get("qr_codes") or []
        qr = qr_codes[0] if qr_codes and isinstance(qr_codes[0], dict) else {}
        qr_text = qr.get("text")
        if not qr_text:
            raise ProviderRequestError("PagBank: PIX order returned no QR code")

        image_href = next(
            (
                link.get("href")
                for link in qr.get("links") or []
                if link.get("media") == "image/png"
            ),
            None,
        )
        logger.info("PagBank PIX order created: order=%s, pagbank_order=%s", params.order_id, data.get("id"))
        return PaymentResult(
            success=True,
            preference_id=data.get("id"),
            qr_code_text=qr_text,
            qr_code_base64=self._fetch_qr_image(image_href, token) if image_href else None,
        )

    def _fetch_qr_image(self, href: str, token: str) -> Optional[str]:
        """Download the QR PNG and return it base64-encoded; None on failure."""
        try:
            with self._client() as client:
                response = client.get(href, headers={"Authorization": f"Bearer {token}"})
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("PagBank QR image download failed: %s", e)
            return None
        return base64.b64encode(response.content).decode("ascii")

    # ── Terminal (Moderninha) ─────────────────────────────

    def create_terminal_payment(
        self, params: TerminalPaymentParams, credentials: ProviderCredentials
    ) -> TerminalPaymentResult:
        token = credentials.access_token
        if not token:
            return TerminalPaymentResult(
                success=False, error="PagBank is not configured", error_kind="configuration"
            )
        if not params.device_id:
            return TerminalPaymentResult(
                success=False,
                error="Moderninha terminal is not configured",
                error_kind="configuration",
            )

        body = {
            "reference_id": params.order_id,
            "description": params.description,
            "amount": {"value": to_minor_units(params.amount), "currency": "BRL"},
            "payment_method": {"type": "DEBIT_CARD", "card": {"capture": True}},
            "metadata": {"device_serial": params.device_id},
            "notification_urls": [self.notification_url(params.store_id)],
        }
        try:
            data = self._request("POST", f"{PAGBANK_API_URL}/charges", token, body)
        except ProviderRequestError as e:
            logger.error(
                "PagBank terminal charge failed: order=%s, device=%s, error=%s",
                params.order_id, params.device_id, e,
            )
            return TerminalPaymentResult(success=False, error=str(e), error_kind=e.kind)

        logger.info("PagBank terminal charge created: order=%s, charge=%s", params.order_id, data.get("id"))
        return TerminalPaymentResult(
            success=True,
            payment_intent_id=data.get("id"),
            status=data.get("status") or "WAITING",
        )

    def query_terminal_status(
        self, payment_intent_id: str, credentials: ProviderCredentials
    ) -> TerminalPaymentResult:
        return TerminalPaymentResult(
            success=False,
            payment_intent_id=payment_intent_id,
            error="PagBank has no terminal status endpoint; query the payment status instead",
            error_kind="unsupported",
        )

    def cancel_terminal_payment(
        self,
        payment_intent_id: str,
        credentials: ProviderCredentials,
        device_id: Optional[str] = None,
    ) -> TerminalPaymentResult:
        return TerminalPaymentResult(
            success=False,
            payment_intent_id=payment_intent_id,
            error="Cancellation is not supported for PagBank terminal payments; "
                  "cancel the charge on the Moderninha itself",
            error_kind="unsupported",
        )

    # ── Status and webhooks ───────────────────────────────

    def _fetch_charge(self, payment_id: str, token: str) -> tuple[dict, Optional[str]]:
        """
        Charges (``CHAR_...``) are read directly; anything else is treated as
        an order id and its first charge is used.

        Returns:
            The charge and the ``reference_id`` recorded at the provider.
        """
        if payment_id.startswith("CHAR_"):
            charge = self._request("GET", f"{PAGBANK_API_URL}/charges/{payment_id}", token)
            return charge, charge.get("reference_id")

        data = self._request("GET", f"{PAGBANK_API_URL}/orders/{payment_id}", token)
        charges = data.get("charges") or []
        charge = charges[0] if charges and isinstance(charges[0], dict) else {}
        return charge, data.get("reference_id") or charge.get("reference_id")

    def query_payment_status(
        self, payment_id: str, credentials: ProviderCredentials
    ) -> PaymentStatusResult:
        token = credentials.access_token
        if not token:
            return PaymentStatusResult(error="PagBank is not configured")

        try:
            charge, _ = self._fetch_charge(payment_id, token)
        except ProviderRequestError as e:
            logger.warning("PagBank status query failed: payment=%s, error=%s", payment_id, e)
            return PaymentStatusResult(error=str(e))

        return PaymentStatusResult(
            status=self.map_status(charge.get("status")),
            payment_id=charge.get("id"),
            payment_method=(charge.get("payment_method") or {}).get("type"),
        )

    def handle_webhook(
        self,
        raw_body: bytes,
        credentials: ProviderCredentials,
        headers: Optional[Mapping[str, str]] = None,
    ) -> WebhookResult:
        """
        The notification only says which charge changed. It must carry a valid
        ``x-authenticity-token``, and the status and reference are re-read
        from the API rather than taken from the body.
        """
        body = self._parse_json_body(raw_body)
        if body is None:
            logger.warning("PagBank webhook ignored: body is not a JSON object")
            return WebhookResult()

        token = credentials.access_token
        if not token:
            logger.warning("PagBank webhook ignored: store has no PagBank token")
            return WebhookResult()

        signature = (headers or {}).get("x-authenticity-token")
        if not signature or not verify_pagbank_signature(token, raw_body, signature):
            logger.warning("PagBank webhook rejected: missing or bad authenticity token")
            return WebhookResult()

        charges = body.get("charges") or []
        charge = charges[0] if charges and isinstance(charges[0], dict) else {}
        lookup_id = charge.get("id") or body.get("id")
        if not lookup_id:
            logger.info("PagBank webhook ignored: no charge or order id")
            return WebhookResult()
        lookup_id = str(lookup_id)

        try:
            charge, reference_id = self._fetch_charge(lookup_id, token)
        except ProviderRequestError as e:
            logger.warning("PagBank webhook lookup failed: id=%s, error=%s", lookup_id, e)
            return WebhookResult()

        if not reference_id:
            logger.info("PagBank webhook ignored: %s has no reference_id", lookup_id)
            return WebhookResult()

        return WebhookResult(
            order_ref=str(reference_id),
            status=self.map_status(charge.get("status")),
            payment_id=charge.get("id"),
        )
