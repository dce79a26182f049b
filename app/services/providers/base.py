"""
Provider adapter interface shared by every payment provider.

Each adapter implements the full capability set. Expected failures (missing
credentials, network errors, provider rejections) come back as results with
success=False and an error_kind tag; adapters never raise them to callers.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional

import httpx

from app.models.schemas import (
    OnlinePaymentParams,
    OrderStatus,
    PaymentProvider,
    PaymentResult,
    PaymentStatusResult,
    ProviderCredentials,
    TerminalPaymentParams,
    TerminalPaymentResult,
    WebhookResult,
)

logger = logging.getLogger(__name__)

PROVIDER_TIMEOUT = float(os.getenv("PROVIDER_TIMEOUT", "15"))
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000")


def to_minor_units(amount: Decimal) -> int:
    """Convert an amount to integer cents, rounding half up (never truncating)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_wire_amount(amount: Decimal) -> float:
    """Two-decimal number for JSON bodies that take amounts in currency units."""
    return float(Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class ProviderRequestError(Exception):
    """Raised inside adapters when a provider call fails; converted to a result."""

    def __init__(self, message: str, kind: str = "communication"):
        super().__init__(message)
        self.kind = kind


class PaymentProviderAdapter(ABC):
    """Base class for payment provider adapters."""

    provider: PaymentProvider
    display_name: str = ""

    # Capability flags; adapters lacking a first-class endpoint turn them off
    # and return an explicit failure from the corresponding method.
    supports_terminal_status: bool = True
    supports_terminal_cancel: bool = True
    supports_device_listing: bool = False

    # Provider status string -> neutral order status. Anything not listed
    # maps to PENDING.
    STATUS_MAP: dict[str, OrderStatus] = {}

    def __init__(
        self,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = PROVIDER_TIMEOUT,
    ):
        self._transport = transport
        self._timeout = timeout

    # ── Capability set ────────────────────────────────────

    @abstractmethod
    def create_online_payment(
        self, params: OnlinePaymentParams, credentials: ProviderCredentials
    ) -> PaymentResult:
        """Create a checkout session (cards) or an immediate QR code (PIX)."""

    @abstractmethod
    def create_terminal_payment(
        self, params: TerminalPaymentParams, credentials: ProviderCredentials
    ) -> TerminalPaymentResult:
        """Send a charge to a physical card terminal."""

    @abstractmethod
    def query_terminal_status(
        self, payment_intent_id: str, credentials: ProviderCredentials
    ) -> TerminalPaymentResult:
        """Read the provider-native status of a terminal payment. Safe to poll."""

    @abstractmethod
    def cancel_terminal_payment(
        self,
        payment_intent_id: str,
        credentials: ProviderCredentials,
        device_id: Optional[str] = None,
    ) -> TerminalPaymentResult:
        """Best-effort cancellation of a terminal payment."""

    @abstractmethod
    def query_payment_status(
        self, payment_id: str, credentials: ProviderCredentials
    ) -> PaymentStatusResult:
        """Fetch a payment and map its status to the neutral enum."""

    @abstractmethod
    def handle_webhook(
        self,
        raw_body: bytes,
        credentials: ProviderCredentials,
        headers: Optional[Mapping[str, str]] = None,
    ) -> WebhookResult:
        """Parse a provider notification. Malformed input yields an empty result."""

    def list_devices(self, credentials: ProviderCredentials) -> list[dict]:
        """Terminal devices linked to the account. Only called when ``supports_device_listing``."""
        return []

    # ── Shared helpers ────────────────────────────────────

    def map_status(self, raw_status: Optional[str]) -> OrderStatus:
        return self.STATUS_MAP.get(raw_status or "", OrderStatus.PENDING)

    def notification_url(self, store_id: str) -> str:
        return (
            f"{BACKEND_URL}/api/payments/webhook/{self.provider.value.lower()}"
            f"?store_id={store_id}"
        )

    @staticmethod
    def return_url(store_slug: str, outcome: str = "sucesso") -> str:
        return f"{FRONTEND_URL}/{store_slug}/pagamento/{outcome}"

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self._timeout, transport=self._transport)

    def _headers(self, token: str, extra: Optional[dict] = None) -> dict:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }
        if extra:
            headers.update(extra)
        return headers

    def _error_message(self, data: dict, status_code: int) -> str:
        """Extract a readable message from a provider error body."""
        return data.get("message") or f"HTTP {status_code}"

    def _request(
        self,
        method: str,
        url: str,
        token: str,
        json_body: Optional[dict] = None,
        extra_headers: Optional[dict] = None,
    ) -> dict:
        """
        Perform an authenticated JSON call.

        Returns:
            The decoded JSON body (empty dict for empty responses).

        Raises:
            ProviderRequestError: network failure, non-2xx status or bad JSON.
        """
        try:
            with self._client() as client:
                response = client.request(
                    method,
                    url,
                    json=json_body,
                    headers=self._headers(token, extra_headers),
                )
        except httpx.HTTPError as e:
            raise ProviderRequestError(
                f"{self.display_name}: request failed: {e}", "communication"
            )

        if response.status_code >= 400:
            try:
                data = response.json()
            except ValueError:
                data = {}
            message = self._error_message(data if isinstance(data, dict) else {}, response.status_code)
            if response.status_code in (401, 403):
                kind = "configuration"
            elif response.status_code >= 500:
                kind = "communication"
            else:
                kind = "declined"
            logger.warning(
                "%s %s %s failed: status=%d, message=%s",
                self.display_name, method, url, response.status_code, message,
            )
            raise ProviderRequestError(f"{self.display_name}: {message}", kind)

        if not response.content:
            return {}
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise ProviderRequestError(
                f"{self.display_name}: invalid response: {e}", "communication"
            )
        return data if isinstance(data, dict) else {"data": data}

    @staticmethod
    def _parse_json_body(raw_body: bytes) -> Optional[dict]:
        try:
            data = json.loads(raw_body or b"")
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
            return None
        return data if isinstance(data, dict) else None
