"""
Payment orchestrator: picks the adapter for a tenant and enforces capability gates.

Stateless between calls. Configuration comes from the resolver and the
adapters are injected at construction, so tests can pass doubles.
"""

import logging
from dataclasses import replace
from typing import Mapping, Optional

from app.models.schemas import (
    AvailableOptions,
    OnlinePaymentParams,
    PaymentProvider,
    PaymentResult,
    StorePaymentConfig,
    TerminalPaymentParams,
    TerminalPaymentResult,
    WebhookResult,
)
from app.services.providers import PaymentProviderAdapter
from app.services.store_config import StoreConfigResolver

logger = logging.getLogger(__name__)


class PaymentOrchestrator:
    """Provider-agnostic entry point for payment operations."""

    def __init__(
        self,
        resolver: StoreConfigResolver,
        adapters: Mapping[PaymentProvider, PaymentProviderAdapter],
    ):
        self.resolver = resolver
        self._adapters = dict(adapters)

    def effective_provider(
        self, config: StorePaymentConfig, preferred: Optional[PaymentProvider] = None
    ) -> PaymentProvider:
        return preferred or config.default_provider

    def adapter_for(self, provider: PaymentProvider) -> PaymentProviderAdapter:
        try:
            return self._adapters[provider]
        except KeyError:
            raise ValueError(f"no adapter registered for provider {provider}")

    # ── Online ────────────────────────────────────────────

    def create_online_payment(
        self,
        params: OnlinePaymentParams,
        config: StorePaymentConfig,
        preferred_provider: Optional[PaymentProvider] = None,
    ) -> PaymentResult:
        """Single attempt; the caller decides whether to retry."""
        provider = self.effective_provider(config, preferred_provider)
        adapter = self.adapter_for(provider)
        return adapter.create_online_payment(params, config.credentials_for(provider))

    # ── Terminal ──────────────────────────────────────────

    def create_terminal_payment(
        self,
        params: TerminalPaymentParams,
        config: StorePaymentConfig,
        preferred_provider: Optional[PaymentProvider] = None,
    ) -> TerminalPaymentResult:
        """
        Send a charge to the tenant's terminal.

        Never reaches the adapter unless the terminal is enabled for the
        effective provider and a device id is configured for it.
        """
        provider = self.effective_provider(config, preferred_provider)
        settings = config.settings_for(provider)
        if not settings.terminal_enabled:
            logger.warning(
                "Terminal payment refused: store=%s, provider=%s, terminal disabled",
                config.store_id, provider.value,
            )
            return TerminalPaymentResult(
                success=False,
                error="terminal not enabled for this provider",
                error_kind="conflict",
            )
        if not settings.device_id:
            return TerminalPaymentResult(
                success=False,
                error="no terminal device configured for this provider",
                error_kind="configuration",
            )

        params = replace(params, device_id=settings.device_id)
        adapter = self.adapter_for(provider)
        return adapter.create_terminal_payment(params, config.credentials_for(provider))

    def get_terminal_status(
        self,
        payment_intent_id: str,
        config: StorePaymentConfig,
        provider: Optional[PaymentProvider] = None,
    ) -> TerminalPaymentResult:
        """
        Query a terminal payment. Providers without a terminal status endpoint
        are answered from the generic payment status query, flagged with
        ``fallback=True``; the status is then already a neutral OrderStatus value.
        """
        provider = self.effective_provider(config, provider)
        adapter = self.adapter_for(provider)
        credentials = config.credentials_for(provider)

        if adapter.supports_terminal_status:
            return adapter.query_terminal_status(payment_intent_id, credentials)

        status = adapter.query_payment_status(payment_intent_id, credentials)
        if status.error:
            return TerminalPaymentResult(
                success=False,
                payment_intent_id=payment_intent_id,
                error=status.error,
                error_kind="communication",
                fallback=True,
            )
        return TerminalPaymentResult(
            success=True,
            payment_intent_id=payment_intent_id,
            status=status.status.value,
            fallback=True,
        )

    def cancel_terminal_payment(
        self,
        payment_intent_id: str,
        config: StorePaymentConfig,
        provider: Optional[PaymentProvider] = None,
    ) -> TerminalPaymentResult:
        provider = self.effective_provider(config, provider)
        adapter = self.adapter_for(provider)
        return adapter.cancel_terminal_payment(
            payment_intent_id,
            config.credentials_for(provider),
            config.settings_for(provider).device_id,
        )

    # ── Discovery ─────────────────────────────────────────

    def list_available_payment_options(self, config: StorePaymentConfig) -> AvailableOptions:
        return self.resolver.get_available_options(config)

    def list_terminal_devices(self, config: StorePaymentConfig) -> list[dict]:
        """Devices from every provider that can list them (today only Mercado Pago Point)."""
        devices = []
        for provider, adapter in self._adapters.items():
            if adapter.supports_device_listing:
                devices.extend(adapter.list_devices(config.credentials_for(provider)))
        return devices

    # ── Webhooks ──────────────────────────────────────────

    def handle_webhook(
        self,
        provider: PaymentProvider,
        raw_body: bytes,
        config: StorePaymentConfig,
        headers: Optional[Mapping[str, str]] = None,
    ) -> WebhookResult:
        adapter = self.adapter_for(provider)
        return adapter.handle_webhook(raw_body, config.credentials_for(provider), headers)
