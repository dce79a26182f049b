"""Payment orchestrator tests with mocked adapters."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from app.models.schemas import (
    AvailableOptions,
    OnlinePaymentParams,
    OrderStatus,
    PaymentProvider,
    PaymentResult,
    PaymentStatusResult,
    ProviderCredentials,
    ProviderSettings,
    StorePaymentConfig,
    TerminalPaymentParams,
    TerminalPaymentResult,
    WebhookResult,
)
from app.services.payment_orchestrator import PaymentOrchestrator
from app.services.providers import MercadoPagoAdapter, PagBankAdapter

MP = PaymentProvider.MERCADOPAGO
PB = PaymentProvider.PAGBANK


def _config(mp_terminal=True, pb_terminal=False, default=MP, mp_device="DEV-1") -> StorePaymentConfig:
    return StorePaymentConfig(
        store_id="store-1",
        store_slug="loja",
        default_provider=default,
        settings={
            MP: ProviderSettings(credential_configured=True, terminal_enabled=mp_terminal, device_id=mp_device),
            PB: ProviderSettings(credential_configured=True, terminal_enabled=pb_terminal, device_id="SERIAL-1"),
        },
        credentials={
            MP: ProviderCredentials(access_token="mp-token"),
            PB: ProviderCredentials(access_token="pb-token"),
        },
    )


@pytest.fixture
def mp_adapter():
    adapter = MagicMock(spec=MercadoPagoAdapter)
    adapter.supports_terminal_status = True
    adapter.supports_terminal_cancel = True
    adapter.supports_device_listing = True
    return adapter


@pytest.fixture
def pb_adapter():
    adapter = MagicMock(spec=PagBankAdapter)
    adapter.supports_terminal_status = False
    adapter.supports_terminal_cancel = False
    adapter.supports_device_listing = False
    return adapter


@pytest.fixture
def resolver():
    return MagicMock()


@pytest.fixture
def orchestrator(resolver, mp_adapter, pb_adapter):
    return PaymentOrchestrator(resolver, {MP: mp_adapter, PB: pb_adapter})


def _terminal_params() -> TerminalPaymentParams:
    return TerminalPaymentParams(
        order_id="order-1", amount=Decimal("20.97"), description="Pedido", device_id="", store_id="store-1",
    )


class TestOnline:

    def test_uses_default_provider(self, orchestrator, mp_adapter, pb_adapter):
        mp_adapter.create_online_payment.return_value = PaymentResult(success=True, redirect_url="https://mp")
        params = OnlinePaymentParams(order_id="o", items=[], total=Decimal("1.00"), store_slug="loja")
        result = orchestrator.create_online_payment(params, _config())
        assert result.redirect_url == "https://mp"
        creds = mp_adapter.create_online_payment.call_args.args[1]
        assert creds.access_token == "mp-token"
        pb_adapter.create_online_payment.assert_not_called()

    def test_preferred_provider_overrides_default(self, orchestrator, mp_adapter, pb_adapter):
        pb_adapter.create_online_payment.return_value = PaymentResult(success=True)
        params = OnlinePaymentParams(order_id="o", items=[], total=Decimal("1.00"), store_slug="loja")
        orchestrator.create_online_payment(params, _config(), PB)
        pb_adapter.create_online_payment.assert_called_once()
        mp_adapter.create_online_payment.assert_not_called()


class TestTerminalGate:

    def test_disabled_terminal_short_circuits(self, orchestrator, mp_adapter):
        result = orchestrator.create_terminal_payment(_terminal_params(), _config(mp_terminal=False))
        assert not result.success
        assert result.error_kind == "conflict"
        assert result.error == "terminal not enabled for this provider"
        assert mp_adapter.method_calls == []

    def test_disabled_for_preferred_provider(self, orchestrator, mp_adapter, pb_adapter):
        result = orchestrator.create_terminal_payment(_terminal_params(), _config(), PB)
        assert result.error_kind == "conflict"
        assert pb_adapter.method_calls == []
        assert mp_adapter.method_calls == []

    def test_missing_device_is_configuration_error(self, orchestrator, mp_adapter):
        result = orchestrator.create_terminal_payment(_terminal_params(), _config(mp_device=None))
        assert result.error_kind == "configuration"
        mp_adapter.create_terminal_payment.assert_not_called()

    def test_enabled_terminal_uses_configured_device(self, orchestrator, mp_adapter):
        mp_adapter.create_terminal_payment.return_value = TerminalPaymentResult(
            success=True, payment_intent_id="intent-1", status="OPEN"
        )
        result = orchestrator.create_terminal_payment(_terminal_params(), _config())
        assert result.payment_intent_id == "intent-1"
        params = mp_adapter.create_terminal_payment.call_args.args[0]
        assert params.device_id == "DEV-1"

    def test_caller_params_not_mutated(self, orchestrator, mp_adapter):
        mp_adapter.create_terminal_payment.return_value = TerminalPaymentResult(success=True)
        params = _terminal_params()
        orchestrator.create_terminal_payment(params, _config())
        assert params.device_id == ""
        assert mp_adapter.create_terminal_payment.call_args.args[0] is not params


class TestTerminalStatus:

    def test_native_status(self, orchestrator, mp_adapter):
        mp_adapter.query_terminal_status.return_value = TerminalPaymentResult(
            success=True, payment_intent_id="intent-1", status="FINISHED"
        )
        result = orchestrator.get_terminal_status("intent-1", _config())
        assert result.status == "FINISHED"
        assert not result.fallback
        mp_adapter.query_payment_status.assert_not_called()

    def test_fallback_to_payment_status(self, orchestrator, pb_adapter):
        pb_adapter.query_payment_status.return_value = PaymentStatusResult(status=OrderStatus.PAID, payment_id="CHAR_1")
        result = orchestrator.get_terminal_status("CHAR_1", _config(), PB)
        assert result.success
        assert result.fallback
        assert result.status == "PAID"
        pb_adapter.query_terminal_status.assert_not_called()

    def test_fallback_failure(self, orchestrator, pb_adapter):
        pb_adapter.query_payment_status.return_value = PaymentStatusResult(error="PagBank: timeout")
        result = orchestrator.get_terminal_status("CHAR_1", _config(), PB)
        assert not result.success
        assert result.fallback
        assert result.error == "PagBank: timeout"

    def test_cancel_passes_device(self, orchestrator, mp_adapter):
        mp_adapter.cancel_terminal_payment.return_value = TerminalPaymentResult(success=True, status="CANCELED")
        orchestrator.cancel_terminal_payment("intent-1", _config())
        args = mp_adapter.cancel_terminal_payment.call_args.args
        assert args[0] == "intent-1"
        assert args[2] == "DEV-1"


class TestDiscoveryAndWebhook:

    def test_options_come_from_resolver(self, orchestrator, resolver):
        resolver.get_available_options.return_value = AvailableOptions(online=[MP], terminal=[MP])
        config = _config()
        assert orchestrator.list_available_payment_options(config).terminal == [MP]
        resolver.get_available_options.assert_called_once_with(config)

    def test_list_devices(self, orchestrator, mp_adapter, pb_adapter):
        mp_adapter.list_devices.return_value = [{"id": "DEV-1", "operating_mode": "PDV"}]
        assert orchestrator.list_terminal_devices(_config(default=PB)) == [{"id": "DEV-1", "operating_mode": "PDV"}]
        pb_adapter.list_devices.assert_not_called()

    def test_no_device_listing_providers(self, resolver, pb_adapter):
        orchestrator = PaymentOrchestrator(resolver, {PB: pb_adapter})
        assert orchestrator.list_terminal_devices(_config()) == []
        pb_adapter.list_devices.assert_not_called()

    def test_webhook_routed_to_provider(self, orchestrator, pb_adapter, mp_adapter):
        pb_adapter.handle_webhook.return_value = WebhookResult(order_ref="o", status=OrderStatus.PAID)
        result = orchestrator.handle_webhook(PB, b"{}", _config(), {"x": "y"})
        assert result.order_ref == "o"
        mp_adapter.handle_webhook.assert_not_called()

    def test_unknown_provider(self, resolver, mp_adapter):
        orchestrator = PaymentOrchestrator(resolver, {MP: mp_adapter})
        with pytest.raises(ValueError):
            orchestrator.adapter_for(PB)
