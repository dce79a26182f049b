"""Payment provider adapters."""

from app.models.schemas import PaymentProvider
from app.services.providers.base import PaymentProviderAdapter
from app.services.providers.mercadopago import MercadoPagoAdapter
from app.services.providers.pagbank import PagBankAdapter


def build_adapters(transport=None) -> dict[PaymentProvider, PaymentProviderAdapter]:
    """One adapter per supported provider, optionally sharing an httpx transport."""
    return {
        PaymentProvider.MERCADOPAGO: MercadoPagoAdapter(transport=transport),
        PaymentProvider.PAGBANK: PagBankAdapter(transport=transport),
    }


__all__ = [
    "PaymentProviderAdapter",
    "MercadoPagoAdapter",
    "PagBankAdapter",
    "build_adapters",
]
