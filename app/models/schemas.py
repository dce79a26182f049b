"""
Data models and value types shared across modules.
Plain dataclasses and str enums; no ORM.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


class PaymentProvider(str, Enum):
    MERCADOPAGO = "MERCADOPAGO"
    PAGBANK = "PAGBANK"


class PaymentMethodType(str, Enum):
    PIX = "PIX"
    DEBIT_CARD = "DEBIT_CARD"
    CREDIT_CARD = "CREDIT_CARD"


# ── Persistent records ────────────────────────────────────


@dataclass
class Store:
    id: str
    slug: str
    name: str
    active: int = 1
    payment_provider: PaymentProvider = PaymentProvider.MERCADOPAGO
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Product:
    id: str
    store_id: str
    name: str
    price: Decimal
    barcode: Optional[str] = None
    active: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class OrderItem:
    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int
    id: Optional[int] = None

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class Order:
    id: str
    store_id: str
    total: Decimal
    status: OrderStatus = OrderStatus.PENDING
    payment_provider: Optional[PaymentProvider] = None
    payment_method: Optional[PaymentMethodType] = None
    payment_id: Optional[str] = None
    external_reference: Optional[str] = None
    point_payment: bool = False
    items: list[OrderItem] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    paid_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "total": f"{self.total:.2f}",
            "status": self.status.value,
            "payment_provider": self.payment_provider.value if self.payment_provider else None,
            "payment_method": self.payment_method.value if self.payment_method else None,
            "payment_id": self.payment_id,
            "point_payment": self.point_payment,
            "created_at": self.created_at,
            "paid_at": self.paid_at,
            "items": [
                {
                    "product_id": item.product_id,
                    "product_name": item.product_name,
                    "unit_price": f"{item.unit_price:.2f}",
                    "quantity": item.quantity,
                }
                for item in self.items
            ],
        }


# ── Store payment configuration ───────────────────────────


@dataclass
class ProviderCredentials:
    """Secret material for one provider. Only ever handed to adapters."""

    access_token: Optional[str] = None
    public_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    email: Optional[str] = None

    def __repr__(self) -> str:
        return f"ProviderCredentials(configured={bool(self.access_token)})"


@dataclass
class ProviderSettings:
    """Non-secret per-provider settings; safe to expose."""

    credential_configured: bool = False
    terminal_enabled: bool = False
    device_id: Optional[str] = None

    @property
    def terminal_ready(self) -> bool:
        return self.terminal_enabled and bool(self.device_id)


@dataclass
class StorePaymentConfig:
    store_id: str
    store_slug: str
    default_provider: PaymentProvider
    settings: dict[PaymentProvider, ProviderSettings] = field(default_factory=dict)
    credentials: dict[PaymentProvider, ProviderCredentials] = field(
        default_factory=dict, repr=False
    )

    def settings_for(self, provider: PaymentProvider) -> ProviderSettings:
        return self.settings.get(provider) or ProviderSettings()

    def credentials_for(self, provider: PaymentProvider) -> ProviderCredentials:
        return self.credentials.get(provider) or ProviderCredentials()

    def public_view(self) -> dict:
        """Client-facing representation; never includes credential values."""
        return {
            "store_id": self.store_id,
            "default_provider": self.default_provider.value,
            "providers": {
                provider.value: {
                    "configured": s.credential_configured,
                    "terminal_enabled": s.terminal_enabled,
                    "device_id": s.device_id,
                }
                for provider, s in self.settings.items()
            },
        }


@dataclass
class AvailableOptions:
    online: list[PaymentProvider] = field(default_factory=list)
    terminal: list[PaymentProvider] = field(default_factory=list)


# ── Payment requests and results ──────────────────────────


@dataclass
class PaymentItem:
    id: str
    title: str
    quantity: int
    unit_price: Decimal


@dataclass
class OnlinePaymentParams:
    order_id: str
    items: list[PaymentItem]
    total: Decimal
    store_slug: str
    store_id: str = ""
    payment_method: Optional[PaymentMethodType] = None


@dataclass
class TerminalPaymentParams:
    order_id: str
    amount: Decimal
    description: str
    device_id: str
    store_id: str = ""


@dataclass
class PaymentResult:
    success: bool
    preference_id: Optional[str] = None
    redirect_url: Optional[str] = None
    qr_code_text: Optional[str] = None
    qr_code_base64: Optional[str] = None
    error: Optional[str] = None
    # "configuration" | "communication" | "declined" | "conflict"
    error_kind: Optional[str] = None


@dataclass
class TerminalPaymentResult:
    success: bool
    payment_intent_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    # True when the status came from the generic payment query instead of
    # a dedicated terminal endpoint.
    fallback: bool = False


@dataclass
class PaymentStatusResult:
    status: OrderStatus = OrderStatus.PENDING
    payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    error: Optional[str] = None


@dataclass
class WebhookResult:
    order_ref: Optional[str] = None
    status: Optional[OrderStatus] = None
    payment_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.order_ref is None or self.status is None
