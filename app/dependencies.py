"""Service wiring for the HTTP layer. Tests swap these via app.dependency_overrides."""

from functools import lru_cache

from fastapi import Depends

from app.services.checkout_service import CheckoutService
from app.services.order_service import OrderService
from app.services.payment_orchestrator import PaymentOrchestrator
from app.services.providers import build_adapters
from app.services.reconciler import SettlementReconciler
from app.services.store_config import StoreConfigResolver


@lru_cache
def get_orchestrator() -> PaymentOrchestrator:
    return PaymentOrchestrator(StoreConfigResolver(), build_adapters())


def get_order_service() -> OrderService:
    return OrderService()


def get_checkout_service(
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> CheckoutService:
    return CheckoutService(orchestrator)


def get_reconciler(
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> SettlementReconciler:
    return SettlementReconciler(orchestrator)
