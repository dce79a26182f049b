"""
Payment routes under /api/payments.

Online checkout, card-terminal payments, provider webhooks and the read-only
status/option endpoints used by the kiosk frontend.
"""

import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from app.dependencies import (
    get_checkout_service,
    get_orchestrator,
    get_order_service,
    get_reconciler,
)
from app.errors import NotFoundError
from app.models.schemas import PaymentMethodType, PaymentProvider
from app.services.checkout_service import CheckoutService
from app.services.order_service import OrderService
from app.services.payment_orchestrator import PaymentOrchestrator
from app.services.reconciler import SettlementReconciler
from app.services.terminal_poller import cancel_terminal_watch, start_terminal_watch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments")


def _terminal_watch_enabled() -> bool:
    if os.environ.get("TESTING") == "1":
        return False
    return os.environ.get("TERMINAL_WATCH_ENABLED", "1") == "1"


class CreatePreferenceRequest(BaseModel):
    order_id: str
    provider: Optional[PaymentProvider] = None
    payment_method: Optional[PaymentMethodType] = None


class CreateTerminalPaymentRequest(BaseModel):
    order_id: str
    provider: Optional[PaymentProvider] = None


# ── Online checkout ───────────────────────────────────────

@router.post("/create-preference")
async def create_preference(
    body: CreatePreferenceRequest,
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """
    Start an online payment for an order.

    PIX returns the QR payload (text and base64 image) and no redirect URL;
    card checkouts return the hosted checkout redirect URL.
    """
    result = await run_in_threadpool(
        checkout.start_online_payment, body.order_id, body.provider, body.payment_method
    )
    return JSONResponse(content={
        "code": 1,
        "preference_id": result.preference_id,
        "redirect_url": result.redirect_url,
        "qr_code_text": result.qr_code_text,
        "qr_code_base64": result.qr_code_base64,
    })


# ── Card terminal ─────────────────────────────────────────

@router.post("/point/create")
async def create_terminal_payment(
    body: CreateTerminalPaymentRequest,
    checkout: CheckoutService = Depends(get_checkout_service),
    reconciler: SettlementReconciler = Depends(get_reconciler),
):
    result = await run_in_threadpool(
        checkout.start_terminal_payment, body.order_id, body.provider
    )

    if result.payment_intent_id and _terminal_watch_enabled():
        order = await run_in_threadpool(reconciler.orders.get_order, body.order_id)
        start_terminal_watch(reconciler, result.payment_intent_id, order.store_id)

    return JSONResponse(content={
        "code": 1,
        "success": True,
        "payment_intent_id": result.payment_intent_id,
        "status": result.status,
        "message": "payment sent to the terminal",
    })


@router.get("/point/status/{payment_intent_id}")
async def terminal_payment_status(
    payment_intent_id: str,
    store_id: str = Query(...),
    reconciler: SettlementReconciler = Depends(get_reconciler),
):
    """Query the terminal once and settle the order if the provider reports a final state."""
    result = await run_in_threadpool(
        reconciler.poll_terminal_payment, payment_intent_id, store_id
    )
    return JSONResponse(content={
        "code": 1,
        "payment_intent_id": payment_intent_id,
        "status": result.provider_status,
        "order_id": result.order_id,
        "order_status": result.order_status.value,
        "fallback": result.fallback,
    })


@router.delete("/point/cancel/{payment_intent_id}")
async def cancel_terminal_payment(
    payment_intent_id: str,
    store_id: str = Query(...),
    reconciler: SettlementReconciler = Depends(get_reconciler),
):
    result = await run_in_threadpool(
        reconciler.cancel_terminal_payment, payment_intent_id, store_id
    )
    cancel_terminal_watch(payment_intent_id)
    return JSONResponse(content={
        "code": 1,
        "success": True,
        "payment_intent_id": payment_intent_id,
        "order_id": result.order_id,
        "order_status": result.order_status.value,
    })


# ── Webhooks ──────────────────────────────────────────────

async def _handle_webhook(
    provider: PaymentProvider,
    request: Request,
    store_id: Optional[str],
    reconciler: SettlementReconciler,
) -> PlainTextResponse:
    raw_body = await request.body()
    outcome = await run_in_threadpool(
        reconciler.handle_webhook, provider, raw_body, store_id, request.headers
    )
    logger.info(
        "Webhook acknowledged: provider=%s, store=%s, outcome=%s",
        provider.value, store_id, outcome.value if outcome else "error",
    )
    return PlainTextResponse("OK")


@router.post("/webhook/mercadopago")
async def mercadopago_webhook(
    request: Request,
    store_id: Optional[str] = None,
    reconciler: SettlementReconciler = Depends(get_reconciler),
):
    """Always acknowledged with 200 so the provider stops retrying."""
    return await _handle_webhook(PaymentProvider.MERCADOPAGO, request, store_id, reconciler)


@router.post("/webhook/pagbank")
async def pagbank_webhook(
    request: Request,
    store_id: Optional[str] = None,
    reconciler: SettlementReconciler = Depends(get_reconciler),
):
    return await _handle_webhook(PaymentProvider.PAGBANK, request, store_id, reconciler)


# ── Read-only ─────────────────────────────────────────────

@router.get("/status/{order_id}")
async def order_payment_status(
    order_id: str, orders: OrderService = Depends(get_order_service)
):
    """Current order state from the database; never calls a provider."""
    order = await run_in_threadpool(orders.get_order, order_id)
    return JSONResponse(content={
        "code": 1,
        "order_id": order.id,
        "status": order.status.value,
        "payment_provider": order.payment_provider.value if order.payment_provider else None,
        "payment_id": order.payment_id,
        "paid_at": order.paid_at,
    })


@router.get("/options/{store_id}")
async def payment_options(
    store_id: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
):
    config = await run_in_threadpool(orchestrator.resolver.get_config, store_id)
    if not config:
        raise NotFoundError("store not found")
    options = await run_in_threadpool(orchestrator.list_available_payment_options, config)
    return JSONResponse(content={
        "code": 1,
        "default_provider": config.default_provider.value,
        "online": [p.value for p in options.online],
        "terminal": [p.value for p in options.terminal],
    })


@router.get("/devices/{store_id}")
async def terminal_devices(
    store_id: str, orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
):
    config = await run_in_threadpool(orchestrator.resolver.get_config, store_id)
    if not config:
        raise NotFoundError("store not found")
    devices = await run_in_threadpool(orchestrator.list_terminal_devices, config)
    return JSONResponse(content={"code": 1, "devices": devices})
