"""
Order routes: POST /api/orders, GET /api/orders/{order_id}
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.dependencies import get_order_service
from app.services.order_service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders")


class OrderItemRequest(BaseModel):
    product_id: str
    quantity: int


class CreateOrderRequest(BaseModel):
    store_id: str
    items: list[OrderItemRequest]


@router.post("")
async def create_order(
    body: CreateOrderRequest, orders: OrderService = Depends(get_order_service)
):
    """Create a PENDING order; prices are snapshotted from the catalog."""
    order = await run_in_threadpool(
        orders.create_order,
        body.store_id,
        [item.model_dump() for item in body.items],
    )
    return JSONResponse(status_code=201, content={"code": 1, "order": order.to_dict()})


@router.get("/{order_id}")
async def get_order(order_id: str, orders: OrderService = Depends(get_order_service)):
    order = await run_in_threadpool(orders.get_order, order_id)
    return JSONResponse(content={"code": 1, "order": order.to_dict()})
