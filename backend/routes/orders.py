from uuid import UUID
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from core.dependencies import get_current_user_id, get_order_service
from core.exceptions import NotFoundException
from core.utils.response import Response
from models.orders import OrderStatus
from schemas.orders import CheckoutOrderRequest, CancelOrderRequest, OrderFilters, Pagination
from services.orders import OrderService

router = APIRouter(prefix="/v1/orders", tags=["Orders"])


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_order(
    request: CheckoutOrderRequest,
    user_id: str = Depends(get_current_user_id),
    order_service: OrderService = Depends(get_order_service),
):
    """Place an order paid on delivery; prices are computed server-side."""
    order = await order_service.place_order(user_id, request)
    return Response.success(data=order, message="Order created successfully",
                            status_code=status.HTTP_201_CREATED)


@router.get("/")
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    order_status: Optional[List[OrderStatus]] = Query(None, alias="status"),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    search: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    order_service: OrderService = Depends(get_order_service),
):
    """Orders of the calling user, newest first."""
    filters = OrderFilters(
        user_id=user_id,
        status=order_status or [],
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    result = await order_service.get_orders(filters, Pagination(page=page, limit=limit))
    return Response.success(
        data=result.orders,
        message="Orders retrieved successfully",
        pagination={
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "pages": result.total_pages,
        },
    )


@router.get("/{order_id}")
async def get_order(
    order_id: UUID,
    user_id: str = Depends(get_current_user_id),
    order_service: OrderService = Depends(get_order_service),
):
    order = await order_service.get_order_by_id(order_id, user_id)
    if order is None:
        raise NotFoundException("Order not found", resource="order")
    return Response.success(data=order, message="Order retrieved successfully")


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: UUID,
    request: Optional[CancelOrderRequest] = None,
    user_id: str = Depends(get_current_user_id),
    order_service: OrderService = Depends(get_order_service),
):
    reason = request.reason if request else None
    order = await order_service.cancel_order(order_id, user_id, reason)
    return Response.success(data=order, message="Order cancelled successfully")
