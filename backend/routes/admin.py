from uuid import UUID
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from core.dependencies import (
    require_admin, get_user_email, get_order_service, get_coupon_service,
    get_delivery_service, get_report_service,
)
from core.exceptions import NotFoundException
from core.utils.response import Response
from models.orders import OrderStatus, PaymentStatus
from schemas.coupons import CouponCreate, CouponUpdate
from schemas.delivery import DeliverySettingsUpdate
from schemas.orders import OrderFilters, OrderStatusUpdate, Pagination, TrackingUpdate
from schemas.reports import ReportFilters
from services.coupons import CouponService
from services.delivery import DeliveryService
from services.orders import OrderService
from services.reports import ReportService

router = APIRouter(prefix="/v1/admin", tags=["Admin"])


# ----------------------------------------------------------------------
# Orders
# ----------------------------------------------------------------------

@router.get("/orders")
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    order_status: Optional[List[OrderStatus]] = Query(None, alias="status"),
    payment_status: Optional[List[PaymentStatus]] = Query(None),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    search: Optional[str] = None,
    customer_id: Optional[str] = Query(None, alias="user_id"),
    admin_id: str = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service),
):
    """All orders, filterable by status, payment status, date range and search text."""
    filters = OrderFilters(
        user_id=customer_id,
        status=order_status or [],
        payment_status=payment_status or [],
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


@router.get("/orders/{order_id}")
async def get_order(
    order_id: UUID,
    admin_id: str = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service),
):
    order = await order_service.get_order_by_id(order_id)
    if order is None:
        raise NotFoundException("Order not found", resource="order")
    return Response.success(data=order, message="Order retrieved successfully")


@router.put("/orders/{order_id}/status")
async def update_order_status(
    order_id: UUID,
    request: OrderStatusUpdate,
    admin_id: str = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service),
):
    order = await order_service.update_order_status(order_id, request, admin_id)
    return Response.success(data=order, message=f"Order status updated to {order.status.value}")


@router.put("/orders/{order_id}/tracking")
async def update_tracking(
    order_id: UUID,
    request: TrackingUpdate,
    admin_id: str = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service),
):
    order = await order_service.update_tracking_info(order_id, request, admin_id)
    return Response.success(data=order, message="Tracking information updated")


# ----------------------------------------------------------------------
# Delivery settings
# ----------------------------------------------------------------------

@router.get("/delivery-settings")
async def get_delivery_settings(
    admin_id: str = Depends(require_admin),
    delivery_service: DeliveryService = Depends(get_delivery_service),
):
    return Response.success(data=await delivery_service.get_delivery_settings())


@router.put("/delivery-settings")
async def update_delivery_settings(
    request: DeliverySettingsUpdate,
    admin_id: str = Depends(require_admin),
    delivery_service: DeliveryService = Depends(get_delivery_service),
):
    updated = await delivery_service.update_delivery_settings(request, admin_id)
    return Response.success(data=updated, message="Delivery settings updated")


# ----------------------------------------------------------------------
# Reports
# ----------------------------------------------------------------------

@router.post("/reports")
async def generate_report(
    request: ReportFilters,
    admin_id: str = Depends(require_admin),
    admin_email: Optional[str] = Depends(get_user_email),
    report_service: ReportService = Depends(get_report_service),
):
    """
    Inline metrics for small result sets; larger ones return 202 with a job
    id to poll, and the requester is emailed when the job completes.
    """
    result = await report_service.generate_report(request, admin_id, admin_email)
    if result.is_async:
        return Response.success(
            data=result,
            message="Report is being generated in the background",
            status_code=status.HTTP_202_ACCEPTED,
        )
    return Response.success(data=result, message="Report generated")


@router.get("/reports/jobs")
async def list_report_jobs(
    limit: int = Query(20, ge=1, le=100),
    admin_id: str = Depends(require_admin),
    report_service: ReportService = Depends(get_report_service),
):
    return Response.success(data=await report_service.get_report_jobs(admin_id, limit))


@router.get("/reports/{job_id}")
async def get_report_job(
    job_id: UUID,
    admin_id: str = Depends(require_admin),
    report_service: ReportService = Depends(get_report_service),
):
    return Response.success(data=await report_service.get_report_job(job_id, admin_id))


# ----------------------------------------------------------------------
# Coupons
# ----------------------------------------------------------------------

@router.get("/coupons")
async def list_coupons(
    active_only: bool = False,
    admin_id: str = Depends(require_admin),
    coupon_service: CouponService = Depends(get_coupon_service),
):
    coupons = await (coupon_service.get_active_coupons() if active_only else coupon_service.list_coupons())
    return Response.success(data=coupons)


@router.post("/coupons", status_code=status.HTTP_201_CREATED)
async def create_coupon(
    request: CouponCreate,
    admin_id: str = Depends(require_admin),
    coupon_service: CouponService = Depends(get_coupon_service),
):
    coupon = await coupon_service.create_coupon(request)
    return Response.success(data=coupon, message="Coupon created", status_code=status.HTTP_201_CREATED)


@router.put("/coupons/{coupon_id}")
async def update_coupon(
    coupon_id: UUID,
    request: CouponUpdate,
    admin_id: str = Depends(require_admin),
    coupon_service: CouponService = Depends(get_coupon_service),
):
    coupon = await coupon_service.update_coupon(coupon_id, request)
    return Response.success(data=coupon, message="Coupon updated")


@router.delete("/coupons/{coupon_id}")
async def delete_coupon(
    coupon_id: UUID,
    admin_id: str = Depends(require_admin),
    coupon_service: CouponService = Depends(get_coupon_service),
):
    await coupon_service.delete_coupon(coupon_id)
    return Response.success(message="Coupon deleted")
