from decimal import Decimal
from typing import Optional

from fastapi import Depends, Header, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.database import get_db
from core.exceptions import APIException, AuthorizationException, ExternalServiceException
from services.coupons import CouponService
from services.delivery import DeliveryService
from services.notifications import NotificationService
from services.orders import OrderService
from services.payments import RazorpayGateway
from services.reports import ReportService

ADMIN_ROLE = "admin"


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity, set by the fronting auth layer."""
    if not x_user_id or not x_user_id.strip():
        raise APIException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            message="Authentication required",
            error_code="AUTHENTICATION_REQUIRED",
        )
    return x_user_id.strip()


async def require_admin(
    user_id: str = Depends(get_current_user_id),
    x_user_role: Optional[str] = Header(None),
) -> str:
    """Require admin role"""
    if (x_user_role or "").strip().lower() != ADMIN_ROLE:
        raise AuthorizationException("Admin access required")
    return user_id


async def get_user_email(x_user_email: Optional[str] = Header(None)) -> Optional[str]:
    return x_user_email or None


def get_delivery_service(request: Request) -> DeliveryService:
    return request.app.state.delivery_service


def get_notification_service(request: Request) -> NotificationService:
    return request.app.state.notification_service


def get_report_service(request: Request) -> ReportService:
    return request.app.state.report_service


def get_payment_gateway(request: Request) -> RazorpayGateway:
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        raise ExternalServiceException("Payment gateway is not configured", service="razorpay")
    return gateway


def get_coupon_service(db: AsyncSession = Depends(get_db)) -> CouponService:
    return CouponService(db, currency_symbol=settings.CURRENCY_SYMBOL)


def get_order_service(
    db: AsyncSession = Depends(get_db),
    delivery_service: DeliveryService = Depends(get_delivery_service),
    notification_service: NotificationService = Depends(get_notification_service),
) -> OrderService:
    return OrderService(
        db,
        coupon_service=CouponService(db, currency_symbol=settings.CURRENCY_SYMBOL),
        delivery_service=delivery_service,
        notification_service=notification_service,
        tax_rate_percent=Decimal(str(settings.TAX_RATE_PERCENT)),
    )
