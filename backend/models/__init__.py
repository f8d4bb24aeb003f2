# Models package - consolidated imports only
from .orders import (
    Order,
    OrderItem,
    OrderStatusHistory,
    OrderNumberSequence,
    OrderStatus,
    PaymentStatus,
    PaymentMethod,
    ORDER_STATUS_TRANSITIONS,
    CANCELLABLE_STATUSES,
)
from .coupons import Coupon, DiscountType
from .delivery import DeliverySettings
from .notifications import NotificationLog, NotificationType, NotificationStatus
from .reports import ReportJob, ReportJobStatus

__all__ = [
    # Order models
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "OrderNumberSequence",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "ORDER_STATUS_TRANSITIONS",
    "CANCELLABLE_STATUSES",

    # Coupon models
    "Coupon",
    "DiscountType",

    # Delivery models
    "DeliverySettings",

    # Notification models
    "NotificationLog",
    "NotificationType",
    "NotificationStatus",

    # Report models
    "ReportJob",
    "ReportJobStatus",
]
