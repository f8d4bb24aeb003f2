# Services package - consolidated imports only
from .coupons import CouponService, calculate_discount
from .delivery import DeliveryService, NominatimPincodeLookup, PincodeLookup
from .notifications import NotificationService, EmailBranding
from .orders import OrderService
from .payments import RazorpayGateway
from .reports import ReportService

__all__ = [
    "CouponService",
    "calculate_discount",
    "DeliveryService",
    "NominatimPincodeLookup",
    "PincodeLookup",
    "NotificationService",
    "EmailBranding",
    "OrderService",
    "RazorpayGateway",
    "ReportService",
]
