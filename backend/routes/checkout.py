from fastapi import APIRouter, Depends, status

from core.dependencies import (
    get_current_user_id, get_coupon_service, get_delivery_service,
    get_order_service, get_payment_gateway,
)
from core.exceptions import ValidationException
from core.logging import get_structured_logger
from core.utils.response import Response
from schemas.coupons import ValidateCouponRequest
from schemas.delivery import CalculateDeliveryRequest
from schemas.orders import CheckoutOrderRequest, VerifyPaymentRequest
from services.coupons import CouponService
from services.delivery import DeliveryService
from services.orders import OrderService
from services.payments import RazorpayGateway

logger = get_structured_logger(__name__)

router = APIRouter(prefix="/v1/checkout", tags=["Checkout"])


@router.post("/validate-coupon")
async def validate_coupon(
    request: ValidateCouponRequest,
    user_id: str = Depends(get_current_user_id),
    coupon_service: CouponService = Depends(get_coupon_service),
):
    """Check a coupon against the cart subtotal and return the discount it gives."""
    applied = await coupon_service.validate_and_apply_coupon(request.code, request.subtotal, user_id)
    return Response.success(data=applied, message="Coupon applied successfully")


@router.post("/calculate-delivery")
async def calculate_delivery(
    request: CalculateDeliveryRequest,
    delivery_service: DeliveryService = Depends(get_delivery_service),
):
    quote = await delivery_service.quote_delivery(request.pincode, request.subtotal)
    return Response.success(data=quote, message="Delivery charge calculated")


@router.post("/create-payment")
async def create_payment(
    request: CheckoutOrderRequest,
    user_id: str = Depends(get_current_user_id),
    order_service: OrderService = Depends(get_order_service),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
):
    """
    Price the cart server-side and open a gateway order for that amount.
    The client completes payment and then calls verify-payment.
    """
    pincode = request.delivery_pincode or request.shipping_address.pincode
    pricing = await order_service.calculate_order_totals(
        request.items, pincode, request.coupon_code, user_id)
    payment_order = await gateway.create_order(
        pricing.total, notes={"user_id": user_id, "coupon_code": pricing.coupon_code or ""})

    return Response.success(
        data={"payment_order": payment_order, "pricing": pricing, "key_id": gateway.key_id},
        message="Payment order created",
    )


@router.post("/verify-payment", status_code=status.HTTP_201_CREATED)
async def verify_payment(
    request: VerifyPaymentRequest,
    user_id: str = Depends(get_current_user_id),
    order_service: OrderService = Depends(get_order_service),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
):
    """Verify the gateway signature, then create the paid order."""
    if not gateway.verify_payment(request.razorpay_payment_id, request.razorpay_order_id,
                                  request.razorpay_signature):
        logger.warning(
            message="Payment signature verification failed",
            user_id=user_id,
            metadata={"gateway_order_id": request.razorpay_order_id},
        )
        raise ValidationException("Payment verification failed. Invalid signature.")

    checkout = CheckoutOrderRequest.model_validate(
        request.model_dump(exclude={"razorpay_order_id", "razorpay_payment_id", "razorpay_signature"}))
    order = await order_service.place_order(
        user_id,
        checkout,
        payment_id=request.razorpay_payment_id,
        gateway_order_id=request.razorpay_order_id,
    )
    return Response.success(
        data=order,
        message="Payment verified and order created successfully",
        status_code=status.HTTP_201_CREATED,
    )
