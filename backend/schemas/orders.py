import re
from pydantic import BaseModel, Field, ConfigDict, field_validator, ValidationInfo
from typing import ClassVar, FrozenSet, List, Optional
from datetime import datetime, date
from decimal import Decimal
from uuid import UUID

from core.utils.money import Money
from models.orders import OrderStatus, PaymentStatus, PaymentMethod

PAYMENT_ID_PATTERN = re.compile(r"pay_[a-z0-9]+")
GATEWAY_ORDER_ID_PATTERN = re.compile(r"order_[a-z0-9]+")
# 13-19 consecutive digits once spaces and dashes are removed: card-number shaped
CARD_NUMBER_PATTERN = re.compile(r"(?<!\d)\d{13,19}(?!\d)")


def contains_card_number(value: str) -> bool:
    return bool(CARD_NUMBER_PATTERN.search(re.sub(r"[\s-]", "", value)))


class SafeInput(BaseModel):
    """Input base: unknown fields are rejected and no string may carry card data."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    # Identifiers and links that legitimately carry long digit runs
    card_check_exempt: ClassVar[FrozenSet[str]] = frozenset()

    @field_validator("*", mode="after")
    @classmethod
    def reject_card_numbers(cls, value, info: ValidationInfo):
        if info.field_name in cls.card_check_exempt:
            return value
        if isinstance(value, str) and contains_card_number(value):
            raise ValueError("Card details must not be submitted")
        return value


class ShippingAddress(SafeInput):
    name: str = ""
    phone: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    country: str = "India"
    email: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def is_complete(self) -> bool:
        return all([self.name, self.phone, self.street, self.city, self.state, self.pincode])


class OrderItemCreate(SafeInput):
    card_check_exempt = frozenset({"product_id", "product_image", "variant_id"})

    product_id: str
    product_name: str
    product_image: Optional[str] = None
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    quantity: int
    price: Decimal
    subtotal: Optional[Decimal] = None

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class OrderCreate(SafeInput):
    """Fully priced order as handed to the lifecycle service."""
    user_id: str
    items: List[OrderItemCreate]
    subtotal: Decimal
    discount: Decimal = Decimal("0")
    delivery_charge: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    total: Decimal
    coupon_code: Optional[str] = None
    shipping_address: ShippingAddress
    delivery_pincode: str = ""
    payment_method: str = ""
    payment_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    estimated_delivery_date: Optional[date] = None

    @field_validator("coupon_code")
    @classmethod
    def normalise_coupon_code(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else None

    @field_validator("payment_id")
    @classmethod
    def validate_payment_id(cls, value: Optional[str]) -> Optional[str]:
        if value and not PAYMENT_ID_PATTERN.fullmatch(value):
            raise ValueError("Invalid payment id format")
        return value or None

    @field_validator("gateway_order_id")
    @classmethod
    def validate_gateway_order_id(cls, value: Optional[str]) -> Optional[str]:
        if value and not GATEWAY_ORDER_ID_PATTERN.fullmatch(value):
            raise ValueError("Invalid gateway order id format")
        return value or None


class CartItem(SafeInput):
    """Item as submitted at checkout; the server derives line totals."""
    card_check_exempt = frozenset({"product_id", "product_image", "variant_id"})

    product_id: str
    product_name: str
    product_image: Optional[str] = None
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    quantity: int = Field(..., gt=0)
    price: Decimal = Field(..., ge=0)


class CheckoutOrderRequest(SafeInput):
    items: List[CartItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    delivery_pincode: Optional[str] = None
    coupon_code: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.COD


class VerifyPaymentRequest(CheckoutOrderRequest):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    payment_method: PaymentMethod = PaymentMethod.RAZORPAY


class OrderStatusUpdate(SafeInput):
    card_check_exempt = frozenset({"tracking_number", "tracking_url"})

    status: OrderStatus
    notes: Optional[str] = None
    expected_version: Optional[int] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    courier_name: Optional[str] = None


class TrackingUpdate(SafeInput):
    card_check_exempt = frozenset({"tracking_number", "tracking_url"})

    tracking_number: str = Field(..., min_length=1)
    tracking_url: Optional[str] = None
    courier_name: Optional[str] = None
    expected_version: Optional[int] = None


class CancelOrderRequest(SafeInput):
    reason: Optional[str] = None


class OrderFilters(BaseModel):
    user_id: Optional[str] = None
    status: List[OrderStatus] = Field(default_factory=list)
    payment_status: List[PaymentStatus] = Field(default_factory=list)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None


class Pagination(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class OrderItemResponse(BaseModel):
    id: UUID
    product_id: str
    product_name: str
    product_image: Optional[str] = None
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    quantity: int
    price: Money
    subtotal: Money

    model_config = ConfigDict(from_attributes=True)


class StatusHistoryEntry(BaseModel):
    status: OrderStatus
    timestamp: datetime
    updated_by: str
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    id: UUID
    order_number: str
    user_id: str
    status: OrderStatus
    subtotal: Money
    discount: Money
    delivery_charge: Money
    tax: Money
    total: Money
    coupon_code: Optional[str] = None
    shipping_address: ShippingAddress
    delivery_pincode: str
    payment_method: str
    payment_status: PaymentStatus
    payment_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    courier_name: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    estimated_delivery_date: Optional[date] = None
    version: int
    items: List[OrderItemResponse]
    status_history: List[StatusHistoryEntry]
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaginatedOrders(BaseModel):
    orders: List[OrderResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class OrderPricing(BaseModel):
    subtotal: Money
    discount: Money
    delivery_charge: Money
    tax: Money
    tax_rate: Decimal
    total: Money
    coupon_code: Optional[str] = None
    zone: str
    is_free_shipping: bool
    estimated_delivery_date: Optional[date] = None
