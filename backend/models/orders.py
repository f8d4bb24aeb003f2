"""
Order aggregate models
Includes: Order, OrderItem, OrderStatusHistory, OrderNumberSequence
"""
from enum import Enum

from sqlalchemy import (
    Column, String, ForeignKey, Text, Integer, Numeric, JSON, Date, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from core.database import Base, BaseModel, GUID, UTCDateTime, utc_now


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    RAZORPAY = "razorpay"
    COD = "cod"


# source -> statuses it may move to; delivered and cancelled are absorbing
ORDER_STATUS_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})


class Order(BaseModel):
    """Order header. Items and status history are child rows."""
    __tablename__ = "orders"
    __table_args__ = (
        Index('idx_orders_user_created', 'user_id', 'created_at'),
        Index('idx_orders_status', 'status'),
        {'extend_existing': True}
    )

    order_number = Column(String(32), unique=True, nullable=False, index=True)
    # Opaque reference into the external identity system
    user_id = Column(String(255), nullable=False, index=True)

    subtotal = Column(Numeric(12, 2), nullable=False)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    delivery_charge = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)
    coupon_code = Column(String(50), nullable=True)

    # name, phone, street, city, state, pincode, country, optional email/lat/long
    shipping_address = Column(JSON, nullable=False)
    delivery_pincode = Column(String(10), nullable=False)

    payment_method = Column(String(20), nullable=False)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    # One order per gateway payment
    payment_id = Column(String(100), nullable=True, unique=True)
    gateway_order_id = Column(String(100), nullable=True, unique=True)

    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    version = Column(Integer, nullable=False, default=1)

    tracking_number = Column(String(100), nullable=True)
    tracking_url = Column(String(500), nullable=True)
    courier_name = Column(String(100), nullable=True)

    cancelled_at = Column(UTCDateTime(), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    estimated_delivery_date = Column(Date, nullable=True)

    items = relationship("OrderItem", back_populates="order",
                         cascade="all, delete-orphan", passive_deletes=True, lazy="selectin")
    status_history = relationship(
        "OrderStatusHistory", back_populates="order", order_by="OrderStatusHistory.position",
        cascade="all, delete-orphan", passive_deletes=True, lazy="selectin")


class OrderItem(BaseModel):
    """Line item owned by exactly one order"""
    __tablename__ = "order_items"
    __table_args__ = {'extend_existing': True}

    order_id = Column(GUID(), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(255), nullable=False, index=True)
    product_name = Column(String(255), nullable=False)
    product_image = Column(String(500), nullable=True)
    variant_id = Column(String(255), nullable=True)
    variant_name = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")


class OrderStatusHistory(BaseModel):
    """Append-only status log. `position` is the order of appends."""
    __tablename__ = "order_status_history"
    __table_args__ = (
        UniqueConstraint('order_id', 'position', name='uq_order_status_history_position'),
        {'extend_existing': True}
    )

    order_id = Column(GUID(), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False)
    timestamp = Column(UTCDateTime(), nullable=False)
    updated_by = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)

    order = relationship("Order", back_populates="status_history")


class OrderNumberSequence(Base):
    """Per-year order-number counter; `value` is the last number handed out."""
    __tablename__ = "order_number_sequence"

    year = Column(Integer, primary_key=True, autoincrement=False)
    value = Column(Integer, nullable=False, default=0)
    updated_at = Column(UTCDateTime(), nullable=False, default=utc_now, onupdate=utc_now)
