from sqlalchemy import Column, String, Boolean, Text, Integer, Numeric
from core.database import BaseModel, UTCDateTime
from enum import Enum


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(BaseModel):
    __tablename__ = "coupons"
    __table_args__ = {'extend_existing': True}

    # Stored uppercase; lookups normalise the input the same way
    code = Column(String(50), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    discount_type = Column(String(20), nullable=False)  # percentage, fixed
    discount_value = Column(Numeric(12, 2), nullable=False)  # 10 for 10% or ₹10
    min_order_value = Column(Numeric(12, 2), nullable=True)
    max_discount = Column(Numeric(12, 2), nullable=True)  # percentage coupons only
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    per_user_limit = Column(Integer, nullable=True)
    valid_from = Column(UTCDateTime(), nullable=False)
    valid_until = Column(UTCDateTime(), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
