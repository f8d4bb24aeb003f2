from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from core.database import ensure_utc
from core.utils.money import Money
from models.coupons import DiscountType


class CouponBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(..., gt=0)
    min_order_value: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, gt=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    per_user_limit: Optional[int] = Field(None, ge=1)
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def uppercase_code(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("valid_from", "valid_until")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class CouponCreate(CouponBase):
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def check_window(self):
        if self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class CouponUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, gt=0)
    min_order_value: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, gt=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    per_user_limit: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None

    @field_validator("valid_from", "valid_until")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class CouponResponse(BaseModel):
    id: UUID
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Money
    min_order_value: Optional[Money] = None
    max_discount: Optional[Money] = None
    usage_limit: Optional[int] = None
    usage_count: int
    per_user_limit: Optional[int] = None
    valid_from: datetime
    valid_until: datetime
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AppliedCoupon(BaseModel):
    discount: Money
    coupon: CouponResponse


class ValidateCouponRequest(BaseModel):
    code: str = Field(..., min_length=1)
    subtotal: Decimal = Field(..., ge=0)
