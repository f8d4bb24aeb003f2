from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime, date
from decimal import Decimal
from enum import Enum

from core.utils.money import Money


class DeliveryZone(str, Enum):
    LOCAL = "local"
    CITY = "city"
    STATE = "state"
    NATIONAL = "national"
    FREE_SHIPPING = "free_shipping"
    STANDARD = "standard"


class PincodeLocation(BaseModel):
    """What a postal lookup resolved a pincode to"""
    city: str
    state: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class DeliverySettingsResponse(BaseModel):
    business_name: str
    business_address: Optional[str] = None
    business_city: str
    business_state: str
    business_pincode: Optional[str] = None
    business_latitude: Optional[float] = None
    business_longitude: Optional[float] = None
    local_delivery_charge: Money
    city_delivery_charge: Money
    state_delivery_charge: Money
    national_delivery_charge: Money
    free_shipping_enabled: bool
    free_shipping_threshold: Money
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DeliverySettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    business_name: Optional[str] = None
    business_address: Optional[str] = None
    business_city: Optional[str] = None
    business_state: Optional[str] = None
    business_pincode: Optional[str] = None
    business_latitude: Optional[float] = Field(None, ge=-90, le=90)
    business_longitude: Optional[float] = Field(None, ge=-180, le=180)
    local_delivery_charge: Optional[Decimal] = Field(None, gt=0)
    city_delivery_charge: Optional[Decimal] = Field(None, gt=0)
    state_delivery_charge: Optional[Decimal] = Field(None, gt=0)
    national_delivery_charge: Optional[Decimal] = Field(None, gt=0)
    free_shipping_enabled: Optional[bool] = None
    free_shipping_threshold: Optional[Decimal] = Field(None, ge=0)


class DeliveryCharge(BaseModel):
    charge: Money
    is_free_shipping: bool
    zone: DeliveryZone


class DeliveryQuote(DeliveryCharge):
    estimated_delivery_days: int
    estimated_delivery_date: date
    is_standard_charge: bool = False


class CalculateDeliveryRequest(BaseModel):
    pincode: str
    subtotal: Decimal = Field(..., ge=0)
