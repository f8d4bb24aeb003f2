from sqlalchemy import Column, String, Boolean, Float, Numeric
from core.database import BaseModel


class DeliverySettings(BaseModel):
    """Business origin and zone charges. One row is expected; the newest wins."""
    __tablename__ = "delivery_settings"
    __table_args__ = {'extend_existing': True}

    business_name = Column(String(255), nullable=False, default="Store")
    business_address = Column(String(500), nullable=True)
    business_city = Column(String(100), nullable=False)
    business_state = Column(String(100), nullable=False)
    business_pincode = Column(String(10), nullable=True)
    business_latitude = Column(Float, nullable=True)
    business_longitude = Column(Float, nullable=True)

    local_delivery_charge = Column(Numeric(12, 2), nullable=False, default=50)
    city_delivery_charge = Column(Numeric(12, 2), nullable=False, default=80)
    state_delivery_charge = Column(Numeric(12, 2), nullable=False, default=120)
    national_delivery_charge = Column(Numeric(12, 2), nullable=False, default=150)

    free_shipping_enabled = Column(Boolean, nullable=False, default=True)
    free_shipping_threshold = Column(Numeric(12, 2), nullable=False, default=2000)

    updated_by = Column(String(255), nullable=True)
