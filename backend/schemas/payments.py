from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from decimal import Decimal

from core.utils.money import Money


class CreatePaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency: str = "INR"
    receipt: Optional[str] = None


class PaymentOrder(BaseModel):
    id: str
    amount: Money
    currency: str
    status: str
    receipt: Optional[str] = None


class RefundResult(BaseModel):
    id: str
    amount: Money
    status: str
    payment_id: str


class PaymentDetails(BaseModel):
    id: str
    amount: Money
    currency: str
    status: str
    method: Optional[str] = None
    email: Optional[str] = None
    contact: Optional[str] = None
    created_at: datetime
    notes: Dict[str, Any] = Field(default_factory=dict)
