from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional, Any, Dict
from datetime import datetime
from uuid import UUID

from core.utils.money import Money
from models.orders import OrderStatus
from models.reports import ReportJobStatus


class ReportFilters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    status: List[OrderStatus] = Field(default_factory=list)
    product_id: Optional[str] = None


class StatusBreakdown(BaseModel):
    status: OrderStatus
    count: int
    total_revenue: Money


class ReportMetrics(BaseModel):
    total_orders: int
    total_revenue: Money
    average_order_value: Money
    status_breakdown: List[StatusBreakdown]


class ReportJobResponse(BaseModel):
    id: UUID
    user_id: str
    status: ReportJobStatus
    filters: Dict[str, Any]
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReportResult(BaseModel):
    """Either inline metrics or the id of the background job computing them"""
    is_async: bool
    metrics: Optional[ReportMetrics] = None
    job_id: Optional[UUID] = None
    order_count: int
