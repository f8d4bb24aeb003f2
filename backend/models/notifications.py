"""
Notification audit log
"""
from sqlalchemy import Column, String, Text, Integer, JSON, Index
from core.database import BaseModel, UTCDateTime
from enum import Enum


class NotificationType(str, Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    STATUS_UPDATE = "status_update"
    SHIPPING = "shipping"
    DELIVERY = "delivery"
    CANCELLATION = "cancellation"
    ADMIN_NEW_ORDER = "admin_new_order"
    ADMIN_PRIORITY = "admin_priority"
    REPORT_READY = "report_ready"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationLog(BaseModel):
    """One row per attempted notification, written before the first send"""
    __tablename__ = "notification_logs"
    __table_args__ = (
        Index('idx_notification_logs_status', 'status'),
        Index('idx_notification_logs_order_id', 'order_id'),
        {'extend_existing': True}
    )

    type = Column(String(50), nullable=False)
    recipient = Column(String(255), nullable=False)
    subject = Column(String(500), nullable=False)
    body = Column(Text, nullable=True)
    order_id = Column(String(64), nullable=True)
    status = Column(String(20), nullable=False, default=NotificationStatus.PENDING.value)
    retry_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    provider_message_id = Column(String(255), nullable=True)
    sent_at = Column(UTCDateTime(), nullable=True)
    notification_metadata = Column(JSON, nullable=True)
