from sqlalchemy import Column, String, Text, JSON, Index
from core.database import BaseModel, UTCDateTime
from enum import Enum


class ReportJobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReportJob(BaseModel):
    """Background report computation for large result sets"""
    __tablename__ = "report_jobs"
    __table_args__ = (
        Index('idx_report_jobs_user_created', 'user_id', 'created_at'),
        {'extend_existing': True}
    )

    user_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=ReportJobStatus.PENDING.value)
    filters = Column(JSON, nullable=False, default=dict)
    result = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(UTCDateTime(), nullable=True)
    completed_at = Column(UTCDateTime(), nullable=True)
