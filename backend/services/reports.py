"""
Order reporting: inline metrics for small result sets, background jobs for
large ones.
"""
import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional, Set
from uuid import UUID

from sqlalchemy import select, update, delete, func, exists
from sqlalchemy.exc import SQLAlchemyError

from core.database import utc_now, ensure_utc
from core.exceptions import NotFoundException, DatabaseException
from core.logging import get_structured_logger
from core.utils.money import round_money, ZERO
from models.orders import Order, OrderItem, OrderStatus
from models.reports import ReportJob, ReportJobStatus
from schemas.reports import (
    ReportFilters, ReportMetrics, StatusBreakdown, ReportJobResponse, ReportResult,
)
from services.notifications import NotificationService

logger = get_structured_logger(__name__)


def report_conditions(filters: ReportFilters) -> list:
    conditions = []
    if filters.date_from:
        conditions.append(Order.created_at >= ensure_utc(filters.date_from))
    if filters.date_to:
        conditions.append(Order.created_at <= ensure_utc(filters.date_to))
    if filters.status:
        conditions.append(Order.status.in_([s.value for s in filters.status]))
    if filters.product_id:
        conditions.append(exists().where(
            OrderItem.order_id == Order.id,
            OrderItem.product_id == filters.product_id,
        ))
    return conditions


class ReportService:
    """
    Report generation over the orders table.

    Counts first: above `async_threshold` matching orders a `ReportJob` is
    created and computed in a tracked background task; otherwise the metrics
    are returned inline.
    """

    def __init__(
        self,
        session_factory,
        notification_service: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utc_now,
        async_threshold: int = 1000,
    ):
        self.session_factory = session_factory
        self.notification_service = notification_service
        self.clock = clock
        self.async_threshold = async_threshold
        self._tasks: Set[asyncio.Task] = set()

    async def count_orders(self, filters: ReportFilters) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(Order).where(*report_conditions(filters)))
            return result.scalar_one()

    async def calculate_metrics(self, filters: ReportFilters) -> ReportMetrics:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total), 0))
                .where(*report_conditions(filters))
                .group_by(Order.status)
                .order_by(Order.status)
            )
            rows = result.all()

        breakdown = [
            StatusBreakdown(status=OrderStatus(status), count=count,
                            total_revenue=round_money(Decimal(str(revenue))))
            for status, count, revenue in rows
        ]
        total_orders = sum(b.count for b in breakdown)
        total_revenue = round_money(sum((b.total_revenue for b in breakdown), ZERO))
        average = round_money(total_revenue / total_orders) if total_orders else ZERO

        return ReportMetrics(
            total_orders=total_orders,
            total_revenue=total_revenue,
            average_order_value=average,
            status_breakdown=breakdown,
        )

    async def generate_report(self, filters: ReportFilters, user_id: str,
                              requester_email: Optional[str] = None) -> ReportResult:
        order_count = await self.count_orders(filters)

        if order_count > self.async_threshold:
            job_id = await self._create_job(filters, user_id)
            task = asyncio.create_task(self._process_job(job_id, requester_email))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            logger.log_business_event("report_job_created", {
                "job_id": str(job_id), "order_count": order_count}, user_id=user_id)
            return ReportResult(is_async=True, job_id=job_id, order_count=order_count)

        metrics = await self.calculate_metrics(filters)
        return ReportResult(is_async=False, metrics=metrics, order_count=order_count)

    async def _create_job(self, filters: ReportFilters, user_id: str) -> UUID:
        now = self.clock()
        job = ReportJob(
            user_id=user_id,
            status=ReportJobStatus.PENDING.value,
            filters=filters.model_dump(mode="json"),
            created_at=now,
            updated_at=now,
        )
        try:
            async with self.session_factory() as session:
                session.add(job)
                await session.commit()
                return job.id
        except SQLAlchemyError as e:
            logger.error(message="Failed to create report job", user_id=user_id, exception=e)
            raise DatabaseException("Failed to create report job")

    async def _set_job(self, job_id: UUID, **values) -> None:
        async with self.session_factory() as session:
            await session.execute(update(ReportJob).where(ReportJob.id == job_id).values(**values))
            await session.commit()

    async def _process_job(self, job_id: UUID, requester_email: Optional[str]) -> None:
        try:
            await self._set_job(job_id, status=ReportJobStatus.PROCESSING.value, started_at=self.clock())

            async with self.session_factory() as session:
                job = await session.get(ReportJob, job_id)
                if job is None:
                    raise NotFoundException("Report job not found", resource="report_job")
                filters = ReportFilters.model_validate(job.filters)

            metrics = await self.calculate_metrics(filters)
            await self._set_job(
                job_id,
                status=ReportJobStatus.COMPLETED.value,
                result=metrics.model_dump(mode="json"),
                completed_at=self.clock(),
            )
        except Exception as e:
            logger.error(message="Report job failed", metadata={"job_id": str(job_id)}, exception=e)
            try:
                await self._set_job(
                    job_id,
                    status=ReportJobStatus.FAILED.value,
                    error_message=str(e) or type(e).__name__,
                    completed_at=self.clock(),
                )
            except SQLAlchemyError as db_error:
                logger.error(message="Failed to record report job failure",
                             metadata={"job_id": str(job_id)}, exception=db_error)
            return

        logger.log_business_event("report_job_completed", {"job_id": str(job_id)})
        if requester_email and self.notification_service is not None:
            await self.notification_service.send_report_ready_notification(job_id, requester_email)

    async def wait_for_pending(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def get_report_job(self, job_id: UUID, user_id: str) -> ReportJobResponse:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ReportJob).where(ReportJob.id == job_id, ReportJob.user_id == user_id))
            job = result.scalars().first()
            if job is None:
                raise NotFoundException("Report job not found", resource="report_job")
            return ReportJobResponse.model_validate(job)

    async def get_report_jobs(self, user_id: str, limit: int = 20) -> List[ReportJobResponse]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ReportJob).where(ReportJob.user_id == user_id)
                .order_by(ReportJob.created_at.desc(), ReportJob.id.desc())
                .limit(limit)
            )
            return [ReportJobResponse.model_validate(job) for job in result.scalars().all()]

    async def cleanup_old_jobs(self, days_old: int = 30) -> int:
        """Delete finished jobs older than `days_old`; returns how many went."""
        cutoff = self.clock() - timedelta(days=days_old)
        async with self.session_factory() as session:
            result = await session.execute(
                delete(ReportJob).where(
                    ReportJob.created_at < cutoff,
                    ReportJob.status.in_([ReportJobStatus.COMPLETED.value, ReportJobStatus.FAILED.value]),
                )
            )
            await session.commit()

        logger.log_database_operation("cleanup", "report_jobs", affected_rows=result.rowcount)
        return result.rowcount
