"""
Lifecycle email dispatch with retry, audit logging and admin alert batching.
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from core.database import utc_now
from core.logging import get_structured_logger
from core.utils.messages.email import EmailSender, render_email
from models.notifications import NotificationLog, NotificationStatus, NotificationType
from models.orders import OrderStatus
from schemas.orders import OrderResponse

logger = get_structured_logger(__name__)

ADMIN_NEW_ORDER_BATCH = NotificationType.ADMIN_NEW_ORDER.value


@dataclass
class OutgoingEmail:
    type: NotificationType
    recipient: str
    subject: str
    body: str
    order_id: Optional[str] = None
    order: Optional[OrderResponse] = None


@dataclass
class NotificationBatch:
    notifications: List[OutgoingEmail]
    opened_at: datetime
    scheduled_time: datetime
    timer: Optional[asyncio.Task] = None


@dataclass
class EmailBranding:
    brand_name: str = "Dazzle Jewelry"
    support_email: str = "support@dazzlejewelry.com"
    frontend_url: str = "http://localhost:3000"
    currency_symbol: str = "₹"


class NotificationService:
    """
    Sends order lifecycle emails.

    Every send is logged as `pending` first, then retried up to
    `max_attempts` times with 2^n second backoff. Exhausted sends end as
    `failed` in the log and are never raised to the caller. Admin new-order
    alerts are held for `batch_window_seconds` and sent as one email per
    window.
    """

    def __init__(
        self,
        session_factory,
        email_sender: EmailSender,
        admin_email: str,
        branding: Optional[EmailBranding] = None,
        max_attempts: int = 3,
        batch_window_seconds: float = 60,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        window_sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.email_sender = email_sender
        self.admin_email = admin_email
        self.branding = branding or EmailBranding()
        self.max_attempts = max_attempts
        self.batch_window_seconds = batch_window_seconds
        self.clock = clock
        self.sleep = sleep
        self.window_sleep = window_sleep

        self._batches: Dict[str, NotificationBatch] = {}
        self._batch_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._pending_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Background dispatch
    # ------------------------------------------------------------------

    def dispatch(self, coro: Awaitable[Any]) -> asyncio.Task:
        """Run notification work in the background; the caller does not wait on email."""
        task = asyncio.ensure_future(coro)
        self._pending_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(message="Background notification task failed", exception=error)

    async def wait_for_pending(self) -> None:
        """Wait until every dispatched notification task has finished."""
        while self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render(self, template: str, **context) -> str:
        return render_email(f"orders/{template}", {
            "brand_name": self.branding.brand_name,
            "support_email": self.branding.support_email,
            "frontend_url": self.branding.frontend_url,
            "currency_symbol": self.branding.currency_symbol,
            "year": self.clock().year,
            **context,
        })

    @staticmethod
    def _customer_email(order: OrderResponse) -> Optional[str]:
        return order.shipping_address.email or None

    async def _send_to_customer(self, order: OrderResponse, type: NotificationType,
                                subject: str, template: str, **context) -> bool:
        recipient = self._customer_email(order)
        if not recipient:
            logger.warning(
                message="No customer email on order; skipping notification",
                metadata={"order_id": str(order.id), "type": type.value},
            )
            return False

        return await self._send_notification(OutgoingEmail(
            type=type,
            recipient=recipient,
            subject=subject,
            body=self._render(template, order=order, **context),
            order_id=str(order.id),
            order=order,
        ))

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------

    async def send_order_confirmation(self, order: OrderResponse) -> bool:
        return await self._send_to_customer(
            order, NotificationType.ORDER_CONFIRMATION,
            f"Order Confirmation - {order.order_number}", "order_confirmation.html")

    async def send_status_update(self, order: OrderResponse, new_status: OrderStatus) -> bool:
        return await self._send_to_customer(
            order, NotificationType.STATUS_UPDATE,
            f"Order {order.order_number} - Status Updated", "status_update.html",
            new_status=new_status)

    async def send_shipping_notification(self, order: OrderResponse) -> bool:
        return await self._send_to_customer(
            order, NotificationType.SHIPPING,
            f"Order {order.order_number} - Shipped", "shipping.html")

    async def send_delivery_confirmation(self, order: OrderResponse) -> bool:
        return await self._send_to_customer(
            order, NotificationType.DELIVERY,
            f"Order {order.order_number} - Delivered", "delivery.html")

    async def send_cancellation_confirmation(self, order: OrderResponse) -> bool:
        return await self._send_to_customer(
            order, NotificationType.CANCELLATION,
            f"Order {order.order_number} - Cancelled", "cancellation.html")

    async def send_admin_new_order_alert(self, order: OrderResponse) -> None:
        """Queue a new-order alert; it is sent when the batch window closes."""
        await self._add_to_batch(ADMIN_NEW_ORDER_BATCH, OutgoingEmail(
            type=NotificationType.ADMIN_NEW_ORDER,
            recipient=self.admin_email,
            subject=f"New Order Received - {order.order_number}",
            body=self._render("admin_new_order.html", order=order),
            order_id=str(order.id),
            order=order,
        ))

    async def send_admin_priority_notification(self, order: OrderResponse, reason: str) -> bool:
        return await self._send_notification(OutgoingEmail(
            type=NotificationType.ADMIN_PRIORITY,
            recipient=self.admin_email,
            subject=f"PRIORITY: Order {order.order_number} Requires Attention",
            body=self._render("admin_priority.html", order=order, reason=reason),
            order_id=str(order.id),
            order=order,
        ))

    async def send_report_ready_notification(self, job_id: UUID, recipient_email: str) -> bool:
        return await self._send_notification(OutgoingEmail(
            type=NotificationType.REPORT_READY,
            recipient=recipient_email,
            subject="Your Report is Ready",
            body=self._render("report_ready.html", job_id=str(job_id)),
        ))

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    async def _add_to_batch(self, batch_key: str, notification: OutgoingEmail) -> None:
        async with self._batch_locks[batch_key]:
            batch = self._batches.get(batch_key)
            if batch is None:
                now = self.clock()
                batch = NotificationBatch(
                    notifications=[],
                    opened_at=now,
                    scheduled_time=now + timedelta(seconds=self.batch_window_seconds),
                )
                self._batches[batch_key] = batch
                batch.timer = asyncio.create_task(self._flush_when_window_closes(batch_key, batch))
            batch.notifications.append(notification)

        logger.debug(
            message="Notification added to batch",
            metadata={"batch_key": batch_key, "count": len(batch.notifications)},
        )

    async def _flush_when_window_closes(self, batch_key: str, batch: NotificationBatch) -> None:
        await self.window_sleep(self.batch_window_seconds)
        # Send as tracked background work so wait_for_pending() covers it
        self.dispatch(self._process_batch(batch_key, expected=batch))

    async def _process_batch(self, batch_key: str, expected: Optional[NotificationBatch] = None) -> None:
        # Detach under the lock so a concurrent append lands in a fresh batch.
        async with self._batch_locks[batch_key]:
            batch = self._batches.get(batch_key)
            if batch is None or (expected is not None and batch is not expected):
                return
            del self._batches[batch_key]
            if batch.timer is not None and batch.timer is not asyncio.current_task():
                batch.timer.cancel()

        notifications = batch.notifications
        if not notifications:
            return
        if len(notifications) == 1:
            await self._send_notification(notifications[0])
        else:
            await self._send_batched_notification(notifications)

    async def _send_batched_notification(self, notifications: List[OutgoingEmail]) -> None:
        orders = [n.order for n in notifications if n.order is not None]
        combined = OutgoingEmail(
            type=NotificationType.ADMIN_NEW_ORDER,
            recipient=self.admin_email,
            subject=f"{len(notifications)} New Orders Received",
            body=self._render("admin_new_orders_batch.html", orders=orders),
        )
        sent = await self._send_notification(combined)

        # Individual alerts are kept for audit with the outcome of the combined send.
        status = NotificationStatus.SENT if sent else NotificationStatus.FAILED
        for notification in notifications:
            await self._insert_log(
                notification, status=status,
                sent_at=self.clock() if sent else None,
                metadata={"batched": True, "batch_size": len(notifications)},
            )

    async def flush_batches(self) -> None:
        """Send every open batch now (shutdown, tests)."""
        for batch_key in list(self._batches):
            await self._process_batch(batch_key)

    def get_batch_status(self) -> List[Dict[str, Any]]:
        return [
            {
                "batch_key": key,
                "count": len(batch.notifications),
                "scheduled_time": batch.scheduled_time,
            }
            for key, batch in self._batches.items()
        ]

    # ------------------------------------------------------------------
    # Sending and audit log
    # ------------------------------------------------------------------

    async def _insert_log(self, notification: OutgoingEmail, status: NotificationStatus,
                          sent_at: Optional[datetime] = None,
                          metadata: Optional[Dict[str, Any]] = None) -> Optional[UUID]:
        try:
            async with self.session_factory() as session:
                log = NotificationLog(
                    type=notification.type.value,
                    recipient=notification.recipient,
                    subject=notification.subject,
                    body=notification.body,
                    order_id=notification.order_id,
                    status=status.value,
                    retry_count=0,
                    sent_at=sent_at,
                    notification_metadata=metadata,
                    created_at=self.clock(),
                )
                session.add(log)
                await session.commit()
                return log.id
        except SQLAlchemyError as e:
            logger.error(
                message="Failed to log notification",
                metadata={"type": notification.type.value, "order_id": notification.order_id},
                exception=e,
            )
            return None

    async def _update_log(self, log_id: UUID, **values) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(NotificationLog).where(NotificationLog.id == log_id)
                    .values(updated_at=self.clock(), **values))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(
                message="Failed to update notification log",
                metadata={"log_id": str(log_id)},
                exception=e,
            )

    async def _send_notification(self, notification: OutgoingEmail) -> bool:
        """Log, then send with retries. Returns whether the email went out."""
        log_id = await self._insert_log(notification, status=NotificationStatus.PENDING)
        if log_id is None:
            return False

        attempt = 0
        last_error: Optional[BaseException] = None
        while attempt < self.max_attempts:
            try:
                message_id = await self.email_sender.send(
                    notification.recipient, notification.subject, notification.body)
            except Exception as e:  # any transport failure is retried
                last_error = e
                attempt += 1
                await self._update_log(log_id, retry_count=attempt, error_message=str(e))
                if attempt < self.max_attempts:
                    await self.sleep(2 ** attempt)
                continue

            await self._update_log(
                log_id, status=NotificationStatus.SENT.value, sent_at=self.clock(),
                provider_message_id=message_id)
            logger.info(
                message="Notification sent",
                metadata={"type": notification.type.value, "order_id": notification.order_id,
                          "attempts": attempt + 1},
            )
            return True

        await self._update_log(
            log_id, status=NotificationStatus.FAILED.value,
            error_message=str(last_error) if last_error else "Unknown error")
        logger.error(
            message=f"Failed to send notification after {self.max_attempts} attempts",
            metadata={"type": notification.type.value, "order_id": notification.order_id,
                      "recipient": notification.recipient},
            exception=last_error,
        )
        return False
