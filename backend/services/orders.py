"""
Order lifecycle: creation, the status state machine, cancellation and
owner-scoped queries.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from typing import Callable, List, Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID
import math

from pydantic import ValidationError as PydanticValidationError

from core.database import utc_now, ensure_utc
from core.exceptions import (
    ValidationException, NotFoundException, ConflictException,
    InvalidStatusTransitionException, DatabaseException,
)
from core.logging import get_structured_logger
from core.utils.money import round_money, to_decimal, ZERO
from models.orders import (
    Order, OrderItem, OrderStatusHistory, OrderNumberSequence,
    OrderStatus, PaymentStatus, PaymentMethod,
    ORDER_STATUS_TRANSITIONS, CANCELLABLE_STATUSES,
)
from schemas.orders import (
    OrderCreate, OrderItemCreate, OrderResponse, OrderStatusUpdate, TrackingUpdate,
    OrderFilters, Pagination, PaginatedOrders, OrderPricing, CartItem, CheckoutOrderRequest,
)
from services.coupons import CouponService
from services.delivery import DeliveryService
from services.notifications import NotificationService

logger = get_structured_logger(__name__)

CONFLICT_MESSAGE = ("Order has been modified by another user. "
                    "Please reload the order and try again.")
DEFAULT_CANCELLATION_REASON = "Order cancelled by customer"
REFUND_REQUIRED_REASON = "Paid order was cancelled; refund required"
DUPLICATE_PAYMENT_MESSAGE = "An order has already been created for this payment"


def validate_status_transition(current: OrderStatus, target: OrderStatus) -> None:
    if target not in ORDER_STATUS_TRANSITIONS[current]:
        raise InvalidStatusTransitionException(
            f"Invalid status transition from {current.value} to {target.value}",
            current_status=current.value,
            requested_status=target.value,
        )


def format_order_number(year: int, sequence: int) -> str:
    return f"ORD-{year}-{sequence:06d}"


class OrderService:
    def __init__(
        self,
        db: AsyncSession,
        coupon_service: Optional[CouponService] = None,
        delivery_service: Optional[DeliveryService] = None,
        notification_service: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utc_now,
        tax_rate_percent: Decimal = Decimal("18"),
    ):
        self.db = db
        self.coupon_service = coupon_service
        self.delivery_service = delivery_service
        self.notification_service = notification_service
        self.clock = clock
        self.tax_rate_percent = to_decimal(tax_rate_percent)

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    async def calculate_order_totals(
        self,
        items: List[CartItem],
        delivery_pincode: str,
        coupon_code: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> OrderPricing:
        """
        Price a cart: item subtotal, coupon discount, delivery charge and tax.

        Tax applies to the discounted subtotal. The returned total always
        equals round(subtotal - discount + delivery_charge + tax, 2).
        """
        if not items:
            raise ValidationException("Order must contain at least one item")

        subtotal = round_money(sum((item.price * item.quantity for item in items), ZERO))
        if subtotal <= 0:
            raise ValidationException("Subtotal must be greater than 0")

        discount = ZERO
        applied_code = None
        if coupon_code:
            applied = await self.coupon_service.validate_and_apply_coupon(coupon_code, subtotal, user_id)
            discount = applied.discount
            applied_code = applied.coupon.code

        quote = await self.delivery_service.quote_delivery(delivery_pincode, subtotal)
        delivery_charge = round_money(quote.charge)

        tax = round_money((subtotal - discount) * self.tax_rate_percent / Decimal(100))
        total = round_money(subtotal - discount + delivery_charge + tax)

        return OrderPricing(
            subtotal=subtotal,
            discount=discount,
            delivery_charge=delivery_charge,
            tax=tax,
            tax_rate=self.tax_rate_percent,
            total=total,
            coupon_code=applied_code,
            zone=quote.zone.value,
            is_free_shipping=quote.is_free_shipping,
            estimated_delivery_date=quote.estimated_delivery_date,
        )

    async def place_order(
        self,
        user_id: str,
        request: CheckoutOrderRequest,
        payment_id: Optional[str] = None,
        gateway_order_id: Optional[str] = None,
    ) -> OrderResponse:
        """Price a checkout request server-side and create the order."""
        pincode = request.delivery_pincode or request.shipping_address.pincode
        pricing = await self.calculate_order_totals(
            request.items, pincode, request.coupon_code, user_id)

        try:
            order_data = OrderCreate(
                user_id=user_id,
                items=[
                    OrderItemCreate(**item.model_dump(), subtotal=round_money(item.price * item.quantity))
                    for item in request.items
                ],
                subtotal=pricing.subtotal,
                discount=pricing.discount,
                delivery_charge=pricing.delivery_charge,
                tax=pricing.tax,
                total=pricing.total,
                coupon_code=pricing.coupon_code,
                shipping_address=request.shipping_address,
                delivery_pincode=pincode,
                payment_method=request.payment_method.value,
                payment_id=payment_id,
                gateway_order_id=gateway_order_id,
                estimated_delivery_date=pricing.estimated_delivery_date,
            )
        except PydanticValidationError as e:
            raise ValidationException(
                "Invalid order data",
                errors={".".join(str(p) for p in err["loc"]): err["msg"] for err in e.errors()},
            )
        return await self.create_order(order_data)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_create_order_input(data: OrderCreate) -> None:
        if not data.user_id or not data.user_id.strip():
            raise ValidationException("User ID is required")

        if not data.items:
            raise ValidationException("Order must contain at least one item")

        if data.subtotal <= 0:
            raise ValidationException("Subtotal must be greater than 0")

        if data.total <= 0:
            raise ValidationException("Total must be greater than 0")

        if not data.shipping_address.is_complete():
            raise ValidationException("Complete shipping address is required")

        if not data.delivery_pincode:
            raise ValidationException("Delivery pincode is required")

        if not data.payment_method:
            raise ValidationException("Payment method is required")

        if data.payment_method not in {m.value for m in PaymentMethod}:
            raise ValidationException("Invalid payment method")

        for item in data.items:
            if not item.product_id:
                raise ValidationException("Product ID is required for all items")
            if not item.product_name:
                raise ValidationException("Product name is required for all items")
            if item.quantity <= 0:
                raise ValidationException("Item quantity must be greater than 0")
            if item.price < 0:
                raise ValidationException("Item price cannot be negative")
            if item.subtotal is not None and item.subtotal != item.line_total:
                raise ValidationException("Item subtotal must equal price * quantity")

        items_subtotal = round_money(sum((item.line_total for item in data.items), ZERO))
        if round_money(data.subtotal) != items_subtotal:
            raise ValidationException("Subtotal must equal the sum of item subtotals")

        if min(data.discount, data.delivery_charge, data.tax) < 0:
            raise ValidationException("Discount, delivery charge and tax cannot be negative")

        expected_total = round_money(data.subtotal - data.discount + data.delivery_charge + data.tax)
        if round_money(data.total) != expected_total:
            raise ValidationException("Total must equal subtotal - discount + delivery charge + tax")

    async def _next_order_number(self, now: datetime) -> str:
        """Claim the next number from this year's counter row."""
        year = now.year
        for _ in range(2):
            result = await self.db.execute(
                update(OrderNumberSequence)
                .where(OrderNumberSequence.year == year)
                .values(value=OrderNumberSequence.value + 1, updated_at=now)
            )
            if result.rowcount:
                value = (await self.db.execute(
                    select(OrderNumberSequence.value).where(OrderNumberSequence.year == year)
                )).scalar_one()
                return format_order_number(year, value)

            # First order of the year opens the counter
            self.db.add(OrderNumberSequence(year=year, value=1, updated_at=now))
            try:
                await self.db.flush()
            except IntegrityError:
                # A concurrent first order created the row; increment it instead
                await self.db.rollback()
                continue
            return format_order_number(year, 1)
        raise DatabaseException("Failed to allocate an order number")

    async def _has_payment_order(self, data: OrderCreate) -> bool:
        conditions = []
        if data.payment_id:
            conditions.append(Order.payment_id == data.payment_id)
        if data.gateway_order_id:
            conditions.append(Order.gateway_order_id == data.gateway_order_id)
        if not conditions:
            return False
        result = await self.db.execute(select(func.count(Order.id)).where(or_(*conditions)))
        return result.scalar_one() > 0

    async def create_order(self, data: OrderCreate) -> OrderResponse:
        """
        Persist a priced order.

        The header (with its creation history entry) is committed first and the
        items second; if the items cannot be stored the header is deleted again
        before the error is raised. After the order exists, coupon usage is
        counted and the confirmation and admin alerts are dispatched.
        """
        self._validate_create_order_input(data)

        now = self.clock()
        is_prepaid = data.payment_id is not None
        status = OrderStatus.CONFIRMED if is_prepaid else OrderStatus.PENDING

        if await self._has_payment_order(data):
            logger.warning(
                message="Order already exists for payment",
                user_id=data.user_id,
                metadata={"payment_id": data.payment_id, "gateway_order_id": data.gateway_order_id},
            )
            raise ConflictException(DUPLICATE_PAYMENT_MESSAGE)

        try:
            order_number = await self._next_order_number(now)
            order = Order(
                order_number=order_number,
                user_id=data.user_id,
                subtotal=round_money(data.subtotal),
                discount=round_money(data.discount),
                delivery_charge=round_money(data.delivery_charge),
                tax=round_money(data.tax),
                total=round_money(data.total),
                coupon_code=data.coupon_code,
                shipping_address=data.shipping_address.model_dump(exclude_none=True),
                delivery_pincode=data.delivery_pincode,
                payment_method=data.payment_method,
                payment_status=(PaymentStatus.COMPLETED if is_prepaid else PaymentStatus.PENDING).value,
                payment_id=data.payment_id,
                gateway_order_id=data.gateway_order_id,
                status=status.value,
                version=1,
                estimated_delivery_date=data.estimated_delivery_date,
                created_at=now,
                updated_at=now,
            )
            self.db.add(order)
            await self.db.flush()
            self.db.add(OrderStatusHistory(
                order_id=order.id,
                position=0,
                status=status.value,
                timestamp=now,
                updated_by=data.user_id,
                notes="Order created",
                created_at=now,
            ))
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if is_prepaid or data.gateway_order_id:
                # Lost a race with another order for the same payment
                logger.warning(message="Order already exists for payment", user_id=data.user_id,
                               metadata={"payment_id": data.payment_id}, exception=e)
                raise ConflictException(DUPLICATE_PAYMENT_MESSAGE)
            logger.error(message="Failed to create order", user_id=data.user_id, exception=e)
            raise DatabaseException("Failed to create order")
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(message="Failed to create order", user_id=data.user_id, exception=e)
            raise DatabaseException("Failed to create order")

        order_id = order.id
        try:
            for item in data.items:
                self.db.add(OrderItem(
                    order_id=order_id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    product_image=item.product_image,
                    variant_id=item.variant_id,
                    variant_name=item.variant_name,
                    quantity=item.quantity,
                    price=round_money(item.price),
                    subtotal=round_money(item.line_total),
                    created_at=now,
                ))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            await self._delete_order_header(order_id)
            logger.error(
                message="Failed to create order items; order header removed",
                user_id=data.user_id,
                metadata={"order_number": order_number},
                exception=e,
            )
            raise DatabaseException("Failed to create order items")

        created = await self._get_order_response(order_id)
        logger.log_business_event("order_created", {
            "order_id": str(order_id),
            "order_number": order_number,
            "status": status.value,
            "total": str(created.total),
            "coupon_code": data.coupon_code,
        }, user_id=data.user_id)

        if data.coupon_code and self.coupon_service is not None:
            await self.coupon_service.increment_usage_count(data.coupon_code)

        if self.notification_service is not None:
            self.notification_service.dispatch(self.notification_service.send_order_confirmation(created))
            self.notification_service.dispatch(self.notification_service.send_admin_new_order_alert(created))

        return created

    async def _delete_order_header(self, order_id: UUID) -> None:
        """Compensating delete for a header whose items could not be stored."""
        try:
            await self.db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
            await self.db.execute(delete(OrderStatusHistory).where(OrderStatusHistory.order_id == order_id))
            await self.db.execute(delete(Order).where(Order.id == order_id))
            await self.db.commit()
            self.db.expunge_all()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                message="Failed to remove order header after item failure",
                metadata={"order_id": str(order_id)},
                exception=e,
            )
            raise DatabaseException("Failed to create order items")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _load_order(self, order_id: UUID, user_id: Optional[str] = None) -> Optional[Order]:
        query = select(Order).where(Order.id == order_id)
        # Owner scoping: another user's order is indistinguishable from a missing one.
        if user_id is not None:
            query = query.where(Order.user_id == user_id)
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return result.scalars().first()

    async def _get_order_response(self, order_id: UUID) -> OrderResponse:
        order = await self._load_order(order_id)
        if order is None:
            raise NotFoundException("Order not found", resource="order")
        return OrderResponse.model_validate(order)

    async def get_order_by_id(self, order_id: UUID, user_id: Optional[str] = None) -> Optional[OrderResponse]:
        order = await self._load_order(order_id, user_id)
        return OrderResponse.model_validate(order) if order else None

    async def get_order_by_number(self, order_number: str,
                                  user_id: Optional[str] = None) -> Optional[OrderResponse]:
        query = select(Order).where(Order.order_number == order_number)
        if user_id is not None:
            query = query.where(Order.user_id == user_id)
        result = await self.db.execute(query.execution_options(populate_existing=True))
        order = result.scalars().first()
        return OrderResponse.model_validate(order) if order else None

    @staticmethod
    def _filter_conditions(filters: OrderFilters) -> list:
        conditions = []
        if filters.user_id is not None:
            conditions.append(Order.user_id == filters.user_id)
        if filters.status:
            conditions.append(Order.status.in_([s.value for s in filters.status]))
        if filters.payment_status:
            conditions.append(Order.payment_status.in_([s.value for s in filters.payment_status]))
        if filters.date_from:
            conditions.append(Order.created_at >= ensure_utc(filters.date_from))
        if filters.date_to:
            conditions.append(Order.created_at <= ensure_utc(filters.date_to))
        return conditions

    @staticmethod
    def _escape_like(value: str) -> str:
        return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

    async def get_orders(self, filters: Optional[OrderFilters] = None,
                         pagination: Optional[Pagination] = None) -> PaginatedOrders:
        """
        Filtered, newest-first, offset-paginated orders.

        Search matches order numbers first (case-insensitive substring). When
        nothing matches, it falls back to the shipping name and phone, which
        live in the JSON address and are filtered in Python over the full
        result set before paginating.
        """
        filters = filters or OrderFilters()
        pagination = pagination or Pagination()
        conditions = self._filter_conditions(filters)
        ordering = (Order.created_at.desc(), Order.id.desc())

        search = filters.search.strip() if filters.search else ""
        primary = list(conditions)
        if search:
            primary.append(Order.order_number.ilike(f"%{self._escape_like(search)}%", escape="\\"))

        total = (await self.db.execute(
            select(func.count()).select_from(Order).where(*primary))).scalar_one()

        if search and total == 0:
            return await self._search_by_customer(conditions, search, pagination)

        result = await self.db.execute(
            select(Order).where(*primary).order_by(*ordering)
            .offset(pagination.offset).limit(pagination.limit)
        )
        orders = [OrderResponse.model_validate(o) for o in result.scalars().all()]
        return PaginatedOrders(
            orders=orders,
            total=total,
            page=pagination.page,
            limit=pagination.limit,
            total_pages=math.ceil(total / pagination.limit),
        )

    async def _search_by_customer(self, conditions: list, search: str,
                                  pagination: Pagination) -> PaginatedOrders:
        # TODO: move name/phone into indexed columns so this can paginate in SQL
        result = await self.db.execute(
            select(Order).where(*conditions).order_by(Order.created_at.desc(), Order.id.desc()))
        needle = search.casefold()
        matches = [
            order for order in result.scalars().all()
            if needle in str((order.shipping_address or {}).get("name", "")).casefold()
            or needle in str((order.shipping_address or {}).get("phone", "")).casefold()
        ]
        page = matches[pagination.offset:pagination.offset + pagination.limit]
        return PaginatedOrders(
            orders=[OrderResponse.model_validate(o) for o in page],
            total=len(matches),
            page=pagination.page,
            limit=pagination.limit,
            total_pages=math.ceil(len(matches) / pagination.limit),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _history_timestamp(self, order: Order) -> datetime:
        """Current time, but never earlier than the latest history entry."""
        now = self.clock()
        if order.status_history:
            return max(now, order.status_history[-1].timestamp)
        return now

    async def _apply_guarded_update(self, order: Order, values: dict,
                                    history: Optional[OrderStatusHistory] = None) -> None:
        """
        Compare-and-swap write keyed on the version that was read.
        Zero affected rows means another writer got there first.
        """
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.version == order.version)
            .values(version=order.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise ConflictException(CONFLICT_MESSAGE)

        if history is not None:
            self.db.add(history)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(message="Failed to persist order update",
                         metadata={"order_id": str(order.id)}, exception=e)
            # A duplicate history position means a concurrent append won.
            raise ConflictException(CONFLICT_MESSAGE)

        logger.log_database_operation(
            "guarded_update", "orders", affected_rows=result.rowcount,
            metadata={"order_id": str(order.id), "version": order.version + 1})

    async def update_order_status(self, order_id: UUID, data: OrderStatusUpdate,
                                  updated_by: str) -> OrderResponse:
        order = await self._load_order(order_id)
        if order is None:
            raise NotFoundException("Order not found", resource="order")

        if data.expected_version is not None and order.version != data.expected_version:
            raise ConflictException(
                f"Order has been modified by another user. Expected version {data.expected_version}, "
                f"but current version is {order.version}. Please reload the order and try again.")

        current = OrderStatus(order.status)
        validate_status_transition(current, data.status)

        timestamp = self._history_timestamp(order)
        values = {"status": data.status.value, "updated_at": timestamp}

        if data.status == OrderStatus.SHIPPED:
            for key in ("tracking_number", "tracking_url", "courier_name"):
                if getattr(data, key):
                    values[key] = getattr(data, key)

        was_paid = order.payment_status == PaymentStatus.COMPLETED.value
        if data.status == OrderStatus.CANCELLED:
            values["cancelled_at"] = timestamp
            values["cancellation_reason"] = data.notes or "Order cancelled by admin"
            if was_paid:
                values["payment_status"] = PaymentStatus.REFUNDED.value

        history = OrderStatusHistory(
            order_id=order.id,
            position=len(order.status_history),
            status=data.status.value,
            timestamp=timestamp,
            updated_by=updated_by,
            notes=data.notes,
            created_at=timestamp,
        )
        await self._apply_guarded_update(order, values, history)

        updated = await self._get_order_response(order.id)
        logger.log_business_event("order_status_changed", {
            "order_id": str(order.id),
            "order_number": updated.order_number,
            "from": current.value,
            "to": data.status.value,
            "version": updated.version,
        }, user_id=updated_by)

        self._notify_status_change(updated, refund_required=was_paid and data.status == OrderStatus.CANCELLED)
        return updated

    def _notify_status_change(self, order: OrderResponse, refund_required: bool = False) -> None:
        notifier = self.notification_service
        if notifier is None:
            return
        if order.status == OrderStatus.SHIPPED:
            notifier.dispatch(notifier.send_shipping_notification(order))
        elif order.status == OrderStatus.DELIVERED:
            notifier.dispatch(notifier.send_delivery_confirmation(order))
        elif order.status == OrderStatus.CANCELLED:
            notifier.dispatch(notifier.send_cancellation_confirmation(order))
        else:
            notifier.dispatch(notifier.send_status_update(order, order.status))

        if refund_required:
            notifier.dispatch(notifier.send_admin_priority_notification(order, REFUND_REQUIRED_REASON))

    async def update_tracking_info(self, order_id: UUID, data: TrackingUpdate,
                                   updated_by: str) -> OrderResponse:
        order = await self._load_order(order_id)
        if order is None:
            raise NotFoundException("Order not found", resource="order")

        if data.expected_version is not None and order.version != data.expected_version:
            raise ConflictException(CONFLICT_MESSAGE)

        if order.status != OrderStatus.SHIPPED.value:
            raise InvalidStatusTransitionException(
                f"Tracking can only be updated for shipped orders (current status: {order.status})",
                current_status=order.status,
            )

        values = {
            "tracking_number": data.tracking_number,
            "updated_at": self.clock(),
        }
        if data.tracking_url is not None:
            values["tracking_url"] = data.tracking_url
        if data.courier_name is not None:
            values["courier_name"] = data.courier_name

        await self._apply_guarded_update(order, values)
        updated = await self._get_order_response(order.id)

        logger.log_business_event("order_tracking_updated", {
            "order_id": str(order.id),
            "tracking_number": data.tracking_number,
        }, user_id=updated_by)

        if self.notification_service is not None:
            self.notification_service.dispatch(
                self.notification_service.send_shipping_notification(updated))
        return updated

    async def cancel_order(self, order_id: UUID, user_id: str,
                           reason: Optional[str] = None) -> OrderResponse:
        """
        Customer cancellation of their own pending or confirmed order.

        A completed payment is flagged as refunded and an admin priority alert
        is raised; the gateway refund itself happens elsewhere.
        """
        order = await self._load_order(order_id, user_id)
        if order is None:
            raise NotFoundException("Order not found", resource="order")

        current = OrderStatus(order.status)
        if current not in CANCELLABLE_STATUSES:
            raise InvalidStatusTransitionException(
                f"Cannot cancel order with status: {current.value}",
                current_status=current.value,
                requested_status=OrderStatus.CANCELLED.value,
            )

        reason = reason or DEFAULT_CANCELLATION_REASON
        timestamp = self._history_timestamp(order)
        was_paid = order.payment_status == PaymentStatus.COMPLETED.value

        values = {
            "status": OrderStatus.CANCELLED.value,
            "cancelled_at": timestamp,
            "cancellation_reason": reason,
            "updated_at": timestamp,
        }
        if was_paid:
            values["payment_status"] = PaymentStatus.REFUNDED.value

        history = OrderStatusHistory(
            order_id=order.id,
            position=len(order.status_history),
            status=OrderStatus.CANCELLED.value,
            timestamp=timestamp,
            updated_by=user_id,
            notes=reason,
            created_at=timestamp,
        )
        await self._apply_guarded_update(order, values, history)

        cancelled = await self._get_order_response(order.id)
        logger.log_business_event("order_cancelled", {
            "order_id": str(order.id),
            "order_number": cancelled.order_number,
            "previous_status": current.value,
            "refund_required": was_paid,
        }, user_id=user_id)

        self._notify_status_change(cancelled, refund_required=was_paid)
        return cancelled
