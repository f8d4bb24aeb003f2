from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from typing import Callable, List, Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from models.coupons import Coupon, DiscountType
from schemas.coupons import CouponCreate, CouponUpdate, CouponResponse, AppliedCoupon
from core.database import utc_now
from core.exceptions import InvalidCouponException, NotFoundException, ConflictException, ValidationException
from core.logging import get_structured_logger
from core.utils.money import round_money, format_money, to_decimal, ZERO

logger = get_structured_logger(__name__)


def calculate_discount(discount_type: str, discount_value: Decimal, subtotal: Decimal,
                       max_discount: Optional[Decimal] = None) -> Decimal:
    """
    Discount a coupon grants on `subtotal`.

    Fixed coupons take their face value; percentage coupons take the share of the
    subtotal, capped at `max_discount`. Either way the discount never exceeds the
    subtotal and is rounded half-up to two places.
    """
    subtotal = to_decimal(subtotal)
    if discount_type == DiscountType.FIXED.value:
        discount = to_decimal(discount_value)
    elif discount_type == DiscountType.PERCENTAGE.value:
        discount = subtotal * to_decimal(discount_value) / Decimal(100)
        if max_discount is not None and discount > max_discount:
            discount = to_decimal(max_discount)
    else:
        discount = ZERO

    return round_money(max(min(discount, subtotal), ZERO))


class CouponService:
    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now,
                 currency_symbol: str = "₹"):
        self.db = db
        self.clock = clock
        self.currency_symbol = currency_symbol

    async def _get_by_code(self, code: str) -> Optional[Coupon]:
        result = await self.db.execute(
            select(Coupon).where(Coupon.code == code.strip().upper()))
        return result.scalars().first()

    async def validate_and_apply_coupon(self, code: str, order_subtotal: Decimal,
                                        user_id: Optional[str] = None) -> AppliedCoupon:
        """
        Validate `code` against the order and compute its discount.

        Raises InvalidCouponException naming the first constraint that fails:
        unknown code, inactive, not yet valid, expired, below minimum order
        value, usage limit reached. Usage is not counted here; the order
        service calls increment_usage_count once the order is stored.
        """
        if not code or not code.strip():
            raise InvalidCouponException("Invalid coupon code")

        coupon = await self._get_by_code(code)
        if not coupon:
            raise InvalidCouponException("Invalid coupon code")

        order_subtotal = to_decimal(order_subtotal)
        self._validate_coupon(coupon, order_subtotal)

        discount = calculate_discount(
            coupon.discount_type, coupon.discount_value, order_subtotal, coupon.max_discount)

        return AppliedCoupon(discount=discount, coupon=CouponResponse.model_validate(coupon))

    def _validate_coupon(self, coupon: Coupon, order_subtotal: Decimal) -> None:
        if not coupon.is_active:
            raise InvalidCouponException("This coupon is no longer active")

        now = self.clock()
        if now < coupon.valid_from:
            raise InvalidCouponException("This coupon is not yet valid")

        if now > coupon.valid_until:
            raise InvalidCouponException(
                f"This coupon expired on {coupon.valid_until.strftime('%d %b %Y')}")

        if coupon.min_order_value is not None and order_subtotal < coupon.min_order_value:
            raise InvalidCouponException(
                f"Minimum order value of {format_money(coupon.min_order_value, self.currency_symbol)} "
                f"required for this coupon")

        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            raise InvalidCouponException("This coupon has reached its usage limit")

        # per_user_limit is stored but not enforced; there is no per-user redemption ledger.

    async def increment_usage_count(self, code: str) -> None:
        """Atomically bump usage_count. Failures are logged and never raised."""
        try:
            result = await self.db.execute(
                update(Coupon)
                .where(Coupon.code == code.strip().upper())
                .values(usage_count=Coupon.usage_count + 1)
            )
            await self.db.commit()
            logger.log_database_operation(
                "increment_usage", "coupons", affected_rows=result.rowcount,
                metadata={"coupon_code": code.upper()})
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                message="Failed to increment coupon usage",
                metadata={"coupon_code": code.upper()},
                exception=e,
            )

    async def get_coupon_by_code(self, code: str) -> Optional[CouponResponse]:
        coupon = await self._get_by_code(code)
        return CouponResponse.model_validate(coupon) if coupon else None

    async def get_active_coupons(self) -> List[CouponResponse]:
        now = self.clock()
        result = await self.db.execute(
            select(Coupon)
            .where(Coupon.is_active.is_(True), Coupon.valid_from <= now, Coupon.valid_until >= now)
            .order_by(Coupon.created_at.desc())
        )
        return [CouponResponse.model_validate(c) for c in result.scalars().all()]

    async def list_coupons(self) -> List[CouponResponse]:
        result = await self.db.execute(select(Coupon).order_by(Coupon.created_at.desc()))
        return [CouponResponse.model_validate(c) for c in result.scalars().all()]

    async def create_coupon(self, coupon_data: CouponCreate) -> CouponResponse:
        if await self._get_by_code(coupon_data.code):
            raise ConflictException(f"Coupon code {coupon_data.code} already exists")

        data = coupon_data.model_dump()
        data["discount_type"] = coupon_data.discount_type.value
        coupon = Coupon(**data, usage_count=0, created_at=self.clock())
        self.db.add(coupon)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictException(f"Coupon code {coupon_data.code} already exists")
        await self.db.refresh(coupon)

        logger.log_business_event("coupon_created", {"code": coupon.code})
        return CouponResponse.model_validate(coupon)

    async def _get_by_id(self, coupon_id: UUID) -> Coupon:
        result = await self.db.execute(select(Coupon).where(Coupon.id == coupon_id))
        coupon = result.scalars().first()
        if not coupon:
            raise NotFoundException("Coupon not found", resource="coupon")
        return coupon

    async def update_coupon(self, coupon_id: UUID, coupon_data: CouponUpdate) -> CouponResponse:
        coupon = await self._get_by_id(coupon_id)

        for key, value in coupon_data.model_dump(exclude_unset=True).items():
            if isinstance(value, DiscountType):
                value = value.value
            setattr(coupon, key, value)

        if coupon.valid_until <= coupon.valid_from:
            await self.db.rollback()
            raise ValidationException("valid_until must be after valid_from")

        if (coupon.discount_type == DiscountType.PERCENTAGE.value
                and to_decimal(coupon.discount_value) > 100):
            await self.db.rollback()
            raise ValidationException("Percentage discount cannot exceed 100")

        await self.db.commit()
        await self.db.refresh(coupon)
        return CouponResponse.model_validate(coupon)

    async def delete_coupon(self, coupon_id: UUID) -> None:
        coupon = await self._get_by_id(coupon_id)
        await self.db.delete(coupon)
        await self.db.commit()
        logger.log_business_event("coupon_deleted", {"code": coupon.code})
