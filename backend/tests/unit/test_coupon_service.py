"""
Unit tests for coupon validation, discount calculation and admin CRUD
"""
import pytest
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select

from core.exceptions import InvalidCouponException, ConflictException, NotFoundException, ValidationException
from models.coupons import Coupon, DiscountType
from schemas.coupons import CouponCreate, CouponUpdate
from services.coupons import calculate_discount


@pytest.mark.unit
class TestCalculateDiscount:

    def test_percentage_discount(self):
        assert calculate_discount("percentage", Decimal("10"), Decimal("1000")) == Decimal("100.00")

    def test_percentage_discount_is_capped(self):
        assert calculate_discount("percentage", Decimal("50"), Decimal("1000"), Decimal("200")) == Decimal("200.00")

    def test_fixed_discount_never_exceeds_subtotal(self):
        assert calculate_discount("fixed", Decimal("500"), Decimal("300")) == Decimal("300.00")

    def test_rounds_half_up(self):
        # 12.5% of 100.20 = 12.525
        assert calculate_discount("percentage", Decimal("12.5"), Decimal("100.20")) == Decimal("12.53")


@pytest.mark.unit
class TestValidateAndApplyCoupon:

    async def test_applies_valid_percentage_coupon(self, coupon_service, make_coupon):
        await make_coupon("SAVE10", DiscountType.PERCENTAGE, "10")

        applied = await coupon_service.validate_and_apply_coupon("save10", Decimal("1000"))

        assert applied.discount == Decimal("100.00")
        assert applied.coupon.code == "SAVE10"

    async def test_capped_percentage_coupon(self, coupon_service, make_coupon):
        await make_coupon("SAVE10", DiscountType.PERCENTAGE, "10", max_discount=Decimal("200"))

        for code in ("SAVE10", "save10", "SaVe10"):
            applied = await coupon_service.validate_and_apply_coupon(code, Decimal("5000"))
            assert applied.discount == Decimal("200.00")

    async def test_unknown_code(self, coupon_service):
        with pytest.raises(InvalidCouponException) as exc:
            await coupon_service.validate_and_apply_coupon("NOPE", Decimal("1000"))
        assert exc.value.message == "Invalid coupon code"

    async def test_empty_code(self, coupon_service):
        with pytest.raises(InvalidCouponException):
            await coupon_service.validate_and_apply_coupon("   ", Decimal("1000"))

    async def test_inactive_coupon(self, coupon_service, make_coupon):
        await make_coupon("OLD", is_active=False)
        with pytest.raises(InvalidCouponException) as exc:
            await coupon_service.validate_and_apply_coupon("OLD", Decimal("1000"))
        assert exc.value.message == "This coupon is no longer active"

    async def test_not_yet_valid(self, coupon_service, make_coupon, clock):
        await make_coupon("SOON", valid_from=clock() + timedelta(days=2))
        with pytest.raises(InvalidCouponException) as exc:
            await coupon_service.validate_and_apply_coupon("SOON", Decimal("1000"))
        assert exc.value.message == "This coupon is not yet valid"

    async def test_expired_coupon_names_the_date(self, coupon_service, make_coupon, clock):
        await make_coupon("GONE", valid_from=clock() - timedelta(days=10),
                          valid_until=clock() - timedelta(days=1))
        with pytest.raises(InvalidCouponException) as exc:
            await coupon_service.validate_and_apply_coupon("GONE", Decimal("1000"))
        assert exc.value.message == "This coupon expired on 14 Jan 2025"

    async def test_minimum_order_value(self, coupon_service, make_coupon):
        await make_coupon("BIG", min_order_value=Decimal("500"))
        with pytest.raises(InvalidCouponException) as exc:
            await coupon_service.validate_and_apply_coupon("BIG", Decimal("499.99"))
        assert exc.value.message == "Minimum order value of ₹500.00 required for this coupon"

    async def test_minimum_order_value_is_inclusive(self, coupon_service, make_coupon):
        await make_coupon("BIG", min_order_value=Decimal("500"))
        applied = await coupon_service.validate_and_apply_coupon("BIG", Decimal("500"))
        assert applied.discount == Decimal("50.00")

    async def test_usage_limit_reached(self, coupon_service, make_coupon):
        await make_coupon("LIMITED", usage_limit=3, usage_count=3)
        with pytest.raises(InvalidCouponException) as exc:
            await coupon_service.validate_and_apply_coupon("LIMITED", Decimal("1000"))
        assert exc.value.message == "This coupon has reached its usage limit"

    async def test_inactive_is_reported_before_expiry(self, coupon_service, make_coupon, clock):
        await make_coupon("BOTH", is_active=False, valid_from=clock() - timedelta(days=10),
                          valid_until=clock() - timedelta(days=1))
        with pytest.raises(InvalidCouponException) as exc:
            await coupon_service.validate_and_apply_coupon("BOTH", Decimal("1000"))
        assert exc.value.message == "This coupon is no longer active"

    async def test_validation_does_not_count_usage(self, coupon_service, make_coupon, session_factory):
        await make_coupon("SAVE10")
        await coupon_service.validate_and_apply_coupon("SAVE10", Decimal("1000"))

        async with session_factory() as session:
            coupon = (await session.execute(select(Coupon).where(Coupon.code == "SAVE10"))).scalar_one()
        assert coupon.usage_count == 0


@pytest.mark.unit
class TestUsageCount:

    async def test_increment_usage_count(self, coupon_service, make_coupon, session_factory):
        await make_coupon("SAVE10")

        await coupon_service.increment_usage_count("save10")
        await coupon_service.increment_usage_count("SAVE10")

        async with session_factory() as session:
            coupon = (await session.execute(select(Coupon).where(Coupon.code == "SAVE10"))).scalar_one()
        assert coupon.usage_count == 2

    async def test_increment_unknown_code_is_harmless(self, coupon_service):
        await coupon_service.increment_usage_count("MISSING")


@pytest.mark.unit
class TestCouponAdmin:

    def _create_payload(self, clock, **overrides):
        values = dict(
            code="welcome15",
            description="Welcome offer",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("15"),
            max_discount=Decimal("300"),
            valid_from=clock(),
            valid_until=clock() + timedelta(days=30),
        )
        values.update(overrides)
        return CouponCreate(**values)

    async def test_create_coupon_stores_uppercase_code(self, coupon_service, clock):
        coupon = await coupon_service.create_coupon(self._create_payload(clock))

        assert coupon.code == "WELCOME15"
        assert coupon.usage_count == 0
        assert coupon.discount_type == DiscountType.PERCENTAGE

    async def test_duplicate_code_conflicts(self, coupon_service, clock):
        await coupon_service.create_coupon(self._create_payload(clock))
        with pytest.raises(ConflictException):
            await coupon_service.create_coupon(self._create_payload(clock, code="WELCOME15"))

    def test_percentage_over_100_is_rejected(self, clock):
        with pytest.raises(ValueError):
            self._create_payload(clock, discount_value=Decimal("120"))

    async def test_get_coupon_by_code_is_case_insensitive(self, coupon_service, make_coupon):
        await make_coupon("FESTIVE")
        assert (await coupon_service.get_coupon_by_code("festive")).code == "FESTIVE"
        assert await coupon_service.get_coupon_by_code("other") is None

    async def test_active_coupons_exclude_expired_and_inactive(self, coupon_service, make_coupon, clock):
        await make_coupon("LIVE")
        await make_coupon("OFF", is_active=False)
        await make_coupon("PAST", valid_from=clock() - timedelta(days=9), valid_until=clock() - timedelta(days=2))

        codes = [c.code for c in await coupon_service.get_active_coupons()]
        assert codes == ["LIVE"]

    async def test_update_coupon(self, coupon_service, make_coupon):
        coupon = await make_coupon("EDIT")
        updated = await coupon_service.update_coupon(
            coupon.id, CouponUpdate(discount_type=DiscountType.FIXED, discount_value=Decimal("75")))

        assert updated.discount_type == DiscountType.FIXED
        assert updated.discount_value == Decimal("75.00")

    async def test_update_rejects_inverted_window(self, coupon_service, make_coupon, clock):
        coupon = await make_coupon("EDIT")
        with pytest.raises(ValidationException):
            await coupon_service.update_coupon(coupon.id, CouponUpdate(valid_until=clock() - timedelta(days=5)))

    async def test_update_rejects_switch_to_percentage_over_100(self, coupon_service, make_coupon, session_factory):
        coupon = await make_coupon("FLAT500", DiscountType.FIXED, "500")

        with pytest.raises(ValidationException) as exc:
            await coupon_service.update_coupon(coupon.id, CouponUpdate(discount_type=DiscountType.PERCENTAGE))
        assert exc.value.message == "Percentage discount cannot exceed 100"

        async with session_factory() as session:
            stored = (await session.execute(select(Coupon).where(Coupon.code == "FLAT500"))).scalar_one()
        assert stored.discount_type == DiscountType.FIXED.value

    async def test_update_rejects_percentage_value_over_100(self, coupon_service, make_coupon):
        coupon = await make_coupon("SAVE10")
        with pytest.raises(ValidationException):
            await coupon_service.update_coupon(coupon.id, CouponUpdate(discount_value=Decimal("150")))

    async def test_delete_coupon(self, coupon_service, make_coupon):
        coupon = await make_coupon("BYE")
        await coupon_service.delete_coupon(coupon.id)
        assert await coupon_service.get_coupon_by_code("BYE") is None

    async def test_delete_missing_coupon(self, coupon_service):
        with pytest.raises(NotFoundException):
            await coupon_service.delete_coupon(uuid4())
