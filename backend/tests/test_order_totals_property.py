"""
Property-based tests for order pricing.

For any cart, coupon and delivery charge the priced order satisfies
total == round(subtotal - discount + delivery_charge + tax, 2) and passes
the order creation checks unchanged.
"""
import asyncio
import pytest
import sys
import os
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from hypothesis import given, strategies as st, settings, HealthCheck
from hypothesis.strategies import composite

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)) + '/..')

from core.utils.money import round_money
from schemas.delivery import DeliveryQuote, DeliveryZone
from schemas.orders import CartItem, OrderCreate, OrderItemCreate, ShippingAddress
from services.coupons import calculate_discount
from services.orders import OrderService

money = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("50000"), places=2)


@composite
def carts(draw):
    size = draw(st.integers(min_value=1, max_value=6))
    return [
        CartItem(
            product_id=f"product-{n}",
            product_name=f"Product {n}",
            quantity=draw(st.integers(min_value=1, max_value=10)),
            price=draw(money),
        )
        for n in range(size)
    ]


@composite
def coupons(draw):
    discount_type = draw(st.sampled_from(["percentage", "fixed"]))
    if discount_type == "percentage":
        value = draw(st.decimals(min_value=Decimal("1"), max_value=Decimal("100"), places=2))
    else:
        value = draw(money)
    max_discount = draw(st.none() | money)
    return discount_type, value, max_discount


def priced_service(delivery_charge: Decimal, coupon, tax_rate: Decimal) -> OrderService:
    coupon_service = MagicMock()

    async def apply(code, subtotal, user_id=None):
        discount_type, value, max_discount = coupon
        applied = MagicMock()
        applied.discount = calculate_discount(discount_type, value, subtotal, max_discount)
        applied.coupon.code = code.upper()
        return applied

    coupon_service.validate_and_apply_coupon = apply
    delivery_service = MagicMock()
    delivery_service.quote_delivery = AsyncMock(return_value=DeliveryQuote(
        charge=delivery_charge, is_free_shipping=delivery_charge == 0, zone=DeliveryZone.CITY,
        estimated_delivery_days=2, estimated_delivery_date=date(2025, 1, 17),
    ))
    return OrderService(AsyncMock(), coupon_service=coupon_service,
                        delivery_service=delivery_service, tax_rate_percent=tax_rate)


class TestOrderTotalsProperty:

    @given(
        items=carts(),
        coupon=st.none() | coupons(),
        delivery_charge=st.sampled_from([Decimal("0"), Decimal("50"), Decimal("80"), Decimal("149.99")]),
        tax_rate=st.sampled_from([Decimal("0"), Decimal("5"), Decimal("12"), Decimal("18")]),
    )
    @settings(max_examples=150, suppress_health_check=[HealthCheck.too_slow])
    def test_totals_add_up(self, items, coupon, delivery_charge, tax_rate):
        service = priced_service(delivery_charge, coupon, tax_rate)
        pricing = asyncio.run(service.calculate_order_totals(
            items, "400050", "promo" if coupon else None))

        expected_subtotal = round_money(sum(i.price * i.quantity for i in items))
        assert pricing.subtotal == expected_subtotal
        assert Decimal("0") <= pricing.discount <= pricing.subtotal
        assert pricing.tax >= 0
        assert pricing.total == round_money(
            pricing.subtotal - pricing.discount + pricing.delivery_charge + pricing.tax)
        assert pricing.total >= pricing.delivery_charge

    @given(items=carts(), coupon=st.none() | coupons())
    @settings(max_examples=100)
    def test_priced_orders_pass_creation_checks(self, items, coupon):
        service = priced_service(Decimal("80"), coupon, Decimal("18"))
        pricing = asyncio.run(service.calculate_order_totals(
            items, "400001", "promo" if coupon else None))

        data = OrderCreate(
            user_id="user-1",
            items=[OrderItemCreate(**i.model_dump(), subtotal=round_money(i.price * i.quantity)) for i in items],
            subtotal=pricing.subtotal,
            discount=pricing.discount,
            delivery_charge=pricing.delivery_charge,
            tax=pricing.tax,
            total=pricing.total,
            coupon_code=pricing.coupon_code,
            shipping_address=ShippingAddress(name="Asha Rao", phone="9876543210", street="12 Hill Road",
                                             city="Mumbai", state="Maharashtra", pincode="400001"),
            delivery_pincode="400001",
            payment_method="cod",
        )
        OrderService._validate_create_order_input(data)
