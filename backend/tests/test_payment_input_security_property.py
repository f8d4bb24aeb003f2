"""
Property-based tests for payment input hygiene: card numbers are refused in
free-text fields while ids, links and tracking numbers pass, gateway
identifiers must match their formats, and signatures only verify for the
exact order/payment pair.
"""
import pytest
import sys
import os

from hypothesis import given, strategies as st, settings, assume
from pydantic import ValidationError

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)) + '/..')

from models.orders import OrderStatus
from schemas.orders import (
    ShippingAddress, CartItem, CancelOrderRequest, OrderStatusUpdate, TrackingUpdate, contains_card_number,
    PAYMENT_ID_PATTERN, GATEWAY_ORDER_ID_PATTERN,
)
from services.payments import RazorpayGateway, razorpay_signature

card_numbers = st.text(alphabet="0123456789", min_size=13, max_size=19)
id_suffixes = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", min_size=1, max_size=24)


@st.composite
def formatted_card_numbers(draw):
    digits = draw(card_numbers)
    separator = draw(st.sampled_from(["", " ", "-"]))
    return separator.join(digits[i:i + 4] for i in range(0, len(digits), 4))


class TestCardDataRejectionProperty:

    @given(card=formatted_card_numbers(), prefix=st.sampled_from(["", "Flat 4, ", "card "]))
    @settings(max_examples=150)
    def test_address_fields_refuse_card_numbers(self, card, prefix):
        with pytest.raises(ValidationError):
            ShippingAddress(name="Asha Rao", phone="9876543210", street=prefix + card,
                            city="Mumbai", state="Maharashtra", pincode="400050")

    @given(card=formatted_card_numbers())
    def test_free_text_fields_refuse_card_numbers(self, card):
        with pytest.raises(ValidationError):
            CancelOrderRequest(reason=f"refund to {card}")
        with pytest.raises(ValidationError):
            CartItem(product_id="ring-1", product_name=card, quantity=1, price=10)

    @given(phone=st.text(alphabet="0123456789", min_size=10, max_size=12))
    def test_phone_numbers_are_not_card_numbers(self, phone):
        assert not contains_card_number(phone)
        ShippingAddress(name="Asha", phone=phone, street="Hill Road", city="Mumbai",
                        state="Maharashtra", pincode="400050")

    @given(stamp=st.integers(min_value=10 ** 12, max_value=10 ** 13 - 1))
    def test_timestamped_image_urls_are_accepted(self, stamp):
        url = f"https://x.supabase.co/storage/v1/object/public/products/{stamp}.jpg"
        item = CartItem(product_id=f"prod-{stamp}", product_name="Silver Ring", product_image=url,
                        variant_id=str(stamp), quantity=1, price=10)
        assert item.product_image == url

    @given(awb=st.text(alphabet="0123456789", min_size=13, max_size=15))
    def test_courier_tracking_numbers_are_accepted(self, awb):
        update = OrderStatusUpdate(status=OrderStatus.SHIPPED, tracking_number=awb,
                                   tracking_url=f"https://www.delhivery.com/track/package/{awb}")
        assert update.tracking_number == awb
        assert TrackingUpdate(tracking_number=awb).tracking_number == awb

    def test_unknown_fields_are_rejected(self):
        with pytest.raises(ValidationError):
            OrderStatusUpdate(status="confirmed", card_cvv="123")


class TestGatewayIdentifierProperty:

    @given(suffix=id_suffixes)
    def test_well_formed_ids_match(self, suffix):
        assert PAYMENT_ID_PATTERN.fullmatch(f"pay_{suffix}")
        assert GATEWAY_ORDER_ID_PATTERN.fullmatch(f"order_{suffix}")

    @given(value=st.text(max_size=30))
    def test_malformed_payment_ids_do_not_match(self, value):
        assume(not (value.startswith("pay_") and len(value) > 4
                    and all(c in "abcdefghijklmnopqrstuvwxyz0123456789" for c in value[4:])))
        assert PAYMENT_ID_PATTERN.fullmatch(value) is None

    @given(order_id=id_suffixes, payment_id=id_suffixes, other=id_suffixes)
    @settings(max_examples=100)
    def test_signature_binds_the_pair(self, order_id, payment_id, other):
        gateway = RazorpayGateway("rzp_test_key", "secret")
        signature = razorpay_signature("secret", f"order_{order_id}", f"pay_{payment_id}")

        assert gateway.verify_payment(f"pay_{payment_id}", f"order_{order_id}", signature)
        if other != payment_id:
            assert not gateway.verify_payment(f"pay_{other}", f"order_{order_id}", signature)
