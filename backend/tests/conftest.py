import sys
import os
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

# Add the backend directory to the Python path
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

import models  # noqa: F401  registers every table on Base.metadata
from core.database import Base
from models.coupons import Coupon, DiscountType
from models.delivery import DeliverySettings
from schemas.delivery import PincodeLocation
from schemas.orders import CartItem, CheckoutOrderRequest, ShippingAddress
from services.coupons import CouponService
from services.delivery import DeliveryService
from services.notifications import NotificationService
from services.orders import OrderService
from services.reports import ReportService

START_TIME = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)

# Business origin is Mumbai; lookups resolve relative to it.
PINCODES: Dict[str, PincodeLocation] = {
    "400050": PincodeLocation(city="Mumbai", state="Maharashtra", latitude=19.0596, longitude=72.8295),
    "400001": PincodeLocation(city="Mumbai", state="Maharashtra", latitude=18.9388, longitude=72.8354),
    "411001": PincodeLocation(city="Pune", state="Maharashtra", latitude=18.5204, longitude=73.8567),
    "110001": PincodeLocation(city="New Delhi", state="Delhi", latitude=28.6139, longitude=77.2090),
}
LOCAL_PINCODE = "400050"
CITY_PINCODE = "400001"
STATE_PINCODE = "411001"
NATIONAL_PINCODE = "110001"
UNKNOWN_PINCODE = "999999"


class FakeClock:
    """Injected clock; only moves when a test advances it."""

    def __init__(self, now: datetime = START_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeTimer:
    def __init__(self):
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


class WindowGate:
    """Stands in for the batch window sleep; the window closes when a test opens the gate."""

    def __init__(self):
        self.event = asyncio.Event()
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await self.event.wait()

    def open(self) -> None:
        self.event.set()


class FakePincodeLookup:
    def __init__(self, table: Optional[Dict[str, PincodeLocation]] = None):
        self.table = dict(PINCODES if table is None else table)
        self.calls: List[str] = []

    async def lookup(self, pincode: str) -> Optional[PincodeLocation]:
        self.calls.append(pincode)
        return self.table.get(pincode)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def email_sender() -> AsyncMock:
    sender = AsyncMock()
    sender.send.return_value = "mailgun-message-id"
    return sender


@pytest.fixture
def backoff_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def window_gate() -> WindowGate:
    return WindowGate()


@pytest.fixture
def pincode_lookup() -> FakePincodeLookup:
    return FakePincodeLookup()


@pytest.fixture
async def notification_service(session_factory, email_sender, clock, backoff_sleep, window_gate):
    service = NotificationService(
        session_factory,
        email_sender,
        admin_email="admin@example.com",
        clock=clock,
        sleep=backoff_sleep,
        window_sleep=window_gate,
    )
    yield service
    await service.flush_batches()
    await service.wait_for_pending()


@pytest.fixture
async def delivery_settings(session_factory, clock) -> DeliverySettings:
    async with session_factory() as session:
        row = DeliverySettings(
            business_name="Dazzle Jewelry",
            business_address="Linking Road",
            business_city="Mumbai",
            business_state="Maharashtra",
            business_pincode="400050",
            business_latitude=19.0760,
            business_longitude=72.8777,
            local_delivery_charge=Decimal("50"),
            city_delivery_charge=Decimal("80"),
            state_delivery_charge=Decimal("120"),
            national_delivery_charge=Decimal("150"),
            free_shipping_enabled=True,
            free_shipping_threshold=Decimal("2000"),
            created_at=clock(),
        )
        session.add(row)
        await session.commit()
        return row


@pytest.fixture
def delivery_service(session_factory, pincode_lookup, clock, timer, delivery_settings) -> DeliveryService:
    return DeliveryService(session_factory, pincode_lookup, clock=clock, timer=timer)


@pytest.fixture
def coupon_service(db_session, clock) -> CouponService:
    return CouponService(db_session, clock=clock)


@pytest.fixture
def order_service(db_session, coupon_service, delivery_service, notification_service, clock) -> OrderService:
    return OrderService(
        db_session,
        coupon_service=coupon_service,
        delivery_service=delivery_service,
        notification_service=notification_service,
        clock=clock,
    )


@pytest.fixture
def report_service(session_factory, notification_service, clock) -> ReportService:
    return ReportService(session_factory, notification_service, clock=clock, async_threshold=5)


@pytest.fixture
def make_coupon(session_factory, clock):
    async def _make_coupon(code: str = "SAVE10", discount_type: DiscountType = DiscountType.PERCENTAGE,
                           discount_value="10", **overrides) -> Coupon:
        values = dict(
            code=code,
            description="Test coupon",
            discount_type=discount_type.value,
            discount_value=Decimal(str(discount_value)),
            min_order_value=None,
            max_discount=None,
            usage_limit=None,
            usage_count=0,
            valid_from=clock() - timedelta(days=1),
            valid_until=clock() + timedelta(days=30),
            is_active=True,
            created_at=clock(),
        )
        values.update(overrides)
        async with session_factory() as session:
            coupon = Coupon(**values)
            session.add(coupon)
            await session.commit()
            return coupon

    return _make_coupon


def make_address(**overrides) -> ShippingAddress:
    values = dict(
        name="Asha Rao",
        phone="9876543210",
        street="12 Hill Road",
        city="Mumbai",
        state="Maharashtra",
        pincode=LOCAL_PINCODE,
        email="asha@example.com",
    )
    values.update(overrides)
    return ShippingAddress(**values)


def make_checkout(items: Optional[List[CartItem]] = None, pincode: str = LOCAL_PINCODE,
                  coupon_code: Optional[str] = None, **address_overrides) -> CheckoutOrderRequest:
    if items is None:
        items = [
            CartItem(product_id="ring-1", product_name="Silver Ring", quantity=2, price=Decimal("250.00")),
            CartItem(product_id="chain-7", product_name="Gold Chain", quantity=1, price=Decimal("500.00")),
        ]
    return CheckoutOrderRequest(
        items=items,
        shipping_address=make_address(pincode=pincode, **address_overrides),
        delivery_pincode=pincode,
        coupon_code=coupon_code,
    )
