"""
Property-based tests for order listing: a user only ever sees their own
orders, newest first, and consecutive pages partition the result set.
"""
import asyncio
import pytest
import sys
import os
from decimal import Decimal

from hypothesis import given, strategies as st, settings, HealthCheck
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)) + '/..')

import models  # noqa: F401
from conftest import FakeClock, make_address
from core.database import Base
from schemas.orders import OrderCreate, OrderItemCreate, OrderFilters, Pagination
from services.orders import OrderService

USERS = ["user-a", "user-b", "user-c"]


def order_for(user_id: str) -> OrderCreate:
    return OrderCreate(
        user_id=user_id,
        items=[OrderItemCreate(product_id="ring-1", product_name="Silver Ring", quantity=1,
                               price=Decimal("100"), subtotal=Decimal("100"))],
        subtotal=Decimal("100"),
        delivery_charge=Decimal("50"),
        tax=Decimal("18"),
        total=Decimal("168"),
        shipping_address=make_address(),
        delivery_pincode="400050",
        payment_method="cod",
    )


async def list_all_pages(service: OrderService, user_id: str, limit: int):
    first = await service.get_orders(OrderFilters(user_id=user_id), Pagination(page=1, limit=limit))
    pages = [first]
    for page in range(2, first.total_pages + 1):
        pages.append(await service.get_orders(OrderFilters(user_id=user_id), Pagination(page=page, limit=limit)))
    return first.total, [o for p in pages for o in p.orders]


async def run_scenario(owners, gaps, limit):
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool,
                                 connect_args={"check_same_thread": False})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    clock = FakeClock()
    try:
        async with sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)() as session:
            service = OrderService(session, clock=clock)
            created = {user: [] for user in USERS}
            for owner, gap in zip(owners, gaps):
                clock.advance(seconds=gap)
                order = await service.create_order(order_for(owner))
                created[owner].append(order.id)

            listings = {}
            for user in USERS:
                listings[user] = await list_all_pages(service, user, limit)
                # Another user's order is invisible by id as well
                for other in USERS:
                    if other != user and created[other]:
                        assert await service.get_order_by_id(created[other][0], user) is None
            return created, listings
    finally:
        await engine.dispose()


class TestOrderIsolationProperty:

    @given(
        owners=st.lists(st.sampled_from(USERS), min_size=1, max_size=12),
        gaps=st.lists(st.integers(min_value=0, max_value=5), min_size=12, max_size=12),
        limit=st.integers(min_value=1, max_value=5),
    )
    @settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_listing_is_owner_scoped_and_ordered(self, owners, gaps, limit):
        created, listings = asyncio.run(run_scenario(owners, gaps, limit))

        for user in USERS:
            total, orders = listings[user]
            assert total == len(created[user])
            assert all(o.user_id == user for o in orders)
            # Pages partition the set: no order repeats, none is missing
            assert sorted(o.id for o in orders) == sorted(created[user])
            keys = [(o.created_at, o.id) for o in orders]
            assert keys == sorted(keys, reverse=True)
