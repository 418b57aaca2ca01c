from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import func
from sqlmodel import select

from apps.api.services.checkout import CartItem, CheckoutService, DuplicateOrderGuard
from apps.api.services.errors import DomainValidationError, DuplicateOrderError, ReferenceNotFoundError
from factories import add_package
from packages.db.models import OrderTable


@pytest.fixture
def checkout(services):
    return CheckoutService(
        services.database,
        orchestrator=services.orchestrator,
        guard=DuplicateOrderGuard(window_seconds=300),
    )


@pytest.mark.asyncio
async def test_checkout_creates_an_order_per_item(checkout, marketplace, database):
    second = await add_package(database, creator_id=marketplace.creator_id, price="80.00", title="Story set")

    results = await checkout.checkout(
        marketplace.brand_user_id,
        [CartItem(package_id=marketplace.package_id), CartItem(package_id=second, quantity=3)],
    )

    assert [result.order.package_id for result in results] == [marketplace.package_id, second]
    assert results[1].order.total_amount == Decimal("240.00")
    assert len({result.ticket.id for result in results}) == 2


@pytest.mark.asyncio
async def test_repeat_checkout_within_window_is_rejected(checkout, services, marketplace):
    first = await checkout.checkout(marketplace.brand_user_id, [CartItem(package_id=marketplace.package_id)])

    with pytest.raises(DuplicateOrderError) as exc:
        await checkout.checkout(marketplace.brand_user_id, [CartItem(package_id=marketplace.package_id)])
    assert exc.value.details["existing_order_id"] == first[0].order.id

    await services.orders.reject(
        first[0].order.id, creator_id=marketplace.creator_id, message="No slots", actor="creator"
    )
    again = await checkout.checkout(marketplace.brand_user_id, [CartItem(package_id=marketplace.package_id)])
    assert again[0].order.id != first[0].order.id


@pytest.mark.asyncio
async def test_inactive_package_fails_the_whole_cart(checkout, marketplace, database):
    hidden = await add_package(database, creator_id=marketplace.creator_id, is_active=False)

    with pytest.raises(ReferenceNotFoundError):
        await checkout.checkout(
            marketplace.brand_user_id,
            [CartItem(package_id=marketplace.package_id), CartItem(package_id=hidden)],
        )

    async with database.reader() as session:
        assert await session.scalar(select(func.count(OrderTable.id))) == 0


@pytest.mark.asyncio
async def test_checkout_input_checks(checkout, marketplace):
    with pytest.raises(DomainValidationError):
        await checkout.checkout(marketplace.brand_user_id, [])
    with pytest.raises(DomainValidationError):
        await checkout.checkout(
            marketplace.brand_user_id,
            [CartItem(package_id=marketplace.package_id), CartItem(package_id=marketplace.package_id)],
        )
    with pytest.raises(ReferenceNotFoundError):
        await checkout.checkout(marketplace.creator_user_id, [CartItem(package_id=marketplace.package_id)])
