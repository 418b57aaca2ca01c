"""Cart checkout: resolve the buying brand, reject repeats, then hand off to the orchestrator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from apps.api.core.database import Database
from apps.api.services.errors import DomainValidationError, DuplicateOrderError, ReferenceNotFoundError
from apps.api.services.models import OrderInput, OrderStatus, OrderWithTicket
from apps.api.services.orders import OrderTicketOrchestrator
from packages.db.models import BrandProfileTable, OrderTable, PackageTable

logger = logging.getLogger(__name__)

OPEN_ORDER_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.IN_PROGRESS)


@dataclass(slots=True)
class CartItem:
    package_id: int
    quantity: int = 1


class DuplicateOrderGuard:
    """Reject an order for a package the brand already bought moments ago.

    This is a user-facing courtesy against double submits, not a constraint:
    two checkouts racing past the check both go through.
    """

    def __init__(self, *, window_seconds: int = 300) -> None:
        self._window = timedelta(seconds=window_seconds)

    async def check(self, session: AsyncSession, *, package_id: int, brand_id: int, creator_id: int) -> None:
        since = datetime.now(timezone.utc) - self._window
        existing = await session.scalar(
            select(OrderTable.id)
            .where(OrderTable.package_id == package_id)
            .where(OrderTable.brand_id == brand_id)
            .where(OrderTable.creator_id == creator_id)
            .where(OrderTable.status.in_([status.value for status in OPEN_ORDER_STATUSES]))
            .where(OrderTable.created_at >= since)
            .order_by(OrderTable.id.desc())
            .limit(1)
        )
        if existing is not None:
            raise DuplicateOrderError(
                "An order for this package already exists. Please check your orders.",
                existing_order_id=existing,
            )


class CheckoutService:
    def __init__(
        self,
        database: Database,
        *,
        orchestrator: OrderTicketOrchestrator,
        guard: DuplicateOrderGuard | None = None,
    ) -> None:
        self._database = database
        self._orchestrator = orchestrator
        self._guard = guard or DuplicateOrderGuard()

    async def checkout(self, brand_user_id: int, items: Sequence[CartItem]) -> list[OrderWithTicket]:
        """Turn every cart item into an order with a ticket, all or nothing."""

        if not items:
            raise DomainValidationError("Cart is empty")
        package_ids = [item.package_id for item in items]
        if len(set(package_ids)) != len(package_ids):
            raise DomainValidationError("Each package may appear only once per checkout")

        inputs: list[OrderInput] = []
        async with self._database.reader() as session:
            brand = await session.scalar(
                select(BrandProfileTable).where(BrandProfileTable.user_id == brand_user_id)
            )
            if brand is None:
                raise ReferenceNotFoundError("Brand profile not found", user_id=brand_user_id)

            for item in items:
                package = await session.get(PackageTable, item.package_id)
                if package is None or not package.is_active:
                    raise ReferenceNotFoundError(
                        f"Package with ID {item.package_id} not found or inactive", package_id=item.package_id
                    )
                await self._guard.check(
                    session, package_id=int(package.id), brand_id=int(brand.id), creator_id=package.creator_id
                )
                inputs.append(
                    OrderInput(
                        package_id=int(package.id),
                        brand_id=int(brand.id),
                        creator_id=package.creator_id,
                        quantity=item.quantity,
                    )
                )

        results = await self._orchestrator.create_orders_with_tickets(inputs, actor=f"brand:{brand_user_id}")
        logger.info("Checkout for brand %s produced %d order(s)", brand.id, len(results))
        return results
