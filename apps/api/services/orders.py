"""Orders and the transaction that binds every new order to its support ticket."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Mapping, Sequence

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from apps.api.core.database import Database
from apps.api.core.logging import get_tracer
from apps.api.metrics import metrics_registry, record_counter
from apps.api.services.assignment import RoundRobinSelector
from apps.api.services.chat import placeholder_channel_id
from apps.api.services.errors import (
    DomainValidationError,
    DuplicateTicketError,
    InvalidTransitionError,
    OrderNotFoundError,
    ReferenceNotFoundError,
    SupportDeskError,
    TicketNotFoundError,
)
from apps.api.services.events import TicketEvent, TicketEventPublisher, TicketEventType
from apps.api.services.models import Order, OrderInput, OrderStatus, OrderWithTicket, ensure_datetime
from apps.api.services.tickets import (
    TicketService,
    order_details_message,
    row_to_ticket,
    ticket_event,
)
from packages.db.models import BrandProfileTable, CreatorProfileTable, OrderTable, PackageTable, TicketTable

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


class OrderStateMachine:
    """Fulfilment transitions; ``cancelled`` and ``refunded`` are terminal."""

    _DEFAULT_TRANSITIONS: Mapping[OrderStatus, Sequence[OrderStatus]] = {
        OrderStatus.PENDING: (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
        OrderStatus.CONFIRMED: (OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED, OrderStatus.REFUNDED),
        OrderStatus.IN_PROGRESS: (OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED),
        OrderStatus.COMPLETED: (OrderStatus.REFUNDED,),
        OrderStatus.CANCELLED: (),
        OrderStatus.REFUNDED: (),
    }

    def __init__(self, transitions: Mapping[OrderStatus, Sequence[OrderStatus]] | None = None) -> None:
        self._transitions = transitions or self._DEFAULT_TRANSITIONS

    def can_transition(self, current: OrderStatus, target: OrderStatus) -> bool:
        return target in self._transitions.get(current, ())

    def assert_transition(self, current: OrderStatus, target: OrderStatus) -> None:
        if not self.can_transition(current, target):
            raise InvalidTransitionError(
                f"Invalid order status transition: {current.value} -> {target.value}",
                from_status=current.value,
                to_status=target.value,
            )


def row_to_order(row: OrderTable) -> Order:
    return Order(
        id=int(row.id),
        package_id=row.package_id,
        brand_id=row.brand_id,
        creator_id=row.creator_id,
        quantity=row.quantity,
        total_amount=Decimal(row.total_amount),
        currency=row.currency,
        status=OrderStatus(row.status),
        created_at=ensure_datetime(row.created_at),
        updated_at=ensure_datetime(row.updated_at),
        rejection_message=row.rejection_message,
    )


@dataclass(slots=True)
class _ResolvedOrder:
    package_id: int
    brand_id: int
    creator_id: int
    quantity: int
    total_amount: Decimal
    currency: str


def validate_order_input(order_input: OrderInput) -> None:
    """Shape checks that need no database access."""

    if order_input.quantity < 1:
        raise DomainValidationError("Quantity must be at least 1", quantity=order_input.quantity)
    if order_input.total_amount is not None and order_input.total_amount < 0:
        raise DomainValidationError("Total amount must not be negative", total_amount=str(order_input.total_amount))
    if order_input.currency is not None and len(order_input.currency.strip()) != 3:
        raise DomainValidationError("Currency must be a three letter code", currency=order_input.currency)


async def resolve_order_input(session: AsyncSession, order_input: OrderInput) -> _ResolvedOrder:
    validate_order_input(order_input)

    package = await session.get(PackageTable, order_input.package_id)
    if package is None:
        raise ReferenceNotFoundError(f"Package {order_input.package_id} not found", package_id=order_input.package_id)
    if not package.is_active:
        raise DomainValidationError(f"Package {package.id} is not active", package_id=package.id)
    if await session.get(BrandProfileTable, order_input.brand_id) is None:
        raise ReferenceNotFoundError(f"Brand {order_input.brand_id} not found", brand_id=order_input.brand_id)

    creator_id = order_input.creator_id if order_input.creator_id is not None else package.creator_id
    if creator_id != package.creator_id:
        raise DomainValidationError(
            f"Package {package.id} does not belong to creator {creator_id}",
            package_id=package.id,
            creator_id=creator_id,
        )
    if await session.get(CreatorProfileTable, creator_id) is None:
        raise ReferenceNotFoundError(f"Creator {creator_id} not found", creator_id=creator_id)

    total = order_input.total_amount
    if total is None:
        total = Decimal(package.price) * order_input.quantity
    currency = (order_input.currency or package.currency).strip().upper()
    return _ResolvedOrder(
        package_id=int(package.id),
        brand_id=order_input.brand_id,
        creator_id=creator_id,
        quantity=order_input.quantity,
        total_amount=Decimal(total),
        currency=currency,
    )


class OrderTicketOrchestrator:
    """Create orders together with their tickets in a single transaction.

    Nothing is visible to other callers until the ticket, its initial system
    message and the order have all been written. Any failure rolls the whole
    unit back, including the cursor increment. Tickets are stored with a
    placeholder channel id; the chat channel is created only after commit, so
    no external call runs while the cursor row is locked.
    """

    def __init__(
        self,
        database: Database,
        *,
        tickets: TicketService,
        selector: RoundRobinSelector,
        publisher: TicketEventPublisher,
    ) -> None:
        self._database = database
        self._tickets = tickets
        self._selector = selector
        self._publisher = publisher

    async def create_order_with_ticket(self, order_input: OrderInput, *, actor: str = "system") -> OrderWithTicket:
        results = await self.create_orders_with_tickets([order_input], actor=actor)
        return results[0]

    async def create_orders_with_tickets(
        self, inputs: Sequence[OrderInput], *, actor: str = "system"
    ) -> list[OrderWithTicket]:
        if not inputs:
            raise DomainValidationError("At least one order is required")
        for order_input in inputs:
            validate_order_input(order_input)

        committed: list[OrderWithTicket] = []
        with tracer.start_as_current_span("orders.create_with_ticket") as span:
            span.set_attribute("orders.count", len(inputs))
            try:
                with metrics_registry.time_distribution("support_order_checkout_seconds"):
                    async with self._database.transaction() as session:
                        resolved = [await resolve_order_input(session, order_input) for order_input in inputs]
                        for item in resolved:
                            committed.append(await self._create_one(session, item, actor))
            except SupportDeskError as exc:
                if isinstance(exc, DuplicateTicketError):
                    await self._tickets.attach_existing_ticket_id(exc)
                record_counter("support_order_failures_total", labels={"reason": type(exc).__name__})
                span.set_attribute("orders.failure", type(exc).__name__)
                logger.warning("Checkout of %d order(s) rolled back: %s", len(inputs), exc.message)
                raise

        results: list[OrderWithTicket] = []
        for result in committed:
            ticket = await self._tickets.connect_new_ticket(result.ticket)
            results.append(OrderWithTicket(order=result.order, ticket=ticket))
            record_counter("support_orders_created_total")
            logger.info(
                "Order %s committed with ticket %s (agent %s)",
                result.order.id,
                ticket.id,
                ticket.agent_id,
            )
            self._publisher.publish(ticket_event(TicketEventType.CREATED, ticket, actor))
        return results

    async def _create_one(self, session: AsyncSession, item: _ResolvedOrder, actor: str) -> OrderWithTicket:
        order_row = OrderTable(
            package_id=item.package_id,
            brand_id=item.brand_id,
            creator_id=item.creator_id,
            quantity=item.quantity,
            total_amount=item.total_amount,
            currency=item.currency,
            status=OrderStatus.PENDING.value,
        )
        session.add(order_row)
        await session.flush()

        agent = await self._selector.assign(session)
        ticket = await self._tickets.create_ticket(
            session,
            order_id=int(order_row.id),
            agent_id=agent.id,
            channel_id=placeholder_channel_id(int(order_row.id)),
            channel_pending=True,
            actor=actor,
        )
        await self._tickets.conversation.append_system(
            session, ticket_id=ticket.id, body=await order_details_message(session, order_row)
        )
        return OrderWithTicket(order=row_to_order(order_row), ticket=ticket)


class OrderService:
    """Order reads and fulfilment status changes."""

    def __init__(
        self,
        database: Database,
        *,
        tickets: TicketService,
        publisher: TicketEventPublisher,
        state_machine: OrderStateMachine | None = None,
    ) -> None:
        self._database = database
        self._tickets = tickets
        self._publisher = publisher
        self._state_machine = state_machine or OrderStateMachine()

    async def get_order(self, order_id: int) -> OrderWithTicket:
        async with self._database.reader() as session:
            row = await self._require(session, order_id)
            ticket_row = await session.scalar(select(TicketTable).where(TicketTable.order_id == order_id))
            if ticket_row is None:
                raise TicketNotFoundError(f"Order {order_id} has no ticket", order_id=order_id)
            return OrderWithTicket(order=row_to_order(row), ticket=row_to_ticket(ticket_row))

    async def list_orders(
        self,
        *,
        status: OrderStatus | None = None,
        brand_id: int | None = None,
        creator_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Order], int]:
        if limit < 1 or offset < 0:
            raise DomainValidationError("limit must be positive and offset non-negative")
        filters = []
        if status is not None:
            filters.append(OrderTable.status == status.value)
        if brand_id is not None:
            filters.append(OrderTable.brand_id == brand_id)
        if creator_id is not None:
            filters.append(OrderTable.creator_id == creator_id)

        async with self._database.reader() as session:
            total = await session.scalar(select(func.count(OrderTable.id)).where(*filters))
            result = await session.execute(
                select(OrderTable)
                .where(*filters)
                .order_by(OrderTable.created_at.desc(), OrderTable.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return [row_to_order(row) for row in result.scalars().all()], int(total or 0)

    async def list_brand_orders(self, brand_id: int, *, status: OrderStatus | None = None) -> list[Order]:
        async with self._database.reader() as session:
            if await session.get(BrandProfileTable, brand_id) is None:
                raise ReferenceNotFoundError(f"Brand {brand_id} not found", brand_id=brand_id)
        orders, _ = await self.list_orders(status=status, brand_id=brand_id, limit=500)
        return orders

    async def list_creator_orders(self, creator_id: int, *, status: OrderStatus | None = None) -> list[Order]:
        async with self._database.reader() as session:
            if await session.get(CreatorProfileTable, creator_id) is None:
                raise ReferenceNotFoundError(f"Creator {creator_id} not found", creator_id=creator_id)
        orders, _ = await self.list_orders(status=status, creator_id=creator_id, limit=500)
        return orders

    async def update_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        *,
        actor: str,
        rejection_message: str | None = None,
    ) -> Order:
        """Move the order and note the change in its ticket conversation."""

        events: list[TicketEvent] = []
        async with self._database.transaction() as session:
            row = await self._require(session, order_id)
            current = OrderStatus(row.status)
            self._state_machine.assert_transition(current, new_status)
            row.status = new_status.value
            row.updated_at = datetime.now(timezone.utc)
            if rejection_message is not None:
                row.rejection_message = rejection_message

            ticket_row = await session.scalar(select(TicketTable).where(TicketTable.order_id == order_id))
            if ticket_row is not None:
                message = await self._tickets.conversation.append_system(
                    session,
                    ticket_id=int(ticket_row.id),
                    body=f"Order #{order_id} status has been updated to: {new_status.value}",
                )
                events.append(
                    ticket_event(
                        TicketEventType.MESSAGE_ADDED,
                        row_to_ticket(ticket_row),
                        actor,
                        message_id=message.id,
                        message_type=message.message_type.value,
                    )
                )
            else:
                logger.error("Order %s has no ticket while changing status", order_id)
            await session.flush()
            order = row_to_order(row)

        logger.info("Order %s moved %s -> %s by %s", order_id, current.value, new_status.value, actor)
        self._publisher.publish_all(events)
        return order

    async def accept(self, order_id: int, *, creator_id: int, actor: str) -> Order:
        await self._require_creator(order_id, creator_id)
        return await self.update_status(order_id, OrderStatus.CONFIRMED, actor=actor)

    async def reject(self, order_id: int, *, creator_id: int, message: str, actor: str) -> Order:
        if not message or not message.strip():
            raise DomainValidationError("A rejection message is required")
        await self._require_creator(order_id, creator_id)
        return await self.update_status(
            order_id, OrderStatus.CANCELLED, actor=actor, rejection_message=message.strip()
        )

    async def _require_creator(self, order_id: int, creator_id: int) -> None:
        async with self._database.reader() as session:
            row = await self._require(session, order_id)
            if row.creator_id != creator_id:
                raise DomainValidationError(
                    f"Order {order_id} does not belong to creator {creator_id}",
                    order_id=order_id,
                    creator_id=creator_id,
                )
            if OrderStatus(row.status) is not OrderStatus.PENDING:
                raise InvalidTransitionError(
                    f"Order {order_id} is already {row.status}", order_id=order_id, status=row.status
                )

    @staticmethod
    async def _require(session: AsyncSession, order_id: int) -> OrderTable:
        row = await session.get(OrderTable, order_id)
        if row is None:
            raise OrderNotFoundError(f"Order {order_id} not found", order_id=order_id)
        return row
