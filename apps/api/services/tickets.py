from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from apps.api.core.database import Database
from apps.api.core.logging import get_tracer
from apps.api.metrics import record_counter
from apps.api.services.agents import get_agent_row, is_eligible_agent
from apps.api.services.assignment import RoundRobinSelector
from apps.api.services.chat import ChannelIdFactory, placeholder_channel_id
from apps.api.services.conversation import ConversationLog
from apps.api.services.errors import (
    DomainValidationError,
    DuplicateTicketError,
    InvalidTransitionError,
    OrderNotFoundError,
    TicketClosedError,
    TicketNotFoundError,
)
from apps.api.services.events import TicketEvent, TicketEventPublisher, TicketEventType
from apps.api.services.models import (
    Message,
    MessageType,
    SenderRole,
    Ticket,
    TicketAuditEntry,
    TicketDetail,
    TicketStatus,
    ensure_datetime,
)
from packages.db.models import (
    BrandProfileTable,
    CreatorProfileTable,
    OrderTable,
    PackageTable,
    TicketAuditLogTable,
    TicketTable,
    UserTable,
)

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)


class TicketStateMachine:
    """Validate ticket status transitions.

    Moves are forward only. ``closed`` is terminal and reachable from every
    other state. Staying in the same state is not a move.
    """

    _DEFAULT_TRANSITIONS: Mapping[TicketStatus, Sequence[TicketStatus]] = {
        TicketStatus.OPEN: (TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED, TicketStatus.CLOSED),
        TicketStatus.IN_PROGRESS: (TicketStatus.RESOLVED, TicketStatus.CLOSED),
        TicketStatus.RESOLVED: (TicketStatus.CLOSED,),
        TicketStatus.CLOSED: (),
    }

    def __init__(self, transitions: Mapping[TicketStatus, Sequence[TicketStatus]] | None = None) -> None:
        self._transitions = transitions or self._DEFAULT_TRANSITIONS

    def can_transition(self, current: TicketStatus, target: TicketStatus) -> bool:
        return target in self._transitions.get(current, ())

    def assert_transition(self, current: TicketStatus, target: TicketStatus) -> None:
        if not self.can_transition(current, target):
            raise InvalidTransitionError(
                f"Invalid status transition: {current.value} -> {target.value}",
                from_status=current.value,
                to_status=target.value,
            )


def row_to_ticket(row: TicketTable) -> Ticket:
    return Ticket(
        id=int(row.id),
        order_id=row.order_id,
        agent_id=row.agent_id,
        channel_id=row.channel_id,
        channel_pending=bool(row.channel_pending),
        status=TicketStatus(row.status),
        created_at=ensure_datetime(row.created_at),
        updated_at=ensure_datetime(row.updated_at),
    )


def row_to_audit(row: TicketAuditLogTable) -> TicketAuditEntry:
    return TicketAuditEntry(
        id=int(row.id),
        ticket_id=row.ticket_id,
        action=row.action,
        actor=row.actor,
        from_status=TicketStatus(row.from_status) if row.from_status else None,
        to_status=TicketStatus(row.to_status) if row.to_status else None,
        created_at=ensure_datetime(row.created_at),
        metadata=dict(row.metadata_ or {}),
    )


def ticket_event(
    event_type: TicketEventType, ticket: Ticket, actor: str, **payload: Any
) -> TicketEvent:
    body = {
        "agent_id": ticket.agent_id,
        "status": ticket.status.value,
        "channel_id": ticket.channel_id,
        "channel_pending": ticket.channel_pending,
    }
    body.update(payload)
    return TicketEvent(type=event_type, ticket_id=ticket.id, order_id=ticket.order_id, actor=actor, payload=body)


async def order_details_message(session: AsyncSession, order: OrderTable) -> str:
    """Render the system message that opens every order ticket."""

    package = await session.get(PackageTable, order.package_id)
    brand = await session.get(BrandProfileTable, order.brand_id)
    creator = await session.get(CreatorProfileTable, order.creator_id)
    brand_user = await session.get(UserTable, brand.user_id) if brand else None
    creator_user = await session.get(UserTable, creator.user_id) if creator else None

    lines = [
        "New Order Support Ticket",
        "",
        "Order Details:",
        f"- Order ID: #{order.id}",
        f"- Package: {package.title if package else 'Unknown package'}",
        f"- Amount: {order.currency} {order.total_amount}",
        f"- Quantity: {order.quantity}",
        f"- Status: {order.status}",
        "",
        "Brand Information:",
        f"- Company: {brand.company_name if brand else 'Unknown'}",
    ]
    if brand_user is not None:
        lines.append(f"- Contact: {brand_user.display_name} ({brand_user.email})")
    lines += ["", "Creator Information:"]
    if creator_user is not None:
        lines += [f"- Name: {creator_user.display_name}", f"- Email: {creator_user.email}"]
    lines.append(f"- Bio: {(creator.bio if creator else None) or 'No bio available'}")
    if package is not None:
        lines += [
            "",
            "Package Details:",
            f"- Description: {package.description or 'No description available'}",
            f"- Price: {package.currency} {package.price}",
        ]
    lines += [
        "",
        "This ticket has been automatically created to provide support for this order.",
    ]
    return "\n".join(lines)


async def order_member_ids(session: AsyncSession, order: OrderTable, agent_id: int) -> list[int]:
    """User ids that belong in the order's chat channel."""

    members: list[int] = []
    brand = await session.get(BrandProfileTable, order.brand_id)
    creator = await session.get(CreatorProfileTable, order.creator_id)
    for profile in (brand, creator):
        if profile is not None:
            members.append(profile.user_id)
    members.append(agent_id)
    return members


class TicketService:
    """Ticket creation, state machine, reassignment, conversation and audit logging."""

    def __init__(
        self,
        database: Database,
        *,
        selector: RoundRobinSelector,
        channel_factory: ChannelIdFactory,
        publisher: TicketEventPublisher | None = None,
        conversation: ConversationLog | None = None,
        state_machine: TicketStateMachine | None = None,
    ) -> None:
        self._database = database
        self._selector = selector
        self._channel_factory = channel_factory
        self._publisher = publisher or TicketEventPublisher()
        self._conversation = conversation or ConversationLog()
        self._state_machine = state_machine or TicketStateMachine()

    @property
    def conversation(self) -> ConversationLog:
        return self._conversation

    @property
    def state_machine(self) -> TicketStateMachine:
        return self._state_machine

    async def create_ticket(
        self,
        session: AsyncSession,
        *,
        order_id: int,
        agent_id: int,
        channel_id: str,
        channel_pending: bool = False,
        actor: str = "system",
    ) -> Ticket:
        """Insert the ticket for ``order_id`` inside the caller's transaction.

        The unique index on ``tickets.order_id`` decides duplicates; the lookup
        below only gives a friendlier error when the ticket is already visible.
        """

        existing = await self._existing_ticket_id(session, order_id)
        if existing is not None:
            raise DuplicateTicketError(
                f"Order {order_id} already has ticket {existing}", order_id=order_id, ticket_id=existing
            )

        row = TicketTable(
            order_id=order_id,
            agent_id=agent_id,
            channel_id=channel_id,
            channel_pending=channel_pending,
            status=TicketStatus.OPEN.value,
        )
        session.add(row)
        try:
            await session.flush()
        except IntegrityError as exc:
            raise DuplicateTicketError(f"Order {order_id} already has a ticket", order_id=order_id) from exc

        self._add_audit(
            session,
            ticket_id=int(row.id),
            action="created",
            actor=actor,
            from_status=None,
            to_status=TicketStatus.OPEN,
            metadata={"agent_id": agent_id, "channel_pending": channel_pending},
        )
        record_counter("support_tickets_created_total")
        return row_to_ticket(row)

    async def create_ticket_for_order(
        self,
        order_id: int,
        *,
        channel_id: str | None = None,
        agent_id: int | None = None,
        actor: str = "system",
    ) -> Ticket:
        """Open the ticket for an existing order that does not have one yet.

        Without an explicit ``channel_id`` the ticket is committed with a
        placeholder and the chat channel is created afterwards.
        """

        with tracer.start_as_current_span("tickets.create_for_order") as span:
            span.set_attribute("order.id", order_id)
            try:
                async with self._database.transaction() as session:
                    order = await session.get(OrderTable, order_id)
                    if order is None:
                        raise OrderNotFoundError(f"Order {order_id} not found", order_id=order_id)

                    if agent_id is None:
                        agent = await self._selector.assign(session)
                        agent_id = agent.id
                    else:
                        agent_row = await get_agent_row(session, agent_id)
                        if not is_eligible_agent(agent_row):
                            raise DomainValidationError(f"Agent {agent_id} cannot take tickets", agent_id=agent_id)

                    ticket = await self.create_ticket(
                        session,
                        order_id=order_id,
                        agent_id=agent_id,
                        channel_id=channel_id or placeholder_channel_id(order_id),
                        channel_pending=channel_id is None,
                        actor=actor,
                    )
                    await self._conversation.append_system(
                        session, ticket_id=ticket.id, body=await order_details_message(session, order)
                    )
            except DuplicateTicketError as exc:
                await self.attach_existing_ticket_id(exc)
                raise
            span.set_attribute("ticket.id", ticket.id)

        if ticket.channel_pending:
            ticket = await self.connect_new_ticket(ticket)
        logger.info("Created ticket %s for order %s assigned to agent %s", ticket.id, order_id, ticket.agent_id)
        self._publisher.publish(ticket_event(TicketEventType.CREATED, ticket, actor))
        return ticket

    async def get_ticket(self, ticket_id: int) -> TicketDetail:
        async with self._database.reader() as session:
            row = await self._require(session, ticket_id)
            messages = await self._conversation.list(session, ticket_id)
            return TicketDetail(ticket=row_to_ticket(row), messages=messages)

    async def get_ticket_by_order(self, order_id: int) -> TicketDetail:
        async with self._database.reader() as session:
            row = await session.scalar(select(TicketTable).where(TicketTable.order_id == order_id))
            if row is None:
                raise TicketNotFoundError(f"No ticket for order {order_id}", order_id=order_id)
            messages = await self._conversation.list(session, int(row.id))
            return TicketDetail(ticket=row_to_ticket(row), messages=messages)

    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Ticket], int]:
        if limit < 1 or offset < 0:
            raise DomainValidationError("limit must be positive and offset non-negative")
        async with self._database.reader() as session:
            statement = select(TicketTable)
            count_statement = select(func.count(TicketTable.id))
            if status is not None:
                statement = statement.where(TicketTable.status == status.value)
                count_statement = count_statement.where(TicketTable.status == status.value)
            total = await session.scalar(count_statement)
            result = await session.execute(
                statement.order_by(TicketTable.created_at.desc(), TicketTable.id.desc()).limit(limit).offset(offset)
            )
            return [row_to_ticket(row) for row in result.scalars().all()], int(total or 0)

    async def list_agent_tickets(self, agent_id: int, *, status: TicketStatus | None = None) -> list[Ticket]:
        async with self._database.reader() as session:
            await get_agent_row(session, agent_id)
            statement = select(TicketTable).where(TicketTable.agent_id == agent_id)
            if status is not None:
                statement = statement.where(TicketTable.status == status.value)
            result = await session.execute(statement.order_by(TicketTable.created_at.desc(), TicketTable.id.desc()))
            return [row_to_ticket(row) for row in result.scalars().all()]

    async def list_audit_log(self, ticket_id: int) -> list[TicketAuditEntry]:
        async with self._database.reader() as session:
            await self._require(session, ticket_id)
            result = await session.execute(
                select(TicketAuditLogTable)
                .where(TicketAuditLogTable.ticket_id == ticket_id)
                .order_by(TicketAuditLogTable.created_at.asc(), TicketAuditLogTable.id.asc())
            )
            return [row_to_audit(row) for row in result.scalars().all()]

    async def transition_status(
        self,
        ticket_id: int,
        new_status: TicketStatus,
        *,
        actor: str,
        note: str | None = None,
    ) -> Ticket:
        with tracer.start_as_current_span("tickets.transition_status") as span:
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("ticket.to_status", new_status.value)
            async with self._database.transaction() as session:
                row = await self._require(session, ticket_id)
                current = TicketStatus(row.status)
                self._state_machine.assert_transition(current, new_status)

                row.status = new_status.value
                row.updated_at = datetime.now(timezone.utc)
                self._add_audit(
                    session,
                    ticket_id=ticket_id,
                    action="status_changed",
                    actor=actor,
                    from_status=current,
                    to_status=new_status,
                    metadata={"note": note} if note else {},
                )
                await session.flush()
                ticket = row_to_ticket(row)

        record_counter("support_ticket_transitions_total", labels={"status": new_status.value})
        logger.info("Ticket %s moved %s -> %s by %s", ticket_id, current.value, new_status.value, actor)
        event_type = TicketEventType.CLOSED if new_status is TicketStatus.CLOSED else TicketEventType.STATUS_CHANGED
        self._publisher.publish(
            ticket_event(event_type, ticket, actor, from_status=current.value, to_status=new_status.value)
        )
        return ticket

    async def reassign(self, ticket_id: int, agent_id: int, *, actor: str) -> Ticket:
        with tracer.start_as_current_span("tickets.reassign") as span:
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("agent.id", agent_id)
            async with self._database.transaction() as session:
                row = await self._require(session, ticket_id)
                if TicketStatus(row.status) is TicketStatus.CLOSED:
                    raise TicketClosedError(f"Ticket {ticket_id} is closed", ticket_id=ticket_id)

                agent_row = await get_agent_row(session, agent_id)
                if not is_eligible_agent(agent_row):
                    raise DomainValidationError(
                        f"Agent {agent_id} is not eligible for assignment", agent_id=agent_id
                    )

                previous = row.agent_id
                row.agent_id = agent_id
                row.updated_at = datetime.now(timezone.utc)
                self._add_audit(
                    session,
                    ticket_id=ticket_id,
                    action="reassigned",
                    actor=actor,
                    from_status=TicketStatus(row.status),
                    to_status=TicketStatus(row.status),
                    metadata={"from_agent_id": previous, "to_agent_id": agent_id},
                )
                await session.flush()
                ticket = row_to_ticket(row)

        record_counter("support_ticket_reassignments_total")
        logger.info("Ticket %s reassigned from agent %s to %s by %s", ticket_id, previous, agent_id, actor)
        self._publisher.publish(
            ticket_event(TicketEventType.REASSIGNED, ticket, actor, from_agent_id=previous, to_agent_id=agent_id)
        )
        return ticket

    async def append_message(
        self,
        ticket_id: int,
        *,
        sender_id: int | None,
        sender_role: SenderRole,
        body: str,
        message_type: MessageType = MessageType.TEXT,
        attachment_url: str | None = None,
        attachment_name: str | None = None,
    ) -> Message:
        """Add to the conversation; the ticket status is left as it is."""

        async with self._database.transaction() as session:
            row = await self._require(session, ticket_id)
            message = await self._conversation.append(
                session,
                ticket_id=ticket_id,
                sender_id=sender_id,
                sender_role=sender_role,
                body=body,
                message_type=message_type,
                attachment_url=attachment_url,
                attachment_name=attachment_name,
            )
            row.updated_at = datetime.now(timezone.utc)
            ticket = row_to_ticket(row)

        self._publisher.publish(
            ticket_event(
                TicketEventType.MESSAGE_ADDED,
                ticket,
                f"{sender_role.value}:{sender_id}" if sender_id is not None else sender_role.value,
                message_id=message.id,
                message_type=message.message_type.value,
            )
        )
        return message

    async def list_messages(self, ticket_id: int) -> Sequence[Message]:
        async with self._database.reader() as session:
            return await self._conversation.list(session, ticket_id)

    async def connect_channel(self, ticket_id: int, *, action: str = "channel_backfilled") -> Ticket:
        """Replace a placeholder channel id with a real chat channel.

        The chat call runs outside any transaction. When it fails again the
        ticket is returned unchanged, still pending.
        """

        async with self._database.reader() as session:
            row = await self._require(session, ticket_id)
            ticket = row_to_ticket(row)
            if not ticket.channel_pending:
                return ticket
            order = await session.get(OrderTable, ticket.order_id)
            members = await order_member_ids(session, order, ticket.agent_id)

        channel_id, still_pending = await self._channel_factory.create(order_id=ticket.order_id, member_ids=members)
        if still_pending:
            return ticket

        async with self._database.transaction() as session:
            row = await self._require(session, ticket_id)
            if not row.channel_pending:
                return row_to_ticket(row)
            row.channel_id = channel_id
            row.channel_pending = False
            row.updated_at = datetime.now(timezone.utc)
            self._add_audit(
                session,
                ticket_id=ticket_id,
                action=action,
                actor="system",
                from_status=TicketStatus(row.status),
                to_status=TicketStatus(row.status),
                metadata={"channel_id": channel_id},
            )
            await session.flush()
            ticket = row_to_ticket(row)
        logger.info("Ticket %s connected to chat channel %s", ticket_id, channel_id)
        return ticket

    async def connect_new_ticket(self, ticket: Ticket) -> Ticket:
        """Create the chat channel for a ticket that was just committed with a placeholder."""

        try:
            return await self.connect_channel(ticket.id, action="channel_created")
        except SQLAlchemyError:
            logger.exception("Could not record the chat channel for ticket %s; left for backfill", ticket.id)
            return ticket

    async def backfill_channels(self, *, limit: int = 100) -> list[Ticket]:
        """Retry chat channel creation for tickets stored with a placeholder id.

        Tickets whose retry fails again keep their placeholder and stay pending.
        """

        async with self._database.reader() as session:
            result = await session.execute(
                select(TicketTable.id)
                .where(TicketTable.channel_pending.is_(True))
                .order_by(TicketTable.id.asc())
                .limit(limit)
            )
            pending = [int(ticket_id) for ticket_id in result.scalars().all()]

        repaired: list[Ticket] = []
        for ticket_id in pending:
            ticket = await self.connect_channel(ticket_id)
            if ticket.channel_pending:
                logger.warning("Channel backfill for ticket %s failed; leaving placeholder", ticket_id)
                continue
            repaired.append(ticket)
            record_counter("support_channel_backfills_total")

        if pending:
            logger.info("Backfilled %d of %d pending chat channels", len(repaired), len(pending))
        return repaired

    async def attach_existing_ticket_id(self, exc: DuplicateTicketError) -> None:
        """Add the winning ticket's id to a duplicate error raised by the unique index.

        Must be called after the failed transaction has rolled back.
        """

        order_id = exc.details.get("order_id")
        if order_id is None or exc.details.get("ticket_id") is not None:
            return
        async with self._database.reader() as session:
            existing = await session.scalar(select(TicketTable.id).where(TicketTable.order_id == order_id))
        if existing is not None:
            exc.details["ticket_id"] = int(existing)

    @staticmethod
    async def _existing_ticket_id(session: AsyncSession, order_id: int) -> int | None:
        return await session.scalar(select(TicketTable.id).where(TicketTable.order_id == order_id))

    async def _require(self, session: AsyncSession, ticket_id: int) -> TicketTable:
        row = await session.get(TicketTable, ticket_id)
        if row is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found", ticket_id=ticket_id)
        return row

    @staticmethod
    def _add_audit(
        session: AsyncSession,
        *,
        ticket_id: int,
        action: str,
        actor: str,
        from_status: TicketStatus | None,
        to_status: TicketStatus | None,
        metadata: Mapping[str, Any],
    ) -> None:
        session.add(
            TicketAuditLogTable(
                ticket_id=ticket_id,
                action=action,
                actor=actor,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value if to_status else None,
                metadata_=dict(metadata),
            )
        )
