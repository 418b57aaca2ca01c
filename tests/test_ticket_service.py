from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func
from sqlmodel import select

from apps.api.services.errors import (
    AgentNotFoundError,
    DomainValidationError,
    DuplicateTicketError,
    InvalidTransitionError,
    OrderNotFoundError,
    TicketClosedError,
    TicketNotFoundError,
)
from apps.api.services.events import TicketEventType
from apps.api.services.models import MessageType, OrderInput, SenderRole, TicketStatus
from factories import add_user
from packages.db.models import OrderTable, TicketTable


async def _open_ticket(services, marketplace):
    result = await services.orchestrator.create_order_with_ticket(
        OrderInput(package_id=marketplace.package_id, brand_id=marketplace.brand_id)
    )
    return result.ticket


async def _bare_order(database, marketplace) -> int:
    async with database.transaction() as session:
        row = OrderTable(
            package_id=marketplace.package_id,
            brand_id=marketplace.brand_id,
            creator_id=marketplace.creator_id,
            quantity=1,
            total_amount=Decimal("250.00"),
            currency="USD",
            status="pending",
        )
        session.add(row)
        await session.flush()
        return int(row.id)


@pytest.mark.asyncio
async def test_full_lifecycle_is_audited(services, marketplace):
    ticket = await _open_ticket(services, marketplace)

    for target in (TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED, TicketStatus.CLOSED):
        ticket = await services.tickets.transition_status(ticket.id, target, actor="agent")

    assert ticket.status is TicketStatus.CLOSED
    audit = await services.tickets.list_audit_log(ticket.id)
    assert [entry.action for entry in audit] == [
        "created",
        "channel_created",
        "status_changed",
        "status_changed",
        "status_changed",
    ]
    assert (audit[-1].from_status, audit[-1].to_status) == (TicketStatus.RESOLVED, TicketStatus.CLOSED)


@pytest.mark.asyncio
async def test_invalid_transition_leaves_ticket_unchanged(services, marketplace):
    ticket = await _open_ticket(services, marketplace)
    await services.tickets.transition_status(ticket.id, TicketStatus.IN_PROGRESS, actor="agent")
    await services.tickets.transition_status(ticket.id, TicketStatus.RESOLVED, actor="agent")

    with pytest.raises(InvalidTransitionError):
        await services.tickets.transition_status(ticket.id, TicketStatus.OPEN, actor="agent")

    detail = await services.tickets.get_ticket(ticket.id)
    assert detail.ticket.status is TicketStatus.RESOLVED


@pytest.mark.asyncio
async def test_open_ticket_can_be_closed_directly_and_stays_closed(services, marketplace):
    ticket = await _open_ticket(services, marketplace)
    events = []

    async def record(event):
        events.append(event)

    services.publisher.subscribe("recorder", record)
    closed = await services.tickets.transition_status(ticket.id, TicketStatus.CLOSED, actor="admin")
    with pytest.raises(InvalidTransitionError):
        await services.tickets.transition_status(ticket.id, TicketStatus.IN_PROGRESS, actor="admin")
    await services.publisher.drain()

    assert closed.status is TicketStatus.CLOSED
    assert [event.type for event in events] == [TicketEventType.CLOSED]
    assert events[0].payload["to_status"] == "closed"


@pytest.mark.asyncio
async def test_transition_unknown_ticket(services):
    with pytest.raises(TicketNotFoundError):
        await services.tickets.transition_status(42, TicketStatus.CLOSED, actor="admin")


@pytest.mark.asyncio
async def test_reassign_moves_ticket_and_publishes(services, marketplace):
    ticket = await _open_ticket(services, marketplace)
    events = []

    async def record(event):
        events.append(event)

    services.publisher.subscribe("recorder", record)
    new_agent = marketplace.agent_ids[2]
    updated = await services.tickets.reassign(ticket.id, new_agent, actor="admin")
    await services.publisher.drain()

    assert updated.agent_id == new_agent
    assert updated.status is TicketStatus.OPEN
    assert events[0].type is TicketEventType.REASSIGNED
    assert events[0].payload["from_agent_id"] == ticket.agent_id
    assert events[0].payload["to_agent_id"] == new_agent


@pytest.mark.asyncio
async def test_reassign_rules(services, marketplace, database):
    ticket = await _open_ticket(services, marketplace)
    suspended = await add_user(database, email="away@desk.test", role="agent", status="suspended")

    with pytest.raises(DomainValidationError):
        await services.tickets.reassign(ticket.id, suspended, actor="admin")
    with pytest.raises(AgentNotFoundError):
        await services.tickets.reassign(ticket.id, marketplace.brand_user_id, actor="admin")
    with pytest.raises(AgentNotFoundError):
        await services.tickets.reassign(ticket.id, 999, actor="admin")

    await services.tickets.transition_status(ticket.id, TicketStatus.CLOSED, actor="admin")
    with pytest.raises(TicketClosedError):
        await services.tickets.reassign(ticket.id, marketplace.agent_ids[1], actor="admin")

    detail = await services.tickets.get_ticket(ticket.id)
    assert detail.ticket.agent_id == ticket.agent_id


@pytest.mark.asyncio
async def test_messages_do_not_change_status(services, marketplace):
    ticket = await _open_ticket(services, marketplace)
    await services.tickets.transition_status(ticket.id, TicketStatus.IN_PROGRESS, actor="agent")

    message = await services.tickets.append_message(
        ticket.id,
        sender_id=marketplace.brand_user_id,
        sender_role=SenderRole.BRAND,
        body="When will the draft be ready?",
    )

    assert message.message_type is MessageType.TEXT
    detail = await services.tickets.get_ticket(ticket.id)
    assert detail.ticket.status is TicketStatus.IN_PROGRESS
    assert detail.messages[-1].body == "When will the draft be ready?"


@pytest.mark.asyncio
async def test_second_ticket_for_order_is_rejected(services, marketplace):
    ticket = await _open_ticket(services, marketplace)

    with pytest.raises(DuplicateTicketError) as exc:
        await services.tickets.create_ticket_for_order(ticket.order_id)

    assert exc.value.details["ticket_id"] == ticket.id


@pytest.mark.asyncio
async def test_unique_index_conflict_reports_existing_ticket(services, marketplace, monkeypatch):
    ticket = await _open_ticket(services, marketplace)
    # Hide the committed ticket from the lookup so the insert hits the unique index.
    monkeypatch.setattr(services.tickets, "_existing_ticket_id", AsyncMock(return_value=None))

    with pytest.raises(DuplicateTicketError) as exc:
        await services.tickets.create_ticket_for_order(ticket.order_id)

    assert exc.value.details == {"order_id": ticket.order_id, "ticket_id": ticket.id}


@pytest.mark.asyncio
async def test_racing_ticket_creation_yields_one_ticket(services, marketplace, database):
    order_id = await _bare_order(database, marketplace)

    outcomes = await asyncio.gather(
        services.tickets.create_ticket_for_order(order_id),
        services.tickets.create_ticket_for_order(order_id),
        return_exceptions=True,
    )

    created = [outcome for outcome in outcomes if not isinstance(outcome, BaseException)]
    failed = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
    assert len(created) == 1
    assert len(failed) == 1 and isinstance(failed[0], DuplicateTicketError)
    assert failed[0].details["ticket_id"] == created[0].id
    async with database.reader() as session:
        count = await session.scalar(select(func.count(TicketTable.id)).where(TicketTable.order_id == order_id))
    assert count == 1


@pytest.mark.asyncio
async def test_create_ticket_for_existing_order(services, marketplace, database):
    order_id = await _bare_order(database, marketplace)
    chosen = marketplace.agent_ids[1]

    ticket = await services.tickets.create_ticket_for_order(order_id, channel_id="crm-42", agent_id=chosen)

    assert ticket.agent_id == chosen
    assert ticket.channel_id == "crm-42"
    by_order = await services.tickets.get_ticket_by_order(order_id)
    assert by_order.ticket.id == ticket.id
    assert by_order.messages[0].sender_role is SenderRole.SYSTEM

    with pytest.raises(OrderNotFoundError):
        await services.tickets.create_ticket_for_order(999)


@pytest.mark.asyncio
async def test_listing_filters_and_counts(services, marketplace):
    first = await _open_ticket(services, marketplace)
    second = await _open_ticket(services, marketplace)
    await services.tickets.transition_status(second.id, TicketStatus.IN_PROGRESS, actor="agent")

    tickets, total = await services.tickets.list_tickets(status=TicketStatus.OPEN)
    assert total == 1 and [item.id for item in tickets] == [first.id]

    everything, total = await services.tickets.list_tickets(limit=1)
    assert total == 2 and len(everything) == 1

    mine = await services.tickets.list_agent_tickets(second.agent_id)
    assert [item.id for item in mine] == [second.id]
    with pytest.raises(TicketNotFoundError):
        await services.tickets.get_ticket_by_order(999)
