"""Append-only conversation log attached to each ticket."""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from apps.api.metrics import record_counter
from apps.api.services.errors import DomainValidationError, TicketNotFoundError
from apps.api.services.models import Message, MessageType, SenderRole, ensure_datetime
from packages.db.models import TicketMessageTable, TicketTable

logger = logging.getLogger(__name__)


def row_to_message(row: TicketMessageTable) -> Message:
    return Message(
        id=int(row.id),
        ticket_id=row.ticket_id,
        sender_id=row.sender_id,
        sender_role=SenderRole(row.sender_role),
        body=row.body,
        message_type=MessageType(row.message_type),
        created_at=ensure_datetime(row.created_at),
        attachment_url=row.attachment_url,
        attachment_name=row.attachment_name,
    )


class ConversationLog:
    """Messages are only ever inserted; there is no edit or delete path."""

    async def append(
        self,
        session: AsyncSession,
        *,
        ticket_id: int,
        sender_id: int | None,
        sender_role: SenderRole,
        body: str,
        message_type: MessageType = MessageType.TEXT,
        attachment_url: str | None = None,
        attachment_name: str | None = None,
    ) -> Message:
        if message_type is MessageType.FILE:
            if not attachment_url:
                raise DomainValidationError("File messages require an attachment url")
            body = body.strip() or (attachment_name or attachment_url)
        elif not body or not body.strip():
            raise DomainValidationError("Message body must not be empty")
        if sender_role is SenderRole.SYSTEM:
            sender_id = None
            message_type = MessageType.SYSTEM
        elif message_type is MessageType.SYSTEM:
            raise DomainValidationError("Only the system may post system messages")
        elif sender_id is None:
            raise DomainValidationError("Only system messages may omit the sender")

        if await session.get(TicketTable, ticket_id) is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found", ticket_id=ticket_id)

        row = TicketMessageTable(
            ticket_id=ticket_id,
            sender_id=sender_id,
            sender_role=sender_role.value,
            body=body,
            message_type=message_type.value,
            attachment_url=attachment_url,
            attachment_name=attachment_name,
        )
        session.add(row)
        await session.flush()
        record_counter("support_messages_total", labels={"message_type": message_type.value})
        logger.debug("Appended %s message %s to ticket %s", message_type.value, row.id, ticket_id)
        return row_to_message(row)

    async def append_system(self, session: AsyncSession, *, ticket_id: int, body: str) -> Message:
        return await self.append(
            session,
            ticket_id=ticket_id,
            sender_id=None,
            sender_role=SenderRole.SYSTEM,
            body=body,
            message_type=MessageType.SYSTEM,
        )

    async def list(self, session: AsyncSession, ticket_id: int) -> Sequence[Message]:
        """Return the conversation oldest first; ties on timestamp fall back to insertion order."""

        if await session.get(TicketTable, ticket_id) is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found", ticket_id=ticket_id)
        result = await session.execute(
            select(TicketMessageTable)
            .where(TicketMessageTable.ticket_id == ticket_id)
            .order_by(TicketMessageTable.created_at.asc(), TicketMessageTable.id.asc())
        )
        return [row_to_message(row) for row in result.scalars().all()]
