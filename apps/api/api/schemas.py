"""Request and response bodies shared by the routers."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import HTTPException
from pydantic import BaseModel, Field

from apps.api.services.errors import SupportDeskError
from apps.api.services.models import (
    AccountStatus,
    Agent,
    Message,
    MessageType,
    Order,
    OrderStatus,
    OrderWithTicket,
    SenderRole,
    Ticket,
    TicketAuditEntry,
    TicketDetail,
    TicketStatus,
    UserRole,
)


def to_http_exception(exc: SupportDeskError) -> HTTPException:
    detail: dict[str, Any] = {"message": exc.message}
    detail.update(exc.details)
    return HTTPException(status_code=exc.http_status, detail=detail)


class TicketModel(BaseModel):
    id: int
    order_id: int
    agent_id: int
    channel_id: str
    channel_pending: bool
    status: TicketStatus
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketModel":
        return cls(
            id=ticket.id,
            order_id=ticket.order_id,
            agent_id=ticket.agent_id,
            channel_id=ticket.channel_id,
            channel_pending=ticket.channel_pending,
            status=ticket.status,
            created_at=ticket.created_at.isoformat(),
            updated_at=ticket.updated_at.isoformat(),
        )


class MessageModel(BaseModel):
    id: int
    ticket_id: int
    sender_id: int | None = None
    sender_role: SenderRole
    body: str
    message_type: MessageType
    attachment_url: str | None = None
    attachment_name: str | None = None
    created_at: str

    @classmethod
    def from_entity(cls, message: Message) -> "MessageModel":
        return cls(
            id=message.id,
            ticket_id=message.ticket_id,
            sender_id=message.sender_id,
            sender_role=message.sender_role,
            body=message.body,
            message_type=message.message_type,
            attachment_url=message.attachment_url,
            attachment_name=message.attachment_name,
            created_at=message.created_at.isoformat(),
        )


class TicketDetailModel(TicketModel):
    messages: list[MessageModel]

    @classmethod
    def from_detail(cls, detail: TicketDetail) -> "TicketDetailModel":
        base = TicketModel.from_entity(detail.ticket)
        return cls(
            **base.model_dump(),
            messages=[MessageModel.from_entity(message) for message in detail.messages],
        )


class TicketAuditModel(BaseModel):
    id: int
    action: str
    actor: str
    from_status: TicketStatus | None = None
    to_status: TicketStatus | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str

    @classmethod
    def from_entity(cls, entry: TicketAuditEntry) -> "TicketAuditModel":
        return cls(
            id=entry.id,
            action=entry.action,
            actor=entry.actor,
            from_status=entry.from_status,
            to_status=entry.to_status,
            metadata=dict(entry.metadata),
            created_at=entry.created_at.isoformat(),
        )


class TicketPageModel(BaseModel):
    items: list[TicketModel]
    total: int
    limit: int
    offset: int


class OrderModel(BaseModel):
    id: int
    package_id: int
    brand_id: int
    creator_id: int
    quantity: int
    total_amount: Decimal
    currency: str
    status: OrderStatus
    rejection_message: str | None = None
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, order: Order) -> "OrderModel":
        return cls(
            id=order.id,
            package_id=order.package_id,
            brand_id=order.brand_id,
            creator_id=order.creator_id,
            quantity=order.quantity,
            total_amount=order.total_amount,
            currency=order.currency,
            status=order.status,
            rejection_message=order.rejection_message,
            created_at=order.created_at.isoformat(),
            updated_at=order.updated_at.isoformat(),
        )


class OrderWithTicketModel(BaseModel):
    order: OrderModel
    ticket: TicketModel

    @classmethod
    def from_entity(cls, result: OrderWithTicket) -> "OrderWithTicketModel":
        return cls(order=OrderModel.from_entity(result.order), ticket=TicketModel.from_entity(result.ticket))


class OrderPageModel(BaseModel):
    items: list[OrderModel]
    total: int
    limit: int
    offset: int


class AgentModel(BaseModel):
    id: int
    email: str
    display_name: str
    role: UserRole
    status: AccountStatus
    created_at: str

    @classmethod
    def from_entity(cls, agent: Agent) -> "AgentModel":
        return cls(
            id=agent.id,
            email=agent.email,
            display_name=agent.display_name,
            role=agent.role,
            status=agent.status,
            created_at=agent.created_at.isoformat(),
        )
