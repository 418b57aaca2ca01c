from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from apps.api.api.schemas import (
    MessageModel,
    TicketAuditModel,
    TicketDetailModel,
    TicketModel,
    TicketPageModel,
    to_http_exception,
)
from apps.api.dependencies.services import (
    AdminUser,
    ParticipantUser,
    SupportUser,
    TicketServiceDep,
)
from apps.api.services.errors import SupportDeskError
from apps.api.services.models import MessageType, SenderRole, TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketCreateRequest(BaseModel):
    order_id: int
    channel_id: str | None = Field(default=None, max_length=255)
    agent_id: int | None = None


class TicketStatusChangeRequest(BaseModel):
    status: TicketStatus
    note: str | None = None


class TicketReassignRequest(BaseModel):
    agent_id: int


class TicketMessageCreateRequest(BaseModel):
    sender_id: int | None = None
    sender_role: SenderRole
    body: str = ""
    message_type: MessageType = MessageType.TEXT
    attachment_url: str | None = None
    attachment_name: str | None = None


@router.get("", response_model=TicketPageModel, summary="List tickets")
async def list_tickets(
    service: TicketServiceDep,
    _: SupportUser,
    status_filter: Annotated[TicketStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> TicketPageModel:
    tickets, total = await service.list_tickets(status=status_filter, limit=limit, offset=offset)
    return TicketPageModel(
        items=[TicketModel.from_entity(item) for item in tickets], total=total, limit=limit, offset=offset
    )


@router.post("", response_model=TicketModel, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    user: SupportUser,
) -> TicketModel:
    try:
        ticket = await service.create_ticket_for_order(
            payload.order_id,
            channel_id=payload.channel_id,
            agent_id=payload.agent_id,
            actor=user.username,
        )
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return TicketModel.from_entity(ticket)


@router.post("/channels/backfill", response_model=list[TicketModel], summary="Retry placeholder chat channels")
async def backfill_channels(service: TicketServiceDep, _: AdminUser) -> list[TicketModel]:
    repaired = await service.backfill_channels()
    return [TicketModel.from_entity(ticket) for ticket in repaired]


@router.get("/order/{order_id}", response_model=TicketDetailModel)
async def get_ticket_by_order(order_id: int, service: TicketServiceDep, _: ParticipantUser) -> TicketDetailModel:
    try:
        detail = await service.get_ticket_by_order(order_id)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return TicketDetailModel.from_detail(detail)


@router.get("/{ticket_id}", response_model=TicketDetailModel)
async def get_ticket(ticket_id: int, service: TicketServiceDep, _: ParticipantUser) -> TicketDetailModel:
    try:
        detail = await service.get_ticket(ticket_id)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return TicketDetailModel.from_detail(detail)


@router.get("/{ticket_id}/audit", response_model=list[TicketAuditModel])
async def get_ticket_audit(ticket_id: int, service: TicketServiceDep, _: SupportUser) -> list[TicketAuditModel]:
    try:
        entries = await service.list_audit_log(ticket_id)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return [TicketAuditModel.from_entity(entry) for entry in entries]


@router.put("/{ticket_id}/status", response_model=TicketModel)
async def change_ticket_status(
    ticket_id: int,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
    user: SupportUser,
) -> TicketModel:
    try:
        ticket = await service.transition_status(
            ticket_id, payload.status, actor=user.username, note=payload.note
        )
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return TicketModel.from_entity(ticket)


@router.put("/{ticket_id}/reassign", response_model=TicketModel)
async def reassign_ticket(
    ticket_id: int,
    payload: TicketReassignRequest,
    service: TicketServiceDep,
    user: AdminUser,
) -> TicketModel:
    try:
        ticket = await service.reassign(ticket_id, payload.agent_id, actor=user.username)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return TicketModel.from_entity(ticket)


@router.post("/{ticket_id}/messages", response_model=MessageModel, status_code=status.HTTP_201_CREATED)
async def add_ticket_message(
    ticket_id: int,
    payload: TicketMessageCreateRequest,
    service: TicketServiceDep,
    _: ParticipantUser,
) -> MessageModel:
    if payload.sender_role is SenderRole.SYSTEM:
        raise HTTPException(status_code=400, detail="System messages cannot be posted through the API")
    try:
        message = await service.append_message(
            ticket_id,
            sender_id=payload.sender_id,
            sender_role=payload.sender_role,
            body=payload.body,
            message_type=payload.message_type,
            attachment_url=payload.attachment_url,
            attachment_name=payload.attachment_name,
        )
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return MessageModel.from_entity(message)


@router.get("/{ticket_id}/messages", response_model=list[MessageModel])
async def list_ticket_messages(
    ticket_id: int, service: TicketServiceDep, _: ParticipantUser
) -> list[MessageModel]:
    try:
        messages = await service.list_messages(ticket_id)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return [MessageModel.from_entity(message) for message in messages]
