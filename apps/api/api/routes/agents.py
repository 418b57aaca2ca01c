from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from apps.api.api.schemas import AgentModel, TicketModel, to_http_exception
from apps.api.dependencies.services import AdminUser, AgentDirectoryDep, SupportUser, TicketServiceDep
from apps.api.services.errors import SupportDeskError
from apps.api.services.models import AccountStatus, TicketStatus, UserRole

router = APIRouter(prefix="/agents", tags=["agents"])


class AgentCreateRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    display_name: str = Field(min_length=1, max_length=255)
    role: UserRole = UserRole.AGENT


class AgentStatusChangeRequest(BaseModel):
    status: AccountStatus


class AgentStatsModel(BaseModel):
    total: int
    active: int
    suspended: int
    pending: int


@router.post("", response_model=AgentModel, status_code=status.HTTP_201_CREATED)
async def create_agent(payload: AgentCreateRequest, directory: AgentDirectoryDep, _: AdminUser) -> AgentModel:
    try:
        agent = await directory.create_agent(
            email=payload.email, display_name=payload.display_name, role=payload.role
        )
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return AgentModel.from_entity(agent)


@router.get("", response_model=list[AgentModel])
async def list_agents(
    directory: AgentDirectoryDep,
    _: AdminUser,
    status_filter: Annotated[AccountStatus | None, Query(alias="status")] = None,
) -> list[AgentModel]:
    agents = await directory.list_agents(status=status_filter)
    return [AgentModel.from_entity(agent) for agent in agents]


@router.get("/stats", response_model=AgentStatsModel)
async def agent_stats(directory: AgentDirectoryDep, _: AdminUser) -> AgentStatsModel:
    return AgentStatsModel(**await directory.stats())


@router.get("/{agent_id}", response_model=AgentModel)
async def get_agent(agent_id: int, directory: AgentDirectoryDep, _: SupportUser) -> AgentModel:
    try:
        agent = await directory.get_agent(agent_id)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return AgentModel.from_entity(agent)


@router.put("/{agent_id}/status", response_model=AgentModel)
async def change_agent_status(
    agent_id: int,
    payload: AgentStatusChangeRequest,
    directory: AgentDirectoryDep,
    _: AdminUser,
) -> AgentModel:
    try:
        agent = await directory.update_status(agent_id, payload.status)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return AgentModel.from_entity(agent)


@router.delete("/{agent_id}", response_model=AgentModel, summary="Suspend an agent")
async def suspend_agent(agent_id: int, directory: AgentDirectoryDep, _: AdminUser) -> AgentModel:
    try:
        agent = await directory.suspend(agent_id)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return AgentModel.from_entity(agent)


@router.get("/{agent_id}/tickets", response_model=list[TicketModel])
async def list_agent_tickets(
    agent_id: int,
    service: TicketServiceDep,
    _: SupportUser,
    status_filter: Annotated[TicketStatus | None, Query(alias="status")] = None,
) -> list[TicketModel]:
    try:
        tickets = await service.list_agent_tickets(agent_id, status=status_filter)
    except SupportDeskError as exc:
        raise to_http_exception(exc) from exc
    return [TicketModel.from_entity(ticket) for ticket in tickets]
