from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request

from apps.api.core.database import Database
from apps.api.dependencies.auth import Role, User, role_required
from apps.api.services.agents import AgentDirectory
from apps.api.services.checkout import CheckoutService
from apps.api.services.orders import OrderService, OrderTicketOrchestrator
from apps.api.services.tickets import TicketService

require_admin = role_required(Role.ADMIN)
require_support = role_required(Role.ADMIN, Role.AGENT)
require_buyer = role_required(Role.ADMIN, Role.BRAND)
require_creator = role_required(Role.ADMIN, Role.CREATOR)
require_participant = role_required(Role.ADMIN, Role.AGENT, Role.BRAND, Role.CREATOR)

AdminUser = Annotated[User, Depends(require_admin)]
SupportUser = Annotated[User, Depends(require_support)]
BuyerUser = Annotated[User, Depends(require_buyer)]
CreatorUser = Annotated[User, Depends(require_creator)]
ParticipantUser = Annotated[User, Depends(require_participant)]


def _state_service(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{label} is not available")
    return service


async def get_database(request: Request) -> Database:
    return _state_service(request, "database", "Database")


async def get_ticket_service(request: Request) -> TicketService:
    return _state_service(request, "ticket_service", "Ticket service")


async def get_order_service(request: Request) -> OrderService:
    return _state_service(request, "order_service", "Order service")


async def get_orchestrator(request: Request) -> OrderTicketOrchestrator:
    return _state_service(request, "orchestrator", "Order service")


async def get_checkout_service(request: Request) -> CheckoutService:
    return _state_service(request, "checkout_service", "Checkout service")


async def get_agent_directory(request: Request) -> AgentDirectory:
    return _state_service(request, "agent_directory", "Agent directory")


DatabaseDep = Annotated[Database, Depends(get_database)]
TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
OrchestratorDep = Annotated[OrderTicketOrchestrator, Depends(get_orchestrator)]
CheckoutServiceDep = Annotated[CheckoutService, Depends(get_checkout_service)]
AgentDirectoryDep = Annotated[AgentDirectory, Depends(get_agent_directory)]
