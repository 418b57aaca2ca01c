from contextlib import asynccontextmanager

from fastapi import FastAPI

from apps.api.api.routes import agents, metrics, orders, ping, tickets
from apps.api.core.config import Settings, get_settings
from apps.api.core.database import Database
from apps.api.core.logging import configure_logging, init_tracer, shutdown_tracer
from apps.api.middleware import RBACMiddleware
from apps.api.services.agents import AgentDirectory
from apps.api.services.assignment import AssignmentCursor, RoundRobinSelector
from apps.api.services.chat import ChannelIdFactory, ChatChannelSync, HttpChatTransport
from apps.api.services.checkout import CheckoutService, DuplicateOrderGuard
from apps.api.services.crm import CRMSyncClient
from apps.api.services.events import TicketEventPublisher
from apps.api.services.orders import OrderService, OrderTicketOrchestrator
from apps.api.services.tickets import TicketService


def build_services(app: FastAPI, settings: Settings, database: Database, transport, crm_client) -> None:
    """Wire the service graph onto ``app.state``."""

    publisher = TicketEventPublisher()
    publisher.subscribe("chat", ChatChannelSync(transport))
    publisher.subscribe("crm", crm_client)

    selector = RoundRobinSelector(AssignmentCursor(settings.assignment_cursor_name))
    channel_factory = ChannelIdFactory(transport, timeout=settings.chat_channel_timeout_seconds)
    ticket_service = TicketService(
        database, selector=selector, channel_factory=channel_factory, publisher=publisher
    )
    orchestrator = OrderTicketOrchestrator(
        database,
        tickets=ticket_service,
        selector=selector,
        publisher=publisher,
    )

    app.state.database = database
    app.state.publisher = publisher
    app.state.selector = selector
    app.state.ticket_service = ticket_service
    app.state.orchestrator = orchestrator
    app.state.order_service = OrderService(database, tickets=ticket_service, publisher=publisher)
    app.state.checkout_service = CheckoutService(
        database,
        orchestrator=orchestrator,
        guard=DuplicateOrderGuard(window_seconds=settings.duplicate_order_window_seconds),
    )
    app.state.agent_directory = AgentDirectory(database)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.logger = logger
    app.state.tracer_provider = tracer_provider

    database = Database.from_url(settings.database_url, pool_pre_ping=True)
    transport = HttpChatTransport(
        settings.chat_base_url,
        api_key=settings.chat_api_key,
        timeout=settings.chat_channel_timeout_seconds,
    )
    crm_client = CRMSyncClient(settings.crm_webhook_url, timeout=settings.crm_timeout_seconds)
    if not transport.is_configured:
        logger.warning("Chat gateway not configured; new tickets will get placeholder channels")

    if settings.create_schema_on_startup:
        await database.ensure_schema()
    await AssignmentCursor(settings.assignment_cursor_name).ensure(database)
    build_services(app, settings, database, transport, crm_client)
    logger.info("%s started (%s)", settings.app_name, settings.environment)
    try:
        yield
    finally:
        await app.state.publisher.drain()
        await transport.aclose()
        await crm_client.aclose()
        await database.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RBACMiddleware)
    app.include_router(ping.router)
    app.include_router(metrics.router)
    app.include_router(orders.router)
    app.include_router(tickets.router)
    app.include_router(agents.router)
    return app


app = create_app()
