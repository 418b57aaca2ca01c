from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from apps.api.dependencies import services as service_deps
from apps.api.main import create_app
from apps.api.services.errors import (
    DuplicateOrderError,
    DuplicateTicketError,
    InvalidTransitionError,
    NoEligibleAgentsError,
    TicketNotFoundError,
)
from apps.api.services.models import (
    Order,
    OrderStatus,
    OrderWithTicket,
    Ticket,
    TicketDetail,
    TicketStatus,
)

ADMIN = {"Authorization": "Bearer admin-token"}
AGENT = {"Authorization": "Bearer agent-token"}
BRAND = {"Authorization": "Bearer brand-token"}


def _make_ticket(*, status: TicketStatus = TicketStatus.OPEN) -> Ticket:
    now = datetime.now(timezone.utc)
    return Ticket(
        id=10,
        order_id=20,
        agent_id=3,
        channel_id="order-20",
        channel_pending=False,
        status=status,
        created_at=now,
        updated_at=now,
    )


def _make_order() -> Order:
    now = datetime.now(timezone.utc)
    return Order(
        id=20,
        package_id=1,
        brand_id=1,
        creator_id=1,
        quantity=1,
        total_amount=Decimal("250.00"),
        currency="USD",
        status=OrderStatus.PENDING,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def api_client():
    app = create_app()
    tickets = AsyncMock()
    orchestrator = AsyncMock()
    checkout = AsyncMock()
    directory = AsyncMock()

    async def override_tickets():
        return tickets

    async def override_orchestrator():
        return orchestrator

    async def override_checkout():
        return checkout

    async def override_directory():
        return directory

    app.dependency_overrides[service_deps.get_ticket_service] = override_tickets
    app.dependency_overrides[service_deps.get_orchestrator] = override_orchestrator
    app.dependency_overrides[service_deps.get_checkout_service] = override_checkout
    app.dependency_overrides[service_deps.get_agent_directory] = override_directory

    client = TestClient(app)
    try:
        yield client, {"tickets": tickets, "orchestrator": orchestrator, "checkout": checkout, "directory": directory}
    finally:
        app.dependency_overrides.clear()


def test_create_order_returns_order_and_ticket(api_client):
    client, mocks = api_client
    mocks["orchestrator"].create_order_with_ticket = AsyncMock(
        return_value=OrderWithTicket(order=_make_order(), ticket=_make_ticket())
    )

    response = client.post("/orders", json={"package_id": 1, "brand_id": 1}, headers=BRAND)

    assert response.status_code == 201
    body = response.json()
    assert body["order"]["id"] == 20
    assert body["ticket"]["channel_id"] == "order-20"
    order_input = mocks["orchestrator"].create_order_with_ticket.await_args.args[0]
    assert order_input.package_id == 1 and order_input.quantity == 1


def test_create_order_without_agents_is_service_unavailable(api_client):
    client, mocks = api_client
    mocks["orchestrator"].create_order_with_ticket = AsyncMock(
        side_effect=NoEligibleAgentsError("No active support agents are available")
    )

    response = client.post("/orders", json={"package_id": 1, "brand_id": 1}, headers=BRAND)

    assert response.status_code == 503
    assert response.json()["detail"]["message"] == "No active support agents are available"


def test_repeat_checkout_reports_existing_order(api_client):
    client, mocks = api_client
    mocks["checkout"].checkout = AsyncMock(
        side_effect=DuplicateOrderError("An order for this package already exists.", existing_order_id=20)
    )

    response = client.post(
        "/orders/checkout", json={"brand_user_id": 1, "items": [{"package_id": 1}]}, headers=BRAND
    )

    assert response.status_code == 409
    assert response.json()["detail"]["existing_order_id"] == 20


def test_duplicate_ticket_is_conflict(api_client):
    client, mocks = api_client
    mocks["tickets"].create_ticket_for_order = AsyncMock(
        side_effect=DuplicateTicketError("Order 20 already has a ticket", order_id=20, ticket_id=10)
    )

    response = client.post("/tickets", json={"order_id": 20}, headers=AGENT)

    assert response.status_code == 409
    assert response.json()["detail"]["ticket_id"] == 10


def test_invalid_ticket_transition_is_conflict(api_client):
    client, mocks = api_client
    mocks["tickets"].transition_status = AsyncMock(side_effect=InvalidTransitionError("Cannot move closed"))

    response = client.put("/tickets/10/status", json={"status": "open"}, headers=AGENT)

    assert response.status_code == 409


def test_status_change_passes_the_caller_as_actor(api_client):
    client, mocks = api_client
    mocks["tickets"].transition_status = AsyncMock(return_value=_make_ticket(status=TicketStatus.RESOLVED))

    response = client.put("/tickets/10/status", json={"status": "resolved", "note": "done"}, headers=AGENT)

    assert response.status_code == 200
    assert response.json()["status"] == "resolved"
    mocks["tickets"].transition_status.assert_awaited_with(10, TicketStatus.RESOLVED, actor="agent", note="done")


def test_missing_ticket_is_not_found(api_client):
    client, mocks = api_client
    mocks["tickets"].get_ticket = AsyncMock(side_effect=TicketNotFoundError("Ticket 99 not found", ticket_id=99))

    response = client.get("/tickets/99", headers=BRAND)

    assert response.status_code == 404


def test_ticket_detail_includes_messages(api_client):
    client, mocks = api_client
    mocks["tickets"].get_ticket = AsyncMock(return_value=TicketDetail(ticket=_make_ticket(), messages=[]))

    response = client.get("/tickets/10", headers=BRAND)

    assert response.status_code == 200
    assert response.json()["messages"] == []


def test_system_messages_cannot_be_posted(api_client):
    client, mocks = api_client

    response = client.post(
        "/tickets/10/messages", json={"sender_role": "system", "body": "hi"}, headers=ADMIN
    )

    assert response.status_code == 400
    mocks["tickets"].append_message.assert_not_called()


def test_reassign_is_admin_only(api_client):
    client, _ = api_client

    response = client.put("/tickets/10/reassign", json={"agent_id": 4}, headers=AGENT)

    assert response.status_code == 403


def test_anonymous_and_bad_tokens(api_client):
    client, _ = api_client

    assert client.get("/tickets").status_code == 403
    assert client.get("/tickets", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_agent_stats(api_client):
    client, mocks = api_client
    mocks["directory"].stats = AsyncMock(return_value={"total": 3, "active": 2, "suspended": 1, "pending": 0})

    response = client.get("/agents/stats", headers=ADMIN)

    assert response.status_code == 200
    assert response.json()["active"] == 2


def test_health_endpoints_are_public(api_client):
    client, _ = api_client

    assert client.get("/ping", headers={"Authorization": "Bearer nope"}).json() == {"status": "ok"}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "support_orders_created_total" in metrics.text
    # No database was wired onto the application.
    assert client.get("/ping/ready").status_code == 503
