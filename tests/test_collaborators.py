from __future__ import annotations

import json

import httpx
import pytest

from apps.api.metrics import metrics_registry
from apps.api.services.chat import ChannelIdFactory, ChatChannelSync, ChatUnavailableError, HttpChatTransport
from apps.api.services.crm import CRMSyncClient
from apps.api.services.events import TicketEvent, TicketEventPublisher, TicketEventType
from factories import RecordingChatTransport


def _event(event_type=TicketEventType.CREATED, **payload) -> TicketEvent:
    body = {"channel_id": "order-7", "channel_pending": False, "agent_id": 3, "status": "open"}
    body.update(payload)
    return TicketEvent(type=event_type, ticket_id=11, order_id=7, actor="system", payload=body)


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_affect_others():
    publisher = TicketEventPublisher()
    received = []

    async def broken(event):
        raise RuntimeError("boom")

    async def healthy(event):
        received.append(event.ticket_id)

    publisher.subscribe("broken", broken)
    publisher.subscribe("healthy", healthy)
    publisher.publish(_event())
    await publisher.drain()

    assert received == [11]
    failures = metrics_registry.counter("support_collaborator_failures_total")
    assert failures.value(labels={"collaborator": "broken"}) == 1


@pytest.mark.asyncio
async def test_crm_failure_is_logged_and_swallowed(caplog):
    client = CRMSyncClient(
        "https://crm.test/hook",
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
    )

    assert await client.send(_event()) is False
    assert "CRM webhook failed" in caplog.text
    failures = metrics_registry.counter("support_collaborator_failures_total")
    assert failures.value(labels={"collaborator": "crm"}) == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_crm_posts_event_payload():
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    client = CRMSyncClient("https://crm.test/hook", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    assert await client.send(_event(TicketEventType.REASSIGNED, to_agent_id=4)) is True
    assert captured[0]["event"] == "ticket.reassigned"
    assert captured[0]["data"]["payload"]["to_agent_id"] == 4
    await client.aclose()


@pytest.mark.asyncio
async def test_unconfigured_crm_is_skipped():
    client = CRMSyncClient(None)
    assert client.is_configured is False
    assert await client.send(_event()) is False
    await client.aclose()


@pytest.mark.asyncio
async def test_http_chat_transport_calls_gateway():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path, request.content))
        if request.url.path == "/channels":
            return httpx.Response(201, json={"id": "order-7"})
        return httpx.Response(204)

    transport = HttpChatTransport(
        "https://chat.test/", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    assert await transport.create_channel("order-7", member_ids=[1, 2, 3]) == "order-7"
    await transport.remove_member("order-7", 3)
    await transport.send_system_message("order-7", "hello")

    assert [(method, path) for method, path, _ in requests] == [
        ("POST", "/channels"),
        ("DELETE", "/channels/order-7/members/3"),
        ("POST", "/channels/order-7/messages"),
    ]
    assert json.loads(requests[0][2])["members"] == ["1", "2", "3"]
    await transport.aclose()


@pytest.mark.asyncio
async def test_http_chat_transport_errors_become_chat_unavailable():
    failing = HttpChatTransport(
        "https://chat.test",
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503))),
    )
    with pytest.raises(ChatUnavailableError):
        await failing.create_channel("order-1", member_ids=[])
    await failing.aclose()

    unconfigured = HttpChatTransport(None)
    with pytest.raises(ChatUnavailableError):
        await unconfigured.send_system_message("order-1", "hi")
    await unconfigured.aclose()


@pytest.mark.asyncio
async def test_http_chat_transport_rejects_non_json_success():
    html = HttpChatTransport(
        "https://chat.test",
        client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>ok</html>"))
        ),
    )
    with pytest.raises(ChatUnavailableError):
        await html.create_channel("order-1", member_ids=[])
    await html.aclose()


@pytest.mark.asyncio
async def test_channel_factory_falls_back_to_placeholder():
    factory = ChannelIdFactory(RecordingChatTransport(delay=0.2), timeout=0.01)

    assert await factory.create(order_id=5, member_ids=[1]) == ("pending-order-5", True)
    assert await ChannelIdFactory(RecordingChatTransport()).create(order_id=5, member_ids=[1]) == ("order-5", False)


@pytest.mark.asyncio
async def test_channel_sync_swaps_members_on_reassignment():
    transport = RecordingChatTransport()
    sync = ChatChannelSync(transport)

    await sync(_event(TicketEventType.REASSIGNED, from_agent_id=3, to_agent_id=4))

    assert transport.removed == [("order-7", 3)]
    assert transport.added == [("order-7", 4)]
    assert transport.messages[0][0] == "order-7"


@pytest.mark.asyncio
async def test_channel_sync_skips_placeholder_channels():
    transport = RecordingChatTransport()

    await ChatChannelSync(transport)(
        _event(TicketEventType.STATUS_CHANGED, channel_id="pending-order-7", channel_pending=True, to_status="closed")
    )

    assert transport.messages == []
