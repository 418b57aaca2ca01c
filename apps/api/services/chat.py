"""Chat gateway client, channel id policy and event-driven channel sync."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Protocol, Sequence

import httpx

from apps.api.metrics import record_counter
from apps.api.services.events import TicketEvent, TicketEventType

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "pending-order-"


class ChatUnavailableError(RuntimeError):
    """The chat gateway could not be reached or refused the request."""


class ChatTransport(Protocol):
    async def create_channel(
        self, channel_id: str, *, member_ids: Sequence[int], data: Mapping[str, Any] | None = None
    ) -> str:
        ...

    async def add_member(self, channel_id: str, user_id: int) -> None:
        ...

    async def remove_member(self, channel_id: str, user_id: int) -> None:
        ...

    async def send_system_message(self, channel_id: str, text: str) -> None:
        ...


class HttpChatTransport:
    """JSON-over-HTTP client for the chat gateway."""

    def __init__(
        self,
        base_url: str | None,
        *,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/") if base_url else None
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    @property
    def is_configured(self) -> bool:
        return self._base_url is not None

    async def _request(self, method: str, path: str, payload: Mapping[str, Any] | None = None) -> dict[str, Any]:
        if self._base_url is None:
            raise ChatUnavailableError("Chat gateway is not configured")
        try:
            response = await self._client.request(method, f"{self._base_url}{path}", json=payload)
            response.raise_for_status()
            body = response.json() if response.content else {}
        except httpx.HTTPError as exc:
            raise ChatUnavailableError(f"Chat gateway request {method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise ChatUnavailableError(f"Chat gateway returned a non-JSON body for {method} {path}") from exc
        return body if isinstance(body, dict) else {}

    async def create_channel(
        self, channel_id: str, *, member_ids: Sequence[int], data: Mapping[str, Any] | None = None
    ) -> str:
        body = await self._request(
            "POST",
            "/channels",
            {"id": channel_id, "members": [str(member) for member in member_ids], "data": dict(data or {})},
        )
        return str(body.get("id") or channel_id)

    async def add_member(self, channel_id: str, user_id: int) -> None:
        await self._request("POST", f"/channels/{channel_id}/members", {"user_id": str(user_id)})

    async def remove_member(self, channel_id: str, user_id: int) -> None:
        await self._request("DELETE", f"/channels/{channel_id}/members/{user_id}")

    async def send_system_message(self, channel_id: str, text: str) -> None:
        await self._request("POST", f"/channels/{channel_id}/messages", {"text": text, "type": "system"})

    async def aclose(self) -> None:
        await self._client.aclose()


def placeholder_channel_id(order_id: int) -> str:
    return f"{PLACEHOLDER_PREFIX}{order_id}"


class ChannelIdFactory:
    """Produce a channel id for a new ticket without letting chat failures fail checkout.

    The transport call is bounded by ``timeout``. On timeout or transport error
    the factory returns a placeholder id and ``pending=True`` so the ticket can
    be backfilled later.
    """

    def __init__(self, transport: ChatTransport, *, timeout: float = 5.0) -> None:
        self._transport = transport
        self._timeout = timeout

    async def create(self, *, order_id: int, member_ids: Sequence[int]) -> tuple[str, bool]:
        channel_id = f"order-{order_id}"
        try:
            created = await asyncio.wait_for(
                self._transport.create_channel(
                    channel_id, member_ids=member_ids, data={"order_id": order_id, "channel_type": "ticket_support"}
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Chat channel for order %s timed out after %.1fs; using placeholder", order_id, self._timeout)
        except ChatUnavailableError as exc:
            logger.warning("Chat channel for order %s unavailable: %s; using placeholder", order_id, exc)
        except Exception:
            logger.exception("Chat channel for order %s failed unexpectedly; using placeholder", order_id)
        else:
            return created, False

        record_counter("support_channel_placeholders_total")
        return placeholder_channel_id(order_id), True


class ChatChannelSync:
    """Keep chat channels in line with ticket events."""

    def __init__(self, transport: ChatTransport) -> None:
        self._transport = transport

    async def __call__(self, event: TicketEvent) -> None:
        channel_id = event.payload.get("channel_id")
        if not channel_id or event.payload.get("channel_pending"):
            logger.debug("Ticket %s has no live channel; skipping %s", event.ticket_id, event.type.value)
            return

        if event.type is TicketEventType.CREATED:
            await self._transport.send_system_message(
                channel_id,
                f"Support ticket #{event.ticket_id} has been created. An agent will assist you shortly.",
            )
        elif event.type is TicketEventType.REASSIGNED:
            previous = event.payload.get("from_agent_id")
            current = event.payload["to_agent_id"]
            if previous is not None:
                await self._transport.remove_member(channel_id, int(previous))
            await self._transport.add_member(channel_id, int(current))
            await self._transport.send_system_message(
                channel_id, f"Ticket #{event.ticket_id} has been reassigned to a new agent."
            )
        elif event.type in (TicketEventType.STATUS_CHANGED, TicketEventType.CLOSED):
            await self._transport.send_system_message(
                channel_id, f"Ticket #{event.ticket_id} status has been updated to: {event.payload['to_status']}"
            )
