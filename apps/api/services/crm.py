"""Forward ticket events to an external CRM webhook."""

from __future__ import annotations

import logging

import httpx

from apps.api.metrics import record_counter
from apps.api.services.events import TicketEvent

logger = logging.getLogger(__name__)


class CRMSyncClient:
    """Best-effort webhook sink; a CRM outage never reaches the caller."""

    def __init__(
        self,
        webhook_url: str | None,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def is_configured(self) -> bool:
        return bool(self._webhook_url)

    async def __call__(self, event: TicketEvent) -> None:
        await self.send(event)

    async def send(self, event: TicketEvent) -> bool:
        if not self._webhook_url:
            logger.debug("CRM webhook not configured; skipping %s", event.type.value)
            return False
        try:
            response = await self._client.post(
                self._webhook_url,
                json={"event": event.type.value, "data": event.to_dict()},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            record_counter("support_collaborator_failures_total", labels={"collaborator": "crm"})
            logger.error("CRM webhook failed for %s on ticket %s: %s", event.type.value, event.ticket_id, exc)
            return False
        logger.info("CRM webhook sent %s for ticket %s", event.type.value, event.ticket_id)
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
