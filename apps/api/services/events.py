"""In-process fan-out of ticket domain events to best-effort subscribers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from apps.api.metrics import record_counter

logger = logging.getLogger(__name__)


class TicketEventType(str, Enum):
    CREATED = "ticket.created"
    STATUS_CHANGED = "ticket.status_changed"
    REASSIGNED = "ticket.reassigned"
    CLOSED = "ticket.closed"
    MESSAGE_ADDED = "ticket.message_added"


@dataclass(slots=True, frozen=True)
class TicketEvent:
    type: TicketEventType
    ticket_id: int
    order_id: int
    actor: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "ticket_id": self.ticket_id,
            "order_id": self.order_id,
            "actor": self.actor,
            "payload": dict(self.payload),
            "occurred_at": self.occurred_at.isoformat(),
        }


Subscriber = Callable[[TicketEvent], Awaitable[None]]


class TicketEventPublisher:
    """Deliver committed ticket events to subscribers in background tasks.

    Events are only published after the transaction that produced them has
    committed. A failing subscriber is logged and never affects the caller or
    the other subscribers.
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[str, Subscriber]] = []
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, name: str, subscriber: Subscriber) -> None:
        self._subscribers.append((name, subscriber))

    @property
    def subscribers(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self._subscribers)

    def publish(self, event: TicketEvent) -> None:
        logger.info("Publishing %s for ticket %s", event.type.value, event.ticket_id)
        for name, subscriber in self._subscribers:
            task = asyncio.create_task(self._deliver(name, subscriber, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    def publish_all(self, events: list[TicketEvent]) -> None:
        for event in events:
            self.publish(event)

    async def _deliver(self, name: str, subscriber: Subscriber, event: TicketEvent) -> None:
        try:
            await subscriber(event)
        except Exception:
            record_counter("support_collaborator_failures_total", labels={"collaborator": name})
            logger.exception("Subscriber %s failed to handle %s for ticket %s", name, event.type.value, event.ticket_id)

    async def drain(self) -> None:
        """Wait for every delivery scheduled so far."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
