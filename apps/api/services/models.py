from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Sequence


class UserRole(str, Enum):
    BRAND = "brand"
    CREATOR = "creator"
    AGENT = "agent"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    PENDING = "pending"


class OrderStatus(str, Enum):
    """States of an order from checkout to fulfilment."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class TicketStatus(str, Enum):
    """Canonical states of the ticket lifecycle."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class SenderRole(str, Enum):
    BRAND = "brand"
    CREATOR = "creator"
    AGENT = "agent"
    SYSTEM = "system"


class MessageType(str, Enum):
    TEXT = "text"
    FILE = "file"
    SYSTEM = "system"


@dataclass(slots=True)
class Agent:
    """A user account seen from the support side."""

    id: int
    email: str
    display_name: str
    role: UserRole
    status: AccountStatus
    created_at: datetime


@dataclass(slots=True)
class Order:
    id: int
    package_id: int
    brand_id: int
    creator_id: int
    quantity: int
    total_amount: Decimal
    currency: str
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    rejection_message: str | None = None


@dataclass(slots=True)
class Ticket:
    """Support ticket anchored to exactly one order."""

    id: int
    order_id: int
    agent_id: int
    channel_id: str
    channel_pending: bool
    status: TicketStatus
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Message:
    """One entry of a ticket conversation."""

    id: int
    ticket_id: int
    sender_id: int | None
    sender_role: SenderRole
    body: str
    message_type: MessageType
    created_at: datetime
    attachment_url: str | None = None
    attachment_name: str | None = None


@dataclass(slots=True)
class TicketAuditEntry:
    id: int
    ticket_id: int
    action: str
    actor: str
    from_status: TicketStatus | None
    to_status: TicketStatus | None
    created_at: datetime
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TicketDetail:
    """Container bundling the ticket with its conversation."""

    ticket: Ticket
    messages: Sequence[Message]


@dataclass(slots=True)
class OrderWithTicket:
    order: Order
    ticket: Ticket


@dataclass(slots=True)
class OrderInput:
    """Checkout request for one package.

    ``total_amount`` and ``currency`` fall back to the package price and
    currency when left empty.
    """

    package_id: int
    brand_id: int
    creator_id: int | None = None
    quantity: int = 1
    total_amount: Decimal | None = None
    currency: str | None = None


def ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
