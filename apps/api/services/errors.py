from __future__ import annotations

from typing import Any


class SupportDeskError(RuntimeError):
    """Base error for order and ticket operations."""

    http_status: int = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class DomainValidationError(SupportDeskError):
    """Input rejected before anything was persisted."""

    http_status = 400


class OrderNotFoundError(SupportDeskError):
    http_status = 404


class TicketNotFoundError(SupportDeskError):
    http_status = 404


class AgentNotFoundError(SupportDeskError):
    http_status = 404


class ReferenceNotFoundError(SupportDeskError):
    """A package, brand or creator referenced by an order does not exist."""

    http_status = 404


class NoEligibleAgentsError(SupportDeskError):
    """No active support-capable account exists; checkout should be retried later."""

    http_status = 503


class DuplicateTicketError(SupportDeskError):
    """The order already has its ticket."""

    http_status = 409


class DuplicateOrderError(SupportDeskError):
    """The same cart item was submitted again within the guard window."""

    http_status = 409


class DuplicateAgentError(SupportDeskError):
    http_status = 409


class InvalidTransitionError(SupportDeskError):
    http_status = 409


class TicketClosedError(SupportDeskError):
    http_status = 409
