"""Service layer exports."""

from .agents import AgentDirectory, is_eligible_agent, list_eligible_agents
from .assignment import AssignmentCursor, RoundRobinSelector
from .chat import ChannelIdFactory, ChatChannelSync, ChatUnavailableError, HttpChatTransport
from .checkout import CartItem, CheckoutService, DuplicateOrderGuard
from .conversation import ConversationLog
from .crm import CRMSyncClient
from .events import TicketEvent, TicketEventPublisher, TicketEventType
from .orders import OrderService, OrderStateMachine, OrderTicketOrchestrator
from .tickets import TicketService, TicketStateMachine

__all__ = [
    "AgentDirectory",
    "AssignmentCursor",
    "CRMSyncClient",
    "CartItem",
    "ChannelIdFactory",
    "ChatChannelSync",
    "ChatUnavailableError",
    "CheckoutService",
    "ConversationLog",
    "DuplicateOrderGuard",
    "HttpChatTransport",
    "OrderService",
    "OrderStateMachine",
    "OrderTicketOrchestrator",
    "RoundRobinSelector",
    "TicketEvent",
    "TicketEventPublisher",
    "TicketEventType",
    "TicketService",
    "TicketStateMachine",
    "is_eligible_agent",
    "list_eligible_agents",
]
