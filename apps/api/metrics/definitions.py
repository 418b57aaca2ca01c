"""Metrics every support desk process registers at import time."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name="support_orders_created_total",
        metric_type="counter",
        description="Orders committed together with their ticket.",
    ),
    MetricDefinition(
        name="support_order_failures_total",
        metric_type="counter",
        description="Checkouts rolled back, by error class.",
        label_names=("reason",),
    ),
    MetricDefinition(
        name="support_order_checkout_seconds",
        metric_type="distribution",
        description="Duration of the order and ticket transaction in seconds.",
    ),
    MetricDefinition(
        name="support_tickets_created_total",
        metric_type="counter",
        description="Tickets created.",
    ),
    MetricDefinition(
        name="support_ticket_transitions_total",
        metric_type="counter",
        description="Ticket status changes by target status.",
        label_names=("status",),
    ),
    MetricDefinition(
        name="support_ticket_reassignments_total",
        metric_type="counter",
        description="Tickets moved to another agent.",
    ),
    MetricDefinition(
        name="support_assignments_total",
        metric_type="counter",
        description="Round-robin assignments by agent.",
        label_names=("agent_id",),
    ),
    MetricDefinition(
        name="support_messages_total",
        metric_type="counter",
        description="Messages appended to ticket conversations by message type.",
        label_names=("message_type",),
    ),
    MetricDefinition(
        name="support_channel_placeholders_total",
        metric_type="counter",
        description="Tickets stored with a placeholder chat channel id.",
    ),
    MetricDefinition(
        name="support_channel_backfills_total",
        metric_type="counter",
        description="Placeholder channel ids replaced by a real channel.",
    ),
    MetricDefinition(
        name="support_collaborator_failures_total",
        metric_type="counter",
        description="Failed calls to chat or CRM collaborators.",
        label_names=("collaborator",),
    ),
)
