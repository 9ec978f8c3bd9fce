"""Metric definitions used across the application."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


TICKET_ACTIONS_TOTAL = "ticket_actions_total"
TICKET_ACTION_FAILURES_TOTAL = "ticket_action_failures_total"
TICKET_ACTION_DURATION_SECONDS = "ticket_action_duration_seconds"
TICKET_NOTIFICATION_FAILURES_TOTAL = "ticket_notification_failures_total"

DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TICKET_ACTIONS_TOTAL,
        metric_type="counter",
        description="Ticket lifecycle actions committed by the engine.",
        label_names=("action",),
    ),
    MetricDefinition(
        name=TICKET_ACTION_FAILURES_TOTAL,
        metric_type="counter",
        description="Ticket lifecycle actions rejected or failed, by error kind.",
        label_names=("action", "kind"),
    ),
    MetricDefinition(
        name=TICKET_ACTION_DURATION_SECONDS,
        metric_type="distribution",
        description="Duration of ticket lifecycle actions in seconds.",
        label_names=("action",),
    ),
    MetricDefinition(
        name=TICKET_NOTIFICATION_FAILURES_TOTAL,
        metric_type="counter",
        description="Notifications the messaging collaborator failed to accept.",
        label_names=("event",),
    ),
)
