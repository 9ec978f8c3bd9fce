"""Boundary to the SMS/email delivery collaborator."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence

import httpx

from apps.api.metrics import metrics_registry
from apps.api.metrics.definitions import TICKET_NOTIFICATION_FAILURES_TOTAL

logger = logging.getLogger(__name__)

TICKET_ASSIGNED = "ticket.assigned"
TICKET_STATUS_CHANGED = "ticket.status_changed"


@dataclass(slots=True)
class TicketNotification:
    """Lifecycle change handed to the messaging collaborator."""

    event: str
    ticket_id: str
    ticket_number: str
    actor_id: str
    recipients: Sequence[str]
    occurred_at: datetime
    data: Mapping[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["recipients"] = list(self.recipients)
        payload["occurred_at"] = self.occurred_at.isoformat()
        payload["data"] = dict(self.data)
        return payload


class NotificationBridge(Protocol):
    async def send(self, notification: TicketNotification) -> None:
        ...


class LoggingNotificationBridge:
    """Default bridge that only records notifications in the log."""

    async def send(self, notification: TicketNotification) -> None:
        logger.info(
            "Notification %s for ticket %s -> %s",
            notification.event,
            notification.ticket_number,
            ", ".join(notification.recipients) or "-",
        )


class WebhookNotificationBridge:
    """POST notifications as JSON to the messaging service."""

    def __init__(self, url: str, *, timeout: float = 5.0, client: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def send(self, notification: TicketNotification) -> None:
        response = await self._client.post(self._url, json=notification.to_payload())
        response.raise_for_status()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class NotificationDispatcher:
    """Deliver notifications in the background without blocking the caller.

    Failures are logged and counted, never retried and never propagated.
    """

    def __init__(self, bridge: NotificationBridge | None = None) -> None:
        self._bridge = bridge or LoggingNotificationBridge()
        self._pending: set[asyncio.Task[None]] = set()
        self._failures = metrics_registry.counter(TICKET_NOTIFICATION_FAILURES_TOTAL, label_names=("event",))

    def dispatch(self, notification: TicketNotification) -> None:
        task = asyncio.create_task(self._deliver(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight deliveries, used at shutdown and in tests."""

        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, notification: TicketNotification) -> None:
        try:
            await self._bridge.send(notification)
        except Exception:
            self._failures.inc(labels={"event": notification.event})
            logger.exception(
                "Failed to deliver %s notification for ticket %s",
                notification.event,
                notification.ticket_number,
            )
