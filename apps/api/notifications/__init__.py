"""Notification delivery collaborators."""

from .bridge import (
    TICKET_ASSIGNED,
    TICKET_STATUS_CHANGED,
    LoggingNotificationBridge,
    NotificationBridge,
    NotificationDispatcher,
    TicketNotification,
    WebhookNotificationBridge,
)

__all__ = [
    "TICKET_ASSIGNED",
    "TICKET_STATUS_CHANGED",
    "LoggingNotificationBridge",
    "NotificationBridge",
    "NotificationDispatcher",
    "TicketNotification",
    "WebhookNotificationBridge",
]
