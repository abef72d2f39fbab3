"""Notification channel clients."""

from channels.base import NotificationClient
from channels.memory import InMemoryNotificationClient
from channels.slack import SlackClient

__all__ = ["NotificationClient", "InMemoryNotificationClient", "SlackClient"]
