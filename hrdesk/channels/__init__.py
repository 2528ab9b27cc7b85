"""Outbound notification channels."""

from hrdesk.channels.email import LogNotifier, NotificationError, Notifier, WebhookNotifier

__all__ = ["LogNotifier", "NotificationError", "Notifier", "WebhookNotifier"]
