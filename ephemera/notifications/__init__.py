"""Push notification layer for offline recipients."""

from ephemera.notifications.channels import NotificationChannel
from ephemera.notifications.dispatcher import NotificationDispatcher
from ephemera.notifications.router import NotificationRouter
from ephemera.notifications.webpush_channel import WebPushChannel

__all__ = [
    "NotificationChannel",
    "NotificationDispatcher",
    "NotificationRouter",
    "WebPushChannel",
]
