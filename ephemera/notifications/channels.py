"""NotificationChannel protocol — interface for push delivery transports."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all notification channels must satisfy."""

    @property
    def name(self) -> str:
        """Unique channel identifier (e.g. 'webpush')."""
        ...

    async def notify(
        self,
        recipient_id: str,
        title: str,
        preview: str,
        sender_id: str,
    ) -> bool:
        """Push a new-message notification. Returns True on success."""
        ...
