"""NotificationDispatcher — fire-and-forget "new message" pushes."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ephemera.notifications.router import NotificationRouter
    from ephemera.profiles import ProfileDirectory

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "Someone"


class NotificationDispatcher:
    """Schedules pushes as background tasks so senders never wait on them.

    Args:
        router: NotificationRouter that owns the channels.
        profiles: Optional directory used to title the push with the
            sender's display name.
    """

    def __init__(
        self,
        router: NotificationRouter,
        profiles: ProfileDirectory | None = None,
    ) -> None:
        self._router = router
        self._profiles = profiles
        self._pending: set[asyncio.Task] = set()

    def dispatch(self, recipient_id: str, preview: str, sender_id: str) -> asyncio.Task:
        """Start delivering a push. Failures are logged, never raised."""
        task = asyncio.create_task(self._deliver(recipient_id, preview, sender_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _title_for(self, sender_id: str) -> str:
        if self._profiles is None:
            return FALLBACK_TITLE
        try:
            name = await self._profiles.display_name(sender_id)
        except Exception:
            logger.warning("Display name lookup failed for sender=%s", sender_id)
            return FALLBACK_TITLE
        return name or FALLBACK_TITLE

    async def _deliver(self, recipient_id: str, preview: str, sender_id: str) -> None:
        try:
            title = await self._title_for(sender_id)
            delivered = await self._router.notify(recipient_id, title, preview, sender_id)
            if not delivered:
                logger.warning("Push not delivered to recipient=%s", recipient_id)
        except Exception:
            logger.exception("Push dispatch failed for recipient=%s", recipient_id)

    async def drain(self) -> None:
        """Wait for in-flight pushes (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
