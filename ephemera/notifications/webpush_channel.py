"""Web-push relay implementation of the NotificationChannel protocol.

The relay owns subscriptions and the actual push transport; this channel only
hands it the recipient and the rendered text.
"""

from __future__ import annotations

import logging

import aiohttp

logger = logging.getLogger(__name__)


class WebPushChannel:
    """Posts notifications to an HTTP push relay."""

    def __init__(self, relay_url: str, token: str = "") -> None:
        self._relay_url = relay_url
        self._token = token
        self._session: aiohttp.ClientSession | None = None

    @property
    def name(self) -> str:
        return "webpush"

    def _get_session(self) -> aiohttp.ClientSession:
        """Return (and lazily create) the shared aiohttp session."""
        if self._session is None or self._session.closed:
            headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=10),
            )
        return self._session

    async def notify(
        self,
        recipient_id: str,
        title: str,
        preview: str,
        sender_id: str,
    ) -> bool:
        payload = {
            "user_id": recipient_id,
            "title": title,
            "body": preview,
            "sender_id": sender_id,
        }
        session = self._get_session()
        try:
            async with session.post(self._relay_url, json=payload) as resp:
                if resp.status < 300:
                    logger.info("Push sent to %s", recipient_id)
                    return True
                text = await resp.text()
                logger.error("Push failed: status=%d body=%s", resp.status, text[:200])
                return False
        except aiohttp.ClientError:
            logger.exception("Push failed (network error) for recipient=%s", recipient_id)
            return False

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
