"""Profile service client — display names and vault credential checks.

Profiles, usernames and vault passwords live in an external profile system.
This engine only asks it two questions; it never stores credentials.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import aiohttp

logger = logging.getLogger(__name__)


@runtime_checkable
class ProfileDirectory(Protocol):
    async def display_name(self, user_id: str) -> str | None:
        """Return the user's display name, or None if unknown."""
        ...


@runtime_checkable
class CredentialVerifier(Protocol):
    async def verify_vault_password(self, owner_id: str, candidate: str) -> bool:
        """Return True if *candidate* matches the owner's vault password."""
        ...


class ProfileServiceClient:
    """HTTP client for the profile service.

    Endpoints::

        GET  {base}/profiles/{user_id}               -> {"username": "..."}
        POST {base}/profiles/{user_id}/vault/verify  {"password": "..."} -> {"ok": bool}
    """

    def __init__(self, base_url: str) -> None:
        self._base_url = base_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10))
        return self._session

    async def display_name(self, user_id: str) -> str | None:
        session = self._get_session()
        async with session.get(f"{self._base_url}/profiles/{user_id}") as resp:
            if resp.status != 200:
                logger.warning("Profile lookup failed: user=%s status=%d", user_id, resp.status)
                return None
            data = await resp.json()
        return data.get("username") or None

    async def verify_vault_password(self, owner_id: str, candidate: str) -> bool:
        session = self._get_session()
        async with session.post(
            f"{self._base_url}/profiles/{owner_id}/vault/verify",
            json={"password": candidate},
        ) as resp:
            if resp.status != 200:
                logger.warning(
                    "Vault verification rejected: owner=%s status=%d", owner_id, resp.status
                )
                return False
            data = await resp.json()
        return data.get("ok") is True

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
