"""VaultTransfer — password-gated copy of message media into the vault."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aiohttp

from ephemera.db import storage_errors
from ephemera.errors import AuthError, NotFound, Unavailable, ValidationError
from ephemera.vault.models import VaultItem, make_vault_item_id, vault_file_name, vault_kind

if TYPE_CHECKING:
    from ephemera.messages.engine import LifecycleEngine
    from ephemera.profiles import CredentialVerifier
    from ephemera.vault.store import VaultStore

logger = logging.getLogger(__name__)


class VaultTransfer:
    """Copies a message's media reference into the owner's vault.

    Args:
        engine: LifecycleEngine used to read the source message.
        store: VaultStore receiving the copy.
        verifier: Checks the owner's vault password; credentials live elsewhere.
    """

    def __init__(
        self,
        engine: LifecycleEngine,
        store: VaultStore,
        verifier: CredentialVerifier,
    ) -> None:
        self._engine = engine
        self._store = store
        self._verifier = verifier

    async def store_to_vault(self, owner_id: str, message_id: str, password: str) -> VaultItem:
        """Verify *password* and copy the message media. The message is untouched."""
        if not password:
            msg = "Vault password is required"
            raise ValidationError(msg)
        message = await self._engine.get(message_id)
        if not message.is_participant(owner_id):
            raise NotFound(f"Message {message_id} not found")

        try:
            verified = await self._verifier.verify_vault_password(owner_id, password)
        except (aiohttp.ClientError, TimeoutError) as exc:
            msg = "Credential service unavailable"
            raise Unavailable(msg) from exc
        if not verified:
            logger.warning("Vault password mismatch for owner %s", owner_id)
            raise AuthError("Invalid vault password")

        if not message.media_ref:
            msg = f"Message {message_id} has no media to store"
            raise ValidationError(msg)

        now = self._engine.now()
        kind = vault_kind(message.media_type)
        item = VaultItem(
            id=make_vault_item_id(),
            owner_id=owner_id,
            source_media_ref=message.media_ref,
            kind=kind,
            file_name=vault_file_name(kind, now),
            metadata={
                "source": "chat",
                "sender_id": message.sender_id,
                "message_id": message.id,
            },
            created_at=now,
        )
        async with storage_errors("store_to_vault"):
            await self._store.add(item)
        logger.info("Stored message %s in vault %s as %s", message_id, owner_id, item.file_name)
        return item

    async def list_items(self, owner_id: str) -> list[VaultItem]:
        async with storage_errors("list_vault_items"):
            return await self._store.list_items(owner_id)
