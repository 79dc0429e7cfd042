"""Tests for VaultTransfer and VaultStore."""

from datetime import timedelta
from unittest.mock import AsyncMock

import aiohttp
import pytest

from ephemera.errors import AuthError, NotFound, Unavailable, ValidationError
from ephemera.messages.models import MediaType
from ephemera.vault.models import VaultItem, vault_file_name, vault_kind
from ephemera.vault.store import VaultStore
from ephemera.vault.transfer import VaultTransfer

PHOTO = "https://cdn.example/beach.jpg"


class FakeVerifier:
    def __init__(self, password: str = "hunter2") -> None:
        self._password = password
        self.calls: list[tuple[str, str]] = []

    async def verify_vault_password(self, owner_id: str, candidate: str) -> bool:
        self.calls.append((owner_id, candidate))
        return candidate == self._password


@pytest.fixture
def vault_store(db_path) -> VaultStore:
    return VaultStore(db_path=db_path)


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def transfer(engine, vault_store, verifier) -> VaultTransfer:
    return VaultTransfer(engine, vault_store, verifier)


async def test_store_copies_media_reference(engine, transfer, clock) -> None:
    message = await engine.send("alice", "bob", "", "image", PHOTO)

    item = await transfer.store_to_vault("bob", message.id, "hunter2")

    assert item.owner_id == "bob"
    assert item.source_media_ref == PHOTO
    assert item.kind == "photo"
    assert item.file_name == f"vault-{int(clock().timestamp() * 1000)}.jpg"
    assert item.metadata == {"source": "chat", "sender_id": "alice", "message_id": message.id}


async def test_store_leaves_message_untouched(engine, transfer, events) -> None:
    message = await engine.send("alice", "bob", "", "snapshot", PHOTO)
    before = len(events)

    await transfer.store_to_vault("bob", message.id, "hunter2")

    assert len(events) == before
    assert await engine.get(message.id) == message


async def test_blank_password_is_rejected_before_lookup(transfer, verifier) -> None:
    with pytest.raises(ValidationError):
        await transfer.store_to_vault("bob", "whatever", "")
    assert verifier.calls == []


async def test_missing_message_is_not_found(transfer) -> None:
    with pytest.raises(NotFound):
        await transfer.store_to_vault("bob", "gone", "hunter2")


async def test_outsider_cannot_copy_media(engine, transfer, verifier, vault_store) -> None:
    message = await engine.send("alice", "bob", "", "image", PHOTO)

    with pytest.raises(NotFound):
        await transfer.store_to_vault("mallory", message.id, "hunter2")
    assert verifier.calls == []
    assert await vault_store.list_items("mallory") == []


async def test_sender_may_copy_own_media(engine, transfer) -> None:
    message = await engine.send("alice", "bob", "", "image", PHOTO)

    item = await transfer.store_to_vault("alice", message.id, "hunter2")

    assert item.owner_id == "alice"


async def test_wrong_password_is_auth_error(engine, transfer, vault_store) -> None:
    message = await engine.send("alice", "bob", "", "image", PHOTO)

    with pytest.raises(AuthError):
        await transfer.store_to_vault("bob", message.id, "letmein")
    assert await vault_store.list_items("bob") == []


async def test_text_message_has_nothing_to_store(engine, transfer) -> None:
    message = await engine.send("alice", "bob", "just words")

    with pytest.raises(ValidationError):
        await transfer.store_to_vault("bob", message.id, "hunter2")


@pytest.mark.parametrize(
    "failure",
    [aiohttp.ClientConnectionError("refused"), TimeoutError()],
)
async def test_verifier_outage_is_unavailable(engine, vault_store, failure) -> None:
    verifier = AsyncMock()
    verifier.verify_vault_password.side_effect = failure
    transfer = VaultTransfer(engine, vault_store, verifier)
    message = await engine.send("alice", "bob", "", "image", PHOTO)

    with pytest.raises(Unavailable):
        await transfer.store_to_vault("bob", message.id, "hunter2")


async def test_list_items_newest_first(engine, transfer, clock) -> None:
    first = await engine.send("alice", "bob", "", "image", PHOTO)
    second = await engine.send("alice", "bob", "", "video", "https://cdn.example/clip.mp4")

    older = await transfer.store_to_vault("bob", first.id, "hunter2")
    clock.advance(minutes=1)
    newer = await transfer.store_to_vault("bob", second.id, "hunter2")

    items = await transfer.list_items("bob")

    assert [item.id for item in items] == [newer.id, older.id]
    assert items[0].kind == "video"
    assert items[0].file_name.endswith(".mp4")
    assert await transfer.list_items("alice") == []


async def test_vault_item_round_trips_through_store(vault_store, clock) -> None:
    item = VaultItem(
        id="v1",
        owner_id="bob",
        source_media_ref=PHOTO,
        kind="photo",
        file_name="vault-1.jpg",
        metadata={"source": "chat"},
        created_at=clock() - timedelta(days=1),
    )
    await vault_store.add(item)

    assert await vault_store.list_items("bob") == [item]


@pytest.mark.parametrize(
    ("media_type", "kind"),
    [
        (MediaType.IMAGE, "photo"),
        (MediaType.SNAPSHOT, "photo"),
        (MediaType.VIDEO, "video"),
        (MediaType.AUDIO, "audio"),
        (MediaType.LOCATION, "location"),
        (MediaType.TEXT, "file"),
    ],
)
def test_vault_kind(media_type, kind) -> None:
    assert vault_kind(media_type) == kind


def test_vault_file_name_falls_back_to_bin(clock) -> None:
    assert vault_file_name("location", clock()).endswith(".bin")
