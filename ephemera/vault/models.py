"""VaultItem data model."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from ephemera.messages.models import MediaType, from_iso, to_iso

_KIND_BY_MEDIA = {
    MediaType.IMAGE: "photo",
    MediaType.SNAPSHOT: "photo",
    MediaType.VIDEO: "video",
    MediaType.AUDIO: "audio",
    MediaType.LOCATION: "location",
}

_EXTENSION_BY_KIND = {"photo": "jpg", "video": "mp4", "audio": "webm"}


@dataclass
class VaultItem:
    """A password-gated copy of a message's media reference.

    Attributes:
        id: Unique identifier (UUID hex).
        owner_id: Vault owner.
        source_media_ref: Media reference copied from the message.
        kind: ``photo``, ``video``, ``audio``, ``location`` or ``file``.
        file_name: Generated name, ``vault-<epoch ms>.<ext>``.
        metadata: Provenance — ``source``, ``sender_id``, ``message_id``.
        created_at: When the copy was made.
    """

    id: str
    owner_id: str
    source_media_ref: str
    kind: str = "file"
    file_name: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_row(self) -> tuple:
        return (
            self.id,
            self.owner_id,
            self.source_media_ref,
            self.kind,
            self.file_name,
            json.dumps(self.metadata),
            to_iso(self.created_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> VaultItem:
        return cls(
            id=row[0],
            owner_id=row[1],
            source_media_ref=row[2],
            kind=row[3],
            file_name=row[4],
            metadata=json.loads(row[5] or "{}"),
            created_at=from_iso(row[6]),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "source_media_ref": self.source_media_ref,
            "kind": self.kind,
            "file_name": self.file_name,
            "metadata": dict(self.metadata),
            "created_at": to_iso(self.created_at),
        }


def vault_kind(media_type: MediaType) -> str:
    return _KIND_BY_MEDIA.get(media_type, "file")


def vault_file_name(kind: str, created_at: datetime) -> str:
    extension = _EXTENSION_BY_KIND.get(kind, "bin")
    return f"vault-{int(created_at.timestamp() * 1000)}.{extension}"


def make_vault_item_id() -> str:
    return uuid.uuid4().hex
