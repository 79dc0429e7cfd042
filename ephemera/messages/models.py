"""Message data model and the expiry predicate."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum


class MediaType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    LOCATION = "location"
    SNAPSHOT = "snapshot"


class AutoDeleteMode(StrEnum):
    NONE = "none"
    VIEW = "view"
    TTL3H = "ttl3h"


# Notification previews for non-text sends
MEDIA_PREVIEW_LABELS: dict[MediaType, str] = {
    MediaType.SNAPSHOT: "Sent a snapshot",
    MediaType.LOCATION: "Shared location",
    MediaType.IMAGE: "Sent an image",
    MediaType.VIDEO: "Sent a video",
}
DEFAULT_PREVIEW_LABEL = "Sent a message"


def to_iso(value: datetime | None) -> str | None:
    """Fixed-width UTC ISO 8601, so stored timestamps compare lexically."""
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def conversation_key(a: str, b: str) -> str:
    """Order-independent key for a two-party conversation."""
    first, second = sorted((a, b))
    return f"{first}:{second}"


@dataclass
class Message:
    """A single message in a two-party conversation.

    Attributes:
        id: Unique identifier (UUID hex).
        sender_id: Participant who sent the message.
        receiver_id: Participant the message is addressed to.
        content: Text payload, never empty (a blank send becomes ``" "``).
        media_type: One of :class:`MediaType`.
        media_ref: External reference to binary content, if any.
        view_count: Receiver opens of a view-once message. Never decreases.
        is_view_once: Purge after the view cap unless saved.
        expires_at: Time-to-live deadline, if the send used ``ttl3h``.
        reactions: Participant id → emoji, one per participant.
        save_grace_until: Deadline for a late close to still save a
            view-once message that reached its cap.
        version: Incremented on every committed update.
    """

    id: str
    sender_id: str
    receiver_id: str
    content: str
    media_type: MediaType = MediaType.TEXT
    media_ref: str | None = None
    is_delivered: bool = False
    delivered_at: datetime | None = None
    is_viewed: bool = False
    viewed_at: datetime | None = None
    view_count: int = 0
    is_saved: bool = False
    is_view_once: bool = False
    expires_at: datetime | None = None
    reactions: dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    save_grace_until: datetime | None = None
    version: int = 1

    @property
    def conversation_key(self) -> str:
        return conversation_key(self.sender_id, self.receiver_id)

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.sender_id, self.receiver_id)

    def content_ref(self) -> str:
        """What an open hands back: the media reference, or the text itself."""
        return self.media_ref if self.media_ref is not None else self.content

    # -- Expiry ----------------------------------------------------------------

    def ttl_elapsed(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_expiry_eligible(self, now: datetime) -> bool:
        """Eligibility as judged when a participant unsaves the message."""
        if self.is_saved:
            return False
        return self.ttl_elapsed(now) or (self.is_view_once and self.is_viewed)

    def is_reapable(self, now: datetime) -> bool:
        """Eligibility as judged by the reaper (honours the close grace window)."""
        if self.is_saved:
            return False
        if self.ttl_elapsed(now):
            return True
        if not (self.is_view_once and self.is_viewed):
            return False
        return self.save_grace_until is None or self.save_grace_until < now

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``messages`` column order."""
        return (
            self.id,
            self.sender_id,
            self.receiver_id,
            self.content,
            str(self.media_type),
            self.media_ref,
            int(self.is_delivered),
            to_iso(self.delivered_at),
            int(self.is_viewed),
            to_iso(self.viewed_at),
            self.view_count,
            int(self.is_saved),
            int(self.is_view_once),
            to_iso(self.expires_at),
            json.dumps(self.reactions),
            to_iso(self.created_at),
            to_iso(self.save_grace_until),
            self.version,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Message:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            sender_id=row[1],
            receiver_id=row[2],
            content=row[3],
            media_type=MediaType(row[4]),
            media_ref=row[5],
            is_delivered=bool(row[6]),
            delivered_at=from_iso(row[7]),
            is_viewed=bool(row[8]),
            viewed_at=from_iso(row[9]),
            view_count=row[10],
            is_saved=bool(row[11]),
            is_view_once=bool(row[12]),
            expires_at=from_iso(row[13]),
            reactions=json.loads(row[14] or "{}"),
            created_at=from_iso(row[15]),
            save_grace_until=from_iso(row[16]),
            version=row[17],
        )

    def to_dict(self) -> dict:
        """JSON-friendly representation for the HTTP surface and change events."""
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "content": self.content,
            "media_type": str(self.media_type),
            "media_ref": self.media_ref,
            "is_delivered": self.is_delivered,
            "delivered_at": to_iso(self.delivered_at),
            "is_viewed": self.is_viewed,
            "viewed_at": to_iso(self.viewed_at),
            "view_count": self.view_count,
            "is_saved": self.is_saved,
            "is_view_once": self.is_view_once,
            "expires_at": to_iso(self.expires_at),
            "reactions": dict(self.reactions),
            "created_at": to_iso(self.created_at),
            "version": self.version,
        }


@dataclass(frozen=True)
class OpenResult:
    """Outcome of a successful view-once open."""

    message_id: str
    content_ref: str
    view_count: int
    is_viewed: bool


@dataclass(frozen=True)
class SaveResult:
    saved: bool
    purged: bool


def make_message_id() -> str:
    """Generate a new message ID."""
    return uuid.uuid4().hex


def ttl_deadline(created_at: datetime, hours: int) -> datetime:
    return created_at + timedelta(hours=hours)
