"""LifecycleEngine — every state transition a message can go through.

All mutations of one message id funnel through :meth:`LifecycleEngine._mutate`
or :meth:`LifecycleEngine._purge`, which hold that id's lock and write with a
version compare-and-swap.  The reaper and user actions share this path, so a
save and a purge of the same message can never both apply.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from ephemera.config import settings
from ephemera.db import storage_errors
from ephemera.errors import Expired, NotFound, Unavailable, ValidationError
from ephemera.messages.events import ChangeEvent, ChangeKind, EventHub
from ephemera.messages.locks import KeyedLocks
from ephemera.messages.models import (
    DEFAULT_PREVIEW_LABEL,
    MEDIA_PREVIEW_LABELS,
    AutoDeleteMode,
    MediaType,
    Message,
    OpenResult,
    SaveResult,
    make_message_id,
    ttl_deadline,
)

if TYPE_CHECKING:
    from ephemera.messages.store import MessageStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
# Returns the updated message, or None when the transition is a no-op.
Transition = Callable[[Message], Message | None]


class PresenceProbe(Protocol):
    def is_online(self, subject_id: str, viewer_id: str) -> bool:
        """Is *subject_id* online in their conversation with *viewer_id*?"""
        ...


class Notifier(Protocol):
    def dispatch(self, recipient_id: str, preview: str, sender_id: str) -> object:
        """Fire-and-forget push to an offline recipient."""
        ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_enum(enum_cls: type[StrEnum], value: object, label: str) -> StrEnum:
    try:
        return enum_cls(value)
    except ValueError as exc:
        msg = f"Unknown {label}: {value!r}"
        raise ValidationError(msg) from exc


class LifecycleEngine:
    """Validates and applies message transitions, then publishes change events.

    Args:
        store: MessageStore for persistence.
        hub: EventHub receiving insert/update/delete events.
        presence: Answers whether a receiver is online (delivery at send time).
        notifier: Receives offline-recipient pushes; never awaited.
        clock: Source of "now" (UTC). Defaults to the wall clock.
    """

    def __init__(
        self,
        store: MessageStore,
        hub: EventHub,
        presence: PresenceProbe | None = None,
        notifier: Notifier | None = None,
        *,
        clock: Clock | None = None,
        view_cap: int | None = None,
        ttl_hours: int | None = None,
        close_grace_seconds: int | None = None,
        preview_max_chars: int | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._store = store
        self._hub = hub
        self._presence = presence
        self._notifier = notifier
        self._clock = clock or _utcnow
        self._locks = KeyedLocks()
        self.view_cap = view_cap if view_cap is not None else settings.snapshot_view_cap
        self._ttl_hours = ttl_hours if ttl_hours is not None else settings.message_ttl_hours
        self._close_grace = timedelta(
            seconds=(
                close_grace_seconds
                if close_grace_seconds is not None
                else settings.close_grace_seconds
            )
        )
        self._preview_max_chars = preview_max_chars or settings.preview_max_chars
        self._max_attempts = max_attempts or settings.storage_retry_attempts

    def now(self) -> datetime:
        return self._clock()

    # -- Send ------------------------------------------------------------------

    async def send(
        self,
        sender_id: str,
        receiver_id: str,
        content: str | None,
        media_type: MediaType | str = MediaType.TEXT,
        media_ref: str | None = None,
        auto_delete_mode: AutoDeleteMode | str = AutoDeleteMode.NONE,
    ) -> Message:
        """Create a message. Stamps delivery if the receiver is online, else pushes."""
        media_type = _parse_enum(MediaType, media_type, "media type")
        mode = _parse_enum(AutoDeleteMode, auto_delete_mode, "auto-delete mode")
        text = (content or "").strip()
        media_ref = media_ref or None

        if not sender_id or not receiver_id or sender_id == receiver_id:
            msg = "A message needs two distinct participants"
            raise ValidationError(msg)
        if not text and media_ref is None:
            msg = "Message needs content or a media reference"
            raise ValidationError(msg)
        if media_type is not MediaType.TEXT and media_ref is None:
            msg = f"{media_type} messages need a media reference"
            raise ValidationError(msg)

        now = self.now()
        online = self._presence is not None and self._presence.is_online(receiver_id, sender_id)
        message = Message(
            id=make_message_id(),
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=text or " ",
            media_type=media_type,
            media_ref=media_ref,
            is_delivered=online,
            delivered_at=now if online else None,
            is_view_once=mode is AutoDeleteMode.VIEW,
            expires_at=ttl_deadline(now, self._ttl_hours) if mode is AutoDeleteMode.TTL3H else None,
            created_at=now,
        )
        if media_type is MediaType.SNAPSHOT:
            message.is_view_once = True
            message.view_count = 0

        async with storage_errors("send"):
            await self._store.add(message)
        logger.info(
            "Sent %s message %s (%s -> %s, delivered=%s, mode=%s)",
            media_type,
            message.id,
            sender_id,
            receiver_id,
            online,
            mode,
        )
        self._publish(ChangeKind.INSERT, message)

        if not online and self._notifier is not None:
            try:
                self._notifier.dispatch(receiver_id, self.preview_for(message), sender_id)
            except Exception:
                logger.exception("Could not schedule push for message %s", message.id)
        return message

    def preview_for(self, message: Message) -> str:
        """Short notification text for a message."""
        if message.media_type is MediaType.TEXT:
            text = message.content.strip()
            if len(text) > self._preview_max_chars:
                return text[: self._preview_max_chars] + "..."
            return text
        return MEDIA_PREVIEW_LABELS.get(message.media_type, DEFAULT_PREVIEW_LABEL)

    # -- Delivery and viewing --------------------------------------------------

    async def mark_delivered(self, message_ids: Iterable[str], receiver_id: str) -> list[str]:
        """Mark messages addressed to *receiver_id* as delivered.

        Idempotent: already-delivered, purged or foreign messages are skipped.
        Returns the ids that actually transitioned.
        """

        def deliver(message: Message) -> Message | None:
            if message.receiver_id != receiver_id or message.is_delivered:
                return None
            return replace(message, is_delivered=True, delivered_at=self.now())

        return await self._mutate_many(message_ids, deliver, "mark_delivered")

    async def mark_pending_delivered(self, sender_id: str, receiver_id: str) -> list[str]:
        """Deliver everything *sender_id* has waiting for *receiver_id*."""
        async with storage_errors("mark_pending_delivered"):
            pending = await self._store.list_undelivered(sender_id, receiver_id)
        if not pending:
            return []
        delivered = await self.mark_delivered([m.id for m in pending], receiver_id)
        logger.info(
            "Delivered %d pending message(s) %s -> %s", len(delivered), sender_id, receiver_id
        )
        return delivered

    async def mark_viewed_bulk(self, message_ids: Iterable[str], receiver_id: str) -> list[str]:
        """Mark ordinary unviewed messages as viewed. View-once messages are skipped."""

        def view(message: Message) -> Message | None:
            if (
                message.receiver_id != receiver_id
                or message.is_viewed
                or message.is_view_once
                or message.media_type is MediaType.SNAPSHOT
            ):
                return None
            return replace(message, is_viewed=True, viewed_at=self.now())

        return await self._mutate_many(message_ids, view, "mark_viewed_bulk")

    # -- View-once -------------------------------------------------------------

    async def open_once(self, message_id: str, requester_id: str) -> OpenResult:
        """Open a view-once message.

        The receiver's cap check and increment happen in one serialized step.
        The sender may always re-open their own message without counting.
        """

        def open_(message: Message) -> Message | None:
            if not message.is_view_once:
                msg = f"Message {message_id} is not view-once"
                raise ValidationError(msg)
            if requester_id == message.sender_id:
                return None
            if message.view_count >= self.view_cap and not message.is_saved:
                logger.info("Open refused, view cap reached: %s", message_id)
                raise Expired(f"Message {message_id} has expired")

            now = self.now()
            view_count = message.view_count + 1
            updated = replace(message, view_count=view_count, viewed_at=now)
            if view_count >= self.view_cap:
                updated.is_viewed = True
                if not message.is_saved and message.save_grace_until is None:
                    updated.save_grace_until = now + self._close_grace
            return updated

        message = await self._mutate(message_id, requester_id, open_, "open_once")
        logger.info("Opened view-once %s by %s (views=%d)", message_id, requester_id, message.view_count)
        return self._open_result(message)

    async def close_once(self, message_id: str, requester_id: str) -> Message:
        """Close a view-once message, keeping it in history when still allowed."""

        def close(message: Message) -> Message | None:
            if not message.is_view_once:
                msg = f"Message {message_id} is not view-once"
                raise ValidationError(msg)
            if requester_id != message.receiver_id or message.is_saved:
                return None
            if message.view_count >= self.view_cap and not self._in_grace(message):
                logger.info("Close after grace window, not saving: %s", message_id)
                return None
            return replace(message, is_saved=True, is_viewed=True, save_grace_until=None)

        return await self._mutate(message_id, requester_id, close, "close_once")

    def _in_grace(self, message: Message) -> bool:
        return message.save_grace_until is not None and self.now() <= message.save_grace_until

    @staticmethod
    def _open_result(message: Message) -> OpenResult:
        return OpenResult(
            message_id=message.id,
            content_ref=message.content_ref(),
            view_count=message.view_count,
            is_viewed=message.is_viewed,
        )

    # -- Save, react, delete ---------------------------------------------------

    async def toggle_saved(self, message_id: str, requester_id: str) -> SaveResult:
        """Flip ``is_saved``. Unsaving an already-expired message purges it."""
        async with storage_errors("toggle_saved"), self._locks.hold(message_id):
            for attempt in range(1, self._max_attempts + 1):
                current = await self._require(message_id, requester_id)
                try:
                    if not current.is_saved:
                        saved = replace(current, is_saved=True, save_grace_until=None)
                        await self._commit(current, saved)
                        logger.info("Saved message %s", message_id)
                        return SaveResult(saved=True, purged=False)

                    unsaved = replace(current, is_saved=False)
                    if unsaved.is_expiry_eligible(self.now()):
                        await self._delete_locked(current, "unsave")
                        return SaveResult(saved=False, purged=True)
                    await self._commit(current, unsaved)
                    logger.info("Unsaved message %s", message_id)
                    return SaveResult(saved=False, purged=False)
                except _Conflict:
                    logger.warning(
                        "Version conflict on %s during toggle_saved (attempt %d)",
                        message_id,
                        attempt,
                    )
        msg = f"Could not apply toggle_saved to {message_id}"
        raise Unavailable(msg)

    async def react(self, message_id: str, requester_id: str, emoji: str) -> Message:
        """Set the requester's reaction, replacing any previous one."""
        emoji = (emoji or "").strip()
        if not emoji:
            msg = "Reaction must not be empty"
            raise ValidationError(msg)

        def set_reaction(message: Message) -> Message | None:
            if message.reactions.get(requester_id) == emoji:
                return None
            return replace(message, reactions={**message.reactions, requester_id: emoji})

        return await self._mutate(message_id, requester_id, set_reaction, "react")

    async def delete(self, message_id: str, requester_id: str) -> None:
        """Purge a message. Either participant may delete any message."""
        async with storage_errors("delete"), self._locks.hold(message_id):
            current = await self._require(message_id, requester_id)
            await self._delete_locked(current, "delete")

    async def reap(self, message_id: str, now: datetime | None = None) -> bool:
        """Purge *message_id* if it is still reapable. Used by the reaper.

        Re-reads the message under its lock, so a save that won the race
        keeps the message alive.
        """
        now = now or self.now()
        async with storage_errors("reap"), self._locks.hold(message_id):
            current = await self._store.get_message(message_id)
            if current is None or not current.is_reapable(now):
                return False
            await self._delete_locked(current, "reap")
            return True

    # -- Reads -----------------------------------------------------------------

    async def get(self, message_id: str) -> Message:
        async with storage_errors("get"):
            message = await self._store.get_message(message_id)
        if message is None:
            raise NotFound(f"Message {message_id} not found")
        return message

    async def conversation(self, a: str, b: str) -> list[Message]:
        """Messages between two participants, ordered by ``created_at``."""
        async with storage_errors("conversation"):
            return await self._store.list_conversation(a, b)

    # -- Internal --------------------------------------------------------------

    async def _require(self, message_id: str, requester_id: str | None) -> Message:
        message = await self._store.get_message(message_id)
        if message is None or (requester_id is not None and not message.is_participant(requester_id)):
            raise NotFound(f"Message {message_id} not found")
        return message

    async def _commit(self, current: Message, updated: Message) -> Message:
        """CAS-write *updated* over *current* and publish. Caller holds the lock."""
        updated = replace(updated, version=current.version + 1)
        if not await self._store.compare_and_swap(updated, current.version):
            raise _Conflict
        self._publish(ChangeKind.UPDATE, updated)
        return updated

    async def _mutate(
        self,
        message_id: str,
        requester_id: str | None,
        transition: Transition,
        operation: str,
    ) -> Message:
        message, _changed = await self._apply(message_id, requester_id, transition, operation)
        return message

    async def _apply(
        self,
        message_id: str,
        requester_id: str | None,
        transition: Transition,
        operation: str,
    ) -> tuple[Message, bool]:
        """Apply *transition* under the message lock, retrying CAS conflicts.

        Returns the resulting message and whether anything was written.
        """
        async with storage_errors(operation), self._locks.hold(message_id):
            for attempt in range(1, self._max_attempts + 1):
                current = await self._require(message_id, requester_id)
                updated = transition(current)
                if updated is None:
                    return current, False
                try:
                    return await self._commit(current, updated), True
                except _Conflict:
                    logger.warning(
                        "Version conflict on %s during %s (attempt %d)",
                        message_id,
                        operation,
                        attempt,
                    )
        msg = f"Could not apply {operation} to {message_id}"
        raise Unavailable(msg)

    async def _mutate_many(
        self,
        message_ids: Iterable[str],
        transition: Transition,
        operation: str,
    ) -> list[str]:
        """Apply *transition* to each id independently; missing ids are skipped."""
        changed: list[str] = []
        for message_id in dict.fromkeys(message_ids):
            try:
                _message, written = await self._apply(message_id, None, transition, operation)
            except NotFound:
                continue
            if written:
                changed.append(message_id)
        return changed

    async def _delete_locked(self, message: Message, reason: str) -> None:
        if not await self._store.delete(message.id):
            raise NotFound(f"Message {message.id} not found")
        logger.info("Purged message %s (%s)", message.id, reason)
        # Deletes get a version past the last write so (id, version) stays unique.
        tombstone = replace(message, version=message.version + 1)
        self._publish(ChangeKind.DELETE, tombstone, include_body=False)

    def _publish(self, kind: ChangeKind, message: Message, *, include_body: bool = True) -> None:
        self._hub.publish(
            ChangeEvent(
                kind=kind,
                conversation_key=message.conversation_key,
                message_id=message.id,
                version=message.version,
                message=message.to_dict() if include_body else None,
            )
        )


class _Conflict(Exception):
    """The stored version moved between read and write."""
