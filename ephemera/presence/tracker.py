"""PresenceTracker — folds heartbeats into per-conversation presence.

Each participant may have several sessions (devices, tabs) in the same
conversation.  The tracker keeps only the latest heartbeat per session and
derives a single :class:`PresenceRecord` from the fresh ones.  Join and leave
are edges over that fold: join is the first fresh session after absence,
leave is the last session going away (explicit disconnect or going stale).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from ephemera.config import settings
from ephemera.messages.models import conversation_key
from ephemera.presence.last_seen import format_last_seen

logger = logging.getLogger(__name__)

DEFAULT_SESSION = "default"
# Last-seen stamps older than this are forgotten by expire().
LAST_SEEN_RETENTION = timedelta(days=30)


@dataclass(frozen=True)
class Heartbeat:
    session_id: str
    online_at: datetime
    in_chat_target: str | None
    typing: bool
    received_at: datetime


@dataclass(frozen=True)
class PresenceRecord:
    """Presence of one participant as seen by their conversation partner."""

    online: bool = False
    in_chat: bool = False
    typing: bool = False
    last_heartbeat: datetime | None = None


class PresenceEventKind(StrEnum):
    JOIN = "join"
    LEAVE = "leave"


@dataclass(frozen=True)
class PresenceEvent:
    kind: PresenceEventKind
    participant_id: str
    partner_id: str
    at: datetime


PresenceListener = Callable[[PresenceEvent], None]


class PresenceTracker:
    """In-memory presence fold, keyed by (conversation, participant, session).

    Args:
        stale_seconds: A session with no heartbeat for this long counts as gone.
        typing_idle_seconds: A typing flag older than this is ignored.
        clock: Source of "now" (UTC).
    """

    def __init__(
        self,
        *,
        stale_seconds: int | None = None,
        typing_idle_seconds: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._stale = timedelta(seconds=stale_seconds or settings.presence_stale_seconds)
        self._typing_idle = timedelta(
            seconds=typing_idle_seconds or settings.typing_idle_seconds
        )
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sessions: dict[tuple[str, str], dict[str, Heartbeat]] = {}
        self._partners: dict[tuple[str, str], str] = {}
        self._last_seen: dict[tuple[str, str], datetime] = {}
        self._listeners: list[PresenceListener] = []

    # -- Listeners -------------------------------------------------------------

    def add_listener(self, listener: PresenceListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: PresenceListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, kind: PresenceEventKind, participant_id: str, partner_id: str) -> None:
        event = PresenceEvent(kind, participant_id, partner_id, self._clock())
        logger.debug("Presence %s: %s in chat with %s", kind, participant_id, partner_id)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Presence listener failed on %s", kind)

    # -- Fold ------------------------------------------------------------------

    def _key(self, participant_id: str, partner_id: str) -> tuple[str, str]:
        return (conversation_key(participant_id, partner_id), participant_id)

    def _fresh(self, sessions: dict[str, Heartbeat], now: datetime) -> list[Heartbeat]:
        return [hb for hb in sessions.values() if now - hb.received_at < self._stale]

    def heartbeat(
        self,
        participant_id: str,
        partner_id: str,
        *,
        session_id: str = DEFAULT_SESSION,
        in_chat_target: str | None = None,
        typing: bool = False,
        online_at: datetime | None = None,
    ) -> PresenceRecord:
        """Record a heartbeat. Returns the participant's record as the partner sees it."""
        now = self._clock()
        key = self._key(participant_id, partner_id)
        sessions = self._sessions.setdefault(key, {})
        self._partners[key] = partner_id

        had_sessions = bool(sessions)
        was_present = bool(self._fresh(sessions, now))
        if had_sessions and not was_present:
            # Went stale before the sweeper noticed; close the old edge first.
            sessions.clear()
            self._emit(PresenceEventKind.LEAVE, participant_id, partner_id)

        sessions[session_id] = Heartbeat(
            session_id=session_id,
            online_at=online_at or now,
            in_chat_target=in_chat_target,
            typing=typing,
            received_at=now,
        )
        self._last_seen[key] = now
        if not was_present:
            self._emit(PresenceEventKind.JOIN, participant_id, partner_id)
        return self.observe(partner_id, participant_id)

    def disconnect(
        self,
        participant_id: str,
        partner_id: str,
        session_id: str = DEFAULT_SESSION,
    ) -> None:
        """Drop one session explicitly (tab closed, logout)."""
        key = self._key(participant_id, partner_id)
        sessions = self._sessions.get(key)
        if not sessions or sessions.pop(session_id, None) is None:
            return
        if not sessions:
            self._drop(key)
            self._emit(PresenceEventKind.LEAVE, participant_id, partner_id)

    def expire(self) -> list[PresenceEvent]:
        """Drop stale sessions and emit leave for participants left with none."""
        now = self._clock()
        left: list[tuple[str, str]] = []
        for key, sessions in list(self._sessions.items()):
            for session_id, hb in list(sessions.items()):
                if now - hb.received_at >= self._stale:
                    del sessions[session_id]
            if not sessions:
                participant_id = key[1]
                left.append((participant_id, self._partners[key]))
                self._drop(key)
        for key, stamp in list(self._last_seen.items()):
            if now - stamp >= LAST_SEEN_RETENTION and key not in self._sessions:
                del self._last_seen[key]

        events = []
        for participant_id, partner_id in left:
            self._emit(PresenceEventKind.LEAVE, participant_id, partner_id)
            events.append(PresenceEvent(PresenceEventKind.LEAVE, participant_id, partner_id, now))
        return events

    def _drop(self, key: tuple[str, str]) -> None:
        self._sessions.pop(key, None)
        self._partners.pop(key, None)

    # -- Queries ---------------------------------------------------------------

    def observe(self, viewer_id: str, subject_id: str) -> PresenceRecord:
        """How *subject_id* looks to *viewer_id* in their conversation."""
        now = self._clock()
        sessions = self._sessions.get(self._key(subject_id, viewer_id), {})
        fresh = self._fresh(sessions, now)
        if not fresh:
            return PresenceRecord(
                last_heartbeat=self._last_seen.get(self._key(subject_id, viewer_id))
            )
        latest = max(fresh, key=lambda hb: hb.received_at)
        return PresenceRecord(
            online=True,
            in_chat=any(hb.in_chat_target == viewer_id for hb in fresh),
            typing=any(hb.typing and now - hb.received_at < self._typing_idle for hb in fresh),
            last_heartbeat=latest.received_at,
        )

    def is_online(self, subject_id: str, viewer_id: str) -> bool:
        return self.observe(viewer_id, subject_id).online

    def last_seen_label(self, viewer_id: str, subject_id: str) -> str:
        if self.is_online(subject_id, viewer_id):
            return "Online"
        last_seen = self._last_seen.get(self._key(subject_id, viewer_id))
        return format_last_seen(last_seen, self._clock())

    def session_count(self, participant_id: str, partner_id: str) -> int:
        return len(self._sessions.get(self._key(participant_id, partner_id), {}))
