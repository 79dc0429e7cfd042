"""Presence — heartbeat fold, join/leave edges and last-seen labels."""

from ephemera.presence.last_seen import format_last_seen
from ephemera.presence.tracker import (
    PresenceEvent,
    PresenceEventKind,
    PresenceRecord,
    PresenceTracker,
)

__all__ = [
    "PresenceEvent",
    "PresenceEventKind",
    "PresenceRecord",
    "PresenceTracker",
    "format_last_seen",
]
