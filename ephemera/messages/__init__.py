"""Messages — model, persistence, lifecycle transitions and change events."""

from ephemera.messages.engine import LifecycleEngine
from ephemera.messages.events import ChangeEvent, ChangeKind, EventHub
from ephemera.messages.models import AutoDeleteMode, MediaType, Message, OpenResult, SaveResult
from ephemera.messages.store import MessageStore

__all__ = [
    "AutoDeleteMode",
    "ChangeEvent",
    "ChangeKind",
    "EventHub",
    "LifecycleEngine",
    "MediaType",
    "Message",
    "MessageStore",
    "OpenResult",
    "SaveResult",
]
