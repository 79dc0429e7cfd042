"""Change-event fan-out for live conversation sync.

Consumers receive every committed insert/update/delete for the conversations
they subscribe to.  Delivery is at-least-once from the consumer's point of view
(a reconnecting client re-reads the conversation and may see an event again),
so consumers de-duplicate by ``(message_id, version)``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

logger = logging.getLogger(__name__)


class ChangeKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    conversation_key: str
    message_id: str
    version: int
    message: dict | None = None

    def to_dict(self) -> dict:
        return {
            "kind": str(self.kind),
            "conversation": self.conversation_key,
            "message_id": self.message_id,
            "version": self.version,
            "message": self.message,
        }


Listener = Callable[[ChangeEvent], None]

# Subscriptions under this key receive events for every conversation.
ALL_CONVERSATIONS = "*"


@dataclass(eq=False)
class Subscription:
    conversation_key: str
    callback: Listener

    def deliver(self, event: ChangeEvent) -> None:
        self.callback(event)


class EventHub:
    """Registers subscriptions and broadcasts change events to them."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}

    def subscribe(self, conversation_key: str, callback: Listener) -> Subscription:
        subscription = Subscription(conversation_key=conversation_key, callback=callback)
        self._subscriptions.setdefault(conversation_key, []).append(subscription)
        return subscription

    def subscribe_all(self, callback: Listener) -> Subscription:
        return self.subscribe(ALL_CONVERSATIONS, callback)

    def unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.conversation_key)
        if not subs:
            return
        try:
            subs.remove(subscription)
        except ValueError:
            return
        if not subs:
            self._subscriptions.pop(subscription.conversation_key, None)

    def subscriber_count(self, conversation_key: str) -> int:
        return len(self._subscriptions.get(conversation_key, []))

    def publish(self, event: ChangeEvent) -> None:
        """Deliver to conversation subscribers, then to global ones.

        The mutation behind *event* is already committed, so a failing
        subscriber is logged and skipped.
        """
        targets = [
            *self._subscriptions.get(event.conversation_key, []),
            *self._subscriptions.get(ALL_CONVERSATIONS, []),
        ]
        for subscription in targets:
            try:
                subscription.deliver(event)
            except Exception:
                logger.exception(
                    "Change subscriber failed: kind=%s message=%s",
                    event.kind,
                    event.message_id,
                )
