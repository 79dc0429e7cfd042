"""DeliveryCoordinator — turns presence joins and inserts into delivery marks."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ephemera.messages.events import ChangeKind
from ephemera.presence.tracker import PresenceEventKind

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from ephemera.messages.engine import LifecycleEngine
    from ephemera.messages.events import ChangeEvent, EventHub, Subscription
    from ephemera.presence.tracker import PresenceEvent, PresenceTracker

logger = logging.getLogger(__name__)


class DeliveryCoordinator:
    """Marks messages delivered when their receiver is (or comes) online.

    - A receiver joining a conversation delivers everything pending from the
      partner in one batch.
    - An insert for a receiver who is online right now is delivered at once
      (covers a receiver who connected while the send was in flight).

    Work runs as background tasks; heartbeats and sends never wait on it.
    """

    def __init__(
        self,
        engine: LifecycleEngine,
        tracker: PresenceTracker,
        hub: EventHub,
    ) -> None:
        self._engine = engine
        self._tracker = tracker
        self._hub = hub
        self._subscription: Subscription | None = None
        self._pending: set[asyncio.Task] = set()

    def attach(self) -> None:
        if self._subscription is not None:
            return
        self._tracker.add_listener(self._on_presence)
        self._subscription = self._hub.subscribe_all(self._on_change)

    def detach(self) -> None:
        if self._subscription is None:
            return
        self._tracker.remove_listener(self._on_presence)
        self._hub.unsubscribe(self._subscription)
        self._subscription = None

    def _on_presence(self, event: PresenceEvent) -> None:
        if event.kind is not PresenceEventKind.JOIN:
            return
        self._spawn(
            self._engine.mark_pending_delivered(event.partner_id, event.participant_id),
            f"pending delivery for {event.participant_id}",
        )

    def _on_change(self, event: ChangeEvent) -> None:
        if event.kind is not ChangeKind.INSERT or event.message is None:
            return
        body = event.message
        if body["is_delivered"]:
            return
        receiver_id = body["receiver_id"]
        if self._tracker.is_online(receiver_id, body["sender_id"]):
            self._spawn(
                self._engine.mark_delivered([event.message_id], receiver_id),
                f"receipt of {event.message_id}",
            )

    def _spawn(self, work: Awaitable, label: str) -> None:
        task = asyncio.ensure_future(work)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._finished(t, label))

    def _finished(self, task: asyncio.Task, label: str) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Delivery marking failed (%s): %s", label, exc)

    async def drain(self) -> None:
        """Wait for in-flight delivery batches (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
