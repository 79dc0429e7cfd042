"""Runtime wiring — builds every component and owns their lifecycle."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from ephemera.config import settings
from ephemera.delivery import DeliveryCoordinator
from ephemera.messages.engine import LifecycleEngine
from ephemera.messages.events import EventHub
from ephemera.messages.store import MessageStore
from ephemera.notifications.dispatcher import NotificationDispatcher
from ephemera.notifications.router import NotificationRouter
from ephemera.notifications.webpush_channel import WebPushChannel
from ephemera.presence.tracker import PresenceTracker
from ephemera.profiles import ProfileServiceClient
from ephemera.reaper.jobs import BackgroundJobs
from ephemera.reaper.reaper import ExpiryReaper
from ephemera.vault.store import VaultStore
from ephemera.vault.transfer import VaultTransfer

if TYPE_CHECKING:
    from pathlib import Path

    from ephemera.messages.models import Message
    from ephemera.profiles import CredentialVerifier, ProfileDirectory

logger = logging.getLogger(__name__)


class _VaultDisabled:
    """Credential verifier used when no profile service is configured."""

    async def verify_vault_password(self, owner_id: str, candidate: str) -> bool:
        logger.warning("Vault verification requested but PROFILE_SERVICE_URL is unset")
        return False


@dataclass
class Runtime:
    """All live components of one engine instance."""

    store: MessageStore
    hub: EventHub
    tracker: PresenceTracker
    router: NotificationRouter
    notifier: NotificationDispatcher
    engine: LifecycleEngine
    reaper: ExpiryReaper
    vault: VaultTransfer
    delivery: DeliveryCoordinator
    jobs: BackgroundJobs
    closers: tuple = ()

    async def start(self) -> None:
        self.delivery.attach()
        await self.jobs.start()
        logger.info("Ephemera runtime started")

    async def stop(self) -> None:
        await self.jobs.stop()
        self.delivery.detach()
        await self.delivery.drain()
        await self.notifier.drain()
        for close in self.closers:
            await close()
        logger.info("Ephemera runtime stopped")

    async def open_conversation(self, viewer_id: str, partner_id: str) -> list[Message]:
        """Open a conversation: sweep it, mark received messages viewed, return it."""
        try:
            await self.reaper.sweep_conversation(viewer_id, partner_id)
        except Exception:
            logger.exception("Conversation sweep failed (%s, %s)", viewer_id, partner_id)

        messages = await self.engine.conversation(viewer_id, partner_id)
        unviewed = [m.id for m in messages if m.receiver_id == viewer_id and not m.is_viewed]
        if unviewed and await self.engine.mark_viewed_bulk(unviewed, viewer_id):
            messages = await self.engine.conversation(viewer_id, partner_id)
        return messages


def build_runtime(
    *,
    db_path: Path | None = None,
    clock: Callable[[], datetime] | None = None,
    router: NotificationRouter | None = None,
    profiles: ProfileDirectory | None = None,
    verifier: CredentialVerifier | None = None,
) -> Runtime:
    """Assemble the runtime from settings. Explicit arguments win (tests)."""
    clock = clock or (lambda: datetime.now(UTC))
    closers: list = []

    if router is None:
        router = NotificationRouter.get()
        if settings.push_relay_url and "webpush" not in router.list_channels():
            channel = WebPushChannel(settings.push_relay_url, settings.push_relay_token)
            router.register_channel(channel)
            router.set_default_channel(channel.name)
            closers.append(channel.close)

    if settings.profile_service_url and (profiles is None or verifier is None):
        client = ProfileServiceClient(settings.profile_service_url)
        profiles = profiles or client
        verifier = verifier or client
        closers.append(client.close)

    store = MessageStore(db_path=db_path) if db_path else MessageStore.get()
    hub = EventHub()
    tracker = PresenceTracker(clock=clock)
    notifier = NotificationDispatcher(router, profiles)
    engine = LifecycleEngine(store, hub, tracker, notifier, clock=clock)
    reaper = ExpiryReaper(engine, store)
    vault = VaultTransfer(engine, VaultStore(db_path=db_path), verifier or _VaultDisabled())
    delivery = DeliveryCoordinator(engine, tracker, hub)
    jobs = BackgroundJobs(reaper, tracker)

    logger.info(
        "Runtime built: db=%s channels=%s",
        db_path or settings.database_path,
        router.list_channels(),
    )
    return Runtime(
        store=store,
        hub=hub,
        tracker=tracker,
        router=router,
        notifier=notifier,
        engine=engine,
        reaper=reaper,
        vault=vault,
        delivery=delivery,
        jobs=jobs,
        closers=tuple(closers),
    )
