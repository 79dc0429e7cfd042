"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import Mock

import pytest

from ephemera.messages.engine import LifecycleEngine
from ephemera.messages.events import EventHub
from ephemera.messages.store import MessageStore
from ephemera.notifications.router import NotificationRouter
from ephemera.presence.tracker import PresenceTracker

START = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)


class FakeClock:
    """Controllable UTC clock, callable like ``datetime.now``."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture(autouse=True)
def _reset_singletons():
    MessageStore._reset()
    NotificationRouter._reset()
    yield
    MessageStore._reset()
    NotificationRouter._reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def store(db_path: Path) -> MessageStore:
    return MessageStore(db_path=db_path)


@pytest.fixture
def hub() -> EventHub:
    return EventHub()


@pytest.fixture
def events(hub: EventHub) -> list:
    """Every change event published on the hub, in order."""
    seen: list = []
    hub.subscribe_all(seen.append)
    return seen


@pytest.fixture
def tracker(clock: FakeClock) -> PresenceTracker:
    return PresenceTracker(stale_seconds=30, typing_idle_seconds=3, clock=clock)


@pytest.fixture
def notifier() -> Mock:
    return Mock()


@pytest.fixture
def engine(
    store: MessageStore,
    hub: EventHub,
    tracker: PresenceTracker,
    notifier: Mock,
    clock: FakeClock,
) -> LifecycleEngine:
    return LifecycleEngine(
        store,
        hub,
        tracker,
        notifier,
        clock=clock,
        view_cap=2,
        ttl_hours=3,
        close_grace_seconds=10,
        preview_max_chars=50,
        max_attempts=3,
    )
