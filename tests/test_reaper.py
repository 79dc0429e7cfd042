"""Tests for ExpiryReaper and the background job scheduler."""

from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import pytest

from ephemera.delivery import DeliveryCoordinator
from ephemera.errors import NotFound, Unavailable
from ephemera.messages.events import ChangeKind
from ephemera.reaper.jobs import PRESENCE_JOB_ID, REAPER_JOB_ID, BackgroundJobs
from ephemera.reaper.reaper import ExpiryReaper, SweepReport

SNAP = "https://cdn.example/snap.jpg"


@pytest.fixture
def reaper(engine, store):
    return ExpiryReaper(engine, store)


async def test_ttl_message_survives_until_deadline(engine, reaper, clock) -> None:
    message = await engine.send("alice", "bob", "brief", auto_delete_mode="ttl3h")

    clock.advance(hours=2, minutes=59)
    assert (await reaper.sweep()).purged == 0

    clock.advance(minutes=1)
    report = await reaper.sweep()

    assert report == SweepReport(examined=1, purged=1, failed=0)
    with pytest.raises(NotFound):
        await engine.get(message.id)


async def test_saved_messages_are_never_reaped(engine, reaper, clock) -> None:
    message = await engine.send("alice", "bob", "keep", auto_delete_mode="ttl3h")
    await engine.toggle_saved(message.id, "bob")

    clock.advance(days=7)

    assert (await reaper.sweep()).examined == 0
    assert (await engine.get(message.id)).is_saved is True


async def test_ordinary_messages_stay(engine, reaper, clock) -> None:
    await engine.send("alice", "bob", "hello")
    await engine.mark_viewed_bulk([(await engine.conversation("alice", "bob"))[0].id], "bob")
    clock.advance(days=1)

    assert (await reaper.sweep()).purged == 0
    assert len(await engine.conversation("alice", "bob")) == 1


async def test_used_up_snapshot_waits_for_grace(engine, reaper, clock, events) -> None:
    snap = await engine.send("alice", "bob", "", "snapshot", SNAP)
    await engine.open_once(snap.id, "bob")
    await engine.open_once(snap.id, "bob")

    assert (await reaper.sweep()).purged == 0

    clock.advance(seconds=11)
    assert (await reaper.sweep()).purged == 1
    assert events[-1].kind is ChangeKind.DELETE
    assert events[-1].message_id == snap.id


async def test_close_inside_grace_beats_the_reaper(engine, reaper, clock) -> None:
    snap = await engine.send("alice", "bob", "", "snapshot", SNAP)
    await engine.open_once(snap.id, "bob")
    await engine.open_once(snap.id, "bob")
    clock.advance(seconds=9)
    await engine.close_once(snap.id, "bob")

    clock.advance(minutes=5)

    assert (await reaper.sweep()).purged == 0
    assert (await engine.get(snap.id)).is_saved is True


async def test_offline_snapshot_round_trip(
    engine, reaper, tracker, hub, notifier, clock
) -> None:
    """Sender snaps an offline receiver, who later opens it twice and leaves."""
    coordinator = DeliveryCoordinator(engine, tracker, hub)
    coordinator.attach()

    snap = await engine.send("alice", "bob", "", "snapshot", SNAP)
    assert snap.is_delivered is False
    notifier.dispatch.assert_called_once_with("bob", "Sent a snapshot", "alice")

    clock.advance(minutes=10)
    tracker.heartbeat("bob", "alice", in_chat_target="alice")
    await coordinator.drain()
    assert (await engine.get(snap.id)).is_delivered is True

    assert (await engine.open_once(snap.id, "bob")).view_count == 1
    assert (await engine.open_once(snap.id, "bob")).is_viewed is True

    clock.advance(minutes=1)
    await reaper.sweep_conversation("bob", "alice")

    assert await engine.conversation("alice", "bob") == []
    coordinator.detach()


async def test_sweep_conversation_only_touches_the_pair(engine, reaper, clock) -> None:
    ours = await engine.send("alice", "bob", "one", auto_delete_mode="ttl3h")
    theirs = await engine.send("carol", "dave", "two", auto_delete_mode="ttl3h")
    clock.advance(hours=4)

    report = await reaper.sweep_conversation("bob", "alice")

    assert report.purged == 1
    with pytest.raises(NotFound):
        await engine.get(ours.id)
    assert (await engine.get(theirs.id)).id == theirs.id


async def test_one_failure_does_not_stop_the_sweep(engine, reaper, clock, monkeypatch) -> None:
    first = await engine.send("alice", "bob", "one", auto_delete_mode="ttl3h")
    second = await engine.send("alice", "bob", "two", auto_delete_mode="ttl3h")
    clock.advance(hours=4)

    real_reap = engine.reap

    async def flaky_reap(message_id, now=None):
        if message_id == first.id:
            raise Unavailable("disk full")
        return await real_reap(message_id, now)

    monkeypatch.setattr(engine, "reap", flaky_reap)
    report = await reaper.sweep()

    assert report == SweepReport(examined=2, purged=1, failed=1)
    with pytest.raises(NotFound):
        await engine.get(second.id)


async def test_sweeps_are_idempotent(engine, reaper, clock) -> None:
    await engine.send("alice", "bob", "one", auto_delete_mode="ttl3h")
    clock.advance(hours=4)

    assert (await reaper.sweep()).purged == 1
    assert await reaper.sweep() == SweepReport()


async def test_run_scheduled_swallows_query_failure(engine) -> None:
    broken_store = Mock(list_reapable=AsyncMock(side_effect=OSError("no disk")))
    reaper = ExpiryReaper(engine, broken_store)

    assert await reaper.run_scheduled() is None


def test_sweep_report_to_dict() -> None:
    assert SweepReport(3, 2, 1).to_dict() == {"examined": 3, "purged": 2, "failed": 1}


# -- BackgroundJobs -------------------------------------------------------------


async def test_background_jobs_start_and_stop(reaper, tracker) -> None:
    jobs = BackgroundJobs(reaper, tracker, reaper_interval_seconds=60, presence_sweep_seconds=5)

    await jobs.start()
    try:
        assert jobs.running is True
        job_ids = {job.id for job in jobs._scheduler.get_jobs()}
        assert job_ids == {REAPER_JOB_ID, PRESENCE_JOB_ID}
    finally:
        await jobs.stop()

    assert jobs.running is False


async def test_presence_job_expires_stale_sessions(reaper, tracker, clock) -> None:
    jobs = BackgroundJobs(reaper, tracker)
    tracker.heartbeat("bob", "alice")
    clock.advance(seconds=31)

    await jobs._expire_presence()

    assert tracker.session_count("bob", "alice") == 0
