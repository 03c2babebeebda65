# tests/test_session.py

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from speaktaskr.core.errors import DurableOperationFailed, SubscriptionLost
from speaktaskr.core.models import EntityKind, NotificationKind
from speaktaskr.sync.session import SyncSession

from .fakes import OWNER, T0, FakeClock, FlakyStore, RecordingSink, settle


def _session(store: FlakyStore, clock: FakeClock, sink: RecordingSink | None = None) -> SyncSession:
    return SyncSession(store, OWNER, sink=sink, interval_seconds=3600, clock=clock)


@pytest.mark.asyncio
async def test_start_and_close_release_subscriptions(store: FlakyStore, clock: FakeClock) -> None:
    session = _session(store, clock)

    await session.start()
    assert session.started
    assert store.subscriber_count == 2

    await session.close()
    assert not session.started
    assert store.subscriber_count == 0
    assert session.cache.owner_id is None


@pytest.mark.asyncio
async def test_start_loads_existing_records(store: FlakyStore, clock: FakeClock) -> None:
    await store.create(EntityKind.TASK, {"user_id": OWNER, "description": "already there"})

    async with _session(store, clock) as session:
        assert [t.description for t in session.list(EntityKind.TASK)] == ["already there"]


@pytest.mark.asyncio
async def test_failed_load_releases_subscriptions(store: FlakyStore, clock: FakeClock) -> None:
    session = _session(store, clock)
    store.fail_next["list"] = ConnectionError("offline")

    with pytest.raises(DurableOperationFailed):
        await session.start()

    assert store.subscriber_count == 0
    assert not session.started


@pytest.mark.asyncio
async def test_remote_changes_reach_the_cache(store: FlakyStore, clock: FakeClock) -> None:
    async with _session(store, clock) as session:
        # Another device writes straight to the store.
        await store.create(EntityKind.TASK, {"task_id": "remote-1", "user_id": OWNER, "description": "from phone"})
        await settle()
        assert [t.id for t in session.list(EntityKind.TASK)] == ["remote-1"]

        await store.update(EntityKind.TASK, "remote-1", {"status": "completed"})
        await settle()
        assert session.list(EntityKind.TASK)[0].status.value == "completed"

        await store.delete(EntityKind.TASK, "remote-1")
        await settle()
        assert session.list(EntityKind.TASK) == []


@pytest.mark.asyncio
async def test_own_writes_echoed_by_feed_do_not_duplicate(store: FlakyStore, clock: FakeClock) -> None:
    async with _session(store, clock) as session:
        task = await session.create_task({"description": "buy milk"})
        event = await session.create_event({"title": "standup", "start_time": T0 + timedelta(hours=1)})
        await settle()

        assert [t.id for t in session.list(EntityKind.TASK)] == [task.id]
        assert [e.id for e in session.list(EntityKind.EVENT)] == [event.id]


@pytest.mark.asyncio
async def test_lost_feed_is_reported_and_resubscribe_restores(store: FlakyStore, clock: FakeClock) -> None:
    async with _session(store, clock) as session:
        errors = []
        session.cache.add_error_listener(errors.append)

        store.drop_subscriptions("network down")
        await settle()

        assert session.lost_feeds == {EntityKind.TASK, EntityKind.EVENT}
        assert len(errors) == 2
        assert all(isinstance(e, SubscriptionLost) for e in errors)

        # Written while the feed was down: only the reload picks it up.
        await store.create(EntityKind.TASK, {"task_id": "missed", "user_id": OWNER, "description": "missed"})

        await session.resubscribe()
        assert session.lost_feeds == set()
        assert store.subscriber_count == 2
        assert [t.id for t in session.list(EntityKind.TASK)] == ["missed"]


@pytest.mark.asyncio
async def test_scheduler_runs_inside_session(store: FlakyStore, clock: FakeClock, sink: RecordingSink) -> None:
    trigger = T0 + timedelta(seconds=20)
    await store.create(
        EntityKind.TASK,
        {
            "task_id": "t1",
            "user_id": OWNER,
            "description": "stretch",
            "reminder_settings": {"enabled": True, "time": trigger.isoformat()},
        },
    )

    async with _session(store, clock, sink) as session:
        await settle()
        [n] = session.notifications()
        assert n.kind is NotificationKind.TASK_REMINDER
        assert session.unread_count() == 1
        assert sink.calls[0].title == "SpeakTaskr - Task Reminder"

    # Registry outlives the cache.
    assert session.unread_count() == 1


@pytest.mark.asyncio
async def test_reminder_fires_once_when_feed_echo_beats_create_response(
    store: FlakyStore, clock: FakeClock, sink: RecordingSink
) -> None:
    trigger = T0 + timedelta(seconds=40)
    async with _session(store, clock, sink) as session:
        store.server_ids = True
        store.ack_gate = asyncio.Event()

        pending = asyncio.create_task(
            session.create_task({"description": "feed cat", "reminder": {"enabled": True, "trigger_time": trigger}})
        )
        await settle()

        [visible] = session.list(EntityKind.TASK)
        assert len(session.scheduler.tick()) == 1

        store.ack_gate.set()
        created = await pending
        await settle()
        clock.advance(30)

        assert created.id == visible.id
        assert [t.id for t in session.list(EntityKind.TASK)] == [created.id]
        assert session.scheduler.tick() == []
        assert len(session.notifications()) == 1
        assert len(sink.calls) == 1


@pytest.mark.asyncio
async def test_reminder_fires_once_when_create_response_beats_feed_echo(
    store: FlakyStore, clock: FakeClock, sink: RecordingSink
) -> None:
    trigger = T0 + timedelta(seconds=40)
    async with _session(store, clock, sink) as session:
        store.server_ids = True
        store.gate = asyncio.Event()

        pending = asyncio.create_task(
            session.create_task({"description": "feed cat", "reminder": {"enabled": True, "trigger_time": trigger}})
        )
        await asyncio.sleep(0)
        [optimistic] = session.list(EntityKind.TASK)
        assert len(session.scheduler.tick()) == 1

        store.gate.set()
        created = await pending
        await settle()
        clock.advance(30)

        assert created.id != optimistic.id
        assert [t.id for t in session.list(EntityKind.TASK)] == [created.id]
        assert session.scheduler.tick() == []
        assert len(session.notifications()) == 1
        assert len(sink.calls) == 1
