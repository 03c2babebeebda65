# tests/test_commands.py

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from speaktaskr.cli.bootstrap import create_initial_state, end_session, start_session
from speaktaskr.cli.commands import CommandRegistry, capture_text, registry, reminder_trigger
from speaktaskr.core.errors import ValidationError
from speaktaskr.core.models import EntityKind, NotificationKind, TaskStatus, build_event, build_task
from speaktaskr.core.state import AppState
from speaktaskr.llm.offline import OfflineDraftParser
from speaktaskr.reminders.sinks import LoggingNotificationSink
from speaktaskr.sync.memory_store import InMemoryDurableStore

from .fakes import OWNER, FakeParser, FlakyStore, settle


@pytest.mark.asyncio
async def test_registry_routes_commands_and_aliases(state: AppState) -> None:
    reg = CommandRegistry()

    async def handler(state, args, emit=None):
        return "ok:" + ",".join(args)

    reg.register("hello", handler, help_text="Say hi", aliases=["hi"])

    assert await reg.handle(state, "/hello a b") == "ok:a,b"
    assert await reg.handle(state, "/HI") == "ok:"
    assert "Unknown command" in (await reg.handle(state, "/nope"))
    assert "Empty command" in (await reg.handle(state, "/"))
    assert await reg.handle(state, "not a command") is None
    assert "/hello - Say hi" in reg.build_help()


@pytest.mark.asyncio
async def test_commands_require_login(state: AppState) -> None:
    assert "Not signed in" in (await registry.handle(state, "/tasks"))
    assert "Not signed in" in (await capture_text(state, "buy milk"))


@pytest.mark.asyncio
async def test_capture_creates_task_with_offline_parser(state: AppState) -> None:
    await start_session(state, OWNER)
    try:
        reply = await capture_text(state, "renew passport asap #admin")
        assert reply.startswith("Task created: renew passport asap")

        [task] = state.session.list(EntityKind.TASK)
        assert task.priority.value == "high"
        assert task.tags == ("admin",)

        listing = await registry.handle(state, "/tasks")
        assert task.id[:8] in listing
    finally:
        await end_session(state)


@pytest.mark.asyncio
async def test_capture_reports_sync_failure_but_keeps_entry(state: AppState, store: FlakyStore) -> None:
    await start_session(state, OWNER)
    try:
        store.fail_next["create"] = ConnectionError("offline")
        reply = await capture_text(state, "pay rent")

        assert "sync failed" in reply
        [task] = state.session.list(EntityKind.TASK)
        assert task.sync_state.value == "failed"
        assert "[not synced]" in (await registry.handle(state, "/tasks"))
    finally:
        await end_session(state)


@pytest.mark.asyncio
async def test_capture_rejects_invalid_event_draft(state: AppState) -> None:
    state.parser = FakeParser(EntityKind.EVENT, {"title": "lunch"})
    await start_session(state, OWNER)
    try:
        reply = await capture_text(state, "lunch sometime")
        assert reply.startswith("Could not create it")
        assert state.session.list(EntityKind.EVENT) == []
    finally:
        await end_session(state)


@pytest.mark.asyncio
async def test_done_and_delete_resolve_id_prefix(state: AppState) -> None:
    session = await start_session(state, OWNER)
    try:
        task = await session.create_task({"description": "file taxes"})

        assert await registry.handle(state, f"/done {task.id[:8]}") == "Marked completed"
        assert session.list(EntityKind.TASK)[0].status is TaskStatus.COMPLETED

        assert await registry.handle(state, f"/delete {task.id[:8]}") == "Deleted"
        assert session.list(EntityKind.TASK) == []
        assert "nothing matches" in (await registry.handle(state, "/done zzz"))
    finally:
        await end_session(state)


@pytest.mark.asyncio
async def test_remind_sets_and_clears_reminder(state: AppState) -> None:
    session = await start_session(state, OWNER)
    try:
        task = await session.create_task({"description": "call mom"})

        reply = await registry.handle(state, f"/remind {task.id} 15")
        assert reply.startswith("Reminder set for")
        assert session.list(EntityKind.TASK)[0].reminder.is_armed

        assert await registry.handle(state, f"/remind {task.id} off") == "Reminder disabled"
        assert not session.list(EntityKind.TASK)[0].reminder.enabled
    finally:
        await end_session(state)


@pytest.mark.asyncio
async def test_prioritize_is_premium_gated(state: AppState) -> None:
    session = await start_session(state, OWNER)
    try:
        await session.create_task({"description": "high one", "priority": "high"})
        await session.create_task({"description": "low one", "priority": "low"})

        assert "premium feature" in (await registry.handle(state, "/prioritize"))

        assert await registry.handle(state, "/premium on") == "Premium features unlocked."
        reply = await registry.handle(state, "/prioritize")
        assert reply.splitlines()[1].endswith("high one")
        assert [t.description for t in session.list(EntityKind.TASK)] == ["high one", "low one"]
    finally:
        await end_session(state)


@pytest.mark.asyncio
async def test_notification_commands(state: AppState) -> None:
    session = await start_session(state, OWNER)
    try:
        n = session.registry.add(NotificationKind.GENERIC, "Hello", "world")
        session.registry.add(NotificationKind.GENERIC, "Second", "one")

        assert "2 unread" in (await registry.handle(state, "/notifications"))
        assert await registry.handle(state, f"/read {n.id[:8]}") == "Marked as read."
        assert session.unread_count() == 1
        assert await registry.handle(state, "/read all") == "Marked 1 notification(s) as read."
        assert await registry.handle(state, f"/dismiss {n.id}") == "Dismissed."
        assert await registry.handle(state, "/clear") == "Cleared 1 notification(s)."
    finally:
        await end_session(state)


@pytest.mark.asyncio
async def test_login_switches_owner_and_logout_clears(state: AppState, store: FlakyStore) -> None:
    await store.create(EntityKind.TASK, {"user_id": "owner-2", "description": "theirs"})
    await start_session(state, OWNER)
    try:
        reply = await registry.handle(state, "/login owner-2")
        assert reply == "Signed in as owner-2: 1 task(s), 0 event(s)."
        assert store.subscriber_count == 2

        assert (await registry.handle(state, "/logout")).startswith("Signed out owner-2")
        assert state.session is None
        assert store.subscriber_count == 0
    finally:
        await end_session(state)


@pytest.mark.asyncio
async def test_resync_restores_lost_feeds(state: AppState, store: FlakyStore) -> None:
    session = await start_session(state, OWNER)
    try:
        store.drop_subscriptions()
        await settle()
        assert session.lost_feeds
        assert any(n.title == "Sync paused" for n in session.notifications())

        emitted: list[str] = []
        assert await registry.handle(state, "/resync", emit=emitted.append) == "Live updates reconnected."
        assert session.lost_feeds == set()
        assert emitted
    finally:
        await end_session(state)


def test_initial_state_falls_back_to_offline_parser(settings) -> None:
    state = create_initial_state(settings=settings)

    assert isinstance(state.parser, OfflineDraftParser)
    assert isinstance(state.sink, LoggingNotificationSink)
    assert isinstance(state.store, InMemoryDurableStore)
    assert state.session is None


@pytest.mark.asyncio
async def test_done_toggles_and_reopen_marks_pending(state: AppState) -> None:
    session = await start_session(state, OWNER)
    try:
        task = await session.create_task({"description": "water plants"})

        assert await registry.handle(state, f"/done {task.id}") == "Marked completed"
        assert await registry.handle(state, f"/done {task.id}") == "Reopened"
        assert session.list(EntityKind.TASK)[0].status is TaskStatus.PENDING

        await registry.handle(state, f"/done {task.id}")
        assert await registry.handle(state, f"/undo {task.id}") == "Reopened"
        assert session.list(EntityKind.TASK)[0].status is TaskStatus.PENDING
    finally:
        await end_session(state)


_DUE = datetime(2030, 5, 10, 16, 0, tzinfo=UTC)
_NOW = datetime(2030, 5, 1, 8, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    ("spec", "expected"),
    [
        ("-15m", _DUE - timedelta(minutes=15)),
        ("-30m", _DUE - timedelta(minutes=30)),
        ("-1h", _DUE - timedelta(hours=1)),
        ("-2h", _DUE - timedelta(hours=2)),
        ("-1d", _DUE - timedelta(days=1)),
        ("+10m", _NOW + timedelta(minutes=10)),
        ("15", _NOW + timedelta(minutes=15)),
    ],
)
def test_reminder_offsets_count_from_due_date_or_now(spec: str, expected: datetime) -> None:
    task = build_task({"description": "pay rent", "due_date": _DUE}, owner_id=OWNER)

    assert reminder_trigger(spec, task, now=_NOW) == expected


def test_reminder_offsets_use_event_start_time() -> None:
    event = build_event({"title": "Dentist", "start_time": _DUE}, owner_id=OWNER)

    assert reminder_trigger("-1h", event, now=_NOW) == _DUE - timedelta(hours=1)


def test_clock_time_reminder_rolls_to_previous_day() -> None:
    # Local wall-clock times, as typed at the console.
    due = datetime(2030, 5, 10, 18, 0).astimezone()
    task = build_task({"description": "pay rent", "due_date": due}, owner_id=OWNER)

    assert reminder_trigger("09:00", task, now=_NOW) == datetime(2030, 5, 10, 9, 0).astimezone()
    assert reminder_trigger("19:30", task, now=_NOW) == datetime(2030, 5, 9, 19, 30).astimezone()
    assert reminder_trigger("18:00", task, now=_NOW) == datetime(2030, 5, 9, 18, 0).astimezone()


@pytest.mark.parametrize("spec", ["-15m", "09:00"])
def test_relative_reminder_needs_a_reference_time(spec: str) -> None:
    task = build_task({"description": "someday"}, owner_id=OWNER)

    with pytest.raises(ValidationError):
        reminder_trigger(spec, task, now=_NOW)


@pytest.mark.parametrize("spec", ["soon", "25:00", "-3w"])
def test_unrecognized_reminder_times_are_rejected(spec: str) -> None:
    task = build_task({"description": "pay rent", "due_date": _DUE}, owner_id=OWNER)

    with pytest.raises(ValidationError):
        reminder_trigger(spec, task, now=_NOW)


@pytest.mark.asyncio
async def test_remind_before_due_date_command(state: AppState) -> None:
    session = await start_session(state, OWNER)
    try:
        task = await session.create_task({"description": "pay rent", "due_date": _DUE})
        undated = await session.create_task({"description": "someday"})

        reply = await registry.handle(state, f"/remind {task.id} -1h")
        assert reply.startswith("Reminder set for")
        current = session.cache.get(EntityKind.TASK, task.id)
        assert current is not None
        assert current.reminder.trigger_time == _DUE - timedelta(hours=1)

        reply = await registry.handle(state, f"/remind {undated.id} -15m")
        assert reply.startswith("Cannot set that reminder")
        assert not session.cache.get(EntityKind.TASK, undated.id).reminder.enabled
    finally:
        await end_session(state)


@pytest.mark.asyncio
async def test_login_load_failure_returns_notice(state: AppState, store: FlakyStore) -> None:
    store.fail_next["list"] = ConnectionError("offline")

    reply = await registry.handle(state, "/login owner-2")

    assert reply.startswith("Could not sign in as owner-2")
    assert state.session is None
    assert store.subscriber_count == 0
