# tests/test_notification_registry.py

from __future__ import annotations

import pytest

from speaktaskr.core.models import NotificationKind
from speaktaskr.reminders.registry import NotificationRegistry

from .fakes import FakeClock


def test_add_is_most_recent_first_and_unread() -> None:
    registry = NotificationRegistry(clock=FakeClock())
    first = registry.add(NotificationKind.GENERIC, "one", "first")
    second = registry.add(NotificationKind.TASK_REMINDER, "two", "second", subject_id="t1")

    assert [n.id for n in registry.list()] == [second.id, first.id]
    assert registry.unread_count() == 2
    assert second.subject_id == "t1"
    assert len(registry) == 2


def test_duplicate_id_is_rejected() -> None:
    registry = NotificationRegistry()
    n = registry.add(NotificationKind.GENERIC, "x", "y")
    with pytest.raises(ValueError):
        registry.append(n)


def test_mark_read_and_mark_all_read() -> None:
    registry = NotificationRegistry()
    a = registry.add(NotificationKind.GENERIC, "a", "a")
    registry.add(NotificationKind.GENERIC, "b", "b")
    registry.add(NotificationKind.GENERIC, "c", "c")

    assert registry.mark_read(a.id) is True
    assert registry.mark_read(a.id) is True
    assert registry.mark_read("missing") is False
    assert registry.unread_count() == 2

    assert registry.mark_all_read() == 2
    assert registry.unread_count() == 0
    assert registry.mark_all_read() == 0


def test_remove_and_clear_all() -> None:
    registry = NotificationRegistry()
    a = registry.add(NotificationKind.GENERIC, "a", "a")
    registry.add(NotificationKind.GENERIC, "b", "b")

    assert registry.remove(a.id) is True
    assert registry.remove(a.id) is False
    assert registry.get(a.id) is None
    assert registry.clear_all() == 1
    assert registry.list() == []
