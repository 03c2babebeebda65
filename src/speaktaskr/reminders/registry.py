# src/speaktaskr/reminders/registry.py

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Any

from ..core.models import Notification, NotificationKind, new_id, utcnow

logger = logging.getLogger(__name__)


class NotificationRegistry:
    """
    In-memory log of emitted notifications, most recent first.

    Lifetime is independent of the EntityCache: a notification survives deletion
    of the task/event it refers to and an owner's cache being cleared.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._items: list[Notification] = []

    def __len__(self) -> int:
        return len(self._items)

    def append(self, notification: Notification) -> Notification:
        if self.get(notification.id) is not None:
            raise ValueError(f"notification id already registered: {notification.id}")
        self._items.insert(0, notification)
        logger.debug("Notification added id=%s kind=%s", notification.id, notification.kind.value)
        return notification

    def add(
        self,
        kind: NotificationKind,
        title: str,
        message: str,
        *,
        subject_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> Notification:
        return self.append(
            Notification(
                id=new_id(),
                kind=kind,
                subject_id=subject_id,
                title=title,
                message=message,
                created_at=self._clock(),
                meta=dict(meta or {}),
            )
        )

    def get(self, notification_id: str) -> Notification | None:
        for n in self._items:
            if n.id == notification_id:
                return n
        return None

    def list(self) -> list[Notification]:
        return list(self._items)

    def mark_read(self, notification_id: str) -> bool:
        for i, n in enumerate(self._items):
            if n.id == notification_id:
                if not n.read:
                    self._items[i] = replace(n, read=True)
                return True
        return False

    def mark_all_read(self) -> int:
        changed = 0
        for i, n in enumerate(self._items):
            if not n.read:
                self._items[i] = replace(n, read=True)
                changed += 1
        return changed

    def remove(self, notification_id: str) -> bool:
        before = len(self._items)
        self._items = [n for n in self._items if n.id != notification_id]
        return len(self._items) != before

    def clear_all(self) -> int:
        n = len(self._items)
        self._items = []
        return n

    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)
