# src/speaktaskr/reminders/scheduler.py

from __future__ import annotations

"""
Reminder scheduler.

A small polling loop that:
- scans the cache for enabled reminders due inside the look-ahead window,
- records each (subject_id, trigger_time) key as fired,
- appends a Notification to the registry and pings the notification sink once per key.

The window is open on both ends: now < trigger_time < now + window.
Because the tick period is shorter than the window, a trigger_time is seen by
at least two ticks; the fired ledger is what keeps it from firing twice.
Ledger keys follow the subject when the cache swaps a client id for a server id.

With fire_overdue, a missed trigger_time is still fired once as long as it is
no older than overdue_horizon; older keys are pruned from the ledger.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..core.models import Entity, EntityKind, Event, Notification, NotificationKind, Task, format_timestamp, new_id, utcnow
from ..core.ports import NotificationSink
from ..sync.cache import EntityCache
from .ledger import FiredReminderLedger
from .registry import NotificationRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ReminderDispatch:
    """What the scheduler records and what it asks the sink to show."""

    notification: Notification
    sink_title: str
    sink_body: str
    dedupe_tag: str


def build_reminder(entity: Entity, *, now: datetime, app_name: str = "SpeakTaskr") -> ReminderDispatch:
    if isinstance(entity, Task):
        notification = Notification(
            id=new_id(),
            kind=NotificationKind.TASK_REMINDER,
            subject_id=entity.id,
            title="Task Reminder",
            message=entity.description,
            created_at=now,
            meta={
                "priority": entity.priority.value,
                "due_date": format_timestamp(entity.due_date),
                "trigger_time": format_timestamp(entity.reminder.trigger_time),
            },
        )
        return ReminderDispatch(
            notification=notification,
            sink_title=f"{app_name} - Task Reminder",
            sink_body=entity.description,
            dedupe_tag=f"task-{entity.id}",
        )

    if not isinstance(entity, Event):
        raise TypeError(f"cannot build a reminder for {type(entity).__name__}")
    body = f"{entity.title} at {entity.location}" if entity.location else entity.title
    notification = Notification(
        id=new_id(),
        kind=NotificationKind.EVENT_REMINDER,
        subject_id=entity.id,
        title="Event Reminder",
        message=entity.title,
        created_at=now,
        meta={
            "start_time": format_timestamp(entity.start_time),
            "location": entity.location,
            "trigger_time": format_timestamp(entity.reminder.trigger_time),
        },
    )
    return ReminderDispatch(
        notification=notification,
        sink_title=f"{app_name} - Event Reminder",
        sink_body=body,
        dedupe_tag=f"event-{entity.id}",
    )


class ReminderScheduler:
    def __init__(
        self,
        cache: EntityCache,
        registry: NotificationRegistry,
        sink: NotificationSink | None = None,
        *,
        interval_seconds: float = 30.0,
        window_seconds: float = 60.0,
        fire_overdue: bool = False,
        overdue_horizon_seconds: float = 86400.0,
        ledger: FiredReminderLedger | None = None,
        app_name: str = "SpeakTaskr",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._cache = cache
        self._registry = registry
        self._sink = sink
        self.interval_seconds = max(0.01, float(interval_seconds))
        self.window = timedelta(seconds=max(0.0, float(window_seconds)))
        self.fire_overdue = fire_overdue
        self.overdue_horizon = timedelta(seconds=max(0.0, float(overdue_horizon_seconds)))
        self.ledger = ledger if ledger is not None else FiredReminderLedger()
        self._app_name = app_name
        self._clock = clock
        cache.add_rekey_listener(self._on_rekey)

    def is_due(self, trigger_time: datetime, now: datetime) -> bool:
        if trigger_time >= now + self.window:
            return False
        if self.fire_overdue:
            return trigger_time > now - self.overdue_horizon
        return trigger_time > now

    def _prune_cutoff(self, now: datetime) -> datetime:
        # Keys at or before the cutoff can never be due again.
        return now - self.overdue_horizon if self.fire_overdue else now

    def _on_rekey(self, kind: EntityKind, old_id: str, new_id: str) -> None:
        moved = self.ledger.rekey(old_id, new_id)
        if moved:
            logger.debug("Moved %d fired reminder key(s) %s -> %s (%s)", moved, old_id, new_id, kind.value)

    def tick(self, now: datetime | None = None) -> list[Notification]:
        """
        One evaluation pass. Returns the notifications emitted by this pass.

        A failure while evaluating one entity is logged and does not stop the scan.
        """
        if now is None:
            now = self._clock()

        fired: list[Notification] = []
        for entity in [*self._cache.tasks(), *self._cache.events()]:
            try:
                notification = self._evaluate(entity, now)
            except Exception:
                logger.exception("Reminder evaluation failed for %s", getattr(entity, "id", "?"))
                continue
            if notification is not None:
                fired.append(notification)

        self.ledger.prune(before=self._prune_cutoff(now))

        if fired:
            logger.info("Reminder tick fired %d notification(s)", len(fired))
        return fired

    def _evaluate(self, entity: Entity, now: datetime) -> Notification | None:
        reminder = entity.reminder
        if not reminder.enabled or reminder.trigger_time is None:
            return None
        trigger = reminder.trigger_time
        if not self.is_due(trigger, now):
            return None

        key = (entity.id, trigger)
        if key in self.ledger:
            return None

        dispatch = build_reminder(entity, now=now, app_name=self._app_name)
        self.ledger.add(key)
        self._registry.append(dispatch.notification)
        logger.info("Reminder fired id=%s trigger_time=%s", entity.id, trigger.isoformat())

        if self._sink is not None:
            try:
                self._sink.notify(dispatch.sink_title, dispatch.sink_body, dispatch.dedupe_tag)
            except Exception:
                logger.warning("Notification sink failed for %s", dispatch.dedupe_tag, exc_info=True)

        return dispatch.notification

    async def run(self) -> None:
        """
        Tick once immediately, then every interval_seconds.

        To stop the scheduler, cancel the coroutine/task.
        """
        logger.info(
            "Reminder scheduler started interval=%.1fs window=%.0fs fire_overdue=%s",
            self.interval_seconds,
            self.window.total_seconds(),
            self.fire_overdue,
        )
        try:
            while True:
                try:
                    self.tick()
                except Exception:
                    logger.exception("Reminder tick failed")
                await asyncio.sleep(self.interval_seconds)
        finally:
            logger.info("Reminder scheduler stopped")
