# src/speaktaskr/sync/session.py

from __future__ import annotations

"""
Owner-scoped sync session.

One SyncSession owns, for exactly one signed-in owner:
- the EntityCache and its Reconciler,
- one change-feed subscription per collection (each drained by a pump task),
- the ReminderScheduler task,
- the NotificationRegistry.

start() acquires the feeds and the timer; close() releases them deterministically
and clears the cache. The registry is left intact on close (its lifetime is not
tied to the cache). Use it as an async context manager:

    async with SyncSession(store, "owner-1", sink=sink) as session:
        await session.create(EntityKind.TASK, {"description": "buy milk"})
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, cast

from ..core.errors import SubscriptionLost
from ..core.feed import ChangeSubscription
from ..core.models import Entity, EntityKind, Event, Notification, Task, utcnow
from ..core.ports import DurableStore, NotificationSink
from ..reminders.ledger import FiredReminderLedger
from ..reminders.registry import NotificationRegistry
from ..reminders.scheduler import ReminderScheduler
from .cache import EntityCache
from .reconciler import Reconciler

logger = logging.getLogger(__name__)


class SyncSession:
    def __init__(
        self,
        store: DurableStore,
        owner_id: str,
        *,
        sink: NotificationSink | None = None,
        ledger: FiredReminderLedger | None = None,
        interval_seconds: float = 30.0,
        window_seconds: float = 60.0,
        fire_overdue: bool = False,
        overdue_horizon_seconds: float = 86400.0,
        app_name: str = "SpeakTaskr",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not owner_id:
            raise ValueError("owner_id is required")
        self.owner_id = owner_id
        self.store = store
        self.cache = EntityCache(store, owner_id, clock=clock)
        self.reconciler = Reconciler(self.cache)
        self.registry = NotificationRegistry(clock=clock)
        self.scheduler = ReminderScheduler(
            self.cache,
            self.registry,
            sink,
            interval_seconds=interval_seconds,
            window_seconds=window_seconds,
            fire_overdue=fire_overdue,
            overdue_horizon_seconds=overdue_horizon_seconds,
            ledger=ledger,
            app_name=app_name,
            clock=clock,
        )

        self.lost_feeds: set[EntityKind] = set()
        self._subscriptions: dict[EntityKind, ChangeSubscription] = {}
        self._pumps: dict[EntityKind, asyncio.Task[None]] = {}
        self._scheduler_task: asyncio.Task[None] | None = None
        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        store: DurableStore,
        owner_id: str,
        *,
        sink: NotificationSink | None = None,
    ) -> SyncSession:
        ledger_path = getattr(settings, "fired_ledger_path", None)
        return cls(
            store,
            owner_id,
            sink=sink,
            ledger=FiredReminderLedger(ledger_path),
            interval_seconds=float(getattr(settings, "reminder_interval_seconds", 30.0)),
            window_seconds=float(getattr(settings, "reminder_window_seconds", 60.0)),
            fire_overdue=bool(getattr(settings, "reminder_fire_overdue", False)),
            overdue_horizon_seconds=float(getattr(settings, "reminder_overdue_horizon_seconds", 86400.0)),
            app_name=str(getattr(settings, "app_name", "SpeakTaskr")),
        )

    @property
    def started(self) -> bool:
        return self._started

    # ---- lifecycle ----

    async def start(self, *, load: bool = True) -> None:
        if self._started:
            return
        # Feeds first, then the snapshot: changes committed during load are not missed.
        for kind in EntityKind:
            self._subscribe(kind)
        if load:
            try:
                await self.cache.load()
            except BaseException:
                for kind in list(self._subscriptions):
                    await self._unsubscribe(kind)
                raise
        self._scheduler_task = asyncio.create_task(self.scheduler.run(), name=f"reminders:{self.owner_id}")
        self._started = True
        logger.info("Sync session started owner=%s", self.owner_id)

    async def close(self) -> None:
        if self._scheduler_task is not None:
            self._scheduler_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._scheduler_task
            self._scheduler_task = None

        for kind in list(self._subscriptions):
            await self._unsubscribe(kind)

        self.cache.clear()
        if self._started:
            logger.info("Sync session closed owner=%s", self.owner_id)
        self._started = False

    async def __aenter__(self) -> SyncSession:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---- change feeds ----

    def _subscribe(self, kind: EntityKind) -> None:
        sub = self.store.subscribe(kind, self.owner_id)
        self._subscriptions[kind] = sub
        self._pumps[kind] = asyncio.create_task(self._pump(kind, sub), name=f"feed:{kind.value}:{self.owner_id}")
        self.lost_feeds.discard(kind)

    async def _unsubscribe(self, kind: EntityKind) -> None:
        sub = self._subscriptions.pop(kind, None)
        if sub is not None:
            self.store.unsubscribe(sub)
        pump = self._pumps.pop(kind, None)
        if pump is not None and not pump.done():
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump

    async def _pump(self, kind: EntityKind, sub: ChangeSubscription) -> None:
        try:
            async for payload in sub:
                self.reconciler.apply(kind, payload)
        except SubscriptionLost as e:
            self.lost_feeds.add(kind)
            logger.warning("Change feed lost for %s: %s", kind.value, e)
            self.cache.report(e)

    async def resubscribe(self, kind: EntityKind | None = None, *, reload: bool = True) -> None:
        """
        Re-open change feeds (all, or one kind) after SubscriptionLost.

        Changes committed while the feed was down are not replayed by the store,
        so by default the cache is reloaded after the new feeds are open.
        """
        kinds = [kind] if kind is not None else list(EntityKind)
        for k in kinds:
            await self._unsubscribe(k)
            self._subscribe(k)
        logger.info("Resubscribed %s owner=%s", ", ".join(k.value for k in kinds), self.owner_id)
        if reload:
            await self.cache.load()

    # ---- operations exposed to front ends ----

    async def create(self, kind: EntityKind | str, draft: Mapping[str, Any]) -> Entity:
        return await self.cache.create(kind, draft)

    async def create_task(self, draft: Mapping[str, Any]) -> Task:
        return cast(Task, await self.cache.create(EntityKind.TASK, draft))

    async def create_event(self, draft: Mapping[str, Any]) -> Event:
        return cast(Event, await self.cache.create(EntityKind.EVENT, draft))

    async def update(
        self,
        entity_id: str,
        patch: Mapping[str, Any],
        *,
        kind: EntityKind | str | None = None,
    ) -> Entity:
        return await self.cache.update(entity_id, patch, kind=kind)

    async def delete(self, entity_id: str, *, kind: EntityKind | str | None = None) -> None:
        await self.cache.delete(entity_id, kind=kind)

    def list(self, kind: EntityKind | str) -> list[Entity]:
        return self.cache.list(kind)

    def prioritize(self) -> list[Task]:
        return self.cache.prioritize()

    def notifications(self) -> list[Notification]:
        return self.registry.list()

    def unread_count(self) -> int:
        return self.registry.unread_count()
