# src/speaktaskr/sync/cache.py

from __future__ import annotations

"""
Owner-scoped entity cache.

The cache is the single source of truth for the signed-in owner's Tasks and Events.
It combines three inputs:
- optimistic local mutations (create / update / delete),
- canonical records returned by the durable store,
- remote change events applied by the Reconciler.

Rules:
- every write replaces a whole entity record; no partial writes are observable,
- in-memory state changes happen before the durable call is awaited, never across it,
- a durable completion only replaces the exact optimistic object it issued; if anything
  newer replaced that entry meanwhile (remote event, another edit, a delete), the newer state wins,
- a completion that arrives after the owner changed is discarded (StaleCallback),
- when the store assigns its own id, the client entry is moved to it (rekey listeners are told);
  a feed INSERT echo that beats the create response is merged into the pending client entry.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from ..core.errors import DurableOperationFailed, SpeakTaskrError, StaleCallback, ValidationError
from ..core.models import (
    Entity,
    EntityKind,
    Event,
    SyncState,
    Task,
    apply_patch,
    build_entity,
    entity_from_record,
    entity_to_record,
    kind_of,
    patch_to_record,
    utcnow,
    with_sync_state,
)
from ..core.ports import DurableStore

logger = logging.getLogger(__name__)

ErrorListener = Callable[[SpeakTaskrError], None]
RekeyListener = Callable[[EntityKind, str, str], None]
# (kind, client_id, server_id)

_FAR_FUTURE = datetime.max.replace(tzinfo=UTC)
_VOLATILE_COLUMNS = ("created_at", "updated_at")


def _same_content(a: Entity, b: Entity) -> bool:
    """Equal records apart from the id and the store-managed timestamps."""
    kind = kind_of(a)
    if kind is not kind_of(b):
        return False
    skip = {kind.id_field, *_VOLATILE_COLUMNS}
    ra = {k: v for k, v in entity_to_record(a).items() if k not in skip}
    rb = {k: v for k, v in entity_to_record(b).items() if k not in skip}
    return ra == rb


def _priority_key(task: Task) -> tuple[bool, int, datetime]:
    # Dated tasks first; then high > medium > low; then earliest due date.
    return (task.due_date is None, -task.priority.rank, task.due_date or _FAR_FUTURE)


class EntityCache:
    def __init__(
        self,
        store: DurableStore,
        owner_id: str | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._clock = clock
        self._owner_id = owner_id
        self._generation = 0

        self._tasks: dict[str, Task] = {}
        self._task_order: list[str] = []  # visible order, newest first
        self._events: dict[str, Event] = {}

        # client id -> optimistic entity, while its create is awaiting the store
        self._creating: dict[str, Entity] = {}
        # client id -> server id, once adopted
        self._aliases: dict[str, str] = {}

        self._error_listeners: list[ErrorListener] = []
        self._rekey_listeners: list[RekeyListener] = []

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    @property
    def generation(self) -> int:
        return self._generation

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def report(self, err: SpeakTaskrError) -> None:
        for listener in list(self._error_listeners):
            try:
                listener(err)
            except Exception:
                logger.exception("Cache error listener failed")

    def add_rekey_listener(self, listener: RekeyListener) -> None:
        """Called with (kind, client_id, server_id) whenever a client entry adopts a server id."""
        self._rekey_listeners.append(listener)

    def resolve_id(self, entity_id: str) -> str:
        """Map a client id that was replaced by a server id to the current id."""
        return self._aliases.get(entity_id, entity_id)

    def is_creating(self, entity_id: str) -> bool:
        return entity_id in self._creating

    # ---- owner scope ----

    def reset(self, owner_id: str | None) -> None:
        """Drop all entities and switch owner. In-flight completions become stale."""
        self._tasks = {}
        self._task_order = []
        self._events = {}
        self._creating = {}
        self._aliases = {}
        self._owner_id = owner_id
        self._generation += 1
        logger.info("EntityCache reset owner=%s generation=%s", owner_id, self._generation)

    def clear(self) -> None:
        self.reset(None)

    def _require_owner(self) -> str:
        if not self._owner_id:
            raise ValidationError("no owner is signed in")
        return self._owner_id

    def _stale(self, operation: str, kind: EntityKind, entity_id: str, generation: int) -> StaleCallback:
        logger.info(
            "Discarding stale %s completion kind=%s id=%s (generation %s -> %s)",
            operation,
            kind.value,
            entity_id,
            generation,
            self._generation,
        )
        return StaleCallback(f"{operation} {kind.value} {entity_id}: owner changed while in flight")

    # ---- collection primitives ----

    def _collection(self, kind: EntityKind) -> dict[str, Any]:
        return self._tasks if kind is EntityKind.TASK else self._events

    def _put(self, entity: Entity) -> None:
        """Insert or replace a whole record. New tasks go first; existing ones keep their position."""
        if isinstance(entity, Task):
            if entity.id not in self._tasks:
                self._task_order.insert(0, entity.id)
            self._tasks[entity.id] = entity
        else:
            self._events[entity.id] = entity

    def _pop(self, kind: EntityKind, entity_id: str) -> Entity | None:
        removed = self._collection(kind).pop(entity_id, None)
        if removed is not None and kind is EntityKind.TASK:
            self._task_order.remove(entity_id)
        return removed

    def _rekey(self, old_id: str, entity: Entity) -> None:
        """Move the entry stored under `old_id` to `entity.id`, keeping the task position."""
        kind = kind_of(entity)
        coll = self._collection(kind)
        coll.pop(old_id, None)
        if kind is EntityKind.TASK:
            idx = self._task_order.index(old_id)
            if entity.id in self._tasks:
                del self._task_order[idx]
            else:
                self._task_order[idx] = entity.id
        coll[entity.id] = entity

    def _adopt(self, client_id: str, entity: Entity) -> None:
        """Replace the client entry with its server-id twin and tell the rekey listeners."""
        kind = kind_of(entity)
        logger.debug("%s: adopting server id %s for client id %s", kind.value, entity.id, client_id)
        self._rekey(client_id, entity)
        self._aliases[client_id] = entity.id
        for listener in list(self._rekey_listeners):
            try:
                listener(kind, client_id, entity.id)
            except Exception:
                logger.exception("Cache rekey listener failed")

    def _pending_twin(self, entity: Entity) -> Entity | None:
        """The untouched optimistic entry whose in-flight create produced `entity`, if any."""
        coll = self._collection(kind_of(entity))
        for client_id, pending in self._creating.items():
            if coll.get(client_id) is pending and _same_content(pending, entity):
                return pending
        return None

    def _locate(self, entity_id: str, kind: EntityKind | str | None) -> EntityKind:
        if kind is not None:
            k = EntityKind.parse(kind)
            if entity_id not in self._collection(k):
                raise ValidationError(f"unknown {k.value} id: {entity_id}")
            return k
        found = [k for k in EntityKind if entity_id in self._collection(k)]
        if not found:
            raise ValidationError(f"unknown id: {entity_id}")
        if len(found) > 1:
            raise ValidationError(f"id {entity_id} exists in both collections; pass kind")
        return found[0]

    # ---- read API ----

    def get(self, kind: EntityKind | str, entity_id: str) -> Entity | None:
        return self._collection(EntityKind.parse(kind)).get(self.resolve_id(entity_id))

    def list(self, kind: EntityKind | str) -> list[Entity]:
        """Snapshot: tasks in visible order (newest first), events by ascending start_time."""
        k = EntityKind.parse(kind)
        if k is EntityKind.TASK:
            return [self._tasks[i] for i in self._task_order]
        return sorted(self._events.values(), key=lambda e: e.start_time)

    def tasks(self) -> list[Task]:
        return [self._tasks[i] for i in self._task_order]

    def events(self) -> list[Event]:
        return sorted(self._events.values(), key=lambda e: e.start_time)

    def prioritize(self) -> list[Task]:
        """
        Reorder the task sequence in memory (not persisted).

        Tasks with a due date come before tasks without one; within each group
        high > medium > low, then the earlier due date. The sort is stable.
        Premium gating is the caller's job.
        """
        ordered = sorted(self.tasks(), key=_priority_key)
        self._task_order = [t.id for t in ordered]
        logger.debug("Prioritized %d tasks", len(ordered))
        return ordered

    # ---- remote application (Reconciler) ----

    def upsert_remote(self, entity: Entity) -> bool:
        """Last-write-wins whole-record upsert. Returns True if the cache changed."""
        if entity.owner_id != self._owner_id:
            logger.warning(
                "Ignoring remote %s %s for owner=%s (cache owner=%s)",
                kind_of(entity).value,
                entity.id,
                entity.owner_id,
                self._owner_id,
            )
            return False
        current = self._collection(kind_of(entity)).get(entity.id)
        if current == entity:
            return False
        if current is None:
            twin = self._pending_twin(entity)
            if twin is not None:
                # Feed echo of our own create, ahead of the create response.
                self._adopt(twin.id, entity)
                return True
        self._put(entity)
        return True

    def remove_remote(self, kind: EntityKind, entity_id: str) -> bool:
        return self._pop(kind, entity_id) is not None

    # ---- durable operations ----

    async def load(self) -> None:
        """
        Replace the cache contents with the owner's durable records.

        Unconfirmed local entries (pending / failed) that the store does not know about are kept.
        """
        owner = self._require_owner()
        generation = self._generation

        loaded: dict[EntityKind, list[Entity]] = {}
        for kind in EntityKind:
            try:
                records = await self._store.list(kind, owner)
            except Exception as e:
                if generation != self._generation:
                    raise self._stale("list", kind, owner, generation) from e
                err = DurableOperationFailed("list", kind.value, owner, str(e))
                logger.warning("%s", err)
                self.report(err)
                raise err from e

            entities: list[Entity] = []
            for record in records:
                try:
                    entities.append(entity_from_record(kind, record, owner_id=owner))
                except ValidationError:
                    logger.warning("Skipping malformed %s record: %r", kind.value, record, exc_info=True)
            loaded[kind] = entities

        if generation != self._generation:
            raise self._stale("list", EntityKind.TASK, owner, generation)

        unconfirmed = [
            e
            for kind in EntityKind
            for e in self.list(kind)
            if e.sync_state is not SyncState.SYNCED
        ]

        tasks = sorted(loaded[EntityKind.TASK], key=lambda t: t.created_at, reverse=True)
        self._tasks = {t.id: t for t in tasks}
        self._task_order = [t.id for t in tasks]
        self._events = {e.id: e for e in loaded[EntityKind.EVENT]}

        for entity in reversed(unconfirmed):
            if entity.id not in self._collection(kind_of(entity)):
                self._put(entity)

        logger.info(
            "EntityCache loaded owner=%s tasks=%d events=%d",
            owner,
            len(self._tasks),
            len(self._events),
        )

    async def create(self, kind: EntityKind | str, draft: Mapping[str, Any]) -> Entity:
        """
        Optimistically insert a new entity, then confirm it with the store.

        On store failure the entry stays visible, flagged SyncState.FAILED, and
        DurableOperationFailed is raised.
        """
        k = EntityKind.parse(kind)
        owner = self._require_owner()
        entity = build_entity(k, draft, owner_id=owner, now=self._clock(), sync_state=SyncState.PENDING)
        if entity.id in self._collection(k):
            raise ValidationError(f"{k.value} id already exists: {entity.id}")

        self._put(entity)
        self._creating[entity.id] = entity
        generation = self._generation
        logger.debug("create %s id=%s (optimistic)", k.value, entity.id)

        try:
            record = await self._store.create(k, entity_to_record(entity))
        except Exception as e:
            self._creating.pop(entity.id, None)
            if generation != self._generation:
                raise self._stale("create", k, entity.id, generation) from e
            if self._collection(k).get(entity.id) is entity:
                self._put(with_sync_state(entity, SyncState.FAILED))
            err = DurableOperationFailed("create", k.value, entity.id, str(e))
            logger.warning("%s", err)
            self.report(err)
            raise err from e

        self._creating.pop(entity.id, None)
        if generation != self._generation:
            raise self._stale("create", k, entity.id, generation)

        try:
            canonical = entity_from_record(k, record, owner_id=owner)
        except ValidationError:
            logger.warning("Store returned a malformed %s record for %s: %r", k.value, entity.id, record)
            canonical = with_sync_state(entity, SyncState.SYNCED)

        current_id = self.resolve_id(entity.id)
        current = self._collection(k).get(current_id)
        if current is not entity:
            if current_id != entity.id:
                logger.debug("create %s id=%s already merged with its feed echo %s", k.value, entity.id, current_id)
            else:
                logger.info("create %s id=%s superseded while in flight", k.value, entity.id)
            return current if current is not None else canonical

        if canonical.id != entity.id:
            self._adopt(entity.id, canonical)
        else:
            self._put(canonical)
        return canonical

    async def update(
        self,
        entity_id: str,
        patch: Mapping[str, Any],
        *,
        kind: EntityKind | str | None = None,
    ) -> Entity:
        """
        Apply `patch` to the cached entity immediately, then send it to the store.

        There is no automatic revert on failure: the patched state stays, flagged FAILED.
        """
        entity_id = self.resolve_id(entity_id)
        k = self._locate(entity_id, kind)
        current = self._collection(k)[entity_id]
        updated = apply_patch(current, patch, now=self._clock(), sync_state=SyncState.PENDING)

        self._put(updated)
        generation = self._generation
        logger.debug("update %s id=%s fields=%s (optimistic)", k.value, entity_id, sorted(patch))

        try:
            record = await self._store.update(k, entity_id, patch_to_record(updated, patch.keys()))
        except Exception as e:
            if generation != self._generation:
                raise self._stale("update", k, entity_id, generation) from e
            if self._collection(k).get(entity_id) is updated:
                self._put(with_sync_state(updated, SyncState.FAILED))
            err = DurableOperationFailed("update", k.value, entity_id, str(e))
            logger.warning("%s", err)
            self.report(err)
            raise err from e

        if generation != self._generation:
            raise self._stale("update", k, entity_id, generation)

        try:
            canonical = entity_from_record(k, record, owner_id=updated.owner_id)
        except ValidationError:
            logger.warning("Store returned a malformed %s record for %s: %r", k.value, entity_id, record)
            canonical = with_sync_state(updated, SyncState.SYNCED)

        latest = self._collection(k).get(entity_id)
        if latest is not updated:
            logger.info("update %s id=%s superseded while in flight", k.value, entity_id)
            return latest if latest is not None else canonical
        self._put(canonical)
        return canonical

    async def delete(self, entity_id: str, *, kind: EntityKind | str | None = None) -> None:
        """Remove immediately, then delete in the store. A failed delete does not restore the entity."""
        entity_id = self.resolve_id(entity_id)
        k = self._locate(entity_id, kind)
        self._pop(k, entity_id)
        generation = self._generation
        logger.debug("delete %s id=%s (optimistic)", k.value, entity_id)

        try:
            await self._store.delete(k, entity_id)
        except Exception as e:
            if generation != self._generation:
                raise self._stale("delete", k, entity_id, generation) from e
            err = DurableOperationFailed("delete", k.value, entity_id, str(e))
            logger.warning("%s", err)
            self.report(err)
            raise err from e
