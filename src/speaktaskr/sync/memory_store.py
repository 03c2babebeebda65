# src/speaktaskr/sync/memory_store.py

from __future__ import annotations

"""
In-process DurableStore.

Non-persistent reference implementation of the DurableStore port used by the
console app in local mode and by tests. It behaves like the hosted backend:
- ids are assigned when the record has none,
- created_at / updated_at are server-assigned,
- rows are validated like table constraints (malformed rows are rejected),
- every committed change is fanned out to the (kind, owner) channel subscribers,
  including the writer's own changes.
"""

import asyncio
import copy
import logging
from collections.abc import Callable
from datetime import datetime

from ..core.errors import ValidationError
from ..core.feed import ChangeSubscription
from ..core.models import EntityKind, entity_from_record, format_timestamp, new_id, utcnow
from ..core.ports import Record

logger = logging.getLogger(__name__)


class InMemoryDurableStore:
    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._rows: dict[EntityKind, dict[str, Record]] = {k: {} for k in EntityKind}
        self._subscriptions: list[ChangeSubscription] = []

    @property
    def subscriber_count(self) -> int:
        return sum(1 for s in self._subscriptions if not s.closed)

    def _publish(self, kind: EntityKind, owner_id: str, payload: Record) -> None:
        self._subscriptions = [s for s in self._subscriptions if not s.closed]
        for sub in self._subscriptions:
            if sub.kind is kind and sub.owner_id == owner_id:
                sub.publish(copy.deepcopy(payload))

    @staticmethod
    def _check(kind: EntityKind, row: Record) -> None:
        try:
            entity_from_record(kind, row)
        except ValidationError as e:
            raise ValueError(f"{kind.value} row violates constraints: {e}") from e

    async def create(self, kind: EntityKind, record: Record) -> Record:
        await asyncio.sleep(0)
        row = copy.deepcopy(record)
        entity_id = str(row.get(kind.id_field) or new_id())
        if entity_id in self._rows[kind]:
            raise ValueError(f"duplicate key {kind.id_field}={entity_id}")

        now = format_timestamp(self._clock())
        row[kind.id_field] = entity_id
        row["created_at"] = now
        row["updated_at"] = now
        self._check(kind, row)

        self._rows[kind][entity_id] = row
        logger.debug("store insert %s id=%s", kind.value, entity_id)
        self._publish(kind, row["user_id"], {"eventType": "INSERT", "new": row, "old": {}})
        return copy.deepcopy(row)

    async def update(self, kind: EntityKind, entity_id: str, patch: Record) -> Record:
        await asyncio.sleep(0)
        current = self._rows[kind].get(entity_id)
        if current is None:
            raise KeyError(f"{kind.value} {entity_id} not found")

        row = copy.deepcopy(current)
        row.update({k: copy.deepcopy(v) for k, v in patch.items() if k not in (kind.id_field, "user_id", "created_at")})
        row["updated_at"] = format_timestamp(self._clock())
        self._check(kind, row)

        self._rows[kind][entity_id] = row
        logger.debug("store update %s id=%s", kind.value, entity_id)
        self._publish(kind, row["user_id"], {"eventType": "UPDATE", "new": row, "old": {kind.id_field: entity_id}})
        return copy.deepcopy(row)

    async def delete(self, kind: EntityKind, entity_id: str) -> None:
        await asyncio.sleep(0)
        row = self._rows[kind].pop(entity_id, None)
        if row is None:
            return
        logger.debug("store delete %s id=%s", kind.value, entity_id)
        self._publish(
            kind,
            row["user_id"],
            {"eventType": "DELETE", "new": {}, "old": {kind.id_field: entity_id, "user_id": row["user_id"]}},
        )

    async def list(self, kind: EntityKind, owner_id: str) -> list[Record]:
        await asyncio.sleep(0)
        rows = [copy.deepcopy(r) for r in self._rows[kind].values() if r.get("user_id") == owner_id]
        if kind is EntityKind.TASK:
            rows.sort(key=lambda r: r["created_at"], reverse=True)
        else:
            rows.sort(key=lambda r: r["start_time"])
        return rows

    def subscribe(self, kind: EntityKind, owner_id: str) -> ChangeSubscription:
        sub = ChangeSubscription(kind, owner_id)
        self._subscriptions.append(sub)
        logger.debug("store subscribe %s owner=%s", kind.value, owner_id)
        return sub

    def unsubscribe(self, subscription: ChangeSubscription) -> None:
        subscription.close()
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def drop_subscriptions(self, reason: str = "connection reset") -> int:
        """Fail every open channel (simulates a dropped realtime connection)."""
        dropped = 0
        for sub in self._subscriptions:
            if not sub.closed:
                sub.fail(reason)
                dropped += 1
        self._subscriptions = []
        logger.info("store dropped %d subscription(s): %s", dropped, reason)
        return dropped
