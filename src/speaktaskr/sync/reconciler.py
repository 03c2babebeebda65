# src/speaktaskr/sync/reconciler.py

from __future__ import annotations

"""
Remote change reconciliation.

Raw change-feed payloads are converted once, at ingestion, into a tagged variant:

    Insert(entity) | Update(entity) | Delete(kind, entity_id)

and then applied to the EntityCache:
- Insert / Update: whole-record upsert by id (last-write-wins, no field merge),
- Delete: remove by id; an absent id is a no-op.

Applying the same change twice leaves the cache as after the first application.
Events are applied in arrival order; nothing is buffered or reordered.
Malformed payloads are logged and skipped, never raised into the feed loop.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..core.errors import ValidationError
from ..core.models import Entity, EntityKind, entity_from_record
from .cache import EntityCache

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Insert:
    entity: Entity


@dataclass(slots=True, frozen=True)
class Update:
    entity: Entity


@dataclass(slots=True, frozen=True)
class Delete:
    kind: EntityKind
    entity_id: str


ChangeEvent = Insert | Update | Delete


def parse_change(kind: EntityKind, payload: Any, *, owner_id: str | None = None) -> ChangeEvent:
    """
    Convert a raw payload {"eventType": ..., "new": {...}, "old": {...}} into a ChangeEvent.

    `owner_id` is used only when a record does not carry user_id
    (channels are owner-filtered, so the channel owner is implied).
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("change payload must be a mapping")

    op = str(payload.get("eventType") or payload.get("type") or "").strip().upper()

    if op in ("INSERT", "UPDATE"):
        record = payload.get("new")
        if not isinstance(record, Mapping) or not record:
            raise ValidationError(f"{op} payload has no 'new' record")
        entity = entity_from_record(kind, record, owner_id=owner_id)
        return Insert(entity) if op == "INSERT" else Update(entity)

    if op == "DELETE":
        record = payload.get("old")
        if not isinstance(record, Mapping):
            raise ValidationError("DELETE payload has no 'old' record")
        entity_id = record.get(kind.id_field) or record.get("id")
        if not entity_id:
            raise ValidationError(f"DELETE payload has no {kind.id_field}")
        return Delete(kind, str(entity_id))

    raise ValidationError(f"unknown change type: {op or '<missing>'}")


class Reconciler:
    def __init__(self, cache: EntityCache) -> None:
        self._cache = cache
        self.applied = 0
        self.skipped = 0

    def apply(self, kind: EntityKind, payload: Any) -> bool:
        """
        Apply one raw change payload. Returns True if the cache changed.

        Never raises: malformed payloads are logged and counted in `skipped`.
        """
        try:
            change = parse_change(kind, payload, owner_id=self._cache.owner_id)
        except ValidationError as e:
            self.skipped += 1
            logger.warning("Skipping malformed %s change (%s): %r", kind.value, e, payload)
            return False
        return self.apply_change(change)

    def apply_change(self, change: ChangeEvent) -> bool:
        try:
            if isinstance(change, Delete):
                changed = self._cache.remove_remote(change.kind, change.entity_id)
                logger.debug("remote delete %s id=%s changed=%s", change.kind.value, change.entity_id, changed)
            else:
                changed = self._cache.upsert_remote(change.entity)
                logger.debug(
                    "remote %s id=%s changed=%s",
                    type(change).__name__.lower(),
                    change.entity.id,
                    changed,
                )
        except Exception:
            self.skipped += 1
            logger.exception("Failed to apply change %r", change)
            return False

        self.applied += 1
        return changed
