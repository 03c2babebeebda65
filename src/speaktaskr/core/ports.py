# src/speaktaskr/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the durable store, notification sink and parser swappable and makes testing easier.
"""

from typing import Any, Awaitable, Protocol

from .feed import ChangeSubscription
from .models import EntityKind

Record = dict[str, Any]
# Wire record as stored by the durable store: {"task_id": ..., "user_id": ..., ...}.


class DurableStore(Protocol):
    """
    Network-backed CRUD + change subscription for the tasks / calendar_events collections.

    Every call may fail with any exception; the cache wraps failures into DurableOperationFailed.
    Change payloads have the shape {"eventType": "INSERT"|"UPDATE"|"DELETE", "new": {...}, "old": {...}}
    and are delivered in commit order per (kind, owner) channel.
    """

    def create(self, kind: EntityKind, record: Record) -> Awaitable[Record]: ...
    def update(self, kind: EntityKind, entity_id: str, patch: Record) -> Awaitable[Record]: ...
    def delete(self, kind: EntityKind, entity_id: str) -> Awaitable[None]: ...
    def list(self, kind: EntityKind, owner_id: str) -> Awaitable[list[Record]]: ...

    def subscribe(self, kind: EntityKind, owner_id: str) -> ChangeSubscription: ...
    def unsubscribe(self, subscription: ChangeSubscription) -> None: ...


class NotificationSink(Protocol):
    """
    Best-effort, fire-and-forget user notification (OS / browser / console).

    May be unavailable (permission denied); the core never depends on it succeeding.
    """

    def notify(self, title: str, body: str, dedupe_tag: str) -> None: ...


class DraftParser(Protocol):
    """Free text -> (kind, draft mapping) suitable for EntityCache.create()."""

    def parse(self, text: str) -> tuple[EntityKind, dict[str, Any]]: ...
