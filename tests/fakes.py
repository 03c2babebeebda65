# tests/fakes.py

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from speaktaskr.core.models import EntityKind
from speaktaskr.sync.memory_store import InMemoryDurableStore

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)
OWNER = "owner-1"


class FakeClock:
    """Manually advanced clock (callable like utcnow)."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FlakyStore(InMemoryDurableStore):
    """
    InMemoryDurableStore with failure injection.

    - fail_next["create" | "update" | "delete" | "list"] = exc -> next such call raises exc
    - gate = asyncio.Event() -> calls wait on it (keeps a request in flight)
    - server_ids = True -> the store ignores client ids and assigns its own
    - ack_gate = asyncio.Event() -> create commits and fans out, then holds its response
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.fail_next: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.server_ids = False
        self.ack_gate: asyncio.Event | None = None
        self.calls: list[tuple[str, EntityKind]] = []

    async def _enter(self, op: str, kind: EntityKind) -> None:
        self.calls.append((op, kind))
        if self.gate is not None:
            await self.gate.wait()
        err = self.fail_next.pop(op, None)
        if err is not None:
            raise err

    async def create(self, kind: EntityKind, record: dict[str, Any]) -> dict[str, Any]:
        await self._enter("create", kind)
        if self.server_ids:
            record = {k: v for k, v in record.items() if k != kind.id_field}
        row = await super().create(kind, record)
        if self.ack_gate is not None:
            await self.ack_gate.wait()
        return row

    async def update(self, kind: EntityKind, entity_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        await self._enter("update", kind)
        return await super().update(kind, entity_id, patch)

    async def delete(self, kind: EntityKind, entity_id: str) -> None:
        await self._enter("delete", kind)
        await super().delete(kind, entity_id)

    async def list(self, kind: EntityKind, owner_id: str) -> list[dict[str, Any]]:
        await self._enter("list", kind)
        return await super().list(kind, owner_id)


@dataclass(slots=True)
class SinkCall:
    title: str
    body: str
    dedupe_tag: str


@dataclass(slots=True)
class RecordingSink:
    """NotificationSink that records calls; optionally raises to simulate denied permission."""

    calls: list[SinkCall] = field(default_factory=list)
    fail: bool = False

    def notify(self, title: str, body: str, dedupe_tag: str) -> None:
        self.calls.append(SinkCall(title=title, body=body, dedupe_tag=dedupe_tag))
        if self.fail:
            raise PermissionError("notifications denied")


class FakeParser:
    """DraftParser returning a fixed result; captures inputs."""

    def __init__(self, kind: EntityKind = EntityKind.TASK, draft: dict[str, Any] | None = None) -> None:
        self.kind = kind
        self.draft = draft
        self.calls: list[str] = []

    def parse(self, text: str) -> tuple[EntityKind, dict[str, Any]]:
        self.calls.append(text)
        return self.kind, dict(self.draft or {"description": text})


async def settle(rounds: int = 10) -> None:
    """Let background pump tasks drain their queues."""
    for _ in range(rounds):
        await asyncio.sleep(0)
