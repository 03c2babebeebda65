# src/speaktaskr/core/feed.py

from __future__ import annotations

"""
Change-feed channel.

A ChangeSubscription is the consumer side of one (kind, owner) change channel:
- the durable store publishes raw change payloads into it,
- the session iterates it with `async for` and hands each payload to the reconciler,
- close() ends iteration immediately (undelivered payloads are dropped),
- fail() ends iteration with SubscriptionLost so the consumer can resubscribe.
"""

import asyncio
import logging
from typing import Any

from .errors import SubscriptionLost
from .models import EntityKind

logger = logging.getLogger(__name__)

_CLOSED = object()


class ChangeSubscription:
    def __init__(self, kind: EntityKind, owner_id: str) -> None:
        self.kind = kind
        self.owner_id = owner_id
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._lost = False

    @property
    def closed(self) -> bool:
        return self._closed or self._lost

    def publish(self, payload: Any) -> bool:
        """Queue one payload. Returns False if the channel no longer accepts payloads."""
        if self.closed:
            return False
        self._queue.put_nowait(payload)
        return True

    def fail(self, reason: str = "change feed dropped") -> None:
        if self.closed:
            return
        self._lost = True
        self._queue.put_nowait(SubscriptionLost(f"{self.kind.value}:{self.owner_id}: {reason}"))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        logger.debug("Change subscription closed kind=%s owner=%s", self.kind.value, self.owner_id)

    def __aiter__(self) -> ChangeSubscription:
        return self

    async def __anext__(self) -> Any:
        if self._closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._closed:
            raise StopAsyncIteration
        if isinstance(item, SubscriptionLost):
            raise item
        return item
