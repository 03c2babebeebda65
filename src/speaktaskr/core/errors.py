# src/speaktaskr/core/errors.py

from __future__ import annotations


class SpeakTaskrError(Exception):
    """Base class for errors raised by the sync core."""


class ValidationError(SpeakTaskrError, ValueError):
    """A draft or patch is malformed. Raised before the cache is touched."""


class DurableOperationFailed(SpeakTaskrError):
    """
    The durable store rejected or failed a create/update/delete.

    The cache keeps its optimistic state; the caller decides how to surface it.
    """

    def __init__(self, operation: str, kind: str, entity_id: str, message: str = "") -> None:
        self.operation = operation
        self.kind = kind
        self.entity_id = entity_id
        text = f"{operation} {kind} {entity_id} failed"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)


class SubscriptionLost(SpeakTaskrError):
    """The change feed was dropped. Call SyncSession.resubscribe() to restore it."""


class StaleCallback(SpeakTaskrError):
    """A durable response arrived after the owner changed; it was discarded."""
