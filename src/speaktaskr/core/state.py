# src/speaktaskr/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..sync.session import SyncSession
from .ports import DraftParser, DurableStore, NotificationSink


@dataclass
class AppState:
    """
    Front-end state shared by commands and connectors.

    There is no global store: the active owner's data lives in `session`,
    which is replaced on login and dropped on logout.
    """

    settings: Any
    store: DurableStore
    parser: DraftParser
    sink: NotificationSink

    # Premium gate for /prioritize (payment itself is handled elsewhere).
    is_premium: bool = False

    session: SyncSession | None = None
