# src/speaktaskr/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store / parser / sink),
- opens and closes the owner-scoped SyncSession (login / logout).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.errors import SpeakTaskrError, SubscriptionLost
from ..core.models import NotificationKind
from ..core.ports import DraftParser, DurableStore, NotificationSink
from ..core.state import AppState
from ..llm.client import OpenRouterDraftParser
from ..llm.offline import OfflineDraftParser
from ..reminders.sinks import ConsoleNotificationSink, LoggingNotificationSink
from ..sync.memory_store import InMemoryDurableStore
from ..sync.session import SyncSession

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    if settings.fired_ledger_path is not None:
        settings.fired_ledger_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, store: DurableStore | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    parser: DraftParser
    try:
        parser = OpenRouterDraftParser(settings)
    except RuntimeError as e:
        # Fallback for demos / local runs without external services.
        logger.info("LLM parser unavailable (%s); using offline parser.", e)
        parser = OfflineDraftParser()

    if store is None:
        store = InMemoryDurableStore()

    sink: NotificationSink
    if settings.console_notifications:
        sink = ConsoleNotificationSink()
    else:
        sink = LoggingNotificationSink()

    return AppState(
        settings=settings,
        store=store,
        parser=parser,
        sink=sink,
        is_premium=settings.premium,
    )


async def start_session(state: AppState, owner_id: str) -> SyncSession:
    """Sign `owner_id` in: close any previous session, then load + subscribe + start reminders."""
    await end_session(state)

    session = SyncSession.from_settings(state.settings, state.store, owner_id, sink=state.sink)

    def _on_sync_error(err: SpeakTaskrError) -> None:
        if isinstance(err, SubscriptionLost):
            session.registry.add(
                NotificationKind.GENERIC,
                "Sync paused",
                "Live updates were interrupted. Use /resync to reconnect.",
            )

    session.cache.add_error_listener(_on_sync_error)
    await session.start()
    state.session = session
    return session


async def end_session(state: AppState) -> None:
    if state.session is None:
        return
    session = state.session
    state.session = None
    await session.close()
