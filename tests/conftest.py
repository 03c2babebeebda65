# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from speaktaskr.core.state import AppState
from speaktaskr.llm.offline import OfflineDraftParser
from speaktaskr.sync.cache import EntityCache

from .fakes import OWNER, FakeClock, FlakyStore, RecordingSink



@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> FlakyStore:
    return FlakyStore(clock=clock)


@pytest.fixture()
def cache(store: FlakyStore, clock: FakeClock) -> EntityCache:
    return EntityCache(store, OWNER, clock=clock)


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and SyncSession.from_settings.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the environment / .env.
    """
    return SimpleNamespace(
        app_name="SpeakTaskr",
        data_dir=tmp_path,
        owner_id=OWNER,
        premium=False,
        console_notifications=False,
        # Long interval: tests drive ticks explicitly.
        reminder_interval_seconds=3600.0,
        reminder_window_seconds=60.0,
        reminder_fire_overdue=False,
        fired_ledger_path=None,
    )


@pytest.fixture()
def state(settings: SimpleNamespace, store: FlakyStore, sink: RecordingSink) -> AppState:
    """AppState wired with the offline parser and deterministic fakes."""
    return AppState(
        settings=settings,
        store=store,
        parser=OfflineDraftParser(),
        sink=sink,
        is_premium=False,
    )
