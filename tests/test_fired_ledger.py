# tests/test_fired_ledger.py

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

from speaktaskr.reminders.ledger import FiredReminderLedger

from .fakes import T0


def test_add_is_idempotent() -> None:
    ledger = FiredReminderLedger()
    key = ("t1", T0)

    assert ledger.add(key) is True
    assert ledger.add(key) is False
    assert key in ledger
    assert ("t1", T0 + timedelta(minutes=1)) not in ledger


def test_prune_forgets_keys_at_or_before_cutoff() -> None:
    ledger = FiredReminderLedger()
    ledger.add(("old", T0 - timedelta(seconds=1)))
    ledger.add(("edge", T0))
    ledger.add(("future", T0 + timedelta(seconds=1)))

    assert ledger.prune(before=T0) == 2
    assert len(ledger) == 1
    assert ("future", T0 + timedelta(seconds=1)) in ledger


def test_persists_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "state" / "fired.json"
    ledger = FiredReminderLedger(path)
    ledger.add(("t1", T0))

    reopened = FiredReminderLedger(path)

    assert ("t1", T0) in reopened
    assert json.loads(path.read_text("utf-8")) == [["t1", T0.isoformat()]]


def test_corrupt_file_starts_empty(tmp_path: Path) -> None:
    path = tmp_path / "fired.json"
    path.write_text("{not json", "utf-8")

    ledger = FiredReminderLedger(path)

    assert len(ledger) == 0


def test_rekey_moves_subject_keys(tmp_path: Path) -> None:
    path = tmp_path / "fired.json"
    ledger = FiredReminderLedger(path)
    ledger.add(("client-1", T0))
    ledger.add(("other", T0))

    assert ledger.rekey("client-1", "server-1") == 1
    assert ledger.rekey("missing", "server-2") == 0

    assert ("server-1", T0) in ledger
    assert ("client-1", T0) not in ledger
    assert ("server-1", T0) in FiredReminderLedger(path)
