# src/speaktaskr/reminders/ledger.py

from __future__ import annotations

import contextlib
import json
import logging
import os
from datetime import datetime
from pathlib import Path

from ..core.errors import ValidationError
from ..core.models import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

ReminderKey = tuple[str, datetime]
# (subject_id, trigger_time)


class FiredReminderLedger:
    """
    Set of reminder keys that already fired.

    In-memory by default. With a path, the set is loaded on construction and
    rewritten (tmp file + atomic replace) after every change, so a restart
    does not fire the same (subject_id, trigger_time) again.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._keys: set[ReminderKey] = set()
        if self._path is not None:
            self._keys = self._load(self._path)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: ReminderKey) -> bool:
        if key in self._keys:
            return False
        self._keys.add(key)
        self.save()
        return True

    def rekey(self, old_subject_id: str, new_subject_id: str) -> int:
        """Move every key of `old_subject_id` to `new_subject_id` (client id replaced by a server id)."""
        moved = {k for k in self._keys if k[0] == old_subject_id}
        if not moved or old_subject_id == new_subject_id:
            return 0
        self._keys -= moved
        self._keys |= {(new_subject_id, trigger) for _, trigger in moved}
        self.save()
        return len(moved)

    def prune(self, *, before: datetime) -> int:
        """Forget keys whose trigger_time is not after `before`."""
        stale = {k for k in self._keys if k[1] <= before}
        if not stale:
            return 0
        self._keys -= stale
        self.save()
        return len(stale)

    @staticmethod
    def _load(path: Path) -> set[ReminderKey]:
        if not path.exists():
            return set()
        try:
            data = json.loads(path.read_text("utf-8"))
        except (OSError, ValueError):
            logger.exception("Failed to read fired-reminder ledger %s; starting empty", path)
            return set()

        keys: set[ReminderKey] = set()
        for item in data if isinstance(data, list) else []:
            if not isinstance(item, list) or len(item) != 2:
                continue
            try:
                trigger = parse_timestamp(item[1], field_name="trigger_time")
            except ValidationError:
                continue
            if trigger is not None:
                keys.add((str(item[0]), trigger))
        logger.info("Loaded %d fired reminder keys from %s", len(keys), path)
        return keys

    def save(self) -> None:
        if self._path is None:
            return
        path = self._path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            rows = sorted([subject_id, format_timestamp(trigger)] for subject_id, trigger in self._keys)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(rows, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp, path)
            with contextlib.suppress(OSError):
                os.chmod(path, 0o600)
        except OSError:
            logger.exception("Failed to save fired-reminder ledger to %s", path)
