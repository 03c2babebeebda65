# src/speaktaskr/reminders/sinks.py

from __future__ import annotations

import logging
from datetime import datetime

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


class LoggingNotificationSink:
    """Headless sink: reminders only go to the log."""

    def notify(self, title: str, body: str, dedupe_tag: str) -> None:
        logger.info("[%s] %s: %s", dedupe_tag, title, body)


class ConsoleNotificationSink:
    """Prints reminders into the interactive console."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def notify(self, title: str, body: str, dedupe_tag: str) -> None:
        if not self.enabled:
            logger.debug("Console notifications disabled; dropping %s", dedupe_tag)
            return
        print(f"\n[{_ts_local()}] 🔔 {title}: {body}", flush=True)
