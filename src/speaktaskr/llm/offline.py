# src/speaktaskr/llm/offline.py

from __future__ import annotations

import re
from typing import Any

from ..core.errors import ValidationError
from ..core.models import EntityKind

_TAG_RE = re.compile(r"(?<!\w)#(\w[\w-]*)")
_URGENT_RE = re.compile(r"\b(urgent|asap|important)\b|!!", re.IGNORECASE)


class OfflineDraftParser:
    """
    Offline deterministic parser used when no external LLM is configured.

    Behavior:
    - every input becomes a task draft (no date understanding)
    - #hashtags become tags and are removed from the description
    - "urgent" / "asap" / "important" / "!!" -> high priority, otherwise medium
    """

    def parse(self, text: str) -> tuple[EntityKind, dict[str, Any]]:
        raw = (text or "").strip()
        if not raw:
            raise ValidationError("nothing to parse")

        tags = _TAG_RE.findall(raw)
        description = " ".join(_TAG_RE.sub("", raw).split()) or raw
        priority = "high" if _URGENT_RE.search(raw) else "medium"

        return EntityKind.TASK, {"description": description, "priority": priority, "tags": tags}
