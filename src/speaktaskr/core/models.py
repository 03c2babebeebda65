# src/speaktaskr/core/models.py

"""
Entity models and the wire-record boundary.

Entities are immutable; every mutation builds a new record and replaces the old one
wholesale. Drafts (parser output, user edits) and durable-store records are plain
mappings and are converted here, in one place:

- draft  -> entity: build_task / build_event (validating)
- record -> entity: entity_from_record (durable store rows, change-feed payloads)
- entity -> record: entity_to_record / patch_to_record

Timestamps are timezone-aware UTC datetimes in Python and ISO-8601 strings on the wire.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from .errors import ValidationError


class EntityKind(StrEnum):
    """Collection names as used by the durable store."""

    TASK = "tasks"
    EVENT = "calendar_events"

    @property
    def id_field(self) -> str:
        return "task_id" if self is EntityKind.TASK else "event_id"

    @classmethod
    def parse(cls, raw: str | EntityKind) -> EntityKind:
        if isinstance(raw, EntityKind):
            return raw
        key = str(raw or "").strip().lower()
        if key in ("task", "tasks"):
            return cls.TASK
        if key in ("event", "events", "calendar_event", "calendar_events"):
            return cls.EVENT
        raise ValidationError(f"unknown entity kind: {raw!r}")


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 1, "medium": 2, "high": 3}[self.value]


class SyncState(StrEnum):
    """Local-only confirmation state; never sent to the store."""

    SYNCED = "synced"
    PENDING = "pending"
    FAILED = "failed"


class NotificationKind(StrEnum):
    TASK_REMINDER = "task_reminder"
    EVENT_REMINDER = "event_reminder"
    GENERIC = "generic"


@dataclass(slots=True, frozen=True)
class ReminderSettings:
    enabled: bool = False
    trigger_time: datetime | None = None

    @property
    def is_armed(self) -> bool:
        return self.enabled and self.trigger_time is not None


@dataclass(slots=True, frozen=True)
class Task:
    id: str
    owner_id: str
    description: str
    status: TaskStatus
    priority: TaskPriority
    due_date: datetime | None
    reminder: ReminderSettings
    tags: tuple[str, ...]
    estimated_duration: int | None
    created_at: datetime
    updated_at: datetime
    sync_state: SyncState = SyncState.SYNCED


@dataclass(slots=True, frozen=True)
class Event:
    id: str
    owner_id: str
    title: str
    description: str | None
    start_time: datetime
    end_time: datetime | None
    location: str | None
    attendees: tuple[str, ...]
    reminder: ReminderSettings
    created_at: datetime
    updated_at: datetime
    sync_state: SyncState = SyncState.SYNCED


Entity = Task | Event


@dataclass(slots=True, frozen=True)
class Notification:
    id: str
    kind: NotificationKind
    subject_id: str | None
    title: str
    message: str
    created_at: datetime
    read: bool = False
    meta: dict[str, Any] = field(default_factory=dict)


TASK_FIELDS = frozenset(
    {"description", "status", "priority", "due_date", "reminder", "tags", "estimated_duration"}
)
EVENT_FIELDS = frozenset(
    {"title", "description", "start_time", "end_time", "location", "attendees", "reminder"}
)

# Patch keys whose wire column has a different name.
_COLUMNS = {"reminder": "reminder_settings"}


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


def kind_of(entity: Entity) -> EntityKind:
    return EntityKind.TASK if isinstance(entity, Task) else EntityKind.EVENT


# ---- field coercion ----


def parse_timestamp(value: Any, *, field_name: str = "timestamp") -> datetime | None:
    """Accept None, datetime, epoch seconds or an ISO-8601 string; return aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(float(value), tz=UTC)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise ValidationError(f"{field_name}: not an ISO-8601 timestamp: {value!r}") from e
    else:
        raise ValidationError(f"{field_name}: unsupported timestamp type {type(value).__name__}")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def format_timestamp(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _enum(enum_cls: type[StrEnum], raw: Any, default: Any, field_name: str) -> Any:
    if raw is None or raw == "":
        return default
    try:
        return enum_cls(str(raw).strip().lower())
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{field_name}: {raw!r} is not one of {allowed}") from e


def _text(raw: Any) -> str | None:
    if raw is None:
        return None
    s = str(raw).strip()
    return s or None


def _str_list(raw: Any, field_name: str) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str) or not isinstance(raw, Iterable):
        raise ValidationError(f"{field_name}: expected a list of strings")
    out: list[str] = []
    for item in raw:
        if not isinstance(item, str):
            raise ValidationError(f"{field_name}: expected a list of strings")
        item = item.strip()
        if item:
            out.append(item)
    return tuple(out)


def _minutes(raw: Any) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        minutes = int(raw)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"estimated_duration: not a number of minutes: {raw!r}") from e
    if minutes < 0:
        raise ValidationError("estimated_duration: must not be negative")
    return minutes


def parse_reminder(raw: Any) -> ReminderSettings:
    """Drafts use "trigger_time"; wire records use "time". Both are accepted."""
    if raw is None:
        return ReminderSettings()
    if isinstance(raw, ReminderSettings):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError("reminder: expected a mapping with enabled/trigger_time")
    trigger = raw.get("trigger_time", raw.get("time"))
    return ReminderSettings(
        enabled=bool(raw.get("enabled", False)),
        trigger_time=parse_timestamp(trigger, field_name="reminder.trigger_time"),
    )


def _reminder_to_record(reminder: ReminderSettings) -> dict[str, Any]:
    out: dict[str, Any] = {"enabled": reminder.enabled}
    if reminder.trigger_time is not None:
        out["time"] = format_timestamp(reminder.trigger_time)
    return out


# ---- drafts ----


def build_task(
    draft: Mapping[str, Any],
    *,
    owner_id: str,
    now: datetime | None = None,
    sync_state: SyncState = SyncState.SYNCED,
) -> Task:
    if not isinstance(draft, Mapping):
        raise ValidationError("task draft must be a mapping")
    description = _text(draft.get("description"))
    if not description:
        raise ValidationError("description is required")
    if now is None:
        now = utcnow()

    created_at = parse_timestamp(draft.get("created_at"), field_name="created_at") or now
    return Task(
        id=str(draft.get("id") or new_id()),
        owner_id=owner_id,
        description=description,
        status=_enum(TaskStatus, draft.get("status"), TaskStatus.PENDING, "status"),
        priority=_enum(TaskPriority, draft.get("priority"), TaskPriority.MEDIUM, "priority"),
        due_date=parse_timestamp(draft.get("due_date"), field_name="due_date"),
        reminder=parse_reminder(draft.get("reminder")),
        tags=_str_list(draft.get("tags"), "tags"),
        estimated_duration=_minutes(draft.get("estimated_duration")),
        created_at=created_at,
        updated_at=parse_timestamp(draft.get("updated_at"), field_name="updated_at") or created_at,
        sync_state=sync_state,
    )


def build_event(
    draft: Mapping[str, Any],
    *,
    owner_id: str,
    now: datetime | None = None,
    sync_state: SyncState = SyncState.SYNCED,
) -> Event:
    if not isinstance(draft, Mapping):
        raise ValidationError("event draft must be a mapping")
    title = _text(draft.get("title"))
    if not title:
        raise ValidationError("title is required")
    start_time = parse_timestamp(draft.get("start_time"), field_name="start_time")
    if start_time is None:
        raise ValidationError("start_time is required")
    end_time = parse_timestamp(draft.get("end_time"), field_name="end_time")
    if end_time is not None and end_time < start_time:
        raise ValidationError("end_time must not be before start_time")
    if now is None:
        now = utcnow()

    created_at = parse_timestamp(draft.get("created_at"), field_name="created_at") or now
    return Event(
        id=str(draft.get("id") or new_id()),
        owner_id=owner_id,
        title=title,
        description=_text(draft.get("description")),
        start_time=start_time,
        end_time=end_time,
        location=_text(draft.get("location")),
        attendees=_str_list(draft.get("attendees"), "attendees"),
        reminder=parse_reminder(draft.get("reminder")),
        created_at=created_at,
        updated_at=parse_timestamp(draft.get("updated_at"), field_name="updated_at") or created_at,
        sync_state=sync_state,
    )


def build_entity(
    kind: EntityKind,
    draft: Mapping[str, Any],
    *,
    owner_id: str,
    now: datetime | None = None,
    sync_state: SyncState = SyncState.SYNCED,
) -> Entity:
    if kind is EntityKind.TASK:
        return build_task(draft, owner_id=owner_id, now=now, sync_state=sync_state)
    return build_event(draft, owner_id=owner_id, now=now, sync_state=sync_state)


def entity_to_draft(entity: Entity) -> dict[str, Any]:
    if isinstance(entity, Task):
        return {
            "id": entity.id,
            "description": entity.description,
            "status": entity.status,
            "priority": entity.priority,
            "due_date": entity.due_date,
            "reminder": entity.reminder,
            "tags": list(entity.tags),
            "estimated_duration": entity.estimated_duration,
            "created_at": entity.created_at,
            "updated_at": entity.updated_at,
        }
    return {
        "id": entity.id,
        "title": entity.title,
        "description": entity.description,
        "start_time": entity.start_time,
        "end_time": entity.end_time,
        "location": entity.location,
        "attendees": list(entity.attendees),
        "reminder": entity.reminder,
        "created_at": entity.created_at,
        "updated_at": entity.updated_at,
    }


def validate_patch(kind: EntityKind, patch: Mapping[str, Any]) -> None:
    if not isinstance(patch, Mapping) or not patch:
        raise ValidationError("patch must be a non-empty mapping")
    allowed = TASK_FIELDS if kind is EntityKind.TASK else EVENT_FIELDS
    unknown = sorted(set(patch) - allowed)
    if unknown:
        raise ValidationError(f"cannot patch {kind.value} fields: {', '.join(unknown)}")


def apply_patch(
    entity: Entity,
    patch: Mapping[str, Any],
    *,
    now: datetime | None = None,
    sync_state: SyncState = SyncState.PENDING,
) -> Entity:
    """Return a new, fully validated entity with `patch` applied."""
    kind = kind_of(entity)
    validate_patch(kind, patch)
    if now is None:
        now = utcnow()
    draft = entity_to_draft(entity)
    draft.update(patch)
    draft["updated_at"] = now
    return build_entity(kind, draft, owner_id=entity.owner_id, sync_state=sync_state)


# ---- wire records ----


def entity_to_record(entity: Entity) -> dict[str, Any]:
    kind = kind_of(entity)
    record: dict[str, Any] = {kind.id_field: entity.id, "user_id": entity.owner_id}
    if isinstance(entity, Task):
        record.update(
            description=entity.description,
            status=entity.status.value,
            priority=entity.priority.value,
            due_date=format_timestamp(entity.due_date),
            reminder_settings=_reminder_to_record(entity.reminder),
            tags=list(entity.tags),
            estimated_duration=entity.estimated_duration,
        )
    else:
        record.update(
            title=entity.title,
            description=entity.description,
            start_time=format_timestamp(entity.start_time),
            end_time=format_timestamp(entity.end_time),
            location=entity.location,
            attendees=list(entity.attendees),
            reminder_settings=_reminder_to_record(entity.reminder),
        )
    record["created_at"] = format_timestamp(entity.created_at)
    record["updated_at"] = format_timestamp(entity.updated_at)
    return record


def patch_to_record(entity: Entity, keys: Iterable[str]) -> dict[str, Any]:
    """Wire-format subset of `entity` covering the patched keys (plus updated_at)."""
    full = entity_to_record(entity)
    out = {_COLUMNS.get(k, k): full[_COLUMNS.get(k, k)] for k in keys}
    out["updated_at"] = full["updated_at"]
    return out


def entity_from_record(
    kind: EntityKind,
    record: Mapping[str, Any],
    *,
    owner_id: str | None = None,
) -> Entity:
    if not isinstance(record, Mapping):
        raise ValidationError(f"{kind.value} record must be a mapping")
    entity_id = record.get(kind.id_field) or record.get("id")
    if not entity_id:
        raise ValidationError(f"{kind.value} record has no {kind.id_field}")
    owner = record.get("user_id") or owner_id
    if not owner:
        raise ValidationError(f"{kind.value} record {entity_id} has no user_id")

    draft = {k: v for k, v in record.items() if k not in (kind.id_field, "user_id", "reminder_settings")}
    draft["id"] = str(entity_id)
    draft["reminder"] = record.get("reminder_settings")
    return build_entity(kind, draft, owner_id=str(owner))


def with_sync_state(entity: Entity, state: SyncState) -> Entity:
    return replace(entity, sync_state=state)
