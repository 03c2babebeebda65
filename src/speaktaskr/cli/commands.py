# src/speaktaskr/cli/commands.py

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

from ..core.errors import DurableOperationFailed, StaleCallback, ValidationError
from ..core.models import EntityKind, Event, Notification, SyncState, Task, TaskStatus, utcnow
from ..core.state import AppState
from ..llm.client import friendly_llm_error_message
from ..sync.session import SyncSession
from .bootstrap import end_session, start_session

CommandEmitter = Callable[[str], None]
CommandHandler = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]

logger = logging.getLogger(__name__)

NOT_SIGNED_IN = "Not signed in. Use /login <owner>."


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /tasks, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."
        return await handler(state, parts[1:], emit)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- formatting ----


def _fmt_ts(dt: datetime | None) -> str:
    if dt is None:
        return "-"
    return dt.astimezone().strftime("%b %d, %H:%M")


def _sync_flag(state: SyncState) -> str:
    if state is SyncState.FAILED:
        return " [not synced]"
    if state is SyncState.PENDING:
        return " [saving]"
    return ""


def format_task(i: int, task: Task) -> str:
    done = "x" if task.status is TaskStatus.COMPLETED else " "
    due = f" due {_fmt_ts(task.due_date)}" if task.due_date else ""
    tags = f" #{' #'.join(task.tags)}" if task.tags else ""
    bell = " (reminder)" if task.reminder.is_armed else ""
    return f"{i}. [{done}] {task.id[:8]} ({task.priority.value}) {task.description}{due}{tags}{bell}{_sync_flag(task.sync_state)}"


def format_event(i: int, event: Event) -> str:
    end = f"-{event.end_time.astimezone().strftime('%H:%M')}" if event.end_time else ""
    where = f" @ {event.location}" if event.location else ""
    bell = " (reminder)" if event.reminder.is_armed else ""
    return f"{i}. {event.id[:8]} {_fmt_ts(event.start_time)}{end} {event.title}{where}{bell}{_sync_flag(event.sync_state)}"


def format_notification(n: Notification) -> str:
    dot = " " if n.read else "*"
    return f"{dot} {n.id[:8]} {n.created_at.astimezone().strftime('%H:%M')} {n.title}: {n.message}"


# ---- helpers ----


def resolve_id(session: SyncSession, token: str, kind: EntityKind | None = None) -> tuple[EntityKind, str]:
    """Resolve a full id or a unique id prefix (as printed by /tasks and /events)."""
    token = (token or "").strip()
    if not token:
        raise ValidationError("missing id")
    kinds = [kind] if kind is not None else list(EntityKind)
    matches = [(k, e.id) for k in kinds for e in session.list(k) if e.id == token or e.id.startswith(token)]
    exact = [m for m in matches if m[1] == token]
    if exact:
        return exact[0]
    if not matches:
        raise ValidationError(f"nothing matches id {token!r}")
    if len(matches) > 1:
        raise ValidationError(f"id prefix {token!r} is ambiguous")
    return matches[0]


async def capture_text(state: AppState, text: str) -> str:
    """Free text -> parser -> optimistic create. Returns a user-facing notice."""
    session = state.session
    if session is None:
        return NOT_SIGNED_IN

    try:
        kind, draft = await asyncio.to_thread(state.parser.parse, text)
    except ValidationError as e:
        return f"Could not understand that: {e}"
    except RuntimeError as e:
        msg = friendly_llm_error_message(e)
        logger.info("Parser runtime error: %s", msg)
        return f"[LLM] {msg}"

    try:
        entity = await session.create(kind, draft)
    except ValidationError as e:
        return f"Could not create it: {e}"
    except DurableOperationFailed as e:
        return f"Saved locally, but sync failed ({e}). It stays in your list marked as not synced."
    except StaleCallback:
        return "You signed out before the save finished; it was discarded."

    if isinstance(entity, Task):
        return f"Task created: {entity.description} ({entity.priority.value})"
    return f"Event created: {entity.title} at {_fmt_ts(entity.start_time)}"


async def _mutate(coro: Awaitable[object], ok: str) -> str:
    try:
        await coro
    except ValidationError as e:
        return f"Rejected: {e}"
    except DurableOperationFailed as e:
        return f"{ok} locally, but sync failed ({e})."
    except StaleCallback:
        return "Session changed before the change was confirmed."
    return ok


# ---- commands ----


async def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    session = state.session
    if session is None:
        return f"Status:\n  Signed in: no\n  Premium: {'yes' if state.is_premium else 'no'}"
    lost = ", ".join(k.value for k in sorted(session.lost_feeds)) or "none"
    return (
        "Status:\n"
        f"  Signed in: {session.owner_id}\n"
        f"  Premium: {'yes' if state.is_premium else 'no'}\n"
        f"  Tasks: {len(session.list(EntityKind.TASK))}  Events: {len(session.list(EntityKind.EVENT))}\n"
        f"  Unread notifications: {session.unread_count()}\n"
        f"  Lost feeds: {lost}\n"
        f"  Parser: {type(state.parser).__name__}"
    )


async def cmd_login(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /login <owner>"
    owner_id = args[0]
    try:
        session = await start_session(state, owner_id)
    except DurableOperationFailed as e:
        return f"Could not sign in as {owner_id}: loading failed ({e}). Try /login again."
    return (
        f"Signed in as {owner_id}: {len(session.list(EntityKind.TASK))} task(s), "
        f"{len(session.list(EntityKind.EVENT))} event(s)."
    )


async def cmd_logout(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if state.session is None:
        return "Already signed out."
    owner_id = state.session.owner_id
    await end_session(state)
    return f"Signed out {owner_id}. Local cache cleared."


async def cmd_tasks(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if state.session is None:
        return NOT_SIGNED_IN
    tasks = state.session.list(EntityKind.TASK)
    if not tasks:
        return "No tasks yet. Type something like: call the dentist tomorrow"
    return "\n".join(["Tasks:"] + [format_task(i, t) for i, t in enumerate(tasks, start=1)])


async def cmd_events(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if state.session is None:
        return NOT_SIGNED_IN
    events = state.session.list(EntityKind.EVENT)
    if not events:
        return "No events scheduled."
    return "\n".join(["Events:"] + [format_event(i, e) for i, e in enumerate(events, start=1)])


async def _set_task_status(state: AppState, args: list[str], usage: str, target: TaskStatus | None) -> str:
    """target=None toggles completed <-> pending (the task list checkbox)."""
    session = state.session
    if session is None:
        return NOT_SIGNED_IN
    if not args:
        return usage
    try:
        _, task_id = resolve_id(session, args[0], EntityKind.TASK)
    except ValidationError as e:
        return str(e)
    task = session.cache.get(EntityKind.TASK, task_id)
    if target is None:
        done = isinstance(task, Task) and task.status is TaskStatus.COMPLETED
        target = TaskStatus.PENDING if done else TaskStatus.COMPLETED
    ok = "Marked completed" if target is TaskStatus.COMPLETED else "Reopened"
    return await _mutate(session.update(task_id, {"status": target.value}, kind=EntityKind.TASK), ok)


async def cmd_done(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return await _set_task_status(state, args, "Usage: /done <task id>", None)


async def cmd_reopen(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return await _set_task_status(state, args, "Usage: /reopen <task id>", TaskStatus.PENDING)


async def cmd_delete(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    session = state.session
    if session is None:
        return NOT_SIGNED_IN
    if not args:
        return "Usage: /delete <id>"
    try:
        kind, entity_id = resolve_id(session, args[0])
    except ValidationError as e:
        return str(e)
    return await _mutate(session.delete(entity_id, kind=kind), "Deleted")


_REMIND_USAGE = "Usage: /remind <id> <minutes|-15m|-1h|-1d|HH:MM|off>"
_OFFSET_RE = re.compile(r"^([+-])(\d+)([mhd])$")
_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_UNITS = {"m": "minutes", "h": "hours", "d": "days"}


def _reference_time(entity: Task | Event) -> datetime | None:
    return entity.start_time if isinstance(entity, Event) else entity.due_date


def reminder_trigger(spec: str, entity: Task | Event, *, now: datetime) -> datetime:
    """
    Turn a /remind argument into a trigger_time.

    - "15" or "+15m": that long from now,
    - "-15m", "-2h", "-1d": that long before the due date / start time,
    - "HH:MM": that local clock time on the due/start day; if it is not
      before the reference, the day before.
    """
    spec = spec.strip().lower()
    if spec.replace(".", "", 1).isdigit():
        return now + timedelta(minutes=float(spec))
    m = _OFFSET_RE.match(spec)
    if m is not None:
        sign, amount, unit = m.groups()
        delta = timedelta(**{_UNITS[unit]: int(amount)})
        if sign == "+":
            return now + delta
        reference = _reference_time(entity)
        if reference is None:
            raise ValidationError("it has no due date or start time to count back from")
        return reference - delta

    c = _CLOCK_RE.match(spec)
    if c is None:
        raise ValidationError(f"unrecognized reminder time {spec!r}")
    hour, minute = int(c.group(1)), int(c.group(2))
    if hour > 23 or minute > 59:
        raise ValidationError(f"not a clock time: {spec}")
    reference = _reference_time(entity)
    if reference is None:
        raise ValidationError("it has no due date or start time to pick a day from")
    local_ref = reference.astimezone()
    trigger = local_ref.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if trigger >= local_ref:
        trigger -= timedelta(days=1)
    return trigger.astimezone(UTC)


async def cmd_remind(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /remind <id> <minutes>         -> remind in N minutes
    /remind <id> -15m | -1h | -1d  -> before the due date / start time
    /remind <id> HH:MM             -> at a clock time before the due date / start time
    /remind <id> off               -> disable the reminder
    """
    session = state.session
    if session is None:
        return NOT_SIGNED_IN
    if len(args) < 2:
        return _REMIND_USAGE
    try:
        kind, entity_id = resolve_id(session, args[0])
    except ValidationError as e:
        return str(e)

    if args[1].lower() == "off":
        return await _mutate(
            session.update(entity_id, {"reminder": {"enabled": False}}, kind=kind),
            "Reminder disabled",
        )
    entity = session.cache.get(kind, entity_id)
    if entity is None:
        return f"nothing matches id {args[0]!r}"
    try:
        trigger = reminder_trigger(args[1], entity, now=utcnow())
    except ValidationError as e:
        return f"Cannot set that reminder: {e}."
    return await _mutate(
        session.update(entity_id, {"reminder": {"enabled": True, "trigger_time": trigger}}, kind=kind),
        f"Reminder set for {_fmt_ts(trigger)}",
    )


async def cmd_prioritize(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    session = state.session
    if session is None:
        return NOT_SIGNED_IN
    if not state.is_premium:
        return "Smart prioritization is a premium feature. Use /premium on to unlock it."
    tasks = session.prioritize()
    return "\n".join(["Tasks prioritized:"] + [format_task(i, t) for i, t in enumerate(tasks, start=1)])


async def cmd_premium(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return f"Premium is {'ON' if state.is_premium else 'OFF'}. Use /premium on or /premium off."
    arg = args[0].lower()
    if arg in ("on", "1", "true", "yes"):
        state.is_premium = True
        return "Premium features unlocked."
    if arg in ("off", "0", "false", "no"):
        state.is_premium = False
        return "Premium features locked."
    return "Usage: /premium on or /premium off."


async def cmd_notifications(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    session = state.session
    if session is None:
        return NOT_SIGNED_IN
    items = session.notifications()
    if not items:
        return "No notifications yet."
    header = f"Notifications ({session.unread_count()} unread):"
    return "\n".join([header] + [format_notification(n) for n in items])


def _resolve_notification(session: SyncSession, token: str) -> str | None:
    matches = [n.id for n in session.notifications() if n.id.startswith(token)]
    return matches[0] if len(matches) == 1 else None


async def cmd_read(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    session = state.session
    if session is None:
        return NOT_SIGNED_IN
    if not args:
        return "Usage: /read <id|all>"
    if args[0].lower() == "all":
        n = session.registry.mark_all_read()
        return f"Marked {n} notification(s) as read."
    notification_id = _resolve_notification(session, args[0])
    if notification_id is None or not session.registry.mark_read(notification_id):
        return f"No single notification matches {args[0]!r}."
    return "Marked as read."


async def cmd_dismiss(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    session = state.session
    if session is None:
        return NOT_SIGNED_IN
    if not args:
        return "Usage: /dismiss <id>"
    notification_id = _resolve_notification(session, args[0])
    if notification_id is None or not session.registry.remove(notification_id):
        return f"No single notification matches {args[0]!r}."
    return "Dismissed."


async def cmd_clear(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    session = state.session
    if session is None:
        return NOT_SIGNED_IN
    n = session.registry.clear_all()
    return f"Cleared {n} notification(s)."


async def cmd_resync(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    session = state.session
    if session is None:
        return NOT_SIGNED_IN
    if emit:
        emit("[SYNC] Reconnecting live updates...")
    try:
        await session.resubscribe()
    except DurableOperationFailed as e:
        return f"Reconnected, but reloading failed ({e})."
    return "Live updates reconnected."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show session, premium and sync status.")
registry.register("login", cmd_login, help_text="Sign in as an owner: /login <owner>.")
registry.register("logout", cmd_logout, help_text="Sign out and clear the local cache.")
registry.register("tasks", cmd_tasks, help_text="List tasks.", aliases=["t"])
registry.register("events", cmd_events, help_text="List events by start time.", aliases=["e"])
registry.register("done", cmd_done, help_text="Toggle a task between completed and pending: /done <id>.")
registry.register("reopen", cmd_reopen, help_text="Mark a task pending again: /reopen <id>.", aliases=["undo"])
registry.register("delete", cmd_delete, help_text="Delete a task or event: /delete <id>.", aliases=["rm"])
registry.register("remind", cmd_remind, help_text="Set a reminder: /remind <id> <minutes|-15m|-1h|-1d|HH:MM|off>.")
registry.register("prioritize", cmd_prioritize, help_text="Reorder tasks by priority and due date (premium).")
registry.register("premium", cmd_premium, help_text="Toggle premium features: /premium on | /premium off.")
registry.register("notifications", cmd_notifications, help_text="Show notifications.", aliases=["n"])
registry.register("read", cmd_read, help_text="Mark notifications read: /read <id|all>.")
registry.register("dismiss", cmd_dismiss, help_text="Remove one notification: /dismiss <id>.")
registry.register("clear", cmd_clear, help_text="Remove all notifications.")
registry.register("resync", cmd_resync, help_text="Reconnect live updates and reload.")
