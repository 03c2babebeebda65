# src/speaktaskr/llm/client.py

from __future__ import annotations

import json
import logging
import os
import re
import time
from datetime import datetime
from typing import Any

import httpx
import openai
from openai import OpenAI

from ..core.errors import ValidationError
from ..core.models import EntityKind, utcnow

logger = logging.getLogger(__name__)

_BAD_MODELS: dict[str, float] = {}  # model -> retry_at (monotonic)

PARSER_SYSTEM_PROMPT = """You are a task and calendar event parser. Analyze the user's input and determine if it's a task or calendar event.
The current time is {now}. Resolve relative dates ("tomorrow at 3 PM") against it.

For tasks, respond with JSON:
{{
  "type": "task",
  "description": "the main task",
  "priority": "high|medium|low",
  "dueDate": "ISO date string if mentioned",
  "reminderSettings": {{ "enabled": boolean, "time": "ISO date string" }},
  "tags": ["array", "of", "tags"],
  "estimatedDuration": "duration in minutes if mentioned"
}}

For calendar events, respond with JSON:
{{
  "type": "event",
  "title": "event title",
  "startTime": "ISO date string",
  "endTime": "ISO date string if mentioned",
  "location": "location if mentioned",
  "attendees": ["list of people"],
  "reminderSettings": {{ "enabled": boolean, "time": "ISO date string" }},
  "description": "additional details"
}}

Only respond with valid JSON, no other text."""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_MINUTES_RE = re.compile(r"\d+")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    s = raw.strip()
    if not s:
        return default
    try:
        return float(s)
    except ValueError:
        return default


def _is_auth_error(exc: Exception) -> bool:
    return exc.__class__.__name__ in {
        "AuthenticationError",
        "PermissionDeniedError",
        "UnauthorizedError",
    }


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"RateLimitError", "TooManyRequestsError"}


def _is_connection_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.APIConnectionError, httpx.TimeoutException)):
        return True
    return exc.__class__.__name__ in {"APIConnectionError", "APITimeoutError"}


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, openai.NotFoundError)


def friendly_llm_error_message(err: Exception) -> str:
    msg = str(err).strip() or "LLM error."
    if "LLM API key is not set" in msg:
        return "LLM is not configured (missing API key). Set SPEAKTASKR_OPENROUTER_API_KEY in .env."
    if "LLM model list is empty" in msg:
        return "LLM is not configured (no models). Set SPEAKTASKR_LLM_MODELS in .env."
    return msg


# ---- response -> draft ----


def _reminder(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    return {"enabled": bool(raw.get("enabled")), "trigger_time": raw.get("time") or None}


def _minutes(raw: Any) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return int(raw)
    m = _MINUTES_RE.search(str(raw))
    return int(m.group(0)) if m else None


def parse_draft_json(raw: str) -> tuple[EntityKind, dict[str, Any]]:
    """
    Convert the model's JSON answer into (kind, draft) for EntityCache.create().

    Raises ValidationError when the answer is not a JSON object.
    """
    text = _FENCE_RE.sub("", (raw or "").strip())
    try:
        data = json.loads(text)
    except ValueError as e:
        raise ValidationError(f"parser returned invalid JSON: {raw[:200]!r}") from e
    if not isinstance(data, dict):
        raise ValidationError("parser returned JSON that is not an object")

    kind = EntityKind.EVENT if str(data.get("type", "task")).lower() == "event" else EntityKind.TASK

    draft: dict[str, Any]
    if kind is EntityKind.TASK:
        draft = {
            "description": data.get("description"),
            "priority": data.get("priority") or None,
            "due_date": data.get("dueDate") or None,
            "tags": [str(t) for t in data.get("tags") or [] if t],
            "estimated_duration": _minutes(data.get("estimatedDuration")),
        }
    else:
        draft = {
            "title": data.get("title"),
            "description": data.get("description") or None,
            "start_time": data.get("startTime") or None,
            "end_time": data.get("endTime") or None,
            "location": data.get("location") or None,
            "attendees": [str(a) for a in data.get("attendees") or [] if a],
        }

    reminder = _reminder(data.get("reminderSettings"))
    if reminder is not None:
        draft["reminder"] = reminder
    return kind, {k: v for k, v in draft.items() if v is not None}


class OpenRouterDraftParser:
    """
    Free text -> task/event draft via an OpenAI-compatible chat completion.

    Behavior:
    - Tries models in the order from settings (SPEAKTASKR_LLM_MODELS).
    - 404 (model not available) -> remember for an hour, try next.
    - Rate limit / network issues / unparseable answer -> try next.
    - Auth issues -> fail fast (no retries across models).
    """

    def __init__(self, settings: Any, *, client: OpenAI | None = None, clock=utcnow) -> None:
        self._models: list[str] = [m.strip() for m in getattr(settings, "llm_models", []) or [] if m.strip()]
        self._headers: dict[str, str] = dict(getattr(settings, "extra_headers", {}) or {})
        self._clock = clock

        if not self._models:
            raise RuntimeError("LLM model list is empty. Set SPEAKTASKR_LLM_MODELS in your .env.")

        if client is None:
            api_key = getattr(settings, "openrouter_api_key", None)
            base_url = getattr(settings, "openrouter_base_url", "") or ""
            if not api_key or not str(api_key).strip():
                raise RuntimeError("LLM API key is not set. Set SPEAKTASKR_OPENROUTER_API_KEY in your .env.")
            timeout = httpx.Timeout(
                connect=_env_float("SPEAKTASKR_LLM_CONNECT_TIMEOUT_SECONDS", 5.0),
                read=_env_float("SPEAKTASKR_LLM_READ_TIMEOUT_SECONDS", 25.0),
                write=10.0,
                pool=5.0,
            )
            # No automatic retries: fall back across models quickly instead.
            client = OpenAI(base_url=str(base_url), api_key=str(api_key), timeout=timeout, max_retries=0)
        self._client = client

    def _complete(self, model: str, text: str, now: datetime) -> str:
        completion = self._client.chat.completions.create(
            model=model,
            temperature=0.1,
            extra_headers=self._headers or None,
            messages=[
                {"role": "system", "content": PARSER_SYSTEM_PROMPT.format(now=now.isoformat())},
                {"role": "user", "content": text},
            ],
        )
        return completion.choices[0].message.content or ""

    def parse(self, text: str) -> tuple[EntityKind, dict[str, Any]]:
        last_error: Exception | None = None
        now = self._clock()

        for model in self._models:
            retry_at = _BAD_MODELS.get(model)
            if retry_at is not None and retry_at > time.monotonic():
                continue

            t0 = time.monotonic()
            try:
                content = self._complete(model, text, now)
                result = parse_draft_json(content)
                logger.info("LLM: parsed %s with model=%s (%.2fs)", result[0].value, model, time.monotonic() - t0)
                return result
            except ValidationError as e:
                last_error = e
                logger.info("LLM: unusable answer from model=%s (%s), trying next", model, e)
                continue
            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise RuntimeError(
                        "LLM authentication failed. Check your API key (SPEAKTASKR_OPENROUTER_API_KEY)."
                    ) from e

                if _is_not_found_error(e):
                    _BAD_MODELS[model] = time.monotonic() + 3600.0
                    logger.info("LLM: model not available (404): %s", model)
                    continue

                if _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                    continue

                if _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                    continue

                logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

        if last_error is not None:
            if _is_rate_limit_error(last_error):
                raise RuntimeError("LLM is rate-limited. Try again later.") from last_error
            if _is_connection_error(last_error):
                raise RuntimeError("LLM network/timeout error. Try again later or change models.") from last_error
            raise RuntimeError("All LLM models failed.") from last_error

        raise RuntimeError("All LLM models failed.")
