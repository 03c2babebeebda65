# src/speaktaskr/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Every value has a default so the console app runs offline out of the box.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "SPEAKTASKR"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path | None) -> Path | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    data_dir: Path

    # ---- Session ----
    owner_id: str
    premium: bool
    console_notifications: bool

    # ---- Reminders ----
    reminder_interval_seconds: float
    reminder_window_seconds: float
    reminder_fire_overdue: bool
    reminder_overdue_horizon_seconds: float
    fired_ledger_path: Path | None

    # ---- LLM / OpenRouter (draft parser) ----
    openrouter_api_key: str | None
    openrouter_base_url: str
    llm_models: list[str]
    extra_headers: dict[str, str]

    @staticmethod
    def from_env() -> Settings:
        app_name = _first_env(_k("APP_NAME"), default="SpeakTaskr") or "SpeakTaskr"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/speaktaskr")) or Path(".local/speaktaskr")

        owner_id = _env(_k("OWNER_ID"), "local").strip() or "local"
        premium = _env_bool(_k("PREMIUM"), False)
        console_notifications = _env_bool(_k("CONSOLE_NOTIFICATIONS"), True)

        reminder_interval_seconds = _env_float(_k("REMINDER_INTERVAL_SECONDS"), 30.0)
        reminder_window_seconds = _env_float(_k("REMINDER_WINDOW_SECONDS"), 60.0)
        reminder_fire_overdue = _env_bool(_k("REMINDER_FIRE_OVERDUE"), False)
        reminder_overdue_horizon_seconds = _env_float(_k("REMINDER_OVERDUE_HORIZON_SECONDS"), 86400.0)
        fired_ledger_path = _env_path(_k("FIRED_LEDGER_PATH"), None)

        openrouter_api_key = _first_env(_k("OPENROUTER_API_KEY"), "OPENROUTER_API_KEY", default=None)
        openrouter_base_url = _env(_k("OPENROUTER_BASE_URL"), "https://openrouter.ai/api/v1")

        http_referer = _env(_k("HTTP_REFERER"), "https://example.com")
        # Use explicit title header if provided; else fall back to app_name
        title = _env(_k("APP_TITLE"), app_name)
        extra_headers = {
            "HTTP-Referer": http_referer,
            "X-Title": title,
        }

        llm_models = _env_list(
            _k("LLM_MODELS"),
            [
                "google/gemini-2.0-flash-001",
                "qwen/qwen-2.5-72b-instruct:free",
            ],
        )

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            owner_id=owner_id,
            premium=premium,
            console_notifications=console_notifications,
            reminder_interval_seconds=reminder_interval_seconds,
            reminder_window_seconds=reminder_window_seconds,
            reminder_fire_overdue=reminder_fire_overdue,
            reminder_overdue_horizon_seconds=reminder_overdue_horizon_seconds,
            fired_ledger_path=fired_ledger_path,
            openrouter_api_key=openrouter_api_key,
            openrouter_base_url=openrouter_base_url,
            llm_models=llm_models,
            extra_headers=extra_headers,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
