# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Put them in .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "SPEAKTASKR_APP_NAME": "App display name, also used in reminder titles (default: SpeakTaskr).",
    "SPEAKTASKR_LOG_LEVEL": "Console logging level (default: INFO).",
    "SPEAKTASKR_DATA_DIR": "Local data directory for logs (default: .local/speaktaskr).",
    # Session
    "SPEAKTASKR_OWNER_ID": "Owner signed in at startup (default: local).",
    "SPEAKTASKR_PREMIUM": "Unlock premium features such as /prioritize (true/false).",
    "SPEAKTASKR_CONSOLE_NOTIFICATIONS": "Print reminders into the console (true/false, default: true).",
    # Reminders
    "SPEAKTASKR_REMINDER_INTERVAL_SECONDS": "Scheduler tick period (default: 30).",
    "SPEAKTASKR_REMINDER_WINDOW_SECONDS": "Look-ahead window, longer than the tick period (default: 60).",
    "SPEAKTASKR_REMINDER_FIRE_OVERDUE": "Also fire reminders whose time already passed (true/false).",
    "SPEAKTASKR_REMINDER_OVERDUE_HORIZON_SECONDS": "With overdue firing on, how far back a missed reminder still fires (default: 86400).",
    "SPEAKTASKR_FIRED_LEDGER_PATH": "Optional JSON file remembering fired reminders across restarts.",
    # LLM / OpenRouter
    "SPEAKTASKR_OPENROUTER_API_KEY": "OpenRouter API key (without it the offline parser is used).",
    "SPEAKTASKR_OPENROUTER_BASE_URL": "OpenRouter base URL (default: https://openrouter.ai/api/v1).",
    "SPEAKTASKR_LLM_MODELS": "Comma/space separated list of models to try in order.",
    "SPEAKTASKR_LLM_CONNECT_TIMEOUT_SECONDS": "HTTP connect timeout for the LLM (default: 5).",
    "SPEAKTASKR_LLM_READ_TIMEOUT_SECONDS": "HTTP read timeout for the LLM (default: 25).",
    "SPEAKTASKR_HTTP_REFERER": "Optional OpenRouter metadata header.",
    "SPEAKTASKR_APP_TITLE": "Optional OpenRouter metadata header title.",
}
