"""Draft parsers (OpenRouter LLM and offline fallback)."""
