"""SpeakTaskr: capture tasks and calendar events in plain words, kept in sync with a durable store."""
