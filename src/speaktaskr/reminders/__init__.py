"""
Reminder subsystem.

Components:
- scheduler.py: polling scheduler that fires reminders once per trigger time
- registry.py: in-app NotificationRegistry
- ledger.py: FiredReminderLedger (fired-once bookkeeping, optionally on disk)
- sinks.py: NotificationSink implementations
"""
