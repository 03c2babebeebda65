"""
Sync subsystem.

Components:
- cache.py: owner-scoped optimistic EntityCache
- reconciler.py: change-feed payloads -> cache mutations
- memory_store.py: in-process DurableStore with change feeds
- session.py: SyncSession tying feeds, cache and reminders to one owner
"""
