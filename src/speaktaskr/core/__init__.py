"""
Core domain.

Components:
- models.py: Task / Event / Notification value types and record conversion
- errors.py: exception hierarchy
- ports.py: protocols for the durable store, notification sink and draft parser
- feed.py: ChangeSubscription (per-collection change channel)
- state.py: AppState shared by front ends
"""
