"""
Scheduling Services Module

This module provides the clinic scheduling engine:
- Day slot generation (slots.py, exceptions.py)
- Recurrence expansion, skip/restore and window extension (recurrence.py)
- Biweekly pairing (biweekly.py)
- Group session dates (group_sessions.py)
- Status transitions (status.py)
- Selection context and fetch ordering (selection.py)
- Frappe data access (data.py) and scheduled tasks (tasks.py)

Everything except data.py and tasks.py is free of Frappe imports.
"""
