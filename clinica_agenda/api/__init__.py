"""
Clinica Agenda API

Structure:
    api/
    ├── __init__.py              # This file
    ├── agenda/                  # Agenda domain
    │   ├── __init__.py          # Re-exports from endpoints
    │   └── endpoints.py         # Whitelisted endpoints
    └── shared/                  # Shared utilities
        ├── __init__.py
        └── validators.py        # Request argument validators

Usage:
    frappe.call("clinica_agenda.api.agenda.get_day_slots", ...)
"""

from . import agenda
from . import shared

__all__ = [
    "agenda",
    "shared",
]
