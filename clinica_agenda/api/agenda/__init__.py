"""
Agenda API Domain

Day slots, recurrence preview/creation, skip/restore, biweekly hints,
status changes and group session generation.
"""

from .endpoints import (
    create_appointment,
    generate_group_sessions,
    get_biweekly_hint,
    get_day_slots,
    preview_recurrence,
    set_occurrence_exception,
    update_appointment_status,
)

__all__ = [
    "create_appointment",
    "generate_group_sessions",
    "get_biweekly_hint",
    "get_day_slots",
    "preview_recurrence",
    "set_occurrence_exception",
    "update_appointment_status",
]
