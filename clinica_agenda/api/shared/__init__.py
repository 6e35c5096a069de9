"""
Shared utilities for the Clinica Agenda API.
"""

from .validators import (
    validate_choice,
    validate_date_string,
    validate_docname,
    validate_positive_int,
    validate_time_string,
)

__all__ = [
    "validate_choice",
    "validate_date_string",
    "validate_docname",
    "validate_positive_int",
    "validate_time_string",
]
