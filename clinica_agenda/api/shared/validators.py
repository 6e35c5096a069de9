"""
Agenda Validators

Validation utilities for whitelisted endpoint arguments. Every failure is
reported with frappe.throw(..., frappe.ValidationError).
"""

import re
from enum import Enum
from typing import Any, Optional, Type

import frappe
from frappe import _


def validate_date_string(date_str: str, field_name: str = "date") -> str:
    """
    Validate date string format (YYYY-MM-DD).

    Args:
        date_str: Date string to validate
        field_name: Name of field for error messages

    Returns:
        str: Validated date string

    Raises:
        frappe.ValidationError: If date format is invalid
    """
    if not date_str:
        frappe.throw(_(f"{field_name} is required"), frappe.ValidationError)

    date_str = str(date_str).strip()

    if not re.match(r"^\d{4}-\d{2}-\d{2}$", date_str):
        frappe.throw(
            _(f"Invalid {field_name} format. Use YYYY-MM-DD"), frappe.ValidationError
        )

    return date_str


def validate_time_string(time_str: str, field_name: str = "time") -> str:
    """
    Validate time string format (HH:MM, 24h).

    Raises:
        frappe.ValidationError: If time format is invalid
    """
    if not time_str:
        frappe.throw(_(f"{field_name} is required"), frappe.ValidationError)

    time_str = str(time_str).strip()

    if not re.match(r"^([01]\d|2[0-3]):[0-5]\d$", time_str):
        frappe.throw(_(f"Invalid {field_name} format. Use HH:MM"), frappe.ValidationError)

    return time_str


def validate_choice(value: Any, choices: Type[Enum], field_name: str = "value") -> str:
    """Value must be one of the enum's values."""
    allowed = [c.value for c in choices]
    if value not in allowed:
        frappe.throw(
            _(f"Invalid {field_name}. Allowed: {', '.join(allowed)}"), frappe.ValidationError
        )
    return value


def validate_positive_int(value: Any, field_name: str = "value", maximum: Optional[int] = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        frappe.throw(_(f"{field_name} must be an integer"), frappe.ValidationError)

    if number <= 0:
        frappe.throw(_(f"{field_name} must be greater than zero"), frappe.ValidationError)
    if maximum is not None and number > maximum:
        frappe.throw(_(f"{field_name} must be at most {maximum}"), frappe.ValidationError)

    return number


def validate_docname(name: str, field_name: str = "name") -> str:
    """
    Validate a document name (ID).

    Ensures the name is not too long and doesn't contain injection patterns.

    Raises:
        frappe.ValidationError: If name is invalid
    """
    if not name:
        frappe.throw(_(f"{field_name} is required"), frappe.ValidationError)

    name = str(name).strip()

    if len(name) > 140:
        frappe.throw(_(f"{field_name} is too long"), frappe.ValidationError)

    dangerous_patterns = [
        r"<script",
        r"javascript:",
        r"SELECT\s+",
        r"INSERT\s+",
        r"UPDATE\s+",
        r"DELETE\s+",
        r"DROP\s+",
        r"UNION\s+",
        r"--",
        r";",
    ]

    for pattern in dangerous_patterns:
        if re.search(pattern, name, re.IGNORECASE):
            frappe.throw(_(f"Invalid {field_name}"), frappe.ValidationError)

    return name
