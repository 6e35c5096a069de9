"""
Scheduling Errors

Domain exceptions raised by the pure scheduling engine. The Frappe layer
translates them into frappe.ValidationError at the endpoint/doctype boundary.
"""

from typing import Any, Optional


class SchedulingError(Exception):
	"""Base class for every error raised by the scheduling engine."""
	pass


class InvalidTimeError(SchedulingError, ValueError):
	"""
	Horario inválido recibido de la capa de datos.

	Cubre strings HH:MM mal formadas y rangos invertidos (start >= end)
	en reglas o excepciones. Es una violación de contrato: no se recupera.
	"""
	pass


class RecurrenceValidationError(SchedulingError, ValueError):
	"""Recurrence request rejected before materialization."""

	def __init__(self, field: str, message: str):
		super().__init__(message)
		self.field = field
		self.message = message


class OccurrenceConflictError(SchedulingError):
	"""
	Una ocurrencia de la serie choca con un agendamiento existente.

	occurrence_index es 1-based, para que el llamador decida si conserva
	el prefijo ya creado o hace rollback.
	"""

	def __init__(self, occurrence_index: int, conflicting: Optional[Any] = None, message: Optional[str] = None):
		super().__init__(message or f"Conflito de horário na ocorrência {occurrence_index}")
		self.occurrence_index = occurrence_index
		self.conflicting = conflicting


class OccurrenceExceptionError(SchedulingError):
	"""Skip/restore requested on a date that cannot be toggled. State is left unchanged."""

	def __init__(self, date_str: str, message: str):
		super().__init__(message)
		self.date = date_str


class InvalidStatusTransitionError(SchedulingError):
	"""Appointment status change not allowed by the transition table."""

	def __init__(self, current: str, target: str):
		super().__init__(f"Transição de status inválida: {current} -> {target}")
		self.current = current
		self.target = target
