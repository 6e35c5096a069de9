"""
Appointment status transitions.

Mapa de transiciones válidas y campos a actualizar en cada cambio.
"""

from datetime import datetime
from typing import Any, Dict

from .errors import InvalidStatusTransitionError
from .models import CANCELLED_STATUSES, AppointmentStatus


S = AppointmentStatus

VALID_TRANSITIONS = {
	S.AGENDADO: frozenset({
		S.CONFIRMADO, S.FINALIZADO, S.NAO_COMPARECEU, S.CANCELADO_PACIENTE, S.CANCELADO_PROFISSIONAL,
	}),
	S.CONFIRMADO: frozenset({
		S.FINALIZADO, S.NAO_COMPARECEU, S.CANCELADO_PACIENTE, S.CANCELADO_PROFISSIONAL,
	}),
	S.FINALIZADO: frozenset(),
	S.NAO_COMPARECEU: frozenset({S.CANCELADO_PACIENTE, S.CANCELADO_PROFISSIONAL, S.AGENDADO}),
	S.CANCELADO_PACIENTE: frozenset({S.NAO_COMPARECEU, S.CANCELADO_PROFISSIONAL, S.AGENDADO}),
	S.CANCELADO_PROFISSIONAL: frozenset({S.NAO_COMPARECEU, S.CANCELADO_PACIENTE, S.AGENDADO}),
}

STATUS_LABELS = {
	S.AGENDADO: "Agendado",
	S.CONFIRMADO: "Confirmado",
	S.FINALIZADO: "Finalizado",
	S.NAO_COMPARECEU: "Não compareceu",
	S.CANCELADO_PACIENTE: "Cancelado pelo paciente",
	S.CANCELADO_PROFISSIONAL: "Cancelado pelo profissional",
}


def is_valid_transition(current: Any, target: Any) -> bool:
	try:
		current, target = S(current), S(target)
	except ValueError:
		return False
	return target in VALID_TRANSITIONS[current]


def check_transition(current: Any, target: Any) -> None:
	"""Raises InvalidStatusTransitionError unless current -> target is allowed (no-op when equal)."""
	if current == target:
		return
	if not is_valid_transition(current, target):
		raise InvalidStatusTransitionError(str(getattr(current, "value", current)), str(getattr(target, "value", target)))


def compute_status_update(target: Any, now: datetime) -> Dict[str, Any]:
	"""
	Campos a escribir al pasar a target.

	- CONFIRMADO: confirmed_at = now
	- cancelados: cancelled_at = now
	- AGENDADO (reversión): limpia ambos timestamps
	"""
	target = S(target)
	data: Dict[str, Any] = {"status": target.value}

	if target == S.CONFIRMADO:
		data["confirmed_at"] = now
	elif target in CANCELLED_STATUSES:
		data["cancelled_at"] = now
	elif target == S.AGENDADO:
		data["confirmed_at"] = None
		data["cancelled_at"] = None

	return data
