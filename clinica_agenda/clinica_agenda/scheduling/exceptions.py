"""
Exception Precedence

Resolves which availability exceptions affect a date/slot. Clinic-wide and
professional-specific exceptions are consulted together; only blocking
matches (is_available=False) change slot status, and a full-day block
short-circuits everything else. Extra-availability exceptions are only
read when the caller opts in (SchedulingSettings.extra_availability_enabled).
"""

from datetime import date
from typing import Iterable, List, Optional

from .models import AvailabilityException, FullDayBlock


def exceptions_for_day(
	exceptions: Iterable[AvailabilityException],
	target_date: date,
	professional_profile_id: Optional[str] = None
) -> List[AvailabilityException]:
	"""
	Filtra las excepciones que aplican a la fecha y al profesional.

	Args:
		exceptions: excepciones ya convertidas a modelo
		target_date: fecha seleccionada
		professional_profile_id: profesional seleccionado (None = no filtrar)

	Returns:
		list: excepciones aplicables, en el orden recibido
	"""
	return [
		exc for exc in exceptions
		if exc.matches_date(target_date) and exc.applies_to(professional_profile_id)
	]


def find_full_day_block(day_exceptions: Iterable[AvailabilityException]) -> Optional[AvailabilityException]:
	"""First blocking exception without start/end time, or None."""
	for exc in day_exceptions:
		if not exc.is_available and exc.is_full_day:
			return exc
	return None


def find_partial_block(
	day_exceptions: Iterable[AvailabilityException],
	slot_time: str
) -> Optional[AvailabilityException]:
	"""
	Busca un bloqueo parcial que cubra el horario del slot.

	El rango es semiabierto: slot_time in [start_time, end_time).
	Comparación lexicográfica de "HH:MM" con ceros a la izquierda, que
	equivale al orden cronológico dentro del día.
	"""
	for exc in day_exceptions:
		if exc.is_available or exc.is_full_day:
			continue
		if exc.start_time <= slot_time < exc.end_time:
			return exc
	return None


def extra_availability_windows(day_exceptions: Iterable[AvailabilityException]) -> List[AvailabilityException]:
	"""Partial is_available=True exceptions, sorted by start time."""
	extras = [exc for exc in day_exceptions if exc.is_available and not exc.is_full_day]
	extras.sort(key=lambda exc: exc.start_time)
	return extras


def describe_full_day_block(exc: AvailabilityException) -> FullDayBlock:
	return FullDayBlock(reason=exc.reason, is_clinic_wide=exc.is_clinic_wide)
