"""
Slot Generation Service

Builds the day grid shown by the agenda for one date and one professional
scope, combining:
- Availability rules (weekly template)
- Availability exceptions (full-day and partial blocks, optional extras)
- Booked appointments (skipped recurrence occurrences excluded)
- Running group sessions
- Biweekly off-week hints

Pure function of its inputs: no I/O, no global state, same input -> same output.
"""

import logging
from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import InvalidTimeError
from .exceptions import (
	describe_full_day_block,
	exceptions_for_day,
	extra_availability_windows,
	find_full_day_block,
	find_partial_block,
)
from .models import (
	Appointment,
	AvailabilityException,
	AvailabilityRule,
	BiweeklyHint,
	DaySchedule,
	GroupSession,
	ScopeMode,
	TimeSlot,
	as_exceptions,
	as_rules,
)
from .settings import DEFAULT_SETTINGS, SchedulingSettings
from .timeutils import day_of_week, format_date, format_minutes, local_date, parse_date, time_key, to_clinic_time, to_minutes


logger = logging.getLogger(__name__)


def compute_slots(
	selected_date: Union[date, str],
	availability_rules: Iterable[Union[AvailabilityRule, dict]],
	availability_exceptions: Iterable[Union[AvailabilityException, dict]],
	appointments: Iterable[Appointment],
	slot_duration_minutes: Optional[int] = None,
	scope_mode: ScopeMode = ScopeMode.SINGLE_PROFESSIONAL,
	**kwargs
) -> List[TimeSlot]:
	"""
	Genera la lista ordenada de slots del día.

	Ver compute_day() para los argumentos; esta variante descarta la
	información del bloqueo de día completo y devuelve sólo los slots
	([] cuando el día está bloqueado).
	"""
	day = compute_day(
		selected_date,
		availability_rules,
		availability_exceptions,
		appointments,
		slot_duration_minutes=slot_duration_minutes,
		scope_mode=scope_mode,
		**kwargs
	)
	return list(day.slots)


def compute_day(
	selected_date: Union[date, str],
	availability_rules: Iterable[Union[AvailabilityRule, dict]],
	availability_exceptions: Iterable[Union[AvailabilityException, dict]],
	appointments: Iterable[Appointment],
	slot_duration_minutes: Optional[int] = None,
	scope_mode: ScopeMode = ScopeMode.SINGLE_PROFESSIONAL,
	professional_profile_id: Optional[str] = None,
	group_sessions: Iterable[GroupSession] = (),
	biweekly_hints: Iterable[BiweeklyHint] = (),
	settings: SchedulingSettings = DEFAULT_SETTINGS
) -> DaySchedule:
	"""
	Calcula la grilla de un día.

	Args:
		selected_date: fecha seleccionada (date o "YYYY-MM-DD")
		availability_rules: reglas semanales del profesional
		availability_exceptions: excepciones (clínica o profesional)
		appointments: agendamientos ya filtrados por fecha/alcance
		slot_duration_minutes: duración de cada slot (default: settings)
		scope_mode: SINGLE_PROFESSIONAL o ALL_PROFESSIONALS
		professional_profile_id: profesional seleccionado; filtra reglas,
			excepciones y hints cuando se informa
		group_sessions: sesiones de grupo que ocupan el horario
		biweekly_hints: hints de semana alterna (ver biweekly.compute_biweekly_hints)
		settings: configuración del motor

	Returns:
		DaySchedule: slots ordenados por horario + bloqueo de día completo (o None)

	Algoritmo (SINGLE_PROFESSIONAL):
		1. Reglas activas del día de la semana
		2. Bloqueo de día completo -> [] (corta todo lo demás)
		3. Sin reglas: sin agendamientos -> []; con agendamientos -> un slot
		   ocupado por horario de agendamiento (fallback)
		4. Recorrer cada regla en pasos de slot_duration_minutes
		5. Reconciliación: agendamientos fuera de la grilla ganan su slot
		6. Ordenar por "HH:MM"
	"""
	selected_date = parse_date(selected_date)
	duration = settings.slot_duration_minutes if slot_duration_minutes is None else int(slot_duration_minutes)
	if duration <= 0:
		raise InvalidTimeError(f"Duração de slot inválida: {duration}")

	tz_name = settings.clinic_timezone
	active = _active_appointments(appointments, selected_date, tz_name)
	by_time = _index_by_time(active, tz_name)

	if ScopeMode(scope_mode) == ScopeMode.ALL_PROFESSIONALS:
		return DaySchedule(slots=tuple(_aggregate_grid(by_time, settings)))

	rules = as_rules(availability_rules)
	day_exceptions = exceptions_for_day(
		as_exceptions(availability_exceptions), selected_date, professional_profile_id
	)

	full_day = find_full_day_block(day_exceptions)
	if full_day:
		return DaySchedule(slots=(), full_day_block=describe_full_day_block(full_day))

	dow = day_of_week(selected_date)
	day_rules = [
		rule for rule in rules
		if rule.day_of_week == dow and rule.is_active
		and (professional_profile_id is None or rule.professional_profile_id in (None, professional_profile_id))
	]
	extras = extra_availability_windows(day_exceptions) if settings.extra_availability_enabled else []

	if not day_rules and not extras:
		if not active:
			return DaySchedule()
		slots = [
			TimeSlot(time=slot_time, is_available=False, appointments=tuple(apts), is_blocked=False)
			for slot_time, apts in sorted(by_time.items())
		]
		return DaySchedule(slots=tuple(slots))

	session_ranges = _group_session_ranges(group_sessions, tz_name)
	slots: List[TimeSlot] = []
	seen = set()

	windows: List[Tuple[int, int]] = [
		(to_minutes(rule.start_time), to_minutes(rule.end_time)) for rule in day_rules
	]
	# Disponibilidad extra sólo agrega horarios que las reglas no generaron
	windows.extend((to_minutes(exc.start_time), to_minutes(exc.end_time)) for exc in extras)

	for window_start, window_end in windows:
		current = window_start
		while current + duration <= window_end:
			slot_time = format_minutes(current)
			if slot_time not in seen:
				seen.add(slot_time)
				slots.append(_grid_slot(slot_time, current, day_exceptions, by_time, session_ranges))
			current += duration

	slots.extend(_reconcile_off_grid(seen, day_exceptions, by_time))
	slots.sort(key=lambda slot: slot.time)

	hints = list(biweekly_hints)
	if hints:
		slots = _attach_biweekly_hints(slots, hints, format_date(selected_date), professional_profile_id)

	return DaySchedule(slots=tuple(slots))


def _active_appointments(
	appointments: Iterable[Appointment],
	selected_date: date,
	tz_name: Optional[str]
) -> List[Appointment]:
	"""Agendamientos de la fecha, excluyendo ocurrencias omitidas de su serie."""
	active = []
	for apt in appointments:
		apt_date = local_date(apt.scheduled_at, tz_name)
		if apt_date != selected_date:
			continue
		if apt.recurrence is not None and apt.recurrence.is_skipped(apt_date):
			continue
		active.append(apt)
	return active


def _index_by_time(appointments: Sequence[Appointment], tz_name: Optional[str]) -> Dict[str, List[Appointment]]:
	by_time: Dict[str, List[Appointment]] = {}
	for apt in appointments:
		by_time.setdefault(time_key(apt.scheduled_at, tz_name), []).append(apt)
	return by_time


def _group_session_ranges(group_sessions: Iterable[GroupSession], tz_name: Optional[str]) -> List[Tuple[int, int]]:
	ranges = []
	for session in group_sessions:
		start = to_clinic_time(session.scheduled_at, tz_name)
		end = to_clinic_time(session.end_at, tz_name)
		end_minutes = end.hour * 60 + end.minute
		# Sesión que cruza la medianoche ocupa hasta el fin del día
		if end.date() > start.date():
			end_minutes = 24 * 60
		ranges.append((start.hour * 60 + start.minute, end_minutes))
	return ranges


def _grid_slot(
	slot_time: str,
	slot_minutes: int,
	day_exceptions: Sequence[AvailabilityException],
	by_time: Dict[str, List[Appointment]],
	session_ranges: Sequence[Tuple[int, int]]
) -> TimeSlot:
	block = find_partial_block(day_exceptions, slot_time)
	slot_appointments = tuple(by_time.get(slot_time, ()))
	# Cancelados y entradas no bloqueantes se listan pero no ocupan el slot
	blocking = [apt for apt in slot_appointments if apt.blocks_slot]
	# Sesión de grupo ya iniciada y no terminada ocupa el horario
	occupied_by_group = any(start < slot_minutes < end for start, end in session_ranges)

	return TimeSlot(
		time=slot_time,
		is_available=block is None and not blocking and not occupied_by_group,
		appointments=slot_appointments,
		is_blocked=block is not None,
		block_reason=block.reason if block else None,
	)


def _reconcile_off_grid(
	seen: set,
	day_exceptions: Sequence[AvailabilityException],
	by_time: Dict[str, List[Appointment]]
) -> List[TimeSlot]:
	"""
	Reconciliation pass for bookings that do not sit on the rule grid.

	An appointment booked under a different duration policy (e.g. 50 min,
	later viewed with 30 min slots) or outside the configured hours gets a
	synthetic occupied slot, so no booking is ever hidden from the day.
	"""
	extra_slots = []
	for slot_time in sorted(by_time):
		if slot_time in seen:
			continue
		block = find_partial_block(day_exceptions, slot_time)
		extra_slots.append(TimeSlot(
			time=slot_time,
			is_available=False,
			appointments=tuple(by_time[slot_time]),
			is_blocked=block is not None,
			block_reason=block.reason if block else None,
		))
		seen.add(slot_time)

	if extra_slots:
		logger.debug("Reconciled %d off-grid slot(s): %s", len(extra_slots), [s.time for s in extra_slots])
	return extra_slots


def _aggregate_grid(by_time: Dict[str, List[Appointment]], settings: SchedulingSettings) -> List[TimeSlot]:
	"""
	Vista "todos los profesionales": grilla fija de ocupación.

	Reglas y excepciones se ignoran; cada slot lista los agendamientos de
	cualquier profesional en ese horario exacto.
	"""
	slots = []
	current = to_minutes(settings.aggregate_start)
	last = to_minutes(settings.aggregate_end)
	step = settings.aggregate_step_minutes
	while current <= last:
		slot_time = format_minutes(current)
		slot_appointments = tuple(by_time.get(slot_time, ()))
		slots.append(TimeSlot(
			time=slot_time,
			is_available=not slot_appointments,
			appointments=slot_appointments,
			is_blocked=False,
		))
		current += step
	return slots


def _attach_biweekly_hints(
	slots: List[TimeSlot],
	hints: Sequence[BiweeklyHint],
	date_str: str,
	professional_profile_id: Optional[str]
) -> List[TimeSlot]:
	result = []
	for slot in slots:
		if slot.is_available and not slot.appointments:
			hint = next(
				(
					h for h in hints
					if h.time == slot.time
					and h.date in (None, date_str)
					and (not professional_profile_id or h.professional_profile_id == professional_profile_id)
				),
				None
			)
			if hint:
				slot = replace(slot, biweekly_hint=hint)
		result.append(slot)
	return result
