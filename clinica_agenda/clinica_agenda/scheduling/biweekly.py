"""
Biweekly Pairing Resolver

A weekly cadence is often split into two offset BIWEEKLY series (patient A
on even weeks, patient B on odd weeks). For an occurrence of one series the
"alternate week" is the same time seven days later; it is either already
taken (paired appointment / paired series) or free to be filled.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional, Set, Union

from .models import Appointment, BiweeklyHint, RecurrenceInfo, RecurrenceType
from .settings import DEFAULT_CLINIC_TIMEZONE
from .timeutils import day_of_week, format_date, local_date, parse_date, time_key


ALTERNATE_WEEK = timedelta(days=7)


@dataclass(frozen=True)
class AlternateWeekInfo:
	paired_appointment_id: Optional[str]
	paired_patient_name: Optional[str]
	is_available: bool


def is_off_week(start_date: Union[date, str], target_date: Union[date, str]) -> bool:
	"""True when target_date falls an odd number of whole weeks away from the series start."""
	days = (parse_date(target_date) - parse_date(start_date)).days
	return (days // 7) % 2 == 1


def build_slot_key(target_date: Union[date, str], professional_profile_id: Optional[str], time_str: str) -> str:
	"""Composite key "YYYY-MM-DD|professional|HH:MM" shared by hints, pairing and blocking."""
	return f"{format_date(parse_date(target_date))}|{professional_profile_id or ''}|{time_str}"


def appointment_slot_key(appointment: Appointment, tz_name: Optional[str] = DEFAULT_CLINIC_TIMEZONE) -> str:
	return build_slot_key(
		local_date(appointment.scheduled_at, tz_name),
		appointment.professional_profile_id,
		time_key(appointment.scheduled_at, tz_name),
	)


def is_active_biweekly(series: Optional[RecurrenceInfo]) -> bool:
	return series is not None and series.is_active and series.recurrence_type == RecurrenceType.BIWEEKLY


def find_paired_series(
	appointment: Appointment,
	series: Iterable[RecurrenceInfo],
	tz_name: Optional[str] = DEFAULT_CLINIC_TIMEZONE
) -> Optional[RecurrenceInfo]:
	"""
	Serie que ocupa la semana alterna del agendamiento.

	Criterio de pareo: mismo profesional, mismo horario, mismo día de la
	semana y paciente distinto.
	"""
	apt_time = time_key(appointment.scheduled_at, tz_name)
	apt_dow = day_of_week(local_date(appointment.scheduled_at, tz_name))
	own_id = appointment.recurrence.recurrence_id if appointment.recurrence else None

	for rec in series:
		if not is_active_biweekly(rec) or rec.recurrence_id == own_id:
			continue
		if (
			rec.professional_profile_id == appointment.professional_profile_id
			and rec.start_time == apt_time
			and rec.day_of_week == apt_dow
			and rec.patient_id != appointment.patient_id
		):
			return rec
	return None


def compute_alternate_week_info(
	appointment: Appointment,
	appointments: Iterable[Appointment] = (),
	series: Iterable[RecurrenceInfo] = (),
	blocked_keys: Optional[Set[str]] = None,
	tz_name: Optional[str] = DEFAULT_CLINIC_TIMEZONE
) -> AlternateWeekInfo:
	"""
	Estado de la semana alterna (+7 días, mismo horario).

	Args:
		appointment: ocurrencia de una serie BIWEEKLY
		appointments: agendamientos conocidos (se busca el pareado entre ellos)
		series: series BIWEEKLY activas (para el nombre del paciente pareado)
		blocked_keys: slot keys ocupados por entradas que no son consultas

	Returns:
		AlternateWeekInfo
	"""
	alt_date = local_date(appointment.scheduled_at, tz_name) + ALTERNATE_WEEK
	alt_key = build_slot_key(alt_date, appointment.professional_profile_id, time_key(appointment.scheduled_at, tz_name))

	paired_apt = None
	for other in appointments:
		if other.id == appointment.id or not other.blocks_slot:
			continue
		if other.recurrence is not None and other.recurrence.is_skipped(local_date(other.scheduled_at, tz_name)):
			continue
		if appointment_slot_key(other, tz_name) == alt_key:
			paired_apt = other
			break

	paired_series = find_paired_series(appointment, series, tz_name)
	paired_name = None
	if paired_apt is not None:
		paired_name = paired_apt.patient_name
	elif paired_series is not None:
		paired_name = paired_series.patient_name

	return AlternateWeekInfo(
		paired_appointment_id=paired_apt.id if paired_apt else None,
		paired_patient_name=paired_name,
		is_available=paired_apt is None and not paired_name and alt_key not in (blocked_keys or set()),
	)


def compute_biweekly_hint(
	appointment: Appointment,
	appointments: Iterable[Appointment] = (),
	series: Iterable[RecurrenceInfo] = (),
	blocked_keys: Optional[Set[str]] = None,
	tz_name: Optional[str] = DEFAULT_CLINIC_TIMEZONE
) -> Optional[BiweeklyHint]:
	"""
	Hint de semana alterna para una ocurrencia BIWEEKLY.

	Returns:
		BiweeklyHint con paired_appointment_id (saltar al pareado) o
		is_available=True (crear la ocurrencia de la otra semana);
		None si el agendamiento no pertenece a una serie BIWEEKLY activa
	"""
	if not is_active_biweekly(appointment.recurrence):
		return None

	info = compute_alternate_week_info(appointment, appointments, series, blocked_keys, tz_name)
	alt_date = local_date(appointment.scheduled_at, tz_name) + ALTERNATE_WEEK

	return BiweeklyHint(
		time=time_key(appointment.scheduled_at, tz_name),
		is_available=info.is_available,
		professional_profile_id=appointment.professional_profile_id,
		patient_name=appointment.patient_name,
		recurrence_id=appointment.recurrence.recurrence_id,
		date=format_date(alt_date),
		paired_appointment_id=info.paired_appointment_id,
		paired_patient_name=info.paired_patient_name,
	)


def compute_biweekly_hints(
	date_range_start: Union[date, str],
	date_range_end: Union[date, str],
	series: Iterable[RecurrenceInfo],
	occupied_keys: Optional[Set[str]] = None
) -> List[BiweeklyHint]:
	"""
	Hints para las fechas de semana alterna de series BIWEEKLY activas.

	Una fecha del rango recibe hint cuando coincide con el día de la serie,
	cae en semana impar respecto a start_date, la serie tiene paciente y el
	slot no está ocupado.
	"""
	occupied = occupied_keys or set()
	candidates = [rec for rec in series if is_active_biweekly(rec) and rec.start_date and rec.start_time]
	hints = []

	current = parse_date(date_range_start)
	end = parse_date(date_range_end)
	while current <= end:
		dow = day_of_week(current)
		for rec in candidates:
			if rec.day_of_week != dow or not is_off_week(rec.start_date, current):
				continue
			if not rec.patient_name:
				continue
			if build_slot_key(current, rec.professional_profile_id, rec.start_time) in occupied:
				continue
			hints.append(BiweeklyHint(
				time=rec.start_time,
				professional_profile_id=rec.professional_profile_id,
				patient_name=rec.patient_name,
				recurrence_id=rec.recurrence_id,
				date=format_date(current),
			))
		current += timedelta(days=1)

	return hints
