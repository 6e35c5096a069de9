"""
Time Utilities

Strict HH:MM handling and clinic-local time conversion shared by the
slot generator, the recurrence expander and the biweekly resolver.

Conventions:
- Horarios de reglas/excepciones son strings "HH:MM" en hora local de la clínica.
- Los agendamientos son instantes (datetime); si vienen sin tzinfo se
  interpretan como hora local de la clínica.
- Día de la semana: domingo = 0 ... sábado = 6.
"""

import re
from datetime import date, datetime, time, timedelta
from typing import Optional, Union

import pytz

from .errors import InvalidTimeError


_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")
_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")

TimeValue = Union[str, time, timedelta]
DateValue = Union[str, date, datetime]


def to_minutes(time_value: TimeValue) -> int:
	"""
	Convierte un horario a minutos desde medianoche.

	Args:
		time_value: "HH:MM", "HH:MM:SS", datetime.time o timedelta (desde medianoche)

	Returns:
		int: minutos desde 00:00

	Raises:
		InvalidTimeError: si el formato no es válido
	"""
	if isinstance(time_value, time):
		return time_value.hour * 60 + time_value.minute
	if isinstance(time_value, timedelta):
		# Frappe devuelve campos Time como timedelta
		total = int(time_value.total_seconds()) // 60
		if total < 0 or total >= 24 * 60:
			raise InvalidTimeError(f"Horário fora do dia: {time_value}")
		return total
	if isinstance(time_value, str):
		match = _HHMM_RE.match(time_value.strip())
		if not match:
			raise InvalidTimeError(f"Horário inválido: '{time_value}' (use HH:MM)")
		return int(match.group(1)) * 60 + int(match.group(2))
	raise InvalidTimeError(f"Cannot convert {type(time_value)} to time")


def format_minutes(minutes: int) -> str:
	"""Minutes since midnight -> zero-padded "HH:MM"."""
	return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_time(time_value: TimeValue) -> str:
	"""Any accepted time representation -> "HH:MM"."""
	return format_minutes(to_minutes(time_value))


def validate_range(start: TimeValue, end: TimeValue, label: str = "intervalo") -> tuple:
	"""
	Valida que start < end y devuelve ambos en minutos.

	Raises:
		InvalidTimeError: si el rango está invertido o vacío
	"""
	start_min = to_minutes(start)
	end_min = to_minutes(end)
	if start_min >= end_min:
		raise InvalidTimeError(
			f"{label}: início ({format_minutes(start_min)}) deve ser menor que fim ({format_minutes(end_min)})"
		)
	return start_min, end_min


def parse_date(value: DateValue) -> date:
	"""
	Normaliza una fecha de calendario.

	Acepta date, datetime (se toma la parte de fecha) o string ISO
	("YYYY-MM-DD" o "YYYY-MM-DDTHH:MM:SS...", sólo se usa el prefijo).
	"""
	if isinstance(value, datetime):
		return value.date()
	if isinstance(value, date):
		return value
	if isinstance(value, str):
		match = _DATE_RE.match(value.strip())
		if match:
			return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
	raise ValueError(f"Data inválida: {value!r} (use YYYY-MM-DD)")


def format_date(value: date) -> str:
	return value.strftime("%Y-%m-%d")


def day_of_week(value: date) -> int:
	"""Day of week with Sunday = 0 (Python's weekday() has Monday = 0)."""
	return (value.weekday() + 1) % 7


def get_timezone(tz_name: Optional[str]) -> pytz.BaseTzInfo:
	"""
	Resuelve la zona horaria de la clínica.

	Raises:
		pytz.UnknownTimeZoneError: si el nombre no existe
	"""
	return pytz.timezone(tz_name or "UTC")


def to_clinic_time(value: datetime, tz_name: Optional[str] = None) -> datetime:
	"""
	Expresa un instante en hora local de la clínica.

	Datetimes naive se asumen ya locales y se devuelven sin cambios.
	"""
	if value.tzinfo is None or not tz_name:
		return value
	tz = get_timezone(tz_name)
	return tz.normalize(value.astimezone(tz))


def local_date(value: datetime, tz_name: Optional[str] = None) -> date:
	return to_clinic_time(value, tz_name).date()


def time_key(value: datetime, tz_name: Optional[str] = None) -> str:
	"""Clinic-local "HH:MM" of an instant, used to match appointments to slots."""
	local = to_clinic_time(value, tz_name)
	return f"{local.hour:02d}:{local.minute:02d}"


def combine(target_date: date, time_value: TimeValue, tz_name: Optional[str] = None) -> datetime:
	"""
	Combina fecha + horario local en un datetime.

	Con tz_name devuelve un datetime localizado (pytz), como hacía
	get_availability_slots_for_day; sin tz_name devuelve naive.
	"""
	minutes = to_minutes(time_value)
	naive = datetime.combine(target_date, time(minutes // 60, minutes % 60))
	if not tz_name:
		return naive
	return get_timezone(tz_name).localize(naive)


def as_aware(value: datetime, tz_name: Optional[str] = None) -> datetime:
	"""Naive datetimes are read as clinic-local and localized; aware ones pass through."""
	if value.tzinfo is not None or not tz_name:
		return value
	return get_timezone(tz_name).localize(value)


def to_naive_local(value: datetime, tz_name: Optional[str] = None) -> datetime:
	"""Clinic-local wall time without tzinfo, the form Frappe stores Datetime fields in."""
	return to_clinic_time(value, tz_name).replace(tzinfo=None)
