"""
Recurrence Expander

Translates a recurrence request into a deterministic sequence of dated
occurrences, and maintains the per-series list of skipped dates.

- WEEKLY: start + 7n days
- BIWEEKLY: start + 14n days
- MONTHLY: start + n months, clamped to the last day of the month
- BY_OCCURRENCES stops after exactly `occurrences`; BY_DATE at the last
  date <= end_date; INDEFINITE materializes a bounded window that the
  weekly maintenance job (tasks.extend_indefinite_recurrences) extends.

Every function here is pure. Persisting rows is the data layer's job.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from dateutil.relativedelta import relativedelta

from .errors import InvalidTimeError, OccurrenceConflictError, OccurrenceExceptionError, RecurrenceValidationError
from .models import (
	Appointment,
	AppointmentStatus,
	Modality,
	RecurrenceEndType,
	RecurrenceInfo,
	RecurrenceType,
)
from .settings import DEFAULT_SETTINGS, SchedulingSettings
from .timeutils import as_aware, combine, format_date, normalize_time, parse_date


logger = logging.getLogger(__name__)

INTERVAL_DAYS = {
	RecurrenceType.WEEKLY: 7,
	RecurrenceType.BIWEEKLY: 14,
}

TYPE_LABELS = {
	RecurrenceType.WEEKLY: "Semanal",
	RecurrenceType.BIWEEKLY: "Quinzenal",
	RecurrenceType.MONTHLY: "Mensal",
}

SKIP = "skip"
UNSKIP = "unskip"


@dataclass(frozen=True)
class RecurrenceDefinition:
	"""Recurrence request as submitted by the booking form (or rebuilt from a stored series)."""

	recurrence_type: Any
	recurrence_end_type: Any
	start_date: date
	start_time: str = "00:00"
	duration_minutes: Optional[int] = None
	end_date: Optional[date] = None
	occurrences: Optional[int] = None

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "RecurrenceDefinition":
		return cls(
			recurrence_type=data.get("recurrence_type"),
			recurrence_end_type=data.get("recurrence_end_type"),
			start_date=data.get("start_date"),
			start_time=data.get("start_time") or "00:00",
			duration_minutes=data.get("duration_minutes"),
			end_date=data.get("end_date") or None,
			occurrences=data.get("occurrences"),
		)

	@classmethod
	def from_series(cls, series: RecurrenceInfo) -> "RecurrenceDefinition":
		return cls(
			recurrence_type=series.recurrence_type,
			recurrence_end_type=series.recurrence_end_type,
			start_date=series.start_date,
			start_time=series.start_time or "00:00",
			duration_minutes=series.duration_minutes,
			end_date=series.end_date,
			occurrences=series.occurrences,
		)


@dataclass(frozen=True)
class Occurrence:
	index: int
	date: date
	scheduled_at: datetime
	end_at: datetime
	is_exception: bool = False


@dataclass(frozen=True)
class SeriesPlan:
	recurrence: RecurrenceInfo
	appointments: Tuple[Appointment, ...]
	total_occurrences: int


@dataclass(frozen=True)
class WindowExtension:
	occurrences: Tuple[Occurrence, ...]
	last_generated_date: Optional[date]


def validate_recurrence(
	definition: RecurrenceDefinition,
	settings: SchedulingSettings = DEFAULT_SETTINGS
) -> Tuple[RecurrenceType, RecurrenceEndType, date]:
	"""
	Valida la definición antes de materializar.

	Returns:
		tuple: (recurrence_type, recurrence_end_type, start_date) normalizados

	Raises:
		RecurrenceValidationError: con el campo ofensor en .field
	"""
	try:
		recurrence_type = RecurrenceType(definition.recurrence_type)
	except ValueError:
		raise RecurrenceValidationError("recurrence_type", f"Tipo de recorrência inválido: {definition.recurrence_type}")

	try:
		end_type = RecurrenceEndType(definition.recurrence_end_type)
	except ValueError:
		raise RecurrenceValidationError("recurrence_end_type", f"Tipo de término inválido: {definition.recurrence_end_type}")

	if definition.start_date in (None, ""):
		raise RecurrenceValidationError("start_date", "Data inicial é obrigatória")
	try:
		start_date = parse_date(definition.start_date)
	except ValueError:
		raise RecurrenceValidationError("start_date", f"Data inicial inválida: {definition.start_date}")

	try:
		normalize_time(definition.start_time)
	except InvalidTimeError:
		raise RecurrenceValidationError("start_time", f"Horário inicial inválido: {definition.start_time}")

	if definition.duration_minutes is not None and int(definition.duration_minutes) <= 0:
		raise RecurrenceValidationError("duration_minutes", "Duração deve ser maior que zero")

	if end_type == RecurrenceEndType.BY_OCCURRENCES:
		if definition.occurrences is None or int(definition.occurrences) < 1:
			raise RecurrenceValidationError("occurrences", "Número de ocorrências deve ser pelo menos 1")
		if int(definition.occurrences) > settings.max_occurrences:
			raise RecurrenceValidationError(
				"occurrences", f"Máximo de {settings.max_occurrences} ocorrências permitido"
			)
	elif end_type == RecurrenceEndType.BY_DATE:
		if definition.end_date in (None, ""):
			raise RecurrenceValidationError("end_date", "Data final é obrigatória para recorrência por data")
		try:
			end_date = parse_date(definition.end_date)
		except ValueError:
			raise RecurrenceValidationError("end_date", f"Data final inválida: {definition.end_date}")
		if end_date < start_date:
			raise RecurrenceValidationError("end_date", "Data final não pode ser anterior à data inicial")

	return recurrence_type, end_type, start_date


def occurrence_date(start_date: date, recurrence_type: RecurrenceType, n: int) -> date:
	"""Date of the n-th (0-indexed) occurrence, always derived from the series anchor."""
	if recurrence_type == RecurrenceType.MONTHLY:
		# relativedelta ajusta al último día válido (31/01 + 1 mes = 29/02)
		return start_date + relativedelta(months=n)
	return start_date + timedelta(days=INTERVAL_DAYS[recurrence_type] * n)


def _iter_dates(start_date: date, recurrence_type: RecurrenceType) -> Iterator[date]:
	n = 0
	while True:
		yield occurrence_date(start_date, recurrence_type, n)
		n += 1


def expand_recurrence(
	definition: Union[RecurrenceDefinition, Dict[str, Any]],
	settings: SchedulingSettings = DEFAULT_SETTINGS
) -> List[date]:
	"""
	Secuencia de fechas de la serie.

	Usada tanto al materializar como en el preview del formulario.

	Args:
		definition: RecurrenceDefinition o dict equivalente
		settings: configuración (máximo de ocurrencias, ventana INDEFINITE)

	Returns:
		list[date]: fechas ordenadas, la primera es start_date

	Raises:
		RecurrenceValidationError: si la definición es inválida
	"""
	if isinstance(definition, dict):
		definition = RecurrenceDefinition.from_dict(definition)

	recurrence_type, end_type, start_date = validate_recurrence(definition, settings)

	limit = None
	horizon = None
	if end_type == RecurrenceEndType.BY_OCCURRENCES:
		limit = int(definition.occurrences)
	elif end_type == RecurrenceEndType.BY_DATE:
		horizon = parse_date(definition.end_date)
	else:
		horizon = start_date + relativedelta(months=settings.indefinite_window_months)

	dates = []
	for current in _iter_dates(start_date, recurrence_type):
		if horizon is not None and current > horizon:
			break
		dates.append(current)
		if limit is not None and len(dates) >= limit:
			break
	return dates


def calculate_occurrences(
	definition: Union[RecurrenceDefinition, Dict[str, Any]],
	tz_name: Optional[str] = None,
	settings: SchedulingSettings = DEFAULT_SETTINGS
) -> List[Occurrence]:
	"""Occurrences with start/end instants (start_time in clinic-local time)."""
	if isinstance(definition, dict):
		definition = RecurrenceDefinition.from_dict(definition)

	duration = int(definition.duration_minutes or settings.slot_duration_minutes)
	result = []
	for idx, occ_date in enumerate(expand_recurrence(definition, settings), 1):
		scheduled_at = combine(occ_date, definition.start_time, tz_name)
		result.append(Occurrence(
			index=idx,
			date=occ_date,
			scheduled_at=scheduled_at,
			end_at=scheduled_at + timedelta(minutes=duration),
		))
	return result


def preview_recurrence(
	definition: Union[RecurrenceDefinition, Dict[str, Any]],
	exceptions: Iterable[str] = (),
	tz_name: Optional[str] = None,
	settings: SchedulingSettings = DEFAULT_SETTINGS
) -> List[Occurrence]:
	"""Occurrences flagged with is_exception, for display before/after submission."""
	skipped = set(exceptions)
	return [
		replace(occ, is_exception=format_date(occ.date) in skipped)
		for occ in calculate_occurrences(definition, tz_name, settings)
	]


def count_active_occurrences(
	definition: Union[RecurrenceDefinition, Dict[str, Any]],
	exceptions: Iterable[str] = (),
	settings: SchedulingSettings = DEFAULT_SETTINGS
) -> int:
	return sum(1 for occ in preview_recurrence(definition, exceptions, settings=settings) if not occ.is_exception)


def format_recurrence_summary(
	recurrence_type: Any,
	recurrence_end_type: Any,
	occurrences: Optional[int] = None,
	end_date: Optional[Union[date, str]] = None
) -> str:
	"""
	Resumen legible de la serie, e.g. "Quinzenal - 10 sessoes".
	"""
	summary = TYPE_LABELS[RecurrenceType(recurrence_type)]
	end_type = RecurrenceEndType(recurrence_end_type)

	if end_type == RecurrenceEndType.BY_OCCURRENCES and occurrences:
		summary += f" - {occurrences} sessoes"
	elif end_type == RecurrenceEndType.BY_DATE and end_date:
		summary += f" - ate {parse_date(end_date).strftime('%d/%m/%Y')}"
	elif end_type == RecurrenceEndType.INDEFINITE:
		summary += " - sem data de fim"

	return summary


# ===== Skip / restore =====

def add_exception(target_date: Union[date, str], exceptions: Iterable[str]) -> Tuple[str, ...]:
	date_str = format_date(parse_date(target_date))
	return tuple(sorted(set(exceptions) | {date_str}))


def remove_exception(target_date: Union[date, str], exceptions: Iterable[str]) -> Tuple[str, ...]:
	date_str = format_date(parse_date(target_date))
	return tuple(d for d in sorted(set(exceptions)) if d != date_str)


def skip_occurrence(
	recurrence: RecurrenceInfo,
	target_date: Union[date, str],
	occurrence_dates: Iterable[Union[date, str]]
) -> RecurrenceInfo:
	"""
	Marca una ocurrencia como omitida.

	La fila del Appointment no se toca: sólo cambia recurrence.exceptions.

	Args:
		recurrence: serie actual
		target_date: fecha a pular
		occurrence_dates: fechas efectivamente materializadas de la serie

	Returns:
		RecurrenceInfo: nueva serie con la fecha en exceptions

	Raises:
		OccurrenceExceptionError: serie inactiva, fecha que no es ocurrencia, o ya omitida
	"""
	date_str = format_date(parse_date(target_date))
	_check_active(recurrence, date_str)

	materialized = {format_date(parse_date(d)) for d in occurrence_dates}
	if date_str not in materialized:
		raise OccurrenceExceptionError(date_str, f"{date_str} não é uma ocorrência desta recorrência")
	if date_str in recurrence.exceptions:
		raise OccurrenceExceptionError(date_str, "Esta data já é uma exceção")

	logger.debug("Skipping %s in recurrence %s", date_str, recurrence.recurrence_id)
	return replace(recurrence, exceptions=add_exception(date_str, recurrence.exceptions))


def restore_occurrence(recurrence: RecurrenceInfo, target_date: Union[date, str]) -> RecurrenceInfo:
	"""
	Quita la fecha de exceptions.

	Raises:
		OccurrenceExceptionError: serie inactiva o fecha no omitida
	"""
	date_str = format_date(parse_date(target_date))
	_check_active(recurrence, date_str)

	if date_str not in recurrence.exceptions:
		raise OccurrenceExceptionError(date_str, "Esta data não é uma exceção")

	logger.debug("Restoring %s in recurrence %s", date_str, recurrence.recurrence_id)
	return replace(recurrence, exceptions=remove_exception(date_str, recurrence.exceptions))


def toggle_occurrence(
	recurrence: RecurrenceInfo,
	target_date: Union[date, str],
	action: str,
	occurrence_dates: Iterable[Union[date, str]] = ()
) -> RecurrenceInfo:
	if action == SKIP:
		return skip_occurrence(recurrence, target_date, occurrence_dates)
	if action == UNSKIP:
		return restore_occurrence(recurrence, target_date)
	raise ValueError(f"Ação deve ser '{SKIP}' ou '{UNSKIP}'")


def _check_active(recurrence: RecurrenceInfo, date_str: str) -> None:
	if not recurrence.is_active:
		raise OccurrenceExceptionError(date_str, "Recorrência está inativa")


# ===== Materialization =====

def find_conflict(
	scheduled_at: datetime,
	end_at: datetime,
	existing: Iterable[Appointment],
	professional_profile_id: Optional[str] = None,
	exclude_appointment_id: Optional[str] = None,
	exclude_group_id: Optional[str] = None,
	tz_name: Optional[str] = None
) -> Optional[Appointment]:
	"""
	Primer agendamiento existente que se solapa con [scheduled_at, end_at).

	Overlap: start1 < end2 AND end1 > start2. Back-to-back está permitido;
	cancelados y entradas no bloqueantes no cuentan. Con tz_name, los
	datetimes naive se leen como hora local de la clínica antes de comparar.
	"""
	scheduled_at = as_aware(scheduled_at, tz_name)
	end_at = as_aware(end_at, tz_name)
	for apt in existing:
		if not apt.blocks_slot:
			continue
		if professional_profile_id and apt.professional_profile_id not in (None, professional_profile_id):
			continue
		if exclude_appointment_id and apt.id == exclude_appointment_id:
			continue
		if exclude_group_id and apt.group_id == exclude_group_id:
			continue
		if as_aware(apt.scheduled_at, tz_name) < end_at and as_aware(apt.end_at, tz_name) > scheduled_at:
			return apt
	return None


def build_series(
	definition: Union[RecurrenceDefinition, Dict[str, Any]],
	recurrence_id: str,
	professional_profile_id: str,
	patient_id: Optional[str] = None,
	patient_name: Optional[str] = None,
	modality: Modality = Modality.PRESENCIAL,
	notes: Optional[str] = None,
	existing: Sequence[Appointment] = (),
	settings: SchedulingSettings = DEFAULT_SETTINGS
) -> SeriesPlan:
	"""
	Materializa la serie completa (eager) como Appointments sin id.

	Raises:
		RecurrenceValidationError: definición inválida
		OccurrenceConflictError: con el índice 1-based de la primera
			ocurrencia que choca con un agendamiento existente
	"""
	if isinstance(definition, dict):
		definition = RecurrenceDefinition.from_dict(definition)

	recurrence_type, end_type, start_date = validate_recurrence(definition, settings)
	occurrences = calculate_occurrences(definition, settings.clinic_timezone, settings)
	duration = int(definition.duration_minutes or settings.slot_duration_minutes)

	recurrence = RecurrenceInfo(
		recurrence_id=recurrence_id,
		recurrence_type=recurrence_type,
		recurrence_end_type=end_type,
		end_date=parse_date(definition.end_date) if end_type == RecurrenceEndType.BY_DATE else None,
		occurrences=int(definition.occurrences) if end_type == RecurrenceEndType.BY_OCCURRENCES else None,
		professional_profile_id=professional_profile_id,
		patient_id=patient_id,
		patient_name=patient_name,
		start_date=start_date,
		start_time=normalize_time(definition.start_time),
		duration_minutes=duration,
		modality=Modality(modality),
		last_generated_date=occurrences[-1].date if occurrences else None,
	)

	appointments = []
	for occ in occurrences:
		conflict = find_conflict(
			occ.scheduled_at, occ.end_at, existing, professional_profile_id, tz_name=settings.clinic_timezone
		)
		if conflict is not None:
			raise OccurrenceConflictError(occ.index, conflict)
		appointments.append(Appointment(
			id=None,
			scheduled_at=occ.scheduled_at,
			end_at=occ.end_at,
			status=AppointmentStatus.AGENDADO,
			modality=modality,
			professional_profile_id=professional_profile_id,
			patient_id=patient_id,
			patient_name=patient_name,
			notes=notes,
			recurrence=recurrence,
		))

	logger.debug("Series %s: %d occurrence(s) planned", recurrence_id, len(appointments))
	return SeriesPlan(recurrence=recurrence, appointments=tuple(appointments), total_occurrences=len(appointments))


def plan_window_extension(
	series: RecurrenceInfo,
	today: date,
	existing: Sequence[Appointment] = (),
	settings: SchedulingSettings = DEFAULT_SETTINGS
) -> WindowExtension:
	"""
	Próxima ventana de una serie INDEFINITE.

	Algoritmo:
		1. Sólo series INDEFINITE activas
		2. Si last_generated_date está a más de extension_threshold_months
		   de hoy, no hay nada que hacer
		3. Fechas de la secuencia (ancladas en start_date) en
		   (last_generated_date, last_generated_date + extension_months]
		4. Quitar fechas omitidas y fechas que chocan con agendamientos

	Returns:
		WindowExtension: ocurrencias a crear y el nuevo last_generated_date
	"""
	empty = WindowExtension(occurrences=(), last_generated_date=series.last_generated_date)
	if not series.is_active or series.recurrence_end_type != RecurrenceEndType.INDEFINITE:
		return empty
	if series.start_date is None or series.start_time is None:
		return empty

	last_generated = series.last_generated_date or series.start_date
	if last_generated > today + relativedelta(months=settings.extension_threshold_months):
		return empty

	horizon = last_generated + relativedelta(months=settings.extension_months)
	duration = int(series.duration_minutes or settings.slot_duration_minutes)

	window = []
	for n, current in enumerate(_iter_dates(series.start_date, series.recurrence_type)):
		if current > horizon:
			break
		if current > last_generated:
			window.append((n + 1, current))

	if not window:
		return empty

	occurrences = []
	for index, occ_date in window:
		if series.is_skipped(occ_date):
			continue
		scheduled_at = combine(occ_date, series.start_time, settings.clinic_timezone)
		end_at = scheduled_at + timedelta(minutes=duration)
		if find_conflict(scheduled_at, end_at, existing, series.professional_profile_id, tz_name=settings.clinic_timezone):
			logger.debug("Series %s: %s conflicts, not extended", series.recurrence_id, occ_date)
			continue
		occurrences.append(Occurrence(index=index, date=occ_date, scheduled_at=scheduled_at, end_at=end_at))

	return WindowExtension(occurrences=tuple(occurrences), last_generated_date=window[-1][1])
