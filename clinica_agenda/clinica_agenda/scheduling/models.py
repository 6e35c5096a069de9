"""
Scheduling Models

Immutable snapshots of the data the engine works on. Rows coming from the
data-access layer are converted with the from_dict() constructors; the
engine never mutates them (one computation pass = one immutable snapshot).
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import InvalidTimeError
from .timeutils import day_of_week, format_date, normalize_time, parse_date, validate_range


class AppointmentStatus(str, Enum):
	AGENDADO = "AGENDADO"
	CONFIRMADO = "CONFIRMADO"
	CANCELADO_PACIENTE = "CANCELADO_PACIENTE"
	CANCELADO_PROFISSIONAL = "CANCELADO_PROFISSIONAL"
	NAO_COMPARECEU = "NAO_COMPARECEU"
	FINALIZADO = "FINALIZADO"


class Modality(str, Enum):
	ONLINE = "ONLINE"
	PRESENCIAL = "PRESENCIAL"


class RecurrenceType(str, Enum):
	WEEKLY = "WEEKLY"
	BIWEEKLY = "BIWEEKLY"
	MONTHLY = "MONTHLY"


class RecurrenceEndType(str, Enum):
	INDEFINITE = "INDEFINITE"
	BY_DATE = "BY_DATE"
	BY_OCCURRENCES = "BY_OCCURRENCES"


class ScopeMode(str, Enum):
	SINGLE_PROFESSIONAL = "SINGLE_PROFESSIONAL"
	ALL_PROFESSIONALS = "ALL_PROFESSIONALS"


CANCELLED_STATUSES = frozenset({
	AppointmentStatus.CANCELADO_PACIENTE,
	AppointmentStatus.CANCELADO_PROFISSIONAL,
})


def _optional_date(value: Any) -> Optional[date]:
	if value in (None, ""):
		return None
	return parse_date(value)


def _optional_time(value: Any) -> Optional[str]:
	if value in (None, ""):
		return None
	return normalize_time(value)


@dataclass(frozen=True)
class AvailabilityRule:
	"""Franja semanal abierta de un profesional (day_of_week: domingo = 0)."""

	professional_profile_id: Optional[str]
	day_of_week: int
	start_time: str
	end_time: str
	is_active: bool = True
	id: Optional[str] = None

	def __post_init__(self) -> None:
		if not 0 <= int(self.day_of_week) <= 6:
			raise InvalidTimeError(f"day_of_week fora do intervalo 0-6: {self.day_of_week}")
		validate_range(self.start_time, self.end_time, "Regra de disponibilidade")
		object.__setattr__(self, "day_of_week", int(self.day_of_week))
		object.__setattr__(self, "start_time", normalize_time(self.start_time))
		object.__setattr__(self, "end_time", normalize_time(self.end_time))

	@classmethod
	def from_dict(cls, row: Dict[str, Any]) -> "AvailabilityRule":
		return cls(
			professional_profile_id=row.get("professional_profile_id"),
			day_of_week=row["day_of_week"],
			start_time=row["start_time"],
			end_time=row["end_time"],
			is_active=bool(row.get("is_active", True)),
			id=row.get("id") or row.get("name"),
		)


@dataclass(frozen=True)
class AvailabilityException:
	"""
	Override de disponibilidad para una fecha.

	- professional_profile_id None => aplica a toda la clínica
	- start_time/end_time None => día completo
	- is_available False => bloqueo; True => disponibilidad extra
	- is_recurring => aplica a todas las fechas con ese day_of_week
	"""

	date: Optional[date]
	is_available: bool = False
	professional_profile_id: Optional[str] = None
	start_time: Optional[str] = None
	end_time: Optional[str] = None
	reason: Optional[str] = None
	is_recurring: bool = False
	day_of_week: Optional[int] = None
	id: Optional[str] = None

	def __post_init__(self) -> None:
		if (self.start_time is None) != (self.end_time is None):
			raise InvalidTimeError(
				f"Exceção {self.id or ''}: informe início e fim, ou nenhum dos dois para o dia inteiro"
			)
		if self.start_time is not None:
			validate_range(self.start_time, self.end_time, "Exceção de disponibilidade")
			object.__setattr__(self, "start_time", normalize_time(self.start_time))
			object.__setattr__(self, "end_time", normalize_time(self.end_time))
		if self.is_recurring:
			if self.day_of_week is None or not 0 <= int(self.day_of_week) <= 6:
				raise InvalidTimeError("Exceção recorrente exige day_of_week entre 0 e 6")
		elif self.date is None:
			raise InvalidTimeError(f"Exceção {self.id or ''} sem data")

	@property
	def is_full_day(self) -> bool:
		return self.start_time is None

	@property
	def is_clinic_wide(self) -> bool:
		return self.professional_profile_id is None

	def matches_date(self, target_date: date) -> bool:
		if self.is_recurring:
			return int(self.day_of_week) == day_of_week(target_date)
		return self.date == target_date

	def applies_to(self, professional_profile_id: Optional[str]) -> bool:
		"""Clinic-wide exceptions apply to everyone; with no selected professional every exception applies."""
		if self.is_clinic_wide or professional_profile_id is None:
			return True
		return self.professional_profile_id == professional_profile_id

	@classmethod
	def from_dict(cls, row: Dict[str, Any]) -> "AvailabilityException":
		return cls(
			date=_optional_date(row.get("date")),
			is_available=bool(row.get("is_available", False)),
			professional_profile_id=row.get("professional_profile_id") or None,
			start_time=_optional_time(row.get("start_time")),
			end_time=_optional_time(row.get("end_time")),
			reason=row.get("reason"),
			is_recurring=bool(row.get("is_recurring", False)),
			day_of_week=row.get("day_of_week"),
			id=row.get("id") or row.get("name"),
		)


@dataclass(frozen=True)
class RecurrenceInfo:
	"""
	Definición de una serie recurrente compartida por sus ocurrencias.

	exceptions guarda las fechas ISO "omitidas" (soft-excluded) sin borrar
	la fila del Appointment, para poder restaurarlas.
	"""

	recurrence_id: str
	recurrence_type: RecurrenceType
	recurrence_end_type: RecurrenceEndType
	end_date: Optional[date] = None
	occurrences: Optional[int] = None
	is_active: bool = True
	exceptions: Tuple[str, ...] = ()
	professional_profile_id: Optional[str] = None
	patient_id: Optional[str] = None
	patient_name: Optional[str] = None
	start_date: Optional[date] = None
	start_time: Optional[str] = None
	duration_minutes: Optional[int] = None
	modality: Modality = Modality.PRESENCIAL
	last_generated_date: Optional[date] = None

	def __post_init__(self) -> None:
		object.__setattr__(self, "recurrence_type", RecurrenceType(self.recurrence_type))
		object.__setattr__(self, "recurrence_end_type", RecurrenceEndType(self.recurrence_end_type))
		object.__setattr__(self, "exceptions", tuple(sorted(set(self.exceptions))))

	def is_skipped(self, target_date: date) -> bool:
		return format_date(target_date) in self.exceptions

	@property
	def day_of_week(self) -> Optional[int]:
		return day_of_week(self.start_date) if self.start_date else None

	@classmethod
	def from_dict(cls, row: Dict[str, Any]) -> "RecurrenceInfo":
		return cls(
			recurrence_id=row.get("recurrence_id") or row.get("name") or row.get("id"),
			recurrence_type=row["recurrence_type"],
			recurrence_end_type=row["recurrence_end_type"],
			end_date=_optional_date(row.get("end_date")),
			occurrences=row.get("occurrences") or None,
			is_active=bool(row.get("is_active", True)),
			exceptions=tuple(row.get("exceptions") or ()),
			professional_profile_id=row.get("professional_profile_id"),
			patient_id=row.get("patient_id"),
			patient_name=row.get("patient_name"),
			start_date=_optional_date(row.get("start_date")),
			start_time=_optional_time(row.get("start_time")),
			duration_minutes=row.get("duration_minutes"),
			modality=Modality(row.get("modality") or Modality.PRESENCIAL),
			last_generated_date=_optional_date(row.get("last_generated_date")),
		)


@dataclass(frozen=True)
class Appointment:
	"""
	Agendamiento.

	blocks_time False marca una entrada informativa (p. ej. recordatorio) que
	se muestra en la grilla pero no ocupa el horario.
	"""

	id: Optional[str]
	scheduled_at: datetime
	end_at: datetime
	status: AppointmentStatus = AppointmentStatus.AGENDADO
	modality: Modality = Modality.PRESENCIAL
	professional_profile_id: Optional[str] = None
	patient_id: Optional[str] = None
	patient_name: Optional[str] = None
	notes: Optional[str] = None
	recurrence: Optional[RecurrenceInfo] = None
	group_id: Optional[str] = None
	blocks_time: bool = True

	def __post_init__(self) -> None:
		object.__setattr__(self, "status", AppointmentStatus(self.status))
		object.__setattr__(self, "modality", Modality(self.modality))

	@property
	def is_cancelled(self) -> bool:
		return self.status in CANCELLED_STATUSES

	@property
	def blocks_slot(self) -> bool:
		"""Ocupa el horario: entrada bloqueante y no cancelada."""
		return self.blocks_time and not self.is_cancelled

	@classmethod
	def from_dict(cls, row: Dict[str, Any], recurrence: Optional[RecurrenceInfo] = None) -> "Appointment":
		return cls(
			id=row.get("id") or row.get("name"),
			scheduled_at=row["scheduled_at"],
			end_at=row["end_at"],
			status=row.get("status") or AppointmentStatus.AGENDADO,
			modality=row.get("modality") or Modality.PRESENCIAL,
			professional_profile_id=row.get("professional_profile_id"),
			patient_id=row.get("patient_id") or row.get("patient"),
			patient_name=row.get("patient_name"),
			notes=row.get("notes"),
			recurrence=recurrence,
			group_id=row.get("group_id") or None,
			blocks_time=bool(row.get("blocks_time", True)),
		)


@dataclass(frozen=True)
class GroupSession:
	"""Sesión de grupo en curso; ocupa los slots que caen estrictamente dentro."""

	scheduled_at: datetime
	end_at: datetime
	group_id: Optional[str] = None


@dataclass(frozen=True)
class BiweeklyHint:
	"""Off-week of a biweekly series: prompts filling the alternate slot."""

	time: str
	is_available: bool = True
	professional_profile_id: Optional[str] = None
	patient_name: Optional[str] = None
	recurrence_id: Optional[str] = None
	date: Optional[str] = None
	paired_appointment_id: Optional[str] = None
	paired_patient_name: Optional[str] = None


@dataclass(frozen=True)
class TimeSlot:
	time: str
	is_available: bool
	appointments: Tuple[Appointment, ...] = ()
	is_blocked: bool = False
	block_reason: Optional[str] = None
	biweekly_hint: Optional[BiweeklyHint] = None

	def to_dict(self) -> Dict[str, Any]:
		"""Serializa el slot para la UI (appointments sólo por id)."""
		return {
			"time": self.time,
			"is_available": self.is_available,
			"appointments": [apt.id for apt in self.appointments],
			"is_blocked": self.is_blocked,
			"block_reason": self.block_reason,
			"biweekly_hint": asdict(self.biweekly_hint) if self.biweekly_hint else None,
		}


@dataclass(frozen=True)
class FullDayBlock:
	reason: Optional[str]
	is_clinic_wide: bool


@dataclass(frozen=True)
class DaySchedule:
	slots: Tuple[TimeSlot, ...] = field(default_factory=tuple)
	full_day_block: Optional[FullDayBlock] = None


def as_rules(rows: Iterable[Any]) -> Tuple[AvailabilityRule, ...]:
	return tuple(r if isinstance(r, AvailabilityRule) else AvailabilityRule.from_dict(r) for r in rows)


def as_exceptions(rows: Iterable[Any]) -> Tuple[AvailabilityException, ...]:
	return tuple(e if isinstance(e, AvailabilityException) else AvailabilityException.from_dict(e) for e in rows)
