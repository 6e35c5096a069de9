"""
Data Access Layer

Frappe-backed implementation of the collaborators the engine consumes:
rules, exceptions, appointments and recurrence series are read with
frappe.get_all and converted to the immutable models; series creation,
skip/restore and group sessions are persisted here.

Frappe stores Datetime fields as naive clinic-local wall time. Rows are
localized to the clinic timezone on read and written back naive.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

import frappe
from frappe import _
from frappe.utils import get_datetime, getdate

from .errors import OccurrenceConflictError, RecurrenceValidationError
from .group_sessions import calculate_group_session_dates, filter_existing_session_dates
from .models import (
	Appointment,
	AppointmentStatus,
	AvailabilityException,
	AvailabilityRule,
	GroupSession,
	Modality,
	RecurrenceInfo,
	RecurrenceType,
)
from .recurrence import (
	Occurrence,
	RecurrenceDefinition,
	build_series,
	expand_recurrence,
	find_conflict,
	toggle_occurrence,
)
from .settings import SchedulingSettings
from .timeutils import as_aware, combine, format_date, local_date, parse_date, to_naive_local


SETTINGS_PREFIX = "clinica_agenda_"

APPOINTMENT_DOCTYPE = "Clinic Appointment"
RECURRENCE_DOCTYPE = "Appointment Recurrence"

APPOINTMENT_FIELDS = [
	"name", "scheduled_at", "end_at", "status", "modality", "professional_profile_id",
	"patient_id", "patient_name", "notes", "recurrence", "group_id", "blocks_time",
]

RECURRENCE_FIELDS = [
	"name", "recurrence_type", "recurrence_end_type", "start_date", "start_time",
	"duration_minutes", "end_date", "occurrences", "is_active", "exceptions",
	"professional_profile_id", "patient_id", "patient_name", "modality", "last_generated_date",
]


# ===== Settings =====

def get_scheduling_settings() -> SchedulingSettings:
	"""
	Defaults sobrescritos por site_config.json.

	Las claves usan el prefijo "clinica_agenda_", por ejemplo
	"clinica_agenda_slot_duration_minutes": 30.
	"""
	overrides = {
		key[len(SETTINGS_PREFIX):]: value
		for key, value in (frappe.conf or {}).items()
		if key.startswith(SETTINGS_PREFIX)
	}
	return SchedulingSettings.from_mapping(overrides)


# ===== Row conversion =====

def recurrence_from_row(row: Dict[str, Any]) -> RecurrenceInfo:
	data = dict(row)
	data["exceptions"] = parse_exceptions(row.get("exceptions"))
	return RecurrenceInfo.from_dict(data)


def parse_exceptions(value: Any) -> List[str]:
	"""Skipped dates are stored as a JSON list of "YYYY-MM-DD" strings."""
	if not value:
		return []
	if isinstance(value, str):
		value = frappe.parse_json(value)
	return [format_date(parse_date(d)) for d in value or []]


def appointment_from_row(
	row: Dict[str, Any],
	recurrences: Optional[Dict[str, RecurrenceInfo]] = None,
	tz_name: Optional[str] = None
) -> Appointment:
	data = dict(row)
	data["scheduled_at"] = as_aware(get_datetime(row["scheduled_at"]), tz_name)
	data["end_at"] = as_aware(get_datetime(row["end_at"]), tz_name)
	recurrence = (recurrences or {}).get(row.get("recurrence")) if row.get("recurrence") else None
	return Appointment.from_dict(data, recurrence=recurrence)


def appointment_to_dict(appointment: Appointment, tz_name: Optional[str] = None) -> Dict[str, Any]:
	return {
		"name": appointment.id,
		"scheduled_at": to_naive_local(appointment.scheduled_at, tz_name),
		"end_at": to_naive_local(appointment.end_at, tz_name),
		"status": appointment.status.value,
		"modality": appointment.modality.value,
		"professional_profile_id": appointment.professional_profile_id,
		"patient_id": appointment.patient_id,
		"patient_name": appointment.patient_name,
		"recurrence": appointment.recurrence.recurrence_id if appointment.recurrence else None,
		"group_id": appointment.group_id,
		"blocks_time": 1 if appointment.blocks_time else 0,
	}


# ===== Reads =====

def get_availability_rules(professional_profile_id: Optional[str] = None) -> List[AvailabilityRule]:
	filters = {"is_active": 1}
	if professional_profile_id:
		filters["professional_profile_id"] = professional_profile_id

	rows = frappe.get_all(
		"Availability Rule",
		filters=filters,
		fields=["name", "professional_profile_id", "day_of_week", "start_time", "end_time", "is_active"],
		order_by="day_of_week asc, start_time asc"
	)
	return [AvailabilityRule.from_dict(row) for row in rows]


def get_availability_exceptions(
	professional_profile_id: Optional[str] = None,
	date_start: Optional[Union[date, str]] = None,
	date_end: Optional[Union[date, str]] = None
) -> List[AvailabilityException]:
	"""
	Excepciones del rango (o recurrentes), de la clínica y del profesional.

	El filtro por profesional se aplica en Python: las excepciones de
	clínica tienen professional_profile_id vacío.
	"""
	or_filters = None
	if date_start and date_end:
		or_filters = [
			["date", "between", [getdate(date_start), getdate(date_end)]],
			["is_recurring", "=", 1],
		]

	rows = frappe.get_all(
		"Availability Exception",
		or_filters=or_filters,
		fields=[
			"name", "professional_profile_id", "date", "is_available", "start_time",
			"end_time", "reason", "is_recurring", "day_of_week",
		],
		order_by="date asc"
	)
	exceptions = [AvailabilityException.from_dict(row) for row in rows]
	return [exc for exc in exceptions if exc.applies_to(professional_profile_id)]


def get_recurrences(names: Iterable[str]) -> Dict[str, RecurrenceInfo]:
	names = sorted(set(n for n in names if n))
	if not names:
		return {}
	rows = frappe.get_all(RECURRENCE_DOCTYPE, filters={"name": ["in", names]}, fields=RECURRENCE_FIELDS)
	return {row.name: recurrence_from_row(row) for row in rows}


def get_recurrence(recurrence_id: str) -> RecurrenceInfo:
	row = frappe.db.get_value(RECURRENCE_DOCTYPE, recurrence_id, RECURRENCE_FIELDS, as_dict=True)
	if not row:
		frappe.throw(_(f"Recorrência '{recurrence_id}' não existe"), frappe.DoesNotExistError)
	return recurrence_from_row(row)


def get_appointments_between(
	start: datetime,
	end: datetime,
	professional_profile_id: Optional[str] = None,
	include_group: bool = False,
	settings: Optional[SchedulingSettings] = None
) -> List[Appointment]:
	"""Appointments whose scheduled_at falls in [start, end), with their series attached."""
	settings = settings or get_scheduling_settings()
	tz_name = settings.clinic_timezone

	filters = [
		["scheduled_at", ">=", to_naive_local(start, tz_name)],
		["scheduled_at", "<", to_naive_local(end, tz_name)],
	]
	if professional_profile_id:
		filters.append(["professional_profile_id", "=", professional_profile_id])
	if not include_group:
		filters.append(["group_id", "is", "not set"])

	rows = frappe.get_all(APPOINTMENT_DOCTYPE, filters=filters, fields=APPOINTMENT_FIELDS, order_by="scheduled_at asc")
	recurrences = get_recurrences(row.recurrence for row in rows)
	return [appointment_from_row(row, recurrences, tz_name) for row in rows]


def get_appointments(
	selected_date: Union[date, str],
	professional_profile_id: Optional[str] = None,
	settings: Optional[SchedulingSettings] = None
) -> List[Appointment]:
	"""
	Agendamientos individuales del día (las sesiones de grupo se leen aparte
	con get_group_sessions).
	"""
	settings = settings or get_scheduling_settings()
	day = parse_date(selected_date)
	start = combine(day, "00:00", settings.clinic_timezone)
	end = combine(day + timedelta(days=1), "00:00", settings.clinic_timezone)
	return get_appointments_between(start, end, professional_profile_id, settings=settings)


def get_group_sessions(
	selected_date: Union[date, str],
	professional_profile_id: Optional[str] = None,
	settings: Optional[SchedulingSettings] = None
) -> List[GroupSession]:
	"""One GroupSession per (group, start) among the day's non-cancelled, time-blocking group appointments."""
	settings = settings or get_scheduling_settings()
	tz_name = settings.clinic_timezone
	day = parse_date(selected_date)

	filters = [
		["scheduled_at", ">=", datetime.combine(day, datetime.min.time())],
		["scheduled_at", "<", datetime.combine(day + timedelta(days=1), datetime.min.time())],
		["group_id", "is", "set"],
		["status", "not in", [AppointmentStatus.CANCELADO_PACIENTE.value, AppointmentStatus.CANCELADO_PROFISSIONAL.value]],
		["blocks_time", "=", 1],
	]
	if professional_profile_id:
		filters.append(["professional_profile_id", "=", professional_profile_id])

	rows = frappe.get_all(APPOINTMENT_DOCTYPE, filters=filters, fields=["group_id", "scheduled_at", "end_at"])

	sessions = {}
	for row in rows:
		scheduled_at = as_aware(get_datetime(row.scheduled_at), tz_name)
		key = (row.group_id, scheduled_at)
		if key not in sessions:
			sessions[key] = GroupSession(
				scheduled_at=scheduled_at,
				end_at=as_aware(get_datetime(row.end_at), tz_name),
				group_id=row.group_id,
			)
	return sorted(sessions.values(), key=lambda s: s.scheduled_at)


def get_biweekly_series(professional_profile_id: Optional[str] = None) -> List[RecurrenceInfo]:
	filters = {"is_active": 1, "recurrence_type": RecurrenceType.BIWEEKLY.value}
	if professional_profile_id:
		filters["professional_profile_id"] = professional_profile_id
	rows = frappe.get_all(RECURRENCE_DOCTYPE, filters=filters, fields=RECURRENCE_FIELDS)
	return [recurrence_from_row(row) for row in rows]


def get_occurrence_dates(recurrence_id: str, settings: Optional[SchedulingSettings] = None) -> List[date]:
	"""Local dates of every materialized occurrence of a series (skipped ones included)."""
	settings = settings or get_scheduling_settings()
	rows = frappe.get_all(APPOINTMENT_DOCTYPE, filters={"recurrence": recurrence_id}, fields=["scheduled_at"])
	return sorted({
		local_date(as_aware(get_datetime(row.scheduled_at), settings.clinic_timezone), settings.clinic_timezone)
		for row in rows
	})


class AgendaDataSource:
	"""
	Fuente de selection.AgendaLoader sobre las lecturas de este módulo.

	Las corrutinas leen con la conexión del request actual y no ceden el
	loop: frappe.db no se comparte entre hilos.
	"""

	def __init__(self, settings: Optional[SchedulingSettings] = None):
		self.settings = settings or get_scheduling_settings()

	async def get_availability_rules(self, professional_profile_id: Optional[str]) -> List[AvailabilityRule]:
		return get_availability_rules(professional_profile_id)

	async def get_availability_exceptions(
		self,
		professional_profile_id: Optional[str],
		date_start: Union[date, str],
		date_end: Union[date, str]
	) -> List[AvailabilityException]:
		return get_availability_exceptions(professional_profile_id, date_start, date_end)

	async def get_appointments(self, selected_date: Union[date, str], professional_profile_id: Optional[str]) -> List[Appointment]:
		return get_appointments(selected_date, professional_profile_id, self.settings)

	async def get_group_sessions(self, selected_date: Union[date, str], professional_profile_id: Optional[str]) -> List[GroupSession]:
		return get_group_sessions(selected_date, professional_profile_id, self.settings)

	async def get_biweekly_series(self, professional_profile_id: Optional[str]) -> List[RecurrenceInfo]:
		return get_biweekly_series(professional_profile_id)


# ===== Writes =====

def create_appointment(booking: Dict[str, Any], recurrence: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
	"""
	Crea un agendamiento individual o una serie completa.

	Args:
		booking: professional_profile_id, patient_id, patient_name, modality,
			notes, date (YYYY-MM-DD), start_time (HH:MM), duration_minutes
		recurrence: recurrence_type, recurrence_end_type, end_date, occurrences

	Returns:
		dict: {"appointments": [...], "total_occurrences": n, "recurrence": name}
		o {"error": str, "occurrence_index": n} / {"error": str, "field": str}

	Nada se inserta si alguna ocurrencia choca: los conflictos se detectan
	antes de escribir.
	"""
	settings = get_scheduling_settings()
	tz_name = settings.clinic_timezone

	definition = RecurrenceDefinition(
		recurrence_type=(recurrence or {}).get("recurrence_type") or RecurrenceType.WEEKLY,
		recurrence_end_type=(recurrence or {}).get("recurrence_end_type") or "BY_OCCURRENCES",
		start_date=booking.get("date"),
		start_time=booking.get("start_time") or "00:00",
		duration_minutes=booking.get("duration_minutes") or settings.slot_duration_minutes,
		end_date=(recurrence or {}).get("end_date"),
		occurrences=(recurrence or {}).get("occurrences") if recurrence else 1,
	)

	try:
		dates = expand_recurrence(definition, settings)
		existing = get_appointments_between(
			combine(dates[0], "00:00", tz_name),
			combine(dates[-1] + timedelta(days=1), "00:00", tz_name),
			booking.get("professional_profile_id"),
			include_group=True,
			settings=settings,
		)
		plan = build_series(
			definition,
			recurrence_id="",
			professional_profile_id=booking.get("professional_profile_id"),
			patient_id=booking.get("patient_id"),
			patient_name=booking.get("patient_name"),
			modality=booking.get("modality") or Modality.PRESENCIAL,
			notes=booking.get("notes"),
			existing=existing,
			settings=settings,
		)
	except RecurrenceValidationError as e:
		return {"error": e.message, "field": e.field}
	except OccurrenceConflictError as e:
		result = {"error": str(e)}
		if recurrence:
			result["occurrence_index"] = e.occurrence_index
		return result

	recurrence_name = None
	if recurrence:
		series = plan.recurrence
		rec_doc = frappe.get_doc({
			"doctype": RECURRENCE_DOCTYPE,
			"recurrence_type": series.recurrence_type.value,
			"recurrence_end_type": series.recurrence_end_type.value,
			"start_date": series.start_date,
			"start_time": series.start_time,
			"duration_minutes": series.duration_minutes,
			"end_date": series.end_date,
			"occurrences": series.occurrences,
			"is_active": 1,
			"exceptions": frappe.as_json([]),
			"professional_profile_id": series.professional_profile_id,
			"patient_id": series.patient_id,
			"patient_name": series.patient_name,
			"modality": series.modality.value,
			"last_generated_date": series.last_generated_date,
		})
		rec_doc.insert()
		recurrence_name = rec_doc.name

	created = []
	for apt in plan.appointments:
		doc = frappe.get_doc({
			"doctype": APPOINTMENT_DOCTYPE,
			"scheduled_at": to_naive_local(apt.scheduled_at, tz_name),
			"end_at": to_naive_local(apt.end_at, tz_name),
			"status": apt.status.value,
			"modality": apt.modality.value,
			"professional_profile_id": apt.professional_profile_id,
			"patient_id": apt.patient_id,
			"patient_name": apt.patient_name,
			"notes": apt.notes,
			"recurrence": recurrence_name,
		})
		doc.insert()
		created.append(doc.name)

	frappe.logger().info(
		f"create_appointment: {len(created)} agendamento(s) criado(s)"
		+ (f" na recorrência {recurrence_name}" if recurrence_name else "")
	)

	return {
		"appointments": created,
		"total_occurrences": plan.total_occurrences,
		"recurrence": recurrence_name,
	}


def insert_occurrences(series: RecurrenceInfo, occurrences: Iterable[Occurrence], settings: SchedulingSettings) -> List[str]:
	"""Persists extra occurrences of an existing series (window extension)."""
	created = []
	for occ in occurrences:
		doc = frappe.get_doc({
			"doctype": APPOINTMENT_DOCTYPE,
			"scheduled_at": to_naive_local(occ.scheduled_at, settings.clinic_timezone),
			"end_at": to_naive_local(occ.end_at, settings.clinic_timezone),
			"status": AppointmentStatus.AGENDADO.value,
			"modality": series.modality.value,
			"professional_profile_id": series.professional_profile_id,
			"patient_id": series.patient_id,
			"patient_name": series.patient_name,
			"recurrence": series.recurrence_id,
		})
		doc.insert(ignore_permissions=True)
		created.append(doc.name)
	return created


def set_occurrence_exception(recurrence_id: str, target_date: Union[date, str], action: str) -> RecurrenceInfo:
	"""
	Pula (skip) o restaura (unskip) una ocurrencia.

	Sólo se escribe Appointment Recurrence.exceptions; la fila del
	agendamiento queda intacta.

	Raises:
		OccurrenceExceptionError: fecha no es ocurrencia, ya omitida o no omitida
	"""
	settings = get_scheduling_settings()
	current = get_recurrence(recurrence_id)
	occurrence_dates = get_occurrence_dates(recurrence_id, settings)

	updated = toggle_occurrence(current, target_date, action, occurrence_dates)

	frappe.db.set_value(RECURRENCE_DOCTYPE, recurrence_id, "exceptions", frappe.as_json(list(updated.exceptions)))
	frappe.logger().info(f"set_occurrence_exception: {action} {format_date(parse_date(target_date))} em {recurrence_id}")
	return updated


def generate_group_sessions(
	group_id: str,
	start_date: Union[date, str],
	end_date: Union[date, str]
) -> Dict[str, int]:
	"""
	Materializa las sesiones del grupo en el rango.

	Una Clinic Appointment por miembro activo por sesión, todas con el
	mismo group_id. Sesiones que ya existen se omiten; sesiones que chocan
	con otro agendamiento del profesional también.

	Returns:
		dict: {"sessions_created": n, "appointments_created": m, "sessions_skipped": k}
	"""
	settings = get_scheduling_settings()
	tz_name = settings.clinic_timezone
	group = frappe.get_doc("Therapy Group", group_id)

	if not group.is_active:
		frappe.throw(_(f"Grupo '{group_id}' está inativo"), frappe.ValidationError)

	members = [m for m in (group.members or []) if m.is_active]
	if not members:
		frappe.throw(_(f"Grupo '{group_id}' não tem membros ativos"), frappe.ValidationError)

	sessions = calculate_group_session_dates(
		start_date,
		end_date,
		group.day_of_week,
		group.start_time,
		group.duration_minutes or settings.slot_duration_minutes,
		group.recurrence_type or RecurrenceType.WEEKLY,
		tz_name,
	)
	if not sessions:
		return {"sessions_created": 0, "appointments_created": 0, "sessions_skipped": 0}

	range_start = combine(parse_date(start_date), "00:00", tz_name)
	range_end = combine(parse_date(end_date) + timedelta(days=1), "00:00", tz_name)
	existing = get_appointments_between(
		range_start, range_end, group.professional_profile_id, include_group=True, settings=settings
	)
	existing_group_times = [apt.scheduled_at for apt in existing if apt.group_id == group_id]
	pending = filter_existing_session_dates(sessions, existing_group_times, tz_name)

	sessions_created = 0
	appointments_created = 0
	for session in pending:
		if find_conflict(
			session.scheduled_at, session.end_at, existing, group.professional_profile_id,
			exclude_group_id=group_id, tz_name=tz_name
		):
			frappe.logger().info(f"generate_group_sessions: {group_id} {session.date} em conflito, ignorada")
			continue

		for member in members:
			frappe.get_doc({
				"doctype": APPOINTMENT_DOCTYPE,
				"scheduled_at": to_naive_local(session.scheduled_at, tz_name),
				"end_at": to_naive_local(session.end_at, tz_name),
				"status": AppointmentStatus.AGENDADO.value,
				"modality": group.modality or Modality.PRESENCIAL.value,
				"professional_profile_id": group.professional_profile_id,
				"patient_id": member.patient_id,
				"patient_name": member.patient_name,
				"group_id": group_id,
			}).insert()
			appointments_created += 1
		sessions_created += 1

	return {
		"sessions_created": sessions_created,
		"appointments_created": appointments_created,
		"sessions_skipped": len(sessions) - sessions_created,
	}

