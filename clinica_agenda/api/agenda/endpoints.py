"""
Agenda API Endpoints

Whitelisted functions used by the agenda UI. Domain errors raised by the
scheduling engine are reported as frappe.ValidationError; requests are
rate limited per user/IP.
"""

import asyncio
from dataclasses import asdict, replace
from datetime import timedelta
from typing import Any, Dict, List, Optional

import frappe
from frappe import _
from frappe.rate_limiter import rate_limit

from clinica_agenda.api.shared import (
	validate_choice,
	validate_date_string,
	validate_docname,
	validate_positive_int,
	validate_time_string,
)
from clinica_agenda.clinica_agenda.scheduling import data
from clinica_agenda.clinica_agenda.scheduling.biweekly import compute_biweekly_hint
from clinica_agenda.clinica_agenda.scheduling.errors import RecurrenceValidationError, SchedulingError
from clinica_agenda.clinica_agenda.scheduling.models import (
	AppointmentStatus,
	Modality,
	RecurrenceEndType,
	RecurrenceType,
	ScopeMode,
)
from clinica_agenda.clinica_agenda.scheduling.recurrence import (
	SKIP,
	UNSKIP,
	RecurrenceDefinition,
	format_recurrence_summary,
	preview_recurrence as preview_occurrences,
)
from clinica_agenda.clinica_agenda.scheduling.selection import AgendaLoader, SelectionContext
from clinica_agenda.clinica_agenda.scheduling.timeutils import combine, local_date, parse_date, to_naive_local


@frappe.whitelist(methods=["GET"])
@rate_limit(limit=60, seconds=60)
def get_day_slots(
	date: str,
	professional_profile_id: Optional[str] = None,
	scope_mode: str = ScopeMode.SINGLE_PROFESSIONAL.value,
	slot_duration_minutes: Optional[int] = None
) -> Dict[str, Any]:
	"""
	Grilla de slots de un día.

	Args:
		date: fecha (YYYY-MM-DD)
		professional_profile_id: profesional (requerido en SINGLE_PROFESSIONAL)
		scope_mode: SINGLE_PROFESSIONAL o ALL_PROFESSIONALS
		slot_duration_minutes: duración (default: configuración del sitio)

	Returns:
		dict: {
			"date": "2026-03-02",
			"slots": [{"time": "09:00", "is_available": True, "appointments": [...],
				"is_blocked": False, "block_reason": None, "biweekly_hint": None}, ...],
			"full_day_block": None | {"reason": "Feriado", "is_clinic_wide": True}
		}
	"""
	date = validate_date_string(date, "date")
	scope_mode = validate_choice(scope_mode, ScopeMode, "scope_mode")
	if slot_duration_minutes:
		slot_duration_minutes = validate_positive_int(slot_duration_minutes, "slot_duration_minutes", maximum=24 * 60)

	if scope_mode == ScopeMode.SINGLE_PROFESSIONAL.value:
		professional_profile_id = validate_docname(professional_profile_id, "professional_profile_id")
	else:
		professional_profile_id = None

	settings = data.get_scheduling_settings()
	if slot_duration_minutes:
		settings = replace(settings, slot_duration_minutes=slot_duration_minutes)

	loader = AgendaLoader(data.AgendaDataSource(settings), settings)
	context = SelectionContext(date, professional_profile_id, scope_mode)
	try:
		view = asyncio.run(loader.load(context))
	except SchedulingError as e:
		frappe.log_error(f"Error in get_day_slots ({date}, {professional_profile_id}): {str(e)}", "API Error")
		frappe.throw(str(e), frappe.ValidationError)

	day = view.schedule

	return {
		"date": date,
		"slots": [slot.to_dict() for slot in day.slots],
		"full_day_block": (
			{"reason": day.full_day_block.reason, "is_clinic_wide": day.full_day_block.is_clinic_wide}
			if day.full_day_block else None
		),
	}


@frappe.whitelist(methods=["GET", "POST"])
@rate_limit(limit=60, seconds=60)
def preview_recurrence(
	date: str,
	start_time: str,
	recurrence_type: str,
	recurrence_end_type: str,
	occurrences: Optional[int] = None,
	end_date: Optional[str] = None,
	duration_minutes: Optional[int] = None,
	exceptions: Optional[List[str]] = None
) -> Dict[str, Any]:
	"""
	Fechas que tendría la serie, antes de crearla.

	Returns:
		dict: {"summary": "Semanal - 10 sessoes", "total": 10, "active": 10,
			"occurrences": [{"index": 1, "date": "2026-03-02", "scheduled_at": ..., "end_at": ..., "is_exception": False}]}
	"""
	date = validate_date_string(date, "date")
	start_time = validate_time_string(start_time, "start_time")
	recurrence_type = validate_choice(recurrence_type, RecurrenceType, "recurrence_type")
	recurrence_end_type = validate_choice(recurrence_end_type, RecurrenceEndType, "recurrence_end_type")
	if isinstance(exceptions, str):
		exceptions = frappe.parse_json(exceptions)

	settings = data.get_scheduling_settings()
	definition = RecurrenceDefinition(
		recurrence_type=recurrence_type,
		recurrence_end_type=recurrence_end_type,
		start_date=date,
		start_time=start_time,
		duration_minutes=int(duration_minutes) if duration_minutes else None,
		end_date=end_date or None,
		occurrences=int(occurrences) if occurrences else None,
	)

	try:
		items = preview_occurrences(definition, exceptions or [], settings.clinic_timezone, settings)
	except RecurrenceValidationError as e:
		frappe.throw(_(f"{e.field}: {e.message}"), frappe.ValidationError)

	return {
		"summary": format_recurrence_summary(recurrence_type, recurrence_end_type, occurrences, end_date),
		"total": len(items),
		"active": sum(1 for occ in items if not occ.is_exception),
		"occurrences": [
			{
				"index": occ.index,
				"date": str(occ.date),
				"scheduled_at": to_naive_local(occ.scheduled_at, settings.clinic_timezone),
				"end_at": to_naive_local(occ.end_at, settings.clinic_timezone),
				"is_exception": occ.is_exception,
			}
			for occ in items
		],
	}


@frappe.whitelist(methods=["POST"])
@rate_limit(limit=20, seconds=60)
def create_appointment(
	professional_profile_id: str,
	date: str,
	start_time: str,
	patient_id: Optional[str] = None,
	patient_name: Optional[str] = None,
	modality: str = Modality.PRESENCIAL.value,
	notes: Optional[str] = None,
	duration_minutes: Optional[int] = None,
	recurrence_type: Optional[str] = None,
	recurrence_end_type: Optional[str] = None,
	occurrences: Optional[int] = None,
	end_date: Optional[str] = None
) -> Dict[str, Any]:
	"""
	Crea un agendamiento o una serie recurrente.

	Returns:
		dict: {"appointments": [names], "total_occurrences": n, "recurrence": name | None}
		o {"error": "...", "occurrence_index": n} cuando una ocurrencia choca
	"""
	booking = {
		"professional_profile_id": validate_docname(professional_profile_id, "professional_profile_id"),
		"date": validate_date_string(date, "date"),
		"start_time": validate_time_string(start_time, "start_time"),
		"patient_id": patient_id,
		"patient_name": patient_name,
		"modality": validate_choice(modality, Modality, "modality"),
		"notes": notes,
		"duration_minutes": validate_positive_int(duration_minutes, "duration_minutes", 24 * 60) if duration_minutes else None,
	}

	recurrence = None
	if recurrence_type:
		recurrence = {
			"recurrence_type": validate_choice(recurrence_type, RecurrenceType, "recurrence_type"),
			"recurrence_end_type": validate_choice(recurrence_end_type, RecurrenceEndType, "recurrence_end_type"),
			"occurrences": int(occurrences) if occurrences else None,
			"end_date": end_date or None,
		}

	return data.create_appointment(booking, recurrence)


@frappe.whitelist(methods=["POST"])
@rate_limit(limit=30, seconds=60)
def set_occurrence_exception(recurrence_id: str, date: str, action: str) -> Dict[str, Any]:
	"""
	Pula (skip) o restaura (unskip) una ocurrencia de la serie.

	Returns:
		dict: {"recurrence_id": "REC-00001", "exceptions": ["2026-03-09", ...]}
	"""
	recurrence_id = validate_docname(recurrence_id, "recurrence_id")
	date = validate_date_string(date, "date")
	if action not in (SKIP, UNSKIP):
		frappe.throw(_(f"Invalid action. Allowed: {SKIP}, {UNSKIP}"), frappe.ValidationError)

	try:
		updated = data.set_occurrence_exception(recurrence_id, date, action)
	except SchedulingError as e:
		frappe.throw(str(e), frappe.ValidationError)

	return {"recurrence_id": updated.recurrence_id, "exceptions": list(updated.exceptions)}


@frappe.whitelist(methods=["GET"])
@rate_limit(limit=60, seconds=60)
def get_biweekly_hint(appointment_name: str) -> Optional[Dict[str, Any]]:
	"""
	Semana alterna de un agendamiento quinzenal.

	Returns:
		dict | None: {"time", "date", "is_available", "paired_appointment_id",
			"paired_patient_name", ...} o None si no es BIWEEKLY activo
	"""
	appointment_name = validate_docname(appointment_name, "appointment_name")
	if not frappe.db.exists(data.APPOINTMENT_DOCTYPE, appointment_name):
		frappe.throw(_(f"Agendamento '{appointment_name}' não existe"), frappe.DoesNotExistError)

	settings = data.get_scheduling_settings()
	tz_name = settings.clinic_timezone
	row = frappe.db.get_value(data.APPOINTMENT_DOCTYPE, appointment_name, data.APPOINTMENT_FIELDS, as_dict=True)
	appointment = data.appointment_from_row(row, data.get_recurrences([row.recurrence]), tz_name)

	alt_day = local_date(appointment.scheduled_at, tz_name) + timedelta(days=7)
	neighbours = data.get_appointments_between(
		combine(alt_day, "00:00", tz_name),
		combine(alt_day + timedelta(days=1), "00:00", tz_name),
		appointment.professional_profile_id,
		include_group=True,
		settings=settings,
	)

	hint = compute_biweekly_hint(
		appointment,
		neighbours,
		data.get_biweekly_series(appointment.professional_profile_id),
		tz_name=tz_name,
	)
	if hint is None:
		return None
	return asdict(hint)


@frappe.whitelist(methods=["POST"])
@rate_limit(limit=30, seconds=60)
def update_appointment_status(appointment_name: str, status: str) -> Dict[str, Any]:
	"""
	Cambia el status respetando el mapa de transiciones (validado en el DocType).
	"""
	appointment_name = validate_docname(appointment_name, "appointment_name")
	status = validate_choice(status, AppointmentStatus, "status")

	doc = frappe.get_doc(data.APPOINTMENT_DOCTYPE, appointment_name)
	doc.status = status
	doc.save()

	return {
		"name": doc.name,
		"status": doc.status,
		"confirmed_at": doc.confirmed_at,
		"cancelled_at": doc.cancelled_at,
	}


@frappe.whitelist(methods=["POST"])
@rate_limit(limit=10, seconds=60)
def generate_group_sessions(group_id: str, start_date: str, end_date: str) -> Dict[str, int]:
	"""
	Genera las sesiones del grupo entre start_date y end_date.

	Returns:
		dict: {"sessions_created": n, "appointments_created": m, "sessions_skipped": k}
	"""
	group_id = validate_docname(group_id, "group_id")
	start_date = validate_date_string(start_date, "start_date")
	end_date = validate_date_string(end_date, "end_date")

	if parse_date(start_date) > parse_date(end_date):
		frappe.throw(_("start_date deve ser anterior ou igual a end_date"), frappe.ValidationError)

	try:
		return data.generate_group_sessions(group_id, start_date, end_date)
	except SchedulingError as e:
		frappe.log_error(f"Error in generate_group_sessions ({group_id}): {str(e)}", "API Error")
		frappe.throw(str(e), frappe.ValidationError)
