# Copyright (c) 2026, Clinica Agenda and contributors
# For license information, please see license.txt

"""
Clinic Appointment DocType

One booked session. Occurrences of a recurring series point to their
Appointment Recurrence; group session members share a group_id.
"""

from datetime import timedelta

import frappe
from frappe import _
from frappe.model.document import Document
from frappe.utils import get_datetime, now_datetime

from clinica_agenda.clinica_agenda.scheduling.data import (
	get_appointments_between,
	get_scheduling_settings,
)
from clinica_agenda.clinica_agenda.scheduling.errors import InvalidStatusTransitionError
from clinica_agenda.clinica_agenda.scheduling.models import CANCELLED_STATUSES, AppointmentStatus
from clinica_agenda.clinica_agenda.scheduling.recurrence import find_conflict
from clinica_agenda.clinica_agenda.scheduling.status import check_transition, compute_status_update
from clinica_agenda.clinica_agenda.scheduling.timeutils import as_aware


class ClinicAppointment(Document):
	"""
	Clinic Appointment with scheduling validation.

	Ejecuta:
	1. Validar profesional requerido
	2. Validar consistencia de fechas
	3. Validar transición de status y completar timestamps
	4. Bloquear si se solapa con otro agendamiento del profesional
	"""

	def validate(self) -> None:
		self._validate_professional()
		self._validate_datetime_consistency()
		self._validate_status_transition()
		self._validate_no_overlap()

	# ===== VALIDATION METHODS =====

	def _validate_professional(self) -> None:
		if not self.professional_profile_id:
			frappe.throw(_("Profissional é obrigatório"))

	def _validate_datetime_consistency(self) -> None:
		"""Valida que scheduled_at < end_at."""
		if not self.scheduled_at or not self.end_at:
			frappe.throw(_("Início e fim são obrigatórios"))

		if get_datetime(self.scheduled_at) >= get_datetime(self.end_at):
			frappe.throw(_("Início deve ser anterior ao fim"))

	def _validate_status_transition(self) -> None:
		"""
		Aplica el mapa de transiciones en cambios de status.
		Completa confirmed_at / cancelled_at según el status destino.
		"""
		if not self.status:
			self.status = AppointmentStatus.AGENDADO.value

		previous = self.get_doc_before_save()
		if not previous or previous.status == self.status:
			return

		try:
			check_transition(previous.status, self.status)
		except InvalidStatusTransitionError as e:
			frappe.throw(str(e), frappe.ValidationError)

		for field, value in compute_status_update(self.status, now_datetime()).items():
			self.set(field, value)

	def _validate_no_overlap(self) -> None:
		"""
		Bloquea el guardado si otro agendamiento activo del profesional se
		solapa. Cancelados y entradas no bloqueantes no cuentan; miembros del
		mismo grupo comparten horario.
		"""
		if self.status in {s.value for s in CANCELLED_STATUSES} or not self.blocks_time:
			return

		settings = get_scheduling_settings()
		tz_name = settings.clinic_timezone
		start = as_aware(get_datetime(self.scheduled_at), tz_name)
		end = as_aware(get_datetime(self.end_at), tz_name)

		existing = get_appointments_between(
			start - timedelta(days=1), end, self.professional_profile_id, include_group=True, settings=settings
		)
		conflict = find_conflict(
			start,
			end,
			existing,
			self.professional_profile_id,
			exclude_appointment_id=None if self.is_new() else self.name,
			exclude_group_id=self.group_id or None,
			tz_name=tz_name,
		)
		if conflict:
			frappe.throw(
				_(f"Conflito de horário com {conflict.id} ({conflict.patient_name or ''})"),
				frappe.ValidationError
			)
