# Copyright (c) 2026, Clinica Agenda and contributors
# For license information, please see license.txt

"""
Therapy Group DocType

Grupo terapéutico con horario fijo; sus sesiones se generan con
data.generate_group_sessions.
"""

import frappe
from frappe import _
from frappe.model.document import Document

from clinica_agenda.clinica_agenda.scheduling.errors import InvalidTimeError
from clinica_agenda.clinica_agenda.scheduling.timeutils import normalize_time


class TherapyGroup(Document):
	def validate(self) -> None:
		if not self.group_name:
			frappe.throw(_("Nome do grupo é obrigatório"))

		if not self.professional_profile_id:
			frappe.throw(_("Profissional é obrigatório"))

		if self.day_of_week is None or not 0 <= int(self.day_of_week) <= 6:
			frappe.throw(_("Dia da semana deve estar entre 0 (domingo) e 6 (sábado)"))

		try:
			normalize_time(self.start_time)
		except InvalidTimeError as e:
			frappe.throw(str(e), frappe.ValidationError)

		if not self.duration_minutes or int(self.duration_minutes) <= 0:
			frappe.throw(_("Duração deve ser maior que zero"))

		self._validate_members()

	def _validate_members(self) -> None:
		"""No duplicated patients among members."""
		seen = set()
		for idx, member in enumerate(self.members or [], 1):
			if not member.patient_id:
				frappe.throw(_(f"Linha {idx}: Paciente é obrigatório"))
			if member.patient_id in seen:
				frappe.throw(_(f"Linha {idx}: Paciente {member.patient_id} duplicado no grupo"))
			seen.add(member.patient_id)
