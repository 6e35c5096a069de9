# Copyright (c) 2026, Clinica Agenda and contributors
# For license information, please see license.txt

"""
Availability Rule DocType

Franja semanal recurrente en la que un profesional atiende.
"""

import frappe
from frappe import _
from frappe.model.document import Document

from clinica_agenda.clinica_agenda.scheduling.errors import InvalidTimeError
from clinica_agenda.clinica_agenda.scheduling.timeutils import format_minutes, validate_range


WEEKDAY_LABELS = ["Domingo", "Segunda", "Terça", "Quarta", "Quinta", "Sexta", "Sábado"]


class AvailabilityRule(Document):
	"""
	Availability Rule with validation.

	Validations:
	- professional_profile_id required
	- day_of_week in 0..6 (domingo = 0)
	- start_time < end_time
	- No overlapping active rules for the same professional and weekday
	"""

	def validate(self) -> None:
		self._validate_required_fields()
		self._validate_times()
		if self.is_active:
			self._validate_no_overlapping_rules()

	def _validate_required_fields(self) -> None:
		if not self.professional_profile_id:
			frappe.throw(_("Profissional é obrigatório"))

		if self.day_of_week is None or not 0 <= int(self.day_of_week) <= 6:
			frappe.throw(_("Dia da semana deve estar entre 0 (domingo) e 6 (sábado)"))

	def _validate_times(self) -> None:
		if not self.start_time or not self.end_time:
			frappe.throw(_("Horário de início e fim são obrigatórios"))
		try:
			validate_range(self.start_time, self.end_time, "Regra de disponibilidade")
		except InvalidTimeError as e:
			frappe.throw(str(e), frappe.ValidationError)

	def _validate_no_overlapping_rules(self) -> None:
		"""
		Dos reglas se solapan si:
		- Son del mismo profesional y weekday
		- rule1.start < rule2.end AND rule1.end > rule2.start
		"""
		start, end = validate_range(self.start_time, self.end_time)

		others = frappe.get_all(
			"Availability Rule",
			filters={
				"professional_profile_id": self.professional_profile_id,
				"day_of_week": int(self.day_of_week),
				"is_active": 1,
				"name": ["!=", self.name or ""],
			},
			fields=["name", "start_time", "end_time"]
		)

		for other in others:
			other_start, other_end = validate_range(other.start_time, other.end_time)
			if start < other_end and end > other_start:
				frappe.throw(
					_(f"{WEEKDAY_LABELS[int(self.day_of_week)]}: horário {format_minutes(start)}-{format_minutes(end)} "
					  f"se sobrepõe à regra {other.name} ({format_minutes(other_start)}-{format_minutes(other_end)})")
				)
