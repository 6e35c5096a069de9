# Copyright (c) 2026, Clinica Agenda and contributors
# For license information, please see license.txt

"""
Availability Exception DocType

Override de disponibilidad para fechas específicas:
- is_available = 0: bloquea el día completo (sin horario) o un rango
- is_available = 1: disponibilidad extra en un rango
Sin professional_profile_id aplica a toda la clínica.
"""

import frappe
from frappe import _
from frappe.model.document import Document

from clinica_agenda.clinica_agenda.scheduling.errors import InvalidTimeError
from clinica_agenda.clinica_agenda.scheduling.timeutils import format_minutes, validate_range


class AvailabilityException(Document):
	"""
	Availability Exception with validations.

	Validations:
	- date required (or day_of_week when is_recurring)
	- start_time and end_time both set or both empty
	- start_time < end_time
	- Extra availability requires a time range
	- Warn on overlapping exceptions for same date/scope
	"""

	def validate(self) -> None:
		self._validate_required_fields()
		self._validate_times()
		self._validate_extra_availability()
		self._check_overlapping_exceptions()

	def _validate_required_fields(self) -> None:
		if self.is_recurring:
			if self.day_of_week is None or not 0 <= int(self.day_of_week) <= 6:
				frappe.throw(_("Exceção recorrente exige dia da semana entre 0 e 6"))
		elif not self.date:
			frappe.throw(_("Data é obrigatória"))

	def _validate_times(self) -> None:
		if bool(self.start_time) != bool(self.end_time):
			frappe.throw(_("Informe início e fim, ou nenhum dos dois para o dia inteiro"))

		if self.start_time and self.end_time:
			try:
				validate_range(self.start_time, self.end_time, "Exceção de disponibilidade")
			except InvalidTimeError as e:
				frappe.throw(str(e), frappe.ValidationError)

	def _validate_extra_availability(self) -> None:
		"""No tiene sentido agregar disponibilidad extra sin especificar el rango."""
		if self.is_available and not self.start_time:
			frappe.throw(_("Disponibilidade extra requer horário de início e fim"))

	def _check_overlapping_exceptions(self) -> None:
		"""
		Advierte si ya existe una excepción solapada para el mismo día y alcance.
		No bloquea, solo informa, porque pueden haber múltiples bloqueos parciales.
		"""
		if self.is_recurring or not self.date:
			return

		existing = frappe.get_all(
			"Availability Exception",
			filters={
				"date": self.date,
				"professional_profile_id": self.professional_profile_id or ["is", "not set"],
				"name": ["!=", self.name or ""],
			},
			fields=["name", "start_time", "end_time"]
		)
		if not existing:
			return

		if not self.start_time:
			frappe.msgprint(
				_(f"Já existem {len(existing)} exceção(ões) em {self.date}. Esta exceção sem horário cobre o dia inteiro."),
				indicator="orange",
				alert=True
			)
			return

		start, end = validate_range(self.start_time, self.end_time)
		for exc in existing:
			if not exc.start_time or not exc.end_time:
				continue
			exc_start, exc_end = validate_range(exc.start_time, exc.end_time)
			if start < exc_end and end > exc_start:
				frappe.msgprint(
					_(f"Esta exceção ({format_minutes(start)}-{format_minutes(end)}) "
					  f"se sobrepõe a {exc.name} ({format_minutes(exc_start)}-{format_minutes(exc_end)})"),
					indicator="orange",
					alert=True
				)
