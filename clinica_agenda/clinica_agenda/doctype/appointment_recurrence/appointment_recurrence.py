# Copyright (c) 2026, Clinica Agenda and contributors
# For license information, please see license.txt

"""
Appointment Recurrence DocType

Definición compartida por las ocurrencias de una serie. exceptions guarda
(en JSON) las fechas omitidas sin borrar los agendamientos.
"""

import frappe
from frappe import _
from frappe.model.document import Document

from clinica_agenda.clinica_agenda.scheduling.data import (
	get_occurrence_dates,
	get_scheduling_settings,
	parse_exceptions,
)
from clinica_agenda.clinica_agenda.scheduling.errors import RecurrenceValidationError
from clinica_agenda.clinica_agenda.scheduling.recurrence import (
	RecurrenceDefinition,
	format_recurrence_summary,
	validate_recurrence,
)
from clinica_agenda.clinica_agenda.scheduling.timeutils import format_date


class AppointmentRecurrence(Document):
	"""
	Validations:
	- Recurrence definition valid (occurrences, end_date, types)
	- exceptions only contains materialized occurrence dates
	- summary kept in sync
	"""

	def validate(self) -> None:
		self._validate_definition()
		self._validate_exceptions()
		self.summary = format_recurrence_summary(
			self.recurrence_type, self.recurrence_end_type, self.occurrences, self.end_date
		)

	def _validate_definition(self) -> None:
		definition = RecurrenceDefinition(
			recurrence_type=self.recurrence_type,
			recurrence_end_type=self.recurrence_end_type,
			start_date=self.start_date,
			start_time=self.start_time or "00:00",
			duration_minutes=self.duration_minutes,
			end_date=self.end_date,
			occurrences=self.occurrences,
		)
		try:
			validate_recurrence(definition, get_scheduling_settings())
		except RecurrenceValidationError as e:
			frappe.throw(_(f"{e.field}: {e.message}"), frappe.ValidationError)

	def _validate_exceptions(self) -> None:
		"""Normaliza la lista (ordenada, sin duplicados) y rechaza fechas que no son ocurrencias."""
		exceptions = sorted(set(parse_exceptions(self.exceptions)))
		self.exceptions = frappe.as_json(exceptions)

		if not exceptions or self.is_new():
			return

		materialized = {format_date(d) for d in get_occurrence_dates(self.name)}
		invalid = [d for d in exceptions if d not in materialized]
		if invalid:
			frappe.throw(
				_(f"Datas que não são ocorrências desta recorrência: {', '.join(invalid)}"),
				frappe.ValidationError
			)
