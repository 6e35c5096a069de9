"""
Tests for scheduling/data.py

Site-bound tests: appointment and series creation, skip/restore and group
session generation against the real DocTypes, and the agenda loader
over the Frappe data source. Run with
`bench --site <site> run-tests --app clinica_agenda`.
"""

import unittest

try:
	import frappe
except ImportError:
	raise unittest.SkipTest("frappe is not installed")

if not getattr(frappe.local, "site", None):
	raise unittest.SkipTest("no Frappe site initialized")

import asyncio
from dataclasses import replace
from datetime import date

from clinica_agenda.clinica_agenda.scheduling.data import (
	APPOINTMENT_DOCTYPE,
	RECURRENCE_DOCTYPE,
	AgendaDataSource,
	create_appointment,
	generate_group_sessions,
	get_appointments,
	get_occurrence_dates,
	get_scheduling_settings,
	set_occurrence_exception,
)
from clinica_agenda.clinica_agenda.scheduling.errors import OccurrenceExceptionError
from clinica_agenda.clinica_agenda.scheduling.selection import AgendaLoader, SelectionContext


PROFESSIONAL = "_Test Prof Data"
GROUP_NAME = "_Test Group Data"
# Lunes
MONDAY = "2031-03-03"


def booking(**kwargs):
	values = {
		"professional_profile_id": PROFESSIONAL,
		"patient_id": "_Test Patient A",
		"patient_name": "Ana",
		"date": MONDAY,
		"start_time": "09:00",
		"duration_minutes": 50,
	}
	values.update(kwargs)
	return values


class TestCreateAppointment(unittest.TestCase):
	"""Tests for single appointments and eager series creation."""

	def test_single_appointment(self):
		result = create_appointment(booking())

		self.assertEqual(len(result["appointments"]), 1)
		self.assertIsNone(result["recurrence"])

		appointments = get_appointments(MONDAY, PROFESSIONAL)
		self.assertEqual(len(appointments), 1)
		self.assertEqual(appointments[0].id, result["appointments"][0])
		self.assertEqual(appointments[0].scheduled_at.hour, 9)
		self.assertIsNotNone(appointments[0].scheduled_at.tzinfo)

	def test_weekly_series(self):
		result = create_appointment(
			booking(),
			{"recurrence_type": "WEEKLY", "recurrence_end_type": "BY_OCCURRENCES", "occurrences": 4}
		)

		self.assertEqual(result["total_occurrences"], 4)
		self.assertTrue(result["recurrence"])
		self.assertEqual(
			get_occurrence_dates(result["recurrence"]),
			[date(2031, 3, 3), date(2031, 3, 10), date(2031, 3, 17), date(2031, 3, 24)]
		)

		summary = frappe.db.get_value(RECURRENCE_DOCTYPE, result["recurrence"], "summary")
		self.assertEqual(summary, "Semanal - 4 sessoes")

	def test_conflict_inserts_nothing(self):
		create_appointment(booking(date="2031-03-17", patient_id="_Test Patient B", patient_name="Bruno"))

		result = create_appointment(
			booking(),
			{"recurrence_type": "WEEKLY", "recurrence_end_type": "BY_OCCURRENCES", "occurrences": 4}
		)

		self.assertIn("error", result)
		self.assertEqual(result["occurrence_index"], 3)
		self.assertEqual(frappe.db.count(APPOINTMENT_DOCTYPE, {"professional_profile_id": PROFESSIONAL}), 1)

	def test_validation_error_names_field(self):
		result = create_appointment(
			booking(),
			{"recurrence_type": "WEEKLY", "recurrence_end_type": "BY_OCCURRENCES", "occurrences": 0}
		)
		self.assertEqual(result["field"], "occurrences")

	def tearDown(self):
		frappe.db.rollback()


class TestOccurrenceException(unittest.TestCase):

	def setUp(self):
		result = create_appointment(
			booking(),
			{"recurrence_type": "BIWEEKLY", "recurrence_end_type": "BY_OCCURRENCES", "occurrences": 3}
		)
		self.recurrence_id = result["recurrence"]

	def test_skip_and_restore(self):
		skipped = set_occurrence_exception(self.recurrence_id, "2031-03-17", "skip")
		self.assertEqual(skipped.exceptions, ("2031-03-17",))
		stored = frappe.parse_json(frappe.db.get_value(RECURRENCE_DOCTYPE, self.recurrence_id, "exceptions"))
		self.assertEqual(stored, ["2031-03-17"])

		# El agendamiento sigue existiendo
		self.assertEqual(frappe.db.count(APPOINTMENT_DOCTYPE, {"recurrence": self.recurrence_id}), 3)

		restored = set_occurrence_exception(self.recurrence_id, "2031-03-17", "unskip")
		self.assertEqual(restored.exceptions, ())

	def test_skip_rejects_non_occurrence(self):
		with self.assertRaises(OccurrenceExceptionError):
			set_occurrence_exception(self.recurrence_id, "2031-03-10", "skip")

	def tearDown(self):
		frappe.db.rollback()


class TestGroupSessions(unittest.TestCase):

	def setUp(self):
		if frappe.db.exists("Therapy Group", GROUP_NAME):
			frappe.delete_doc("Therapy Group", GROUP_NAME, force=True)

		frappe.get_doc({
			"doctype": "Therapy Group",
			"group_name": GROUP_NAME,
			"professional_profile_id": PROFESSIONAL,
			"day_of_week": 1,
			"start_time": "14:00:00",
			"duration_minutes": 90,
			"recurrence_type": "WEEKLY",
			"is_active": 1,
			"members": [
				{"patient_id": "_Test Patient A", "patient_name": "Ana", "is_active": 1},
				{"patient_id": "_Test Patient B", "patient_name": "Bruno", "is_active": 1},
				{"patient_id": "_Test Patient C", "patient_name": "Carla", "is_active": 0},
			],
		}).insert(ignore_permissions=True)

	def test_generate_once(self):
		result = generate_group_sessions(GROUP_NAME, MONDAY, "2031-03-16")

		self.assertEqual(result, {"sessions_created": 2, "appointments_created": 4, "sessions_skipped": 0})
		self.assertEqual(frappe.db.count(APPOINTMENT_DOCTYPE, {"group_id": GROUP_NAME}), 4)

		# Las sesiones de grupo no aparecen como agendamientos individuales
		self.assertEqual(get_appointments(MONDAY, PROFESSIONAL), [])

	def test_generate_is_idempotent(self):
		generate_group_sessions(GROUP_NAME, MONDAY, "2031-03-16")
		result = generate_group_sessions(GROUP_NAME, MONDAY, "2031-03-16")

		self.assertEqual(result["sessions_created"], 0)
		self.assertEqual(frappe.db.count(APPOINTMENT_DOCTYPE, {"group_id": GROUP_NAME}), 4)

	def test_agenda_loader_marks_running_session(self):
		frappe.get_doc({
			"doctype": "Availability Rule",
			"professional_profile_id": PROFESSIONAL,
			"day_of_week": 1,
			"start_time": "14:00:00",
			"end_time": "16:00:00",
			"is_active": 1,
		}).insert(ignore_permissions=True)
		generate_group_sessions(GROUP_NAME, MONDAY, MONDAY)

		settings = replace(get_scheduling_settings(), slot_duration_minutes=30)
		loader = AgendaLoader(AgendaDataSource(settings), settings)
		view = asyncio.run(loader.load(SelectionContext(MONDAY, PROFESSIONAL)))

		slots = {slot.time: slot.is_available for slot in view.schedule.slots}
		self.assertEqual(slots, {"14:00": True, "14:30": False, "15:00": False, "15:30": True})

	def test_conflicting_session_skipped(self):
		create_appointment(booking(date="2031-03-10", start_time="14:30"))

		result = generate_group_sessions(GROUP_NAME, MONDAY, "2031-03-16")

		self.assertEqual(result["sessions_created"], 1)
		self.assertEqual(result["sessions_skipped"], 1)

	def tearDown(self):
		frappe.db.rollback()


def run_tests():
	"""Run all tests in this module."""
	unittest.main()
