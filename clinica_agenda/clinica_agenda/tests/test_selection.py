"""
Tests for scheduling/selection.py

Tests the selection context, fetch generation guard and the concurrent
agenda loader (stale loads are dropped, even when they fail).
"""

import asyncio
import unittest
from dataclasses import replace
from datetime import date, datetime

from clinica_agenda.clinica_agenda.scheduling.models import (
	AvailabilityRule,
	GroupSession,
	RecurrenceEndType,
	RecurrenceInfo,
	RecurrenceType,
	ScopeMode,
)
from clinica_agenda.clinica_agenda.scheduling.selection import (
	AgendaLoader,
	FetchGuard,
	SelectionContext,
)
from clinica_agenda.clinica_agenda.scheduling.settings import DEFAULT_SETTINGS


MONDAY = date(2024, 3, 4)
NEXT_MONDAY = date(2024, 3, 11)
SETTINGS = replace(DEFAULT_SETTINGS, slot_duration_minutes=30)


class FakeSource:
	"""In-memory source whose get_appointments can be held until released."""

	def __init__(self):
		self.gates = {}
		self.failures = {}
		self.calls = []
		self.series = []
		self.group_sessions = []

	def hold(self, day):
		self.gates[day] = asyncio.Event()
		return self.gates[day]

	async def get_availability_rules(self, professional_profile_id):
		self.calls.append(("rules", professional_profile_id))
		return [AvailabilityRule("prof-1", 1, "09:00", "12:00")]

	async def get_availability_exceptions(self, professional_profile_id, date_start, date_end):
		self.calls.append(("exceptions", professional_profile_id))
		return []

	async def get_appointments(self, selected_date, professional_profile_id):
		self.calls.append(("appointments", professional_profile_id))
		gate = self.gates.get(selected_date)
		if gate is not None:
			await gate.wait()
		if selected_date in self.failures:
			raise self.failures[selected_date]
		return []

	async def get_group_sessions(self, selected_date, professional_profile_id):
		self.calls.append(("group_sessions", professional_profile_id))
		return list(self.group_sessions)

	async def get_biweekly_series(self, professional_profile_id):
		self.calls.append(("series", professional_profile_id))
		return list(self.series)


class TestSelectionContext(unittest.TestCase):

	def test_parses_date_and_scope(self):
		ctx = SelectionContext("2024-03-04", "prof-1", "ALL_PROFESSIONALS")
		self.assertEqual(ctx.selected_date, MONDAY)
		self.assertEqual(ctx.scope_mode, ScopeMode.ALL_PROFESSIONALS)

	def test_professional_filter(self):
		self.assertEqual(SelectionContext(MONDAY, "prof-1").professional_filter, "prof-1")
		self.assertIsNone(SelectionContext(MONDAY, "prof-1", ScopeMode.ALL_PROFESSIONALS).professional_filter)


class TestFetchGuard(unittest.TestCase):

	def test_only_latest_token_is_current(self):
		guard = FetchGuard()
		first = guard.begin(SelectionContext(MONDAY))
		second = guard.begin(SelectionContext(NEXT_MONDAY))

		self.assertFalse(guard.is_current(first))
		self.assertTrue(guard.is_current(second))
		self.assertEqual(guard.generation, 2)

	def test_apply_skips_stale_token(self):
		guard = FetchGuard()
		applied = []
		stale = guard.begin(SelectionContext(MONDAY))
		current = guard.begin(SelectionContext(NEXT_MONDAY))

		self.assertFalse(guard.apply(stale, applied.append, "stale"))
		self.assertTrue(guard.apply(current, applied.append, "current"))
		self.assertEqual(applied, ["current"])

	def test_invalidate(self):
		guard = FetchGuard()
		token = guard.begin(SelectionContext(MONDAY))
		guard.invalidate()

		self.assertFalse(guard.is_current(token))
		self.assertEqual(guard.generation, 2)


class TestAgendaLoader(unittest.IsolatedAsyncioTestCase):

	async def test_load_builds_schedule(self):
		source = FakeSource()
		loader = AgendaLoader(source, SETTINGS)

		view = await loader.load(SelectionContext(MONDAY, "prof-1"))

		self.assertIs(loader.view, view)
		self.assertEqual(len(view.schedule.slots), 6)
		self.assertTrue(all(slot.is_available for slot in view.schedule.slots))
		self.assertIn(("appointments", "prof-1"), source.calls)

	async def test_all_professionals_fetches_unfiltered(self):
		source = FakeSource()
		loader = AgendaLoader(source, SETTINGS)

		view = await loader.load(SelectionContext(MONDAY, "prof-1", ScopeMode.ALL_PROFESSIONALS))

		self.assertEqual(len(view.schedule.slots), 28)
		self.assertIn(("rules", None), source.calls)

	async def test_group_session_occupies_slots(self):
		source = FakeSource()
		source.group_sessions = [GroupSession(
			scheduled_at=datetime(2024, 3, 4, 9, 30),
			end_at=datetime(2024, 3, 4, 10, 30),
			group_id="Grupo A",
		)]
		loader = AgendaLoader(source, SETTINGS)

		view = await loader.load(SelectionContext(MONDAY, "prof-1"))

		slots = {slot.time: slot.is_available for slot in view.schedule.slots}
		self.assertEqual(slots, {
			"09:00": True, "09:30": True, "10:00": False,
			"10:30": True, "11:00": True, "11:30": True,
		})
		self.assertIn(("group_sessions", "prof-1"), source.calls)

	async def test_off_week_hint_attached(self):
		source = FakeSource()
		source.series = [RecurrenceInfo(
			recurrence_id="REC-A",
			recurrence_type=RecurrenceType.BIWEEKLY,
			recurrence_end_type=RecurrenceEndType.INDEFINITE,
			professional_profile_id="prof-1",
			patient_id="pat-A",
			patient_name="Ana",
			start_date=date(2024, 2, 26),
			start_time="10:00",
		)]
		loader = AgendaLoader(source, SETTINGS)

		view = await loader.load(SelectionContext(MONDAY, "prof-1"))

		hinted = [slot for slot in view.schedule.slots if slot.biweekly_hint]
		self.assertEqual([slot.time for slot in hinted], ["10:00"])
		self.assertEqual(hinted[0].biweekly_hint.patient_name, "Ana")

	async def test_stale_load_is_dropped(self):
		source = FakeSource()
		gate = source.hold(MONDAY)
		loader = AgendaLoader(source, SETTINGS)

		first = asyncio.create_task(loader.load(SelectionContext(MONDAY, "prof-1")))
		await asyncio.sleep(0)
		second = await loader.load(SelectionContext(NEXT_MONDAY, "prof-1"))

		gate.set()
		self.assertIsNone(await first)
		self.assertIs(loader.view, second)
		self.assertEqual(loader.view.context.selected_date, NEXT_MONDAY)

	async def test_stale_failure_is_not_reported(self):
		source = FakeSource()
		gate = source.hold(MONDAY)
		source.failures[MONDAY] = ConnectionError("timeout")
		loader = AgendaLoader(source, SETTINGS)

		first = asyncio.create_task(loader.load(SelectionContext(MONDAY, "prof-1")))
		await asyncio.sleep(0)
		await loader.load(SelectionContext(NEXT_MONDAY, "prof-1"))

		gate.set()
		self.assertIsNone(await first)
		self.assertEqual(loader.view.context.selected_date, NEXT_MONDAY)

	async def test_current_failure_is_raised(self):
		source = FakeSource()
		source.failures[MONDAY] = ConnectionError("timeout")
		loader = AgendaLoader(source, SETTINGS)

		with self.assertRaises(ConnectionError):
			await loader.load(SelectionContext(MONDAY, "prof-1"))
		self.assertIsNone(loader.view)


if __name__ == "__main__":
	unittest.main()
