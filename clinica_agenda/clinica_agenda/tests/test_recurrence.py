"""
Tests for scheduling/recurrence.py

Tests date expansion, validation, series materialization with conflict
detection, skip/restore of occurrences and the rolling window extension.
"""

import unittest
from dataclasses import replace
from datetime import date, datetime, timedelta

from clinica_agenda.clinica_agenda.scheduling.errors import (
	OccurrenceConflictError,
	OccurrenceExceptionError,
	RecurrenceValidationError,
)
from clinica_agenda.clinica_agenda.scheduling.models import (
	Appointment,
	AppointmentStatus,
	RecurrenceEndType,
	RecurrenceInfo,
	RecurrenceType,
)
from clinica_agenda.clinica_agenda.scheduling.recurrence import (
	RecurrenceDefinition,
	add_exception,
	build_series,
	calculate_occurrences,
	count_active_occurrences,
	expand_recurrence,
	format_recurrence_summary,
	plan_window_extension,
	preview_recurrence,
	remove_exception,
	restore_occurrence,
	skip_occurrence,
	toggle_occurrence,
)


def definition(recurrence_type="WEEKLY", end_type="BY_OCCURRENCES", start="2024-03-04", **kwargs):
	return RecurrenceDefinition(
		recurrence_type=recurrence_type,
		recurrence_end_type=end_type,
		start_date=start,
		start_time=kwargs.pop("start_time", "09:00"),
		**kwargs
	)


class TestExpandRecurrence(unittest.TestCase):
	"""Date sequence for each recurrence type and end policy."""

	def test_weekly(self):
		dates = expand_recurrence(definition(occurrences=4))
		self.assertEqual(dates, [date(2024, 3, 4), date(2024, 3, 11), date(2024, 3, 18), date(2024, 3, 25)])

	def test_biweekly_cadence(self):
		dates = expand_recurrence(definition("BIWEEKLY", occurrences=3))
		self.assertEqual(dates, [date(2024, 3, 4), date(2024, 3, 18), date(2024, 4, 1)])

	def test_monthly_clamp_leap_year(self):
		dates = expand_recurrence(definition("MONTHLY", start="2024-01-31", occurrences=3))
		self.assertEqual(dates, [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)])

	def test_monthly_clamp_common_year(self):
		dates = expand_recurrence(definition("MONTHLY", start="2026-01-31", occurrences=3))
		self.assertEqual(dates, [date(2026, 1, 31), date(2026, 2, 28), date(2026, 3, 31)])

	def test_accepts_dict(self):
		dates = expand_recurrence({
			"recurrence_type": "WEEKLY",
			"recurrence_end_type": "BY_OCCURRENCES",
			"start_date": "2024-03-04",
			"start_time": "09:00",
			"occurrences": 2,
		})
		self.assertEqual(len(dates), 2)

	def test_by_date_inclusive(self):
		dates = expand_recurrence(definition(end_type="BY_DATE", start="2026-03-02", end_date="2026-03-20"))
		self.assertEqual(dates, [date(2026, 3, 2), date(2026, 3, 9), date(2026, 3, 16)])

		dates = expand_recurrence(definition(end_type="BY_DATE", start="2026-03-02", end_date="2026-03-16"))
		self.assertEqual(dates[-1], date(2026, 3, 16))

	def test_by_date_same_day(self):
		dates = expand_recurrence(definition(end_type="BY_DATE", end_date="2024-03-04"))
		self.assertEqual(dates, [date(2024, 3, 4)])

	def test_indefinite_window(self):
		dates = expand_recurrence(definition(end_type="INDEFINITE", start="2026-01-05"))
		self.assertEqual(dates[0], date(2026, 1, 5))
		self.assertEqual(dates[-1], date(2026, 6, 29))
		self.assertEqual(len(dates), 26)

	def test_deterministic(self):
		d = definition("MONTHLY", occurrences=12)
		self.assertEqual(expand_recurrence(d), expand_recurrence(d))


class TestValidation(unittest.TestCase):

	def assertInvalid(self, field, d):
		with self.assertRaises(RecurrenceValidationError) as ctx:
			expand_recurrence(d)
		self.assertEqual(ctx.exception.field, field)

	def test_zero_occurrences(self):
		self.assertInvalid("occurrences", definition(occurrences=0))

	def test_negative_occurrences(self):
		self.assertInvalid("occurrences", definition(occurrences=-2))

	def test_missing_occurrences(self):
		self.assertInvalid("occurrences", definition())

	def test_too_many_occurrences(self):
		self.assertInvalid("occurrences", definition(occurrences=53))
		self.assertEqual(len(expand_recurrence(definition(occurrences=52))), 52)

	def test_end_date_before_start(self):
		self.assertInvalid("end_date", definition(end_type="BY_DATE", end_date="2024-03-01"))

	def test_missing_end_date(self):
		self.assertInvalid("end_date", definition(end_type="BY_DATE"))

	def test_unknown_type(self):
		self.assertInvalid("recurrence_type", definition("DAILY", occurrences=2))

	def test_unknown_end_type(self):
		self.assertInvalid("recurrence_end_type", definition(end_type="FOREVER"))

	def test_bad_start_time(self):
		self.assertInvalid("start_time", definition(occurrences=2, start_time="25:00"))

	def test_bad_duration(self):
		self.assertInvalid("duration_minutes", definition(occurrences=2, duration_minutes=0))


class TestOccurrences(unittest.TestCase):

	def test_start_and_end_instants(self):
		occ = calculate_occurrences(definition(occurrences=1, start_time="14:30", duration_minutes=60))[0]
		self.assertEqual(occ.index, 1)
		self.assertEqual(occ.scheduled_at, datetime(2024, 3, 4, 14, 30))
		self.assertEqual(occ.end_at, datetime(2024, 3, 4, 15, 30))

	def test_localized_instants(self):
		occ = calculate_occurrences(definition(occurrences=1), tz_name="America/Sao_Paulo")[0]
		self.assertEqual(occ.scheduled_at.utcoffset(), timedelta(hours=-3))
		self.assertEqual(occ.end_at - occ.scheduled_at, timedelta(minutes=50))

	def test_preview_flags_exceptions(self):
		items = preview_recurrence(definition(occurrences=3), exceptions=["2024-03-11"])
		self.assertEqual([occ.is_exception for occ in items], [False, True, False])
		self.assertEqual(count_active_occurrences(definition(occurrences=3), ["2024-03-11"]), 2)

	def test_summary(self):
		self.assertEqual(format_recurrence_summary("WEEKLY", "BY_OCCURRENCES", occurrences=10), "Semanal - 10 sessoes")
		self.assertEqual(format_recurrence_summary("BIWEEKLY", "BY_DATE", end_date="2026-03-20"), "Quinzenal - ate 20/03/2026")
		self.assertEqual(format_recurrence_summary("MONTHLY", "INDEFINITE"), "Mensal - sem data de fim")

	def test_exception_list_helpers(self):
		exceptions = add_exception("2024-03-18", ["2024-03-25"])
		self.assertEqual(exceptions, ("2024-03-18", "2024-03-25"))
		self.assertEqual(add_exception(date(2024, 3, 18), exceptions), exceptions)
		self.assertEqual(remove_exception("2024-03-18", exceptions), ("2024-03-25",))
		self.assertEqual(remove_exception("2024-01-01", exceptions), exceptions)


SERIES = RecurrenceInfo(
	recurrence_id="REC-1",
	recurrence_type=RecurrenceType.WEEKLY,
	recurrence_end_type=RecurrenceEndType.BY_OCCURRENCES,
	occurrences=4,
	exceptions=("2024-03-25",),
	professional_profile_id="prof-1",
	start_date=date(2024, 3, 4),
	start_time="09:00",
)
MATERIALIZED = [date(2024, 3, 4), date(2024, 3, 11), date(2024, 3, 18), date(2024, 3, 25)]


class TestSkipRestore(unittest.TestCase):

	def test_round_trip(self):
		apt = Appointment(
			id="apt-2",
			scheduled_at=datetime(2024, 3, 11, 9, 0),
			end_at=datetime(2024, 3, 11, 9, 50),
			recurrence=SERIES,
		)

		skipped = skip_occurrence(SERIES, "2024-03-11", MATERIALIZED)
		self.assertEqual(skipped.exceptions, ("2024-03-11", "2024-03-25"))
		self.assertTrue(skipped.is_skipped(date(2024, 3, 11)))

		restored = restore_occurrence(skipped, date(2024, 3, 11))
		self.assertEqual(restored.exceptions, SERIES.exceptions)
		self.assertEqual(restored, SERIES)

		# the occurrence row is never touched
		self.assertIs(apt.recurrence, SERIES)
		self.assertEqual(apt.status, AppointmentStatus.AGENDADO)

	def test_skip_non_occurrence(self):
		with self.assertRaises(OccurrenceExceptionError) as ctx:
			skip_occurrence(SERIES, "2024-03-12", MATERIALIZED)
		self.assertEqual(ctx.exception.date, "2024-03-12")

	def test_skip_already_skipped(self):
		with self.assertRaises(OccurrenceExceptionError):
			skip_occurrence(SERIES, "2024-03-25", MATERIALIZED)

	def test_restore_not_skipped(self):
		with self.assertRaises(OccurrenceExceptionError):
			restore_occurrence(SERIES, "2024-03-11")

	def test_inactive_series(self):
		with self.assertRaises(OccurrenceExceptionError):
			skip_occurrence(replace(SERIES, is_active=False), "2024-03-11", MATERIALIZED)

	def test_toggle(self):
		skipped = toggle_occurrence(SERIES, "2024-03-04", "skip", MATERIALIZED)
		self.assertIn("2024-03-04", skipped.exceptions)
		self.assertEqual(toggle_occurrence(skipped, "2024-03-04", "unskip"), SERIES)
		with self.assertRaises(ValueError):
			toggle_occurrence(SERIES, "2024-03-04", "delete", MATERIALIZED)


def booked(name, start, minutes=50, professional="prof-1", **kwargs):
	return Appointment(
		id=name,
		scheduled_at=start,
		end_at=start + timedelta(minutes=minutes),
		professional_profile_id=professional,
		**kwargs
	)


class TestBuildSeries(unittest.TestCase):

	def test_materializes_every_occurrence(self):
		plan = build_series(
			definition(occurrences=4, duration_minutes=50), "REC-9", "prof-1",
			patient_id="pat-1", patient_name="Ana"
		)

		self.assertEqual(plan.total_occurrences, 4)
		self.assertEqual(len(plan.appointments), 4)
		self.assertEqual(plan.recurrence.last_generated_date, date(2024, 3, 25))
		self.assertEqual(plan.recurrence.start_time, "09:00")
		for apt in plan.appointments:
			self.assertIs(apt.recurrence, plan.recurrence)
			self.assertEqual(apt.patient_name, "Ana")
			self.assertEqual(apt.status, AppointmentStatus.AGENDADO)

	def test_conflict_reports_one_based_index(self):
		existing = [booked("other", datetime(2024, 3, 18, 9, 20))]

		with self.assertRaises(OccurrenceConflictError) as ctx:
			build_series(definition(occurrences=4, duration_minutes=50), "REC-9", "prof-1", existing=existing)

		self.assertEqual(ctx.exception.occurrence_index, 3)
		self.assertEqual(ctx.exception.conflicting.id, "other")

	def test_cancelled_does_not_conflict(self):
		existing = [booked("other", datetime(2024, 3, 18, 9, 0), status=AppointmentStatus.CANCELADO_PROFISSIONAL)]
		plan = build_series(definition(occurrences=4), "REC-9", "prof-1", existing=existing)
		self.assertEqual(plan.total_occurrences, 4)

	def test_non_blocking_entry_does_not_conflict(self):
		existing = [booked("reminder", datetime(2024, 3, 18, 9, 0), blocks_time=False)]
		plan = build_series(definition(occurrences=4), "REC-9", "prof-1", existing=existing)
		self.assertEqual(plan.total_occurrences, 4)

	def test_back_to_back_allowed(self):
		existing = [booked("before", datetime(2024, 3, 11, 8, 10)), booked("after", datetime(2024, 3, 11, 9, 50))]
		plan = build_series(definition(occurrences=4, duration_minutes=50), "REC-9", "prof-1", existing=existing)
		self.assertEqual(plan.total_occurrences, 4)

	def test_other_professional_does_not_conflict(self):
		existing = [booked("other", datetime(2024, 3, 11, 9, 0), professional="prof-2")]
		plan = build_series(definition(occurrences=2), "REC-9", "prof-1", existing=existing)
		self.assertEqual(plan.total_occurrences, 2)

	def test_validation_before_materialization(self):
		with self.assertRaises(RecurrenceValidationError):
			build_series(definition(occurrences=0), "REC-9", "prof-1")


INDEFINITE = RecurrenceInfo(
	recurrence_id="REC-2",
	recurrence_type=RecurrenceType.WEEKLY,
	recurrence_end_type=RecurrenceEndType.INDEFINITE,
	professional_profile_id="prof-1",
	start_date=date(2024, 1, 1),
	start_time="09:00",
	duration_minutes=50,
	last_generated_date=date(2024, 6, 24),
)


class TestWindowExtension(unittest.TestCase):

	def test_extends_three_months(self):
		extension = plan_window_extension(INDEFINITE, date(2024, 5, 1))

		dates = [occ.date for occ in extension.occurrences]
		self.assertEqual(dates[0], date(2024, 7, 1))
		self.assertEqual(dates[-1], date(2024, 9, 23))
		self.assertEqual(len(dates), 13)
		self.assertEqual(extension.occurrences[0].index, 27)
		self.assertEqual(extension.last_generated_date, date(2024, 9, 23))

	def test_skips_exceptions_and_conflicts(self):
		series = replace(INDEFINITE, exceptions=("2024-07-08",))
		existing = [booked("other", datetime(2024, 7, 15, 9, 30))]

		extension = plan_window_extension(series, date(2024, 5, 1), existing)

		dates = [occ.date for occ in extension.occurrences]
		self.assertNotIn(date(2024, 7, 8), dates)
		self.assertNotIn(date(2024, 7, 15), dates)
		self.assertEqual(len(dates), 11)
		self.assertEqual(extension.last_generated_date, date(2024, 9, 23))

	def test_not_due_yet(self):
		extension = plan_window_extension(INDEFINITE, date(2024, 3, 1))
		self.assertEqual(extension.occurrences, ())
		self.assertEqual(extension.last_generated_date, INDEFINITE.last_generated_date)

	def test_only_indefinite_active_series(self):
		by_count = replace(INDEFINITE, recurrence_end_type=RecurrenceEndType.BY_OCCURRENCES, occurrences=10)
		self.assertEqual(plan_window_extension(by_count, date(2024, 5, 1)).occurrences, ())

		inactive = replace(INDEFINITE, is_active=False)
		self.assertEqual(plan_window_extension(inactive, date(2024, 5, 1)).occurrences, ())

	def test_monthly_stays_anchored(self):
		series = replace(
			INDEFINITE,
			recurrence_type=RecurrenceType.MONTHLY,
			start_date=date(2024, 1, 31),
			last_generated_date=date(2024, 3, 31),
		)
		extension = plan_window_extension(series, date(2024, 2, 1))
		self.assertEqual(
			[occ.date for occ in extension.occurrences],
			[date(2024, 4, 30), date(2024, 5, 31), date(2024, 6, 30)],
		)
		self.assertEqual([occ.index for occ in extension.occurrences], [4, 5, 6])


if __name__ == "__main__":
	unittest.main()
