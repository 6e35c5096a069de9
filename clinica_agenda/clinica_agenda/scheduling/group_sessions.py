"""
Group Session Expander

Computes the session dates of a therapy group inside a date range. Each
session is later materialized as one Clinic Appointment per active member,
all sharing the group's id (see data.generate_group_sessions).
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Union

from dateutil.relativedelta import relativedelta

from .errors import SchedulingError
from .models import RecurrenceType
from .timeutils import combine, format_date, normalize_time, parse_date, to_clinic_time


INTERVAL_DAYS = {
	RecurrenceType.WEEKLY: 7,
	RecurrenceType.BIWEEKLY: 14,
}


@dataclass(frozen=True)
class SessionDate:
	date: str
	scheduled_at: datetime
	end_at: datetime


def first_weekday_on_or_after(from_date: date, target_day_of_week: int) -> date:
	"""First date >= from_date whose day of week (Sunday = 0) is target_day_of_week."""
	current = (from_date.weekday() + 1) % 7
	return from_date + timedelta(days=(int(target_day_of_week) - current) % 7)


def calculate_group_session_dates(
	start_date: Union[date, str],
	end_date: Union[date, str],
	day_of_week: int,
	start_time: str,
	duration_minutes: int,
	recurrence_type: RecurrenceType = RecurrenceType.WEEKLY,
	tz_name: Optional[str] = None
) -> List[SessionDate]:
	"""
	Fechas de sesión del grupo en [start_date, end_date].

	- Primera sesión: primer day_of_week en o después de start_date
	- WEEKLY / BIWEEKLY: +7 / +14 días
	- MONTHLY: primer day_of_week de cada mes siguiente

	Raises:
		SchedulingError: si day_of_week o duration_minutes son inválidos
		InvalidTimeError: si start_time no es HH:MM
	"""
	if not 0 <= int(day_of_week) <= 6:
		raise SchedulingError(f"day_of_week fora do intervalo 0-6: {day_of_week}")
	if int(duration_minutes) <= 0:
		raise SchedulingError("Duração da sessão deve ser maior que zero")
	start_time = normalize_time(start_time)

	recurrence_type = RecurrenceType(recurrence_type)
	start = parse_date(start_date)
	end = parse_date(end_date)

	sessions = []
	current = first_weekday_on_or_after(start, day_of_week)
	month_count = 0
	while current <= end:
		scheduled_at = combine(current, start_time, tz_name)
		sessions.append(SessionDate(
			date=format_date(current),
			scheduled_at=scheduled_at,
			end_at=scheduled_at + timedelta(minutes=int(duration_minutes)),
		))

		if recurrence_type == RecurrenceType.MONTHLY:
			month_count += 1
			first_of_month = (start + relativedelta(months=month_count)).replace(day=1)
			current = first_weekday_on_or_after(first_of_month, day_of_week)
		else:
			current += timedelta(days=INTERVAL_DAYS[recurrence_type])

	return sessions


def filter_existing_session_dates(
	session_dates: Iterable[SessionDate],
	existing_session_times: Iterable[datetime],
	tz_name: Optional[str] = None
) -> List[SessionDate]:
	"""Drops sessions whose start instant already has appointments for the group."""
	existing = {_instant_key(dt, tz_name) for dt in existing_session_times}
	return [s for s in session_dates if _instant_key(s.scheduled_at, tz_name) not in existing]


def _instant_key(value: datetime, tz_name: Optional[str]) -> str:
	local = to_clinic_time(value, tz_name)
	return local.strftime("%Y-%m-%d %H:%M")
