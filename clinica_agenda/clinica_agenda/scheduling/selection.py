"""
Selection context and fetch ordering.

The current selection (date + professional scope) is passed explicitly to
the loader; nothing here reads ambient state. Every load starts a new fetch
generation and only the latest generation may publish its result: a fetch
whose token was superseded while in flight is dropped silently (even if it
failed), never applied and never reported as an error.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, List, Optional, Tuple

from .biweekly import appointment_slot_key, compute_biweekly_hints
from .models import Appointment, DaySchedule, GroupSession, RecurrenceInfo, ScopeMode
from .settings import DEFAULT_SETTINGS, SchedulingSettings
from .slots import compute_day
from .timeutils import parse_date


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionContext:
	selected_date: date
	professional_profile_id: Optional[str] = None
	scope_mode: ScopeMode = ScopeMode.SINGLE_PROFESSIONAL

	def __post_init__(self) -> None:
		object.__setattr__(self, "selected_date", parse_date(self.selected_date))
		object.__setattr__(self, "scope_mode", ScopeMode(self.scope_mode))

	@property
	def professional_filter(self) -> Optional[str]:
		"""Professional used to filter fetches (None in the all-professionals view)."""
		if self.scope_mode == ScopeMode.ALL_PROFESSIONALS:
			return None
		return self.professional_profile_id


@dataclass(frozen=True)
class FetchToken:
	generation: int
	context: SelectionContext


class FetchGuard:
	"""Issues one token per fetch generation; only the newest token is current."""

	def __init__(self):
		self._generation = 0
		self._current: Optional[FetchToken] = None

	@property
	def generation(self) -> int:
		return self._generation

	def begin(self, context: SelectionContext) -> FetchToken:
		self._generation += 1
		self._current = FetchToken(generation=self._generation, context=context)
		return self._current

	def is_current(self, token: FetchToken) -> bool:
		return self._current is not None and token.generation == self._current.generation

	def invalidate(self) -> None:
		"""Supersede whatever is in flight without starting a new fetch."""
		self._generation += 1
		self._current = None

	def apply(self, token: FetchToken, callback: Callable[..., Any], *args, **kwargs) -> bool:
		"""Runs callback only if token is still current. Returns whether it ran."""
		if not self.is_current(token):
			logger.debug("Dropping stale fetch generation %s (current %s)", token.generation, self._generation)
			return False
		callback(*args, **kwargs)
		return True


@dataclass(frozen=True)
class AgendaView:
	context: SelectionContext
	schedule: DaySchedule
	appointments: Tuple[Appointment, ...] = field(default_factory=tuple)


class AgendaLoader:
	"""
	Carga concurrente de la agenda de un día.

	source debe exponer las corrutinas:
		get_availability_rules(professional_profile_id)
		get_availability_exceptions(professional_profile_id, date_start, date_end)
		get_appointments(selected_date, professional_profile_id)
		get_group_sessions(selected_date, professional_profile_id)
		get_biweekly_series(professional_profile_id)
	"""

	def __init__(self, source: Any, settings: SchedulingSettings = DEFAULT_SETTINGS, guard: Optional[FetchGuard] = None):
		self.source = source
		self.settings = settings
		self.guard = guard or FetchGuard()
		self.view: Optional[AgendaView] = None

	async def load(self, context: SelectionContext) -> Optional[AgendaView]:
		"""
		Busca y calcula la agenda para context.

		Returns:
			AgendaView aplicada, o None si otra carga la reemplazó mientras
			estaba en vuelo

		Raises:
			Exception: el primer error de las búsquedas, sólo si la carga
				sigue vigente
		"""
		token = self.guard.begin(context)
		professional = context.professional_filter
		day = context.selected_date

		results = await asyncio.gather(
			self.source.get_availability_rules(professional),
			self.source.get_availability_exceptions(professional, day, day),
			self.source.get_appointments(day, professional),
			self.source.get_group_sessions(day, professional),
			self.source.get_biweekly_series(professional),
			return_exceptions=True
		)

		if not self.guard.is_current(token):
			logger.debug("Stale agenda load for %s discarded", day)
			return None

		for result in results:
			if isinstance(result, Exception):
				raise result

		rules, exceptions, appointments, group_sessions, series = results
		view = self._build_view(context, rules, exceptions, appointments, group_sessions, series)
		self.guard.apply(token, self._publish, view)
		return view

	def _build_view(
		self,
		context: SelectionContext,
		rules: List[Any],
		exceptions: List[Any],
		appointments: List[Appointment],
		group_sessions: List[GroupSession],
		series: List[RecurrenceInfo]
	) -> AgendaView:
		tz_name = self.settings.clinic_timezone
		occupied = {appointment_slot_key(apt, tz_name) for apt in appointments if apt.blocks_slot}
		hints = compute_biweekly_hints(context.selected_date, context.selected_date, series, occupied)

		schedule = compute_day(
			context.selected_date,
			rules,
			exceptions,
			appointments,
			scope_mode=context.scope_mode,
			professional_profile_id=context.professional_filter,
			group_sessions=group_sessions,
			biweekly_hints=hints,
			settings=self.settings,
		)
		return AgendaView(context=context, schedule=schedule, appointments=tuple(appointments))

	def _publish(self, view: AgendaView) -> None:
		self.view = view
