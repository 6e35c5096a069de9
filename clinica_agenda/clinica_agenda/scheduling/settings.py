"""
Scheduling Settings

Engine configuration values. The core never reads global state: callers
build a SchedulingSettings (the Frappe layer overlays site config, see
data.get_scheduling_settings) and pass it in explicitly.
"""

from dataclasses import dataclass, fields, replace
from typing import Any, Dict


DEFAULT_SLOT_DURATION_MINUTES = 50
DEFAULT_CLINIC_TIMEZONE = "America/Sao_Paulo"


@dataclass(frozen=True)
class SchedulingSettings:
	slot_duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES
	clinic_timezone: str = DEFAULT_CLINIC_TIMEZONE

	# Grilla fija de la vista "todos los profesionales"
	aggregate_start: str = "07:00"
	aggregate_end: str = "20:30"
	aggregate_step_minutes: int = 30

	max_occurrences: int = 52
	indefinite_window_months: int = 6
	extension_months: int = 3
	extension_threshold_months: int = 2

	# Slots extra a partir de excepciones is_available=True (desactivado por defecto)
	extra_availability_enabled: bool = False

	@classmethod
	def from_mapping(cls, values: Dict[str, Any]) -> "SchedulingSettings":
		"""
		Builds settings from a mapping, ignoring unknown keys and None values.

		Args:
			values: dict con nombres de campo -> valor

		Returns:
			SchedulingSettings con los defaults sobrescritos
		"""
		known = {f.name for f in fields(cls)}
		overrides = {}
		for key, value in values.items():
			if key not in known or value is None:
				continue
			default = getattr(cls, key)
			if isinstance(default, bool):
				value = str(value).lower() in ("1", "true", "yes") if isinstance(value, str) else bool(value)
			elif isinstance(default, int):
				value = int(value)
			else:
				value = str(value)
			overrides[key] = value
		return replace(cls(), **overrides)


DEFAULT_SETTINGS = SchedulingSettings()
