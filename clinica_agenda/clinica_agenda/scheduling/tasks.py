"""
Scheduled Tasks

Background tasks that run periodically:
- extend_indefinite_recurrences: Extends the materialized window of INDEFINITE series
"""

import frappe
from frappe.utils import getdate
from dateutil.relativedelta import relativedelta

from .data import (
	RECURRENCE_DOCTYPE,
	RECURRENCE_FIELDS,
	get_appointments_between,
	get_scheduling_settings,
	insert_occurrences,
	recurrence_from_row,
)
from .models import RecurrenceEndType
from .recurrence import plan_window_extension
from .timeutils import combine


def extend_indefinite_recurrences() -> int:
	"""
	Materializa la próxima ventana de las series INDEFINITE activas.
	Se ejecuta semanalmente vía cron (configurado en hooks.py).

	Algoritmo:
		1. Buscar Appointment Recurrence con:
			- is_active = 1
			- recurrence_end_type = INDEFINITE
		2. Para cada serie:
			- plan_window_extension() (nada si last_generated_date sigue lejos)
			- Insertar las ocurrencias nuevas (sin fechas omitidas ni conflictos)
			- Actualizar last_generated_date
		3. Log cantidad de ocurrencias creadas

	Returns:
		int: Cantidad de agendamientos creados
	"""
	settings = get_scheduling_settings()
	tz_name = settings.clinic_timezone
	today = getdate()

	# 1. Buscar series a extender
	rows = frappe.get_all(
		RECURRENCE_DOCTYPE,
		filters={"is_active": 1, "recurrence_end_type": RecurrenceEndType.INDEFINITE.value},
		fields=RECURRENCE_FIELDS
	)

	created_count = 0
	extended_series = 0

	# 2. Extender cada serie
	for row in rows:
		try:
			series = recurrence_from_row(row)
			last_generated = series.last_generated_date or series.start_date
			horizon = last_generated + relativedelta(months=settings.extension_months)

			existing = get_appointments_between(
				combine(last_generated, "00:00", tz_name),
				combine(horizon, "23:59", tz_name),
				series.professional_profile_id,
				include_group=True,
				settings=settings,
			)

			extension = plan_window_extension(series, today, existing, settings)
			if extension.last_generated_date == series.last_generated_date:
				continue

			created = insert_occurrences(series, extension.occurrences, settings)
			frappe.db.set_value(
				RECURRENCE_DOCTYPE, series.recurrence_id, "last_generated_date", extension.last_generated_date
			)

			created_count += len(created)
			extended_series += 1

			frappe.logger().info(
				f"Recorrência estendida: {series.recurrence_id} "
				f"({len(created)} ocorrência(s), até {extension.last_generated_date})"
			)

		except Exception as e:
			frappe.log_error(
				f"Error al extender recurrencia {row.name}: {str(e)}",
				"extend_indefinite_recurrences"
			)
			# Continuar con las demás series
			continue

	# 3. Log totales
	if extended_series > 0:
		frappe.logger().info(
			f"extend_indefinite_recurrences: {extended_series} series, {created_count} agendamentos criados"
		)

	frappe.db.commit()

	return created_count
