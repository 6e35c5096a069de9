"""
Tests for scheduling/status.py
"""

import unittest
from datetime import datetime

from clinica_agenda.clinica_agenda.scheduling.errors import InvalidStatusTransitionError
from clinica_agenda.clinica_agenda.scheduling.models import AppointmentStatus as S
from clinica_agenda.clinica_agenda.scheduling.status import (
	STATUS_LABELS,
	check_transition,
	compute_status_update,
	is_valid_transition,
)


NOW = datetime(2024, 3, 4, 8, 0)


class TestStatusTransitions(unittest.TestCase):

	def test_scheduled_can_move_anywhere(self):
		for target in (S.CONFIRMADO, S.FINALIZADO, S.NAO_COMPARECEU, S.CANCELADO_PACIENTE, S.CANCELADO_PROFISSIONAL):
			self.assertTrue(is_valid_transition(S.AGENDADO, target), target)

	def test_confirmed_cannot_go_back(self):
		self.assertFalse(is_valid_transition(S.CONFIRMADO, S.AGENDADO))
		self.assertTrue(is_valid_transition("CONFIRMADO", "FINALIZADO"))

	def test_finished_is_terminal(self):
		for target in S:
			if target != S.FINALIZADO:
				self.assertFalse(is_valid_transition(S.FINALIZADO, target), target)

	def test_cancelled_can_be_reverted(self):
		self.assertTrue(is_valid_transition(S.CANCELADO_PACIENTE, S.AGENDADO))
		self.assertTrue(is_valid_transition(S.NAO_COMPARECEU, S.CANCELADO_PROFISSIONAL))
		self.assertFalse(is_valid_transition(S.CANCELADO_PACIENTE, S.CONFIRMADO))

	def test_unknown_status(self):
		self.assertFalse(is_valid_transition("AGENDADO", "PERDIDO"))
		self.assertFalse(is_valid_transition("PERDIDO", "AGENDADO"))

	def test_check_transition(self):
		check_transition(S.FINALIZADO, S.FINALIZADO)
		check_transition("AGENDADO", "CONFIRMADO")

		with self.assertRaises(InvalidStatusTransitionError) as ctx:
			check_transition(S.FINALIZADO, S.AGENDADO)
		self.assertEqual(ctx.exception.current, "FINALIZADO")
		self.assertEqual(ctx.exception.target, "AGENDADO")

	def test_labels_cover_every_status(self):
		self.assertEqual(set(STATUS_LABELS), set(S))


class TestStatusUpdate(unittest.TestCase):

	def test_confirm_sets_timestamp(self):
		self.assertEqual(compute_status_update(S.CONFIRMADO, NOW), {"status": "CONFIRMADO", "confirmed_at": NOW})

	def test_cancel_sets_timestamp(self):
		self.assertEqual(
			compute_status_update("CANCELADO_PROFISSIONAL", NOW),
			{"status": "CANCELADO_PROFISSIONAL", "cancelled_at": NOW}
		)

	def test_revert_clears_timestamps(self):
		self.assertEqual(
			compute_status_update(S.AGENDADO, NOW),
			{"status": "AGENDADO", "confirmed_at": None, "cancelled_at": None}
		)

	def test_finish_only_status(self):
		self.assertEqual(compute_status_update(S.FINALIZADO, NOW), {"status": "FINALIZADO"})


if __name__ == "__main__":
	unittest.main()
