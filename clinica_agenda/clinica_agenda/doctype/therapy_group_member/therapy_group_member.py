# Copyright (c) 2026, Clinica Agenda and contributors
# For license information, please see license.txt

from frappe.model.document import Document


class TherapyGroupMember(Document):
	pass
