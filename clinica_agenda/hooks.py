app_name = "clinica_agenda"
app_title = "Clinica Agenda"
app_publisher = "Clinica Agenda"
app_description = "Agenda clínica: disponibilidade, recorrências e sessões de grupo"
app_email = "dev@clinica-agenda.local"
app_license = "mit"

# Apps
# ------------------

# required_apps = []

# Includes in <head>
# ------------------

# include js, css files in header of desk.html
# app_include_css = "/assets/clinica_agenda/css/clinica_agenda.css"
# app_include_js = "/assets/clinica_agenda/js/clinica_agenda.js"

# Installation
# ------------

# before_install = "clinica_agenda.install.before_install"
# after_install = "clinica_agenda.install.after_install"

# Document Events
# ---------------
# Hook on document methods and events

# doc_events = {
# 	"*": {
# 		"on_update": "method",
# 		"on_cancel": "method",
# 		"on_trash": "method"
# 	}
# }

# Scheduled Tasks
# ---------------

scheduler_events = {
	"cron": {
		"0 2 * * 1": [  # Lunes 02:00
			"clinica_agenda.clinica_agenda.scheduling.tasks.extend_indefinite_recurrences"
		]
	}
}

# Testing
# -------

# before_tests = "clinica_agenda.install.before_tests"

# Request Events
# ----------------
# before_request = ["clinica_agenda.utils.before_request"]
# after_request = ["clinica_agenda.utils.after_request"]

# Automatically update python controller files with type annotations for this app.
# export_python_type_annotations = True
