"""Conclave: dispatch one prompt to a council of agent CLIs and track them through the job directory."""
