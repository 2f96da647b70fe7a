"""Civic Connect: citizen grievance reporting with voting and admin triage."""

__version__ = "0.1.0"
