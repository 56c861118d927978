"""Tutor scheduling core: slots, conflicts, recurring series and waitlists."""

__version__ = "0.1.0"
