# backend/tutorslots/domain/__init__.py
"""Pure scheduling rules: time ranges and the slot lifecycle."""
