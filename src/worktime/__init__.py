"""worktime - session time tracking against a hosted backend."""

__version__ = "0.1.0"
