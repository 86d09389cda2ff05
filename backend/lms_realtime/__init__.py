"""Real-time presence and notification fan-out for course pages."""

__version__ = "0.1.0"
