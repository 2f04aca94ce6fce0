"""finnotify - event detection and notification delivery for personal finance records."""
__version__ = "0.1.0"
