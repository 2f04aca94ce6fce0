"""Notification fan-out channels."""

from .email import EmailNotifier
from .orchestrator import NotificationOrchestrator

__all__ = ["EmailNotifier", "NotificationOrchestrator"]
