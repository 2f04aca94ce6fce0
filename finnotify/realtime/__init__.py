"""Realtime push to live client connections."""

from .channel import PushEvent, RealtimeChannel
from .registry import ConnectionRegistry

__all__ = ["ConnectionRegistry", "PushEvent", "RealtimeChannel"]
