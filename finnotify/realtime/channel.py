"""Lossy, at-most-once push to an owner's live connections."""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol
from uuid import uuid4

from finnotify.realtime.registry import ConnectionRegistry
from finnotify.utils.logging import get_logger

log = get_logger(__name__)


class PushEvent(str, Enum):
    TRANSACTION_CREATED = "transaction:created"
    TRANSACTION_UPDATED = "transaction:updated"
    TRANSACTION_DELETED = "transaction:deleted"
    BUDGET_UPDATED = "budget:updated"
    BUDGET_ALERT = "budget:alert"
    GOAL_PROGRESS = "goal:progress"
    GOAL_ACHIEVED = "goal:achieved"
    NOTIFICATION = "notification"


class PushSocket(Protocol):
    async def send_json(self, data: Any) -> None: ...


class RealtimeChannel:
    """Owner-scoped broadcast groups over live sockets.

    Nothing is buffered: an emit for an owner with no live connection is
    dropped.
    """

    def __init__(self, registry: ConnectionRegistry | None = None) -> None:
        self.registry = registry or ConnectionRegistry()
        self._sockets: dict[str, PushSocket] = {}

    def attach(self, user_id: int, socket: PushSocket) -> str:
        connection_id = uuid4().hex[:12]
        self._sockets[connection_id] = socket
        self.registry.connect(user_id, connection_id)
        log.info("realtime_connected", user_id=user_id, connection_id=connection_id)
        return connection_id

    def detach(self, user_id: int, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)
        self.registry.disconnect(user_id, connection_id)
        log.info("realtime_disconnected", user_id=user_id, connection_id=connection_id)

    def is_connected(self, user_id: int) -> bool:
        return self.registry.is_connected(user_id)

    async def emit(self, user_id: int, event: PushEvent | str, data: Any) -> int:
        """Push to every live connection of ``user_id``. Returns sends that succeeded."""
        name = event.value if isinstance(event, PushEvent) else event
        sent = 0
        for connection_id in self.registry.connections(user_id):
            socket = self._sockets.get(connection_id)
            if socket is None:
                continue
            try:
                await socket.send_json({"event": name, "data": data})
                sent += 1
            except (ConnectionError, RuntimeError) as exc:
                # Socket closing underneath us; disconnect handler cleans up.
                log.debug("realtime_send_failed", connection_id=connection_id, error=str(exc))
        if sent:
            log.debug("realtime_emitted", event_type=name, user_id=user_id, connections=sent)
        return sent

    async def close_all(self) -> None:
        for connection_id, socket in list(self._sockets.items()):
            close = getattr(socket, "close", None)
            if close is not None:
                try:
                    await close()
                except (ConnectionError, RuntimeError):
                    log.debug("realtime_close_failed", connection_id=connection_id)
        self._sockets.clear()
        self.registry.clear()

    # ------------------------------------------------------------------
    # Per-family helpers
    # ------------------------------------------------------------------

    async def emit_transaction_created(self, user_id: int, transaction: Any) -> int:
        return await self.emit(user_id, PushEvent.TRANSACTION_CREATED, transaction)

    async def emit_transaction_updated(self, user_id: int, transaction: Any) -> int:
        return await self.emit(user_id, PushEvent.TRANSACTION_UPDATED, transaction)

    async def emit_transaction_deleted(self, user_id: int, transaction_id: int) -> int:
        return await self.emit(user_id, PushEvent.TRANSACTION_DELETED, {"id": transaction_id})

    async def emit_budget_updated(self, user_id: int, budget: Any) -> int:
        return await self.emit(user_id, PushEvent.BUDGET_UPDATED, budget)

    async def emit_budget_alert(self, user_id: int, alert: Any) -> int:
        return await self.emit(user_id, PushEvent.BUDGET_ALERT, alert)

    async def emit_goal_progress(self, user_id: int, progress: Any) -> int:
        return await self.emit(user_id, PushEvent.GOAL_PROGRESS, progress)

    async def emit_goal_achieved(self, user_id: int, goal: Any) -> int:
        return await self.emit(user_id, PushEvent.GOAL_ACHIEVED, goal)

    async def emit_notification(self, user_id: int, notification: Any) -> int:
        return await self.emit(user_id, PushEvent.NOTIFICATION, notification)
