"""Owner to live-connection registry."""

from __future__ import annotations


class ConnectionRegistry:
    """Tracks live connection ids per owner.

    An owner key is dropped as soon as its last connection disconnects.
    """

    def __init__(self) -> None:
        self._connections: dict[int, set[str]] = {}

    def connect(self, user_id: int, connection_id: str) -> None:
        self._connections.setdefault(user_id, set()).add(connection_id)

    def disconnect(self, user_id: int, connection_id: str) -> None:
        connections = self._connections.get(user_id)
        if connections is None:
            return
        connections.discard(connection_id)
        if not connections:
            del self._connections[user_id]

    def is_connected(self, user_id: int) -> bool:
        return bool(self._connections.get(user_id))

    def connections(self, user_id: int) -> frozenset[str]:
        return frozenset(self._connections.get(user_id, ()))

    def owners(self) -> list[int]:
        return list(self._connections)

    def __len__(self) -> int:
        return sum(len(c) for c in self._connections.values())

    def clear(self) -> None:
        self._connections.clear()
