"""
Connection registry: which live connections belong to which user.

Each mutation is a single synchronous map operation, so it completes
atomically with respect to the event loop and needs no lock.
"""
import logging
from typing import Dict, List

from realtime.connection import ClientConnection

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Tracks authenticated connections per user (multiple devices supported).

    A user id is present iff at least one of its connections is registered;
    entries are deleted as soon as they become empty.
    """

    def __init__(self):
        # {str(user_id): [ClientConnection, ...]} in registration order
        self._connections: Dict[str, List[ClientConnection]] = {}

    @staticmethod
    def _key(user_id) -> str:
        return str(user_id)

    def register(self, user_id, connection: ClientConnection) -> None:
        """Add a connection for a user. No-op if it is already registered."""
        connections = self._connections.setdefault(self._key(user_id), [])
        if any(existing is connection for existing in connections):
            return
        connections.append(connection)
        logger.debug(
            f"Registered connection {connection.connection_id} for user {user_id} "
            f"(total connections: {len(connections)})"
        )

    def unregister(self, connection: ClientConnection) -> bool:
        """
        Remove a connection from whichever user holds it.

        Safe to call repeatedly and for connections that were never
        registered.

        Returns:
            True if the connection was removed
        """
        for key, connections in list(self._connections.items()):
            for index, existing in enumerate(connections):
                if existing is connection:
                    del connections[index]
                    if not connections:
                        del self._connections[key]
                    return True
        return False

    def connections_for(self, user_id) -> List[ClientConnection]:
        """Snapshot of the user's registered connections (empty list if none)."""
        return list(self._connections.get(self._key(user_id), ()))

    def is_online(self, user_id) -> bool:
        return self._key(user_id) in self._connections

    def user_ids(self) -> List[str]:
        return list(self._connections)

    def user_count(self) -> int:
        """Number of unique users with at least one connection."""
        return len(self._connections)

    def connection_count(self) -> int:
        """Total registered connections across all users."""
        return sum(len(connections) for connections in self._connections.values())
