"""
Heartbeat-based liveness monitor.

Every open connection starts alive. Each sweep terminates connections
still marked not-alive from the previous sweep, then marks the survivors
not-alive and pings them. Any inbound frame marks a connection alive
again, and a pong is the answer expected from a client with nothing else
to send. A dead peer is therefore dropped within two intervals.
"""
import asyncio
import logging
from typing import Dict, List, Tuple

from realtime.connection import ClientConnection
from realtime.registry import ConnectionRegistry
from realtime.metrics import heartbeat_terminations_total

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 30.0


class LivenessMonitor:
    """Tracks every open connection, authenticated or not, for heartbeats."""

    def __init__(self, registry: ConnectionRegistry, interval_seconds: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS):
        self.registry = registry
        self.interval_seconds = interval_seconds
        self._connections: Dict[str, ClientConnection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection: ClientConnection) -> bool:
        return connection.connection_id in self._connections

    def track(self, connection: ClientConnection) -> None:
        connection.is_alive = True
        self._connections[connection.connection_id] = connection

    def forget(self, connection: ClientConnection) -> None:
        self._connections.pop(connection.connection_id, None)

    def mark_alive(self, connection: ClientConnection) -> None:
        connection.is_alive = True

    def open_connections(self) -> List[ClientConnection]:
        return list(self._connections.values())

    async def sweep(self) -> Tuple[int, int]:
        """
        Run one heartbeat cycle.

        Returns:
            Tuple of (terminated, pinged)
        """
        terminated = 0
        pinged = 0

        for connection in self.open_connections():
            if not connection.is_alive:
                logger.info(
                    f"Terminating inactive connection {connection.connection_id}",
                    extra={"connection_id": connection.connection_id, "user_id": connection.user_id}
                )
                await connection.terminate(code=1001, reason="Heartbeat timeout")
                self.forget(connection)
                self.registry.unregister(connection)
                heartbeat_terminations_total.labels(instance="api").inc()
                terminated += 1
                continue

            connection.is_alive = False
            await connection.ping()
            pinged += 1

        return terminated, pinged

    async def run(self) -> None:
        """Sweep forever, once per interval, until cancelled."""
        logger.info(f"Heartbeat monitor started (interval={self.interval_seconds}s)")

        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                terminated, pinged = await self.sweep()
                logger.debug(f"Heartbeat complete: {pinged} pinged, {terminated} terminated")
            except Exception:
                logger.exception("Error in heartbeat monitor")
