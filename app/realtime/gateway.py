"""
Chat gateway: lifecycle of the real-time messaging server.

Accepts WebSocket connections, wires each one to the command dispatcher,
runs the heartbeat and stats loops, and shuts everything down gracefully.
One gateway instance is created per application and stored on
``app.state.chat_gateway``; tests build their own.
"""
import asyncio
import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import sessionmaker
from starlette.websockets import WebSocket, WebSocketDisconnect

from core.config import Settings
from core.security import decode_access_token
from realtime.connection import ClientConnection
from realtime.handlers import CommandDispatcher, TokenVerifier
from realtime.liveness import DEFAULT_HEARTBEAT_INTERVAL_SECONDS, LivenessMonitor
from realtime.metrics import (
    update_connection_gauges, websocket_connections_total, websocket_disconnections_total
)
from realtime.protocol import welcome_frame
from realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

DEFAULT_STATS_INTERVAL_SECONDS = 60.0
DEFAULT_WELCOME_MESSAGE = "Connected to BDSTHAT WebSocket server"


class ChatGateway:
    """Owns the registry, liveness monitor and dispatcher for one server."""

    def __init__(
        self,
        session_factory: sessionmaker,
        registry: Optional[ConnectionRegistry] = None,
        token_verifier: TokenVerifier = decode_access_token,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
        stats_interval: float = DEFAULT_STATS_INTERVAL_SECONDS,
        require_active_account: bool = True,
        welcome_message: str = DEFAULT_WELCOME_MESSAGE
    ):
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.monitor = LivenessMonitor(self.registry, heartbeat_interval)
        self.dispatcher = CommandDispatcher(
            registry=self.registry,
            monitor=self.monitor,
            session_factory=session_factory,
            token_verifier=token_verifier,
            require_active_account=require_active_account
        )
        self.stats_interval = stats_interval
        self.welcome_message = welcome_message
        self._tasks: List[asyncio.Task] = []

    @classmethod
    def from_settings(cls, settings: Settings, session_factory: sessionmaker) -> "ChatGateway":
        return cls(
            session_factory=session_factory,
            heartbeat_interval=settings.ws_heartbeat_interval_seconds,
            stats_interval=settings.ws_stats_interval_seconds,
            require_active_account=settings.ws_require_active_account,
            welcome_message=settings.ws_welcome_message
        )

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        """Start the heartbeat and stats loops on the running event loop."""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self.monitor.run(), name="ws-heartbeat"),
            asyncio.create_task(self._log_stats(), name="ws-stats"),
        ]
        logger.info("WebSocket gateway started")

    async def shutdown(self) -> None:
        """Stop background loops and close every open connection."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        for connection in self.monitor.open_connections():
            await connection.terminate(code=1001, reason="Server shutting down")
            self.disconnect(connection, reason="shutdown")

        logger.info("WebSocket gateway stopped")

    async def serve(self, websocket: WebSocket) -> None:
        """
        Run one connection from accept to close.

        Frames are handled one at a time in arrival order. Protocol and
        handler errors are answered on the connection and never close it;
        only a client disconnect or a heartbeat timeout ends the loop. Every
        inbound frame, not only a pong, keeps the connection alive.
        """
        await websocket.accept()
        connection = ClientConnection(websocket)
        self.monitor.track(connection)
        websocket_connections_total.labels(instance="api").inc()
        self._refresh_gauges()

        client = websocket.client
        logger.info(
            f"New client connected from {client.host if client else 'unknown'}",
            extra={"connection_id": connection.connection_id}
        )

        reason = "normal"
        try:
            await connection.send_frame(welcome_frame(self.welcome_message))

            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break

                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                if raw is None:
                    continue

                await self.handle_frame(connection, raw)

        except WebSocketDisconnect:
            pass
        except Exception as e:
            reason = "error"
            logger.error(
                f"WebSocket error on connection {connection.connection_id}: {e}",
                extra={"connection_id": connection.connection_id, "user_id": connection.user_id}
            )
        finally:
            self.disconnect(connection, reason=reason)

    async def handle_frame(self, connection: ClientConnection, raw) -> None:
        """Handle one inbound frame. Any frame counts as proof of life."""
        self.monitor.mark_alive(connection)
        await self.dispatcher.dispatch(connection, raw)

    def disconnect(self, connection: ClientConnection, reason: str = "normal") -> None:
        """Drop all references to a connection. Safe to call more than once."""
        was_tracked = connection in self.monitor
        self.registry.unregister(connection)
        self.monitor.forget(connection)
        if not was_tracked:
            return

        websocket_disconnections_total.labels(instance="api", reason=reason).inc()
        self._refresh_gauges()
        if connection.is_authenticated:
            logger.info(
                f"User {connection.user_id} disconnected (uuid: {connection.device_uuid})",
                extra={"connection_id": connection.connection_id, "user_id": connection.user_id}
            )
        else:
            logger.info(f"Client disconnected before login ({connection.connection_id})")

    async def broadcast_to_users(self, user_ids: Iterable[int], frame: dict) -> int:
        """Push a frame to every open connection of the given users."""
        return await self.dispatcher.broadcast_to_users(user_ids, frame)

    def stats(self) -> dict:
        return {
            "active_users": self.registry.user_count(),
            "authenticated_connections": self.registry.connection_count(),
            "total_connections": len(self.monitor),
        }

    def _refresh_gauges(self) -> None:
        update_connection_gauges(len(self.monitor), self.registry.user_count())

    async def _log_stats(self) -> None:
        while True:
            await asyncio.sleep(self.stats_interval)
            self._refresh_gauges()
            logger.info(
                f"Active users: {self.registry.user_count()}, "
                f"Total connections: {len(self.monitor)}"
            )
