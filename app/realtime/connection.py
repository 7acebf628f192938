"""
Live WebSocket connection wrapper.

A ClientConnection is owned by the transport loop that accepted it. The
registry and the liveness monitor only hold references; closing the
transport and removing registry entries are handled independently.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4
from starlette.websockets import WebSocketState

from core.errors import AuthError
from realtime.protocol import encode_frame, ping_frame

logger = logging.getLogger(__name__)


class ClientConnection:
    """
    One duplex session between a client device and the server.

    Attributes:
        connection_id: Unique runtime handle
        user_id: Authenticated user, None until login succeeds
        device_uuid: Opaque device identifier supplied at login
        is_alive: Liveness flag maintained by the heartbeat
    """

    def __init__(self, websocket: Any):
        self.websocket = websocket
        self.connection_id = uuid4().hex
        self.user_id: Optional[int] = None
        self.device_uuid: Optional[str] = None
        self.is_alive = True
        self.connected_at = datetime.utcnow()
        self._terminated = False
        self._send_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<ClientConnection {self.connection_id} user={self.user_id}>"

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_open(self) -> bool:
        """True while neither side has closed the transport."""
        if self._terminated:
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def authenticate(self, user_id: int, device_uuid: Optional[str]) -> None:
        """Bind the connection to a user. Allowed once per connection."""
        if self.user_id is not None:
            raise AuthError("Already authenticated")
        self.user_id = user_id
        self.device_uuid = device_uuid

    async def send_frame(self, frame: dict) -> bool:
        """
        Send one JSON frame.

        Never raises: a closed or failing transport is logged and reported
        through the return value.

        Returns:
            True if the frame was written
        """
        if not self.is_open:
            return False

        try:
            async with self._send_lock:
                await self.websocket.send_text(encode_frame(frame))
            return True
        except Exception as e:
            logger.warning(
                f"Failed to send frame to connection {self.connection_id}: {e}",
                extra={"connection_id": self.connection_id, "user_id": self.user_id}
            )
            return False

    async def ping(self) -> bool:
        """Send an application-level heartbeat ping."""
        return await self.send_frame(ping_frame())

    async def terminate(self, code: int = 1001, reason: str = "Connection terminated") -> None:
        """Close the transport. Safe to call on an already closed connection."""
        if self._terminated:
            return
        self._terminated = True
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Close on connection {self.connection_id} ignored: {e}")
