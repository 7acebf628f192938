"""
WebSocket command handlers.

Login promotes a connection from unauthenticated to authenticated and
registers it; messages are checked against room membership, stored, and
fanned out to every open connection of every joined room member.

Each command is handled to completion before the next frame from the same
connection is read, so one connection's messages are stored and broadcast
in the order they were sent. Commands from different connections
interleave at every store call and every send.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from opentelemetry import trace
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from api.schemas import MessageOut, RoomSummary, UserProfile
from core.errors import (
    AuthError, AuthorizationError, ChatError, InternalError, NotFoundError, ValidationError
)
from core.security import decode_access_token, token_subject
from db.models import MessageType, UserStatus
from db.repository import ChatRepository
from realtime.connection import ClientConnection
from realtime.liveness import LivenessMonitor
from realtime.metrics import (
    chat_broadcast_deliveries_total, chat_messages_persisted_total,
    websocket_command_duration_seconds, websocket_command_failures_total,
    websocket_frames_received_total
)
from realtime.protocol import (
    PongCommand, UserLoginCommand, UserMessageCommand, decode_command,
    failure_frame, login_success_frame, message_broadcast_frame
)
from realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

TokenVerifier = Callable[[str], Optional[Dict[str, Any]]]


@dataclass
class StoredMessage:
    """Result of persisting one message, ready to broadcast."""
    message: MessageOut
    room: RoomSummary
    member_ids: List[int]


def store_message(
    db: Session,
    sender_id: int,
    room_id: int,
    content: str,
    message_type: MessageType,
    media: Optional[str] = None,
    metadata: Optional[dict] = None
) -> StoredMessage:
    """
    Validate membership and persist a message in one transaction.

    Order: insert message, load sender, advance the room's last-message
    pointer, commit, then read the joined members to notify.

    Raises:
        NotFoundError: room does not exist
        AuthorizationError: sender has no JOINED membership in the room
    """
    repository = ChatRepository(db)

    room = repository.get_room(room_id)
    if room is None:
        raise NotFoundError("Chat room not found")

    # Re-read on every message; leaving a room must apply to the next send
    if repository.get_joined_member(room_id, sender_id) is None:
        raise AuthorizationError("You are not a member of this room")

    try:
        message = repository.create_message(
            room_id=room_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            media=media,
            metadata=metadata
        )
        sender = repository.get_user_public_profile(sender_id)
        repository.update_room_last_message(room, message)
        db.commit()
    except Exception:
        db.rollback()
        raise

    member_ids = repository.get_room_member_ids(room_id, joined_only=True)
    return StoredMessage(
        message=MessageOut.from_message(message, sender),
        room=RoomSummary.from_room(room),
        member_ids=member_ids
    )


class CommandDispatcher:
    """Decodes inbound frames and routes them to the matching handler."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        monitor: LivenessMonitor,
        session_factory: sessionmaker,
        token_verifier: TokenVerifier = decode_access_token,
        require_active_account: bool = True
    ):
        self.registry = registry
        self.monitor = monitor
        self.session_factory = session_factory
        self.token_verifier = token_verifier
        self.require_active_account = require_active_account

    async def dispatch(self, connection: ClientConnection, raw: Union[str, bytes]) -> None:
        """Handle one inbound frame. Never raises and never closes the connection."""
        with tracer.start_as_current_span("websocket.command") as span:
            span.set_attribute("websocket.connection_id", connection.connection_id)
            try:
                command = decode_command(raw)
            except ChatError as exc:
                websocket_frames_received_total.labels(command="invalid", instance="api").inc()
                websocket_command_failures_total.labels(
                    command=exc.command or "unknown", reason=exc.reason, instance="api"
                ).inc()
                logger.info(
                    f"Rejected frame on connection {connection.connection_id}: {exc.reason}",
                    extra={"connection_id": connection.connection_id}
                )
                await connection.send_frame(failure_frame(exc.reason, exc.command))
                return

            span.set_attribute("websocket.command", command.command)
            websocket_frames_received_total.labels(command=command.command, instance="api").inc()

            if isinstance(command, UserLoginCommand):
                await self._guarded(connection, command, self.handle_login)
            elif isinstance(command, UserMessageCommand):
                await self._guarded(connection, command, self.handle_message)
            elif isinstance(command, PongCommand):
                self.monitor.mark_alive(connection)
            else:
                await connection.send_frame(failure_frame("Unknown command"))

    async def _guarded(self, connection: ClientConnection, command, handler) -> None:
        """Run a handler, converting every error into a tagged failure frame."""
        started = time.perf_counter()
        outcome = "success"
        try:
            await handler(connection, command)
        except ChatError as exc:
            outcome = "failed"
            websocket_command_failures_total.labels(
                command=command.command, reason=exc.reason, instance="api"
            ).inc()
            logger.info(
                f"{command.command} failed: {exc.reason}",
                extra={"connection_id": connection.connection_id, "user_id": connection.user_id}
            )
            await connection.send_frame(failure_frame(exc.reason, command.command))
        except Exception:
            outcome = "error"
            reason = InternalError.default_reason
            websocket_command_failures_total.labels(
                command=command.command, reason=reason, instance="api"
            ).inc()
            logger.exception(
                f"Unexpected error handling {command.command}",
                extra={"connection_id": connection.connection_id, "user_id": connection.user_id}
            )
            await connection.send_frame(failure_frame(reason, command.command))
        finally:
            websocket_command_duration_seconds.labels(
                command=command.command, outcome=outcome
            ).observe(time.perf_counter() - started)

    # Authentication
    def _load_profile(self, user_id: int) -> Optional[UserProfile]:
        db = self.session_factory()
        try:
            user = ChatRepository(db).get_user_by_id(user_id)
            return UserProfile.model_validate(user) if user else None
        finally:
            db.close()

    async def handle_login(self, connection: ClientConnection, command: UserLoginCommand) -> None:
        """
        Authenticate a connection.

        Raises:
            AuthError: already authenticated, invalid token, subject/userId
                mismatch, unknown user, or inactive account
        """
        if connection.is_authenticated:
            raise AuthError("Already authenticated")

        subject = token_subject(self.token_verifier(command.token or ""))
        if subject is None:
            raise AuthError("Invalid token")

        try:
            token_user_id = int(subject)
        except ValueError:
            raise AuthError("Invalid token")

        if command.user_id is None or command.user_id != token_user_id:
            raise AuthError("User ID mismatch")

        profile = await run_in_threadpool(self._load_profile, token_user_id)
        if profile is None:
            raise AuthError("User not found")

        if self.require_active_account and profile.status != UserStatus.ACTIVE:
            raise AuthError("Account is not active")

        connection.authenticate(token_user_id, command.uuid)
        self.monitor.mark_alive(connection)
        self.registry.register(token_user_id, connection)

        logger.info(
            f"User {profile.fullname} ({token_user_id}) logged in with uuid {command.uuid}",
            extra={"connection_id": connection.connection_id, "user_id": token_user_id}
        )
        await connection.send_frame(login_success_frame(profile))

    # Messaging
    def _store(self, sender_id: int, command: UserMessageCommand, message_type: MessageType) -> StoredMessage:
        db = self.session_factory()
        try:
            return store_message(
                db,
                sender_id=sender_id,
                room_id=command.room_id,
                content=command.content,
                message_type=message_type,
                media=command.media
            )
        finally:
            db.close()

    async def handle_message(self, connection: ClientConnection, command: UserMessageCommand) -> None:
        """
        Store a message and broadcast it to the room.

        Raises:
            AuthorizationError: connection not authenticated, or sender not a member
            ValidationError: content, roomId or messageType missing or invalid
            NotFoundError: room does not exist
        """
        if not connection.is_authenticated:
            raise AuthorizationError("Not authenticated")

        if not command.content or not command.room_id or not command.message_type:
            raise ValidationError("Missing required fields")

        try:
            message_type = MessageType(command.message_type)
        except ValueError:
            raise ValidationError("Invalid message type")

        stored = await run_in_threadpool(self._store, connection.user_id, command, message_type)
        chat_messages_persisted_total.labels(message_type=message_type.value, source="websocket").inc()

        delivered = await self.broadcast_to_users(
            stored.member_ids, message_broadcast_frame(stored.message, stored.room)
        )
        logger.info(
            f"Message sent in room {command.room_id} by user {connection.user_id} "
            f"({delivered} deliveries)",
            extra={"room_id": command.room_id, "user_id": connection.user_id}
        )

    async def broadcast_to_users(self, user_ids: Iterable[int], frame: dict) -> int:
        """
        Push a frame to every open connection of the given users.

        Best effort: users without connections and closed transports are
        skipped silently.

        Returns:
            Number of connections the frame was written to
        """
        delivered = 0
        for user_id in dict.fromkeys(user_ids):
            for connection in self.registry.connections_for(user_id):
                if not connection.is_open:
                    continue
                if await connection.send_frame(frame):
                    delivered += 1

        chat_broadcast_deliveries_total.labels(instance="api").inc(delivered)
        return delivered
