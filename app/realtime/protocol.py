"""
WebSocket command protocol.

Every inbound frame is one JSON object whose ``command`` field selects the
command shape. Outbound frames are plain dicts built here and encoded as
JSON text; numeric identifiers are always decimal strings.

Inbound:
    {"command": "user_login", "userId": 4, "token": "<jwt>", "uuid": "dev-1"}
    {"command": "user_message", "roomId": 10, "content": "hi", "messageType": "TEXT", "media": null}
    {"command": "pong"}

Outbound:
    {"type": "welcome", "message": "...", "timestamp": "..."}
    {"type": "ping", "timestamp": "..."}
    {"command": "user_login", "result": "success", "user": {...}}
    {"command": "user_message", "message": {...}, "room": {...}}
    {"command": "...", "result": "failed", "reason": "..."}
    {"result": "failed", "reason": "Unknown command" | "Invalid message format"}
"""
import json
from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from api.schemas import MessageOut, RoomSummary, UserProfile
from core.errors import ProtocolError

USER_LOGIN = "user_login"
USER_MESSAGE = "user_message"
PONG = "pong"

INVALID_FORMAT = "Invalid message format"
UNKNOWN_COMMAND = "Unknown command"


class _CommandModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserLoginCommand(_CommandModel):
    """Bind the connection to a user identity."""
    command: Literal["user_login"]
    user_id: Optional[int] = Field(None, alias="userId")
    token: Optional[str] = None
    uuid: Optional[str] = None


class UserMessageCommand(_CommandModel):
    """
    Send a message to a room.

    Fields are optional so that missing ones are reported as
    ``Missing required fields`` after the authentication check.
    """
    command: Literal["user_message"]
    room_id: Optional[int] = Field(None, alias="roomId")
    content: Optional[str] = None
    message_type: Optional[str] = Field(None, alias="messageType")
    media: Optional[str] = None


class PongCommand(_CommandModel):
    """Heartbeat acknowledgement."""
    command: Literal["pong"]


Command = Annotated[
    Union[UserLoginCommand, UserMessageCommand, PongCommand],
    Field(discriminator="command")
]

KNOWN_COMMANDS = frozenset({USER_LOGIN, USER_MESSAGE, PONG})

_command_adapter = TypeAdapter(Command)


def decode_command(raw: Union[str, bytes]) -> Command:
    """
    Parse one inbound frame into a typed command.

    Raises:
        ProtocolError: ``Invalid message format`` for non-JSON, non-object or
            mistyped payloads, ``Unknown command`` for a missing or
            unrecognised discriminator
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise ProtocolError(INVALID_FORMAT)

    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise ProtocolError(INVALID_FORMAT)

    if not isinstance(data, dict):
        raise ProtocolError(INVALID_FORMAT)

    command = data.get("command")
    if not isinstance(command, str) or command not in KNOWN_COMMANDS:
        raise ProtocolError(UNKNOWN_COMMAND)

    try:
        return _command_adapter.validate_python(data)
    except PydanticValidationError:
        raise ProtocolError(INVALID_FORMAT, command=command)


def encode_frame(frame: dict) -> str:
    return json.dumps(frame, separators=(",", ":"))


def _timestamp() -> str:
    return datetime.utcnow().isoformat(timespec="milliseconds") + "Z"


def welcome_frame(message: str) -> dict:
    return {"type": "welcome", "message": message, "timestamp": _timestamp()}


def ping_frame() -> dict:
    return {"type": "ping", "timestamp": _timestamp()}


def login_success_frame(profile: UserProfile) -> dict:
    return {"command": USER_LOGIN, "result": "success", "user": profile.to_wire()}


def failure_frame(reason: str, command: Optional[str] = None) -> dict:
    """Same-shape failure reply; tagged with the command when it is known."""
    frame = {"result": "failed", "reason": reason}
    if command:
        frame = {"command": command, **frame}
    return frame


def message_broadcast_frame(message: MessageOut, room: RoomSummary) -> dict:
    return {"command": USER_MESSAGE, "message": message.to_wire(), "room": room.to_wire()}
