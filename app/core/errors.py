"""
Error taxonomy shared by the WebSocket command handlers and the REST layer.

Every error carries the human readable ``reason`` that is sent back to the
client and the HTTP status code used when the same error surfaces over REST.
"""
from fastapi import status


class ChatError(Exception):
    """Base class for all expected chat failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_reason: str = "Request failed"

    def __init__(self, reason: str = None, command: str = None):
        self.reason = reason or self.default_reason
        # WebSocket command the failure belongs to, when known
        self.command = command
        super().__init__(self.reason)


class ProtocolError(ChatError):
    """Malformed frame or unknown command."""
    default_reason = "Invalid message format"


class AuthError(ChatError):
    """Bad token, identity mismatch or unknown user."""
    status_code = status.HTTP_401_UNAUTHORIZED
    default_reason = "Invalid token"


class AuthorizationError(ChatError):
    """Caller is not allowed to perform the action."""
    status_code = status.HTTP_403_FORBIDDEN
    default_reason = "Not authenticated"


class ValidationError(ChatError):
    """Required fields missing from the request."""
    default_reason = "Missing required fields"


class NotFoundError(ChatError):
    """Referenced entity does not exist."""
    status_code = status.HTTP_404_NOT_FOUND
    default_reason = "Chat room not found"


class InternalError(ChatError):
    """Unexpected collaborator failure (store unavailable, etc.)."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_reason = "Internal server error"
