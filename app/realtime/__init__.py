"""Real-time chat package initialization."""
from realtime.connection import ClientConnection
from realtime.registry import ConnectionRegistry
from realtime.liveness import LivenessMonitor
from realtime.handlers import CommandDispatcher
from realtime.gateway import ChatGateway

__all__ = ["ClientConnection", "ConnectionRegistry", "LivenessMonitor", "CommandDispatcher", "ChatGateway"]
