"""
WebSocket endpoint for the real-time chat protocol.

Connection Flow:
    1. Client connects: ws://host:port/ws
    2. Server sends {"type": "welcome", ...}
    3. Client logs in: {"command": "user_login", "userId": 4, "token": "<jwt>", "uuid": "dev-1"}
    4. Client sends messages: {"command": "user_message", "roomId": 10, "content": "hi", "messageType": "TEXT"}
    5. Server pushes {"command": "user_message", "message": {...}, "room": {...}} to every member device
    6. Server pings every 30s ({"type": "ping"}); client answers {"command": "pong"}
       or is disconnected after the next cycle
"""
from fastapi import APIRouter, WebSocket

from core.config import settings

websocket_router = APIRouter()


@websocket_router.websocket(settings.ws_path)
async def websocket_endpoint(websocket: WebSocket):
    """Hand the connection to the gateway installed on the application."""
    gateway = websocket.app.state.chat_gateway
    await gateway.serve(websocket)
