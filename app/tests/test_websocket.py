"""
End-to-end tests for the /ws endpoint over the Starlette test client.
"""
from db.models import Message


def login_frame(user_id, token, device_uuid="dev-1"):
    return {"command": "user_login", "userId": user_id, "token": token, "uuid": device_uuid}


def connect_and_login(client, user_id, token, device_uuid="dev-1"):
    """Open a connection, consume the welcome frame and log in."""
    ws = client.websocket_connect("/ws")
    session = ws.__enter__()
    assert session.receive_json()["type"] == "welcome"
    session.send_json(login_frame(user_id, token, device_uuid))
    assert session.receive_json()["result"] == "success"
    return ws, session


class TestWebSocketEndpoint:
    """Tests for the WebSocket protocol flow."""

    def test_welcome_frame(self, test_client):
        with test_client.websocket_connect("/ws") as ws:
            frame = ws.receive_json()

        assert frame["type"] == "welcome"
        assert frame["message"] == "Connected to BDSTHAT WebSocket server"
        assert "timestamp" in frame

    def test_login_success(self, test_client, gateway, chat_data, make_token):
        with test_client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json(login_frame(chat_data.buyer_id, make_token(chat_data.buyer_id)))
            frame = ws.receive_json()

            assert frame["command"] == "user_login"
            assert frame["result"] == "success"
            assert frame["user"]["userId"] == str(chat_data.buyer_id)
            assert frame["user"]["email"] == "buyer@example.com"
            assert gateway.stats()["active_users"] == 1

        assert gateway.registry.user_count() == 0
        assert len(gateway.monitor) == 0

    def test_bytes_frames_accepted(self, test_client, chat_data, make_token):
        with test_client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_bytes(
                ('{"command":"user_login","userId":%d,"token":"%s"}'
                 % (chat_data.buyer_id, make_token(chat_data.buyer_id))).encode("utf-8")
            )

            assert ws.receive_json()["result"] == "success"

    def test_message_before_login(self, test_client, chat_data):
        with test_client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"command": "user_message", "roomId": chat_data.room_id, "content": "hi", "messageType": "TEXT"})

            assert ws.receive_json() == {
                "command": "user_message", "result": "failed", "reason": "Not authenticated"
            }

    def test_malformed_frame_keeps_connection_open(self, test_client, chat_data, make_token):
        with test_client.websocket_connect("/ws") as ws:
            ws.receive_json()

            ws.send_text("not json")
            assert ws.receive_json() == {"result": "failed", "reason": "Invalid message format"}

            ws.send_json({"command": "user_typing"})
            assert ws.receive_json() == {"result": "failed", "reason": "Unknown command"}

            ws.send_json(login_frame(chat_data.buyer_id, make_token(chat_data.buyer_id)))
            assert ws.receive_json()["result"] == "success"

    def test_message_broadcast_to_room_members(self, test_client, session_factory, chat_data, make_token):
        buyer_cm, buyer = connect_and_login(test_client, chat_data.buyer_id, make_token(chat_data.buyer_id))
        agent_cm, agent = connect_and_login(test_client, chat_data.agent_id, make_token(chat_data.agent_id))
        try:
            buyer.send_json({
                "command": "user_message",
                "roomId": chat_data.room_id,
                "content": "hi",
                "messageType": "TEXT"
            })

            echo = buyer.receive_json()
            received = agent.receive_json()
        finally:
            agent_cm.__exit__(None, None, None)
            buyer_cm.__exit__(None, None, None)

        for frame in (echo, received):
            assert frame["command"] == "user_message"
            assert frame["message"]["content"] == "hi"
            assert frame["message"]["sender"]["userId"] == str(chat_data.buyer_id)
            assert frame["room"]["roomId"] == str(chat_data.room_id)

        db = session_factory()
        try:
            message = db.query(Message).filter(Message.room_id == chat_data.room_id).one()
            assert message.sender_id == chat_data.buyer_id
            assert str(message.message_id) == echo["message"]["messageId"]
        finally:
            db.close()

    def test_pong_is_silent(self, test_client, gateway):
        with test_client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"command": "pong"})
            ws.send_json({"command": "user_typing"})

            # The pong produced no frame, so the next one answers user_typing
            assert ws.receive_json()["reason"] == "Unknown command"

    def test_back_to_back_messages_keep_order(self, test_client, session_factory, chat_data, make_token):
        ws, session = connect_and_login(test_client, chat_data.buyer_id, make_token(chat_data.buyer_id))
        try:
            # All three frames are queued before any reply is read
            for content in ("m1", "m2", "m3"):
                session.send_json({
                    "command": "user_message",
                    "roomId": chat_data.room_id,
                    "content": content,
                    "messageType": "TEXT"
                })

            echoes = [session.receive_json() for _ in range(3)]
        finally:
            ws.__exit__(None, None, None)

        assert [frame["message"]["content"] for frame in echoes] == ["m1", "m2", "m3"]

        db = session_factory()
        try:
            stored = db.query(Message).filter(
                Message.room_id == chat_data.room_id
            ).order_by(Message.message_id).all()
            assert [m.content for m in stored] == ["m1", "m2", "m3"]
        finally:
            db.close()
