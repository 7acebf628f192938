"""
Pytest configuration and fixtures for testing.
Provides test database, seeded chat data, an isolated chat gateway, the
test client and fake WebSocket transports.
"""
import json
import pytest
from types import SimpleNamespace
from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from starlette.websockets import WebSocketState
from fastapi.testclient import TestClient
from db.database import Base
from db.models import Listing, User, UserRole, UserStatus
from db.repository import ChatRepository
from core.security import create_access_token
from main import app
from api.dependencies import get_db
from realtime.connection import ClientConnection
from realtime.gateway import ChatGateway

# Tests never need a real bcrypt hash; nothing verifies passwords
TEST_PASSWORD_HASH = "$2b$12$not-a-real-hash-used-by-tests-only"


@pytest.fixture(scope="function")
def session_factory(tmp_path) -> sessionmaker:
    """
    Session factory bound to a fresh SQLite database for each test.

    File based so that sessions opened from the threadpool by the
    WebSocket handlers see the same data as the test session.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test_estate_chat.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)

    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_db(session_factory) -> Generator[Session, None, None]:
    """Session on the per-test database."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def chat_data(test_db: Session) -> SimpleNamespace:
    """
    Seed users, a listing and a room.

    Room membership: buyer and agent JOINED, seller BLOCKED.
    ``suspended`` has an account that is not active, ``outsider`` is in no room.
    """
    def user(fullname: str, email: str, role: UserRole, status: UserStatus = UserStatus.ACTIVE) -> User:
        return User(
            fullname=fullname,
            email=email,
            phone="0900000000",
            password_hash=TEST_PASSWORD_HASH,
            primary_role=role,
            status=status
        )

    buyer = user("Minh Buyer", "buyer@example.com", UserRole.BUYER)
    agent = user("Lan Agent", "agent@example.com", UserRole.AGENT)
    seller = user("Hoa Seller", "seller@example.com", UserRole.SELLER)
    suspended = user("Suspended User", "suspended@example.com", UserRole.BUYER, UserStatus.SUSPENDED)
    outsider = user("Outsider", "outsider@example.com", UserRole.INVESTOR)
    test_db.add_all([buyer, agent, seller, suspended, outsider])
    test_db.flush()

    listing = Listing(title="Riverside apartment", price=250000, owner_id=seller.user_id)
    test_db.add(listing)
    test_db.commit()

    repository = ChatRepository(test_db)
    room = repository.create_room(
        [buyer.user_id, agent.user_id, seller.user_id],
        created_by=buyer.user_id,
        listing_id=listing.listing_id
    )
    repository.leave_room(room.room_id, seller.user_id)

    return SimpleNamespace(
        buyer_id=buyer.user_id,
        agent_id=agent.user_id,
        seller_id=seller.user_id,
        suspended_id=suspended.user_id,
        outsider_id=outsider.user_id,
        listing_id=listing.listing_id,
        room_id=room.room_id
    )


@pytest.fixture(scope="function")
def gateway(session_factory) -> ChatGateway:
    """Gateway with its own registry; background loops are not started."""
    return ChatGateway(session_factory=session_factory)


@pytest.fixture(scope="function")
def test_client(test_db: Session, gateway: ChatGateway) -> TestClient:
    """
    Create a test client with test database dependency override and the
    test gateway installed on the application.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    previous_gateway = getattr(app.state, "chat_gateway", None)
    app.state.chat_gateway = gateway

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()
    app.state.chat_gateway = previous_gateway


@pytest.fixture
def make_token():
    """Mint a signed access token for a user id."""
    def _make_token(user_id, **kwargs) -> str:
        return create_access_token(user_id, **kwargs)
    return _make_token


@pytest.fixture
def auth_headers(make_token):
    def _auth_headers(user_id) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id)}"}
    return _auth_headers


class FakeWebSocket:
    """Minimal stand-in for a Starlette WebSocket that records sent frames."""

    def __init__(self, fail_sends: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent = []
        self.closed_with = None
        self.fail_sends = fail_sends

    async def send_text(self, data: str) -> None:
        if self.fail_sends:
            raise RuntimeError("transport broken")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str = None) -> None:
        self.closed_with = (code, reason)
        self.application_state = WebSocketState.DISCONNECTED

    def drop(self) -> None:
        """Simulate the peer going away without a close handshake."""
        self.client_state = WebSocketState.DISCONNECTED


@pytest.fixture
def make_connection():
    """Build a ClientConnection over a FakeWebSocket."""
    def _make_connection(**kwargs) -> ClientConnection:
        return ClientConnection(FakeWebSocket(**kwargs))
    return _make_connection

