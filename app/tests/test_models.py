"""
Unit tests for database models and the chat repository.
Tests model defaults, constraints, and repository queries.
"""
import pytest
from datetime import datetime
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from db.database import Base
from db.models import (
    User, Listing, ChatRoom, Member, Message,
    MemberStatus, MessageType, UserRole, UserStatus
)
from db.repository import ChatRepository
from core.security import hash_password, verify_password


# Create in-memory test database
@pytest.fixture
def test_db_session():
    """Create a test database session."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    TestSessionLocal = sessionmaker(bind=engine)
    session = TestSessionLocal()
    yield session
    session.close()


def make_user(session, email, role=UserRole.BUYER):
    user = User(fullname=email.split("@")[0].title(), email=email, password_hash="hash", primary_role=role)
    session.add(user)
    session.commit()
    return user


class TestUserModel:
    """Tests for User model."""

    def test_password_hashing(self):
        """Test that password is properly hashed."""
        hashed = hash_password("test_password_123")

        assert hashed != "test_password_123"
        assert verify_password("test_password_123", hashed)
        assert not verify_password("wrong_password", hashed)

    def test_user_defaults(self, test_db_session):
        user = make_user(test_db_session, "buyer@example.com")

        assert user.user_id is not None
        assert user.status == UserStatus.ACTIVE
        assert user.primary_role == UserRole.BUYER
        assert isinstance(user.created_at, datetime)

    def test_user_unique_email(self, test_db_session):
        make_user(test_db_session, "duplicate@example.com")

        with pytest.raises(IntegrityError):
            make_user(test_db_session, "duplicate@example.com")


class TestChatModels:
    """Tests for ChatRoom, Member and Message models."""

    def test_room_defaults(self, test_db_session):
        room = ChatRoom()
        test_db_session.add(room)
        test_db_session.commit()

        assert room.is_active is True
        assert room.members_count == 0
        assert room.last_message_id is None
        assert room.listing is None

    def test_member_unique_per_room(self, test_db_session):
        user = make_user(test_db_session, "agent@example.com", UserRole.AGENT)
        room = ChatRoom()
        test_db_session.add(room)
        test_db_session.commit()

        test_db_session.add(Member(room_id=room.room_id, user_id=user.user_id))
        test_db_session.commit()
        test_db_session.add(Member(room_id=room.room_id, user_id=user.user_id))

        with pytest.raises(IntegrityError):
            test_db_session.commit()

    def test_message_defaults_and_metadata(self, test_db_session):
        user = make_user(test_db_session, "seller@example.com", UserRole.SELLER)
        room = ChatRoom()
        test_db_session.add(room)
        test_db_session.commit()

        message = Message(
            room_id=room.room_id,
            sender_id=user.user_id,
            content="Floor plan attached",
            metadata_json={"pages": 2}
        )
        test_db_session.add(message)
        test_db_session.commit()

        assert message.message_type == MessageType.TEXT
        assert message.is_read is False
        assert message.media is None
        assert message.metadata_json == {"pages": 2}
        assert message.sender.email == "seller@example.com"


class TestChatRepository:
    """Tests for ChatRepository queries."""

    def test_create_room_dedupes_members(self, test_db_session):
        a = make_user(test_db_session, "a@example.com")
        b = make_user(test_db_session, "b@example.com")
        repository = ChatRepository(test_db_session)

        room = repository.create_room([a.user_id, b.user_id, a.user_id], created_by=a.user_id)

        assert room.members_count == 2
        assert repository.get_room_member_ids(room.room_id) == [a.user_id, b.user_id]
        assert all(m.status == MemberStatus.JOINED for m in repository.get_room_members(room.room_id))

    def test_joined_member_filters_blocked(self, test_db_session):
        a = make_user(test_db_session, "a@example.com")
        b = make_user(test_db_session, "b@example.com")
        repository = ChatRepository(test_db_session)
        room = repository.create_room([a.user_id, b.user_id], created_by=a.user_id)

        assert repository.leave_room(room.room_id, b.user_id) == 1

        assert repository.get_joined_member(room.room_id, b.user_id) is None
        assert repository.get_member(room.room_id, b.user_id).status == MemberStatus.BLOCKED
        assert repository.get_room_member_ids(room.room_id, joined_only=True) == [a.user_id]
        assert repository.get_room_member_ids(room.room_id) == [a.user_id, b.user_id]

    def test_add_member_rejoins_without_double_count(self, test_db_session):
        a = make_user(test_db_session, "a@example.com")
        b = make_user(test_db_session, "b@example.com")
        c = make_user(test_db_session, "c@example.com")
        repository = ChatRepository(test_db_session)
        room = repository.create_room([a.user_id, b.user_id], created_by=a.user_id)

        repository.leave_room(room.room_id, b.user_id)
        repository.add_member(room.room_id, b.user_id)
        repository.add_member(room.room_id, c.user_id)

        assert repository.get_joined_member(room.room_id, b.user_id) is not None
        assert repository.get_room(room.room_id).members_count == 3

    def test_update_room_last_message(self, test_db_session):
        a = make_user(test_db_session, "a@example.com")
        repository = ChatRepository(test_db_session)
        room = repository.create_room([a.user_id], created_by=a.user_id)

        message = repository.create_message(room.room_id, a.user_id, "hello")
        repository.update_room_last_message(room, message)
        test_db_session.commit()

        room = repository.get_room(room.room_id)
        assert room.last_message.content == "hello"
        assert room.last_message_at == message.created_at

    def test_direct_room_scoped_by_listing(self, test_db_session):
        a = make_user(test_db_session, "a@example.com")
        b = make_user(test_db_session, "b@example.com")
        listing = Listing(title="Lakeview villa", owner_id=b.user_id)
        test_db_session.add(listing)
        test_db_session.commit()
        repository = ChatRepository(test_db_session)

        general, created = repository.get_or_create_direct_room(a.user_id, b.user_id)
        about_listing, created_for_listing = repository.get_or_create_direct_room(
            b.user_id, a.user_id, listing_id=listing.listing_id
        )
        again, created_again = repository.get_or_create_direct_room(b.user_id, a.user_id)

        assert created and created_for_listing and not created_again
        assert general.room_id != about_listing.room_id
        assert again.room_id == general.room_id

    def test_list_rooms_most_recent_first(self, test_db_session):
        a = make_user(test_db_session, "a@example.com")
        repository = ChatRepository(test_db_session)
        quiet = repository.create_room([a.user_id], created_by=a.user_id)
        busy = repository.create_room([a.user_id], created_by=a.user_id)
        message = repository.create_message(busy.room_id, a.user_id, "ping")
        repository.update_room_last_message(busy, message)
        test_db_session.commit()

        rooms, total = repository.list_rooms_for_user(a.user_id)

        assert total == 2
        assert [room.room_id for room in rooms] == [busy.room_id, quiet.room_id]

    def test_mark_messages_read_skips_own_messages(self, test_db_session):
        a = make_user(test_db_session, "a@example.com")
        b = make_user(test_db_session, "b@example.com")
        repository = ChatRepository(test_db_session)
        room = repository.create_room([a.user_id, b.user_id], created_by=a.user_id)
        repository.create_message(room.room_id, a.user_id, "from a")
        repository.create_message(room.room_id, b.user_id, "from b")
        test_db_session.commit()

        assert repository.mark_messages_read(room.room_id, b.user_id) == 1

        messages, total = repository.get_room_messages(room.room_id)
        assert total == 2
        assert {m.content: m.is_read for m in messages} == {"from a": True, "from b": False}
