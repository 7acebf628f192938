"""
SQLAlchemy ORM models for the marketplace chat database.
Defines the entities chat needs: User, Listing, ChatRoom, Member, Message.
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Text,
    BigInteger, Boolean, Numeric, Enum as SQLEnum, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from db.database import Base

# BIGINT identifiers; SQLite only autoincrements INTEGER PRIMARY KEY
BigIntId = BigInteger().with_variant(Integer, "sqlite")


# ENUM Types
class UserRole(str, enum.Enum):
    """Primary marketplace role of a user."""
    BUYER = "BUYER"
    SELLER = "SELLER"
    AGENT = "AGENT"
    INVESTOR = "INVESTOR"
    ADMIN = "ADMIN"


class UserStatus(str, enum.Enum):
    """Account status."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class MemberStatus(str, enum.Enum):
    """Membership status of a user in a chat room."""
    JOINED = "JOINED"
    BLOCKED = "BLOCKED"


class MessageType(str, enum.Enum):
    """Kind of chat message content."""
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    FILE = "FILE"


# Models
class User(Base):
    """User entity - marketplace account."""
    __tablename__ = "users"

    user_id = Column(BigIntId, primary_key=True, autoincrement=True)
    fullname = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(30), nullable=True)
    avatar = Column(String(500), nullable=True)
    password_hash = Column(String(100), nullable=False)
    primary_role = Column(SQLEnum(UserRole), default=UserRole.BUYER, nullable=False)
    status = Column(SQLEnum(UserStatus), default=UserStatus.ACTIVE, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    memberships = relationship("Member", back_populates="user")
    messages = relationship("Message", back_populates="sender")


class Listing(Base):
    """Listing entity - only the columns chat rooms reference."""
    __tablename__ = "listings"

    listing_id = Column(BigIntId, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    price = Column(Numeric(15, 2), nullable=True)
    owner_id = Column(BigIntId, ForeignKey("users.user_id"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ChatRoom(Base):
    """Chat room - a conversation, optionally about a listing."""
    __tablename__ = "chat_rooms"

    room_id = Column(BigIntId, primary_key=True, autoincrement=True)
    listing_id = Column(BigIntId, ForeignKey("listings.listing_id"), nullable=True, index=True)
    created_by = Column(BigIntId, ForeignKey("users.user_id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    members_count = Column(Integer, default=0, nullable=False)
    last_message_id = Column(
        BigIntId,
        ForeignKey("messages.message_id", use_alter=True, name="fk_chat_rooms_last_message"),
        nullable=True
    )
    last_message_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    listing = relationship("Listing")
    members = relationship("Member", back_populates="room", cascade="all, delete-orphan")
    messages = relationship("Message", back_populates="room", foreign_keys="Message.room_id")
    last_message = relationship("Message", foreign_keys=[last_message_id], post_update=True)


class Member(Base):
    """Join entity between a user and a chat room."""
    __tablename__ = "members"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_members_room_user"),)

    member_id = Column(BigIntId, primary_key=True, autoincrement=True)
    room_id = Column(BigIntId, ForeignKey("chat_rooms.room_id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(BigIntId, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(SQLEnum(MemberStatus), default=MemberStatus.JOINED, nullable=False)
    notification = Column(Integer, default=1, nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    room = relationship("ChatRoom", back_populates="members")
    user = relationship("User", back_populates="memberships")


class Message(Base):
    """Message sent in a chat room. Immutable except for ``is_read``."""
    __tablename__ = "messages"

    message_id = Column(BigIntId, primary_key=True, autoincrement=True)
    room_id = Column(BigIntId, ForeignKey("chat_rooms.room_id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(BigIntId, ForeignKey("users.user_id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    message_type = Column(SQLEnum(MessageType), default=MessageType.TEXT, nullable=False)
    media = Column(String(500), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Relationships
    room = relationship("ChatRoom", back_populates="messages", foreign_keys=[room_id])
    sender = relationship("User", back_populates="messages")
