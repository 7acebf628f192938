"""
Repository layer for database operations.
Provides high-level methods for the chat queries used by the WebSocket
handlers and the REST endpoints.
"""
from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload
from db.models import (
    User, ChatRoom, Member, Message, MemberStatus, MessageType
)


class ChatRepository:
    """Repository class for chat database operations."""

    def __init__(self, db: Session):
        """
        Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    # User operations
    def get_user_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        return self.db.query(User).filter(User.user_id == user_id).first()

    def get_user_public_profile(self, user_id: int) -> Optional[User]:
        """Get the user whose public profile is embedded in chat payloads."""
        return self.get_user_by_id(user_id)

    # Room operations
    def get_room(self, room_id: int) -> Optional[ChatRoom]:
        """Get chat room by ID with its listing loaded."""
        return self.db.query(ChatRoom).options(
            joinedload(ChatRoom.listing)
        ).filter(ChatRoom.room_id == room_id).first()

    def create_room(
        self,
        member_ids: List[int],
        created_by: int,
        listing_id: Optional[int] = None
    ) -> ChatRoom:
        """Create an active chat room and add every member as JOINED."""
        unique_ids = list(dict.fromkeys(member_ids))
        room = ChatRoom(
            listing_id=listing_id,
            created_by=created_by,
            is_active=True,
            members_count=len(unique_ids)
        )
        self.db.add(room)
        self.db.flush()

        for user_id in unique_ids:
            self.db.add(Member(
                room_id=room.room_id,
                user_id=user_id,
                status=MemberStatus.JOINED,
                notification=1
            ))

        self.db.commit()
        self.db.refresh(room)
        return room

    def get_or_create_direct_room(
        self,
        user_a: int,
        user_b: int,
        listing_id: Optional[int] = None
    ) -> Tuple[ChatRoom, bool]:
        """
        Find the two-member room shared by both users for a listing, or create it.

        Returns:
            Tuple of (room, created)
        """
        rooms_of_a = self.db.query(Member.room_id).filter(Member.user_id == user_a)
        rooms_of_b = self.db.query(Member.room_id).filter(Member.user_id == user_b)

        query = self.db.query(ChatRoom).filter(
            ChatRoom.room_id.in_(rooms_of_a),
            ChatRoom.room_id.in_(rooms_of_b),
            ChatRoom.members_count == 2
        )
        if listing_id is None:
            query = query.filter(ChatRoom.listing_id.is_(None))
        else:
            query = query.filter(ChatRoom.listing_id == listing_id)

        existing = query.first()
        if existing:
            return existing, False

        return self.create_room([user_a, user_b], created_by=user_a, listing_id=listing_id), True

    def list_rooms_for_user(self, user_id: int, page: int = 1, limit: int = 20) -> Tuple[List[ChatRoom], int]:
        """Get active rooms the user belongs to, most recent activity first."""
        member_rooms = self.db.query(Member.room_id).filter(Member.user_id == user_id)
        base = self.db.query(ChatRoom).filter(
            ChatRoom.room_id.in_(member_rooms),
            ChatRoom.is_active.is_(True)
        )
        total = base.count()
        rooms = base.options(
            joinedload(ChatRoom.listing),
            joinedload(ChatRoom.last_message)
        ).order_by(
            ChatRoom.last_message_at.desc().nulls_last(), ChatRoom.room_id.desc()
        ).offset((page - 1) * limit).limit(limit).all()
        return rooms, total

    def update_room_last_message(self, room: ChatRoom, message: Message) -> ChatRoom:
        """Advance the room's last-message pointer. Caller commits."""
        room.last_message_id = message.message_id
        room.last_message_at = message.created_at
        return room

    # Member operations
    def get_member(self, room_id: int, user_id: int) -> Optional[Member]:
        """Get membership row regardless of status."""
        return self.db.query(Member).filter(
            Member.room_id == room_id,
            Member.user_id == user_id
        ).first()

    def get_joined_member(self, room_id: int, user_id: int) -> Optional[Member]:
        """Get membership row only when the user is currently JOINED."""
        return self.db.query(Member).filter(
            Member.room_id == room_id,
            Member.user_id == user_id,
            Member.status == MemberStatus.JOINED
        ).first()

    def get_room_member_ids(self, room_id: int, joined_only: bool = False) -> List[int]:
        """Get the user ids of a room's members, optionally JOINED ones only."""
        query = self.db.query(Member.user_id).filter(Member.room_id == room_id)
        if joined_only:
            query = query.filter(Member.status == MemberStatus.JOINED)
        return [row[0] for row in query.order_by(Member.member_id).all()]

    def get_room_members(self, room_id: int) -> List[Member]:
        """Get member rows with their users loaded."""
        return self.db.query(Member).options(
            joinedload(Member.user)
        ).filter(Member.room_id == room_id).order_by(Member.member_id).all()

    def add_member(self, room_id: int, user_id: int) -> Member:
        """Add a user to a room, re-joining a BLOCKED membership."""
        member = self.get_member(room_id, user_id)
        if member:
            member.status = MemberStatus.JOINED
        else:
            member = Member(room_id=room_id, user_id=user_id, status=MemberStatus.JOINED)
            self.db.add(member)
            room = self.db.query(ChatRoom).filter(ChatRoom.room_id == room_id).first()
            if room:
                room.members_count = (room.members_count or 0) + 1
        self.db.commit()
        self.db.refresh(member)
        return member

    def leave_room(self, room_id: int, user_id: int) -> int:
        """Set the user's membership to BLOCKED. Returns rows updated."""
        updated = self.db.query(Member).filter(
            Member.room_id == room_id,
            Member.user_id == user_id
        ).update({"status": MemberStatus.BLOCKED}, synchronize_session=False)
        self.db.commit()
        return updated

    # Message operations
    def create_message(
        self,
        room_id: int,
        sender_id: int,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        media: Optional[str] = None,
        metadata: Optional[dict] = None
    ) -> Message:
        """Insert a new unread message. Flushed, not committed."""
        message = Message(
            room_id=room_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            media=media or None,
            metadata_json=metadata,
            is_read=False,
            created_at=datetime.utcnow()
        )
        self.db.add(message)
        self.db.flush()
        return message

    def get_room_messages(self, room_id: int, page: int = 1, limit: int = 50) -> Tuple[List[Message], int]:
        """
        Get a page of messages, newest page first, returned oldest-first.

        Returns:
            Tuple of (messages, total)
        """
        total = self.db.query(func.count(Message.message_id)).filter(
            Message.room_id == room_id
        ).scalar()
        messages = self.db.query(Message).options(
            joinedload(Message.sender)
        ).filter(
            Message.room_id == room_id
        ).order_by(
            Message.created_at.desc(), Message.message_id.desc()
        ).offset((page - 1) * limit).limit(limit).all()
        messages.reverse()
        return messages, total

    def mark_messages_read(self, room_id: int, user_id: int) -> int:
        """
        Mark every unread message not sent by the user as read.

        Returns:
            Number of messages marked as read
        """
        updated_count = self.db.query(Message).filter(
            Message.room_id == room_id,
            Message.sender_id != user_id,
            Message.is_read.is_(False)
        ).update({"is_read": True}, synchronize_session=False)
        self.db.commit()
        return updated_count
