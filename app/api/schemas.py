"""
Pydantic schemas for request/response validation.
Defines the data transfer objects shared by the REST endpoints and the
WebSocket frames. Field names are camelCase on the wire and every numeric
identifier is serialized as a decimal string.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Generic, List, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel
from db.models import (
    ChatRoom, Member, MemberStatus, Message, MessageType, User, UserRole, UserStatus
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.isoformat(timespec="milliseconds") + "Z"
    return value.isoformat(timespec="milliseconds")


StrId = Annotated[int, PlainSerializer(lambda v: str(v), return_type=str)]
OptionalStrId = Annotated[
    Optional[int],
    PlainSerializer(lambda v: None if v is None else str(v), return_type=Optional[str])
]
IsoDatetime = Annotated[Optional[datetime], PlainSerializer(_iso, return_type=Optional[str])]

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base model: camelCase aliases, accepts snake_case names and ORM objects."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def to_wire(self) -> dict:
        """Dump with wire names and JSON-compatible values."""
        return self.model_dump(by_alias=True, mode="json")


# User Schemas
class UserProfile(CamelModel):
    """Public profile returned on login. Never includes the credential hash."""
    user_id: StrId
    fullname: str
    email: str
    phone: Optional[str] = None
    avatar: Optional[str] = None
    primary_role: UserRole
    status: UserStatus


class SenderProfile(CamelModel):
    """Sender fields embedded in message payloads."""
    user_id: StrId
    fullname: str
    avatar: Optional[str] = None
    primary_role: UserRole


# Message Schemas
class MessageOut(CamelModel):
    """Persisted message as pushed to clients and returned by REST."""
    message_id: StrId
    content: str
    room_id: StrId
    message_type: MessageType
    media: Optional[str] = None
    is_read: bool = False
    created_at: IsoDatetime = None
    sender: Optional[SenderProfile] = None

    @classmethod
    def from_message(cls, message: Message, sender: Optional[User] = None) -> "MessageOut":
        sender = sender if sender is not None else message.sender
        return cls(
            message_id=message.message_id,
            content=message.content,
            room_id=message.room_id,
            message_type=message.message_type,
            media=message.media,
            is_read=message.is_read,
            created_at=message.created_at,
            sender=SenderProfile.model_validate(sender) if sender is not None else None
        )


class MessageCreate(CamelModel):
    """REST request body for sending a message."""
    room_id: int = Field(..., gt=0, description="Target chat room")
    content: str = Field(..., min_length=1, description="Message content")
    message_type: MessageType = Field(MessageType.TEXT, description="TEXT, IMAGE, VIDEO or FILE")
    media: Optional[str] = Field(None, description="Stored media path")
    metadata: Optional[dict] = Field(None, description="Free-form client metadata")


# Room Schemas
class RoomSummary(CamelModel):
    """Room fields embedded in message broadcasts."""
    room_id: StrId
    listing_id: OptionalStrId = None
    title: Optional[str] = None

    @classmethod
    def from_room(cls, room: ChatRoom) -> "RoomSummary":
        listing = room.listing
        return cls(
            room_id=room.room_id,
            listing_id=listing.listing_id if listing else None,
            title=listing.title if listing else None
        )


class ListingSummary(CamelModel):
    listing_id: StrId
    title: str
    price: Annotated[Optional[Decimal], PlainSerializer(lambda v: None if v is None else float(v), return_type=Optional[float])] = None


class LastMessage(CamelModel):
    message_id: StrId
    content: str
    message_type: MessageType
    created_at: IsoDatetime = None


class MemberOut(CamelModel):
    user_id: StrId
    status: MemberStatus
    fullname: Optional[str] = None
    avatar: Optional[str] = None

    @classmethod
    def from_member(cls, member: Member) -> "MemberOut":
        user = member.user
        return cls(
            user_id=member.user_id,
            status=member.status,
            fullname=user.fullname if user else None,
            avatar=user.avatar if user else None
        )


class RoomOut(CamelModel):
    """Chat room as returned by the REST endpoints."""
    room_id: StrId
    listing: Optional[ListingSummary] = None
    created_by: OptionalStrId = None
    is_active: bool
    members_count: int
    last_message_at: IsoDatetime = None
    last_message: Optional[LastMessage] = None
    members: List[MemberOut] = Field(default_factory=list)
    created_at: IsoDatetime = None

    @classmethod
    def from_room(cls, room: ChatRoom, members: Optional[List[Member]] = None) -> "RoomOut":
        return cls(
            room_id=room.room_id,
            listing=ListingSummary.model_validate(room.listing) if room.listing else None,
            created_by=room.created_by,
            is_active=room.is_active,
            members_count=room.members_count,
            last_message_at=room.last_message_at,
            last_message=LastMessage.model_validate(room.last_message) if room.last_message else None,
            members=[MemberOut.from_member(m) for m in (members if members is not None else room.members)],
            created_at=room.created_at
        )


class RoomCreate(CamelModel):
    """REST request body for creating a room."""
    member_ids: List[int] = Field(..., min_length=1, description="Users to add (creator is added automatically)")
    listing_id: Optional[int] = Field(None, description="Listing the conversation is about")


class DirectRoomRequest(CamelModel):
    """REST request body for opening a direct chat."""
    user_id: int = Field(..., gt=0, description="The other participant")
    listing_id: Optional[int] = None


class AddMemberRequest(CamelModel):
    user_id: int = Field(..., gt=0)


# Pagination / envelopes
class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, total_pages=(total + limit - 1) // limit)


class RoomList(CamelModel):
    rooms: List[RoomOut]
    pagination: Pagination


class MessageList(CamelModel):
    messages: List[MessageOut]
    pagination: Pagination


class RoomDetails(CamelModel):
    room: RoomOut
    messages: List[MessageOut]
    pagination: Pagination


class ReadReceipt(CamelModel):
    success: bool = True
    updated: int


class Envelope(BaseModel, Generic[T]):
    """Standard success wrapper: {"success": true, "data": ...}."""
    success: bool = True
    data: T


# Error Schemas
class ErrorResponse(BaseModel):
    """Standard error response schema."""
    error: str
