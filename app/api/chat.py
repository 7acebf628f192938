"""
REST endpoints for chat rooms and message history.

These complement the WebSocket protocol: rooms are created and joined
here, history is paged from here, and messages sent over REST are pushed
to connected members through the same gateway as WebSocket messages.
"""
import logging
from typing import List
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from api.dependencies import get_chat_gateway, get_current_user, get_db
from api.schemas import (
    AddMemberRequest, DirectRoomRequest, Envelope, MemberOut, MessageCreate, MessageList,
    MessageOut, Pagination, ReadReceipt, RoomCreate, RoomDetails, RoomList, RoomOut
)
from core.errors import AuthorizationError, NotFoundError, ValidationError
from db.models import ChatRoom, User
from db.repository import ChatRepository
from realtime.gateway import ChatGateway
from realtime.handlers import store_message
from realtime.metrics import chat_messages_persisted_total
from realtime.protocol import message_broadcast_frame

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["Chat"])


def _load_room_for_member(repository: ChatRepository, room_id: int, user_id: int, joined: bool = False) -> ChatRoom:
    """Return the room if the user belongs to it (JOINED only when ``joined``)."""
    room = repository.get_room(room_id)
    if room is None:
        raise NotFoundError("Chat room not found")

    if joined:
        member = repository.get_joined_member(room_id, user_id)
    else:
        member = repository.get_member(room_id, user_id)
    if member is None:
        raise AuthorizationError("Not a member of this chat room")
    return room


def _require_users(repository: ChatRepository, user_ids: List[int]) -> None:
    missing = [user_id for user_id in user_ids if repository.get_user_by_id(user_id) is None]
    if missing:
        raise NotFoundError(f"User not found: {', '.join(str(user_id) for user_id in missing)}")


@router.post("/rooms", response_model=Envelope[RoomOut], status_code=status.HTTP_201_CREATED)
def create_room(
    request: RoomCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Create a chat room. The caller is always added as a member.

    Example Request:
        ```json
        POST /api/chat/rooms
        {"memberIds": [7, 9], "listingId": 3}
        ```
    """
    repository = ChatRepository(db)
    member_ids = [current_user.user_id] + [m for m in request.member_ids if m != current_user.user_id]
    _require_users(repository, member_ids)

    room = repository.create_room(member_ids, created_by=current_user.user_id, listing_id=request.listing_id)
    logger.info(f"Room {room.room_id} created by user {current_user.user_id} with {len(member_ids)} members")

    return Envelope(data=RoomOut.from_room(room, repository.get_room_members(room.room_id)))


@router.post("/direct", response_model=Envelope[RoomOut])
def get_or_create_direct_chat(
    request: DirectRoomRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Return the two-member room for this pair (and listing), creating it if needed."""
    if request.user_id == current_user.user_id:
        raise ValidationError("Cannot open a direct chat with yourself")

    repository = ChatRepository(db)
    _require_users(repository, [request.user_id])

    room, created = repository.get_or_create_direct_room(
        current_user.user_id, request.user_id, listing_id=request.listing_id
    )
    if created:
        logger.info(f"Direct room {room.room_id} created for users {current_user.user_id} and {request.user_id}")

    return Envelope(data=RoomOut.from_room(room, repository.get_room_members(room.room_id)))


@router.get("/rooms", response_model=Envelope[RoomList])
def list_my_rooms(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the caller's active rooms, most recent activity first."""
    repository = ChatRepository(db)
    rooms, total = repository.list_rooms_for_user(current_user.user_id, page=page, limit=limit)

    return Envelope(data=RoomList(
        rooms=[RoomOut.from_room(room) for room in rooms],
        pagination=Pagination.build(page, limit, total)
    ))


@router.get("/rooms/{room_id}", response_model=Envelope[RoomDetails])
def get_room_details(
    room_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Room details with the most recent page of messages."""
    repository = ChatRepository(db)
    room = _load_room_for_member(repository, room_id, current_user.user_id)
    messages, total = repository.get_room_messages(room_id, page=page, limit=limit)

    return Envelope(data=RoomDetails(
        room=RoomOut.from_room(room, repository.get_room_members(room_id)),
        messages=[MessageOut.from_message(message) for message in messages],
        pagination=Pagination.build(page, limit, total)
    ))


@router.get("/rooms/{room_id}/messages", response_model=Envelope[MessageList])
def get_room_messages(
    room_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Page through a room's history.

    Page 1 holds the newest messages; each page is returned oldest first.
    This is how members recover messages broadcast while they were offline.
    """
    repository = ChatRepository(db)
    _load_room_for_member(repository, room_id, current_user.user_id)
    messages, total = repository.get_room_messages(room_id, page=page, limit=limit)

    return Envelope(data=MessageList(
        messages=[MessageOut.from_message(message) for message in messages],
        pagination=Pagination.build(page, limit, total)
    ))


@router.post("/messages", response_model=Envelope[MessageOut], status_code=status.HTTP_201_CREATED)
async def send_message(
    request: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: ChatGateway = Depends(get_chat_gateway)
):
    """
    Send a message over REST.

    Applies the same membership rules as the WebSocket ``user_message``
    command and pushes the stored message to connected room members.
    """
    stored = await run_in_threadpool(
        store_message,
        db,
        sender_id=current_user.user_id,
        room_id=request.room_id,
        content=request.content,
        message_type=request.message_type,
        media=request.media,
        metadata=request.metadata
    )
    chat_messages_persisted_total.labels(message_type=request.message_type.value, source="rest").inc()

    delivered = await gateway.broadcast_to_users(
        stored.member_ids, message_broadcast_frame(stored.message, stored.room)
    )
    logger.info(
        f"REST message {stored.message.message_id} in room {request.room_id} by user "
        f"{current_user.user_id} ({delivered} deliveries)"
    )

    return Envelope(data=stored.message)


@router.put("/rooms/{room_id}/read", response_model=Envelope[ReadReceipt])
def mark_messages_as_read(
    room_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Mark every message sent by other members as read."""
    repository = ChatRepository(db)
    _load_room_for_member(repository, room_id, current_user.user_id)
    updated = repository.mark_messages_read(room_id, current_user.user_id)
    return Envelope(data=ReadReceipt(updated=updated))


@router.delete("/rooms/{room_id}", response_model=Envelope[MemberOut])
def leave_room(
    room_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Leave a room. The membership becomes BLOCKED, which rejects the
    caller's next message on any connection.
    """
    repository = ChatRepository(db)
    _load_room_for_member(repository, room_id, current_user.user_id)
    repository.leave_room(room_id, current_user.user_id)
    logger.info(f"User {current_user.user_id} left room {room_id}")

    member = repository.get_member(room_id, current_user.user_id)
    return Envelope(data=MemberOut.from_member(member))


@router.post("/rooms/{room_id}/members", response_model=Envelope[MemberOut])
def add_member(
    room_id: int,
    request: AddMemberRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Add a user to a room (or re-join a user who left). Caller must be JOINED."""
    repository = ChatRepository(db)
    _load_room_for_member(repository, room_id, current_user.user_id, joined=True)
    _require_users(repository, [request.user_id])

    member = repository.add_member(room_id, request.user_id)
    logger.info(f"User {request.user_id} added to room {room_id} by user {current_user.user_id}")
    return Envelope(data=MemberOut.from_member(member))
