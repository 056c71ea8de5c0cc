from .message import Message, MessageView, MessageSent
from .room import (
    Room,
    RoomSummary,
    DirectoryView,
    RoomCreate,
    RoomCreated,
    RoomJoinRequest,
    RoomJoinByNameRequest,
    RoomJoined,
    RoomDeleted,
    RoomLeft,
    RoomView,
)
from .session import Session, SignInRequest, SessionStatus, SignedIn

__all__ = [
    # Message
    "Message",
    "MessageView",
    "MessageSent",
    # Room
    "Room",
    "RoomSummary",
    "DirectoryView",
    "RoomCreate",
    "RoomCreated",
    "RoomJoinRequest",
    "RoomJoinByNameRequest",
    "RoomJoined",
    "RoomDeleted",
    "RoomLeft",
    "RoomView",
    # Session
    "Session",
    "SignInRequest",
    "SessionStatus",
    "SignedIn",
]
