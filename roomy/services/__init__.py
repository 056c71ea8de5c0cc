"""
Services layer for the managed backend.

This layer handles:
- Session bootstrap and sign-in
- Room directory and membership
- Message feed, composer and presence
"""

from .session_service import SessionContext, SessionStore
from .room_directory import RoomDirectory, RoomListWatcher
from .membership import MembershipGate
from .message_feed import MessageFeed
from .composer import Attachment, MessageComposer
from .presence import PresenceTracker, create_presence_tracker
from .room_session import RoomSession, RoomSessionRegistry

__all__ = [
    "SessionContext",
    "SessionStore",
    "RoomDirectory",
    "RoomListWatcher",
    "MembershipGate",
    "MessageFeed",
    "Attachment",
    "MessageComposer",
    "PresenceTracker",
    "create_presence_tracker",
    "RoomSession",
    "RoomSessionRegistry",
]
