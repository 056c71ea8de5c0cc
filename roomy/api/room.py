import asyncio
import json
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sse_starlette.sse import EventSourceResponse

from roomy.api.dependencies import (
    get_backend,
    get_current_session,
    get_membership_gate,
    get_message_composer,
    get_room_directory,
    get_room_sessions,
)
from roomy.backend.client import BackendClient
from roomy.core.errors import not_room_member_error, success_notice
from roomy.core.logging import get_logger
from roomy.schemas.message import MessageSent, MessageView
from roomy.schemas.room import (
    RoomDeleted,
    RoomJoined,
    RoomJoinRequest,
    RoomLeft,
    RoomView,
)
from roomy.schemas.session import Session
from roomy.services.composer import Attachment, MessageComposer
from roomy.services.membership import MembershipGate
from roomy.services.message_feed import MessageFeed
from roomy.services.presence import directory_online_count
from roomy.services.room_directory import RoomDirectory, is_room_owner
from roomy.services.room_session import RoomSessionRegistry

logger = get_logger(__name__)

router = APIRouter(prefix="/room", tags=["Room"])


def room_actions(is_member: bool, is_owner: bool) -> List[str]:
    """화면에 노출할 동작 목록 (삭제는 방장에게만)"""
    actions = ["send_message", "leave"] if is_member else ["join"]
    if is_owner:
        actions.append("delete")
    return actions


@router.get("/{room_id}", response_model=RoomView)
async def get_room(
    room_id: str,
    session: Session = Depends(get_current_session),
    backend: BackendClient = Depends(get_backend),
    directory: RoomDirectory = Depends(get_room_directory),
    membership: MembershipGate = Depends(get_membership_gate),
    room_sessions: RoomSessionRegistry = Depends(get_room_sessions)
) -> RoomView:
    """
    채팅방 화면

    멤버가 아니면 비밀번호 입력 화면(join 동작)만 보여주고,
    멤버이면 최근 메시지 이력을 함께 반환합니다.
    비밀번호는 방장에게만 보입니다.
    """
    room = await directory.get_room(room_id)
    is_owner = is_room_owner(room, session.user_id)
    is_member = await membership.is_member(room_id)

    password: Optional[str] = None
    if is_owner:
        password = await directory.get_room_password(room)

    messages: List[MessageView] = []
    if is_member:
        history = await MessageFeed(backend, room_id).load_history()
        messages = [MessageView.build(message, session.user_id) for message in history]

    room_session = room_sessions.get(room_id)
    if room_session is not None and room_session.online_count is not None:
        online_count = room_session.online_count
    else:
        online_count = directory_online_count(room)

    return RoomView(
        room=room,
        is_member=is_member,
        is_owner=is_owner,
        can_delete=is_owner,
        actions=room_actions(is_member, is_owner),
        password=password,
        online_count=online_count,
        messages=messages,
    )


@router.post("/{room_id}/join", response_model=RoomJoined)
async def join_room(
    room_id: str,
    join_data: RoomJoinRequest,
    directory: RoomDirectory = Depends(get_room_directory),
    membership: MembershipGate = Depends(get_membership_gate)
) -> RoomJoined:
    """
    비밀번호로 채팅방 참여

    - **password**: 방 비밀번호
    """
    await directory.get_room(room_id)
    await membership.join(room_id, join_data.password)

    return RoomJoined(
        room_id=room_id,
        notice=success_notice("Joined room!", "You have successfully joined the room."),
    )


@router.post("/{room_id}/leave", response_model=RoomLeft)
async def leave_room(
    room_id: str,
    membership: MembershipGate = Depends(get_membership_gate),
    room_sessions: RoomSessionRegistry = Depends(get_room_sessions)
) -> RoomLeft:
    """채팅방 나가기 후 방 목록으로 이동"""
    await membership.leave(room_id)
    await room_sessions.close_room(room_id)

    return RoomLeft(
        room_id=room_id,
        notice=success_notice("Left room", "You have left the room."),
    )


@router.post("/{room_id}/messages", response_model=MessageSent, status_code=status.HTTP_201_CREATED)
async def send_message(
    room_id: str,
    content: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    composer: MessageComposer = Depends(get_message_composer)
) -> MessageSent:
    """
    메시지 전송

    - **content**: 메시지 내용 (최대 500자)
    - **file**: 첨부 파일 (선택, 최대 5MB)

    실패하면 입력 내용은 그대로 두고 알림만 표시합니다.
    """
    attachment = None
    if file is not None and file.filename:
        attachment = Attachment(
            filename=file.filename,
            content_type=file.content_type or "application/octet-stream",
            data=await file.read(),
        )

    message = await composer.send(room_id, content, attachment)
    return MessageSent(message=message)


@router.get("/{room_id}/events")
async def stream_room_events(
    room_id: str,
    session: Session = Depends(get_current_session),
    directory: RoomDirectory = Depends(get_room_directory),
    membership: MembershipGate = Depends(get_membership_gate),
    room_sessions: RoomSessionRegistry = Depends(get_room_sessions)
):
    """
    채팅방 실시간 스트리밍 (SSE)

    - message: 새 메시지 (도착 순서대로)
    - presence: 접속 수 변경
    """
    await directory.get_room(room_id)
    if not await membership.is_member(room_id):
        raise not_room_member_error()

    room_session = await room_sessions.acquire(room_id, session)
    queue = room_session.add_listener()

    async def event_generator():
        try:
            yield {
                "event": "connected",
                "data": json.dumps({
                    "room_id": room_id,
                    "user_id": session.user_id,
                    "online_count": room_session.online_count,
                })
            }
            logger.info(f"User {session.user_id} connected to room stream {room_id}")

            while not room_session.closed:
                event = await queue.get()
                yield {"event": event["event"], "data": json.dumps(event["data"])}

        except asyncio.CancelledError:
            logger.info(f"Room stream cancelled for user {session.user_id}, room {room_id}")
            raise

        finally:
            room_session.remove_listener(queue)
            await room_sessions.release(room_id)

    return EventSourceResponse(event_generator(), ping=30)


@router.delete("/{room_id}", response_model=RoomDeleted)
async def delete_room(
    room_id: str,
    confirm: bool = Query(False, description="삭제 확인"),
    directory: RoomDirectory = Depends(get_room_directory),
    room_sessions: RoomSessionRegistry = Depends(get_room_sessions)
) -> RoomDeleted:
    """방 삭제 후 방 목록으로 이동 (방장 전용, confirm=true 필요)"""
    room = await directory.get_room(room_id)
    await directory.delete_room(room, confirmed=confirm)
    await room_sessions.close_room(room_id)

    return RoomDeleted(
        room_id=room_id,
        notice=success_notice("Room deleted", "The room has been successfully deleted."),
    )
