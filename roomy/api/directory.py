import asyncio
import json
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sse_starlette.sse import EventSourceResponse

from roomy.api.dependencies import (
    get_current_session,
    get_realtime,
    get_room_directory,
    get_room_sessions,
)
from roomy.backend.realtime import RealtimeClient
from roomy.core.errors import success_notice
from roomy.core.logging import get_logger
from roomy.schemas.room import (
    DirectoryView,
    RoomCreate,
    RoomCreated,
    RoomDeleted,
    RoomJoinByNameRequest,
    RoomJoined,
    RoomSummary,
)
from roomy.schemas.session import Session
from roomy.services.room_directory import RoomDirectory, RoomListWatcher
from roomy.services.room_session import RoomSessionRegistry

logger = get_logger(__name__)

router = APIRouter(tags=["Rooms"])


def _rooms_payload(rooms: List[RoomSummary]) -> str:
    return json.dumps([room.model_dump(mode="json") for room in rooms])


@router.get("/", response_model=DirectoryView)
async def get_directory(
    session: Session = Depends(get_current_session),
    directory: RoomDirectory = Depends(get_room_directory)
) -> DirectoryView:
    """
    방 목록 화면

    최신순 방 목록과 현재 사용자 표시 이름을 반환합니다.
    방장인 방에만 can_delete 가 true 로 표시됩니다.
    """
    rooms = await directory.list_rooms()
    return DirectoryView(
        user_id=session.user_id,
        display_name=session.display_name or "Anonymous",
        rooms=rooms,
    )


@router.get("/rooms/events")
async def stream_rooms(
    directory: RoomDirectory = Depends(get_room_directory),
    realtime: RealtimeClient = Depends(get_realtime)
):
    """
    방 목록 실시간 스트리밍 (SSE)

    rooms 변경 알림과 주기적 폴링마다 갱신된 목록을 rooms 이벤트로 보냅니다.
    """
    updates: asyncio.Queue = asyncio.Queue()
    initial_rooms = await directory.list_rooms()

    watcher = RoomListWatcher(directory, realtime, on_update=updates.put_nowait)
    await watcher.start()

    async def event_generator():
        try:
            yield {"event": "rooms", "data": _rooms_payload(initial_rooms)}

            while True:
                rooms = await updates.get()
                yield {"event": "rooms", "data": _rooms_payload(rooms)}

        except asyncio.CancelledError:
            logger.info(f"Room list stream cancelled for user {directory.session.user_id}")
            raise

        finally:
            await watcher.stop()

    return EventSourceResponse(event_generator(), ping=30)


@router.post("/rooms", response_model=RoomCreated, status_code=status.HTTP_201_CREATED)
async def create_room(
    room_data: RoomCreate,
    directory: RoomDirectory = Depends(get_room_directory)
) -> RoomCreated:
    """
    채팅방 생성

    - **name**: 방 이름 (최대 50자)

    생성된 비밀번호는 이 응답에서 한 번 보여줍니다.
    """
    room_id, password = await directory.create_room(room_data.name)

    return RoomCreated(
        room_id=room_id,
        password=password,
        notice=success_notice(
            "Room created!",
            f"Room password: {password}. Share this with others to let them join.",
        ),
    )


@router.post("/rooms/join", response_model=RoomJoined)
async def join_room_by_name(
    join_data: RoomJoinByNameRequest,
    directory: RoomDirectory = Depends(get_room_directory)
) -> RoomJoined:
    """
    방 이름 + 비밀번호로 참여

    - **name**: 방 이름
    - **password**: 방 비밀번호
    """
    room_id = await directory.join_by_password(join_data.name, join_data.password)

    return RoomJoined(
        room_id=room_id,
        notice=success_notice("Joined room!", "You have successfully joined the room."),
    )


@router.delete("/rooms/{room_id}", response_model=RoomDeleted)
async def delete_room(
    room_id: str,
    confirm: bool = Query(False, description="삭제 확인"),
    directory: RoomDirectory = Depends(get_room_directory),
    room_sessions: RoomSessionRegistry = Depends(get_room_sessions)
) -> RoomDeleted:
    """방 삭제 (방장 전용, confirm=true 필요)"""
    room = await directory.get_room(room_id)
    await directory.delete_room(room, confirmed=confirm)
    await room_sessions.close_room(room_id)

    return RoomDeleted(
        room_id=room_id,
        notice=success_notice("Room deleted", "The room has been successfully deleted."),
    )
