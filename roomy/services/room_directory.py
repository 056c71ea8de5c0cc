"""
Room directory service layer.

Lists, creates and deletes rooms and joins a room by name + password.
Password hashing and cascade cleanup happen in the backend.
"""

import asyncio
import secrets
import string
import uuid
from typing import Callable, List, Optional

from roomy.backend.client import BackendClient
from roomy.backend.realtime import RealtimeClient
from roomy.core.config import settings
from roomy.core.errors import (
    IncorrectPasswordException,
    ResourceNotFoundException,
    ValidationException,
    not_room_owner_error,
    room_not_found_error,
)
from roomy.core.logging import get_logger
from roomy.core.validators import Validator
from roomy.schemas.room import Room, RoomSummary
from roomy.schemas.session import Session
from roomy.services.presence import directory_online_count

logger = get_logger(__name__)

PASSWORD_ALPHABET = string.ascii_lowercase + string.digits

# online_count 는 계산 컬럼이라 * 에 포함되지 않음
ROOM_COLUMNS = "*, online_count"


def generate_room_password(length: Optional[int] = None) -> str:
    """방 비밀번호 생성 (소문자 + 숫자)"""
    length = length or settings.room_password_length
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def is_room_owner(room: Room, user_id: Optional[str]) -> bool:
    """방장 여부 확인"""
    return user_id is not None and room.owner_id == user_id


class RoomDirectory:
    """방 목록 / 생성 / 삭제 / 이름으로 참여"""

    def __init__(self, backend: BackendClient, session: Session):
        self.backend = backend
        self.session = session

    # =========================================================================
    # 조회
    # =========================================================================

    async def list_rooms(self) -> List[RoomSummary]:
        """방 목록 조회 (최신순)"""
        rows = await self.backend.table("rooms") \
            .select(ROOM_COLUMNS) \
            .order("created_at", desc=True) \
            .fetch()

        rooms = []
        for row in rows:
            room = Room.model_validate(row)
            rooms.append(
                RoomSummary(
                    **room.model_dump(exclude={"online_count"}),
                    online_count=directory_online_count(room),
                    can_delete=is_room_owner(room, self.session.user_id),
                )
            )
        return rooms

    async def get_room(self, room_id: str) -> Room:
        """채팅방 ID로 조회"""
        try:
            row = await self.backend.table("rooms").select(ROOM_COLUMNS).eq("id", room_id).fetch_one()
        except ResourceNotFoundException:
            raise room_not_found_error(room_id)
        return Room.model_validate(row)

    async def get_room_password(self, room: Room) -> Optional[str]:
        """방장 전용 비밀번호 조회 (room_secrets)"""
        if not is_room_owner(room, self.session.user_id):
            raise not_room_owner_error()

        secret = await self.backend.table("room_secrets") \
            .select("password_plaintext") \
            .eq("room_id", room.id) \
            .first()

        return secret["password_plaintext"] if secret else None

    # =========================================================================
    # 생성 / 삭제
    # =========================================================================

    async def create_room(self, name: str) -> tuple:
        """
        채팅방 생성

        Args:
            name: 방 이름 (앞뒤 공백 제거, 길이 제한 검사 후 백엔드 호출)

        Returns:
            (room_id, 평문 비밀번호) - 비밀번호는 이 시점에만 반환
        """
        trimmed_name = Validator.validate_room_name(name)
        password = generate_room_password()

        room_id = await self.backend.rpc(
            "create_room",
            {"name_input": trimmed_name, "password_input": password},
        )

        logger.info(f"Room {room_id} created", extra={
            "room_id": room_id,
            "user_id": self.session.user_id,
            "event_type": "room_created",
        })
        return str(room_id), password

    async def delete_room(self, room: Room, confirmed: bool = False) -> None:
        """방 삭제 (방장 전용, 명시적 확인 필요)"""
        if not is_room_owner(room, self.session.user_id):
            raise not_room_owner_error()

        if not confirmed:
            raise ValidationException(
                "Delete this room and all its messages? This cannot be undone.",
                details={"confirmation_required": True},
            )

        deleted = await self.backend.table("rooms").eq("id", room.id).delete()
        if not deleted:
            raise ResourceNotFoundException(
                "Room",
                message="This room may have already been deleted",
                details={"room_id": room.id},
            )

        logger.info(f"Room {room.id} deleted", extra={
            "room_id": room.id,
            "user_id": self.session.user_id,
            "event_type": "room_deleted",
        })

    # =========================================================================
    # 참여
    # =========================================================================

    async def join_by_password(self, name: str, password: str) -> str:
        """방 이름 + 비밀번호 한 번의 조회로 참여 후 room_id 반환"""
        trimmed_name = Validator.validate_room_name(name)
        password = Validator.validate_room_password(password)

        room_id = await self.backend.rpc(
            "join_room_by_name",
            {"name_input": trimmed_name, "password_input": password},
        )

        if not room_id:
            raise IncorrectPasswordException("No room found with this name and password.")

        logger.info(f"User {self.session.user_id} joined room {room_id} by name", extra={
            "room_id": room_id,
            "user_id": self.session.user_id,
            "event_type": "room_joined",
        })
        return str(room_id)


class RoomListWatcher:
    """
    방 목록 변경 감시

    rooms 테이블 변경 알림과 주기적 폴링(접속 수 갱신용) 두 가지 계기로
    목록을 다시 조회해 on_update 로 전달합니다.
    """

    def __init__(
        self,
        directory: RoomDirectory,
        realtime: RealtimeClient,
        on_update: Callable[[List[RoomSummary]], None],
        poll_interval: Optional[float] = None,
    ):
        self.directory = directory
        self.realtime = realtime
        self.on_update = on_update
        self.poll_interval = poll_interval or settings.room_list_poll_interval
        self._channel = None
        self._trigger = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.closed = False

    def _on_change(self, _data):
        self._trigger.set()

    async def start(self):
        """변경 알림 구독 및 갱신 루프 시작"""
        # 감시자마다 고유 토픽
        self._channel = self.realtime.channel(f"rooms-channel-{uuid.uuid4().hex[:8]}")
        self._channel.on_postgres_changes("*", "rooms", self._on_change)
        await self._channel.subscribe(access_token=self.directory.session.access_token)
        self._task = asyncio.create_task(self._run())

    async def _run(self):
        while not self.closed:
            try:
                await asyncio.wait_for(self._trigger.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            self._trigger.clear()
            if self.closed:
                break

            try:
                rooms = await self.directory.list_rooms()
            except Exception as e:
                logger.error(f"Error fetching rooms: {e}")
                continue

            if not self.closed:
                self.on_update(rooms)

    async def stop(self):
        """감시 중지 (채널 정리)"""
        self.closed = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._channel:
            await self._channel.unsubscribe()
