"""
Membership gate service.

Checks room membership and joins a room with its password. The check is
advisory only: message access is enforced by the backend's row policies.
"""

from roomy.backend.client import BackendClient
from roomy.core.errors import (
    BaseCustomException,
    ErrorKind,
    IncorrectPasswordException,
)
from roomy.core.logging import get_logger
from roomy.core.validators import Validator
from roomy.schemas.session import Session

logger = get_logger(__name__)

# 비밀번호 오류로 바꾸지 않고 그대로 전달하는 에러 종류
PASSTHROUGH_KINDS = {ErrorKind.SESSION_EXPIRED, ErrorKind.NETWORK}


class MembershipGate:
    """채팅방 멤버십 확인 및 참여"""

    def __init__(self, backend: BackendClient, session: Session):
        self.backend = backend
        self.session = session

    async def is_member(self, room_id: str) -> bool:
        """현재 사용자가 방 멤버인지 확인"""
        member = await self.backend.table("room_members") \
            .select("room_id") \
            .eq("room_id", room_id) \
            .eq("user_id", self.session.user_id) \
            .first()
        return member is not None

    async def join(self, room_id: str, password: str) -> None:
        """
        비밀번호로 방 참여

        결과가 참이고 에러가 없을 때만 성공입니다. 그 외 결과는 모두 비밀번호 오류로
        처리하되, 세션 만료와 연결 실패는 각자의 알림으로 전달합니다.
        """
        password = Validator.validate_room_password(password)

        try:
            joined = await self.backend.rpc(
                "join_room",
                {"room_id": room_id, "password_input": password},
            )
        except BaseCustomException as e:
            if e.kind in PASSTHROUGH_KINDS:
                raise
            logger.info(f"Join room {room_id} rejected: {e.kind.value}")
            raise IncorrectPasswordException() from e

        if not joined:
            logger.info(f"Join room {room_id} rejected: incorrect password")
            raise IncorrectPasswordException()

        logger.info(f"User {self.session.user_id} joined room {room_id}", extra={
            "room_id": room_id,
            "user_id": self.session.user_id,
            "event_type": "room_joined",
        })

    async def leave(self, room_id: str) -> None:
        """방 나가기 (내 멤버십 삭제)"""
        await self.backend.table("room_members") \
            .eq("room_id", room_id) \
            .eq("user_id", self.session.user_id) \
            .delete()

        logger.info(f"User {self.session.user_id} left room {room_id}", extra={
            "room_id": room_id,
            "user_id": self.session.user_id,
            "event_type": "room_left",
        })
