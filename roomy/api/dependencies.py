"""
라우터 공용 의존성

프로세스 전역 객체(백엔드 클라이언트, 세션 컨텍스트, 실시간 클라이언트,
채팅방 세션 레지스트리)는 app.state 에 보관합니다.
"""

from fastapi import Depends, Request

from roomy.backend.client import BackendClient
from roomy.backend.realtime import RealtimeClient
from roomy.schemas.session import Session
from roomy.services.composer import MessageComposer
from roomy.services.membership import MembershipGate
from roomy.services.room_directory import RoomDirectory
from roomy.services.room_session import RoomSessionRegistry
from roomy.services.session_service import SessionContext


def get_backend(request: Request) -> BackendClient:
    return request.app.state.backend


def get_session_context(request: Request) -> SessionContext:
    return request.app.state.session_context


def get_realtime(request: Request) -> RealtimeClient:
    return request.app.state.realtime


def get_room_sessions(request: Request) -> RoomSessionRegistry:
    return request.app.state.room_sessions


async def get_current_session(
    session_context: SessionContext = Depends(get_session_context)
) -> Session:
    """로그인 세션 (없으면 session_expired -> /auth)"""
    await session_context.bootstrap()
    return await session_context.require()


def get_room_directory(
    backend: BackendClient = Depends(get_backend),
    session: Session = Depends(get_current_session)
) -> RoomDirectory:
    return RoomDirectory(backend, session)


def get_membership_gate(
    backend: BackendClient = Depends(get_backend),
    session: Session = Depends(get_current_session)
) -> MembershipGate:
    return MembershipGate(backend, session)


def get_message_composer(
    backend: BackendClient = Depends(get_backend),
    session: Session = Depends(get_current_session)
) -> MessageComposer:
    return MessageComposer(backend, session)
