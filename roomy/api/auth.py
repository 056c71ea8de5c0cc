from fastapi import APIRouter, Depends, status

from roomy.api.dependencies import get_room_sessions, get_session_context
from roomy.core.errors import success_notice
from roomy.schemas.session import SessionStatus, SignInRequest, SignedIn
from roomy.services.room_session import RoomSessionRegistry
from roomy.services.session_service import SessionContext

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.get("", response_model=SessionStatus)
async def get_session_status(
    session_context: SessionContext = Depends(get_session_context)
) -> SessionStatus:
    """
    세션 상태 조회

    이미 로그인되어 있으면 방 목록(/)으로 이동하도록 안내합니다.
    """
    session = await session_context.bootstrap()
    if session is None:
        return SessionStatus(authenticated=False)

    return SessionStatus(
        authenticated=True,
        user_id=session.user_id,
        display_name=session.display_name,
        redirect="/",
    )


@router.post("", response_model=SignedIn, status_code=status.HTTP_201_CREATED)
async def sign_in(
    request: SignInRequest,
    session_context: SessionContext = Depends(get_session_context)
) -> SignedIn:
    """
    표시 이름으로 입장

    - **display_name**: 표시 이름 (최대 30자, #NNNN 접미사가 자동으로 붙음)
    """
    await session_context.bootstrap()
    session = await session_context.sign_in(request.display_name)

    return SignedIn(
        user_id=session.user_id,
        display_name=session.display_name,
        notice=success_notice("Welcome!", f"You are signed in as {session.display_name}"),
    )


@router.post("/sign-out", response_model=SessionStatus)
async def sign_out(
    session_context: SessionContext = Depends(get_session_context),
    room_sessions: RoomSessionRegistry = Depends(get_room_sessions)
) -> SessionStatus:
    """로그아웃 후 입장 화면으로 이동 (열린 채팅방 세션도 모두 정리)"""
    await room_sessions.close_all()
    await session_context.sign_out()
    return SessionStatus(authenticated=False, redirect="/auth")
