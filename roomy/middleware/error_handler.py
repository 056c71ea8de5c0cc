import traceback
from typing import Callable
from fastapi import Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from roomy.core.config import settings
from roomy.core.errors import (
    BaseCustomException,
    ErrorKind,
    ValidationException,
    ValidationError,
    create_error_response,
)
from roomy.core.logging import get_logger

logger = get_logger(__name__)


async def notice_response(request: Request, exc: BaseCustomException) -> JSONResponse:
    """
    분류된 예외를 알림 응답으로 변환

    세션 만료이면 열린 채팅방 세션과 프로세스 전역 세션도 함께 제거합니다.
    """
    if exc.kind is ErrorKind.SESSION_EXPIRED:
        room_sessions = getattr(request.app.state, "room_sessions", None)
        if room_sessions is not None:
            await room_sessions.close_all()
        session_context = getattr(request.app.state, "session_context", None)
        if session_context is not None:
            await session_context.invalidate()
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    통합 에러 처리 미들웨어

    라우터 밖으로 빠져나온 예외를 알림 형식의 응답으로 변환합니다.
    어떤 실패도 프로세스를 중단시키지 않습니다.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except BaseCustomException as e:
            return await notice_response(request, e)
        except Exception as e:
            logger.error(f"Unhandled exception: {type(e).__name__}: {e}", exc_info=True)

            details = None
            if settings.debug:
                details = {"type": type(e).__name__, "exception": str(e), "traceback": traceback.format_exc()}

            error_response = create_error_response(
                ErrorKind.UNKNOWN,
                "Something went wrong. Please try again.",
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                details
            )
            return JSONResponse(status_code=error_response.status_code, content=error_response.model_dump())


def create_http_exception_handler():
    """HTTPException 핸들러 (커스텀 예외가 아니면 404 는 NOT_FOUND, 나머지는 UNKNOWN)"""
    async def http_exception_handler(request: Request, exc):
        if isinstance(exc, BaseCustomException):
            return await notice_response(request, exc)

        kind = ErrorKind.NOT_FOUND if exc.status_code == status.HTTP_404_NOT_FOUND else ErrorKind.UNKNOWN
        plain_detail = isinstance(exc.detail, str)
        error_response = create_error_response(
            kind,
            exc.detail if plain_detail else "HTTP error occurred",
            exc.status_code,
            None if plain_detail else {"detail": exc.detail}
        )
        return JSONResponse(status_code=exc.status_code, content=error_response.model_dump())

    return http_exception_handler


def _plain(value):
    return value if isinstance(value, (str, int, float, bool)) else None


def create_validation_exception_handler():
    """요청 본문 검증 실패 핸들러 생성"""
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        validation_errors = [
            ValidationError(
                field=".".join(str(loc) for loc in error["loc"]),
                message=error["msg"],
                value=_plain(error.get("input"))
            )
            for error in exc.errors()
        ]
        error = ValidationException("Request validation failed", validation_errors=validation_errors)
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    return validation_exception_handler
