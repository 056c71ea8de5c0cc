"""
요청 로깅 미들웨어

요청마다 request_id 를 정하고 처리 결과를 api_call 이벤트로 남깁니다.
"""

import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from roomy.core.logging import clear_request_context, get_logger, log_api_call, set_request_context

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# 이벤트 스트림과 메트릭 수집은 요청마다 남기지 않음
_QUIET_PATHS = ("/metrics", "/health/live")


def _session_user_id(request: Request) -> Optional[str]:
    session_context = getattr(request.app.state, "session_context", None)
    session = getattr(session_context, "session", None)
    return session.user_id if session is not None else None


class LoggingMiddleware(BaseHTTPMiddleware):
    """요청 단위 로그 컨텍스트와 처리 시간 기록"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        user_id = _session_user_id(request)
        set_request_context(request_id, user_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                f"Unhandled error in {request.method} {request.url.path}",
                extra={"event_type": "api_error", "elapsed_ms": round((time.perf_counter() - started) * 1000, 2)},
            )
            raise
        else:
            if request.url.path not in _QUIET_PATHS:
                log_api_call(
                    logger,
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=(time.perf_counter() - started) * 1000,
                    user_id=user_id,
                    query=str(request.url.query) or None,
                    client=request.client.host if request.client else None,
                )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_request_context()
