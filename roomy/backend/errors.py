"""
백엔드 에러 분류

HTTP 상태 코드와 백엔드 에러 코드를 ErrorKind 로 한 번만 매핑합니다.
"""

from typing import Any, Dict, Optional

import httpx

from roomy.core.errors import BaseCustomException, ErrorKind, exception_for

# JWT 관련 에러 코드 (PostgREST / Auth 서비스)
SESSION_ERROR_CODES = {"PGRST301", "PGRST302", "bad_jwt", "session_not_found", "refresh_token_not_found"}
NOT_FOUND_CODES = {"PGRST116", "PGRST205", "42P01", "object_not_found"}
CONFLICT_CODES = {"23505", "user_already_exists", "Duplicate"}
FORBIDDEN_CODES = {"42501", "PGRST300"}
# 제약 조건/형식 위반 (23502 not null, 23514 check, 22xxx data exception)
VALIDATION_CODE_PREFIXES = ("22", "23502", "23514", "validation_failed")


def _error_payload(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {"message": response.text}
    return payload if isinstance(payload, dict) else {"message": str(payload)}


def _error_code(payload: Dict[str, Any]) -> Optional[str]:
    for key in ("code", "error_code", "error", "statusCode"):
        value = payload.get(key)
        if value:
            return str(value)
    return None


def _error_message(payload: Dict[str, Any], default: str) -> str:
    for key in ("message", "msg", "error_description", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return default


def classify_response(status_code: int, code: Optional[str]) -> ErrorKind:
    """HTTP 상태 코드와 에러 코드로 에러 종류 결정"""
    if code in SESSION_ERROR_CODES or status_code == 401:
        return ErrorKind.SESSION_EXPIRED
    if code in NOT_FOUND_CODES or status_code == 404:
        return ErrorKind.NOT_FOUND
    if code in CONFLICT_CODES or status_code == 409:
        return ErrorKind.CONFLICT
    if code in FORBIDDEN_CODES or status_code == 403:
        return ErrorKind.FORBIDDEN
    if code and code.startswith(VALIDATION_CODE_PREFIXES):
        return ErrorKind.VALIDATION
    if status_code in (400, 422):
        return ErrorKind.VALIDATION
    if status_code >= 500:
        return ErrorKind.BACKEND
    return ErrorKind.UNKNOWN


def error_from_response(response: httpx.Response) -> BaseCustomException:
    """실패한 백엔드 응답을 타입이 지정된 예외로 변환"""
    payload = _error_payload(response)
    code = _error_code(payload)
    kind = classify_response(response.status_code, code)
    message = _error_message(payload, response.reason_phrase or "Backend request failed")

    return exception_for(
        kind,
        message,
        details={
            "backend_status": response.status_code,
            "backend_code": code,
        },
    )


def error_from_transport(exc: httpx.TransportError) -> BaseCustomException:
    """연결 실패(타임아웃, DNS, 연결 거부 등)를 network 에러로 변환"""
    return exception_for(
        ErrorKind.NETWORK,
        details={"reason": type(exc).__name__},
    )
