from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any, List
from fastapi import HTTPException, status
from pydantic import BaseModel


class ErrorKind(str, Enum):
    """백엔드 접근 계층이 돌려주는 에러 종류"""
    VALIDATION = "validation"
    SESSION_EXPIRED = "session_expired"
    NETWORK = "network"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    INCORRECT_PASSWORD = "incorrect_password"
    BACKEND = "backend"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NoticeTemplate:
    """사용자에게 보여줄 일시적 알림 템플릿"""
    title: str
    description: str
    action: Optional[str] = None


# 에러 종류 -> 사용자 알림 (한 곳에서만 매핑)
NOTICES: Dict[ErrorKind, NoticeTemplate] = {
    ErrorKind.VALIDATION: NoticeTemplate("Invalid Input", "Please check the highlighted fields"),
    ErrorKind.SESSION_EXPIRED: NoticeTemplate(
        "Session Expired", "Please sign in again to continue", action="reauthenticate"
    ),
    ErrorKind.NETWORK: NoticeTemplate(
        "Connection Error", "Please check your internet connection and try again", action="retry"
    ),
    ErrorKind.NOT_FOUND: NoticeTemplate("Not Found", "The requested item no longer exists"),
    ErrorKind.CONFLICT: NoticeTemplate("Already Exists", "This value is already taken. Please try again."),
    ErrorKind.FORBIDDEN: NoticeTemplate("Not Allowed", "You do not have permission to do that"),
    ErrorKind.INCORRECT_PASSWORD: NoticeTemplate("Incorrect Password", "The password you entered is incorrect"),
    ErrorKind.BACKEND: NoticeTemplate(
        "Service Unavailable", "The chat service is having trouble. Please try again.", action="retry"
    ),
    ErrorKind.UNKNOWN: NoticeTemplate("Unexpected Error", "Something went wrong. Please try again."),
}

# 인증 만료 시 이동할 경로
REDIRECTS: Dict[ErrorKind, str] = {
    ErrorKind.SESSION_EXPIRED: "/auth",
}


class Notice(BaseModel):
    """닫을 수 있는 일시적 알림"""
    title: str
    description: str
    variant: str = "default"
    action: Optional[str] = None


class ValidationError(BaseModel):
    """검증 에러 세부사항"""
    field: str
    message: str
    value: Optional[Any] = None


class ErrorResponse(BaseModel):
    """표준 에러 응답 모델"""
    error: str
    message: str
    notice: Notice
    redirect: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    status_code: int


# =============================================================================
# 커스텀 예외 클래스들
# =============================================================================

class BaseCustomException(HTTPException):
    """기본 커스텀 예외 클래스"""
    def __init__(
        self,
        status_code: int,
        kind: ErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.kind = kind
        self.error = kind.value
        self.message = message
        self.details = details
        self.status_code = status_code  # status_code를 먼저 설정
        super().__init__(status_code=status_code, detail=self.to_dict())

    @property
    def notice(self) -> Notice:
        template = NOTICES[self.kind]
        return Notice(
            title=template.title,
            description=self.message or template.description,
            variant="destructive",
            action=template.action,
        )

    @property
    def redirect(self) -> Optional[str]:
        return REDIRECTS.get(self.kind)

    def to_dict(self) -> Dict[str, Any]:
        """예외를 딕셔너리로 변환"""
        return ErrorResponse(
            error=self.error,
            message=self.message,
            notice=self.notice,
            redirect=self.redirect,
            details=self.details,
            status_code=self.status_code,
        ).model_dump()


class ValidationException(BaseCustomException):
    """입력 검증 실패 예외"""
    def __init__(
        self,
        message: str = "Validation failed",
        validation_errors: Optional[List[ValidationError]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.validation_errors = validation_errors or []
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            kind=ErrorKind.VALIDATION,
            message=message,
            details=details
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["validation_errors"] = [error.model_dump() for error in self.validation_errors]
        return data


class AuthenticationException(BaseCustomException):
    """인증 실패/만료 예외"""
    def __init__(
        self,
        message: str = "Please sign in again to continue",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            kind=ErrorKind.SESSION_EXPIRED,
            message=message,
            details=details
        )


class AuthorizationException(BaseCustomException):
    """권한 부족 예외"""
    def __init__(
        self,
        message: str = "Access denied",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            kind=ErrorKind.FORBIDDEN,
            message=message,
            details=details
        )


class ResourceNotFoundException(BaseCustomException):
    """리소스를 찾을 수 없음 예외"""
    def __init__(
        self,
        resource: str = "Resource",
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if message is None:
            message = f"{resource} not found"

        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            kind=ErrorKind.NOT_FOUND,
            message=message,
            details=details or {"resource": resource}
        )


class ConflictException(BaseCustomException):
    """리소스 충돌 예외"""
    def __init__(
        self,
        message: str = "Resource conflict",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            kind=ErrorKind.CONFLICT,
            message=message,
            details=details
        )


class IncorrectPasswordException(BaseCustomException):
    """방 비밀번호 불일치 예외"""
    def __init__(
        self,
        message: str = "Incorrect password",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            kind=ErrorKind.INCORRECT_PASSWORD,
            message=message,
            details=details
        )


class ConnectivityException(BaseCustomException):
    """백엔드 연결 실패 예외"""
    def __init__(
        self,
        message: str = "Please check your internet connection and try again",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            kind=ErrorKind.NETWORK,
            message=message,
            details=details
        )


class ExternalServiceException(BaseCustomException):
    """외부 서비스 에러 예외"""
    def __init__(
        self,
        message: str = "External service error",
        kind: ErrorKind = ErrorKind.BACKEND,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            kind=kind,
            message=message,
            details=details
        )


# =============================================================================
# 에러 헬퍼 함수들
# =============================================================================

def exception_for(
    kind: ErrorKind,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> BaseCustomException:
    """에러 종류에 맞는 예외 인스턴스 생성"""
    message = message or NOTICES[kind].description

    if kind is ErrorKind.VALIDATION:
        return ValidationException(message, details=details)
    if kind is ErrorKind.SESSION_EXPIRED:
        return AuthenticationException(message, details=details)
    if kind is ErrorKind.NETWORK:
        return ConnectivityException(message, details=details)
    if kind is ErrorKind.NOT_FOUND:
        return ResourceNotFoundException(message=message, details=details)
    if kind is ErrorKind.CONFLICT:
        return ConflictException(message, details=details)
    if kind is ErrorKind.FORBIDDEN:
        return AuthorizationException(message, details=details)
    if kind is ErrorKind.INCORRECT_PASSWORD:
        return IncorrectPasswordException(message, details=details)
    return ExternalServiceException(message, kind=kind, details=details)


def create_error_response(
    kind: ErrorKind,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None
) -> ErrorResponse:
    """표준 에러 응답 생성"""
    template = NOTICES[kind]
    return ErrorResponse(
        error=kind.value,
        message=message,
        notice=Notice(
            title=template.title,
            description=message,
            variant="destructive",
            action=template.action,
        ),
        redirect=REDIRECTS.get(kind),
        details=details,
        status_code=status_code,
    )


def success_notice(title: str, description: str) -> Notice:
    """성공 알림 생성"""
    return Notice(title=title, description=description)


# =============================================================================
# 자주 사용되는 에러 팩토리 함수들
# =============================================================================

def room_not_found_error(room_id: Optional[str] = None):
    """채팅방을 찾을 수 없음 에러"""
    details = {"room_id": room_id} if room_id else None
    return ResourceNotFoundException("Room", details=details)


def display_name_taken_error():
    """표시 이름 중복 에러"""
    return ConflictException("This specific name tag is taken. Please try again.")


def not_room_owner_error():
    """방장이 아닌 경우 에러"""
    return AuthorizationException("Only the room owner can do that")


def not_room_member_error():
    """방 멤버가 아닌 경우 에러"""
    return AuthorizationException("Please join the room to view messages.")
