from typing import Optional, Any

from .config import settings
from .errors import ValidationException, ValidationError


class Validator:
    """입력 검증을 위한 유틸리티 클래스"""

    @staticmethod
    def validate_required(value: Any, field_name: str, message: Optional[str] = None) -> Any:
        """필수 필드 검증"""
        if value is None or (isinstance(value, str) and value.strip() == ""):
            raise ValidationException(
                message or f"{field_name} is required",
                validation_errors=[
                    ValidationError(field=field_name, message="This field is required", value=value)
                ]
            )
        return value

    @staticmethod
    def validate_string_length(
        value: str,
        field_name: str,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None,
        message: Optional[str] = None
    ) -> str:
        """문자열 길이 검증"""
        errors = []

        if min_length and len(value) < min_length:
            errors.append(
                ValidationError(
                    field=field_name,
                    message=f"Must be at least {min_length} characters long",
                    value=len(value)
                )
            )

        if max_length and len(value) > max_length:
            errors.append(
                ValidationError(
                    field=field_name,
                    message=f"Must be no more than {max_length} characters long",
                    value=len(value)
                )
            )

        if errors:
            raise ValidationException(
                message or f"{field_name} length validation failed",
                validation_errors=errors
            )

        return value

    @staticmethod
    def validate_room_name(name: Optional[str]) -> str:
        """방 이름 검증 (앞뒤 공백 제거 후 반환)"""
        trimmed = (name or "").strip()
        Validator.validate_required(trimmed, "name", "Room name cannot be empty")
        return Validator.validate_string_length(
            trimmed,
            "name",
            max_length=settings.max_room_name_length,
            message=f"Room name must be {settings.max_room_name_length} characters or less"
        )

    @staticmethod
    def validate_display_name(name: Optional[str]) -> str:
        """표시 이름 검증 (앞뒤 공백 제거 후 반환)"""
        trimmed = (name or "").strip()
        Validator.validate_required(trimmed, "display_name", "Please enter a display name")
        return Validator.validate_string_length(
            trimmed,
            "display_name",
            max_length=settings.max_display_name_length,
            message=f"Display name must be {settings.max_display_name_length} characters or less"
        )

    @staticmethod
    def validate_room_password(password: Optional[str]) -> str:
        """방 비밀번호 입력 검증"""
        trimmed = (password or "").strip()
        return Validator.validate_required(trimmed, "password", "Please enter the room password")

    @staticmethod
    def validate_message_content(content: Optional[str]) -> str:
        """메시지 내용 검증 (빈 문자열 허용, 길이 제한)"""
        trimmed = (content or "").strip()
        return Validator.validate_string_length(
            trimmed,
            "content",
            max_length=settings.max_message_length,
            message=f"Message must be {settings.max_message_length} characters or less"
        )

    @staticmethod
    def validate_attachment_size(size: int, field_name: str = "file") -> int:
        """첨부 파일 크기 검증"""
        if size > settings.max_attachment_size:
            raise ValidationException(
                f"File size exceeds maximum limit of {settings.max_attachment_size // (1024 * 1024)}MB",
                validation_errors=[
                    ValidationError(field=field_name, message="File too large", value=size)
                ]
            )
        return size
