from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ConfigDict

from roomy.core.errors import Notice


class Message(BaseModel):
    """채팅 메시지 스키마 (작성자 표시 이름 포함)"""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="메시지 ID")
    room_id: str = Field(..., description="채팅방 ID")
    user_id: str = Field(..., description="작성자 ID")
    content: str = Field(default="", description="메시지 내용")
    attachment_url: Optional[str] = Field(None, description="첨부 파일 공개 URL")
    created_at: datetime = Field(..., description="생성일시")
    author_name: Optional[str] = Field(None, description="작성자 표시 이름")

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Message":
        """백엔드 행(내장된 profiles 포함)을 메시지로 변환"""
        data = dict(record)
        profile = data.pop("profiles", None)
        if isinstance(profile, dict) and profile.get("display_name"):
            data.setdefault("author_name", profile["display_name"])
        return cls.model_validate(data)


class MessageView(Message):
    """화면 표시용 메시지"""
    display_name: str = Field(..., description="표시할 이름 (없으면 작성자 ID)")
    initials: str = Field(..., description="아바타 이니셜")
    time_label: str = Field(..., description="HH:MM 형식 시간 (로컬 시간대)")
    is_current_user: bool = Field(..., description="현재 사용자가 보낸 메시지인지")

    @classmethod
    def build(cls, message: Message, current_user_id: Optional[str]) -> "MessageView":
        name = message.author_name or message.user_id
        return cls(
            **message.model_dump(),
            display_name=name.split("@")[0],
            initials=name.split("@")[0][:2].upper(),
            time_label=message.created_at.astimezone().strftime("%H:%M"),
            is_current_user=message.user_id == current_user_id,
        )


class MessageSent(BaseModel):
    """메시지 전송 결과"""
    message: Message
    notice: Optional[Notice] = None
