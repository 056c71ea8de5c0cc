from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

from roomy.core.errors import Notice
from .message import MessageView


class Room(BaseModel):
    """채팅방 스키마"""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="채팅방 ID")
    name: str = Field(..., description="채팅방 이름")
    member_count: int = Field(default=0, description="멤버 수")
    online_count: Optional[int] = Field(None, description="접속 중인 멤버 수")
    owner_id: str = Field(..., description="방장 ID")
    created_at: datetime = Field(..., description="생성일시")


class RoomSummary(Room):
    """방 목록 항목"""
    can_delete: bool = Field(default=False, description="삭제 가능 여부 (방장만)")


class DirectoryView(BaseModel):
    """방 목록 화면"""
    user_id: str
    display_name: str
    rooms: List[RoomSummary] = Field(default_factory=list)


class RoomCreate(BaseModel):
    """채팅방 생성 요청"""
    name: str = Field(..., description="채팅방 이름")


class RoomCreated(BaseModel):
    """채팅방 생성 결과 (비밀번호는 이때 한 번만 노출)"""
    room_id: str
    password: str
    notice: Notice


class RoomJoinRequest(BaseModel):
    """비밀번호로 채팅방 참여 요청"""
    password: str = Field(..., description="방 비밀번호")


class RoomJoinByNameRequest(BaseModel):
    """방 이름 + 비밀번호로 참여 요청"""
    name: str = Field(..., description="채팅방 이름")
    password: str = Field(..., description="방 비밀번호")


class RoomJoined(BaseModel):
    """참여 결과"""
    room_id: str
    notice: Notice


class RoomDeleted(BaseModel):
    """삭제 결과"""
    room_id: str
    notice: Notice
    redirect: str = "/"


class RoomLeft(BaseModel):
    """나가기 결과"""
    room_id: str
    notice: Notice
    redirect: str = "/"


class RoomView(BaseModel):
    """채팅방 화면"""
    room: Room
    is_member: bool
    is_owner: bool
    can_delete: bool
    actions: List[str] = Field(default_factory=list, description="사용 가능한 동작")
    password: Optional[str] = Field(None, description="방 비밀번호 (방장에게만)")
    online_count: Optional[int] = None
    messages: List[MessageView] = Field(default_factory=list)
