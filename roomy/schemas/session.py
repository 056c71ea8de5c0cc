from typing import Optional
from pydantic import BaseModel, Field

from roomy.core.errors import Notice


class Session(BaseModel):
    """현재 로그인 세션"""
    user_id: str = Field(..., description="사용자 ID")
    access_token: str
    refresh_token: Optional[str] = None
    display_name: Optional[str] = Field(None, description="표시 이름 (#접미사 포함)")


class SignInRequest(BaseModel):
    """표시 이름으로 입장 요청"""
    display_name: str = Field(..., description="표시 이름")


class SessionStatus(BaseModel):
    """세션 상태"""
    authenticated: bool
    user_id: Optional[str] = None
    display_name: Optional[str] = None
    redirect: Optional[str] = None


class SignedIn(BaseModel):
    """입장 결과"""
    user_id: str
    display_name: str
    notice: Notice
    redirect: str = "/"
