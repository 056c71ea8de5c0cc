"""
Session bootstrap service.

Keeps the single process-wide session (identity, tokens, display name).
The session token file is the only local state that survives a restart.
"""

import asyncio
import json
import random
import time
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import aiofiles.os
from jose import jwt, JWTError

from roomy.backend.client import BackendClient
from roomy.core.config import settings
from roomy.core.errors import (
    AuthenticationException,
    BaseCustomException,
    ConflictException,
    ConnectivityException,
    display_name_taken_error,
)
from roomy.core.logging import get_logger, log_authentication_event, user_id_var
from roomy.core.validators import Validator
from roomy.schemas.session import Session

logger = get_logger(__name__)

# 만료 직전 토큰은 만료로 간주 (초)
TOKEN_EXPIRY_LEEWAY = 10


def token_expired(access_token: str, leeway: int = TOKEN_EXPIRY_LEEWAY) -> bool:
    """액세스 토큰의 exp 클레임 확인 (서명 검증은 백엔드 몫)"""
    try:
        claims = jwt.get_unverified_claims(access_token)
    except JWTError:
        return True

    exp = claims.get("exp")
    if exp is None:
        return False
    return float(exp) <= time.time() + leeway


def generate_display_name(name: str) -> str:
    """Discord 스타일 접미사 추가 (예: alice#1234)"""
    suffix = random.randint(settings.name_suffix_min, settings.name_suffix_max)
    return f"{name}#{suffix}"


class SessionStore:
    """세션 토큰 파일 저장소"""

    def __init__(self, path: str):
        self.path = Path(path)

    async def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None

        async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
            raw = await f.read()

        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring unreadable session file {self.path}")
            return None

    async def save(self, data: Dict[str, Any]):
        async with aiofiles.open(self.path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data))

    async def clear(self):
        if self.path.exists():
            await aiofiles.os.remove(self.path)


class SessionContext:
    """프로세스 전역 세션 컨텍스트"""

    def __init__(self, backend: BackendClient, store: SessionStore):
        self._backend = backend
        self._store = store
        self._session: Optional[Session] = None
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _activate(self, session: Session):
        self._session = session
        self._backend.set_access_token(session.access_token)
        user_id_var.set(session.user_id)

    async def bootstrap(self) -> Optional[Session]:
        """
        저장된 세션을 한 번만 복원

        Returns:
            복원된 세션 (없거나 만료된 경우 None)
        """
        async with self._lock:
            if self._initialized:
                return self._session
            self._initialized = True

            stored = await self._store.load()
            if not stored:
                return None

            session = Session.model_validate(stored)
            self._activate(session)

            try:
                if token_expired(session.access_token):
                    session = await self._refresh(session)

                user = await self._backend.get_user()
                profile = await self._backend.table("profiles") \
                    .select("display_name") \
                    .eq("id", user["id"]) \
                    .first()
            except ConnectivityException:
                # 오프라인 상태: 저장된 세션 그대로 사용
                logger.warning("Backend unreachable during session bootstrap, using stored session")
                return self._session
            except AuthenticationException:
                await self._clear_local()
                log_authentication_event(logger, "bootstrap", user_id=session.user_id, success=False)
                return None

            session.display_name = (profile or {}).get("display_name") or "Anonymous"
            self._activate(session)
            await self._store.save(session.model_dump())

            log_authentication_event(logger, "bootstrap", user_id=session.user_id, display_name=session.display_name)
            return session

    async def _refresh(self, session: Session) -> Session:
        if not session.refresh_token:
            raise AuthenticationException("Your session has expired")

        auth = await self._backend.refresh_session(session.refresh_token)
        refreshed = Session(
            user_id=auth["user"]["id"],
            access_token=auth["access_token"],
            refresh_token=auth.get("refresh_token", session.refresh_token),
            display_name=session.display_name,
        )
        self._activate(refreshed)
        await self._store.save(refreshed.model_dump())
        log_authentication_event(logger, "refresh", user_id=refreshed.user_id)
        return refreshed

    async def require(self) -> Session:
        """현재 세션 반환 (없거나 갱신 불가하면 session_expired)"""
        session = self._session
        if session is None:
            raise AuthenticationException("Please sign in to continue")

        if token_expired(session.access_token):
            try:
                return await self._refresh(session)
            except AuthenticationException:
                await self._clear_local()
                raise

        return session

    async def sign_in(self, display_name: str) -> Session:
        """표시 이름으로 익명 로그인 후 프로필 저장"""
        name = Validator.validate_display_name(display_name)
        final_display_name = generate_display_name(name)

        auth = await self._backend.sign_in_anonymously()
        user = auth.get("user") or {}
        if not user.get("id"):
            raise AuthenticationException("No user returned")

        self._backend.set_access_token(auth["access_token"])

        try:
            await self._backend.table("profiles").upsert(
                {"id": user["id"], "display_name": final_display_name}
            )
        except ConflictException:
            # 드물게 발생하는 이름 충돌: 익명 사용자는 로그아웃
            log_authentication_event(
                logger, "sign_in", user_id=user["id"], display_name=final_display_name,
                success=False, reason="name_taken"
            )
            await self._discard_backend_session()
            raise display_name_taken_error()
        except BaseCustomException:
            self._backend.set_access_token(None)
            raise

        session = Session(
            user_id=user["id"],
            access_token=auth["access_token"],
            refresh_token=auth.get("refresh_token"),
            display_name=final_display_name,
        )
        self._activate(session)
        self._initialized = True
        await self._store.save(session.model_dump())

        log_authentication_event(logger, "sign_in", user_id=session.user_id, display_name=final_display_name)
        return session

    async def _discard_backend_session(self):
        try:
            await self._backend.sign_out()
        except BaseCustomException as e:
            logger.warning(f"Failed to sign out discarded session: {e.message}")
        finally:
            self._backend.set_access_token(None)

    async def sign_out(self):
        """로그아웃 (백엔드 실패 시에도 로컬 세션은 제거)"""
        user_id = self._session.user_id if self._session else None
        try:
            if self._session is not None:
                await self._backend.sign_out()
        except BaseCustomException as e:
            logger.warning(f"Backend sign-out failed: {e.message}")
        finally:
            await self._clear_local()

        log_authentication_event(logger, "sign_out", user_id=user_id)

    async def invalidate(self):
        """세션 만료 처리 (백엔드 호출 없이 로컬 세션 제거)"""
        if self._session is not None:
            log_authentication_event(logger, "invalidate", user_id=self._session.user_id)
        await self._clear_local()

    async def _clear_local(self):
        self._session = None
        self._backend.set_access_token(None)
        user_id_var.set(None)
        await self._store.clear()
