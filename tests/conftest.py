import asyncio
import json
import time
import uuid
import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional
from urllib.parse import unquote

import httpx
from httpx import AsyncClient, ASGITransport
from jose import jwt

from roomy.backend.client import BackendClient
from roomy.backend.realtime import RealtimeClient
from roomy.main import app
from roomy.services.room_session import RoomSessionRegistry
from roomy.services.session_service import SessionContext, SessionStore


BACKEND_URL = "http://backend.test"
ANON_KEY = "anon-key"
JWT_SECRET = "test-jwt-secret"


def make_token(user_id: str, expires_in: int = 3600) -> str:
    """테스트용 액세스 토큰 (exp 클레임 포함)"""
    return jwt.encode(
        {"sub": user_id, "exp": int(time.time()) + expires_in, "role": "authenticated"},
        JWT_SECRET,
        algorithm="HS256",
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error(status_code: int, code: str, message: str) -> httpx.Response:
    return httpx.Response(status_code, json={"code": code, "message": message})


class FakeBackend:
    """
    관리형 백엔드 대역 (httpx.MockTransport 핸들러)

    테이블(rooms, room_members, room_secrets, messages, profiles), RPC,
    익명 인증, 객체 스토리지를 메모리에서 흉내냅니다.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            "rooms": [],
            "room_members": [],
            "room_secrets": [],
            "messages": [],
            "profiles": [],
        }
        self.tokens: Dict[str, str] = {}
        self.refresh_tokens: Dict[str, str] = {}
        self.storage: Dict[str, bytes] = {}
        self.calls: List[httpx.Request] = []
        self.failures: List[tuple] = []
        self.signed_out: List[str] = []

    # -------------------------------------------------------------------------
    # 테스트 헬퍼
    # -------------------------------------------------------------------------

    def fail(self, method: str, path: str, status_code: int = 500, code: str = "XX000",
             message: str = "Injected failure", transport_error: bool = False):
        """다음 요청 하나를 실패시킴 (path 는 부분 문자열 일치)"""
        self.failures.append((method, path, status_code, code, message, transport_error))

    def calls_to(self, method: str, path: str) -> List[httpx.Request]:
        return [
            request for request in self.calls
            if request.method == method and path in request.url.path
        ]

    def create_user(self, display_name: Optional[str] = None) -> Dict[str, str]:
        user_id = str(uuid.uuid4())
        token = make_token(user_id)
        refresh_token = f"refresh-{uuid.uuid4()}"
        self.tokens[token] = user_id
        self.refresh_tokens[refresh_token] = user_id
        if display_name:
            self.tables["profiles"].append({"id": user_id, "display_name": display_name})
        return {"user_id": user_id, "access_token": token, "refresh_token": refresh_token}

    def seed_room(self, owner_id: str, name: str, password: str, created_at: Optional[str] = None,
                  online_count: int = 0) -> Dict[str, Any]:
        room = {
            "id": str(uuid.uuid4()),
            "name": name,
            "owner_id": owner_id,
            "member_count": 1,
            "online_count": online_count,
            "created_at": created_at or _now(),
        }
        self.tables["rooms"].append(room)
        self.tables["room_secrets"].append({"room_id": room["id"], "password_plaintext": password})
        self.add_member(room["id"], owner_id)
        return room

    def add_member(self, room_id: str, user_id: str, last_seen: Optional[str] = None):
        if self.member(room_id, user_id) is None:
            self.tables["room_members"].append({
                "room_id": room_id,
                "user_id": user_id,
                "joined_at": _now(),
                "last_seen": last_seen or _now(),
            })

    def member(self, room_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        for row in self.tables["room_members"]:
            if row["room_id"] == room_id and row["user_id"] == user_id:
                return row
        return None

    def seed_message(self, room_id: str, user_id: str, content: str,
                     created_at: Optional[str] = None) -> Dict[str, Any]:
        message = {
            "id": str(uuid.uuid4()),
            "room_id": room_id,
            "user_id": user_id,
            "content": content,
            "attachment_url": None,
            "created_at": created_at or _now(),
        }
        self.tables["messages"].append(message)
        return message

    def secret(self, room_id: str) -> Optional[str]:
        for row in self.tables["room_secrets"]:
            if row["room_id"] == room_id:
                return row["password_plaintext"]
        return None

    # -------------------------------------------------------------------------
    # 요청 처리
    # -------------------------------------------------------------------------

    def _current_user(self, request: httpx.Request) -> Optional[str]:
        token = request.headers.get("Authorization", "").replace("Bearer ", "")
        return self.tokens.get(token)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path

        for failure in list(self.failures):
            method, fragment, status_code, code, message, transport_error = failure
            if request.method == method and fragment in path:
                self.failures.remove(failure)
                if transport_error:
                    raise httpx.ConnectError("Connection refused", request=request)
                return _error(status_code, code, message)

        if path.startswith("/auth/v1/"):
            return self._auth(request, path[len("/auth/v1/"):])
        if path.startswith("/rest/v1/rpc/"):
            return self._rpc(request, path[len("/rest/v1/rpc/"):])
        if path.startswith("/rest/v1/"):
            return self._table(request, path[len("/rest/v1/"):])
        if path.startswith("/storage/v1/object/"):
            return self._storage(request, path[len("/storage/v1/object/"):])
        return _error(404, "not_found", f"No route for {path}")

    def _auth(self, request: httpx.Request, action: str) -> httpx.Response:
        if action == "signup":
            user = self.create_user()
            return httpx.Response(200, json={
                "access_token": user["access_token"],
                "refresh_token": user["refresh_token"],
                "user": {"id": user["user_id"]},
            })

        if action == "token":
            body = json.loads(request.content)
            user_id = self.refresh_tokens.get(body.get("refresh_token"))
            if user_id is None:
                return _error(400, "refresh_token_not_found", "Invalid Refresh Token")
            token = make_token(user_id)
            self.tokens[token] = user_id
            return httpx.Response(200, json={
                "access_token": token,
                "refresh_token": body["refresh_token"],
                "user": {"id": user_id},
            })

        if action == "user":
            user_id = self._current_user(request)
            if user_id is None:
                return _error(401, "bad_jwt", "invalid JWT")
            return httpx.Response(200, json={"id": user_id})

        if action == "logout":
            user_id = self._current_user(request)
            if user_id:
                self.signed_out.append(user_id)
            return httpx.Response(204)

        if action == "health":
            return httpx.Response(200, json={"name": "auth"})

        return _error(404, "not_found", action)

    def _rpc(self, request: httpx.Request, name: str) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        user_id = self._current_user(request)
        if user_id is None:
            return _error(401, "PGRST301", "JWT expired")

        if name == "create_room":
            room = self.seed_room(user_id, body["name_input"], body["password_input"])
            return httpx.Response(200, json=room["id"])

        if name == "join_room":
            if self.secret(body["room_id"]) != body["password_input"]:
                return httpx.Response(200, json=False)
            self.add_member(body["room_id"], user_id)
            return httpx.Response(200, json=True)

        if name == "join_room_by_name":
            for room in self.tables["rooms"]:
                if room["name"] == body["name_input"] and self.secret(room["id"]) == body["password_input"]:
                    self.add_member(room["id"], user_id)
                    return httpx.Response(200, json=room["id"])
            return httpx.Response(200, json=None)

        return _error(404, "PGRST202", f"Could not find the function {name}")

    def _filters(self, request: httpx.Request) -> List[tuple]:
        filters = []
        for key, value in request.url.params.multi_items():
            if key in ("select", "order", "limit", "on_conflict"):
                continue
            operator, _, operand = value.partition(".")
            filters.append((key, operator, operand))
        return filters

    @staticmethod
    def _matches(row: Dict[str, Any], filters: List[tuple]) -> bool:
        for column, operator, operand in filters:
            value = row.get(column)
            if operator == "eq" and str(value) != operand:
                return False
            if operator == "gte":
                if value is None:
                    return False
                if datetime.fromisoformat(str(value)) < datetime.fromisoformat(operand.replace(" ", "+")):
                    return False
        return True

    def _embed(self, table: str, rows: List[Dict[str, Any]], select: str) -> List[Dict[str, Any]]:
        result = []
        for row in rows:
            row = dict(row)
            if table == "rooms" and "online_count" not in select:
                row.pop("online_count", None)
            if table == "messages" and "profiles(" in select:
                profile = next(
                    (p for p in self.tables["profiles"] if p["id"] == row["user_id"]), None
                )
                row["profiles"] = {"display_name": profile["display_name"]} if profile else None
            result.append(row)
        return result

    def _table(self, request: httpx.Request, table: str) -> httpx.Response:
        if table not in self.tables:
            return _error(404, "42P01", f'relation "{table}" does not exist')

        rows = self.tables[table]
        filters = self._filters(request)
        params = request.url.params

        if request.method == "GET":
            selected = [row for row in rows if self._matches(row, filters)]
            if "order" in params:
                column, _, direction = params["order"].partition(".")
                selected.sort(key=lambda row: row[column], reverse=direction == "desc")
            if "limit" in params:
                selected = selected[:int(params["limit"])]
            selected = self._embed(table, selected, params.get("select", "*"))

            if request.headers.get("Accept") == "application/vnd.pgrst.object+json":
                if len(selected) != 1:
                    return _error(406, "PGRST116", "JSON object requested, multiple (or no) rows returned")
                return httpx.Response(200, json=selected[0])
            return httpx.Response(200, json=selected)

        if request.method == "POST":
            values = json.loads(request.content)
            values = values if isinstance(values, list) else [values]
            upsert = "merge-duplicates" in request.headers.get("Prefer", "")
            inserted = []
            for value in values:
                row = dict(value)
                if table == "profiles":
                    taken = [
                        p for p in rows
                        if p["display_name"] == row["display_name"] and p["id"] != row["id"]
                    ]
                    if taken:
                        return _error(409, "23505", "duplicate key value violates unique constraint")
                    existing = next((p for p in rows if p["id"] == row["id"]), None)
                    if existing and upsert:
                        existing.update(row)
                        inserted.append(dict(existing))
                        continue
                if table == "messages":
                    row.setdefault("id", str(uuid.uuid4()))
                    row.setdefault("created_at", _now())
                rows.append(row)
                inserted.append(dict(row))
            return httpx.Response(201, json=inserted)

        if request.method == "PATCH":
            values = json.loads(request.content)
            updated = []
            for row in rows:
                if self._matches(row, filters):
                    row.update(values)
                    updated.append(dict(row))
            return httpx.Response(200, json=updated)

        if request.method == "DELETE":
            deleted = [row for row in rows if self._matches(row, filters)]
            self.tables[table] = [row for row in rows if not self._matches(row, filters)]
            if table == "rooms":
                # 방 삭제 시 멤버/메시지/비밀번호 함께 삭제
                room_ids = {row["id"] for row in deleted}
                for child in ("room_members", "messages", "room_secrets"):
                    self.tables[child] = [
                        row for row in self.tables[child] if row["room_id"] not in room_ids
                    ]
            return httpx.Response(200, json=deleted)

        return _error(405, "PGRST000", "Method not allowed")

    def _storage(self, request: httpx.Request, key: str) -> httpx.Response:
        key = unquote(key)
        if request.method == "POST":
            self.storage[key] = request.content
            return httpx.Response(200, json={"Key": key})
        return _error(404, "object_not_found", "Object not found")


class FakeWebSocket:
    """실시간 서비스 WebSocket 대역"""

    def __init__(self, url: str):
        self.url = url
        self.sent: List[Dict[str, Any]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send(self, data: str):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self.incoming.get()
        if frame is None:
            raise StopAsyncIteration
        return frame

    def events(self, event: str) -> List[Dict[str, Any]]:
        return [frame for frame in self.sent if frame["event"] == event]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_backend() -> FakeBackend:
    """메모리 백엔드"""
    return FakeBackend()


@pytest_asyncio.fixture
async def backend(fake_backend) -> AsyncGenerator[BackendClient, None]:
    """가짜 백엔드에 연결된 클라이언트"""
    client = BackendClient(
        BACKEND_URL,
        ANON_KEY,
        transport=httpx.MockTransport(fake_backend.handler),
    )
    yield client
    await client.close()


@pytest.fixture
def fake_sockets() -> List[FakeWebSocket]:
    return []


@pytest_asyncio.fixture
async def realtime(fake_sockets) -> AsyncGenerator[RealtimeClient, None]:
    """가짜 WebSocket 으로 연결되는 실시간 클라이언트"""
    async def connect(url):
        ws = FakeWebSocket(url)
        fake_sockets.append(ws)
        return ws

    client = RealtimeClient("ws://backend.test/realtime/v1/websocket", ANON_KEY, connect=connect)
    yield client
    await client.close()


@pytest.fixture
def session_store(tmp_path) -> SessionStore:
    return SessionStore(str(tmp_path / "session.json"))


@pytest.fixture
def session_context(backend, session_store) -> SessionContext:
    return SessionContext(backend, session_store)


@pytest_asyncio.fixture
async def signed_in(session_context):
    """alice 로 입장한 세션"""
    return await session_context.sign_in("alice")


@pytest_asyncio.fixture
async def other_user(fake_backend) -> Dict[str, str]:
    """다른 사용자 (방장 역할)"""
    return fake_backend.create_user("bob#4321")


@pytest_asyncio.fixture
async def room_sessions(backend, realtime) -> AsyncGenerator[RoomSessionRegistry, None]:
    registry = RoomSessionRegistry(backend, realtime)
    yield registry
    await registry.close_all()


@pytest_asyncio.fixture
async def client(backend, realtime, session_context, room_sessions) -> AsyncGenerator[AsyncClient, None]:
    """테스트용 비동기 HTTP 클라이언트"""
    app.state.backend = backend
    app.state.realtime = realtime
    app.state.session_context = session_context
    app.state.room_sessions = room_sessions

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def stale_timestamp() -> str:
    """온라인 판정 구간 밖의 시각"""
    return (datetime.now(timezone.utc) - timedelta(minutes=5)).isoformat()


@pytest.fixture
def token_factory():
    """만료 시간을 지정한 테스트 토큰 생성기"""
    return make_token
