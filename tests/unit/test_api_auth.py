import pytest
from unittest.mock import patch

from roomy.services.room_directory import RoomDirectory


class TestAuthEndpoints:
    """입장 화면 API 테스트"""

    @pytest.mark.asyncio
    async def test_status_without_session(self, client):
        response = await client.get("/auth")

        assert response.status_code == 200
        assert response.json()["authenticated"] is False

    @pytest.mark.asyncio
    async def test_sign_in(self, client, session_context):
        response = await client.post("/auth", json={"display_name": "alice"})

        assert response.status_code == 201
        data = response.json()
        assert data["display_name"].startswith("alice#")
        assert data["redirect"] == "/"
        assert data["notice"]["title"] == "Welcome!"
        assert session_context.session.user_id == data["user_id"]

    @pytest.mark.asyncio
    async def test_status_redirects_signed_in_user(self, client, signed_in):
        response = await client.get("/auth")

        data = response.json()
        assert data["authenticated"] is True
        assert data["display_name"] == signed_in.display_name
        assert data["redirect"] == "/"

    @pytest.mark.asyncio
    async def test_sign_in_validation_notice(self, client, fake_backend):
        response = await client.post("/auth", json={"display_name": "   "})

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "validation"
        assert data["notice"]["variant"] == "destructive"
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_missing_body_field(self, client):
        response = await client.post("/auth", json={})

        assert response.status_code == 422
        assert response.json()["validation_errors"][0]["field"] == "body.display_name"

    @pytest.mark.asyncio
    async def test_sign_out(self, client, session_context, signed_in):
        response = await client.post("/auth/sign-out")

        assert response.status_code == 200
        assert response.json() == {
            "authenticated": False,
            "user_id": None,
            "display_name": None,
            "redirect": "/auth",
        }
        assert not session_context.is_authenticated

    @pytest.mark.asyncio
    async def test_sign_out_closes_open_rooms(self, client, fake_backend, room_sessions, signed_in):
        """로그아웃하면 열린 채팅방 세션(하트비트, 채널)도 정리"""
        room = fake_backend.seed_room(signed_in.user_id, "live", "abc123")
        room_session = await room_sessions.acquire(room["id"], signed_in)

        response = await client.post("/auth/sign-out")

        assert response.status_code == 200
        assert room_sessions.get(room["id"]) is None
        assert room_session.closed
        assert room_session.presence.stopped


class TestSessionErrors:
    """세션 만료 / 예상하지 못한 에러 처리 테스트"""

    @pytest.mark.asyncio
    async def test_protected_route_without_session(self, client):
        response = await client.get("/")

        assert response.status_code == 401
        data = response.json()
        assert data["error"] == "session_expired"
        assert data["redirect"] == "/auth"

    @pytest.mark.asyncio
    async def test_expired_session_invalidates_context(self, client, fake_backend, session_context, signed_in):
        fake_backend.fail("GET", "/rest/v1/rooms", status_code=401, code="PGRST301", message="JWT expired")

        response = await client.get("/")

        assert response.status_code == 401
        assert response.json()["notice"]["action"] == "reauthenticate"
        assert session_context.session is None

    @pytest.mark.asyncio
    async def test_expired_session_closes_open_rooms(self, client, fake_backend, room_sessions, session_context, signed_in):
        room = fake_backend.seed_room(signed_in.user_id, "live", "abc123")
        room_session = await room_sessions.acquire(room["id"], signed_in)
        fake_backend.fail("GET", "/rest/v1/rooms", status_code=401, code="PGRST301", message="JWT expired")

        response = await client.get("/")

        assert response.status_code == 401
        assert room_sessions.get(room["id"]) is None
        assert room_session.closed

    @pytest.mark.asyncio
    async def test_network_failure_notice(self, client, fake_backend, signed_in):
        fake_backend.fail("GET", "/rest/v1/rooms", transport_error=True)

        response = await client.get("/")

        assert response.status_code == 503
        assert response.json()["notice"]["title"] == "Connection Error"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_generic_notice(self, client, signed_in):
        with patch.object(RoomDirectory, "list_rooms", side_effect=RuntimeError("boom")):
            response = await client.get("/")

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "unknown"
        assert data["notice"]["title"] == "Unexpected Error"
