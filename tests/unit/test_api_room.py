import pytest


@pytest.fixture
def theirs(fake_backend, other_user):
    return fake_backend.seed_room(other_user["user_id"], "theirs", "abc123")


class TestRoomView:
    """채팅방 화면 API 테스트"""

    @pytest.mark.asyncio
    async def test_non_member_sees_password_prompt(self, client, theirs, signed_in):
        response = await client.get(f"/room/{theirs['id']}")

        assert response.status_code == 200
        data = response.json()
        assert data["is_member"] is False
        assert data["actions"] == ["join"]
        assert data["password"] is None
        assert data["messages"] == []

    @pytest.mark.asyncio
    async def test_delete_action_absent_for_non_owner(self, client, fake_backend, theirs, signed_in, other_user):
        fake_backend.add_member(theirs["id"], signed_in.user_id)
        fake_backend.seed_message(theirs["id"], other_user["user_id"], "welcome")

        data = (await client.get(f"/room/{theirs['id']}")).json()

        assert data["is_member"] is True
        assert data["can_delete"] is False
        assert "delete" not in data["actions"]
        assert data["password"] is None
        assert [message["content"] for message in data["messages"]] == ["welcome"]
        assert data["messages"][0]["display_name"] == "bob#4321"

    @pytest.mark.asyncio
    async def test_owner_sees_password_and_delete(self, client, signed_in):
        created = (await client.post("/rooms", json={"name": "mine"})).json()

        data = (await client.get(f"/room/{created['room_id']}")).json()

        assert data["is_owner"] is True
        assert data["can_delete"] is True
        assert "delete" in data["actions"]
        assert data["password"] == created["password"]

    @pytest.mark.asyncio
    async def test_missing_room(self, client, signed_in):
        response = await client.get("/room/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestRoomMembership:
    """채팅방 참여 / 나가기 API 테스트"""

    @pytest.mark.asyncio
    async def test_join_with_password(self, client, fake_backend, theirs, signed_in):
        response = await client.post(f"/room/{theirs['id']}/join", json={"password": "abc123"})

        assert response.status_code == 200
        assert response.json()["notice"]["title"] == "Joined room!"
        assert fake_backend.member(theirs["id"], signed_in.user_id) is not None

    @pytest.mark.asyncio
    async def test_wrong_password_rejected(self, client, fake_backend, theirs, signed_in):
        response = await client.post(f"/room/{theirs['id']}/join", json={"password": "wrong1"})

        assert response.status_code == 403
        assert response.json()["notice"]["title"] == "Incorrect Password"
        assert fake_backend.member(theirs["id"], signed_in.user_id) is None

    @pytest.mark.asyncio
    async def test_leave(self, client, fake_backend, theirs, signed_in):
        fake_backend.add_member(theirs["id"], signed_in.user_id)

        response = await client.post(f"/room/{theirs['id']}/leave")

        assert response.status_code == 200
        assert response.json()["redirect"] == "/"
        assert fake_backend.member(theirs["id"], signed_in.user_id) is None

    @pytest.mark.asyncio
    async def test_events_require_membership(self, client, theirs, signed_in):
        response = await client.get(f"/room/{theirs['id']}/events")

        assert response.status_code == 403
        assert response.json()["message"] == "Please join the room to view messages."


class TestSendMessage:
    """메시지 전송 API 테스트"""

    @pytest.mark.asyncio
    async def test_send_text(self, client, fake_backend, theirs, signed_in):
        fake_backend.add_member(theirs["id"], signed_in.user_id)

        response = await client.post(f"/room/{theirs['id']}/messages", data={"content": "hello"})

        assert response.status_code == 201
        assert response.json()["message"]["content"] == "hello"
        assert fake_backend.tables["messages"][0]["user_id"] == signed_in.user_id

    @pytest.mark.asyncio
    async def test_send_with_attachment(self, client, fake_backend, theirs, signed_in):
        response = await client.post(
            f"/room/{theirs['id']}/messages",
            data={"content": ""},
            files={"file": ("cat.png", b"\x89PNG", "image/png")},
        )

        assert response.status_code == 201
        url = response.json()["message"]["attachment_url"]
        assert url.startswith(f"http://backend.test/storage/v1/object/public/chat-attachments/{signed_in.user_id}/")
        assert url.endswith(".png")

    @pytest.mark.asyncio
    async def test_empty_submission(self, client, fake_backend, theirs, signed_in):
        response = await client.post(f"/room/{theirs['id']}/messages", data={"content": "  "})

        assert response.status_code == 422
        assert fake_backend.tables["messages"] == []

    @pytest.mark.asyncio
    async def test_oversized_attachment_not_uploaded(self, client, fake_backend, theirs, signed_in):
        response = await client.post(
            f"/room/{theirs['id']}/messages",
            files={"file": ("big.bin", b"0" * (5 * 1024 * 1024 + 1), "application/octet-stream")},
        )

        assert response.status_code == 422
        assert fake_backend.storage == {}
        assert fake_backend.calls_to("POST", "/storage/v1/object") == []


class TestDeleteRoom:
    """채팅방 화면에서 삭제 API 테스트"""

    @pytest.mark.asyncio
    async def test_owner_delete_redirects_to_directory(self, client, fake_backend, signed_in):
        room = fake_backend.seed_room(signed_in.user_id, "mine", "abc123")

        response = await client.delete(f"/room/{room['id']}", params={"confirm": "true"})

        assert response.status_code == 200
        assert response.json()["redirect"] == "/"
        assert fake_backend.tables["rooms"] == []

    @pytest.mark.asyncio
    async def test_non_owner_delete_forbidden(self, client, fake_backend, theirs, signed_in):
        response = await client.delete(f"/room/{theirs['id']}", params={"confirm": "true"})

        assert response.status_code == 403
        assert len(fake_backend.tables["rooms"]) == 1
