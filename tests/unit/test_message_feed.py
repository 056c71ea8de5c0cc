import time
import pytest

from roomy.schemas.message import MessageView
from roomy.services.message_feed import MessageFeed


@pytest.fixture
def room(fake_backend, signed_in):
    return fake_backend.seed_room(signed_in.user_id, "feed", "abc123")


@pytest.fixture
def kst_timezone(monkeypatch):
    """로컬 시간대를 UTC+9 로 고정"""
    monkeypatch.setenv("TZ", "KST-9")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def _insert_event(record):
    return {"type": "INSERT", "schema": "public", "table": "messages", "record": record}


class TestHistory:
    """메시지 이력 조회 테스트"""

    @pytest.mark.asyncio
    async def test_history_ascending_with_author(self, backend, fake_backend, room, signed_in):
        fake_backend.seed_message(room["id"], signed_in.user_id, "second", created_at="2024-01-01T10:01:00+00:00")
        fake_backend.seed_message(room["id"], signed_in.user_id, "first", created_at="2024-01-01T10:00:00+00:00")

        history = await MessageFeed(backend, room["id"]).load_history()

        assert [message.content for message in history] == ["first", "second"]
        assert history[0].author_name == signed_in.display_name

    @pytest.mark.asyncio
    async def test_history_keeps_most_recent(self, backend, fake_backend, room, signed_in):
        for minute in range(60):
            fake_backend.seed_message(
                room["id"], signed_in.user_id, f"m{minute}",
                created_at=f"2024-01-01T10:{minute:02d}:00+00:00",
            )

        history = await MessageFeed(backend, room["id"]).load_history()

        assert len(history) == 50
        assert history[0].content == "m10"
        assert history[-1].content == "m59"


class TestLiveMessages:
    """실시간 메시지 수신 테스트"""

    @pytest.mark.asyncio
    async def test_arrival_order_preserved(self, backend, fake_backend, room, other_user):
        appended = []
        feed = MessageFeed(backend, room["id"], on_append=appended.append)
        await feed.load_history()
        feed.start()

        for content in ("a", "b", "c"):
            record = dict(fake_backend.seed_message(room["id"], other_user["user_id"], content))
            feed.enqueue(_insert_event(record))

        await feed.drain()
        await feed.close()

        assert [message.content for message in feed.messages] == ["a", "b", "c"]
        assert [message.content for message in appended] == ["a", "b", "c"]
        assert all(message.author_name == "bob#4321" for message in appended)

    @pytest.mark.asyncio
    async def test_author_profile_fetched_once(self, backend, fake_backend, room, other_user):
        feed = MessageFeed(backend, room["id"])

        for content in ("x", "y"):
            await feed.receive(fake_backend.seed_message(room["id"], other_user["user_id"], content))

        assert len(fake_backend.calls_to("GET", "/rest/v1/profiles")) == 1

    @pytest.mark.asyncio
    async def test_duplicate_message_dropped(self, backend, fake_backend, room, signed_in):
        existing = fake_backend.seed_message(room["id"], signed_in.user_id, "hello")
        feed = MessageFeed(backend, room["id"])
        await feed.load_history()

        assert await feed.receive(dict(existing)) is None
        assert len(feed.messages) == 1

    @pytest.mark.asyncio
    async def test_closed_feed_ignores_messages(self, backend, fake_backend, room, signed_in):
        feed = MessageFeed(backend, room["id"])
        await feed.close()

        feed.enqueue(_insert_event(fake_backend.seed_message(room["id"], signed_in.user_id, "late")))

        assert await feed.receive(fake_backend.seed_message(room["id"], signed_in.user_id, "late2")) is None
        assert feed.messages == []


class TestMessageView:
    """메시지 표시 모델 테스트"""

    @pytest.mark.asyncio
    async def test_view_fields(self, backend, fake_backend, room, signed_in, kst_timezone):
        fake_backend.seed_message(room["id"], signed_in.user_id, "hi", created_at="2024-01-01T09:05:00+00:00")
        message = (await MessageFeed(backend, room["id"]).load_history())[0]

        view = MessageView.build(message, signed_in.user_id)

        assert view.time_label == "18:05"
        assert view.initials == signed_in.display_name[:2].upper()
        assert view.is_current_user is True
        assert MessageView.build(message, "someone-else").is_current_user is False
