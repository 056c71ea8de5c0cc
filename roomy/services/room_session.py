"""
열린 채팅방 세션

채팅방 하나의 실시간 채널, 메시지 피드, 접속 현황 추적기와
이벤트 스트림 구독자들을 묶어 관리합니다.
"""

import asyncio
from typing import Any, Dict, Optional, Set

from roomy.backend.client import BackendClient
from roomy.backend.realtime import RealtimeChannel, RealtimeClient
from roomy.core.logging import get_logger
from roomy.schemas.message import Message, MessageView
from roomy.schemas.session import Session
from roomy.services.message_feed import MessageFeed
from roomy.services.presence import PresenceTracker, create_presence_tracker

logger = get_logger(__name__)


def room_channel_name(room_id: str) -> str:
    return f"room-{room_id}"


class RoomSession:
    """열린 채팅방 하나"""

    def __init__(
        self,
        room_id: str,
        backend: BackendClient,
        realtime: RealtimeClient,
        session: Session,
        presence: Optional[PresenceTracker] = None,
    ):
        self.room_id = room_id
        self.backend = backend
        self.realtime = realtime
        self.session = session
        self.feed = MessageFeed(backend, room_id, on_append=self._on_message)
        self.presence = presence or create_presence_tracker(backend, session, on_change=self._on_presence)
        if self.presence.on_change is None:
            self.presence.on_change = self._on_presence
        self.channel: Optional[RealtimeChannel] = None
        self.listeners: Set[asyncio.Queue] = set()
        self.closed = False

    async def open(self):
        """
        채널 구독 후 이력 조회, 그 다음 수신 처리 시작

        구독과 이력 조회 사이에 도착한 메시지는 큐에 쌓였다가
        이력과 중복되면 버려집니다.
        """
        channel = self.realtime.channel(room_channel_name(self.room_id))
        channel.on_postgres_changes(
            "INSERT",
            "messages",
            self.feed.enqueue,
            filter=f"room_id=eq.{self.room_id}",
        )
        self.presence.bind(channel)
        self.channel = channel

        await channel.subscribe(
            access_token=self.session.access_token,
            presence_key=self.session.user_id,
        )
        await self.feed.load_history()
        self.feed.start()
        await self.presence.start(self.room_id)

        logger.info(f"Room session opened for room {self.room_id}")

    # =========================================================================
    # 이벤트 스트림 구독자
    # =========================================================================

    def add_listener(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self.listeners.add(queue)
        return queue

    def remove_listener(self, queue: asyncio.Queue):
        self.listeners.discard(queue)

    def _broadcast(self, event: str, data: Dict[str, Any]):
        if self.closed:
            return
        for queue in list(self.listeners):
            queue.put_nowait({"event": event, "data": data})

    def _on_message(self, message: Message):
        view = MessageView.build(message, self.session.user_id)
        self._broadcast("message", view.model_dump(mode="json"))

    def _on_presence(self, count: int):
        self._broadcast("presence", {"room_id": self.room_id, "online_count": count})

    @property
    def online_count(self) -> Optional[int]:
        return self.presence.online_count

    async def close(self):
        """채널, 접속 현황, 피드 정리 (이후 도착하는 결과는 무시)"""
        if self.closed:
            return
        self.closed = True
        for queue in list(self.listeners):
            queue.put_nowait({"event": "closed", "data": {"room_id": self.room_id}})
        self.listeners.clear()

        await self.presence.stop()
        await self.feed.close()
        if self.channel is not None:
            try:
                await self.channel.unsubscribe()
            except Exception as e:
                logger.warning(f"Failed to leave realtime channel for room {self.room_id}: {e}")
            self.channel = None

        logger.info(f"Room session closed for room {self.room_id}")


class RoomSessionRegistry:
    """채팅방별 세션 하나 (이벤트 스트림 수로 참조 계수)"""

    def __init__(self, backend: BackendClient, realtime: RealtimeClient):
        self.backend = backend
        self.realtime = realtime
        self._sessions: Dict[str, RoomSession] = {}
        self._refs: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    def get(self, room_id: str) -> Optional[RoomSession]:
        return self._sessions.get(room_id)

    def ref_count(self, room_id: str) -> int:
        return self._refs.get(room_id, 0)

    async def acquire(self, room_id: str, session: Session) -> RoomSession:
        """채팅방 세션 획득 (없으면 생성)"""
        async with self._lock:
            room_session = self._sessions.get(room_id)
            if room_session is None:
                room_session = RoomSession(room_id, self.backend, self.realtime, session)
                try:
                    await room_session.open()
                except Exception:
                    await room_session.close()
                    raise
                self._sessions[room_id] = room_session
                self._refs[room_id] = 0

            self._refs[room_id] += 1
            return room_session

    async def release(self, room_id: str):
        """채팅방 세션 반환 (마지막 구독자면 정리)"""
        async with self._lock:
            if room_id not in self._refs:
                return

            self._refs[room_id] -= 1
            if self._refs[room_id] > 0:
                return

            del self._refs[room_id]
            room_session = self._sessions.pop(room_id)

        await room_session.close()

    async def close_room(self, room_id: str):
        """구독자 수와 관계없이 세션 정리 (방 삭제/나가기)"""
        async with self._lock:
            self._refs.pop(room_id, None)
            room_session = self._sessions.pop(room_id, None)

        if room_session is not None:
            await room_session.close()

    async def close_all(self):
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._refs.clear()

        for room_session in sessions:
            await room_session.close()
