"""
접속 현황 서비스

"온라인" 판정 방식은 하나만 사용합니다 (settings.presence_mode).
    - heartbeat: room_members.last_seen 을 주기적으로 갱신하고 일정 구간 내 갱신한 멤버를 온라인으로 판정
    - live: 실시간 채널의 접속 추적(presence) 상태로 판정
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from roomy.backend.client import BackendClient
from roomy.backend.realtime import RealtimeChannel
from roomy.core.config import settings
from roomy.core.errors import BaseCustomException
from roomy.core.logging import get_logger
from roomy.schemas.room import Room
from roomy.schemas.session import Session

logger = get_logger(__name__)

HEARTBEAT_MODE = "heartbeat"
LIVE_MODE = "live"


def directory_online_count(room: Room) -> Optional[int]:
    """
    방 목록에 표시할 접속 수

    heartbeat 방식에서는 백엔드가 같은 판정 구간으로 계산한 online_count 를 사용하고,
    live 방식에서는 참여하지 않은 방의 실시간 상태를 알 수 없으므로 표시하지 않습니다.
    """
    if settings.presence_mode == HEARTBEAT_MODE:
        return room.online_count or 0
    return None


class PresenceTracker(ABC):
    """열린 채팅방 하나의 접속 현황 추적"""

    mode: str = ""

    def __init__(
        self,
        backend: BackendClient,
        session: Session,
        on_change: Optional[Callable[[int], None]] = None,
    ):
        self.backend = backend
        self.session = session
        self.on_change = on_change
        self.room_id: Optional[str] = None
        self.online_count: Optional[int] = None
        self.stopped = False

    def bind(self, channel: RealtimeChannel):
        """채널 구독 전에 필요한 콜백 등록"""

    @abstractmethod
    async def start(self, room_id: str):
        """추적 시작"""

    @abstractmethod
    async def stop(self):
        """추적 중지"""

    def _publish(self, count: int):
        if self.stopped or count == self.online_count:
            return
        self.online_count = count
        if self.on_change:
            self.on_change(count)


class HeartbeatPresence(PresenceTracker):
    """last_seen 갱신 기반 접속 현황"""

    mode = HEARTBEAT_MODE

    def __init__(
        self,
        backend: BackendClient,
        session: Session,
        on_change: Optional[Callable[[int], None]] = None,
        interval: Optional[float] = None,
        window_minutes: Optional[int] = None,
    ):
        super().__init__(backend, session, on_change)
        self.interval = interval or settings.heartbeat_interval
        self.window = timedelta(minutes=window_minutes or settings.online_window_minutes)
        self._task: Optional[asyncio.Task] = None

    async def touch(self):
        """내 멤버십의 last_seen 갱신"""
        await self.backend.table("room_members") \
            .eq("room_id", self.room_id) \
            .eq("user_id", self.session.user_id) \
            .update({"last_seen": datetime.now(timezone.utc).isoformat()})

    async def count_online(self) -> int:
        """판정 구간 안에 last_seen 이 갱신된 멤버 수"""
        cutoff = datetime.now(timezone.utc) - self.window
        rows = await self.backend.table("room_members") \
            .select("user_id") \
            .eq("room_id", self.room_id) \
            .gte("last_seen", cutoff) \
            .fetch()
        return len({row["user_id"] for row in rows})

    async def beat(self):
        await self.touch()
        count = await self.count_online()
        self._publish(count)

    async def start(self, room_id: str):
        self.room_id = room_id
        self.stopped = False
        await self._safe_beat()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Heartbeat presence started for room {room_id}")

    async def _safe_beat(self):
        try:
            await self.beat()
        except BaseCustomException as e:
            # 다음 주기에 다시 시도
            logger.warning(f"Heartbeat for room {self.room_id} failed: {e.message}")

    async def _run(self):
        while not self.stopped:
            await asyncio.sleep(self.interval)
            if self.stopped:
                break
            await self._safe_beat()

    async def stop(self):
        self.stopped = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info(f"Heartbeat presence stopped for room {self.room_id}")


class LivePresence(PresenceTracker):
    """실시간 채널 접속 추적 기반 접속 현황"""

    mode = LIVE_MODE

    def __init__(
        self,
        backend: BackendClient,
        session: Session,
        on_change: Optional[Callable[[int], None]] = None,
    ):
        super().__init__(backend, session, on_change)
        self._channel: Optional[RealtimeChannel] = None

    def bind(self, channel: RealtimeChannel):
        self._channel = channel
        channel.on_presence_sync(self._on_sync)

    def _on_sync(self, state):
        # 키 = 사용자 ID 이므로 키 개수가 서로 다른 접속자 수
        self._publish(len(state))

    async def start(self, room_id: str):
        if self._channel is None:
            raise RuntimeError("LivePresence must be bound to a channel before start")

        self.room_id = room_id
        self.stopped = False
        await self._channel.track({
            "user_id": self.session.user_id,
            "display_name": self.session.display_name,
            "online_at": datetime.now(timezone.utc).isoformat(),
        })
        logger.info(f"Live presence tracking started for room {room_id}")

    async def stop(self):
        self.stopped = True
        logger.info(f"Live presence tracking stopped for room {self.room_id}")


def create_presence_tracker(
    backend: BackendClient,
    session: Session,
    on_change: Optional[Callable[[int], None]] = None,
    mode: Optional[str] = None,
) -> PresenceTracker:
    """설정된 방식의 접속 현황 추적기 생성"""
    mode = mode or settings.presence_mode
    if mode == LIVE_MODE:
        return LivePresence(backend, session, on_change)
    return HeartbeatPresence(backend, session, on_change)
