"""
Message feed service layer.

Loads the recent history of a room and appends messages pushed by the
backend's insert notifications, in the order they arrive.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

from roomy.backend.client import BackendClient
from roomy.core.config import settings
from roomy.core.errors import BaseCustomException
from roomy.core.logging import get_logger
from roomy.schemas.message import Message

logger = get_logger(__name__)

# 메시지와 작성자 표시 이름을 함께 조회
MESSAGE_COLUMNS = "*, profiles(display_name)"


class MessageFeed:
    """채팅방 하나의 메시지 목록"""

    def __init__(
        self,
        backend: BackendClient,
        room_id: str,
        on_append: Optional[Callable[[Message], None]] = None,
        history_limit: Optional[int] = None,
    ):
        self.backend = backend
        self.room_id = room_id
        self.on_append = on_append
        self.history_limit = history_limit or settings.message_history_limit
        self.messages: List[Message] = []
        self._message_ids = set()
        self._author_names: Dict[str, Optional[str]] = {}
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self.closed = False

    # =========================================================================
    # 이력 조회
    # =========================================================================

    async def load_history(self) -> List[Message]:
        """최근 메시지를 생성 시간 오름차순으로 조회"""
        rows = await self.backend.table("messages") \
            .select(MESSAGE_COLUMNS) \
            .eq("room_id", self.room_id) \
            .order("created_at", desc=True) \
            .limit(self.history_limit) \
            .fetch()

        # 최신 N개를 받아 오래된 순으로 뒤집기
        history = [Message.from_record(row) for row in reversed(rows)]

        self.messages = history
        self._message_ids = {message.id for message in history}
        for message in history:
            if message.author_name:
                self._author_names[message.user_id] = message.author_name

        return list(history)

    async def author_name(self, user_id: str) -> Optional[str]:
        """작성자 표시 이름 (캐시 후 필요할 때만 profiles 조회)"""
        if user_id in self._author_names:
            return self._author_names[user_id]

        try:
            profile = await self.backend.table("profiles") \
                .select("display_name") \
                .eq("id", user_id) \
                .first()
        except BaseCustomException as e:
            logger.warning(f"Failed to load profile for {user_id}: {e.message}")
            return None

        name = profile.get("display_name") if profile else None
        self._author_names[user_id] = name
        return name

    # =========================================================================
    # 실시간 수신
    # =========================================================================

    async def receive(self, record: Dict[str, Any]) -> Optional[Message]:
        """
        수신한 메시지 행을 작성자 이름으로 보강해 목록 끝에 추가

        Returns:
            추가된 메시지 (이미 있는 메시지거나 피드가 닫힌 경우 None)
        """
        message = Message.from_record(record)
        if message.room_id != self.room_id or message.id in self._message_ids:
            return None

        if not message.author_name:
            message.author_name = await self.author_name(message.user_id)

        # 보강하는 동안 닫혔거나 같은 메시지가 들어온 경우
        if self.closed or message.id in self._message_ids:
            return None

        self.messages.append(message)
        self._message_ids.add(message.id)

        if self.on_append:
            self.on_append(message)
        return message

    def enqueue(self, data: Dict[str, Any]):
        """INSERT 알림 콜백: 순서 보장을 위해 큐에 적재"""
        record = data.get("record") or data.get("new")
        if record and not self.closed:
            self._queue.put_nowait(record)

    def start(self):
        """큐 소비 태스크 시작"""
        if self._task is None:
            self._task = asyncio.create_task(self._consume())

    async def _consume(self):
        while not self.closed:
            record = await self._queue.get()
            try:
                await self.receive(record)
            except Exception as e:
                logger.error(f"Failed to append message in room {self.room_id}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def drain(self):
        """큐에 쌓인 메시지가 모두 처리될 때까지 대기"""
        await self._queue.join()

    async def close(self):
        self.closed = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
