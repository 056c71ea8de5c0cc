"""
실시간 변경 알림 / 접속 현황 클라이언트

관리형 백엔드의 실시간 서비스(Phoenix 채널 프로토콜)에 WebSocket 으로 연결합니다.
프레임은 하나의 수신 태스크가 도착 순서대로 채널에 전달합니다.
"""

import asyncio
import inspect
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from roomy.core.errors import ConnectivityException
from roomy.core.logging import get_logger, log_realtime_event

logger = get_logger(__name__)

PHOENIX_TOPIC = "phoenix"
PROTOCOL_VERSION = "1.0.0"


async def _invoke(callback: Callable, *args):
    """동기/비동기 콜백 모두 지원"""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


@dataclass
class PostgresBinding:
    event: str
    table: str
    callback: Callable
    schema: str = "public"
    filter: Optional[str] = None

    def matches(self, data: Dict[str, Any]) -> bool:
        if data.get("table") != self.table:
            return False
        if data.get("schema", self.schema) != self.schema:
            return False
        return self.event == "*" or data.get("type") == self.event

    def to_config(self) -> Dict[str, Any]:
        config = {"event": self.event, "schema": self.schema, "table": self.table}
        if self.filter:
            config["filter"] = self.filter
        return config


class RealtimeChannel:
    """실시간 채널 하나 (테이블 변경 구독 + 접속 현황 추적)"""

    def __init__(self, client: "RealtimeClient", name: str):
        self.client = client
        self.name = name
        self.topic = f"realtime:{name}"
        self.joined = False
        self._postgres_bindings: List[PostgresBinding] = []
        self._presence_callbacks: List[Callable] = []
        # {presence key: [meta, ...]}
        self.presence_state: Dict[str, List[Dict[str, Any]]] = {}

    def on_postgres_changes(
        self,
        event: str,
        table: str,
        callback: Callable,
        filter: Optional[str] = None,
        schema: str = "public",
    ) -> "RealtimeChannel":
        """테이블 변경 알림 구독 등록 (subscribe 전에 호출)"""
        self._postgres_bindings.append(
            PostgresBinding(event=event, table=table, callback=callback, schema=schema, filter=filter)
        )
        return self

    def on_presence_sync(self, callback: Callable) -> "RealtimeChannel":
        """접속 현황 동기화 콜백 등록 (subscribe 전에 호출)"""
        self._presence_callbacks.append(callback)
        return self

    async def subscribe(self, access_token: Optional[str] = None, presence_key: str = "") -> "RealtimeChannel":
        """채널 참여 요청 전송"""
        config = {
            "broadcast": {"self": False, "ack": False},
            "presence": {"key": presence_key},
            "postgres_changes": [binding.to_config() for binding in self._postgres_bindings],
        }
        payload: Dict[str, Any] = {"config": config}
        if access_token:
            payload["access_token"] = access_token

        await self.client.connect()
        await self.client.send(self.topic, "phx_join", payload)
        log_realtime_event(logger, "subscribe", self.topic, bindings=len(self._postgres_bindings))
        return self

    async def track(self, meta: Dict[str, Any]):
        """현재 사용자의 접속 상태를 채널에 알림"""
        await self.client.send(
            self.topic,
            "presence",
            {"type": "presence", "event": "track", "payload": meta},
        )

    async def unsubscribe(self):
        """채널 이탈"""
        try:
            if self.client.connected:
                await self.client.send(self.topic, "phx_leave", {})
        finally:
            self.joined = False
            self.client.forget(self)
            log_realtime_event(logger, "unsubscribe", self.topic)

    @property
    def presence_count(self) -> int:
        """현재 추적 중인 서로 다른 사용자 수"""
        return len(self.presence_state)

    # -------------------------------------------------------------------------
    # 수신 처리
    # -------------------------------------------------------------------------

    async def handle(self, event: str, payload: Dict[str, Any]):
        """서버 프레임 처리"""
        if event == "postgres_changes":
            data = payload.get("data") or {}
            for binding in self._postgres_bindings:
                if binding.matches(data):
                    await _invoke(binding.callback, data)

        elif event == "presence_state":
            self.presence_state = {
                key: list(entry.get("metas", []))
                for key, entry in payload.items()
            }
            await self._sync_presence()

        elif event == "presence_diff":
            self._apply_presence_diff(payload)
            await self._sync_presence()

        elif event == "phx_reply":
            if payload.get("status") == "ok":
                self.joined = True
            else:
                logger.warning(f"Realtime channel {self.topic} rejected: {payload.get('response')}")

        elif event in ("phx_close", "phx_error"):
            self.joined = False
            log_realtime_event(logger, event, self.topic)

    def _apply_presence_diff(self, payload: Dict[str, Any]):
        for key, entry in (payload.get("leaves") or {}).items():
            left_refs = {meta.get("phx_ref") for meta in entry.get("metas", [])}
            remaining = [
                meta for meta in self.presence_state.get(key, [])
                if meta.get("phx_ref") not in left_refs
            ]
            if remaining:
                self.presence_state[key] = remaining
            else:
                self.presence_state.pop(key, None)

        for key, entry in (payload.get("joins") or {}).items():
            self.presence_state.setdefault(key, []).extend(entry.get("metas", []))

    async def _sync_presence(self):
        for callback in self._presence_callbacks:
            await _invoke(callback, self.presence_state)


class RealtimeClient:
    """실시간 서비스 WebSocket 연결 (채널 다중화)"""

    def __init__(
        self,
        url: str,
        api_key: str,
        heartbeat_interval: float = 25.0,
        connect: Callable = websockets.connect,
    ):
        self.url = url
        self.api_key = api_key
        self.heartbeat_interval = heartbeat_interval
        self._connect = connect
        self._ws = None
        self._ref = 0
        self._channels: Dict[str, RealtimeChannel] = {}
        self._listener: Optional[asyncio.Task] = None
        self._heartbeat: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def channel(self, name: str) -> RealtimeChannel:
        """채널 생성 및 등록"""
        channel = RealtimeChannel(self, name)
        self._channels[channel.topic] = channel
        return channel

    def forget(self, channel: RealtimeChannel):
        if self._channels.get(channel.topic) is channel:
            del self._channels[channel.topic]

    async def connect(self):
        """WebSocket 연결 (이미 연결되어 있으면 무시)"""
        async with self._lock:
            if self._ws is not None:
                return

            endpoint = f"{self.url}?apikey={self.api_key}&vsn={PROTOCOL_VERSION}"
            try:
                self._ws = await self._connect(endpoint)
            except (OSError, WebSocketException) as e:
                logger.warning(f"Realtime connection failed: {type(e).__name__}: {e}")
                raise ConnectivityException("Could not connect to live updates") from e
            self._listener = asyncio.create_task(self._listen())
            self._heartbeat = asyncio.create_task(self._send_heartbeats())
            log_realtime_event(logger, "connected", PHOENIX_TOPIC)

    async def send(self, topic: str, event: str, payload: Dict[str, Any]) -> str:
        """프레임 전송 후 ref 반환"""
        if self._ws is None:
            raise ConnectivityException("Live updates are disconnected")

        self._ref += 1
        ref = str(self._ref)
        frame = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        if event == "phx_join":
            frame["join_ref"] = ref
        await self._ws.send(json.dumps(frame))
        return ref

    async def dispatch(self, raw: str):
        """수신 프레임을 해당 채널로 전달"""
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning(f"Invalid realtime frame ignored: {raw[:200]}")
            return

        channel = self._channels.get(message.get("topic"))
        if channel is None:
            return

        await channel.handle(message.get("event"), message.get("payload") or {})

    async def _listen(self):
        try:
            async for raw in self._ws:
                try:
                    await self.dispatch(raw)
                except Exception as e:
                    logger.error(f"Failed to process realtime frame: {e}", exc_info=True)
        except ConnectionClosed as e:
            logger.warning(f"Realtime connection closed: {e}")
        except asyncio.CancelledError:
            raise
        finally:
            self._ws = None
            for channel in self._channels.values():
                channel.joined = False

    async def _send_heartbeats(self):
        try:
            while self._ws is not None:
                await asyncio.sleep(self.heartbeat_interval)
                if self._ws is None:
                    break
                await self.send(PHOENIX_TOPIC, "heartbeat", {})
        except ConnectionClosed as e:
            logger.warning(f"Realtime heartbeat stopped: {e}")

    async def close(self):
        """연결 종료"""
        ws = self._ws
        for task in (self._heartbeat, self._listener):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if ws is not None:
            await ws.close()
        self._ws = None

        self._channels.clear()
        log_realtime_event(logger, "closed", PHOENIX_TOPIC)
