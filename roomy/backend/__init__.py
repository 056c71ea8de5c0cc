from .client import BackendClient, TableQuery
from .realtime import RealtimeClient, RealtimeChannel
from roomy.core.config import settings


def create_backend_client() -> BackendClient:
    """설정 기반 백엔드 클라이언트 생성"""
    return BackendClient(
        base_url=settings.backend_url,
        api_key=settings.backend_anon_key,
        timeout=settings.request_timeout,
    )


def create_realtime_client() -> RealtimeClient:
    """설정 기반 실시간 클라이언트 생성"""
    return RealtimeClient(
        url=settings.realtime_websocket_url,
        api_key=settings.backend_anon_key,
        heartbeat_interval=settings.realtime_heartbeat_interval,
    )


__all__ = [
    "BackendClient",
    "TableQuery",
    "RealtimeClient",
    "RealtimeChannel",
    "create_backend_client",
    "create_realtime_client",
]
