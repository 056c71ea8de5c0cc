"""
Roomy 클라이언트 설정

환경 변수와 .env 파일을 통한 설정 관리
"""

from typing import List, Literal, Optional
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()  # .env 파일 로드


class Settings(BaseSettings):
    """Roomy 설정"""

    # Application
    app_name: str = "Roomy"
    version: str = "1.0.0"
    debug: bool = False

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Managed backend
    backend_url: str = "http://localhost:54321"
    backend_anon_key: str = ""
    realtime_url: Optional[str] = None
    request_timeout: float = 10.0

    # 세션 토큰 저장 위치 (유일하게 로컬에 남는 상태)
    session_file: str = ".roomy_session.json"

    # Object storage
    attachment_bucket: str = "chat-attachments"

    # Validation limits
    max_display_name_length: int = 30
    max_room_name_length: int = 50
    max_message_length: int = 500
    max_attachment_size: int = 5 * 1024 * 1024  # 5MB

    # Password generation
    room_password_length: int = 6

    # Message history
    message_history_limit: int = 50

    # Timing intervals (초)
    heartbeat_interval: float = 30.0
    room_list_poll_interval: float = 10.0
    realtime_heartbeat_interval: float = 25.0

    # 온라인 판정 구간 (heartbeat_interval 보다 길어야 함)
    online_window_minutes: int = 1

    # Discord 스타일 이름 접미사 범위
    name_suffix_min: int = 1000
    name_suffix_max: int = 9999

    # 접속 현황 방식: heartbeat(last_seen 기준) 또는 live(실시간 채널 추적)
    presence_mode: Literal["heartbeat", "live"] = "heartbeat"

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    # Logging
    log_dir: str = "logs"
    log_level: str = "INFO"
    log_max_bytes: int = 5 * 1024 * 1024
    log_backup_count: int = 3

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # 추가 환경변수 무시

    @property
    def realtime_websocket_url(self) -> str:
        """실시간 서비스 WebSocket URL (미설정 시 backend_url 기준으로 계산)"""
        if self.realtime_url:
            return self.realtime_url
        base = self.backend_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/realtime/v1/websocket"


settings = Settings()
