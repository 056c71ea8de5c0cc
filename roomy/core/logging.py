"""
구조화된 로깅

모든 로그는 event_type 과 필드를 가진 한 줄 JSON 으로 남깁니다.
디버그 모드의 콘솔만 사람이 읽는 형식을 씁니다.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from roomy.core.config import settings

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)

# LogRecord 기본 속성 (extra 로 넘어온 필드와 구분)
_RECORD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "websockets")


class StructuredFormatter(logging.Formatter):
    """로그 레코드를 한 줄 JSON 으로 변환"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "at": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        context = {"request_id": request_id_var.get(), "user_id": user_id_var.get()}
        entry.update({key: value for key, value in context.items() if value})

        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith('_')
        }
        if fields:
            entry["fields"] = fields

        if record.exc_info and record.exc_info[0] is not None:
            entry["error"] = {
                "type": record.exc_info[0].__name__,
                "detail": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, ensure_ascii=False, default=str)


def _file_handler(path: Path, level: int) -> logging.Handler:
    handler = RotatingFileHandler(
        path,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding='utf-8',
    )
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter())
    return handler


def setup_logging():
    """
    루트 로거 구성

    - 콘솔: debug 이면 텍스트, 아니면 JSON
    - {log_dir}/roomy.log: 전체 로그 (JSON, 로테이션)
    - {log_dir}/roomy-error.log: ERROR 이상만
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    if settings.debug:
        console.setFormatter(logging.Formatter('%(asctime)s %(levelname)-7s [%(name)s] %(message)s'))
    else:
        console.setFormatter(StructuredFormatter())
    root_logger.addHandler(console)

    root_logger.addHandler(_file_handler(log_dir / "roomy.log", level))
    root_logger.addHandler(_file_handler(log_dir / "roomy-error.log", logging.ERROR))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_request_context(request_id: str, user_id: Optional[str] = None):
    request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)


def clear_request_context():
    request_id_var.set(None)
    user_id_var.set(None)


def log_event(logger: logging.Logger, event_type: str, message: str, level: int = logging.INFO, **fields):
    """event_type 과 값이 있는 필드만 extra 로 붙여 기록"""
    extra = {key: value for key, value in fields.items() if value is not None}
    extra["event_type"] = event_type
    logger.log(level, message, extra=extra)


def log_api_call(
    logger: logging.Logger,
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    user_id: Optional[str] = None,
    **extra
):
    level = logging.WARNING if status_code >= 500 else logging.INFO
    log_event(
        logger, "api_call", f"{method} {path} -> {status_code} ({duration_ms:.1f}ms)", level,
        method=method, path=path, status_code=status_code,
        duration_ms=round(duration_ms, 2), user_id=user_id, **extra
    )


def log_backend_call(
    logger: logging.Logger,
    method: str,
    resource: str,
    status_code: Optional[int] = None,
    duration_ms: Optional[float] = None,
    **extra
):
    """PostgREST / RPC / 인증 / 스토리지 호출 한 건"""
    log_event(
        logger, "backend_call", f"backend {method} {resource} -> {status_code}", logging.DEBUG,
        method=method, resource=resource, status_code=status_code,
        duration_ms=round(duration_ms, 2) if duration_ms is not None else None, **extra
    )


def log_authentication_event(
    logger: logging.Logger,
    event: str,
    user_id: Optional[str] = None,
    display_name: Optional[str] = None,
    success: bool = True,
    **extra
):
    outcome = "ok" if success else "failed"
    log_event(
        logger, "session", f"session {event} {outcome}",
        logging.INFO if success else logging.WARNING,
        event=event, user_id=user_id, display_name=display_name, success=success, **extra
    )


def log_realtime_event(logger: logging.Logger, event: str, topic: str, **extra):
    log_event(logger, "realtime", f"realtime {event} on {topic}", event=event, topic=topic, **extra)


def log_file_operation(
    logger: logging.Logger,
    operation: str,
    file_path: str,
    user_id: str,
    file_size: Optional[int] = None,
    **extra
):
    """스토리지 업로드 등 첨부 파일 작업"""
    log_event(
        logger, "attachment", f"attachment {operation}: {file_path}",
        operation=operation, file_path=file_path, user_id=user_id, file_size=file_size, **extra
    )
