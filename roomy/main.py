"""
Roomy - FastAPI Application

비밀번호 채팅방, 첨부 파일 메시지, 접속 현황을 제공하는 웹 채팅 클라이언트.
모든 데이터와 규칙은 외부 관리형 백엔드에 있고, 이 프로세스는 그 클라이언트입니다.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from roomy.api import auth, directory, health, room
from roomy.backend import create_backend_client, create_realtime_client
from roomy.core.config import settings
from roomy.core.logging import get_logger, setup_logging
from roomy.middleware import (
    ErrorHandlerMiddleware,
    LoggingMiddleware,
    create_http_exception_handler,
    create_validation_exception_handler,
)
from roomy.services.room_session import RoomSessionRegistry
from roomy.services.session_service import SessionContext, SessionStore

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    # Startup
    setup_logging()
    logger.info(f"{settings.app_name} starting up...")

    backend = create_backend_client()
    realtime = create_realtime_client()
    session_context = SessionContext(backend, SessionStore(settings.session_file))

    app.state.backend = backend
    app.state.realtime = realtime
    app.state.session_context = session_context
    app.state.room_sessions = RoomSessionRegistry(backend, realtime)

    # 저장된 세션 복원 (한 번만)
    await session_context.bootstrap()

    yield

    # Shutdown
    logger.info(f"{settings.app_name} shutting down...")

    await app.state.room_sessions.close_all()
    await realtime.close()
    await backend.close()


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    lifespan=lifespan
)

# Middleware
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Exception handlers
app.add_exception_handler(HTTPException, create_http_exception_handler())
app.add_exception_handler(RequestValidationError, create_validation_exception_handler())

# Include routers
app.include_router(auth.router)
app.include_router(directory.router)
app.include_router(room.router)
app.include_router(health.router)

# Prometheus metrics
Instrumentator().instrument(app).expose(app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "roomy.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
