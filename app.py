from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
import redis
from typing import Optional
from backend import RedisBackend
from constants import CORS_ALLOWED_ORIGINS, LOG_LEVEL, LOG_FILE
from meetings import MeetingService
from routers.meetings import meetings_router
from signaling import SignalingEngine
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(redis_client: Optional[redis.Redis] = None) -> FastAPI:
    backend = RedisBackend(redis_client)
    meeting_service = MeetingService(backend)
    signaling_engine = SignalingEngine(meeting_service)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        backend.ping()
        yield
        logger.info("Shutting down signaling server")

    app = FastAPI(title="Classroom Meetings", lifespan=lifespan)
    app.state.backend = backend
    app.state.meeting_service = meeting_service
    app.state.signaling_engine = signaling_engine

    # Wildcard origins cannot be combined with credentials
    allow_all = CORS_ALLOWED_ORIGINS == ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOWED_ORIGINS,
        allow_credentials=not allow_all,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(meetings_router)

    @app.websocket("/ws/meet")
    async def meeting_websocket(websocket: WebSocket):
        """Signaling connection: one per participant, JSON text frames only."""
        await signaling_engine.serve(websocket)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
