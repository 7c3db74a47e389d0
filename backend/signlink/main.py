"""
SignLink Realtime Relay - Main Application

This is the entry point for the FastAPI application.
It handles:
- The WebSocket endpoint for presence, call signaling and chat relay
- REST presence lookups for the user/friend API
- Startup of the Redis presence mirror and the metrics exporter
"""
from contextlib import asynccontextmanager
import logging
from datetime import datetime, UTC

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from signlink import __version__
from signlink.api import router as api_router
from signlink.api.websocket import router as ws_router
from signlink.config.redis import ping_redis, close_redis
from signlink.config.settings import settings
from signlink.services.metrics import start_metrics_server
from signlink.services.presence import presence_registry, status_service

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    
    Handles startup and shutdown events using the modern FastAPI pattern.
    """
    # === STARTUP ===
    logger.info("🚀 Starting SignLink realtime relay...")

    if status_service.enabled:
        if await ping_redis():
            logger.info("✅ Redis presence mirror connected")
        else:
            logger.warning("⚠️ Redis presence mirror unavailable, continuing without it")

    if settings.METRICS_ENABLED:
        start_metrics_server(settings.METRICS_PORT)

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("🛑 Shutting down...")
    if status_service.enabled:
        await close_redis()


app = FastAPI(
    title="SignLink Realtime Relay",
    description="Presence tracking and WebRTC signaling relay for 1:1 video calls and chat",
    version=__version__,
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include REST API routes
app.include_router(api_router, prefix="/api")

# Include WebSocket routes
app.include_router(ws_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "SignLink Realtime Relay",
        "version": __version__,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "online_users": presence_registry.get_online_count(),
        "total_connections": presence_registry.get_total_connections()
    }
