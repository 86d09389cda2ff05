"""LMS Realtime Application.

This is the main entry point for the realtime fan-out service that sits
beside the course management web application.

Modules:
    - realtime: Course chat/presence channels and per-user notifications
    - storage: Chat message persistence (in-memory or DuckDB)
    - config: YAML-backed settings
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from lms_realtime import __version__
from lms_realtime.config import get_config
from lms_realtime.realtime.hub import RealtimeHub, reset_hub, set_hub
from lms_realtime.realtime.router import router as realtime_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Connection-level chatter from the ASGI server is not useful here.
for _noisy in ("uvicorn.access", "websockets", "websockets.protocol"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    set_hub(RealtimeHub(config))
    logger.info(
        f"Realtime hub ready: storage={config.storage.backend}, "
        f"echo_chat_to_sender={config.realtime.echo_chat_to_sender}"
    )

    yield  # Application runs here

    # Shutdown
    reset_hub()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="LMS Realtime API",
    description="Course chat, presence and notification fan-out",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(realtime_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    server = get_config().server
    uvicorn.run(app, host=server.host, port=server.port)
