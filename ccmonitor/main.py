"""Session monitor FastAPI app: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ccmonitor import config
from ccmonitor.engine import MonitorEngine
from ccmonitor.observability import initialize as initialize_observability, shutdown as shutdown_observability
from ccmonitor.routers.api import health_router, sessions_router
from ccmonitor.routers.live import LiveUpdateHub, live_router

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("ccmonitor")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Session monitor starting up")
    initialize_observability(app)

    engine = MonitorEngine()
    hub = LiveUpdateHub()
    hub.attach(engine.notifier)
    app.state.engine = engine
    app.state.live_hub = hub

    await engine.start()
    logger.info("Watching %s", config.CLAUDE_DIR)

    yield

    logger.info("Session monitor shutting down")
    await engine.stop()
    hub.detach()
    shutdown_observability(app)


app = FastAPI(
    title="ccmonitor",
    description="Live monitor for agent session logs",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow the dashboard dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(sessions_router)
app.include_router(live_router)
