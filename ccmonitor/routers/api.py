"""API routers for live sessions and service health."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request

from ccmonitor.models import Session

logger = logging.getLogger("ccmonitor.api")

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])
health_router = APIRouter(prefix="/api", tags=["health"])


def _get_engine(request: Request):
    engine = getattr(request.app.state, "engine", None)
    if not engine:
        raise HTTPException(status_code=503, detail="Session monitor not initialized")
    return engine


def _dump(session: Session) -> dict[str, Any]:
    return session.model_dump(mode="json")


@sessions_router.get("")
async def list_sessions(
    request: Request,
    active: bool = Query(False, description="Only return active sessions"),
):
    """Return every tracked session, most recently active first."""
    store = _get_engine(request).store
    sessions = store.list_active() if active else store.list_all()
    ordered = sorted(sessions, key=lambda s: s.lastActivity, reverse=True)
    return {"sessions": [_dump(s) for s in ordered]}


@sessions_router.get("/active")
async def list_active_sessions(request: Request):
    return await list_sessions(request, active=True)


@sessions_router.get("/{session_id}")
async def get_session(session_id: str, request: Request):
    """Return one session by session id or sub-agent id."""
    session = _get_engine(request).store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return _dump(session)


@health_router.get("/health")
async def health(request: Request):
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        return {"status": "starting", "watcher": "stopped", "sessions": 0, "activeSessions": 0}
    return {"status": "ok", **engine.status()}
