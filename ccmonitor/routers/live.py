"""WebSocket fan-out of session change events to dashboard clients."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ccmonitor.models import SessionEvent, SessionEventType
from ccmonitor.notifier import ChangeNotifier

logger = logging.getLogger("ccmonitor.api")

live_router = APIRouter(tags=["live"])

CLIENT_QUEUE_SIZE = 1000


def event_to_message(event: SessionEvent) -> Optional[dict[str, Any]]:
    """Wire message for a store event; removals carry only the id."""
    if event.type == SessionEventType.REMOVED:
        return {"type": "session_removed", "sessionId": event.sessionId}
    if event.session is None:
        return None
    session = event.session.model_dump(mode="json")
    if event.type == SessionEventType.COMPLETED:
        return {"type": "session_completed", "session": session}
    return {"type": "session_update", "event": event.type.value, "session": session}


class LiveUpdateHub:
    """Subscribes to the notifier and queues messages per connected client.

    Events are serialized when they are published, so each client sees
    the session as it was at that moment even if it is sent later.
    """

    def __init__(self, queue_size: int = CLIENT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._clients: set[asyncio.Queue] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, notifier: ChangeNotifier) -> None:
        self.detach()
        self._unsubscribe = notifier.subscribe(self.handle_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def register(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._clients.add(queue)
        return queue

    def unregister(self, queue: asyncio.Queue) -> None:
        self._clients.discard(queue)

    def handle_event(self, event: SessionEvent) -> None:
        message = event_to_message(event)
        if message is None:
            return
        for queue in list(self._clients):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Dropping %s for slow WebSocket client", message["type"])


async def _pump(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


@live_router.websocket("/ws")
async def live_updates(websocket: WebSocket):
    """Send the current sessions, then stream change events until disconnect."""
    hub: LiveUpdateHub = websocket.app.state.live_hub
    engine = websocket.app.state.engine

    await websocket.accept()
    # No await between snapshot and register.
    sessions = [s.model_dump(mode="json") for s in engine.store.list_all()]
    queue = hub.register()
    logger.info("WebSocket client connected (%d total)", hub.client_count)
    sender: Optional[asyncio.Task] = None
    try:
        await websocket.send_json({"type": "initial_state", "sessions": sessions})
        sender = asyncio.create_task(_pump(websocket, queue))
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError as e:
                logger.warning("Error parsing WebSocket message: %s", e)
                continue
            if isinstance(data, dict) and data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        if sender is not None:
            sender.cancel()
            try:
                await sender
            except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
                pass
        hub.unregister(queue)
        logger.info("WebSocket client disconnected (%d remaining)", hub.client_count)
