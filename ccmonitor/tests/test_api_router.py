import asyncio
import types
import unittest

from fastapi import HTTPException

from ccmonitor.models import SessionEvent, SessionEventType
from ccmonitor.notifier import ChangeNotifier
from ccmonitor.routers import api as api_router
from ccmonitor.routers.live import LiveUpdateHub, event_to_message
from ccmonitor.session_store import SessionStore


def _request(engine) -> types.SimpleNamespace:
    return types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace(engine=engine)))


class SessionsRouterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.now = 1_000.0
        self.store = SessionStore(clock=lambda: self.now)
        self.engine = types.SimpleNamespace(
            store=self.store,
            status=lambda: {"running": True, "watcher": "running", "sessions": len(self.store)},
        )

    async def test_list_sessions_orders_by_last_activity(self) -> None:
        self.store.get_or_create("S-old")
        self.now += 10
        self.store.get_or_create("S-new")

        payload = await api_router.list_sessions(_request(self.engine), active=False)

        self.assertEqual([s["id"] for s in payload["sessions"]], ["S-new", "S-old"])

    async def test_active_filter_excludes_completed(self) -> None:
        self.store.get_or_create("S-live")
        self.store.get_or_create("S-done")
        self.store.complete_session("S-done")

        payload = await api_router.list_active_sessions(_request(self.engine))

        self.assertEqual([s["id"] for s in payload["sessions"]], ["S-live"])

    async def test_get_session_resolves_agent_id(self) -> None:
        self.store.get_or_create("S-parent")
        self.store.create_sub_agent("A-1", "S-parent")

        payload = await api_router.get_session("A-1", _request(self.engine))

        self.assertEqual(payload["parentSessionId"], "S-parent")

    async def test_get_session_returns_404_for_unknown_id(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await api_router.get_session("missing", _request(self.engine))
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_missing_engine_returns_503(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await api_router.list_sessions(_request(None), active=False)
        self.assertEqual(ctx.exception.status_code, 503)

    async def test_health_reports_engine_status(self) -> None:
        payload = await api_router.health(_request(self.engine))
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["watcher"], "running")


class LiveUpdateHubTests(unittest.IsolatedAsyncioTestCase):
    async def test_events_are_queued_for_each_client(self) -> None:
        notifier = ChangeNotifier()
        store = SessionStore(notifier, clock=lambda: 1_000.0)
        hub = LiveUpdateHub()
        hub.attach(notifier)
        first = hub.register()
        second = hub.register()

        store.get_or_create("S-1")
        store.complete_session("S-1")

        for queue in (first, second):
            created = await asyncio.wait_for(queue.get(), timeout=1)
            completed = await asyncio.wait_for(queue.get(), timeout=1)
            self.assertEqual(created["type"], "session_update")
            self.assertEqual(created["event"], "session_created")
            self.assertEqual(completed["type"], "session_completed")
            self.assertEqual(completed["session"]["status"], "completed")

        hub.detach()
        self.assertEqual(notifier.subscriber_count, 0)

    async def test_unregistered_client_receives_nothing(self) -> None:
        notifier = ChangeNotifier()
        hub = LiveUpdateHub()
        hub.attach(notifier)
        queue = hub.register()
        hub.unregister(queue)

        notifier.publish(SessionEvent(type=SessionEventType.REMOVED, sessionId="S-1"))

        self.assertTrue(queue.empty())
        self.assertEqual(hub.client_count, 0)

    async def test_full_queue_drops_message(self) -> None:
        hub = LiveUpdateHub(queue_size=1)
        queue = hub.register()
        event = SessionEvent(type=SessionEventType.REMOVED, sessionId="S-1")

        hub.handle_event(event)
        with self.assertLogs("ccmonitor.api", level="WARNING"):
            hub.handle_event(event)

        self.assertEqual(queue.qsize(), 1)

    def test_removal_message_carries_only_id(self) -> None:
        message = event_to_message(SessionEvent(type=SessionEventType.REMOVED, sessionId="S-1"))
        self.assertEqual(message, {"type": "session_removed", "sessionId": "S-1"})


if __name__ == "__main__":
    unittest.main()
