import unittest

from ccmonitor.models import SessionEventType, SessionStatus, ToolStatus
from ccmonitor.notifier import ChangeNotifier
from ccmonitor.session_store import SessionStore


class _Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class SessionStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.notifier = ChangeNotifier()
        self.events = []
        self.notifier.subscribe(self.events.append)
        self.store = SessionStore(
            self.notifier,
            session_timeout=300,
            idle_threshold=30,
            max_tool_history=3,
            max_messages=2,
            message_max_chars=20,
            clock=self.clock,
        )

    def _event_types(self) -> list[SessionEventType]:
        return [event.type for event in self.events]

    def test_get_or_create_emits_created_once(self) -> None:
        first = self.store.get_or_create("S-1")
        self.clock.now += 5
        second = self.store.get_or_create("S-1")

        self.assertIs(first, second)
        self.assertEqual(self._event_types(), [SessionEventType.CREATED])
        self.assertEqual(second.startTime, 1_000.0)
        self.assertEqual(second.lastActivity, 1_005.0)
        self.assertEqual(second.status, SessionStatus.ACTIVE)

    def test_token_total_is_input_plus_output(self) -> None:
        self.store.get_or_create("S-1")
        self.store.update_token_usage(
            "S-1",
            {"input_tokens": 100, "output_tokens": 50, "cache_read_input_tokens": 7},
        )
        self.store.update_token_usage("S-1", {"input_tokens": 10, "output_tokens": 5})

        tokens = self.store.get("S-1").tokens
        self.assertEqual(tokens.input, 110)
        self.assertEqual(tokens.output, 55)
        self.assertEqual(tokens.cacheRead, 7)
        self.assertEqual(tokens.total, tokens.input + tokens.output)

    def test_non_finite_or_oversized_usage_counts_as_zero(self) -> None:
        self.store.get_or_create("S-1")
        self.store.update_token_usage(
            "S-1",
            {"input_tokens": float("inf"), "output_tokens": float("nan"), "cache_read_input_tokens": 10**400},
        )
        self.store.update_token_usage("S-1", {"input_tokens": 4, "output_tokens": 2})

        tokens = self.store.get("S-1").tokens
        self.assertEqual((tokens.input, tokens.output, tokens.cacheRead), (4, 2, 0))

    def test_token_usage_ignored_for_unknown_session(self) -> None:
        self.store.update_token_usage("missing", {"input_tokens": 100})
        self.assertNotIn("missing", self.store)
        self.assertEqual(self.events, [])

    def test_estimated_cost_uses_model_rate(self) -> None:
        self.store.update_model_info("S-1", "claude-opus-4-5-20251101", "2.0.1")
        self.store.update_token_usage("S-1", {"input_tokens": 1_000_000, "output_tokens": 1_000_000})

        session = self.store.get("S-1")
        self.assertEqual(session.modelShort, "Opus 4.5")
        self.assertAlmostEqual(session.estimatedCost, 90.0)

    def test_model_cwd_branch_are_first_writer_wins(self) -> None:
        self.store.update_model_info("S-1", "claude-sonnet-4-5", "1.0")
        self.store.update_model_info("S-1", "claude-opus-4-5", "2.0")
        self.store.update_cwd("S-1", "/repo/a")
        self.store.update_cwd("S-1", "/repo/b")
        self.store.update_git_branch("S-1", "main")
        self.store.update_git_branch("S-1", "feature")

        session = self.store.get("S-1")
        self.assertEqual(session.model, "claude-sonnet-4-5")
        self.assertEqual(session.version, "1.0")
        self.assertEqual(session.cwd, "/repo/a")
        self.assertEqual(session.gitBranch, "main")

    def test_messages_are_capped_truncated_and_deduplicated(self) -> None:
        self.store.get_or_create("S-1")
        self.store.add_message("S-1", "user", "first")
        self.store.add_message("S-1", "assistant", "x" * 50)
        self.store.add_message("S-1", "assistant", "x" * 60)  # same after truncation
        self.store.add_message("S-1", "user", "third")

        messages = self.store.get("S-1").messages.to_list()
        self.assertEqual(len(messages), 2)
        self.assertEqual(messages[0].content, "x" * 20 + "...")
        self.assertEqual(messages[1].content, "third")

    def test_tool_history_is_newest_first_and_capped(self) -> None:
        for index in range(5):
            self.store.start_tool("S-1", f"Tool{index}")
            self.clock.now += 1
            self.store.complete_tool("S-1")

        history = self.store.get("S-1").toolHistory.to_list()
        self.assertEqual([entry.name for entry in history], ["Tool4", "Tool3", "Tool2"])
        self.assertEqual(history[0].durationMs, 1000)

    def test_starting_a_tool_completes_the_running_one(self) -> None:
        self.store.start_tool("S-1", "Read", tool_id="t1")
        self.store.start_tool("S-1", "Bash", tool_id="t2")

        session = self.store.get("S-1")
        self.assertEqual(session.currentTool.name, "Bash")
        self.assertEqual(session.toolHistory[0].name, "Read")
        self.assertEqual(session.toolHistory[0].status, ToolStatus.COMPLETED)

    def test_complete_session_closes_running_tool(self) -> None:
        self.store.start_tool("S-1", "Bash", details={"command": "ls"})
        self.events.clear()
        self.store.complete_session("S-1")

        session = self.store.get("S-1")
        self.assertIsNone(session.currentTool)
        self.assertEqual(session.status, SessionStatus.COMPLETED)
        self.assertEqual(session.toolHistory[0].details, {"command": "ls"})
        self.assertEqual(
            self._event_types(),
            [SessionEventType.TOOL_COMPLETED, SessionEventType.COMPLETED],
        )

    def test_fail_session_marks_tool_failed(self) -> None:
        self.store.start_tool("S-1", "Bash")
        self.store.fail_session("S-1")

        session = self.store.get("S-1")
        self.assertEqual(session.status, SessionStatus.ERROR)
        self.assertEqual(session.toolHistory[0].status, ToolStatus.FAILED)

    def test_set_status_idle_is_rejected(self) -> None:
        self.store.get_or_create("S-1")
        with self.assertRaises(ValueError):
            self.store.set_status("S-1", SessionStatus.IDLE)

    def test_sweep_idles_at_exact_threshold(self) -> None:
        self.store.get_or_create("S-1")
        self.clock.now += 30

        result = self.store.sweep()

        self.assertEqual(result.idled, ["S-1"])
        self.assertEqual(self.store.get("S-1").status, SessionStatus.IDLE)

    def test_sweep_keeps_session_just_under_threshold(self) -> None:
        self.store.get_or_create("S-1")

        result = self.store.sweep(now=1_000.0 + 30 - 0.000001)

        self.assertEqual(result.idled, [])
        self.assertEqual(self.store.get("S-1").status, SessionStatus.ACTIVE)

    def test_sweep_does_not_idle_session_with_running_tool(self) -> None:
        self.store.start_tool("S-1", "Bash")
        result = self.store.sweep(now=1_000.0 + 60)
        self.assertEqual(result.idled, [])

    def test_sweep_removes_after_timeout_with_event(self) -> None:
        self.store.get_or_create("S-1")
        self.events.clear()

        self.assertEqual(self.store.sweep(now=1_300.0).removed, [])
        result = self.store.sweep(now=1_300.5)

        self.assertEqual(result.removed, ["S-1"])
        self.assertNotIn("S-1", self.store)
        removal = self.events[-1]
        self.assertEqual(removal.type, SessionEventType.REMOVED)
        self.assertEqual(removal.sessionId, "S-1")
        self.assertIsNone(removal.session)

    def test_live_activity_reactivates_idle_session(self) -> None:
        self.store.get_or_create("S-1")
        self.clock.now += 45
        self.store.sweep()
        self.store.add_message("S-1", "user", "back again")
        self.assertEqual(self.store.get("S-1").status, SessionStatus.ACTIVE)

    def test_replayed_activity_uses_historical_time(self) -> None:
        self.store.get_or_create("S-1", at=500.0)
        self.store.add_message("S-1", "user", "old", at=510.0)

        session = self.store.get("S-1")
        self.assertEqual(session.startTime, 500.0)
        self.assertEqual(session.lastActivity, 510.0)

    def test_create_sub_agent_is_idempotent(self) -> None:
        self.store.get_or_create("S-parent")
        self.store.create_sub_agent("A-1", "S-parent", is_sidechain=True)
        self.events.clear()
        self.store.create_sub_agent("A-1", "S-parent", is_sidechain=True)

        parent = self.store.get("S-parent")
        child = self.store.get("A-1")
        self.assertEqual(parent.subAgents, ["A-1"])
        self.assertTrue(child.isSubAgent)
        self.assertTrue(child.isSidechain)
        self.assertEqual(child.parentSessionId, "S-parent")
        self.assertNotIn(SessionEventType.CREATED, self._event_types())

    def test_sub_agent_links_to_parent_created_later(self) -> None:
        self.store.create_sub_agent("A-1", "S-parent")
        self.assertNotIn("S-parent", self.store)

        parent = self.store.get_or_create("S-parent")
        self.assertEqual(parent.subAgents, ["A-1"])

    def test_update_todos_replaces_list(self) -> None:
        self.store.get_or_create("S-1")
        self.store.update_todos("S-1", [{"content": "a"}])
        self.store.update_todos("S-1", [{"content": "b"}, {"content": "c"}])
        self.assertEqual(len(self.store.get("S-1").todos), 2)

    def test_session_serializes_histories_as_lists(self) -> None:
        self.store.start_tool("S-1", "Read", details={"file": "a.py"})
        self.store.complete_tool("S-1", output="ok")
        self.store.add_message("S-1", "user", "hello")

        payload = self.store.get("S-1").model_dump(mode="json")
        self.assertEqual(payload["toolHistory"][0]["name"], "Read")
        self.assertEqual(payload["toolHistory"][0]["status"], "completed")
        self.assertEqual(payload["messages"][0]["content"], "hello")
        self.assertEqual(payload["tokens"]["total"], 0)


if __name__ == "__main__":
    unittest.main()
