import json
import unittest

from ccmonitor.parsers.records import RecordType, parse_lines, parse_record, tool_result_to_text
from ccmonitor.parsers.tool_details import extract_tool_details


class RecordParserTests(unittest.TestCase):
    def test_parse_record_reads_common_fields(self) -> None:
        line = json.dumps(
            {
                "type": "assistant",
                "sessionId": "S-1",
                "agentId": "A-1",
                "cwd": "/repo",
                "gitBranch": "main",
                "version": "2.0.1",
                "isSidechain": True,
                "timestamp": "2026-02-16T00:00:00Z",
                "message": {"model": "claude-opus-4-5", "content": []},
            }
        )

        record = parse_record(line)

        self.assertEqual(record.type, RecordType.ASSISTANT)
        self.assertEqual(record.session_id, "S-1")
        self.assertEqual(record.agent_id, "A-1")
        self.assertEqual(record.cwd, "/repo")
        self.assertEqual(record.git_branch, "main")
        self.assertTrue(record.is_sidechain)
        self.assertEqual(record.message["model"], "claude-opus-4-5")

    def test_malformed_lines_are_dropped(self) -> None:
        self.assertIsNone(parse_record("{not json"))
        self.assertIsNone(parse_record("[1, 2, 3]"))
        self.assertIsNone(parse_record("   "))

    def test_unknown_type_is_preserved_as_raw(self) -> None:
        record = parse_record('{"type": "summary", "sessionId": "S-1"}')
        self.assertEqual(record.type, RecordType.UNKNOWN)
        self.assertEqual(record.raw_type, "summary")

    def test_session_id_fallbacks(self) -> None:
        snake = parse_record('{"type": "init", "session_id": "S-snake"}')
        nested = parse_record('{"type": "init", "metadata": {"session_id": "S-meta"}}')
        self.assertEqual(snake.session_id, "S-snake")
        self.assertEqual(nested.session_id, "S-meta")

    def test_parse_lines_skips_bad_lines(self) -> None:
        lines = ['{"type": "user", "sessionId": "S-1"}', "garbage", '{"type": "result", "sessionId": "S-1"}']
        records = list(parse_lines(lines))
        self.assertEqual([r.type for r in records], [RecordType.USER, RecordType.RESULT])

    def test_tool_result_to_text_flattens_blocks(self) -> None:
        self.assertEqual(tool_result_to_text("plain"), "plain")
        self.assertEqual(
            tool_result_to_text([{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]),
            "a\nb",
        )
        self.assertEqual(tool_result_to_text(None), "")


class ToolDetailsTests(unittest.TestCase):
    def test_bash_command_is_truncated(self) -> None:
        details = extract_tool_details("Bash", {"command": "x" * 150})
        self.assertEqual(details["command"], "x" * 100 + "...")

    def test_edit_includes_preview(self) -> None:
        details = extract_tool_details("Edit", {"file_path": "a.py", "new_string": "y" * 60})
        self.assertEqual(details, {"file": "a.py", "preview": "y" * 50 + "..."})

    def test_task_and_todo_write(self) -> None:
        task = extract_tool_details("Task", {"description": "Explore", "subagent_type": "explorer"})
        todos = extract_tool_details("TodoWrite", {"todos": [{}, {}, {}]})
        self.assertEqual(task, {"description": "Explore", "agentType": "explorer"})
        self.assertEqual(todos, {"count": 3})

    def test_unknown_tool_uses_generic_fields(self) -> None:
        details = extract_tool_details("mcp__custom", {"description": "desc", "unrelated": 1})
        self.assertEqual(details, {"description": "desc"})
        self.assertEqual(extract_tool_details("Bash", None), {"command": ""})


if __name__ == "__main__":
    unittest.main()
