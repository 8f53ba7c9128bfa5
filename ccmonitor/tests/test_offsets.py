import tempfile
import unittest
from pathlib import Path

from ccmonitor.ingest.offsets import OffsetTracker


class OffsetTrackerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "S-1.jsonl"
        self.tracker = OffsetTracker()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _append(self, text: str) -> None:
        with open(self.path, "a", encoding="utf-8") as handle:
            handle.write(text)

    def test_reads_only_new_lines(self) -> None:
        self._append('{"n": 1}\n{"n": 2}\n')
        self.tracker.track(self.path)

        first = self.tracker.read_new(self.path)
        self._append('{"n": 3}\n')
        second = self.tracker.read_new(self.path)

        self.assertEqual(first.lines, ['{"n": 1}', '{"n": 2}'])
        self.assertEqual(second.lines, ['{"n": 3}'])
        self.assertEqual(self.tracker.offset(self.path), self.path.stat().st_size)

    def test_unchanged_file_yields_nothing(self) -> None:
        self._append('{"n": 1}\n')
        self.tracker.track(self.path, self.path.stat().st_size)
        result = self.tracker.read_new(self.path)
        self.assertFalse(result.has_content)

    def test_truncation_resets_offset_then_rereads(self) -> None:
        self._append('{"n": 1}\n{"n": 2}\n{"n": 3}\n')
        self.tracker.track(self.path)
        self.tracker.read_new(self.path)

        self.path.write_text('{"n": 9}\n', encoding="utf-8")
        truncated = self.tracker.read_new(self.path)

        self.assertTrue(truncated.truncated)
        self.assertEqual(truncated.lines, [])
        self.assertEqual(self.tracker.offset(self.path), 0)

        again = self.tracker.read_new(self.path)
        self.assertEqual(again.lines, ['{"n": 9}'])

    def test_partial_trailing_line_is_held_until_complete(self) -> None:
        self._append('{"n": 1}\n{"n": ')
        self.tracker.track(self.path)

        first = self.tracker.read_new(self.path)
        self._append('2}\n')
        second = self.tracker.read_new(self.path)

        self.assertEqual(first.lines, ['{"n": 1}'])
        self.assertEqual(second.lines, ['{"n": 2}'])

    def test_complete_trailing_record_without_newline_is_read(self) -> None:
        self._append('{"n": 1}')
        self.tracker.track(self.path)
        self.assertEqual(self.tracker.read_new(self.path).lines, ['{"n": 1}'])

    def test_multibyte_character_split_across_reads(self) -> None:
        encoded = '{"text": "café"}\n'.encode("utf-8")
        split = encoded.index(b"\xc3") + 1
        with open(self.path, "wb") as handle:
            handle.write(encoded[:split])
        self.tracker.track(self.path)
        self.tracker.read_new(self.path)

        with open(self.path, "ab") as handle:
            handle.write(encoded[split:])
        result = self.tracker.read_new(self.path)

        self.assertEqual(result.lines, ['{"text": "café"}'])

    def test_missing_file_raises_os_error(self) -> None:
        with self.assertRaises(OSError):
            self.tracker.read_new(Path(self._tmp.name) / "absent.jsonl")

    def test_forget_drops_offset(self) -> None:
        self.tracker.track(self.path, 42)
        self.tracker.forget(self.path)
        self.assertFalse(self.tracker.is_tracked(self.path))


if __name__ == "__main__":
    unittest.main()
