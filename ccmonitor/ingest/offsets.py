"""Per-file byte offsets deciding what is new on each poll."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from ccmonitor.parsers.records import decode_line


@dataclass
class ReadResult:
    start: int
    end: int
    lines: list[str] = field(default_factory=list)
    truncated: bool = False

    @property
    def has_content(self) -> bool:
        return bool(self.lines)


class OffsetTracker:
    """Tracks how far each file has been consumed.

    ``read_new`` returns the lines in ``[offset, size)`` and advances the
    offset to ``size``. A file smaller than its offset was truncated or
    rotated: the offset resets to 0 and nothing is reported for that cycle.

    A trailing fragment without a newline that does not decode as a complete
    record is a line still being written; it is held and prefixed to the
    next read instead of being dropped.
    """

    def __init__(self) -> None:
        self._offsets: dict[str, int] = {}
        self._pending: dict[str, bytes] = {}

    @staticmethod
    def _key(path: str | Path) -> str:
        return str(path)

    def track(self, path: str | Path, offset: int = 0) -> None:
        key = self._key(path)
        self._offsets[key] = max(0, offset)
        self._pending.pop(key, None)

    def is_tracked(self, path: str | Path) -> bool:
        return self._key(path) in self._offsets

    def offset(self, path: str | Path) -> int | None:
        return self._offsets.get(self._key(path))

    def forget(self, path: str | Path) -> None:
        key = self._key(path)
        self._offsets.pop(key, None)
        self._pending.pop(key, None)

    def clear(self) -> None:
        self._offsets.clear()
        self._pending.clear()

    @property
    def tracked_paths(self) -> list[str]:
        return list(self._offsets)

    def __len__(self) -> int:
        return len(self._offsets)

    def read_new(self, path: str | Path) -> ReadResult:
        """Read unread content. Raises ``OSError`` when the file cannot be stat'ed or read."""
        key = self._key(path)
        last = self._offsets.get(key, 0)
        size = os.stat(path).st_size

        if size < last:
            self._offsets[key] = 0
            self._pending.pop(key, None)
            return ReadResult(start=last, end=0, truncated=True)

        if size == last:
            self._offsets.setdefault(key, last)
            return ReadResult(start=last, end=last)

        with open(path, "rb") as handle:
            handle.seek(last)
            data = handle.read(size - last)
        end = last + len(data)
        self._offsets[key] = end

        chunks = (self._pending.pop(key, b"") + data).split(b"\n")
        tail = chunks.pop()
        lines = [chunk.decode("utf-8", errors="replace") for chunk in chunks]
        if tail.strip():
            tail_text = tail.decode("utf-8", errors="replace")
            if decode_line(tail_text) is not None:
                lines.append(tail_text)
            else:
                self._pending[key] = tail
        return ReadResult(start=last, end=end, lines=[line for line in lines if line.strip()])
