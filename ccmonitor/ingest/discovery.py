"""Locate session log files and feed their new content to the reconciler.

I/O (stat, read, decode) and state mutation are separate steps so the
engine can run the former off the event loop and apply the latter on it:
``read_*`` methods only touch the filesystem and the offset trackers,
``apply_*`` methods only touch the session store.
"""
from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from ccmonitor import config
from ccmonitor.ingest.offsets import OffsetTracker
from ccmonitor.models import SessionStatus
from ccmonitor.observability import record_ingestion, start_span
from ccmonitor.parsers.records import LogRecord, decode_line, parse_lines
from ccmonitor.reconciler import Reconciler
from ccmonitor.session_store import SessionStore

logger = logging.getLogger("ccmonitor.discovery")

_UUID_PREFIX_PATTERN = re.compile(r"^([a-f0-9-]{36})")
_TODO_AGENT_SEPARATOR = "-agent-"


@dataclass
class FileBatch:
    path: Path
    records: list[LogRecord] = field(default_factory=list)
    replay_at: Optional[float] = None
    truncated: bool = False


@dataclass
class TodoSnapshot:
    path: Path
    session_id: str
    todos: list[Any]
    at: Optional[float] = None


@dataclass
class _Candidate:
    path: Path
    mtime: float
    size: int


def todo_session_id(path: Path) -> Optional[str]:
    """Leading session identifier of a todo snapshot filename.

    ``<session>-agent-<agent>.json`` and ``<session>.json`` both map to
    ``<session>``.
    """
    leading = path.stem.split(_TODO_AGENT_SEPARATOR, 1)[0].strip()
    return leading or None


class FileDiscovery:
    def __init__(
        self,
        store: SessionStore,
        reconciler: Reconciler,
        *,
        projects_dir: Path = config.PROJECTS_DIR,
        history_file: Path = config.HISTORY_FILE,
        todos_dir: Path = config.TODOS_DIR,
        max_file_age: float = config.MAX_FILE_AGE_SECONDS,
        scan_lines: int = config.SESSION_ID_SCAN_LINES,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.reconciler = reconciler
        self.projects_dir = Path(projects_dir)
        self.history_file = Path(history_file)
        self.todos_dir = Path(todos_dir)
        self.max_file_age = max_file_age
        self.scan_lines = scan_lines
        self._clock = clock
        self.tracker = OffsetTracker()
        self.history_tracker = OffsetTracker()
        self.session_files: dict[str, Path] = {}  # session id -> last file seen

    # ── helpers ─────────────────────────────────────────────────────

    def _age(self, mtime: float) -> float:
        return self._clock() - mtime

    def is_recent(self, mtime: float) -> bool:
        return self._age(mtime) < self.max_file_age

    def derive_session_id(self, path: Path) -> Optional[str]:
        """Session id from the first non-empty lines, else a UUID filename prefix."""
        try:
            seen = 0
            with open(path, encoding="utf-8", errors="replace") as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    seen += 1
                    if seen > self.scan_lines:
                        break
                    data = decode_line(line)
                    if data is None:
                        continue
                    for key in ("sessionId", "agentId"):
                        value = data.get(key)
                        if isinstance(value, str) and value.strip():
                            return value
        except OSError as e:
            logger.error("Error extracting session ID from %s: %s", path, e)
            return None

        match = _UUID_PREFIX_PATTERN.match(path.name)
        if match:
            return match.group(1)
        return None

    # ── startup ─────────────────────────────────────────────────────

    def scan_existing(self) -> list[str]:
        """Load recently modified session files, replaying them at their mtime."""
        with start_span("ccmonitor.startup_scan", {"projects_dir": str(self.projects_dir)}):
            loaded = self._scan_projects()
            self._prime_history()
            self._scan_todos()
        return loaded

    def _scan_projects(self) -> list[str]:
        if not self.projects_dir.exists():
            logger.info("Projects directory does not exist yet: %s", self.projects_dir)
            return []

        candidates: list[_Candidate] = []
        for path in self.projects_dir.rglob("*.jsonl"):
            try:
                stats = path.stat()
            except OSError as e:
                logger.warning("Could not stat %s: %s", path, e)
                continue
            candidates.append(_Candidate(path=path, mtime=stats.st_mtime, size=stats.st_size))
        logger.info("Found %d existing session file(s)", len(candidates))

        candidates.sort(key=lambda c: c.mtime, reverse=True)
        recent = [c for c in candidates if self.is_recent(c.mtime)]
        logger.info(
            "Loading %d recent session file(s) (< %d min old)",
            len(recent),
            round(self.max_file_age / 60),
        )

        most_recent = next((c for c in recent if c.size > 0), None)
        loaded: list[str] = []
        for candidate in recent:
            session_id = self.derive_session_id(candidate.path)
            if not session_id:
                logger.debug("Skipping %s: no session id", candidate.path)
                continue

            self.session_files[session_id] = candidate.path
            self.store.get_or_create(session_id, at=candidate.mtime)
            if candidate is most_recent:
                logger.info("Detected current active session: %s", session_id)
                self.store.set_status(session_id, SessionStatus.ACTIVE, at=candidate.mtime)

            self.tracker.track(candidate.path, 0)
            batch = self._read(candidate.path, replay_at=candidate.mtime)
            if batch is not None:
                self.apply_batch(batch)
            loaded.append(session_id)
        return loaded

    def _prime_history(self) -> None:
        # Existing history is not replayed; only entries appended from now on count.
        try:
            size = self.history_file.stat().st_size
        except OSError:
            return
        self.history_tracker.track(self.history_file, size)

    def _scan_todos(self) -> None:
        if not self.todos_dir.exists():
            return
        for path in sorted(self.todos_dir.glob("*.json")):
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if not self.is_recent(mtime):
                continue
            snapshot = self._load_todos(path, at=mtime)
            if snapshot is not None:
                self.apply_todos(snapshot)

    # ── session logs ────────────────────────────────────────────────

    def _read(self, path: Path, replay_at: Optional[float] = None) -> Optional[FileBatch]:
        started = time.monotonic()
        try:
            result = self.tracker.read_new(path)
        except OSError as e:
            logger.error("Error processing file %s: %s", path, e)
            record_ingestion("session_file", "error", (time.monotonic() - started) * 1000)
            return None

        if result.truncated:
            logger.info("File shrank, offset reset: %s", path)
        batch = FileBatch(
            path=path,
            records=list(parse_lines(result.lines)),
            replay_at=replay_at,
            truncated=result.truncated,
        )
        record_ingestion("session_file", "ok", (time.monotonic() - started) * 1000)
        return batch

    def read_session_file(self, path: Path, change: str) -> Optional[FileBatch]:
        """I/O step for a project-log notification (``added`` or ``modified``)."""
        path = Path(path)
        if not self.tracker.is_tracked(path):
            try:
                stats = path.stat()
            except OSError as e:
                logger.error("Error handling %s for %s: %s", change, path, e)
                return None

            if change == "added":
                age = self._age(stats.st_mtime)
                if age > self.max_file_age:
                    logger.info("Skipping old session file: %s (%d min old)", path, round(age / 60))
                    return None
                logger.info("New session file: %s", path)
                self.tracker.track(path, 0)
            else:
                # Filtered as too old at startup but written to now: only new content counts.
                logger.info("Previously inactive session now active: %s", path)
                self.tracker.track(path, stats.st_size)

        return self._read(path)

    def apply_batch(self, batch: FileBatch) -> int:
        """Mutation step: feed a batch's records to the reconciler."""
        applied = 0
        for record in batch.records:
            try:
                session_id = self.reconciler.apply(record, batch.path, at=batch.replay_at)
            except Exception:
                logger.exception("Error applying %s record from %s", record.raw_type, batch.path)
                continue
            if session_id:
                self.session_files[session_id] = batch.path
                applied += 1
        return applied

    def handle_added(self, path: Path) -> int:
        batch = self.read_session_file(path, "added")
        return self.apply_batch(batch) if batch else 0

    def handle_changed(self, path: Path) -> int:
        batch = self.read_session_file(path, "modified")
        return self.apply_batch(batch) if batch else 0

    def forget(self, path: Path) -> None:
        self.tracker.forget(path)

    # ── aggregate history file ──────────────────────────────────────

    def read_history(self, change: str = "modified") -> list[dict[str, Any]]:
        path = self.history_file
        if not self.history_tracker.is_tracked(path):
            try:
                stats = path.stat()
            except OSError as e:
                logger.error("Error reading history file %s: %s", path, e)
                return []
            if change == "added" and self.is_recent(stats.st_mtime):
                self.history_tracker.track(path, 0)
            else:
                self.history_tracker.track(path, stats.st_size)

        started = time.monotonic()
        try:
            result = self.history_tracker.read_new(path)
        except OSError as e:
            logger.error("Error reading history file %s: %s", path, e)
            record_ingestion("history", "error", (time.monotonic() - started) * 1000)
            return []

        entries = [entry for entry in (decode_line(line) for line in result.lines) if entry is not None]
        record_ingestion("history", "ok", (time.monotonic() - started) * 1000)
        if entries:
            logger.debug("History file updated (%d new entr%s)", len(entries), "y" if len(entries) == 1 else "ies")
        return entries

    def apply_history(self, entries: list[dict[str, Any]]) -> int:
        applied = 0
        for entry in entries:
            try:
                if self.reconciler.apply_history_entry(entry):
                    applied += 1
            except Exception:
                logger.exception("Error applying history entry from %s", self.history_file)
        return applied

    def handle_history_changed(self, change: str = "modified") -> int:
        return self.apply_history(self.read_history(change))

    # ── todo snapshots ──────────────────────────────────────────────

    def _load_todos(self, path: Path, at: Optional[float] = None) -> Optional[TodoSnapshot]:
        session_id = todo_session_id(path)
        if not session_id:
            return None
        try:
            todos = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            # Snapshots are rewritten in place and may be read half-written.
            logger.debug("Could not read todo file %s: %s", path, e)
            return None
        if not isinstance(todos, list) or not todos:
            return None
        return TodoSnapshot(path=path, session_id=session_id, todos=todos, at=at)

    def read_todos(self, path: Path, change: str) -> Optional[TodoSnapshot]:
        path = Path(path)
        if change == "added":
            try:
                mtime = path.stat().st_mtime
            except OSError as e:
                logger.error("Error handling new todo file %s: %s", path, e)
                return None
            if not self.is_recent(mtime):
                logger.info("Skipping old todo file: %s", path)
                return None
        return self._load_todos(path)

    def apply_todos(self, snapshot: TodoSnapshot) -> None:
        self.store.update_todos(snapshot.session_id, snapshot.todos, at=snapshot.at)

    def handle_todo_changed(self, path: Path, change: str = "modified") -> None:
        snapshot = self.read_todos(path, change)
        if snapshot is not None:
            self.apply_todos(snapshot)

    # ── teardown ────────────────────────────────────────────────────

    def reset(self) -> None:
        self.tracker.clear()
        self.history_tracker.clear()
        self.session_files.clear()
