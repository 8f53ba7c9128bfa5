"""Wires store, reconciler, discovery and watchers into one running monitor."""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

from ccmonitor import config
from ccmonitor.ingest.discovery import FileDiscovery
from ccmonitor.ingest.file_watcher import FileWatcher, Surface, WatchSurface
from ccmonitor.model_identity import ModelPricing, load_pricing
from ccmonitor.notifier import ChangeNotifier
from ccmonitor.reconciler import Reconciler
from ccmonitor.session_store import SessionStore, SweepResult

logger = logging.getLogger("ccmonitor.engine")


class MonitorEngine:
    """Owns the session store and drives it from the filesystem.

    All store mutations happen on the event loop; file reads triggered by
    watcher notifications run in a worker thread and their parsed records
    are applied back on the loop.
    """

    def __init__(
        self,
        *,
        projects_dir: Path = config.PROJECTS_DIR,
        history_file: Path = config.HISTORY_FILE,
        todos_dir: Path = config.TODOS_DIR,
        cleanup_interval: float = config.CLEANUP_INTERVAL_SECONDS,
        poll_delay_ms: int = config.POLL_DELAY_MS,
        max_file_age: float = config.MAX_FILE_AGE_SECONDS,
        pricing: Optional[ModelPricing] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.notifier = ChangeNotifier()
        self.store = SessionStore(
            self.notifier,
            pricing=pricing or load_pricing(config.PRICING_FILE),
            clock=clock,
        )
        self.reconciler = Reconciler(self.store)
        self.discovery = FileDiscovery(
            self.store,
            self.reconciler,
            projects_dir=projects_dir,
            history_file=history_file,
            todos_dir=todos_dir,
            max_file_age=max_file_age,
            clock=clock,
        )
        self.watcher = FileWatcher(poll_delay_ms=poll_delay_ms)
        self.cleanup_interval = cleanup_interval
        self._sweep_task: Optional[asyncio.Task] = None
        self._running = False
        self._handlers = {
            Surface.PROJECTS: self._on_session_file,
            Surface.HISTORY: self._on_history_file,
            Surface.TODOS: self._on_todo_file,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    def surfaces(self) -> list[WatchSurface]:
        history = self.discovery.history_file
        return [
            WatchSurface(Surface.PROJECTS, self.discovery.projects_dir, (".jsonl",)),
            WatchSurface(Surface.HISTORY, history.parent, (history.suffix,), recursive=False, file_name=history.name),
            WatchSurface(Surface.TODOS, self.discovery.todos_dir, (".json",), recursive=False),
        ]

    async def start(self, *, watch: bool = True) -> list[str]:
        """Load recent sessions, then start watchers and the sweep timer."""
        if self._running:
            logger.warning("Monitor engine already running")
            return []

        logger.info("Starting session monitor")
        self._running = True
        loaded = self.discovery.scan_existing()
        logger.info("Loaded %d session(s) from existing files", len(loaded))

        if watch:
            await self.watcher.start(self.surfaces(), self.handle_change)
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        return loaded

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.watcher.stop()
        self.discovery.reset()
        logger.info("Session monitor stopped")

    # ── change handling ─────────────────────────────────────────────

    async def handle_change(self, surface: Surface, change_type: str, path: Path) -> None:
        if change_type == "deleted":
            if surface == Surface.PROJECTS:
                self.discovery.forget(path)
            return
        handler = self._handlers.get(surface)
        if handler is None:
            logger.debug("No handler for surface %s", surface)
            return
        await handler(change_type, path)

    async def _on_session_file(self, change_type: str, path: Path) -> None:
        batch = await asyncio.to_thread(self.discovery.read_session_file, path, change_type)
        if batch is not None:
            self.discovery.apply_batch(batch)

    async def _on_history_file(self, change_type: str, path: Path) -> None:
        entries = await asyncio.to_thread(self.discovery.read_history, change_type)
        self.discovery.apply_history(entries)

    async def _on_todo_file(self, change_type: str, path: Path) -> None:
        snapshot = await asyncio.to_thread(self.discovery.read_todos, path, change_type)
        if snapshot is not None:
            self.discovery.apply_todos(snapshot)

    # ── staleness sweep ─────────────────────────────────────────────

    def sweep_once(self, now: Optional[float] = None) -> SweepResult:
        return self.store.sweep(now)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Session sweep failed")

    def status(self) -> dict[str, Any]:
        sessions = self.store.list_all()
        return {
            "running": self._running,
            "watcher": "running" if self.watcher.is_running else "stopped",
            "surfaces": self.watcher.active_surfaces,
            "sessions": len(sessions),
            "activeSessions": len(self.store.list_active()),
            "trackedFiles": len(self.discovery.tracker),
        }
