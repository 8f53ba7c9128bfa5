"""File watcher service using watchfiles.

Polls the projects tree, the history file and the todos directory, each
in its own background task, and hands classified changes to a handler.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

from watchfiles import Change, awatch

from ccmonitor import config

logger = logging.getLogger("ccmonitor.watcher")


class Surface(str, Enum):
    PROJECTS = "projects"
    HISTORY = "history"
    TODOS = "todos"


@dataclass(frozen=True)
class WatchSurface:
    surface: Surface
    root: Path
    suffixes: tuple[str, ...]
    recursive: bool = True
    file_name: Optional[str] = None  # restrict to a single file inside root


ChangeHandler = Callable[[Surface, str, Path], Awaitable[None]]

_CHANGE_ORDER = {"added": 0, "modified": 1, "deleted": 2}


class FileWatcher:
    """Background polling watcher, one task per surface."""

    def __init__(self, poll_delay_ms: int = config.POLL_DELAY_MS, force_polling: bool = True):
        self.poll_delay_ms = poll_delay_ms
        self.force_polling = force_polling
        self._tasks: dict[Surface, asyncio.Task] = {}
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(self, surfaces: Iterable[WatchSurface], handler: ChangeHandler) -> None:
        """Start one watch loop per surface."""
        if self._running:
            logger.warning("File watcher already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        for surface in surfaces:
            self._tasks[surface.surface] = asyncio.create_task(self._watch_loop(surface, handler))
        logger.info("File watcher started for %d surface(s)", len(self._tasks))

    async def stop(self, timeout: float = 5.0) -> None:
        """Signal the loops to stop and wait for in-flight cycles to finish."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        tasks = list(self._tasks.values())
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            for task in pending:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._tasks.clear()
        self._stop_event = None
        logger.info("File watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_surfaces(self) -> list[str]:
        return [surface.value for surface, task in self._tasks.items() if not task.done()]

    async def _wait_for_root(self, surface: WatchSurface) -> bool:
        """Poll until the surface root exists. Returns False when stopped first."""
        logger.info("Watch path does not exist yet, waiting for %s: %s", surface.surface.value, surface.root)
        while not surface.root.exists():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_delay_ms / 1000)
                return False
            except asyncio.TimeoutError:
                continue
        return True

    async def _watch_loop(self, surface: WatchSurface, handler: ChangeHandler) -> None:
        try:
            if not surface.root.exists():
                if not await self._wait_for_root(surface):
                    return
                # Files created along with the root predate the first poll snapshot.
                for path in self._existing_files(surface):
                    await self._dispatch(handler, surface, "added", path)

            logger.info("Watching %s: %s", surface.surface.value, surface.root)
            async for changes in awatch(
                surface.root,
                stop_event=self._stop_event,
                force_polling=self.force_polling,
                poll_delay_ms=self.poll_delay_ms,
                recursive=surface.recursive,
            ):
                for change_type, path in self._classify_changes(changes, surface):
                    await self._dispatch(handler, surface, change_type, path)
        except asyncio.CancelledError:
            logger.info("File watcher task cancelled: %s", surface.surface.value)
        except Exception as e:
            logger.error("File watcher error on %s: %s", surface.surface.value, e)

    async def _dispatch(self, handler: ChangeHandler, surface: WatchSurface, change_type: str, path: Path) -> None:
        try:
            await handler(surface.surface, change_type, path)
        except Exception as e:
            logger.error("Error handling %s change for %s: %s", change_type, path, e)

    @staticmethod
    def _matches(path: Path, surface: WatchSurface) -> bool:
        if path.suffix not in surface.suffixes:
            return False
        return not surface.file_name or path.name == surface.file_name

    def _existing_files(self, surface: WatchSurface) -> list[Path]:
        candidates = surface.root.rglob("*") if surface.recursive else surface.root.iterdir()
        return sorted(path for path in candidates if path.is_file() and self._matches(path, surface))

    def _classify_changes(
        self,
        changes: set[tuple[Change, str]],
        surface: WatchSurface,
    ) -> list[tuple[str, Path]]:
        """Classify raw watchfiles changes into sorted (change_type, path) pairs."""
        result = []
        for change_type, path_str in changes:
            path = Path(path_str)
            if not self._matches(path, surface):
                continue

            if change_type == Change.deleted:
                result.append(("deleted", path))
            elif change_type == Change.added:
                result.append(("added", path))
            elif change_type == Change.modified:
                result.append(("modified", path))

        return sorted(result, key=lambda item: (str(item[1]), _CHANGE_ORDER[item[0]]))
