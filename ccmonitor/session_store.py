"""Authoritative in-memory table of live sessions.

The store performs no I/O. Every mutator that changes observable state
publishes a ``SessionEvent`` through the ``ChangeNotifier``. Mutators take
an optional ``at`` timestamp: when given (historical replay of old log
files) it is used instead of the clock for ``lastActivity`` and other
time fields, so back-filled sessions are not marked freshly active.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from ccmonitor import config
from ccmonitor.bounded import BoundedHistory
from ccmonitor.date_utils import epoch_to_iso
from ccmonitor.model_identity import ModelPricing
from ccmonitor.models import (
    Session,
    SessionEvent,
    SessionEventType,
    SessionMessage,
    SessionStatus,
    ToolExecution,
    ToolHistoryEntry,
    ToolStatus,
)
from ccmonitor.notifier import ChangeNotifier
from ccmonitor.observability import record_token_cost, record_tool_result
from ccmonitor.text_utils import truncate

logger = logging.getLogger("ccmonitor.store")

_USAGE_FIELDS = (
    ("input", "input_tokens"),
    ("output", "output_tokens"),
    ("cacheRead", "cache_read_input_tokens"),
    ("cacheCreation", "cache_creation_input_tokens"),
)


def _usage_count(usage: Mapping[str, Any], key: str) -> int:
    raw = usage.get(key)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return 0
    try:
        if not math.isfinite(raw):
            return 0
    except OverflowError:
        # integer beyond float range
        return 0
    return max(0, int(raw))


@dataclass
class SweepResult:
    removed: list[str] = field(default_factory=list)
    idled: list[str] = field(default_factory=list)


class SessionStore:
    def __init__(
        self,
        notifier: ChangeNotifier | None = None,
        *,
        session_timeout: float = config.SESSION_TIMEOUT_SECONDS,
        idle_threshold: float = config.IDLE_THRESHOLD_SECONDS,
        max_tool_history: int = config.MAX_TOOL_HISTORY,
        max_messages: int = config.MAX_MESSAGES,
        message_max_chars: int = config.MESSAGE_MAX_CHARS,
        pricing: ModelPricing | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.notifier = notifier or ChangeNotifier()
        self.session_timeout = session_timeout
        self.idle_threshold = idle_threshold
        self.max_tool_history = max_tool_history
        self.max_messages = max_messages
        self.message_max_chars = message_max_chars
        self.pricing = pricing or ModelPricing()
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._agent_index: dict[str, str] = {}  # agentId -> session id
        self._pending_children: dict[str, list[str]] = {}  # parent id -> child ids

    # ── internals ───────────────────────────────────────────────────

    def _now(self, at: float | None = None) -> float:
        return self._clock() if at is None else at

    def _emit(self, event_type: SessionEventType, session: Session) -> None:
        self.notifier.publish(SessionEvent(type=event_type, sessionId=session.id, session=session))

    def _touch(self, session: Session, at: float | None) -> None:
        session.lastActivity = self._now(at)
        # Live activity wakes an idle session; historical replay does not.
        if at is None and session.status == SessionStatus.IDLE:
            session.status = SessionStatus.ACTIVE

    # ── creation & lookup ───────────────────────────────────────────

    def get_or_create(self, session_id: str, at: float | None = None) -> Session:
        """Return the session, creating it on first reference.

        For an existing session this only refreshes ``lastActivity``.
        """
        session = self._sessions.get(session_id)
        if session is not None:
            self._touch(session, at)
            return session

        timestamp = self._now(at)
        session = Session(
            id=session_id,
            startTime=timestamp,
            lastActivity=timestamp,
            toolHistory=BoundedHistory(self.max_tool_history, newest_first=True),
            messages=BoundedHistory(self.max_messages),
        )
        self._sessions[session_id] = session

        pending = self._pending_children.pop(session_id, [])
        for child_id in pending:
            if child_id in self._sessions and child_id not in session.subAgents:
                session.subAgents.append(child_id)

        self._emit(SessionEventType.CREATED, session)
        logger.info("Session created: %s", session_id)
        return session

    def get(self, session_or_agent_id: str) -> Optional[Session]:
        session = self._sessions.get(session_or_agent_id)
        if session is not None:
            return session
        mapped = self._agent_index.get(session_or_agent_id)
        return self._sessions.get(mapped) if mapped else None

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def list_all(self) -> list[Session]:
        return list(self._sessions.values())

    def list_active(self) -> list[Session]:
        return [s for s in self._sessions.values() if s.status == SessionStatus.ACTIVE]

    # ── set-once attributes ─────────────────────────────────────────

    def update_model_info(
        self,
        session_id: str,
        model: str | None,
        version: str | None = None,
        at: float | None = None,
    ) -> None:
        session = self.get_or_create(session_id, at)
        changed = False
        if model and not session.model:
            session.model = model
            session.modelShort = self.pricing.short_name(model)
            session.estimatedCost = self.pricing.estimate_cost(
                session.modelShort, session.tokens.input, session.tokens.output
            )
            changed = True
            logger.info("Session %s using model: %s", session_id, session.modelShort)
        if version and not session.version:
            session.version = version
            changed = True
        if changed:
            self._emit(SessionEventType.UPDATED, session)

    def update_cwd(self, session_id: str, cwd: str | None, at: float | None = None) -> None:
        session = self.get_or_create(session_id, at)
        if cwd and not session.cwd:
            session.cwd = cwd
            self._emit(SessionEventType.UPDATED, session)

    def update_git_branch(self, session_id: str, branch: str | None, at: float | None = None) -> None:
        session = self.get_or_create(session_id, at)
        if branch and not session.gitBranch:
            session.gitBranch = branch
            self._emit(SessionEventType.UPDATED, session)

    # ── additive / replace-always fields ────────────────────────────

    def update_token_usage(self, session_id: str, usage: Mapping[str, Any] | None, at: float | None = None) -> None:
        """Add one message's usage counters to the session's running totals."""
        session = self._sessions.get(session_id)
        if session is None or not usage:
            return

        tokens = session.tokens
        for attr, key in _USAGE_FIELDS:
            setattr(tokens, attr, getattr(tokens, attr) + _usage_count(usage, key))

        previous_cost = session.estimatedCost
        session.estimatedCost = self.pricing.estimate_cost(session.modelShort, tokens.input, tokens.output)
        self._touch(session, at)
        record_token_cost(
            model=session.modelShort or "",
            token_input=_usage_count(usage, "input_tokens"),
            token_output=_usage_count(usage, "output_tokens"),
            cost_usd=max(0.0, session.estimatedCost - previous_cost),
        )
        self._emit(SessionEventType.UPDATED, session)

    def update_prompt(self, session_id: str, prompt: str, at: float | None = None) -> None:
        session = self.get_or_create(session_id, at)
        session.prompt = prompt
        self._emit(SessionEventType.UPDATED, session)

    def update_todos(self, session_id: str, todos: list[Any], at: float | None = None) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.todos = list(todos)
        self._touch(session, at)
        self._emit(SessionEventType.UPDATED, session)

    def add_message(
        self,
        session_id: str,
        role: str,
        content: str | None,
        timestamp: str | None = None,
        at: float | None = None,
    ) -> None:
        session = self._sessions.get(session_id)
        if session is None or not content:
            return

        stored = truncate(content, self.message_max_chars)
        last = session.messages.newest()
        if last is not None and last.role == role and last.content == stored:
            return

        session.messages.push(
            SessionMessage(
                role=role,
                content=stored,
                timestamp=timestamp or epoch_to_iso(self._now(at)),
            )
        )
        self._touch(session, at)
        self._emit(SessionEventType.UPDATED, session)

    # ── status ──────────────────────────────────────────────────────

    def set_status(self, session_id: str, status: SessionStatus, at: float | None = None) -> None:
        """Explicit status change. Idling is reserved for ``sweep``."""
        if status == SessionStatus.IDLE:
            raise ValueError("sessions are idled only by the staleness sweep")
        if status == SessionStatus.COMPLETED:
            self.complete_session(session_id, at)
            return
        if status == SessionStatus.ERROR:
            self.fail_session(session_id, at)
            return

        session = self._sessions.get(session_id)
        if session is None:
            return
        session.status = status
        self._touch(session, at)
        self._emit(SessionEventType.UPDATED, session)

    def complete_session(self, session_id: str, at: float | None = None) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        if session.currentTool is not None:
            self.complete_tool(session_id, ToolStatus.COMPLETED, at=at)

        session.status = SessionStatus.COMPLETED
        self._touch(session, at)
        self._emit(SessionEventType.COMPLETED, session)
        logger.info("Session completed: %s", session_id)

    def fail_session(self, session_id: str, at: float | None = None) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        if session.currentTool is not None:
            self.complete_tool(session_id, ToolStatus.FAILED, at=at)

        session.status = SessionStatus.ERROR
        self._touch(session, at)
        self._emit(SessionEventType.UPDATED, session)
        logger.warning("Session %s reported an error", session_id)

    # ── tools ───────────────────────────────────────────────────────

    def start_tool(
        self,
        session_id: str,
        tool_name: str,
        *,
        tool_id: str | None = None,
        details: Mapping[str, Any] | None = None,
        at: float | None = None,
    ) -> None:
        session = self.get_or_create(session_id, at)

        # Close a running tool whose result was never logged.
        if session.currentTool is not None and session.currentTool.status == ToolStatus.RUNNING:
            self.complete_tool(session_id, ToolStatus.COMPLETED, at=at)

        session.currentTool = ToolExecution(
            name=tool_name,
            toolId=tool_id,
            startTime=self._now(at),
            details=dict(details or {}),
        )
        session.status = SessionStatus.ACTIVE
        self._touch(session, at)
        self._emit(SessionEventType.TOOL_STARTED, session)
        logger.debug("Tool started in session %s: %s", session_id, tool_name)

    def complete_tool(
        self,
        session_id: str,
        status: ToolStatus = ToolStatus.COMPLETED,
        *,
        output: str | None = None,
        at: float | None = None,
    ) -> None:
        session = self._sessions.get(session_id)
        if session is None or session.currentTool is None:
            return

        current = session.currentTool
        completed_at = self._now(at)
        duration_ms = max(0, int(round((completed_at - current.startTime) * 1000)))
        session.toolHistory.push(
            ToolHistoryEntry(
                name=current.name,
                toolId=current.toolId,
                status=status,
                durationMs=duration_ms,
                completedAt=completed_at,
                details=dict(current.details),
                output=output,
            )
        )
        session.currentTool = None
        self._touch(session, at)
        record_tool_result(current.name, status.value, duration_ms=duration_ms)
        self._emit(SessionEventType.TOOL_COMPLETED, session)
        logger.debug("Tool completed in session %s: %s (%dms)", session_id, current.name, duration_ms)

    # ── sub-agents ──────────────────────────────────────────────────

    def create_sub_agent(
        self,
        agent_id: str,
        parent_session_id: str,
        *,
        is_sidechain: bool = False,
        at: float | None = None,
    ) -> Session:
        """Create (or adopt) a sub-agent session and link it to its parent.

        Idempotent: repeated calls neither duplicate the child link nor
        emit further events. A parent that does not exist yet picks up the
        link when it is created.
        """
        session = self.get_or_create(agent_id, at)
        changed = False
        if not session.isSubAgent or session.parentSessionId != parent_session_id:
            session.isSubAgent = True
            session.agentId = agent_id
            session.parentSessionId = parent_session_id
            changed = True
        if is_sidechain and not session.isSidechain:
            session.isSidechain = True
            changed = True
        self._agent_index[agent_id] = agent_id
        if changed:
            self._emit(SessionEventType.UPDATED, session)
            logger.info("Sub-agent %s linked to parent %s", agent_id, parent_session_id)

        self._link_sub_agent(parent_session_id, agent_id)
        return session

    def _link_sub_agent(self, parent_session_id: str, agent_id: str) -> None:
        parent = self._sessions.get(parent_session_id)
        if parent is None:
            pending = self._pending_children.setdefault(parent_session_id, [])
            if agent_id not in pending:
                pending.append(agent_id)
            return
        if agent_id not in parent.subAgents:
            parent.subAgents.append(agent_id)
            self._emit(SessionEventType.UPDATED, parent)

    # ── lifecycle sweep ─────────────────────────────────────────────

    def sweep(self, now: float | None = None) -> SweepResult:
        """Idle quiet sessions and delete those past the inactivity timeout.

        This is the only code path that deletes or idles a session.
        """
        current = self._now(now)
        result = SweepResult()

        for session_id, session in list(self._sessions.items()):
            inactive = current - session.lastActivity

            if inactive > self.session_timeout:
                self._remove(session_id)
                result.removed.append(session_id)
                logger.info("Removed stale session: %s (inactive for %ds)", session_id, round(inactive))
                continue

            if (
                session.status == SessionStatus.ACTIVE
                and session.currentTool is None
                and inactive >= self.idle_threshold
            ):
                session.status = SessionStatus.IDLE
                result.idled.append(session_id)
                self._emit(SessionEventType.UPDATED, session)
                logger.info("Session %s marked as idle (inactive for %ds)", session_id, round(inactive))

        if result.removed:
            logger.info("Cleanup: removed %d stale session(s)", len(result.removed))
        if result.idled:
            logger.info("Cleanup: marked %d session(s) as idle", len(result.idled))
        return result

    def _remove(self, session_id: str) -> None:
        del self._sessions[session_id]
        for agent_id in [a for a, target in self._agent_index.items() if target == session_id]:
            del self._agent_index[agent_id]
        self._pending_children.pop(session_id, None)
        self.notifier.publish(SessionEvent(type=SessionEventType.REMOVED, sessionId=session_id))

    def clear(self) -> None:
        self._sessions.clear()
        self._agent_index.clear()
        self._pending_children.clear()
