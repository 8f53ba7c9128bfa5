"""Map parsed log records onto session store mutations.

Each record is first classified (top-level session vs. sub-agent), then
dispatched on its ``RecordType`` through a closed handler table with an
explicit default.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, Callable, Optional

from ccmonitor import config
from ccmonitor.date_utils import normalize_iso_date
from ccmonitor.models import ToolStatus
from ccmonitor.parsers.records import LogRecord, RecordType, tool_result_to_text
from ccmonitor.parsers.tool_details import extract_tool_details
from ccmonitor.session_store import SessionStore
from ccmonitor.text_utils import truncate

logger = logging.getLogger("ccmonitor.reconciler")

TOOL_OUTPUT_MAX_CHARS = 200


@dataclass(frozen=True)
class Classification:
    effective_id: Optional[str]
    is_sub_agent: bool
    parent_id: Optional[str] = None


def is_sub_agent_path(
    path_hint: str | PurePath | None,
    prefix: str = config.SUBAGENT_FILE_PREFIX,
    dir_name: str = config.SUBAGENT_DIR_NAME,
) -> bool:
    if not path_hint:
        return False
    parts = PurePath(path_hint).parts
    return any(part.startswith(prefix) or part == dir_name for part in parts)


def classify(
    path_hint: str | PurePath | None,
    session_id: str | None,
    agent_id: str | None,
    *,
    prefix: str = config.SUBAGENT_FILE_PREFIX,
    dir_name: str = config.SUBAGENT_DIR_NAME,
) -> Classification:
    """Decide which session a record belongs to.

    A record belongs to a sub-agent (keyed by ``agent_id``) when its file
    lives under a sub-agent subtree or when the agent id differs from the
    session id. Otherwise it belongs to the top-level session.
    """
    is_sub_agent = is_sub_agent_path(path_hint, prefix, dir_name) or bool(
        agent_id and session_id and agent_id != session_id
    )
    if is_sub_agent:
        parent_id = session_id if session_id and agent_id and session_id != agent_id else None
        return Classification(effective_id=agent_id or None, is_sub_agent=True, parent_id=parent_id)
    return Classification(effective_id=session_id or agent_id or None, is_sub_agent=False)


Handler = Callable[[str, LogRecord, Optional[float]], None]


class Reconciler:
    def __init__(
        self,
        store: SessionStore,
        *,
        subagent_prefix: str = config.SUBAGENT_FILE_PREFIX,
        subagent_dir: str = config.SUBAGENT_DIR_NAME,
        placeholder_prompts: frozenset[str] = config.PLACEHOLDER_PROMPTS,
        prompt_max_chars: int = config.PROMPT_MAX_CHARS,
    ):
        self.store = store
        self.subagent_prefix = subagent_prefix
        self.subagent_dir = subagent_dir
        self.placeholder_prompts = placeholder_prompts
        self.prompt_max_chars = prompt_max_chars
        self._handlers: dict[RecordType, Handler] = {
            RecordType.USER: self._handle_user,
            RecordType.ASSISTANT: self._handle_assistant,
            RecordType.TOOL_RESULT: self._handle_tool_result,
            RecordType.RESULT: self._handle_result,
            RecordType.QUEUE_OPERATION: self._handle_queue_operation,
            RecordType.INIT: self._handle_init,
            RecordType.ERROR: self._handle_error,
        }

    def classify(self, record: LogRecord, path_hint: str | PurePath | None = None) -> Classification:
        return classify(
            path_hint,
            record.session_id,
            record.agent_id,
            prefix=self.subagent_prefix,
            dir_name=self.subagent_dir,
        )

    def apply(
        self,
        record: LogRecord,
        path_hint: str | PurePath | None = None,
        *,
        at: float | None = None,
    ) -> Optional[str]:
        """Apply one record. Returns the effective session id, if any.

        ``at`` stamps every mutation with a historical time (startup replay).
        """
        classification = self.classify(record, path_hint)
        session_id = classification.effective_id
        if not session_id:
            logger.debug("Dropping %s record without a session id", record.raw_type or "untyped")
            return None

        if classification.is_sub_agent and classification.parent_id:
            self.store.create_sub_agent(
                session_id,
                classification.parent_id,
                is_sidechain=record.is_sidechain,
                at=at,
            )

        if record.cwd:
            self.store.update_cwd(session_id, record.cwd, at)
        if record.git_branch:
            self.store.update_git_branch(session_id, record.git_branch, at)

        handler = self._handlers.get(record.type, self._handle_other)
        handler(session_id, record, at)
        return session_id

    def apply_history_entry(self, entry: dict[str, Any], at: float | None = None) -> Optional[str]:
        """Keep-alive from the aggregate history file.

        Only entries that name their session are applied; ``project`` seeds
        the session's working directory.
        """
        session_id = entry.get("sessionId")
        if not isinstance(session_id, str) or not session_id.strip():
            return None
        self.store.get_or_create(session_id, at)
        project = entry.get("project")
        if isinstance(project, str) and project.strip():
            self.store.update_cwd(session_id, project, at)
        return session_id

    # ── per-type handlers ───────────────────────────────────────────

    def _timestamp(self, record: LogRecord) -> str | None:
        return normalize_iso_date(record.timestamp) or None

    def _handle_user(self, session_id: str, record: LogRecord, at: float | None) -> None:
        content = record.content
        if isinstance(content, str):
            text = content.strip()
            if not text or text in self.placeholder_prompts:
                return
            self.store.update_prompt(session_id, content[: self.prompt_max_chars], at)
            self.store.add_message(session_id, "user", content, self._timestamp(record), at)
            return

        # Tool results arrive as blocks inside user messages.
        if isinstance(content, list):
            for block in content:
                if isinstance(block, dict) and block.get("type") == "tool_result":
                    self._complete_current_tool(session_id, block, at)

    def _handle_assistant(self, session_id: str, record: LogRecord, at: float | None) -> None:
        message = record.message
        model = message.get("model")
        if isinstance(model, str) and model:
            self.store.update_model_info(session_id, model, record.version, at)
        else:
            self.store.get_or_create(session_id, at)

        usage = message.get("usage")
        if isinstance(usage, dict):
            self.store.update_token_usage(session_id, usage, at)

        content = message.get("content")
        timestamp = self._timestamp(record)
        if isinstance(content, str):
            self.store.add_message(session_id, "assistant", content, timestamp, at)
            return
        if not isinstance(content, list):
            return

        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "text" and block.get("text"):
                self.store.add_message(session_id, "assistant", block["text"], timestamp, at)
            elif block_type == "tool_use":
                self._start_tool(session_id, block, timestamp, at)

    def _start_tool(self, session_id: str, block: dict[str, Any], timestamp: str | None, at: float | None) -> None:
        tool_name = block.get("name")
        if not isinstance(tool_name, str) or not tool_name:
            tool_name = "Unknown"
        details = extract_tool_details(tool_name, block.get("input"))
        if timestamp:
            details["timestamp"] = timestamp
        tool_id = block.get("id") if isinstance(block.get("id"), str) else None
        self.store.start_tool(session_id, tool_name, tool_id=tool_id, details=details, at=at)

    def _complete_current_tool(self, session_id: str, result: dict[str, Any], at: float | None) -> None:
        session = self.store.get(session_id)
        if session is None or session.currentTool is None:
            return
        status = ToolStatus.FAILED if result.get("is_error") is True else ToolStatus.COMPLETED
        output = truncate(tool_result_to_text(result.get("content")), TOOL_OUTPUT_MAX_CHARS) or None
        self.store.complete_tool(session_id, status, output=output, at=at)

    def _handle_tool_result(self, session_id: str, record: LogRecord, at: float | None) -> None:
        self._complete_current_tool(session_id, record.payload, at)

    def _handle_result(self, session_id: str, record: LogRecord, at: float | None) -> None:
        self.store.complete_session(session_id, at)

    def _handle_error(self, session_id: str, record: LogRecord, at: float | None) -> None:
        logger.debug("Error record in session %s: %s", session_id, record.get("error"))
        self.store.fail_session(session_id, at)

    def _handle_queue_operation(self, session_id: str, record: LogRecord, at: float | None) -> None:
        if record.get("operation") == "dequeue":
            self.store.get_or_create(session_id, at)

    def _handle_init(self, session_id: str, record: LogRecord, at: float | None) -> None:
        self.store.get_or_create(session_id, at)

    def _handle_other(self, session_id: str, record: LogRecord, at: float | None) -> None:
        logger.debug("Ignoring %s record for session %s", record.raw_type or "untyped", session_id)
