"""Decode JSONL log lines into typed records."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator

from ccmonitor.observability import record_parser_failure

logger = logging.getLogger("ccmonitor.parser")


class RecordType(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"
    RESULT = "result"
    QUEUE_OPERATION = "queue-operation"
    INIT = "init"
    ERROR = "error"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, value: Any) -> RecordType:
        if isinstance(value, str):
            try:
                return cls(value.strip())
            except ValueError:
                pass
        return cls.UNKNOWN


def _str_or_none(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


@dataclass(frozen=True)
class LogRecord:
    """One self-describing event decoded from a single log line."""

    type: RecordType
    raw_type: str
    session_id: str | None = None
    agent_id: str | None = None
    timestamp: Any = None
    cwd: str | None = None
    git_branch: str | None = None
    version: str | None = None
    is_sidechain: bool = False
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> dict[str, Any]:
        message = self.payload.get("message")
        return message if isinstance(message, dict) else {}

    @property
    def content(self) -> Any:
        return self.message.get("content")

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LogRecord:
        raw_type = data.get("type")
        metadata = data.get("metadata")
        session_id = (
            _str_or_none(data.get("sessionId"))
            or _str_or_none(data.get("session_id"))
            or (_str_or_none(metadata.get("session_id")) if isinstance(metadata, dict) else None)
        )
        return cls(
            type=RecordType.from_raw(raw_type),
            raw_type=raw_type if isinstance(raw_type, str) else "",
            session_id=session_id,
            agent_id=_str_or_none(data.get("agentId")),
            timestamp=data.get("timestamp"),
            cwd=_str_or_none(data.get("cwd")),
            git_branch=_str_or_none(data.get("gitBranch")),
            version=_str_or_none(data.get("version")),
            is_sidechain=data.get("isSidechain") is True,
            payload=data,
        )


def decode_line(line: str) -> dict[str, Any] | None:
    """Decode one JSON object line, or ``None`` when it is not one."""
    text = line.strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_record(line: str) -> LogRecord | None:
    """Parse one log line. Malformed lines are logged and dropped."""
    if not line.strip():
        return None
    data = decode_line(line)
    if data is None:
        logger.debug("Skipping malformed log line: %.120s", line.strip())
        record_parser_failure("jsonl")
        return None
    return LogRecord.from_dict(data)


def parse_lines(lines: Iterable[str]) -> Iterator[LogRecord]:
    for line in lines:
        record = parse_record(line)
        if record is not None:
            yield record


def tool_result_to_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks: list[str] = []
        for block in content:
            if isinstance(block, str):
                chunks.append(block)
            elif isinstance(block, dict):
                text = block.get("text")
                if isinstance(text, str) and text.strip():
                    chunks.append(text)
                elif isinstance(block.get("content"), str):
                    chunks.append(block["content"])
        return "\n".join(chunks)
    try:
        return json.dumps(content)
    except (TypeError, ValueError):
        return str(content)
