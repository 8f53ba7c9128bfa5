"""Pydantic models for live session state, matching the dashboard's JSON shape."""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field

from ccmonitor import config
from ccmonitor.bounded import BoundedHistory


class SessionStatus(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    COMPLETED = "completed"
    ERROR = "error"


class ToolStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SessionEventType(str, Enum):
    CREATED = "session_created"
    UPDATED = "session_updated"
    TOOL_STARTED = "tool_started"
    TOOL_COMPLETED = "tool_completed"
    COMPLETED = "session_completed"
    REMOVED = "session_removed"


# ── Session-related models ──────────────────────────────────────────

class TokenUsage(BaseModel):
    input: int = 0
    output: int = 0
    cacheRead: int = 0
    cacheCreation: int = 0

    @computed_field
    @property
    def total(self) -> int:
        return self.input + self.output


class ToolExecution(BaseModel):
    """The single in-flight tool call of a session."""

    name: str
    toolId: Optional[str] = None
    startTime: float
    status: ToolStatus = ToolStatus.RUNNING
    details: dict[str, Any] = Field(default_factory=dict)


class ToolHistoryEntry(BaseModel):
    name: str
    toolId: Optional[str] = None
    status: ToolStatus = ToolStatus.COMPLETED
    durationMs: int = 0
    completedAt: float
    details: dict[str, Any] = Field(default_factory=dict)
    output: Optional[str] = None


class SessionMessage(BaseModel):
    role: str  # "user" | "assistant"
    content: str
    timestamp: str


def _tool_history() -> BoundedHistory:
    return BoundedHistory(config.MAX_TOOL_HISTORY, newest_first=True)


def _message_history() -> BoundedHistory:
    return BoundedHistory(config.MAX_MESSAGES)


class Session(BaseModel):
    id: str
    status: SessionStatus = SessionStatus.ACTIVE
    startTime: float
    lastActivity: float
    model: Optional[str] = None
    modelShort: Optional[str] = None
    cwd: Optional[str] = None
    gitBranch: Optional[str] = None
    version: Optional[str] = None
    prompt: Optional[str] = None
    tokens: TokenUsage = Field(default_factory=TokenUsage)
    estimatedCost: float = 0.0
    currentTool: Optional[ToolExecution] = None
    toolHistory: BoundedHistory = Field(default_factory=_tool_history)  # newest first
    messages: BoundedHistory = Field(default_factory=_message_history)  # oldest first
    todos: Optional[list[Any]] = None
    # Sub-agent linkage
    parentSessionId: Optional[str] = None
    agentId: Optional[str] = None
    subAgents: list[str] = Field(default_factory=list)
    isSubAgent: bool = False
    isSidechain: bool = False


class SessionEvent(BaseModel):
    """Change notification emitted by the session store."""

    type: SessionEventType
    sessionId: str
    session: Optional[Session] = None  # None for removals
