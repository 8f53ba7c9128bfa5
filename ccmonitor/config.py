"""ccmonitor configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if not value or not value.strip():
        return default
    return Path(value).expanduser()


# Claude data locations
CLAUDE_DIR = _env_path("CCMONITOR_CLAUDE_DIR", Path.home() / ".claude")
PROJECTS_DIR = _env_path("CCMONITOR_PROJECTS_DIR", CLAUDE_DIR / "projects")
HISTORY_FILE = _env_path("CCMONITOR_HISTORY_FILE", CLAUDE_DIR / "history.jsonl")
TODOS_DIR = _env_path("CCMONITOR_TODOS_DIR", CLAUDE_DIR / "todos")

# Session lifecycle
SESSION_TIMEOUT_SECONDS = _env_float("CCMONITOR_SESSION_TIMEOUT_SECONDS", 300.0)
IDLE_THRESHOLD_SECONDS = _env_float("CCMONITOR_IDLE_THRESHOLD_SECONDS", 30.0)
CLEANUP_INTERVAL_SECONDS = _env_float("CCMONITOR_CLEANUP_INTERVAL_SECONDS", 60.0)

# Bounded history
MAX_TOOL_HISTORY = _env_int("CCMONITOR_MAX_TOOL_HISTORY", 10)
MAX_MESSAGES = _env_int("CCMONITOR_MAX_MESSAGES", 20)
MESSAGE_MAX_CHARS = _env_int("CCMONITOR_MESSAGE_MAX_CHARS", 1000)
PROMPT_MAX_CHARS = _env_int("CCMONITOR_PROMPT_MAX_CHARS", 200)

# Discovery
# Only files modified within this window are loaded on startup.
MAX_FILE_AGE_SECONDS = _env_float("CCMONITOR_MAX_FILE_AGE_SECONDS", 600.0)
SESSION_ID_SCAN_LINES = _env_int("CCMONITOR_SESSION_ID_SCAN_LINES", 10)
POLL_DELAY_MS = _env_int("CCMONITOR_POLL_DELAY_MS", 500)
SUBAGENT_FILE_PREFIX = os.getenv("CCMONITOR_SUBAGENT_FILE_PREFIX", "agent-")
SUBAGENT_DIR_NAME = os.getenv("CCMONITOR_SUBAGENT_DIR_NAME", "subagents")
PLACEHOLDER_PROMPTS = frozenset(
    token.strip()
    for token in os.getenv("CCMONITOR_PLACEHOLDER_PROMPTS", "Warmup").split(",")
    if token.strip()
)

# Optional YAML file replacing the built-in model pricing table
PRICING_FILE = os.getenv("CCMONITOR_PRICING_FILE", "")

# Observability
LOG_LEVEL = os.getenv("CCMONITOR_LOG_LEVEL", "INFO").upper()
OTEL_ENABLED = _env_bool("CCMONITOR_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("CCMONITOR_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("CCMONITOR_OTEL_SERVICE_NAME", "ccmonitor")
PROM_PORT = _env_int("CCMONITOR_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("CCMONITOR_HOST", "0.0.0.0")
PORT = _env_int("CCMONITOR_PORT", 3002)

# CORS
FRONTEND_ORIGIN = os.getenv("CCMONITOR_FRONTEND_ORIGIN", "http://localhost:3000")
