"""Per-tool extraction of the input fields shown for a running tool."""
from __future__ import annotations

from typing import Any, Callable, Mapping

from ccmonitor.text_utils import truncate

Extractor = Callable[[Mapping[str, Any]], dict[str, Any]]


def _bash(tool_input: Mapping[str, Any]) -> dict[str, Any]:
    return {"command": truncate(tool_input.get("command"), 100)}


def _file(tool_input: Mapping[str, Any]) -> dict[str, Any]:
    return {"file": tool_input.get("file_path")}


def _edit(tool_input: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "file": tool_input.get("file_path"),
        "preview": truncate(tool_input.get("new_string"), 50),
    }


def _search(tool_input: Mapping[str, Any]) -> dict[str, Any]:
    return {"pattern": tool_input.get("pattern"), "path": tool_input.get("path")}


def _task(tool_input: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "description": truncate(tool_input.get("description"), 100),
        "agentType": tool_input.get("subagent_type"),
    }


def _web_fetch(tool_input: Mapping[str, Any]) -> dict[str, Any]:
    return {"url": tool_input.get("url")}


def _web_search(tool_input: Mapping[str, Any]) -> dict[str, Any]:
    return {"query": tool_input.get("query")}


def _todo_write(tool_input: Mapping[str, Any]) -> dict[str, Any]:
    todos = tool_input.get("todos")
    return {"count": len(todos) if isinstance(todos, list) else 0}


def _generic(tool_input: Mapping[str, Any]) -> dict[str, Any]:
    details: dict[str, Any] = {}
    if tool_input.get("description"):
        details["description"] = truncate(tool_input.get("description"), 100)
    if tool_input.get("file_path"):
        details["file"] = tool_input.get("file_path")
    if tool_input.get("command"):
        details["command"] = truncate(tool_input.get("command"), 100)
    return details


TOOL_DETAIL_EXTRACTORS: dict[str, Extractor] = {
    "Bash": _bash,
    "Read": _file,
    "Write": _file,
    "Edit": _edit,
    "Glob": _search,
    "Grep": _search,
    "Task": _task,
    "WebFetch": _web_fetch,
    "WebSearch": _web_search,
    "TodoWrite": _todo_write,
}


def extract_tool_details(tool_name: str, tool_input: Any) -> dict[str, Any]:
    """Return display details for a tool invocation; unknown tools use the generic extractor."""
    if not isinstance(tool_input, Mapping):
        tool_input = {}
    extractor = TOOL_DETAIL_EXTRACTORS.get(tool_name, _generic)
    return extractor(tool_input)
