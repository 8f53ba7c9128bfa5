"""Observability helpers."""

from ccmonitor.observability.otel import (
    initialize,
    is_enabled,
    shutdown,
    start_span,
    record_ingestion,
    record_parser_failure,
    record_tool_result,
    record_token_cost,
)

__all__ = [
    "initialize",
    "is_enabled",
    "shutdown",
    "start_span",
    "record_ingestion",
    "record_parser_failure",
    "record_tool_result",
    "record_token_cost",
]
