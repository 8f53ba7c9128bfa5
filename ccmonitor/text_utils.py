"""Small string helpers shared by the parser and the store."""
from __future__ import annotations

from typing import Any


def truncate(value: Any, max_length: int = 100) -> str:
    """Stringify ``value`` and cut it to ``max_length`` characters plus an ellipsis."""
    if value is None or value == "":
        return ""
    text = str(value)
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."
