"""Shared timestamp normalization helpers."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any


def _format_datetime_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt.isoformat().replace("+00:00", "Z")


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        return None


def normalize_iso_date(value: Any) -> str:
    """Convert record timestamps (ISO strings or epoch numbers) to UTC ISO strings."""
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, datetime):
        return _format_datetime_utc(value)
    if isinstance(value, (int, float)):
        try:
            seconds = float(value)
        except OverflowError:
            return ""
        # history.jsonl stores epoch milliseconds
        return epoch_to_iso(seconds / 1000 if seconds > 1e11 else seconds)
    if isinstance(value, str):
        parsed = _parse_datetime_token(value)
        if parsed:
            return _format_datetime_utc(parsed)
    return ""


def epoch_to_iso(seconds: float) -> str:
    """UTC ISO string for an epoch value, or "" when it is not a representable time."""
    if not math.isfinite(seconds):
        return ""
    try:
        return _format_datetime_utc(datetime.fromtimestamp(seconds, tz=timezone.utc))
    except (OverflowError, ValueError, OSError):
        return ""
