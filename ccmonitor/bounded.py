"""Fixed-capacity history buffer shared by tool history and message logs."""
from __future__ import annotations

from collections import deque
from typing import Any, Generic, Iterator, TypeVar

from pydantic import BaseModel, GetCoreSchemaHandler, GetJsonSchemaHandler
from pydantic_core import core_schema

T = TypeVar("T")


class BoundedHistory(Generic[T]):
    """Ring buffer that evicts its oldest entry once ``maxlen`` is reached.

    ``newest_first=True`` keeps the most recent entry at index 0 (tool
    history); otherwise entries are kept oldest-first (messages). In both
    orientations overflow removes the oldest entry.
    """

    def __init__(self, maxlen: int, *, newest_first: bool = False, items: list[T] | None = None):
        if maxlen < 1:
            raise ValueError("maxlen must be at least 1")
        self.newest_first = newest_first
        self._items: deque[T] = deque(maxlen=maxlen)
        for item in items or []:
            self._items.append(item)

    @property
    def maxlen(self) -> int:
        return self._items.maxlen or 0

    def push(self, item: T) -> None:
        if self.newest_first:
            # A full deque drops from the right end, which holds the oldest entry here.
            self._items.appendleft(item)
        else:
            self._items.append(item)

    def newest(self) -> T | None:
        if not self._items:
            return None
        return self._items[0] if self.newest_first else self._items[-1]

    def clear(self) -> None:
        self._items.clear()

    def to_list(self) -> list[T]:
        return list(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BoundedHistory):
            return NotImplemented
        return (
            self.maxlen == other.maxlen
            and self.newest_first == other.newest_first
            and list(self._items) == list(other._items)
        )

    def __repr__(self) -> str:
        order = "newest_first" if self.newest_first else "oldest_first"
        return f"BoundedHistory(maxlen={self.maxlen}, {order}, items={list(self._items)!r})"

    # ── pydantic integration ────────────────────────────────────────

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: GetCoreSchemaHandler) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                cls._serialize,
                info_arg=True,
            ),
        )

    @classmethod
    def __get_pydantic_json_schema__(cls, _schema: core_schema.CoreSchema, handler: GetJsonSchemaHandler) -> dict[str, Any]:
        return {"type": "array", "items": {"type": "object"}}

    @classmethod
    def _validate(cls, value: Any) -> BoundedHistory:
        if isinstance(value, BoundedHistory):
            return value
        raise ValueError("expected a BoundedHistory instance")

    @staticmethod
    def _serialize(value: BoundedHistory, info: Any) -> list[Any]:
        mode = getattr(info, "mode", "python")
        return [
            item.model_dump(mode=mode) if isinstance(item, BaseModel) else item
            for item in value
        ]
