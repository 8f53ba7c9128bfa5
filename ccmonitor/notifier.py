"""In-process fan-out of session change events."""
from __future__ import annotations

import logging
from typing import Callable

from ccmonitor.models import SessionEvent

logger = logging.getLogger("ccmonitor.notifier")

Subscriber = Callable[[SessionEvent], None]


class ChangeNotifier:
    """Synchronous publish/subscribe channel.

    Subscribers run in registration order on the publishing thread. A
    failing subscriber is logged and skipped; it never affects the
    remaining subscribers or the mutation that produced the event.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: SessionEvent) -> None:
        # Copy so a subscriber may unsubscribe itself during delivery.
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Error in change subscriber for %s (%s)", event.type.value, event.sessionId)

    def clear(self) -> None:
        self._subscribers.clear()
