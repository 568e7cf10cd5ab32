from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], None]


class EventEmitter:
    """Named event channels with dict payloads tagged by ``event``."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event: str, handler: EventHandler) -> Callable[[], None]:
        self._handlers.setdefault(event, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def emit(self, event: str, **payload: Any) -> None:
        message = {"event": event, **payload}
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(message)
            except Exception:
                logger.exception("Event handler for %s failed", event)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    def clear(self) -> None:
        self._handlers.clear()
