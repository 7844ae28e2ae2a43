"""Small publish/subscribe bus for lifecycle signals."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from .logging import get_logger

Handler = Callable[[Any], None]


class EventBus:
    """Named-event observer registry owned by the composition root.

    Handlers run synchronously in subscription order. A failing handler is
    logged and does not stop the remaining handlers or the emitter.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._subs: Dict[str, List[Handler]] = {}
        self._logger = logger or get_logger("events")

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` and return a callable that removes it."""
        self._subs.setdefault(event, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._subs.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def emit(self, event: str, payload: Any = None) -> None:
        for handler in list(self._subs.get(event, [])):
            try:
                handler(payload)
            except Exception:
                self._logger.exception(
                    "Event handler failed", extra={"event": event}
                )

    def clear(self) -> None:
        self._subs.clear()

    def handler_count(self, event: str) -> int:
        return len(self._subs.get(event, []))
