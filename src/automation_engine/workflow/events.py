"""In-process event bus.

Emitting is synchronous: every handler registered for the event name is
called in registration order. A failing handler is logged and does not stop
delivery to the others or propagate to the emitter.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

WORKFLOW_COMPLETED = "workflow:completed"
WORKFLOW_INPUT_REQUIRED = "workflow:input_required"
TASK_COMPLETED = "org:task_completed"

Handler = Callable[[Any], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def on(self, event: str, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, payload: Any) -> None:
        # Copy: handlers commonly unsubscribe themselves while being called.
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception("Event handler failed", extra={"event": event})
