from __future__ import annotations

import logging
from typing import Any, Callable, TypeAlias

logger = logging.getLogger(__name__)

SESSION_START = "SESSION_START"
USER_REQUEST = "USER_REQUEST"
RESPONSE = "RESPONSE"
TOOL_CALL = "TOOL_CALL"
TOOL_RESPONSE = "TOOL_RESPONSE"
SESSION_END = "SESSION_END"

EventCallback: TypeAlias = Callable[[str, dict[str, Any]], None]


class EventEmitter:
    """Fire-and-forget fan-out of (event_type, payload) pairs.

    A failing callback is logged and skipped; emit() never raises.
    """

    def __init__(self, callback: EventCallback | None = None):
        self._callbacks: list[EventCallback] = []
        if callback is not None:
            self._callbacks.append(callback)

    def subscribe(self, callback: EventCallback) -> None:
        self._callbacks.append(callback)

    def emit(self, event_type: str, payload: dict[str, Any] | None = None) -> None:
        data = dict(payload or {})
        for callback in list(self._callbacks):
            try:
                callback(event_type, data)
            except Exception as e:
                logger.debug(f"Telemetry callback failed for {event_type}: {e}")
