"""
Structured engine events.

Every event is written to the log as ``KIND: {json}`` and delivered to host
subscribers (UI bridge, API, tests).
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List

from .utils import get_current_timestamp, safe_json_dump

logger = logging.getLogger(__name__)

# Event kinds
STATE_CHANGED = "state_changed"
OPPORTUNITY_FOUND = "opportunity_found"
EXECUTION_SUBMITTED = "execution_submitted"
EXECUTION_CONFIRMED = "execution_confirmed"
EXECUTION_FAILED = "execution_failed"
ENGINE_ERROR = "engine_error"
GAS_ALERT = "gas_alert"
HEALTH_CHECK = "health_check"
STATS_SUMMARY = "stats_summary"
RESTART = "restart"


@dataclass
class EngineEvent:
    kind: str
    message: str
    level: int = logging.INFO
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=get_current_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "level": logging.getLevelName(self.level),
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp,
        }


Subscriber = Callable[[EngineEvent], None]


class EventBus:
    """Fan-out of engine events to the log and to subscribers."""

    def __init__(self, history_size: int = 200):
        self._subscribers: List[Subscriber] = []
        self.recent: Deque[EngineEvent] = deque(maxlen=history_size)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(
        self, kind: str, message: str, level: int = logging.INFO, **data: Any
    ) -> EngineEvent:
        event = EngineEvent(kind=kind, message=message, level=level, data=data)
        self.recent.append(event)

        logger.log(
            level,
            f"{kind.upper()}: {safe_json_dump({'message': message, **data})}",
        )

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event subscriber {callback!r} failed on {kind}: {e}")

        return event

    def recent_events(self, limit: int = 50) -> List[Dict[str, Any]]:
        events = list(self.recent)[-limit:]
        return [event.to_dict() for event in reversed(events)]
