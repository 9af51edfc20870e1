from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from agency_crm.context import get_actor_user_id, get_correlation_id

EventEnvelope = dict[str, Any]
EventHandler = Callable[[EventEnvelope], None]

ENVELOPE_VERSION = 1


class EventBus:
    """Synchronous in-process fan-out.

    Handlers subscribe to an exact event type or to a ``prefix.*`` pattern.
    Handler errors propagate to the publisher.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def subscribe(self, pattern: str, handler: EventHandler) -> Callable[[], None]:
        self._handlers.setdefault(pattern, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(pattern, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def handlers_for(self, event_type: str) -> list[EventHandler]:
        matched: list[EventHandler] = []
        for pattern, handlers in self._handlers.items():
            if pattern == event_type or (pattern.endswith(".*") and event_type.startswith(pattern[:-1])):
                matched.extend(handlers)
        return matched

    def dispatch(self, envelope: EventEnvelope) -> None:
        for handler in self.handlers_for(envelope["event_type"]):
            handler(envelope)


bus = EventBus()
published_events: list[EventEnvelope] = []


def build_envelope(
    event_type: str,
    actor_user_id: str | None,
    payload: dict[str, Any],
    correlation_id: str | None = None,
) -> EventEnvelope:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "version": ENVELOPE_VERSION,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": actor_user_id if actor_user_id is not None else get_actor_user_id(),
        "correlation_id": correlation_id or get_correlation_id(),
        "payload": payload,
    }


def publish(envelope: EventEnvelope) -> None:
    published_events.append(envelope)
    bus.dispatch(envelope)
