from __future__ import annotations

from collections import deque
from typing import Any

from xbs.context import get_correlation_id
from xbs.core.events import event_bus

# recent envelopes only; durable delivery (outbox, webhooks) belongs to a downstream consumer
MAX_RECORDED_EVENTS = 1000

published_events: deque[dict[str, Any]] = deque(maxlen=MAX_RECORDED_EVENTS)


def publish(envelope: dict[str, Any]) -> None:
    """Record a domain event and fan it out to in-process subscribers."""
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    published_events.append(envelope)
    event_type = envelope.get("event_type")
    if isinstance(event_type, str) and event_type:
        event_bus.publish(event_type, envelope)
