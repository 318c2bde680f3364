"""Event system for following plan runs.

The engine publishes an EngineEvent for every task dispatch, skip, failure
and recovery step. Observers subscribe per run id and read from an
asyncio.Queue.

Usage:
    >>> from events import EventBus, EngineEvent, EventType
    >>> bus = EventBus()
    >>> queue = bus.subscribe("run_123")
    >>> await bus.publish(EngineEvent(type=EventType.RUN_STARTED, run_id="run_123"))
    >>> event = await queue.get()
"""

from events.bus import (
    EventBus,
    get_event_bus,
    reset_event_bus,
)
from events.types import (
    EngineEvent,
    EventType,
    LLMMetrics,
)

__all__ = [
    "EventType",
    "EngineEvent",
    "LLMMetrics",
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
]
