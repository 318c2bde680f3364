"""Async event bus for plan run pub/sub communication.

This module provides an EventBus that lets observers (the API layer, the
CLI, tests) follow a plan run as it executes.

The bus supports:
- Multiple subscribers per run
- Async event delivery via asyncio.Queue
- Buffering of events published before anyone subscribed
- Run lifecycle management (closing a run terminates all subscribers)
"""

import asyncio
import threading
from collections import defaultdict

import structlog

from events.types import EngineEvent, EventType

logger = structlog.get_logger()


class EventBus:
    """Async pub/sub event bus for engine events.

    Event Buffering:
        Events published before any subscriber connects are buffered and
        delivered to the first subscriber when it arrives.

    Thread Safety:
        The subscription registry is guarded by a threading.Lock.

    Usage:
        >>> bus = EventBus()
        >>> queue = bus.subscribe("run_123")
        >>> await bus.publish(EngineEvent(
        ...     type=EventType.TASK_DISPATCHED,
        ...     run_id="run_123",
        ...     task_id="1",
        ... ))
        >>> event = await queue.get()
        >>> await bus.close_run("run_123")
    """

    # Maximum number of events to retain per run for replay.
    MAX_HISTORY_PER_RUN = 5000

    def __init__(self) -> None:
        """Initialize an empty event bus."""
        self._subscribers: dict[str, list[asyncio.Queue[EngineEvent]]] = defaultdict(list)
        self._event_buffer: dict[str, list[EngineEvent]] = defaultdict(list)
        self._event_history: dict[str, list[EngineEvent]] = defaultdict(list)
        self._lock = threading.Lock()
        logger.info("event_bus_initialized")

    def subscribe(self, run_id: str) -> asyncio.Queue[EngineEvent]:
        """Subscribe to events for a run.

        Buffered events for the run are delivered to the new queue right away.

        Args:
            run_id: The run to subscribe to

        Returns:
            A queue that receives EngineEvent objects for this run
        """
        queue: asyncio.Queue[EngineEvent] = asyncio.Queue()
        buffered_events: list[EngineEvent] = []

        with self._lock:
            self._subscribers[run_id].append(queue)
            subscriber_count = len(self._subscribers[run_id])
            if run_id in self._event_buffer:
                buffered_events = self._event_buffer.pop(run_id)

        for event in buffered_events:
            queue.put_nowait(event)

        logger.info(
            "subscriber_added",
            run_id=run_id,
            subscriber_count=subscriber_count,
            buffered_events_delivered=len(buffered_events),
        )
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue[EngineEvent]) -> None:
        """Remove a queue from a run's subscribers; unknown queues are ignored."""
        with self._lock:
            queues = self._subscribers.get(run_id)
            if not queues or queue not in queues:
                logger.warning("unsubscribe_queue_not_found", run_id=run_id)
                return
            queues.remove(queue)
            if not queues:
                del self._subscribers[run_id]

        logger.info("subscriber_removed", run_id=run_id)

    async def publish(self, event: EngineEvent) -> None:
        """Publish an event to all subscribers for its run.

        With no subscribers the event is buffered. Every event except the
        RUN_CLOSED sentinel is also kept in the run's history.

        Args:
            event: The EngineEvent to publish
        """
        with self._lock:
            if event.type != EventType.RUN_CLOSED:
                history = self._event_history[event.run_id]
                history.append(event)
                if len(history) > self.MAX_HISTORY_PER_RUN:
                    self._event_history[event.run_id] = history[-self.MAX_HISTORY_PER_RUN:]

            subscribers = list(self._subscribers.get(event.run_id, []))

            if not subscribers:
                self._event_buffer[event.run_id].append(event)
                logger.debug(
                    "event_buffered",
                    run_id=event.run_id,
                    event_type=event.type.value,
                )
                return

        # Bounded wait so a stalled consumer cannot block the run
        for queue in subscribers:
            try:
                await asyncio.wait_for(queue.put(event), timeout=5.0)
            except TimeoutError:
                logger.warning(
                    "event_delivery_timeout",
                    run_id=event.run_id,
                    event_type=event.type.value,
                )
            except Exception:
                logger.warning(
                    "event_delivery_failed",
                    run_id=event.run_id,
                    event_type=event.type.value,
                )

        logger.debug(
            "event_published",
            run_id=event.run_id,
            event_type=event.type.value,
            subscriber_count=len(subscribers),
            task_id=event.task_id,
        )

    def get_event_history(self, run_id: str) -> list[EngineEvent]:
        """Get all stored events for a run in chronological order."""
        with self._lock:
            return list(self._event_history.get(run_id, []))

    async def close_run(self, run_id: str) -> None:
        """Close a run and notify all subscribers.

        Each subscriber queue receives a RUN_CLOSED sentinel so consumers can
        stop reading. Buffered events are dropped; history is preserved.

        Args:
            run_id: The run to close
        """
        with self._lock:
            queues_to_signal = self._subscribers.pop(run_id, [])
            buffer_count = len(self._event_buffer.pop(run_id, []))

        for queue in queues_to_signal:
            await queue.put(
                EngineEvent(
                    type=EventType.RUN_CLOSED,
                    run_id=run_id,
                    data={"reason": "run_closed"},
                )
            )

        logger.debug(
            "run_closed",
            run_id=run_id,
            subscribers_removed=len(queues_to_signal),
            buffered_events_cleared=buffer_count,
        )

    def get_subscriber_count(self, run_id: str) -> int:
        """Get the number of subscribers for a run."""
        with self._lock:
            return len(self._subscribers.get(run_id, []))

    def clear_event_history(self, run_id: str) -> None:
        """Forget the stored history for a run."""
        with self._lock:
            self._event_history.pop(run_id, None)


# Global event bus instance
_event_bus: EventBus | None = None
_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the global EventBus instance, creating it on first use."""
    global _event_bus
    if _event_bus is None:
        with _bus_lock:
            if _event_bus is None:
                _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global EventBus instance (used by tests)."""
    global _event_bus
    with _bus_lock:
        _event_bus = None
    logger.info("event_bus_reset")
