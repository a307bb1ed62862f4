"""
Event bus for decoupled load lifecycle notifications.

Services publish an EventEnvelope to a topic after their write has
committed; consumers (billing, tracking, assignment, websockets) subscribe
to the topic and react on their own. Delivery is at-least-once: consumers
must be idempotent on (load_id, new_status, timestamp).

Usage:
    from app.services.event_dispatcher import get_event_bus

    bus = get_event_bus()
    bus.subscribe("load-events", handle_load_event)
"""
import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Protocol

from app.core.errors import PublishError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventEnvelope:
    """Standard metadata wrapper around every published payload."""
    event_id: str
    event_type: str
    event_time: str
    producer: str
    correlation_id: str
    payload: Dict[str, Any]
    event_version: str = "1.0"
    category: str = "LOAD"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventPublisher(Protocol):
    """Outbound side of an event bus."""

    async def publish(self, topic: str, envelope: EventEnvelope) -> None:
        ...


# Type for event handlers
EventHandler = Callable[[EventEnvelope], Any]


class EventBus:
    """
    In-process pub/sub event bus.

    Handlers may be plain callables or coroutines. They run concurrently
    and every handler is given the chance to run; if any of them fails
    the publish as a whole raises PublishError.
    """

    _handlers: Dict[str, List[EventHandler]]
    _global_handlers: List[EventHandler]

    def __init__(self) -> None:
        self._handlers = {}
        self._global_handlers = []

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        """Subscribe to a specific topic."""
        self._handlers.setdefault(topic, []).append(handler)
        logger.debug(f"Handler subscribed to {topic}")

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe to every topic."""
        self._global_handlers.append(handler)
        logger.debug("Global handler subscribed")

    def unsubscribe(self, topic: str, handler: EventHandler) -> None:
        """Unsubscribe from a specific topic."""
        if topic in self._handlers:
            self._handlers[topic] = [h for h in self._handlers[topic] if h != handler]

    def unsubscribe_all(self, handler: EventHandler) -> None:
        """Unsubscribe a handler added with subscribe_all."""
        self._global_handlers = [h for h in self._global_handlers if h != handler]

    def clear(self) -> None:
        self._handlers.clear()
        self._global_handlers.clear()

    async def publish(self, topic: str, envelope: EventEnvelope) -> None:
        handlers = self._handlers.get(topic, []) + self._global_handlers

        if not handlers:
            logger.debug(f"No handlers for topic {topic} ({envelope.event_type})")
            return

        errors: List[BaseException] = []
        tasks = []
        for handler in handlers:
            try:
                result = handler(envelope)
                if asyncio.iscoroutine(result):
                    tasks.append(result)
            except Exception as e:
                logger.error(f"Error in event handler for {envelope.event_type}: {e}")
                errors.append(e)

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Error in event handler for {envelope.event_type}: {result}")
                    errors.append(result)

        if errors:
            load_id = envelope.payload.get("load_id")
            raise PublishError(
                envelope.event_type,
                load_id,
                reason=f"{len(errors)} of {len(handlers)} handlers failed",
            )

        logger.debug(f"Event {envelope.event_type} dispatched on {topic} to {len(handlers)} handlers")


# Global bus instance
_bus = EventBus()


def get_event_bus() -> EventBus:
    """Get the global event bus."""
    return _bus


def subscribe(topic: str, handler: EventHandler) -> None:
    """Subscribe a handler to a topic on the global bus."""
    _bus.subscribe(topic, handler)


def subscribe_all(handler: EventHandler) -> None:
    """Subscribe a handler to every topic on the global bus."""
    _bus.subscribe_all(handler)

