"""
Game Event Bus

In-process publish/subscribe channel shared by every engine component.

Delivery order for one publish call:
1. the event is appended to the bounded history
2. filters registered for the name run; any filter returning True suppresses delivery
3. synchronous subscribers for the name run, then wildcard ("*") subscribers
4. asynchronous handlers for the name are awaited one after another

Async handler failures are logged and re-published as ``eventbus:error``;
they never reach the publisher.
"""

import asyncio
import inspect
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from edugame.common.error_handling import EventTimeoutError
from edugame.common.logger import app_logger
from edugame.events.names import GameEvents

logger = app_logger.getChild("events.bus")

DEFAULT_HISTORY_LIMIT = 1000

Handler = Callable[["GameEvent"], Any]
AsyncHandler = Callable[["GameEvent"], Union[Awaitable[None], None]]
EventFilter = Callable[["GameEvent"], bool]


@dataclass
class GameEvent:
    """A single published event"""
    name: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "data": self.data,
            "timestamp": self.timestamp
        }


class EventBus:
    """
    Publish/subscribe channel with bounded history.

    Registries and history are guarded by a re-entrant lock so the bus can be
    shared between components; handlers always run outside the lock.
    """

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT, default_timeout_ms: float = 5000):
        self._lock = threading.RLock()
        self._subscribers: Dict[str, List[Handler]] = {}
        self._async_handlers: Dict[str, List[AsyncHandler]] = {}
        self._filters: Dict[str, List[EventFilter]] = {}
        self._history: Deque[GameEvent] = deque(maxlen=history_limit)
        self._published_count = 0
        self._suppressed_count = 0
        self._debug = False
        self.default_timeout_ms = default_timeout_ms

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def subscribe(self, name: str, handler: Handler) -> Callable[[], bool]:
        """
        Register a synchronous subscriber.

        Args:
            name: Event name, or "*" for every event
            handler: Callable receiving the GameEvent

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            self._subscribers.setdefault(name, []).append(handler)
        return lambda: self.unsubscribe(name, handler)

    def subscribe_once(self, name: str, handler: Handler) -> Callable[[], bool]:
        """Register a subscriber that is removed after its first delivery."""
        def once(event: GameEvent):
            self.unsubscribe(name, once)
            return handler(event)

        return self.subscribe(name, once)

    def on_async(self, name: str, handler: AsyncHandler) -> Callable[[], bool]:
        """Register an asynchronous handler, awaited after synchronous subscribers."""
        with self._lock:
            self._async_handlers.setdefault(name, []).append(handler)
        return lambda: self.unsubscribe(name, handler)

    def add_filter(self, name: str, event_filter: EventFilter) -> None:
        """Register a filter; returning True from it suppresses the event."""
        with self._lock:
            self._filters.setdefault(name, []).append(event_filter)

    def remove_filter(self, name: str, event_filter: EventFilter) -> bool:
        with self._lock:
            filters = self._filters.get(name, [])
            if event_filter in filters:
                filters.remove(event_filter)
                return True
            return False

    def unsubscribe(self, name: str, handler: Callable) -> bool:
        """
        Remove a subscriber or async handler.

        Returns:
            True if the handler was registered under the name
        """
        removed = False
        with self._lock:
            for registry in (self._subscribers, self._async_handlers):
                handlers = registry.get(name)
                if handlers and handler in handlers:
                    handlers.remove(handler)
                    removed = True
                    if not handlers:
                        del registry[name]
        return removed

    def remove_all(self, name: Optional[str] = None) -> None:
        """Remove every listener for a name, or for all names when omitted."""
        with self._lock:
            if name is None:
                self._subscribers.clear()
                self._async_handlers.clear()
                self._filters.clear()
            else:
                self._subscribers.pop(name, None)
                self._async_handlers.pop(name, None)
                self._filters.pop(name, None)

    def listener_count(self, name: str) -> int:
        with self._lock:
            return len(self._subscribers.get(name, [])) + len(self._async_handlers.get(name, []))

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(self, name: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """
        Publish an event.

        Args:
            name: Event name
            data: Event payload

        Returns:
            False if a filter suppressed the event, True otherwise
        """
        event = GameEvent(name=name, data=dict(data or {}))

        with self._lock:
            self._history.append(event)
            self._published_count += 1
            filters = list(self._filters.get(name, []))
            subscribers = list(self._subscribers.get(name, []))
            if name != GameEvents.WILDCARD:
                subscribers += self._subscribers.get(GameEvents.WILDCARD, [])
            async_handlers = list(self._async_handlers.get(name, []))

        if self._debug:
            logger.debug(f"Event published: {name} {event.data}")

        for event_filter in filters:
            if event_filter(event):
                with self._lock:
                    self._suppressed_count += 1
                logger.debug(f"Event {name} suppressed by filter")
                return False

        for handler in subscribers:
            handler(event)

        for handler in async_handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Async handler failed for event {name}: {e}", exc_info=True)
                if name != GameEvents.BUS_ERROR:
                    await self.publish(GameEvents.BUS_ERROR, {
                        "original_event": event.to_dict(),
                        "error": str(e),
                        "error_type": type(e).__name__
                    })

        return True

    async def wait_for(self, name: str, timeout_ms: Optional[float] = None) -> GameEvent:
        """
        Wait for the next event with the given name.

        Args:
            name: Event name to wait for
            timeout_ms: Timeout in milliseconds (defaults to the bus default)

        Returns:
            The matching event

        Raises:
            EventTimeoutError: If no matching event arrives in time
        """
        timeout_ms = self.default_timeout_ms if timeout_ms is None else timeout_ms
        future = asyncio.get_running_loop().create_future()

        def resolve(event: GameEvent):
            if not future.done():
                future.set_result(event)

        self.subscribe(name, resolve)
        try:
            return await asyncio.wait_for(future, timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            raise EventTimeoutError(name, timeout_ms) from None
        finally:
            self.unsubscribe(name, resolve)

    async def once_async(self, name: str) -> GameEvent:
        """Wait for the next event with the given name, without a timeout."""
        future = asyncio.get_running_loop().create_future()

        def resolve(event: GameEvent):
            if not future.done():
                future.set_result(event)

        self.subscribe(name, resolve)
        try:
            return await future
        finally:
            self.unsubscribe(name, resolve)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_event_history(self, name: Optional[str] = None, limit: int = 100) -> List[GameEvent]:
        """Return the most recent events, oldest first, optionally filtered by name."""
        with self._lock:
            events = [e for e in self._history if name is None or e.name == name]
        return events[-limit:] if limit else events

    def get_event_stats(self) -> Dict[str, Any]:
        with self._lock:
            counts: Dict[str, int] = {}
            for event in self._history:
                counts[event.name] = counts.get(event.name, 0) + 1
            return {
                "total_published": self._published_count,
                "suppressed": self._suppressed_count,
                "history_size": len(self._history),
                "history_limit": self._history.maxlen,
                "event_counts": counts,
                "subscriber_count": sum(len(h) for h in self._subscribers.values()),
                "async_handler_count": sum(len(h) for h in self._async_handlers.values())
            }

    def create_event_chain(self) -> 'EventChain':
        """Start a chain of waits, publishes and delays run in order."""
        return EventChain(self)

    def enable_debug_mode(self, enabled: bool = True) -> None:
        self._debug = enabled

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    def reset(self) -> None:
        """Drop every listener, filter and recorded event."""
        with self._lock:
            self.remove_all()
            self._history.clear()
            self._published_count = 0
            self._suppressed_count = 0


class EventChain:
    """
    Sequence of bus actions built fluently and run with ``execute``.

    Example::

        results = await (bus.create_event_chain()
                         .emit("game:started", {"game_id": "g1"})
                         .delay(50)
                         .wait("game:completed", timeout_ms=1000)
                         .execute())
    """

    def __init__(self, bus: EventBus):
        self.bus = bus
        self._steps: List[Dict[str, Any]] = []

    def wait(self, name: str, timeout_ms: Optional[float] = None) -> 'EventChain':
        self._steps.append({"action": "wait", "name": name, "timeout_ms": timeout_ms})
        return self

    def emit(self, name: str, data: Optional[Dict[str, Any]] = None) -> 'EventChain':
        self._steps.append({"action": "emit", "name": name, "data": data})
        return self

    def delay(self, ms: float) -> 'EventChain':
        self._steps.append({"action": "delay", "ms": ms})
        return self

    def __len__(self) -> int:
        return len(self._steps)

    async def execute(self) -> List[Dict[str, Any]]:
        """
        Run the steps one after another.

        Returns:
            One ``{"action": ..., "result": ...}`` entry per step: the received
            GameEvent for waits, the publish outcome for emits and None for delays

        Raises:
            EventTimeoutError: If a wait times out; later steps do not run
        """
        results = []
        for step in self._steps:
            action = step["action"]
            try:
                if action == "wait":
                    result = await self.bus.wait_for(step["name"], step["timeout_ms"])
                elif action == "emit":
                    result = await self.bus.publish(step["name"], step["data"])
                else:
                    await asyncio.sleep(step["ms"] / 1000.0)
                    result = None
            except Exception:
                logger.error(f"Event chain failed at step {len(results) + 1} ({action})")
                raise
            results.append({"action": action, "result": result})
        return results
