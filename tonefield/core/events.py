"""Event system for tonefield components."""

import time
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from ..logger import get_logger

logger = get_logger(__name__)


class StabilityEventType(Enum):
    """Event types emitted by a measurement session."""

    READING = auto()  # Throttled per-frame readings
    LOCKED = auto()  # Stability threshold reached
    UNLOCKED = auto()  # Dropped back below the threshold
    ERROR = auto()


class EventEmitter:
    """Event emitter for tonefield components."""

    def __init__(self):
        """Initialize the event emitter."""
        self._listeners: Dict[Any, List[Callable]] = {}

    def on(self, event_type: Any, callback: Callable) -> None:
        """Register a callback for an event type.

        Args:
            event_type: Event type to listen for
            callback: Function to call when the event occurs
        """
        if event_type not in self._listeners:
            self._listeners[event_type] = []

        if callback not in self._listeners[event_type]:
            self._listeners[event_type].append(callback)
            logger.debug(f"Added listener for event {event_type}")

    def off(self, event_type: Any, callback: Callable) -> None:
        """Remove a previously registered callback."""
        listeners = self._listeners.get(event_type, [])
        if callback in listeners:
            listeners.remove(callback)

    def emit(self, event_type: Any, *args, **kwargs) -> None:
        """Emit an event.

        Listener exceptions are logged and do not stop the other listeners.

        Args:
            event_type: Event type to emit
            *args: Positional arguments to pass to listeners
            **kwargs: Keyword arguments to pass to listeners
        """
        if event_type not in self._listeners:
            return

        for callback in list(self._listeners[event_type]):
            try:
                callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"Error in event listener for {event_type}: {e}")

    def listener_count(self, event_type: Any) -> int:
        return len(self._listeners.get(event_type, []))

    def clear(self) -> None:
        """Remove all event listeners."""
        self._listeners = {}
        logger.debug("Cleared all event listeners")


class StabilityEvents:
    """Event emitter specifically for stability events."""

    def __init__(self):
        self._emitter = EventEmitter()

    def on_reading(self, callback: Callable) -> None:
        """Register a callback receiving each emitted StabilityUpdate."""
        self._emitter.on(StabilityEventType.READING, callback)

    def on_locked(self, callback: Callable) -> None:
        self._emitter.on(StabilityEventType.LOCKED, callback)

    def on_unlocked(self, callback: Callable) -> None:
        self._emitter.on(StabilityEventType.UNLOCKED, callback)

    def emit_reading(self, update, timestamp: float) -> None:
        self._emitter.emit(StabilityEventType.READING, update, timestamp)

    def emit_locked(self, update, timestamp: float) -> None:
        self._emitter.emit(StabilityEventType.LOCKED, update, timestamp)

    def emit_unlocked(self, update, timestamp: float) -> None:
        self._emitter.emit(StabilityEventType.UNLOCKED, update, timestamp)

    def clear(self) -> None:
        """Remove all event listeners."""
        self._emitter.clear()


class ThrottledEmitter:
    """Rate-limits reading events while passing lock changes through at once.

    A reading is emitted when none has been emitted yet, when at least
    ``interval_s`` has elapsed since the last one, or whenever the update is
    stable. Threshold crossings additionally emit LOCKED or UNLOCKED.
    """

    DEFAULT_INTERVAL_S = 0.05  # ~20 Hz

    def __init__(
        self,
        events: Optional[StabilityEvents] = None,
        interval_s: float = DEFAULT_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.events = events or StabilityEvents()
        self.interval_s = interval_s
        self._clock = clock
        self._last_emit: Optional[float] = None

    def should_emit(self, is_stable: bool, now: float) -> bool:
        return (
            self._last_emit is None
            or (now - self._last_emit) >= self.interval_s
            or is_stable
        )

    def publish(self, update, now: Optional[float] = None) -> bool:
        """Emit events for a stability update.

        Args:
            update: StabilityUpdate with ``is_stable`` and ``crossed`` attributes
            now: Timestamp in seconds, defaults to the emitter clock

        Returns:
            True if a reading event was emitted
        """
        if now is None:
            now = self._clock()

        if update.crossed:
            if update.is_stable:
                self.events.emit_locked(update, now)
            else:
                self.events.emit_unlocked(update, now)

        if not self.should_emit(update.is_stable, now) and not update.crossed:
            return False

        self._last_emit = now
        self.events.emit_reading(update, now)
        return True

    def spawn(self) -> "ThrottledEmitter":
        """A new emitter with no throttle history over the same events."""
        return ThrottledEmitter(self.events, self.interval_s, self._clock)

    def reset(self) -> None:
        self._last_emit = None
