"""
Typed event bus for internal publish/subscribe.

Sessions publish lifecycle and shell-integration events here; listeners
(notifications, diagnostics) subscribe per event type or to everything.
Delivery is synchronous and best-effort: nothing is persisted or replayed.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class BusEventType(Enum):
    """Event type enumeration for bus events."""

    PTY_CREATED = "pty.created"
    PTY_EXITED = "pty.exited"
    CWD_CHANGED = "cwd.changed"
    COMMAND_STARTED = "command.started"
    COMMAND_FINISHED = "command.finished"
    TITLE_CHANGED = "title.changed"


@dataclass
class BusEvent:
    """Base event data structure, keyed by session name."""

    name: str
    timestamp: datetime = field(default_factory=datetime.now, kw_only=True)

    event_type = None  # type: BusEventType

    def to_dict(self) -> Dict[str, Any]:
        data = {
            key: value
            for key, value in self.__dict__.items()
            if key != "timestamp"
        }
        data["type"] = self.event_type.value
        return data


@dataclass
class PtyCreatedEvent(BusEvent):
    cwd: Optional[str] = None

    event_type = BusEventType.PTY_CREATED


@dataclass
class PtyExitedEvent(BusEvent):
    exit_code: int = 0

    event_type = BusEventType.PTY_EXITED


@dataclass
class CwdChangedEvent(BusEvent):
    cwd: str = ""

    event_type = BusEventType.CWD_CHANGED


@dataclass
class CommandStartedEvent(BusEvent):
    command: str = ""

    event_type = BusEventType.COMMAND_STARTED


@dataclass
class CommandFinishedEvent(BusEvent):
    command: str = ""
    exit_code: int = 0
    duration_ms: int = 0

    event_type = BusEventType.COMMAND_FINISHED


@dataclass
class TitleChangedEvent(BusEvent):
    title: str = ""

    event_type = BusEventType.TITLE_CHANGED


# Event listener type definitions
EventListener = Callable[[BusEvent], None]
EventListenerID = str
Unsubscribe = Callable[[], None]

WILDCARD = "*"


class EventBus:
    """
    Thread-safe typed event bus.

    Listeners registered for a specific ``BusEventType`` only receive that
    type; listeners registered with ``subscribe_all`` receive every event.
    A listener that raises is logged and skipped, the remaining listeners
    still run.
    """

    def __init__(self):
        self._listeners: Dict[Any, List[Tuple[EventListenerID, EventListener]]] = {}
        self._lock = threading.RLock()
        self._counter = 0

    def subscribe(
        self,
        event_type: BusEventType,
        listener: EventListener,
        listener_id: Optional[EventListenerID] = None,
    ) -> Unsubscribe:
        """
        Register a listener for one event type.

        Args:
            event_type: The event type to listen for
            listener: The callback function to invoke
            listener_id: Optional ID for the listener (for removal)

        Returns:
            A function that removes the listener
        """
        return self._add(event_type, listener, listener_id)

    def subscribe_all(
        self,
        listener: EventListener,
        listener_id: Optional[EventListenerID] = None,
    ) -> Unsubscribe:
        """Register a wildcard listener that receives every event."""
        return self._add(WILDCARD, listener, listener_id)

    def _add(
        self,
        key: Any,
        listener: EventListener,
        listener_id: Optional[EventListenerID],
    ) -> Unsubscribe:
        if listener is None:
            raise ValueError("Listener function is required")

        with self._lock:
            if listener_id is None:
                self._counter += 1
                listener_id = f"listener_{self._counter}"
            self._listeners.setdefault(key, []).append((listener_id, listener))

        def unsubscribe() -> None:
            self.remove_listener_by_id(listener_id)

        return unsubscribe

    def remove_listener_by_id(self, listener_id: EventListenerID) -> bool:
        """
        Remove a listener by its ID.

        Returns:
            True if listener was found and removed, False otherwise
        """
        with self._lock:
            for key, entries in self._listeners.items():
                for entry in entries:
                    if entry[0] == listener_id:
                        entries.remove(entry)
                        return True
            return False

    def publish(self, event: BusEvent) -> None:
        """
        Deliver an event to its type listeners, then to wildcard listeners.

        Args:
            event: The event to publish
        """
        with self._lock:
            listeners = list(self._listeners.get(event.event_type, ()))
            listeners += self._listeners.get(WILDCARD, ())

        # Call listeners outside the lock so they may (un)subscribe
        for listener_id, listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    f"Event listener '{listener_id}' failed on {event.event_type.value}"
                )

    def clear_listeners(self) -> None:
        with self._lock:
            self._listeners.clear()

    def get_listener_count(self) -> int:
        with self._lock:
            return sum(len(entries) for entries in self._listeners.values())
