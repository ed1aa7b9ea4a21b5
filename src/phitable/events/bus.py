# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Event bus for change notifications between engine components.

Sessions subscribe here instead of polling shared state; the emergency
coordinator broadcasts through it so every open table observes an
activation immediately.
"""

from __future__ import annotations

import fnmatch
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)


# Standard event types
EVENT_EMERGENCY_ACTIVATED = "emergency.activated"
EVENT_EMERGENCY_DEACTIVATED = "emergency.deactivated"
EVENT_COLUMN_REVEALED = "masking.revealed"
EVENT_COLUMN_HIDDEN = "masking.hidden"
EVENT_COLUMN_AUTO_HIDDEN = "masking.auto_hidden"

ALL_EVENT_TYPES = [
    EVENT_EMERGENCY_ACTIVATED,
    EVENT_EMERGENCY_DEACTIVATED,
    EVENT_COLUMN_REVEALED,
    EVENT_COLUMN_HIDDEN,
    EVENT_COLUMN_AUTO_HIDDEN,
]


@dataclass
class Event:
    """An event emitted inside the engine."""

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: f"evt-{time.monotonic_ns()}")


EventHandler = Callable[[Event], Any]


class EventBus(ABC):
    """Abstract base class for event bus implementations."""

    @abstractmethod
    def emit(self, event: Event) -> None:
        """Emit an event to all matching subscribers."""

    @abstractmethod
    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        """Subscribe a handler to events matching a glob-style pattern.

        Args:
            pattern: Glob-style pattern (e.g., ``emergency.*``, ``*``).
            handler: Callable invoked with the matching Event.
        """

    @abstractmethod
    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove a handler from all subscriptions."""


class InMemoryEventBus(EventBus):
    """Synchronous in-process event bus with glob-style pattern matching.

    Handlers run on the emitting thread. A failing handler is logged and
    does not prevent delivery to the remaining subscribers.
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[str, EventHandler]] = []
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for pattern, handler in subscriptions:
            if fnmatch.fnmatch(event.event_type, pattern):
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        "Event handler %r failed for %s", handler, event.event_type
                    )

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        with self._lock:
            self._subscriptions.append((pattern, handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        with self._lock:
            self._subscriptions = [
                (p, h) for p, h in self._subscriptions if h != handler
            ]

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)
