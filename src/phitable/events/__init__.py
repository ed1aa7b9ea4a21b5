# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""In-process event bus used for emergency and masking notifications."""

from .bus import (
    ALL_EVENT_TYPES,
    EVENT_COLUMN_AUTO_HIDDEN,
    EVENT_COLUMN_HIDDEN,
    EVENT_COLUMN_REVEALED,
    EVENT_EMERGENCY_ACTIVATED,
    EVENT_EMERGENCY_DEACTIVATED,
    Event,
    EventBus,
    EventHandler,
    InMemoryEventBus,
)

__all__ = [
    "ALL_EVENT_TYPES",
    "EVENT_COLUMN_AUTO_HIDDEN",
    "EVENT_COLUMN_HIDDEN",
    "EVENT_COLUMN_REVEALED",
    "EVENT_EMERGENCY_ACTIVATED",
    "EVENT_EMERGENCY_DEACTIVATED",
    "Event",
    "EventBus",
    "EventHandler",
    "InMemoryEventBus",
]
