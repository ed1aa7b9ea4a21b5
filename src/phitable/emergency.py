# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Emergency Mode Coordinator

Process-wide switch that elevates every principal's effective clearance
to ``emergency`` while active. The coordinator is passed explicitly to
each session; sessions learn about transitions through the event bus
rather than by polling.

State machine: inactive -> active -> inactive. Every transition is
audited (fail-closed) before it takes effect.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from phitable.audit.emitter import AuditEmitter, Clock, utcnow
from phitable.audit.events import AuditAction
from phitable.events.bus import (
    EVENT_EMERGENCY_ACTIVATED,
    EVENT_EMERGENCY_DEACTIVATED,
    Event,
    EventBus,
    EventHandler,
    InMemoryEventBus,
)
from phitable.observability.metrics import MetricsCollector
from phitable.policy.clearance import ClearanceTier, Principal

logger = logging.getLogger(__name__)


class EmergencyState(BaseModel):
    """Immutable snapshot of the emergency flag."""

    model_config = ConfigDict(frozen=True)

    active: bool = False
    activated_at: Optional[datetime] = None
    activated_by: Optional[str] = None
    reason: Optional[str] = None


INACTIVE = EmergencyState()


class EmergencyModeCoordinator:
    """
    Owns the emergency flag and broadcasts its transitions.

    Readers take a snapshot via ``state`` and pass it through a request so
    one request never sees the flag change halfway through.
    """

    def __init__(
        self,
        emitter: AuditEmitter,
        bus: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._emitter = emitter
        self._bus = bus or InMemoryEventBus()
        self._clock = clock or utcnow
        self._metrics = metrics
        self._state = INACTIVE
        self._lock = threading.Lock()

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def state(self) -> EmergencyState:
        return self._state

    def is_active(self) -> bool:
        return self._state.active

    def activate(self, principal: Principal, reason: Optional[str] = None) -> EmergencyState:
        """Declare an emergency.

        Activating while already active returns the current state and
        emits nothing.

        Raises:
            AuditSinkUnavailable: If the transition could not be audited;
                the flag is left unchanged.
        """
        with self._lock:
            previous = self._state
            if previous.active:
                return previous
            self._emitter.emit(
                AuditAction.EMERGENCY_MODE_CHANGED,
                principal,
                {"active": True, "previous": False, "reason": reason},
                previous,
                compliance_tier=ClearanceTier.EMERGENCY,
            )
            self._state = EmergencyState(
                active=True,
                activated_at=self._clock(),
                activated_by=principal.id,
                reason=reason,
            )
            current = self._state

        logger.warning("Emergency mode activated by %s (reason: %s)", principal.id, reason)
        self._publish(EVENT_EMERGENCY_ACTIVATED, principal, current)
        return current

    def deactivate(self, principal: Principal) -> EmergencyState:
        """End the emergency.

        Raises:
            AuditSinkUnavailable: If the transition could not be audited;
                emergency mode stays active.
        """
        with self._lock:
            previous = self._state
            if not previous.active:
                return previous
            self._emitter.emit(
                AuditAction.EMERGENCY_MODE_CHANGED,
                principal,
                {
                    "active": False,
                    "previous": True,
                    "activated_by": previous.activated_by,
                    "activated_at": (
                        previous.activated_at.isoformat() if previous.activated_at else None
                    ),
                },
                previous,
                compliance_tier=ClearanceTier.EMERGENCY,
            )
            self._state = INACTIVE
            current = self._state

        logger.warning("Emergency mode deactivated by %s", principal.id)
        self._publish(EVENT_EMERGENCY_DEACTIVATED, principal, current)
        return current

    def subscribe(self, handler: EventHandler) -> None:
        """Receive ``emergency.*`` transition events."""
        self._bus.subscribe("emergency.*", handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        self._bus.unsubscribe(handler)

    def _publish(self, event_type: str, principal: Principal, state: EmergencyState) -> None:
        if self._metrics is not None:
            self._metrics.set_emergency_active(state.active)
        self._bus.emit(
            Event(
                event_type=event_type,
                source=principal.id,
                payload={"state": state},
            )
        )
