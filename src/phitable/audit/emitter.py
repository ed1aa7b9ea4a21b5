# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Audit Emitter

Synchronous hook called by every component before it changes visible
state or releases data. Delivery policy depends on the action class:

- disclosure (reveal, export, row view, emergency transitions):
  fail-closed. One attempt; on failure ``AuditSinkUnavailable`` is raised
  and the caller must abort the action.
- navigational (sort, search, paging, selection, non-sensitive filters):
  fail-open. ``1 + audit_retry_attempts`` immediate attempts, then the
  event is dropped with a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional

from phitable.audit.events import ActionClass, AuditAction, AuditEvent, classify
from phitable.audit.sink import AuditSink
from phitable.config import TableEngineConfig
from phitable.constants import CTX_COMPLIANCE_FRAMEWORK, CTX_IS_EMERGENCY
from phitable.exceptions import AuditSinkUnavailable
from phitable.policy.access import EmergencyView
from phitable.policy.clearance import ClearanceTier, Principal

if TYPE_CHECKING:
    from phitable.observability.metrics import MetricsCollector

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuditReceipt:
    """Outcome of one emit call."""

    event: AuditEvent
    delivered: bool
    attempts: int


class AuditEmitter:
    """Builds audit events and delivers them to a sink."""

    def __init__(
        self,
        sink: AuditSink,
        config: Optional[TableEngineConfig] = None,
        clock: Optional[Clock] = None,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.sink = sink
        self.config = config or TableEngineConfig()
        self.clock = clock or utcnow
        self.metrics = metrics

    def emit(
        self,
        action: AuditAction,
        principal: Principal,
        context: Optional[dict[str, Any]] = None,
        emergency_state: Optional[EmergencyView] = None,
        *,
        compliance_tier: Optional[ClearanceTier] = None,
        emergency_override: bool = False,
        disclosure: Optional[bool] = None,
    ) -> AuditReceipt:
        """Emit one audit event.

        Args:
            action: What happened.
            principal: Who did it.
            context: Action-specific fields (must not contain cell values).
            emergency_state: Emergency snapshot the action ran under.
            compliance_tier: Sensitivity tier of the data involved.
            emergency_override: True when authorization relied on
                emergency elevation rather than the principal's grant.
            disclosure: Force the action class; ``None`` uses the default
                classification of ``action``.

        Returns:
            An ``AuditReceipt``; ``delivered`` is False only for a dropped
            navigational event.

        Raises:
            AuditSinkUnavailable: If a disclosure event could not be stored.
        """
        if disclosure is None:
            action_class = classify(action)
        else:
            action_class = ActionClass.DISCLOSURE if disclosure else ActionClass.NAVIGATIONAL

        event = AuditEvent(
            action=action,
            principal_id=principal.id,
            timestamp=self.clock(),
            compliance_tier=compliance_tier,
            emergency_override=emergency_override,
            action_class=action_class,
            context=self._build_context(context, emergency_state),
        )

        if action_class == ActionClass.DISCLOSURE:
            return self._deliver_fail_closed(event)
        return self._deliver_fail_open(event)

    def _build_context(
        self,
        context: Optional[dict[str, Any]],
        emergency_state: Optional[EmergencyView],
    ) -> dict[str, Any]:
        data = dict(context or {})
        data.setdefault(
            CTX_IS_EMERGENCY,
            bool(emergency_state is not None and emergency_state.active),
        )
        if self.config.compliance_framework is not None:
            data.setdefault(CTX_COMPLIANCE_FRAMEWORK, self.config.compliance_framework.value)
        return data

    def _deliver_fail_closed(self, event: AuditEvent) -> AuditReceipt:
        try:
            self.sink.append(event)
        except Exception as exc:
            self._record(event, "failed")
            logger.error(
                "Audit sink rejected %s event for %s; action aborted: %s",
                event.action.value, event.principal_id, exc,
            )
            raise AuditSinkUnavailable(event.action.value) from exc
        self._record(event, "delivered")
        return AuditReceipt(event=event, delivered=True, attempts=1)

    def _deliver_fail_open(self, event: AuditEvent) -> AuditReceipt:
        attempts = 1 + self.config.audit_retry_attempts
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                self.sink.append(event)
            except Exception as exc:
                last_error = exc
                logger.debug(
                    "Audit delivery attempt %d/%d for %s failed: %s",
                    attempt, attempts, event.action.value, exc,
                )
                continue
            self._record(event, "delivered")
            return AuditReceipt(event=event, delivered=True, attempts=attempt)

        self._record(event, "dropped")
        logger.warning(
            "Dropped navigational audit event %s (%s) after %d attempts: %s",
            event.event_id, event.action.value, attempts, last_error,
        )
        return AuditReceipt(event=event, delivered=False, attempts=attempts)

    def _record(self, event: AuditEvent, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_audit_event(event.action.value, outcome)
