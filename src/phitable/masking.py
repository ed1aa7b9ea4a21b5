# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Masking State Store

Per-session reveal/hide state for sensitive columns. Every sensitive
column starts hidden. Reveal is column-scoped: revealing a column reveals
it for every row of the table.

A reveal is audited (fail-closed) before the state flips, so a caller
never sees a revealed value whose disclosure was not recorded.

With ``reveal_idle_timeout_seconds`` configured, each reveal schedules a
cancellable auto-hide task; ``touch`` and repeated reveals reschedule it,
``hide`` cancels it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol

from phitable.audit.emitter import AuditEmitter
from phitable.audit.events import AuditAction
from phitable.columns import Column, ColumnSet, as_column_set
from phitable.config import TableEngineConfig
from phitable.constants import CTX_COMPLIANCE_FRAMEWORK, CTX_TABLE_ID
from phitable.events.bus import (
    EVENT_COLUMN_AUTO_HIDDEN,
    EVENT_COLUMN_HIDDEN,
    EVENT_COLUMN_REVEALED,
    Event,
    EventBus,
)
from phitable.exceptions import AccessDenied, InvalidColumn
from phitable.observability.metrics import MetricsCollector
from phitable.policy.access import AccessPolicyEvaluator, EmergencyView
from phitable.policy.clearance import Principal

logger = logging.getLogger(__name__)


class ScheduledTask(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Runs a callback once after ``delay`` seconds unless cancelled."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> ScheduledTask: ...


class ThreadingScheduler:
    """Default scheduler backed by daemon ``threading.Timer`` threads."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


@dataclass
class _Reveal:
    principal: Principal
    generation: int
    task: Optional[ScheduledTask] = None


class MaskingState:
    """Reveal/hide state for one table session."""

    def __init__(
        self,
        columns: "ColumnSet | Iterable[Column]",
        emitter: AuditEmitter,
        config: Optional[TableEngineConfig] = None,
        scheduler: Optional[Scheduler] = None,
        bus: Optional[EventBus] = None,
        table_id: Optional[str] = None,
        metrics: Optional[MetricsCollector] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self._columns = as_column_set(columns)
        self._emitter = emitter
        self._config = config or TableEngineConfig()
        self._scheduler = scheduler or ThreadingScheduler()
        self._bus = bus
        self._table_id = table_id
        self._session_id = session_id
        self._metrics = metrics
        self._revealed: dict[str, _Reveal] = {}
        self._generation = 0
        self._lock = threading.Lock()

    # ── Reads ─────────────────────────────────────────────

    def is_revealed(self, column_key: str) -> bool:
        with self._lock:
            return column_key in self._revealed

    def is_masked(self, column: Column) -> bool:
        """True when cells of ``column`` must render redacted."""
        return column.contains_sensitive_data and not self.is_revealed(column.key)

    def revealed_columns(self) -> list[str]:
        with self._lock:
            return [k for k in self._columns.keys() if k in self._revealed]

    def snapshot(self) -> dict[str, bool]:
        """``{sensitive_column_key: revealed}`` for every sensitive column."""
        with self._lock:
            return {c.key: c.key in self._revealed for c in self._columns.sensitive()}

    # ── Transitions ───────────────────────────────────────

    def reveal(
        self,
        column_key: str,
        principal: Principal,
        emergency_state: Optional[EmergencyView] = None,
    ) -> None:
        """Reveal a sensitive column for the whole table.

        Raises:
            InvalidColumn: If the column is unknown or not sensitive.
            AccessDenied: If the principal cannot currently see the column.
            AuditSinkUnavailable: If the reveal could not be audited; the
                column stays masked.
        """
        column = self._sensitive_column(column_key)
        evaluator = AccessPolicyEvaluator(principal, emergency_state)
        try:
            evaluator.require(column)
        except AccessDenied:
            if self._metrics is not None:
                self._metrics.record_access_denied()
            raise

        self._emitter.emit(
            AuditAction.REVEAL,
            principal,
            self._context(column),
            emergency_state,
            compliance_tier=column.required_clearance,
            emergency_override=evaluator.is_override(column),
        )

        with self._lock:
            previous = self._revealed.get(column_key)
            if previous is not None and previous.task is not None:
                previous.task.cancel()
            self._generation += 1
            reveal = _Reveal(principal=principal, generation=self._generation)
            self._revealed[column_key] = reveal
            self._schedule_locked(column_key, reveal)

        if self._metrics is not None:
            self._metrics.record_reveal(column_key)
        logger.info("Column %s revealed by %s", column_key, principal.id)
        self._publish(EVENT_COLUMN_REVEALED, principal, column_key)

    def hide(
        self,
        column_key: str,
        principal: Principal,
        emergency_state: Optional[EmergencyView] = None,
    ) -> bool:
        """Mask a column again.

        Returns:
            True if the column was revealed, False if it was already hidden.
        """
        column = self._sensitive_column(column_key)
        with self._lock:
            reveal = self._revealed.pop(column_key, None)
            if reveal is not None and reveal.task is not None:
                reveal.task.cancel()
        if reveal is None:
            return False

        self._emitter.emit(
            AuditAction.HIDE,
            principal,
            self._context(column),
            emergency_state,
            compliance_tier=column.required_clearance,
        )
        logger.info("Column %s hidden by %s", column_key, principal.id)
        self._publish(EVENT_COLUMN_HIDDEN, principal, column_key)
        return True

    def touch(self, column_key: str) -> None:
        """Record interaction with a revealed column, restarting its idle timer."""
        with self._lock:
            reveal = self._revealed.get(column_key)
            if reveal is None:
                return
            if reveal.task is not None:
                reveal.task.cancel()
            self._generation += 1
            reveal.generation = self._generation
            self._schedule_locked(column_key, reveal)

    def touch_all(self) -> None:
        for key in self.revealed_columns():
            self.touch(key)

    def hide_inaccessible(
        self,
        principal: Principal,
        emergency_state: Optional[EmergencyView] = None,
    ) -> list[str]:
        """Auto-hide revealed columns the principal can no longer see.

        Used when emergency mode ends. Returns the hidden keys.
        """
        evaluator = AccessPolicyEvaluator(principal, emergency_state)
        hidden = []
        for key in self.revealed_columns():
            column = self._columns.get(key)
            if evaluator.can_see(column):
                continue
            if self._auto_hide(key, None, reason="clearance_lost", emergency_state=emergency_state):
                hidden.append(key)
        return hidden

    def close(self) -> None:
        """End of session: cancel timers and forget all reveals."""
        with self._lock:
            for reveal in self._revealed.values():
                if reveal.task is not None:
                    reveal.task.cancel()
            self._revealed.clear()

    # ── Internals ─────────────────────────────────────────

    def _sensitive_column(self, column_key: str) -> Column:
        column = self._columns.get(column_key)
        if not column.contains_sensitive_data:
            raise InvalidColumn(f"Column '{column_key}' is not sensitive and is never masked")
        return column

    def _schedule_locked(self, column_key: str, reveal: _Reveal) -> None:
        timeout = self._config.reveal_idle_timeout_seconds
        if timeout is None:
            reveal.task = None
            return
        generation = reveal.generation
        reveal.task = self._scheduler.schedule(
            timeout,
            lambda: self._auto_hide(column_key, generation, reason="idle_timeout"),
        )

    def _auto_hide(
        self,
        column_key: str,
        generation: Optional[int],
        reason: str,
        emergency_state: Optional[EmergencyView] = None,
    ) -> bool:
        with self._lock:
            reveal = self._revealed.get(column_key)
            if reveal is None:
                return False
            # A stale timer from before the last touch/re-reveal
            if generation is not None and reveal.generation != generation:
                return False
            del self._revealed[column_key]
            if reveal.task is not None and generation is None:
                reveal.task.cancel()

        column = self._columns.get(column_key)
        context = self._context(column)
        context["reason"] = reason
        self._emitter.emit(
            AuditAction.AUTO_HIDE,
            reveal.principal,
            context,
            emergency_state,
            compliance_tier=column.required_clearance,
        )
        logger.info("Column %s auto-hidden (%s)", column_key, reason)
        self._publish(EVENT_COLUMN_AUTO_HIDDEN, reveal.principal, column_key)
        return True

    def _context(self, column: Column) -> dict:
        context: dict = {"column": column.key}
        if self._table_id is not None:
            context[CTX_TABLE_ID] = self._table_id
        if column.compliance_framework is not None:
            context[CTX_COMPLIANCE_FRAMEWORK] = column.compliance_framework.value
        return context

    def _publish(self, event_type: str, principal: Principal, column_key: str) -> None:
        if self._bus is None:
            return
        self._bus.emit(
            Event(
                event_type=event_type,
                source=principal.id,
                payload={
                    "column": column_key,
                    "table_id": self._table_id,
                    "session_id": self._session_id,
                },
            )
        )
