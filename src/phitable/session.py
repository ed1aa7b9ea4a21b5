# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Table Session

One session per open table view. The session owns its masking state,
selection and current search/filter/sort/page, and reads the shared
emergency coordinator it was given. Each state change is validated,
audited, and only then applied.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, Optional

from phitable.audit.emitter import AuditEmitter
from phitable.audit.events import AuditAction
from phitable.columns import Column, ColumnSet, as_column_set
from phitable.config import TableEngineConfig
from phitable.constants import CTX_TABLE_ID
from phitable.emergency import EmergencyModeCoordinator, EmergencyState
from phitable.events.bus import EVENT_EMERGENCY_DEACTIVATED, Event
from phitable.exceptions import AccessDenied, InvalidFilterState
from phitable.export import ExportFormat, ExportPayload, export_job
from phitable.masking import MaskingState, Scheduler
from phitable.observability.metrics import MetricsCollector
from phitable.policy.access import AccessPolicyEvaluator
from phitable.policy.clearance import Principal, highest
from phitable.query.filters import FilterState, is_inactive
from phitable.query.pagination import PageRequest
from phitable.query.pipeline import Page, RenderedRow, match_records, query, render_row
from phitable.query.sorting import SortDescriptor, SortDirection, resolve_sort_column
from phitable.records import Record, RecordId
from phitable.selection import Selection, SelectionController, SelectionMode

logger = logging.getLogger(__name__)


class TableSession:
    """
    Stateful front end for one table view.

    Usage:
        with TableSession("patients", columns, principal, coordinator, emitter) as table:
            table.set_search("tremblay")
            table.reveal("medical_id")
            page = table.query(records)
    """

    def __init__(
        self,
        table_id: str,
        columns: "ColumnSet | Iterable[Column]",
        principal: Principal,
        coordinator: EmergencyModeCoordinator,
        emitter: AuditEmitter,
        config: Optional[TableEngineConfig] = None,
        scheduler: Optional[Scheduler] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.table_id = table_id
        self.session_id = uuid.uuid4().hex
        self.columns = as_column_set(columns)
        self.principal = principal
        self.config = config or emitter.config
        self._coordinator = coordinator
        self._emitter = emitter
        self._metrics = metrics

        self.masking = MaskingState(
            self.columns,
            emitter,
            self.config,
            scheduler=scheduler,
            bus=coordinator.bus,
            table_id=table_id,
            metrics=metrics,
            session_id=self.session_id,
        )
        self.selection_controller = SelectionController(emitter, table_id=table_id)
        self.filter_state = FilterState()
        self.sort_descriptor: Optional[SortDescriptor] = None
        self.page_request = PageRequest(size=self.config.default_page_size)

        self._records: list[Record] = []
        self._closed = False
        coordinator.subscribe(self._on_emergency_event)
        coordinator.bus.subscribe("masking.*hidden", self._on_masking_event)

    # ── Context ───────────────────────────────────────────

    @property
    def emergency_state(self) -> EmergencyState:
        return self._coordinator.state

    @property
    def selection(self) -> Selection:
        return self.selection_controller.selection

    def visible_columns(self) -> list[Column]:
        return AccessPolicyEvaluator(self.principal, self.emergency_state).visible(self.columns)

    def __enter__(self) -> "TableSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """End the session: cancel auto-hide timers and drop masking state."""
        if self._closed:
            return
        self._coordinator.unsubscribe(self._on_emergency_event)
        self._coordinator.bus.unsubscribe(self._on_masking_event)
        self.masking.close()
        self._closed = True

    # ── Query ─────────────────────────────────────────────

    def query(self, records: Iterable[Record], total_count: Optional[int] = None) -> Page:
        """Run the pipeline over ``records`` with the session's current state."""
        self._records = list(records)
        return query(
            self._records,
            self.columns,
            self.principal,
            self.emergency_state,
            self.filter_state,
            self.sort_descriptor,
            self.page_request,
            self.masking,
            total_count=total_count,
            placeholder=self.config.mask_placeholder,
            max_page_size=self.config.max_page_size,
        )

    def set_search(self, text: str) -> None:
        text = text or ""
        self._audit(AuditAction.SEARCH, {"search_text": text})
        self.filter_state = self.filter_state.with_search(text)
        self.page_request = self.page_request.model_copy(update={"index": 0})

    def set_filter(self, column_key: str, value: Any) -> None:
        """Set or clear (``None``/``""``) one column filter.

        Filters on sensitive columns are audited fail-closed.

        Raises:
            InvalidFilterState: Unknown, non-filterable or masked column.
            AccessDenied: Column not visible to the principal.
            AuditSinkUnavailable: Sensitive filter could not be audited.
        """
        column = self._filter_column(column_key)
        active = not is_inactive(value)
        if active and self.masking.is_masked(column):
            raise InvalidFilterState(
                f"Column '{column_key}' is masked; reveal it before filtering on it"
            )

        context: dict[str, Any] = {"column": column_key, "active": active}
        if active and not column.contains_sensitive_data and not callable(value):
            context["value"] = str(value)
        evaluator = AccessPolicyEvaluator(self.principal, self.emergency_state)
        self._audit(
            AuditAction.FILTER_CHANGE,
            context,
            disclosure=column.contains_sensitive_data,
            compliance_tier=column.required_clearance if column.contains_sensitive_data else None,
            emergency_override=evaluator.is_override(column),
        )
        self.filter_state = self.filter_state.with_filter(column_key, value)
        self.page_request = self.page_request.model_copy(update={"index": 0})
        self.masking.touch(column_key)

    def clear_filters(self) -> None:
        self._audit(AuditAction.FILTER_CHANGE, {"cleared": True})
        self.filter_state = self.filter_state.cleared()
        self.page_request = self.page_request.model_copy(update={"index": 0})

    def set_sort(self, column_key: str, direction: "SortDirection | str" = SortDirection.ASC) -> None:
        """Sort by one column.

        Raises:
            InvalidSortColumn: Unknown, invisible, non-sortable or masked column.
        """
        descriptor = SortDescriptor(column_key=column_key, direction=SortDirection.parse(direction))
        resolve_sort_column(
            descriptor, list(self.columns), self.visible_columns(), self.masking.is_masked
        )
        self._audit(
            AuditAction.SORT_CHANGE,
            {"column": column_key, "direction": descriptor.direction.value},
        )
        self.sort_descriptor = descriptor
        self.masking.touch(column_key)

    def clear_sort(self) -> None:
        self._audit(AuditAction.SORT_CHANGE, {"column": None})
        self.sort_descriptor = None

    def set_page(self, index: int, size: Optional[int] = None) -> None:
        """Move to a page (zero-based), optionally changing the page size.

        Raises:
            InvalidFilterState: Negative index or size outside 1..max_page_size.
        """
        request = PageRequest(index=index, size=size if size is not None else self.page_request.size)
        request.validate_bounds(self.config.max_page_size)
        self._audit(AuditAction.PAGE_CHANGE, {"page_index": request.index, "page_size": request.size})
        self.page_request = request

    # ── Masking ───────────────────────────────────────────

    def reveal(self, column_key: str) -> None:
        self.masking.reveal(column_key, self.principal, self.emergency_state)

    def hide(self, column_key: str) -> bool:
        return self.masking.hide(column_key, self.principal, self.emergency_state)

    def is_revealed(self, column_key: str) -> bool:
        return self.masking.is_revealed(column_key)

    # ── Selection & export ────────────────────────────────

    def toggle_selection(self, record_id: RecordId) -> Selection:
        matching_ids = None
        if self.selection.mode == SelectionMode.ALL:
            matching_ids = [r.record_id for r in self._matching()]
        return self.selection_controller.toggle_selection(
            record_id, self.principal, self.emergency_state, matching_ids=matching_ids
        )

    def select_all(self) -> Selection:
        return self.selection_controller.select_all(self.principal, self.emergency_state)

    def clear_selection(self) -> Selection:
        return self.selection_controller.clear_selection(self.principal, self.emergency_state)

    def export(
        self,
        records: Iterable[Record],
        export_format: "ExportFormat | str" = ExportFormat.CSV,
    ) -> ExportPayload:
        """Export the current selection within the current matching set."""
        return export_job(
            records,
            self.columns,
            self.principal,
            self.emergency_state,
            self.selection,
            export_format,
            emitter=self._emitter,
            masking=self.masking,
            filter_state=self.filter_state,
            sort_descriptor=self.sort_descriptor,
            config=self.config,
            table_id=self.table_id,
            metrics=self._metrics,
        )

    # ── Row actions ───────────────────────────────────────

    def view_record(self, record: Record) -> RenderedRow:
        """Open one record in detail view.

        Viewing a record while any visible sensitive column is revealed
        is a disclosure and is audited fail-closed.
        """
        state = self.emergency_state
        evaluator = AccessPolicyEvaluator(self.principal, state)
        visible = evaluator.visible(self.columns)
        disclosed = [
            c for c in visible
            if c.contains_sensitive_data and not self.masking.is_masked(c)
        ]
        tiers = [c.required_clearance for c in disclosed]
        self._audit(
            AuditAction.ROW_VIEW,
            {"record_id": record.record_id, "disclosed_columns": [c.key for c in disclosed]},
            disclosure=bool(disclosed),
            compliance_tier=highest(tiers),
            emergency_override=any(evaluator.is_override(c) for c in disclosed),
        )
        for column in disclosed:
            self.masking.touch(column.key)
        return render_row(record, visible, self.masking, self.config.mask_placeholder)

    def row_action(self, record: Record, action: str) -> None:
        """Audit a row-level action (edit, archive, message...) triggered from the table."""
        self._audit(AuditAction.ROW_ACTION, {"record_id": record.record_id, "action": action})

    # ── Internals ─────────────────────────────────────────

    def _filter_column(self, column_key: str) -> Column:
        if column_key not in self.columns:
            raise InvalidFilterState(f"Filter references unknown column '{column_key}'")
        column = self.columns.get(column_key)
        if not column.filterable:
            raise InvalidFilterState(f"Column '{column_key}' is not filterable")
        if column.key not in {c.key for c in self.visible_columns()}:
            if self._metrics is not None:
                self._metrics.record_access_denied()
            raise AccessDenied(column_key)
        return column

    def _matching(self) -> list[Record]:
        _, matching = match_records(
            self._records,
            self.columns,
            self.principal,
            self.emergency_state,
            self.filter_state,
            self.sort_descriptor,
            self.masking,
        )
        return matching

    def _audit(
        self,
        action: AuditAction,
        context: dict[str, Any],
        *,
        disclosure: Optional[bool] = None,
        compliance_tier=None,
        emergency_override: bool = False,
    ) -> None:
        context = {CTX_TABLE_ID: self.table_id, **context}
        self._emitter.emit(
            action,
            self.principal,
            context,
            self.emergency_state,
            compliance_tier=compliance_tier,
            emergency_override=emergency_override,
            disclosure=disclosure,
        )

    def _stale_reason(self, column_key: str, visible_keys: set[str]) -> Optional[str]:
        if column_key not in visible_keys:
            return "clearance_lost"
        if self.masking.is_masked(self.columns.get(column_key)):
            return "column_masked"
        return None

    def _drop_stale_state(self) -> None:
        """Drop filters and sort that the current view no longer allows.

        A column that became invisible or masked again cannot keep driving
        the query. Each drop is audited with its reason and the page index
        returns to zero.
        """
        visible_keys = {c.key for c in self.visible_columns()}
        dropped = []
        for key, value in list(self.filter_state.column_filters.items()):
            reason = self._stale_reason(key, visible_keys)
            if reason is None or (reason == "column_masked" and is_inactive(value)):
                continue
            self._audit(
                AuditAction.FILTER_CHANGE,
                {"column": key, "active": False, "reason": reason},
                disclosure=False,
            )
            self.filter_state = self.filter_state.with_filter(key, None)
            dropped.append(key)

        sort = self.sort_descriptor
        if sort is not None:
            reason = self._stale_reason(sort.column_key, visible_keys)
            if reason is not None:
                self._audit(
                    AuditAction.SORT_CHANGE,
                    {"column": None, "previous": sort.column_key, "reason": reason},
                    disclosure=False,
                )
                self.sort_descriptor = None
                dropped.append(sort.column_key)

        if dropped:
            self.page_request = self.page_request.model_copy(update={"index": 0})
            logger.info("Session %s dropped query state on %s", self.table_id, dropped)

    def _on_masking_event(self, event: Event) -> None:
        if event.payload.get("session_id") != self.session_id:
            return
        self._drop_stale_state()

    def _on_emergency_event(self, event: Event) -> None:
        if event.event_type != EVENT_EMERGENCY_DEACTIVATED:
            return
        hidden = self.masking.hide_inaccessible(self.principal, self.emergency_state)
        if hidden:
            logger.info(
                "Session %s re-masked %s after emergency mode ended", self.table_id, hidden
            )
        self._drop_stale_state()
