# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Export

Builds export payloads from the current matching set and selection. An
export never contains a column the principal cannot see, keeps masked
cells redacted, is size-checked before anything else happens, and is
audited (fail-closed) before the payload is returned.
"""

from __future__ import annotations

import csv
import io
import logging
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from phitable.audit.emitter import AuditEmitter, Clock, utcnow
from phitable.audit.events import AuditAction
from phitable.columns import Column, ColumnSet, as_column_set
from phitable.config import TableEngineConfig
from phitable.constants import CTX_RECORD_COUNT, CTX_SELECTED_ONLY, CTX_TABLE_ID
from phitable.exceptions import ExportTooLarge, UsageError
from phitable.observability.metrics import MetricsCollector
from phitable.policy.access import EmergencyView, relies_on_emergency
from phitable.policy.clearance import ClearanceTier, Principal, highest
from phitable.query.filters import FilterState
from phitable.query.pipeline import AllMasked, MaskingView, match_records, redact_record
from phitable.query.sorting import SortDescriptor
from phitable.records import Record
from phitable.rendering import render_value
from phitable.selection import Selection

logger = logging.getLogger(__name__)


class ExportFormat(str, Enum):
    CSV = "csv"
    XLSX = "xlsx"
    PDF = "pdf"

    @classmethod
    def parse(cls, value: "ExportFormat | str") -> "ExportFormat":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UsageError(f"Unsupported export format '{value}'") from None


class ExportMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    compliance_tier: Optional[ClearanceTier] = None
    record_count: int = 0
    selected_only: bool = False
    generated_at: datetime


class ExportPayload(BaseModel):
    """Export handed to downstream format writers."""

    model_config = ConfigDict(frozen=True)

    format: ExportFormat
    columns: list[Column] = Field(default_factory=list)
    rows: list[Record] = Field(default_factory=list)
    metadata: ExportMetadata

    _masked_columns: frozenset[str] = PrivateAttr(default_factory=frozenset)

    @property
    def masked_columns(self) -> frozenset[str]:
        return self._masked_columns

    def to_csv(self) -> str:
        """Render as CSV: one header row of labels, then one row per record.

        Masked cells are already redacted in ``rows`` and pass through
        unchanged.
        """
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow([c.label for c in self.columns])
        for row in self.rows:
            writer.writerow([
                row.get(c.key) if c.key in self._masked_columns else render_value(c, row.get(c.key))
                for c in self.columns
            ])
        return buffer.getvalue()


def export_job(
    records: Iterable[Record],
    columns: "ColumnSet | Iterable[Column]",
    principal: Principal,
    emergency_state: Optional[EmergencyView],
    selection: Optional[Selection],
    export_format: "ExportFormat | str",
    *,
    emitter: AuditEmitter,
    masking: Optional[MaskingView] = None,
    filter_state: Optional[FilterState] = None,
    sort_descriptor: Optional[SortDescriptor] = None,
    config: Optional[TableEngineConfig] = None,
    clock: Optional[Clock] = None,
    table_id: Optional[str] = None,
    metrics: Optional[MetricsCollector] = None,
) -> ExportPayload:
    """Produce an export of the selection within the current matching set.

    Raises:
        ExportTooLarge: More rows than ``config.max_export_rows``; nothing
            is audited or returned.
        AuditSinkUnavailable: The export could not be audited.
        InvalidFilterState, InvalidSortColumn, AccessDenied: As for ``query``.
    """
    export_format = ExportFormat.parse(export_format)
    config = config or TableEngineConfig()
    clock = clock or utcnow
    selection = selection or Selection.none()
    masking = masking or AllMasked()
    column_set = as_column_set(columns)

    visible, matching = match_records(
        records, column_set, principal, emergency_state,
        filter_state, sort_descriptor, masking,
    )
    chosen = selection.resolve(matching)

    if len(chosen) > config.max_export_rows:
        raise ExportTooLarge(len(chosen), config.max_export_rows)

    masked_keys = {c.key for c in visible if masking.is_masked(c)}
    rows = [redact_record(r, visible, masked_keys, config.mask_placeholder) for r in chosen]
    tier = highest(c.required_clearance for c in visible)
    override = any(relies_on_emergency(c, principal, emergency_state) for c in visible)

    context = {
        CTX_RECORD_COUNT: len(rows),
        CTX_SELECTED_ONLY: selection.selected_only,
        "format": export_format.value,
        "columns": [c.key for c in visible],
        "masked_columns": sorted(masked_keys),
    }
    if table_id is not None:
        context[CTX_TABLE_ID] = table_id

    emitter.emit(
        AuditAction.EXPORT,
        principal,
        context,
        emergency_state,
        compliance_tier=tier,
        emergency_override=override,
    )

    if metrics is not None:
        metrics.record_export(export_format.value)
    logger.info(
        "Export of %d records (%s, selected_only=%s) by %s",
        len(rows), export_format.value, selection.selected_only, principal.id,
    )
    payload = ExportPayload(
        format=export_format,
        columns=visible,
        rows=rows,
        metadata=ExportMetadata(
            compliance_tier=tier,
            record_count=len(rows),
            selected_only=selection.selected_only,
            generated_at=clock(),
        ),
    )
    payload._masked_columns = frozenset(masked_keys)
    return payload
