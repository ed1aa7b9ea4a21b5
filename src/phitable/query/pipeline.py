# Copyright (c) PhiTable Contributors. All rights reserved.
# Licensed under the MIT License.
"""
Query Pipeline

One deterministic transform from a record set to a page:

1. column restriction  (visible columns for the effective clearance)
2. search              (visible, filterable, unmasked columns only)
3. column filters      (ANDed)
4. sort                (stable, missing values last)
5. pagination

All request parameters are validated before any record is read. The
pipeline only reads masking state; identical inputs give an identical page.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field

from phitable.columns import Column, ColumnSet, as_column_set
from phitable.constants import MASK_PLACEHOLDER
from phitable.policy.access import EmergencyView, visible_columns
from phitable.policy.clearance import Principal
from phitable.query.filters import (
    FilterState,
    apply_filters,
    apply_search,
    search_columns,
    validate_filters,
)
from phitable.query.pagination import PageRequest, page_count, paginate
from phitable.query.sorting import SortDescriptor, apply_sort, resolve_sort_column
from phitable.records import Record, RecordId
from phitable.rendering import render_cell

logger = logging.getLogger(__name__)


class MaskingView(Protocol):
    """Read-only view of masking state."""

    def is_masked(self, column: Column) -> bool: ...


class AllMasked:
    """Used when no masking state is supplied: every sensitive column is masked."""

    def is_masked(self, column: Column) -> bool:
        return column.contains_sensitive_data


class RenderedRow(BaseModel):
    """A record rendered for display: visible columns only, masked cells redacted."""

    model_config = ConfigDict(frozen=True)

    record_id: RecordId
    cells: dict[str, str] = Field(default_factory=dict)
    masked: frozenset[str] = Field(default_factory=frozenset)


class Page(BaseModel):
    """One page of query output.

    ``records`` are copies projected onto the visible columns with masked
    cells replaced by the placeholder; raw source values never leave the
    pipeline.
    """

    model_config = ConfigDict(frozen=True)

    records: list[Record] = Field(default_factory=list)
    rows: list[RenderedRow] = Field(default_factory=list)
    columns: list[Column] = Field(default_factory=list)
    total_matched: int = 0
    page_index: int = 0
    page_count: int = 0

    @property
    def record_ids(self) -> list[RecordId]:
        return [r.record_id for r in self.records]


def render_row(
    record: Record,
    visible: Sequence[Column],
    masking: MaskingView,
    placeholder: str = MASK_PLACEHOLDER,
) -> RenderedRow:
    cells = {}
    masked = set()
    for column in visible:
        is_masked = masking.is_masked(column)
        if is_masked:
            masked.add(column.key)
        cells[column.key] = render_cell(column, record.get(column.key), is_masked, placeholder)
    return RenderedRow(record_id=record.record_id, cells=cells, masked=frozenset(masked))


def redact_record(
    record: Record,
    visible: Sequence[Column],
    masked_keys: "set[str] | frozenset[str]",
    placeholder: str = MASK_PLACEHOLDER,
) -> Record:
    """Copy of ``record`` holding visible columns only, masked cells replaced."""
    projected = record.project(c.key for c in visible)
    if not masked_keys:
        return projected
    values = {
        key: placeholder if key in masked_keys else value
        for key, value in projected.values.items()
    }
    return Record(record_id=record.record_id, values=values)


def match_records(
    records: Iterable[Record],
    columns: "ColumnSet | Iterable[Column]",
    principal: Principal,
    emergency_state: Optional[EmergencyView],
    filter_state: Optional[FilterState],
    sort_descriptor: Optional[SortDescriptor],
    masking: Optional[MaskingView] = None,
) -> tuple[list[Column], list[Record]]:
    """Stages 1–4: visible columns and every matching record in display order.

    Raises:
        InvalidFilterState: Bad filter key or masked filter column.
        InvalidSortColumn: Bad or masked sort key.
        AccessDenied: Filter on a column the principal cannot see.
    """
    column_set = as_column_set(columns)
    masking = masking or AllMasked()
    filter_state = filter_state or FilterState()

    visible = visible_columns(column_set, principal, emergency_state)
    active_filters = validate_filters(filter_state, list(column_set), visible, masking.is_masked)
    sort_column = None
    if sort_descriptor is not None:
        sort_column = resolve_sort_column(
            sort_descriptor, list(column_set), visible, masking.is_masked
        )

    rows = list(records)
    searched = apply_search(rows, filter_state.search_text, search_columns(visible, masking.is_masked))
    filtered = apply_filters(searched, active_filters)
    ordered = apply_sort(filtered, sort_descriptor, sort_column)
    logger.debug(
        "Query stages: %d input, %d after search, %d after filters",
        len(rows), len(searched), len(filtered),
    )
    return visible, ordered


def query(
    records: Iterable[Record],
    columns: "ColumnSet | Iterable[Column]",
    principal: Principal,
    emergency_state: Optional[EmergencyView],
    filter_state: Optional[FilterState] = None,
    sort_descriptor: Optional[SortDescriptor] = None,
    page: Optional[PageRequest] = None,
    masking: Optional[MaskingView] = None,
    *,
    total_count: Optional[int] = None,
    placeholder: str = MASK_PLACEHOLDER,
    max_page_size: Optional[int] = None,
) -> Page:
    """Run the full pipeline and return one page.

    Args:
        records: Already-fetched record window.
        columns: Column declarations for the table.
        principal: Requesting principal.
        emergency_state: Emergency snapshot for this request.
        filter_state: Search text and column filters.
        sort_descriptor: Sort key, or None to keep input order.
        page: Page to return; defaults to the first page.
        masking: Current masking state (read only). When omitted every
            sensitive column is treated as masked.
        total_count: Source-side total when the record source paginates;
            used for ``page_count`` only.
        placeholder: Text shown for masked cells.
        max_page_size: Optional upper bound on ``page.size``.

    Returns:
        The requested ``Page``.
    """
    page = page or PageRequest()
    page.validate_bounds(max_page_size)
    masking = masking or AllMasked()

    visible, ordered = match_records(
        records, columns, principal, emergency_state,
        filter_state, sort_descriptor, masking,
    )
    sliced = paginate(ordered, page)
    total_for_pages = total_count if total_count is not None else len(ordered)
    masked_keys = frozenset(c.key for c in visible if masking.is_masked(c))

    return Page(
        records=[redact_record(r, visible, masked_keys, placeholder) for r in sliced],
        rows=[render_row(r, visible, masking, placeholder) for r in sliced],
        columns=visible,
        total_matched=len(ordered),
        page_index=page.index,
        page_count=page_count(total_for_pages, page.size),
    )
